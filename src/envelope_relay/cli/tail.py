"""CLI: envelope-relay tail"""

import asyncio
import json
import logging
from typing import AsyncIterator, Iterable, Optional

import click
import httpx
from rich.console import Console

from envelope_relay.formatters.base import FormatterFamily, render_item
from envelope_relay.formatters.registry import get_formatter
from envelope_relay.models.envelope import ENVELOPE_CONTENT_TYPES, Envelope
from envelope_relay.service import RelayService

logger = logging.getLogger("envelope_relay.cli.tail")
console = Console(highlight=False)

NAME_TO_TYPES = {
    "traces": ("transaction", "span"),
    "logs": ("log",),
    "attachments": ("attachment",),
    "errors": ("event",),
}
EVERYTHING = ("everything", "all", "*")
SUPPORTED_TAIL_ARGS = [*NAME_TO_TYPES, *EVERYTHING]
ALL_ITEM_TYPES = frozenset(t for types in NAME_TO_TYPES.values() for t in types)


def _settings():
    from envelope_relay.cli.main import _settings
    return _settings()


def _run(coro):
    from envelope_relay.cli.main import _run
    return _run(coro)


def resolve_item_types(names: Iterable[str]) -> frozenset[str]:
    """Envelope item types selected by tail arguments. Raises click.BadParameter."""
    names = [name.lower() for name in names] or ["everything"]
    unsupported = [name for name in names if name not in SUPPORTED_TAIL_ARGS]
    if unsupported:
        raise click.BadParameter(
            f"Unsupported argument {unsupported[0]!r}. Supported arguments are: {', '.join(SUPPORTED_TAIL_ARGS)}",
            param_hint="types",
        )
    if any(name in EVERYTHING for name in names):
        return ALL_ITEM_TYPES
    return frozenset(t for name in names for t in NAME_TO_TYPES[name])


def format_envelope(family: FormatterFamily, envelope: Envelope, item_types: frozenset[str]) -> list[str]:
    lines: list[str] = []
    for item in envelope.items:
        if not item.type or item.type not in item_types:
            continue
        try:
            lines.extend(render_item(family, item, envelope.header))
        except Exception as e:
            logger.warning("Could not format %s item: %s", item.type, e)
    return lines


async def read_sse(response: httpx.Response) -> AsyncIterator[tuple[Optional[str], str]]:
    """(event, data) pairs from a server-sent events response."""
    event: Optional[str] = None
    data: list[str] = []
    async for line in response.aiter_lines():
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = None, []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[6:].strip()
        elif line.startswith("data:"):
            data.append(line[5:].lstrip())


class Tail:
    def __init__(self, family: FormatterFamily, item_types: frozenset[str], color: bool = False):
        self.family = family
        self.item_types = item_types
        self.color = color

    def emit(self, envelope: Envelope) -> None:
        lines = format_envelope(self.family, envelope, self.item_types)
        if not lines:
            return
        text = "\n".join(lines)
        if self.color:
            console.print(text)
        else:
            click.echo(text)

    async def follow_upstream(self, url: str) -> None:
        """Print envelopes from a running relay. Raises httpx.ConnectError if none is listening."""
        async with httpx.AsyncClient(timeout=httpx.Timeout(5.0, read=None)) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                logger.info("Connected to relay at %s", url)
                async for event, data in read_sse(response):
                    if event not in ENVELOPE_CONTENT_TYPES:
                        continue
                    try:
                        self.emit(Envelope.from_json_compatible(json.loads(data)))
                    except json.JSONDecodeError as e:
                        logger.debug("Skipping malformed stream message: %s", e)

    async def follow_local(self, service: RelayService) -> None:
        async for container in service.subscribe():
            envelope = container.get_parsed_envelope()
            if envelope is not None:
                self.emit(envelope)


async def run_tail(tail: Tail, settings) -> None:
    from envelope_relay.server import serve

    try:
        await tail.follow_upstream(f"{settings.base_url}/stream")
        return
    except httpx.ConnectError:
        logger.info("No relay on port %d, starting one", settings.port)

    service = RelayService(
        buffer_size=settings.buffer_size,
        idle_ttl=settings.session_idle_ttl,
        queue_size=settings.subscriber_queue_size,
    )
    server = asyncio.create_task(serve(settings, service))
    try:
        await tail.follow_local(service)
    finally:
        server.cancel()


@click.command("tail")
@click.argument("types", nargs=-1)
def tail_cmd(types):
    """Print incoming events (types: errors, logs, traces, attachments; or everything/all/*)."""
    try:
        item_types = resolve_item_types(types)
    except click.BadParameter as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise SystemExit(1)
    settings = _settings()
    family = get_formatter(settings.default_format, color=True)
    _run(run_tail(Tail(family, item_types, color=settings.default_format == "human"), settings))
