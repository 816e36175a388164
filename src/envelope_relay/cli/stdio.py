"""CLI: envelope-relay mcp"""

import asyncio

import click

from envelope_relay.errors import TransportConnectionFailure
from envelope_relay.facade import ToolProtocolFacade
from envelope_relay.identity import STDIO_CALLER
from envelope_relay.service import RelayService


def _settings():
    from envelope_relay.cli.main import _settings
    return _settings()


def _run(coro):
    from envelope_relay.cli.main import _run
    return _run(coro)


async def run_stdio(settings) -> None:
    """MCP on stdin/stdout while the HTTP relay keeps ingesting on its port."""
    from envelope_relay.server import serve

    service = RelayService(
        buffer_size=settings.buffer_size,
        idle_ttl=settings.session_idle_ttl,
        queue_size=settings.subscriber_queue_size,
    )
    facade = ToolProtocolFacade(service, default_caller=STDIO_CALLER)
    server = asyncio.create_task(serve(settings, service))
    try:
        await facade.run_stdio()
    finally:
        server.cancel()


@click.command("mcp")
def mcp_cmd():
    """Serve the MCP tools over stdio."""
    from envelope_relay.cli.main import err_console

    try:
        _run(run_stdio(_settings()))
    except TransportConnectionFailure as e:
        err_console.print(f"[red]{e}[/red]")
        raise SystemExit(1)
