"""
Ingestion and distribution service.

Owns the session registry and the live subscribers. Everything here runs on
one event loop: `ingest` never awaits, and fan-out to subscribers is a
non-blocking `put_nowait` into each subscriber's bounded queue. A subscriber
whose queue is full misses that notification; it can re-read the history.
"""

import asyncio
import logging
from typing import AsyncGenerator, Iterable, Optional, Union

from envelope_relay.buffer import DEFAULT_CAPACITY
from envelope_relay.container import EventContainer
from envelope_relay.errors import LookupMiss, SessionNotFound
from envelope_relay.formatters.base import FormatterFamily, render_envelope
from envelope_relay.formatters.registry import get_formatter
from envelope_relay.models.envelope import EventKind
from envelope_relay.sessions import DEFAULT_IDLE_TTL_S, SessionRegistry, new_session_id

logger = logging.getLogger("envelope_relay.service")

DEFAULT_QUEUE_SIZE = 256

FormatArg = Union[str, FormatterFamily]


def _family(format: FormatArg) -> FormatterFamily:
    return format if isinstance(format, FormatterFamily) else get_formatter(format)


class RelayService:
    def __init__(
        self,
        buffer_size: int = DEFAULT_CAPACITY,
        idle_ttl: Optional[float] = DEFAULT_IDLE_TTL_S,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        default_session_id: Optional[str] = None,
    ):
        self._default_session_id = default_session_id or new_session_id()
        self._registry: SessionRegistry[EventContainer] = SessionRegistry(
            buffer_size, idle_ttl=idle_ttl, pinned={self._default_session_id},
        )
        self._registry.get_buffer(self._default_session_id)
        self._queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue[EventContainer]]] = {}

    @property
    def default_session_id(self) -> str:
        return self._default_session_id

    @property
    def registry(self) -> SessionRegistry[EventContainer]:
        return self._registry

    def resolve_session(self, session_id: Optional[str]) -> str:
        return session_id or self._default_session_id

    # --- write path ---

    def ingest(
        self,
        session_id: Optional[str],
        content_type: str,
        data: bytes,
        user_agent: Optional[str] = None,
    ) -> EventContainer:
        """Buffer one payload for `session_id` and notify its subscribers.

        The payload is not validated; decoding happens lazily on first read.
        """
        session_id = self.resolve_session(session_id)
        container = EventContainer(content_type, data, user_agent)
        self._registry.get_buffer(session_id).put(container)

        dropped = 0
        for queue in self._subscribers.get(session_id, ()):
            try:
                queue.put_nowait(container)
            except asyncio.QueueFull:
                dropped += 1
        if dropped:
            logger.warning("Dropped %s for %d slow subscriber(s) on %s", container.envelope_id, dropped, session_id)
        logger.debug("Ingested %s (%s) into %s", container.envelope_id, content_type, session_id)
        return container

    def clear_history(self, session_id: Optional[str] = None) -> None:
        session_id = self.resolve_session(session_id)
        buffer = self._registry.get(session_id)
        if buffer is not None:
            buffer.clear()
        logger.info("Cleared history for %s", session_id)

    # --- live subscription ---

    async def subscribe(self, session_id: Optional[str] = None) -> AsyncGenerator[EventContainer, None]:
        """Yield containers ingested after this call, until the consumer stops."""
        session_id = self.resolve_session(session_id)
        self._registry.get_buffer(session_id)
        queue: asyncio.Queue[EventContainer] = asyncio.Queue(maxsize=self._queue_size)
        subscribers = self._subscribers.setdefault(session_id, set())
        subscribers.add(queue)
        logger.debug("Subscriber joined %s (%d total)", session_id, len(subscribers))
        try:
            while True:
                yield await queue.get()
        finally:
            subscribers.discard(queue)
            if not subscribers:
                self._subscribers.pop(session_id, None)
            logger.debug("Subscriber left %s", session_id)

    def subscriber_count(self, session_id: Optional[str] = None) -> int:
        return len(self._subscribers.get(self.resolve_session(session_id), ()))

    # --- read path ---

    def read_containers(self, session_id: Optional[str] = None, max_age: Optional[float] = None) -> list[EventContainer]:
        """Buffered containers, most recent first."""
        return self._registry.get_buffer(self.resolve_session(session_id)).read(max_age)

    def render_container(
        self,
        container: EventContainer,
        format: FormatArg,
        kinds: Optional[Iterable[EventKind]] = None,
    ) -> list[str]:
        envelope = container.get_parsed_envelope()
        if envelope is None:
            return []
        return render_envelope(_family(format), envelope, kinds)

    def read_history(
        self,
        session_id: Optional[str],
        format: FormatArg,
        kinds: Optional[Iterable[EventKind]] = None,
        max_age: Optional[float] = None,
    ) -> list[str]:
        """Rendered history, most recent first. Containers that fail are skipped."""
        family = _family(format)
        wanted = list(kinds) if kinds is not None else None
        lines: list[str] = []
        for container in self.read_containers(session_id, max_age):
            try:
                lines.extend(self.render_container(container, family, wanted))
            except Exception as e:
                logger.warning("Skipping %s while rendering history: %s", container.envelope_id, e)
        return lines

    def find_container(self, session_id: Optional[str], event_id: str) -> EventContainer:
        session_id = self.resolve_session(session_id)
        buffer = self._registry.get(session_id)
        if buffer is None:
            raise SessionNotFound(session_id)
        for container in buffer.get_all():
            if container.matches_id(event_id):
                return container
        raise LookupMiss(event_id, session_id)

    def find_by_id(self, session_id: Optional[str], event_id: str, format: FormatArg) -> list[str]:
        """Render the oldest buffered envelope matching `event_id`.

        Raises SessionNotFound for an unknown session and LookupMiss when no
        buffered envelope carries the id.
        """
        return self.render_container(self.find_container(session_id, event_id), format)
