"""
Session registry: one history buffer per session id.
"""

from __future__ import annotations

import logging
import time
from typing import Generic, Optional, TypeVar

from envelope_relay.buffer import DEFAULT_CAPACITY, HistoryBuffer
from envelope_relay.ids import new_id

logger = logging.getLogger("envelope_relay.sessions")

T = TypeVar("T")

DEFAULT_IDLE_TTL_S = 3600.0


def new_session_id() -> str:
    """Globally unique, time-sortable session id."""
    return new_id()


class SessionRegistry(Generic[T]):
    """Maps caller-supplied session ids to their buffers, created on first use.

    Buffers idle for longer than `idle_ttl` seconds are dropped when a new
    session registers. Ids in `pinned` are never dropped.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        idle_ttl: Optional[float] = DEFAULT_IDLE_TTL_S,
        pinned: Optional[set[str]] = None,
    ):
        self._capacity = capacity
        self._idle_ttl = idle_ttl
        self._pinned = set(pinned or ())
        self._buffers: dict[str, HistoryBuffer[T]] = {}

    def pin(self, session_id: str) -> None:
        self._pinned.add(session_id)

    def get(self, session_id: str) -> Optional[HistoryBuffer[T]]:
        """Existing buffer for `session_id`, without creating one."""
        return self._buffers.get(session_id)

    def get_buffer(self, session_id: str) -> HistoryBuffer[T]:
        buffer = self._buffers.get(session_id)
        if buffer is None:
            self.evict_idle()
            buffer = HistoryBuffer(self._capacity)
            self._buffers[session_id] = buffer
            logger.debug("Registered session %s (%d active)", session_id, len(self._buffers))
        return buffer

    def sessions(self) -> list[str]:
        return list(self._buffers)

    def discard(self, session_id: str) -> None:
        self._buffers.pop(session_id, None)

    def evict_idle(self, now: Optional[float] = None) -> list[str]:
        """Drop buffers untouched for `idle_ttl` seconds. Returns the dropped ids."""
        if self._idle_ttl is None:
            return []
        now = time.monotonic() if now is None else now
        stale = [
            session_id
            for session_id, buffer in self._buffers.items()
            if session_id not in self._pinned and now - buffer.last_access > self._idle_ttl
        ]
        for session_id in stale:
            del self._buffers[session_id]
        if stale:
            logger.info("Evicted %d idle session(s)", len(stale))
        return stale

    def __len__(self) -> int:
        return len(self._buffers)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._buffers
