"""
Event container: the raw ingested payload plus its decoded envelope.
"""

import logging
import threading
import time
from typing import Optional

from envelope_relay.ids import new_id
from envelope_relay.models.envelope import ENVELOPE_CONTENT_TYPES, RELAY_ENVELOPE_ID, Envelope
from envelope_relay.transport.envelope import parse_envelope

logger = logging.getLogger("envelope_relay.container")

_UNSET = object()


class EventContainer:
    """Immutable (content type, bytes) with a compute-once decoded envelope.

    The first `get_parsed_envelope()` call decodes and stores the result; later
    calls return the stored value. The relay mutates containers only from its
    event loop, the lock keeps the cache correct when a threaded host shares one.
    """

    __slots__ = ("_content_type", "_data", "_user_agent", "_envelope_id", "_received_at", "_parsed", "_lock")

    def __init__(self, content_type: str, data: bytes, user_agent: Optional[str] = None):
        self._content_type = content_type
        self._data = bytes(data)
        self._user_agent = user_agent
        self._envelope_id = new_id()
        self._received_at = time.time()
        self._parsed: object = _UNSET
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"EventContainer(content_type={self._content_type!r}, id={self._envelope_id!r}, bytes={len(self._data)})"

    def get_content_type(self) -> str:
        return self._content_type

    def get_data(self) -> bytes:
        return self._data

    @property
    def user_agent(self) -> Optional[str]:
        return self._user_agent

    @property
    def envelope_id(self) -> str:
        return self._envelope_id

    @property
    def received_at(self) -> float:
        return self._received_at

    @property
    def is_envelope(self) -> bool:
        return self._content_type in ENVELOPE_CONTENT_TYPES

    def get_parsed_envelope(self) -> Optional[Envelope]:
        """Decoded envelope, or None when there is no structured data."""
        parsed = self._parsed
        if parsed is _UNSET:
            with self._lock:
                if self._parsed is _UNSET:
                    self._parsed = self._decode()
                parsed = self._parsed
        return parsed  # type: ignore[return-value]

    def _decode(self) -> Optional[Envelope]:
        if not self.is_envelope:
            return None
        try:
            envelope = parse_envelope(self._data)
        except Exception as e:
            logger.error("Failed to decode envelope %s: %s", self._envelope_id, e)
            return None
        envelope.header[RELAY_ENVELOPE_ID] = self._envelope_id
        return envelope

    def get_event_kinds(self) -> Optional[list[str]]:
        """Item `type` values of the decoded envelope; None if nothing decoded."""
        envelope = self.get_parsed_envelope()
        if envelope is None:
            return None
        return [item.header.type for item in envelope.items if item.header.type]

    def get_event_kinds_string(self) -> str:
        kinds = self.get_event_kinds()
        if not kinds:
            return "envelope" if self.is_envelope else self._content_type
        return "+".join(kinds)

    def matches_id(self, event_id: str) -> bool:
        """True if `event_id` names this envelope, its header, or one of its items."""
        if not event_id:
            return False
        if event_id == self._envelope_id:
            return True
        envelope = self.get_parsed_envelope()
        if envelope is None:
            return False
        if envelope.event_id == event_id:
            return True
        for item in envelope.items:
            if isinstance(item.payload, dict) and item.payload.get("event_id") == event_id:
                return True
        return False
