"""
Relay error types.

Decode and format failures are recovered close to where they happen; the
classes below are what crosses a module boundary.
"""

from typing import Any, Optional


class RelayError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class DecodeError(RelayError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("decode_error", message, details)


class UnknownKind(RelayError):
    def __init__(self, item_type: Optional[str]):
        super().__init__("unknown_kind", f"No formatter for item type {item_type!r}", {"type": item_type})


class SessionNotFound(RelayError):
    def __init__(self, session_id: str):
        super().__init__("session_not_found", f"Session {session_id} has no buffered history", {"session_id": session_id})


class LookupMiss(RelayError):
    def __init__(self, event_id: str, session_id: Optional[str] = None):
        super().__init__(
            "lookup_miss",
            f"Event {event_id} is not in the buffered history",
            {"event_id": event_id, "session_id": session_id},
        )


class UnknownFormatError(RelayError, ValueError):
    def __init__(self, name: str, available: Optional[list[str]] = None):
        super().__init__("unknown_format", f"Unknown format {name!r}", {"available": available or []})


class TransportConnectionFailure(RelayError):
    def __init__(self, message: str):
        super().__init__("transport_connection_failure", message)
