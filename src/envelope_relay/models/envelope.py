"""
Envelope models: one header, then an ordered list of items.
"""

import base64
import binascii
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

ENVELOPE_CONTENT_TYPES = {"application/x-sentry-envelope", "application/x-relay-envelope"}
SENTRY_CONTENT_TYPE = "application/x-sentry-envelope"
RELAY_ENVELOPE_ID = "__relay_envelope_id"

# Item types whose payload is never JSON; kept as bytes.
RAW_ITEM_TYPES = {"attachment", "replay_video", "statsd"}
TEXT_CONTENT_TYPES = {"text/plain", "application/json"}


class EventKind(str, Enum):
    """Derived kind of an envelope item. Not a wire tag."""

    ERROR = "error"
    TRACE = "trace"
    LOG = "log"
    UNRECOGNIZED = "unrecognized"


class ItemHeader(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    length: Optional[int] = None
    content_type: Optional[str] = None


class EnvelopeItem(BaseModel):
    header: ItemHeader
    payload: Any = None  # decoded JSON, or the raw bytes when decoding failed

    @property
    def type(self) -> Optional[str]:
        return self.header.type

    @property
    def is_raw(self) -> bool:
        return isinstance(self.payload, bytes)

    @property
    def is_text(self) -> bool:
        """Raw payload travels as UTF-8 text rather than base64."""
        content_type = self.header.content_type
        if content_type is None and self.header.type == "statsd":
            content_type = "text/plain"
        return content_type in TEXT_CONTENT_TYPES

    def payload_json(self) -> Any:
        """Payload as JSON data. Raw bytes become `{"data": <text or base64>}`."""
        if not isinstance(self.payload, bytes):
            return self.payload
        if self.is_text:
            return {"data": self.payload.decode("utf-8", errors="replace")}
        return {"data": base64.b64encode(self.payload).decode("ascii")}

    @classmethod
    def from_json(cls, header: ItemHeader, payload: Any) -> "EnvelopeItem":
        """Inverse of `payload_json`: a typed item carrying only `data` was raw."""
        if header.type and isinstance(payload, dict) and set(payload) == {"data"} and isinstance(payload["data"], str):
            text = payload["data"]
            if cls(header=header).is_text:
                return cls(header=header, payload=text.encode("utf-8"))
            try:
                return cls(header=header, payload=base64.b64decode(text, validate=True))
            except binascii.Error:
                pass
        return cls(header=header, payload=payload)


class Envelope(BaseModel):
    header: dict[str, Any] = Field(default_factory=dict)
    items: list[EnvelopeItem] = Field(default_factory=list)

    @property
    def envelope_id(self) -> Optional[str]:
        value = self.header.get(RELAY_ENVELOPE_ID)
        return str(value) if value else None

    @property
    def event_id(self) -> Optional[str]:
        value = self.header.get("event_id")
        return str(value) if value else None

    def to_json_compatible(self) -> list[Any]:
        """Envelope as ``[header, [[item_header, payload], ...]]``.

        Raw payloads become `{"data": ...}`: UTF-8 text for text/plain and
        application/json items, base64 for anything else.
        """
        items = [[item.header.model_dump(exclude_none=True), item.payload_json()] for item in self.items]
        return [self.header, items]

    @classmethod
    def from_json_compatible(cls, data: Any) -> "Envelope":
        """Inverse of `to_json_compatible`, tolerant of malformed entries."""
        if not isinstance(data, list) or len(data) != 2:
            return cls()
        header, raw_items = data
        items = []
        for entry in raw_items if isinstance(raw_items, list) else []:
            if not (isinstance(entry, list) and len(entry) == 2 and isinstance(entry[0], dict)):
                continue
            try:
                item_header = ItemHeader.model_validate(entry[0])
            except ValidationError:
                continue
            items.append(EnvelopeItem.from_json(item_header, entry[1]))
        return cls(header=header if isinstance(header, dict) else {}, items=items)
