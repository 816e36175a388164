"""
Envelope wire codec.

    <json-header>\\n
    <json-item-header>\\n<payload: exactly `length` bytes>[\\n]
    ...

Item boundaries come from the item header's `length`, never from newlines,
since payloads may hold binary data. Malformed lines decode to empty
structures and malformed payloads stay raw bytes; nothing here raises on bad
input except `decompress_body`.
"""

import gzip
import json
import logging
import zlib
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from envelope_relay.errors import DecodeError
from envelope_relay.models.envelope import RAW_ITEM_TYPES, Envelope, EnvelopeItem, ItemHeader

logger = logging.getLogger("envelope_relay.transport.envelope")

NEWLINE = 0x0A


def _read_line(data: bytes, pos: int) -> tuple[bytes, int]:
    end = data.find(b"\n", pos)
    if end == -1:
        return data[pos:], len(data)
    return data[pos:end], end + 1


def _parse_json_object(line: bytes) -> dict[str, Any]:
    try:
        value = json.loads(line)
    except ValueError as e:
        logger.debug("Unparseable envelope line (%d bytes): %s", len(line), e)
        return {}
    if not isinstance(value, dict):
        logger.debug("Envelope line is JSON but not an object: %r", type(value).__name__)
        return {}
    return value


def _item_header(raw: dict[str, Any]) -> ItemHeader:
    try:
        return ItemHeader.model_validate(raw)
    except ValidationError as e:
        logger.debug("Invalid item header %r: %s", raw, e)
        item_type = raw.get("type")
        return ItemHeader(type=item_type if isinstance(item_type, str) else None)


def _decode_payload(item_header: ItemHeader, raw: bytes) -> Any:
    if item_header.type in RAW_ITEM_TYPES:
        return raw
    try:
        payload = json.loads(raw)
    except ValueError as e:
        logger.debug("Keeping %s payload raw (%d bytes): %s", item_header.type or "untyped", len(raw), e)
        return raw
    if isinstance(payload, dict) and item_header.type and "type" not in payload:
        payload["type"] = item_header.type
    return payload


def parse_envelope(data: bytes) -> Envelope:
    """Decode raw envelope bytes. Pure; never raises on malformed content."""
    header_line, pos = _read_line(data, 0)
    header = _parse_json_object(header_line)

    items: list[EnvelopeItem] = []
    size = len(data)
    while pos < size:
        line, pos = _read_line(data, pos)
        if not line.strip():
            continue
        item_header = _item_header(_parse_json_object(line))
        length = item_header.length
        if length is None or length < 0:
            raw, pos = _read_line(data, pos)
        else:
            raw = data[pos:pos + length]
            pos = min(pos + length, size)
            if pos < size and data[pos] == NEWLINE:
                pos += 1
        items.append(EnvelopeItem(header=item_header, payload=_decode_payload(item_header, raw)))

    return Envelope(header=header, items=items)


def _payload_bytes(payload: Any) -> bytes:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def build_envelope(
    header: Optional[dict[str, Any]],
    items: Iterable[tuple[dict[str, Any], Any]],
) -> bytes:
    """Serialize an envelope; item `length` is filled in from the payload."""
    parts = [json.dumps(header or {}, separators=(",", ":")).encode("utf-8"), b"\n"]
    for item_header, payload in items:
        body = _payload_bytes(payload)
        parts.append(json.dumps({**item_header, "length": len(body)}, separators=(",", ":")).encode("utf-8"))
        parts.append(b"\n")
        parts.append(body)
        parts.append(b"\n")
    return b"".join(parts)


def decompress_body(body: bytes, content_encoding: Optional[str]) -> bytes:
    """Undo a transport-level Content-Encoding. Raises DecodeError on corrupt data."""
    encoding = (content_encoding or "").strip().lower()
    if encoding in ("", "identity"):
        return body
    try:
        if encoding in ("gzip", "x-gzip"):
            return gzip.decompress(body)
        if encoding == "deflate":
            try:
                return zlib.decompress(body)
            except zlib.error:
                return zlib.decompress(body, -zlib.MAX_WBITS)
    except (OSError, EOFError, zlib.error) as e:
        raise DecodeError(f"Failed to decompress {encoding} body: {e}", {"encoding": encoding})
    logger.warning("Unsupported content encoding %r, passing body through", encoding)
    return body
