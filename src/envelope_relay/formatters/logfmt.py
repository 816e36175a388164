"""
logfmt lines: space-separated `key=value` pairs, one per event or log entry.
"""

import json
import re
from typing import Any

from envelope_relay.formatters.base import Event, FormatterFamily, Header
from envelope_relay.formatters.data import build_error_data, build_log_data, build_trace_data, log_entries

_NEEDS_QUOTES = re.compile(r'[\s="\\]')
_BAD_KEY_CHARS = re.compile(r'[\s="]')


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (dict, list)):
        value = json.dumps(value, separators=(",", ":"), default=str)
    text = str(value)
    if text == "" or _NEEDS_QUOTES.search(text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n").replace("\r", "\\r")
        return f'"{escaped}"'
    return text


def stringify(data: dict[str, Any]) -> str:
    pairs = []
    for key, value in data.items():
        if value is None:
            continue
        pairs.append(f"{_BAD_KEY_CHARS.sub('_', str(key))}={_encode_value(value)}")
    return " ".join(pairs)


class LogfmtFormatter(FormatterFamily):
    name = "logfmt"

    def render_error(self, event: Event, envelope_header: Header) -> list[str]:
        return [stringify(build_error_data(event))]

    def render_trace(self, event: Event, envelope_header: Header) -> list[str]:
        return [stringify(build_trace_data(event))]

    def render_log(self, event: Event, envelope_header: Header) -> list[str]:
        return [stringify(build_log_data(entry)) for entry in log_entries(event)]
