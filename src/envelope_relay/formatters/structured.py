"""
JSON lines: one compact object per event or log entry.
"""

import json
from typing import Any

from envelope_relay.formatters.base import Event, FormatterFamily, Header
from envelope_relay.formatters.data import build_error_data, build_log_data, build_trace_data, log_entries


def _dumps(data: dict[str, Any]) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False, default=str)


class JsonFormatter(FormatterFamily):
    name = "json"

    def render_error(self, event: Event, envelope_header: Header) -> list[str]:
        return [_dumps(build_error_data(event))]

    def render_trace(self, event: Event, envelope_header: Header) -> list[str]:
        return [_dumps(build_trace_data(event))]

    def render_log(self, event: Event, envelope_header: Header) -> list[str]:
        return [_dumps(build_log_data(entry)) for entry in log_entries(event)]
