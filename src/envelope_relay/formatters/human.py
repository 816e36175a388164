"""
Human-readable lines: `HH:MM:SS source  kind    message`.

With `color=True` the lines carry rich console markup; message text is always
escaped so payload content cannot inject markup.
"""

from typing import Any, Optional

from rich.markup import escape

from envelope_relay.formatters.base import Event, FormatterFamily, Header
from envelope_relay.formatters.data import (
    attribute_value,
    categorize_sdk,
    format_local_time,
    log_entries,
    summarize_error,
    summarize_trace,
)

SOURCE_WIDTH = 7  # "browser"
KIND_WIDTH = 7  # "warning"

SOURCE_STYLES = {"browser": "yellow", "mobile": "blue", "server": "magenta"}
KIND_STYLES = {
    "error": "bold red",
    "fatal": "bold red",
    "warning": "dark_orange",
    "warn": "dark_orange",
    "info": "cyan",
    "trace": "green",
    "debug": "dim",
}


class HumanFormatter(FormatterFamily):
    name = "human"

    def __init__(self, color: bool = False):
        self.color = color

    def _style(self, text: str, style: Optional[str]) -> str:
        if not self.color or not style:
            return text
        return f"[{style}]{text}[/{style}]"

    def format_line(self, timestamp: Any, source: str, kind: str, message: str) -> str:
        kind = kind.lower()
        time_part = self._style(format_local_time(timestamp), "dim")
        source_part = self._style(source.ljust(SOURCE_WIDTH), SOURCE_STYLES.get(source))
        kind_part = self._style(kind.ljust(KIND_WIDTH), KIND_STYLES.get(kind))
        text = escape(message) if self.color else message
        return f"{time_part} {source_part} {kind_part} {text}"

    def render_error(self, event: Event, envelope_header: Header) -> list[str]:
        level = event.get("level") if isinstance(event.get("level"), str) else None
        kind = level if level in ("fatal", "warning") else "error"
        message = summarize_error(event)
        event_id = event.get("event_id")
        if event_id:
            message = f"[{event_id}] {message}"
        return [self.format_line(event.get("timestamp"), categorize_sdk(envelope_header), kind, message)]

    def render_trace(self, event: Event, envelope_header: Header) -> list[str]:
        return [self.format_line(event.get("timestamp"), categorize_sdk(envelope_header), "trace", summarize_trace(event))]

    def render_log(self, event: Event, envelope_header: Header) -> list[str]:
        source = categorize_sdk(envelope_header)
        lines = []
        for entry in log_entries(event):
            message = str(entry.get("body") or "")
            attrs = []
            attributes = entry.get("attributes")
            if isinstance(attributes, dict):
                for key, attribute in attributes.items():
                    value = attribute_value(attribute)
                    if not key.startswith("sentry.") and value is not None:
                        attrs.append(f"{key}={value}")
            if attrs:
                message = f"{message} ({', '.join(attrs)})"
            lines.append(self.format_line(entry.get("timestamp"), source, str(entry.get("level") or "log"), message))
        return lines
