"""
Markdown blocks for tool-calling clients. Each returned string is one block
(one event, or one log entry).
"""

from typing import Any, Optional

from envelope_relay.formatters.base import Event, FormatterFamily, Header
from envelope_relay.formatters.data import (
    attribute_value,
    event_message,
    exception_frames,
    format_timestamp,
    frame_location,
    get_duration,
    get_nested,
    log_entries,
    primary_exception,
    select_frame,
    span_count,
    trace_name,
)

MAX_SPANS_LISTED = 20


def _bullet(label: str, value: Any, code: bool = False) -> Optional[str]:
    if value is None or value == "":
        return None
    return f"- **{label}**: `{value}`" if code else f"- **{label}**: {value}"


def _format_frame(frame: dict[str, Any]) -> list[str]:
    filename = frame.get("filename") or frame.get("abs_path") or frame.get("module") or "<unknown>"
    parts = [f'  File "{filename}"']
    if frame.get("lineno") is not None:
        parts.append(f"line {frame['lineno']}")
    if frame.get("function"):
        parts.append(f"in {frame['function']}")
    lines = [", ".join(parts)]
    context_line = frame.get("context_line")
    if isinstance(context_line, str) and context_line.strip():
        lines.append(f"    {context_line.strip()}")
    return lines


class MarkdownFormatter(FormatterFamily):
    name = "md"

    def render_error(self, event: Event, envelope_header: Header) -> list[str]:
        exception = primary_exception(event)
        exc_type = exception.get("type") if exception else None
        exc_value = (exception.get("value") if exception else None) or event_message(event)
        title = ": ".join(str(p) for p in (exc_type, exc_value) if p) or "Error"

        frames = exception_frames(exception)
        culprit = event.get("culprit") or frame_location(select_frame(frames))
        details = [
            _bullet("Event ID", event.get("event_id"), code=True),
            _bullet("Timestamp", format_timestamp(event.get("timestamp"))),
            _bullet("Level", event.get("level")),
            _bullet("Platform", event.get("platform")),
            _bullet("Location", culprit, code=True),
            _bullet("Transaction", event.get("transaction")),
            _bullet("Environment", event.get("environment")),
            _bullet("Trace ID", get_nested(event, "contexts.trace.trace_id"), code=True),
        ]
        method = get_nested(event, "request.method")
        url = get_nested(event, "request.url")
        if url:
            details.append(_bullet("Request", f"{method} {url}" if method else url, code=True))

        lines = [f"## {title}", ""]
        lines.extend(line for line in details if line)

        if frames:
            lines.extend(["", "### Stack Trace", "", "```"])
            for frame in frames:
                lines.extend(_format_frame(frame))
            lines.append("```")

        tags = event.get("tags")
        if isinstance(tags, dict) and tags:
            lines.extend(["", "### Tags", ""])
            lines.extend(f"- {key}: {value}" for key, value in tags.items())

        return ["\n".join(lines)]

    def render_trace(self, event: Event, envelope_header: Header) -> list[str]:
        duration = get_duration(event.get("timestamp"), event.get("start_timestamp"))
        status = get_nested(event, "contexts.trace.status")
        spans = span_count(event)
        details = [
            _bullet("Trace ID", get_nested(event, "contexts.trace.trace_id"), code=True),
            _bullet("Operation", get_nested(event, "contexts.trace.op")),
            _bullet("Duration", f"{duration}ms" if duration is not None else None),
            _bullet("Status", status if status and status != "ok" else None),
            _bullet("Spans", spans or None),
            _bullet("Timestamp", format_timestamp(event.get("timestamp"))),
        ]
        lines = [f"## Trace: {trace_name(event) or 'unnamed'}", ""]
        lines.extend(line for line in details if line)

        if spans:
            lines.extend(["", "### Spans", ""])
            for span in event["spans"][:MAX_SPANS_LISTED]:
                if not isinstance(span, dict):
                    continue
                span_duration = get_duration(span.get("timestamp"), span.get("start_timestamp"))
                label = " - ".join(str(p) for p in (span.get("op"), span.get("description")) if p) or "span"
                suffix = f" ({span_duration}ms)" if span_duration is not None else ""
                lines.append(f"- {label}{suffix}")
            if spans > MAX_SPANS_LISTED:
                lines.append(f"- ... {spans - MAX_SPANS_LISTED} more")

        return ["\n".join(lines)]

    def render_log(self, event: Event, envelope_header: Header) -> list[str]:
        blocks = []
        for entry in log_entries(event):
            head = " ".join(
                str(part) for part in (format_timestamp(entry.get("timestamp")), entry.get("level"), entry.get("body"))
                if part
            )
            attrs = []
            attributes = entry.get("attributes")
            if isinstance(attributes, dict):
                for key, attribute in attributes.items():
                    if key.startswith("sentry."):
                        continue
                    attr_type = attribute.get("type") if isinstance(attribute, dict) else None
                    value = attribute_value(attribute)
                    attrs.append(f"{key}: {value} ({attr_type})" if attr_type else f"{key}: {value}")
            if attrs:
                blocks.append(head + "\nAttributes:\n" + "\n".join(attrs))
            else:
                blocks.append(head)
        return blocks
