"""
Trace grouping and span trees.

Transactions and trace-context-bearing events from buffered containers are
grouped by trace id; a trace renders as an indented span tree.
"""

import logging
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from envelope_relay.container import EventContainer
from envelope_relay.formatters.data import format_timestamp, get_duration, get_nested, to_epoch_seconds

logger = logging.getLogger("envelope_relay.formatters.traces")

HIDDEN_OPS = {"default", "unknown", "transaction"}


class TraceEvent(BaseModel):
    event_id: str = ""
    type: str = "unknown"
    timestamp: Optional[float] = None
    start_timestamp: Optional[float] = None
    transaction: Optional[str] = None
    trace_context: dict[str, Any] = Field(default_factory=dict)
    spans: list[dict[str, Any]] = Field(default_factory=list)
    level: Optional[str] = None
    message: Optional[str] = None


class TraceSummary(BaseModel):
    trace_id: str
    root_transaction: Optional[str] = None
    start_timestamp: Optional[float] = None
    duration: Optional[int] = None
    span_count: int = 0
    error_count: int = 0
    events: list[TraceEvent] = Field(default_factory=list)


class SpanNode(BaseModel):
    span_id: str
    parent_span_id: Optional[str] = None
    op: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[int] = None
    status: Optional[str] = None
    is_transaction: bool = False
    event_id: Optional[str] = None
    level: int = 0
    children: list["SpanNode"] = Field(default_factory=list)


def _trace_event(item_type: Optional[str], payload: dict[str, Any]) -> TraceEvent:
    if item_type == "transaction":
        event_type = "transaction"
    elif payload.get("exception") or payload.get("level") == "error":
        event_type = "error"
    else:
        event_type = str(payload.get("type") or "unknown")
    message = payload.get("message")
    return TraceEvent(
        event_id=str(payload.get("event_id") or ""),
        type=event_type,
        timestamp=to_epoch_seconds(payload.get("timestamp")),
        start_timestamp=to_epoch_seconds(payload.get("start_timestamp")),
        transaction=payload.get("transaction") if isinstance(payload.get("transaction"), str) else None,
        trace_context=payload["contexts"]["trace"],
        spans=[s for s in payload.get("spans") or [] if isinstance(s, dict) and s.get("span_id")],
        level=payload.get("level") if isinstance(payload.get("level"), str) else None,
        message=message if isinstance(message, str) else None,
    )


def trace_events(container: EventContainer) -> list[TraceEvent]:
    envelope = container.get_parsed_envelope()
    if envelope is None:
        return []
    events = []
    for item in envelope.items:
        if item.type not in ("event", "transaction") or not isinstance(item.payload, dict):
            continue
        context = get_nested(item.payload, "contexts.trace")
        if isinstance(context, dict) and context.get("trace_id"):
            events.append(_trace_event(item.type, item.payload))
    return events


def _finish_duration(trace: TraceSummary) -> None:
    if not trace.start_timestamp:
        return
    latest = trace.start_timestamp
    for event in trace.events:
        if event.timestamp and event.timestamp > latest:
            latest = event.timestamp
        for span in event.spans:
            end = to_epoch_seconds(span.get("timestamp"))
            if end and end > latest:
                latest = end
    trace.duration = get_duration(latest, trace.start_timestamp)


def extract_traces(containers: Iterable[EventContainer]) -> dict[str, TraceSummary]:
    """Group trace events by trace id, in first-seen order."""
    traces: dict[str, TraceSummary] = {}
    for container in containers:
        try:
            events = trace_events(container)
        except Exception as e:
            logger.warning("Could not extract traces from %s: %s", container.envelope_id, e)
            continue
        for event in events:
            trace_id = str(event.trace_context["trace_id"])
            trace = traces.setdefault(trace_id, TraceSummary(trace_id=trace_id))
            trace.events.append(event)
            if event.type == "error":
                trace.error_count += 1
            trace.span_count += len(event.spans)
            if event.transaction and not trace.root_transaction:
                trace.root_transaction = event.transaction
            started = event.start_timestamp or event.timestamp
            if started and (not trace.start_timestamp or started < trace.start_timestamp):
                trace.start_timestamp = started

    for trace in traces.values():
        _finish_duration(trace)
    return traces


def find_trace(traces: dict[str, TraceSummary], trace_id: str) -> Optional[TraceSummary]:
    """Exact id, else the first trace whose id starts with `trace_id`."""
    if trace_id in traces:
        return traces[trace_id]
    if not trace_id or len(trace_id) >= 32:
        return None
    for candidate_id, trace in traces.items():
        if candidate_id.startswith(trace_id):
            return trace
    return None


def _set_levels(node: SpanNode, level: int) -> None:
    node.level = level
    for child in node.children:
        _set_levels(child, level + 1)


def build_span_tree(trace: TraceSummary) -> list[SpanNode]:
    nodes: list[SpanNode] = []
    by_id: dict[str, SpanNode] = {}

    for event in trace.events:
        context = event.trace_context
        if context.get("span_id"):
            node = SpanNode(
                span_id=str(context["span_id"]),
                parent_span_id=context.get("parent_span_id"),
                op=event.type,
                description=event.transaction or event.message or "unnamed",
                is_transaction=event.type == "transaction" or bool(event.transaction),
                event_id=event.event_id,
                duration=get_duration(event.timestamp, event.start_timestamp),
            )
            nodes.append(node)
            by_id[node.span_id] = node

        for span in event.spans:
            span_id = str(span["span_id"])
            if span_id in by_id:
                continue
            duration = span.get("duration")
            if not isinstance(duration, (int, float)):
                duration = get_duration(span.get("timestamp"), span.get("start_timestamp"))
            node = SpanNode(
                span_id=span_id,
                parent_span_id=span.get("parent_span_id") or context.get("span_id"),
                op=span.get("op"),
                description=span.get("description") or "unnamed",
                duration=round(duration) if duration is not None else None,
                status=span.get("status"),
            )
            nodes.append(node)
            by_id[span_id] = node

    roots: list[SpanNode] = []
    orphans: dict[str, list[SpanNode]] = {}
    for node in nodes:
        if not node.parent_span_id:
            roots.append(node)
        elif node.parent_span_id in by_id:
            parent = by_id[node.parent_span_id]
            parent.children.append(node)
            node.level = parent.level + 1
        else:
            orphans.setdefault(node.parent_span_id, []).append(node)

    # Spans whose parent never arrived are grouped under a placeholder.
    for parent_id, children in orphans.items():
        placeholder = SpanNode(
            span_id=parent_id,
            op="orphan",
            description="missing or unknown parent span",
            children=children,
        )
        if len(roots) == 1:
            roots[0].children.append(placeholder)
            _set_levels(placeholder, roots[0].level + 1)
        else:
            roots.append(placeholder)
            _set_levels(placeholder, 0)

    for node in nodes:
        node.children.sort(key=lambda child: child.duration if child.duration is not None else -1, reverse=True)

    if len(roots) > 1:
        roots.sort(key=lambda root: root.duration or 0, reverse=True)
        for root in roots:
            _set_levels(root, 1)
        return [SpanNode(
            span_id=trace.trace_id[:16],
            op="trace",
            description=f"Trace {trace.trace_id[:8]}",
            duration=trace.duration,
            children=roots,
        )]
    return roots


def _display_name(node: SpanNode) -> str:
    if node.is_transaction:
        return node.description or "unnamed transaction"
    return node.description or node.op or "unnamed"


def render_span_tree(roots: list[SpanNode]) -> list[str]:
    lines: list[str] = []

    def render(node: SpanNode, prefix: str, is_last: bool, is_root: bool) -> None:
        connector = "" if is_root else ("└─ " if is_last else "├─ ")
        duration = f"{node.duration}ms" if node.duration else "unknown"
        op = ""
        if not node.is_transaction and node.op and node.op not in HIDDEN_OPS:
            op = f" · {node.op}"
        lines.append(f"{prefix}{connector}{_display_name(node)} [{node.span_id[:8]}{op} · {duration}]")
        child_prefix = prefix if is_root else prefix + ("   " if is_last else "│  ")
        for index, child in enumerate(node.children):
            render(child, child_prefix, index == len(node.children) - 1, False)

    for index, root in enumerate(roots):
        render(root, "", index == len(roots) - 1, True)
    return lines


def format_trace_summary(trace: TraceSummary) -> str:
    duration = f"{trace.duration}ms" if trace.duration else "unknown"
    return (
        f"**{trace.trace_id[:8]}** | {trace.root_transaction or 'unnamed'} | {duration} | "
        f"{trace.span_count} spans | {trace.error_count} errors | {format_timestamp(trace.start_timestamp)}"
    )
