"""
Tool-protocol facade: the relay's read path exposed as MCP tools.

Each tool call runs inside a caller scope derived from the HTTP request that
carried it (or the stdio caller) and is recorded in a bounded interaction
history.
"""

import functools
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from mcp.server.fastmcp import Context, FastMCP
from mcp.types import TextContent
from pydantic import BaseModel, Field

from envelope_relay.buffer import HistoryBuffer
from envelope_relay.errors import LookupMiss, SessionNotFound, TransportConnectionFailure
from envelope_relay.formatters.traces import (
    build_span_tree,
    extract_traces,
    find_trace,
    format_trace_summary,
    render_span_tree,
)
from envelope_relay.ids import new_id
from envelope_relay.identity import (
    STDIO_CALLER,
    CallerIdentity,
    caller_scope,
    current_caller,
    current_caller_or_default,
    from_request,
)
from envelope_relay.models.envelope import EventKind
from envelope_relay.service import RelayService

logger = logging.getLogger("envelope_relay.facade")

SERVER_NAME = "envelope-relay"
INTERACTION_HISTORY_SIZE = 500
MAX_TRACES_LISTED = 20

NO_ERRORS = """**No errors in the relay buffer**

The application has not reported any runtime failures in the requested window.

Next steps:
1. If a problem was reported, reproduce it (click the button, submit the form, load the page) and call this tool again.
2. Widen the window with a larger `duration` (300 or more seconds).
3. Check `get_local_logs` for warnings that did not raise.

An empty result means no exceptions were captured, not that the code is free of bugs."""

NO_LOGS = """**No logs in the relay buffer**

The application has not sent any log records in the requested window.

Next steps:
1. Exercise the feature under investigation and call this tool again.
2. Widen the window with a larger `duration` (300 or more seconds).
3. Make sure the SDK has logging enabled and points at this relay."""

NO_TRACES = (
    "No traces found in the specified time period. Make sure your application is instrumented "
    "for performance monitoring and trigger some requests or transactions."
)
NO_TRACE_CONTEXT = (
    "No traces with trace context found. Ensure your SDK has performance monitoring enabled "
    "and is generating transaction events."
)

DURATION_HELP = "Look back this many seconds. 10 for what just happened, 60 for most cases, 300+ for a broad search."
SESSION_HELP = "Relay session to read. Defaults to the relay's own session."


class InteractionType(str, Enum):
    CONNECTION_OPEN = "connection_open"
    CONNECTION_CLOSE = "connection_close"
    CONNECTION_ERROR = "connection_error"
    REQUEST = "request"
    TOOL_CALL_SUCCESS = "tool_call_success"
    TOOL_CALL_ERROR = "tool_call_error"


class Interaction(BaseModel):
    id: str = Field(default_factory=new_id)
    method: InteractionType
    tool: Optional[str] = None
    input: dict[str, Any] = Field(default_factory=dict)
    output: Optional[dict[str, Any]] = None
    duration_ms: Optional[int] = None
    client: str
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    success: bool = True
    error: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def _text(text: str) -> TextContent:
    return TextContent(type="text", text=text)


def paginate(items: list[Any], limit: Optional[int] = None, offset: int = 0) -> list[Any]:
    offset = max(offset or 0, 0)
    if limit is None:
        return items[offset:] if offset else items
    return items[offset:offset + max(limit, 0)]


def _request_of(ctx: Optional[Context]) -> Any:
    if ctx is None:
        return None
    try:
        return ctx.request_context.request
    except (AttributeError, LookupError, ValueError):
        return None


class ToolProtocolFacade:
    def __init__(
        self,
        service: RelayService,
        server_factory: Optional[Callable[[], FastMCP]] = None,
        default_caller: Optional[CallerIdentity] = None,
        history_size: int = INTERACTION_HISTORY_SIZE,
    ):
        self._service = service
        self._server_factory = server_factory or self._build_server
        self._default_caller = default_caller
        self._interactions: HistoryBuffer[Interaction] = HistoryBuffer(history_size)
        self._mcp: Optional[FastMCP] = None

    @property
    def connected(self) -> bool:
        return self._mcp is not None

    @property
    def server(self) -> FastMCP:
        return self.connect()

    def connect(self) -> FastMCP:
        """Build the MCP server and register the tools. Safe to call repeatedly."""
        if self._mcp is not None:
            return self._mcp
        try:
            server = self._server_factory()
        except Exception as e:
            self.track_connection_error(str(e))
            raise TransportConnectionFailure(f"Could not start the MCP server: {e}") from e
        self._mcp = server
        self.track_connection_open()
        logger.info("MCP server ready")
        return server

    def http_app(self) -> Any:
        """Streamable HTTP ASGI app. Its session manager must be run by the host."""
        return self.connect().streamable_http_app()

    async def run_stdio(self) -> None:
        server = self.connect()
        try:
            with caller_scope(STDIO_CALLER):
                await server.run_stdio_async()
        finally:
            self.track_connection_close(reason="stdio closed")

    # --- tracking ---

    def interactions(self) -> list[Interaction]:
        """Recorded interactions, oldest first."""
        return self._interactions.get_all()

    def _caller(self) -> CallerIdentity:
        return current_caller() or self._default_caller or current_caller_or_default()

    def track(
        self,
        method: InteractionType,
        tool: Optional[str] = None,
        input: Optional[dict[str, Any]] = None,
        output: Optional[dict[str, Any]] = None,
        duration_ms: Optional[int] = None,
        success: bool = True,
        error: Optional[str] = None,
        **metadata: Any,
    ) -> Interaction:
        caller = self._caller()
        interaction = Interaction(
            method=method,
            tool=tool,
            input=input or {},
            output=output,
            duration_ms=duration_ms,
            client=caller.name,
            success=success,
            error=error,
            metadata={"transport": caller.transport, "user_agent": caller.user_agent or "unknown", **metadata},
        )
        self._interactions.put(interaction)
        return interaction

    def track_connection_open(self) -> None:
        self.track(InteractionType.CONNECTION_OPEN, input={"client": self._caller().name}, output={"status": "connected"})

    def track_connection_close(self, reason: Optional[str] = None) -> None:
        self.track(
            InteractionType.CONNECTION_CLOSE,
            input={"client": self._caller().name},
            output={"status": "disconnected", "reason": reason},
        )

    def track_connection_error(self, error: Optional[str] = None) -> None:
        self.track(
            InteractionType.CONNECTION_ERROR,
            input={"client": self._caller().name},
            output={"status": "error"},
            success=False,
            error=error or "Unknown connection error",
        )

    def _tracked(self, name: str, fn: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            ctx = kwargs.get("ctx")
            request = _request_of(ctx)
            identity = from_request(request) if request is not None else self._caller()
            arguments = {k: v for k, v in kwargs.items() if k != "ctx"}
            request_id = new_id()
            with caller_scope(identity):
                self.track(InteractionType.REQUEST, input={"request_type": f"tool_call:{name}"}, request_id=request_id)
                started = time.monotonic()
                try:
                    result = await fn(*args, **kwargs)
                except Exception as e:
                    duration = round((time.monotonic() - started) * 1000)
                    self.track(
                        InteractionType.TOOL_CALL_ERROR, name, arguments, None, duration,
                        success=False, error=str(e), request_id=request_id, error_type=type(e).__name__,
                    )
                    logger.error("Tool %s failed for %s: %s", name, identity.name, e)
                    raise
                duration = round((time.monotonic() - started) * 1000)
                self.track(
                    InteractionType.TOOL_CALL_SUCCESS, name, arguments, {"items": len(result)}, duration,
                    request_id=request_id,
                )
                logger.debug("Tool %s served %s in %dms", name, identity.name, duration)
                return result

        return wrapper

    # --- tools ---

    def _render_kind(self, kind: EventKind, session: Optional[str], duration: Optional[float]) -> list[TextContent]:
        content = []
        for container in self._service.read_containers(session, max_age=duration):
            try:
                content.extend(_text(block) for block in self._service.render_container(container, "md", [kind]))
            except Exception as e:
                logger.warning("Skipping %s: %s", container.envelope_id, e)
        return content

    async def get_local_errors(
        self,
        ctx: Context,
        duration: Optional[float] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        session: Optional[str] = None,
    ):
        content = self._render_kind(EventKind.ERROR, session, duration)
        if not content:
            return [_text(NO_ERRORS)]
        return paginate(content, limit, offset)

    async def get_local_logs(
        self,
        ctx: Context,
        duration: Optional[float] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        session: Optional[str] = None,
    ):
        content = self._render_kind(EventKind.LOG, session, duration)
        if not content:
            return [_text(NO_LOGS)]
        return paginate(content, limit, offset)

    async def get_local_traces(
        self,
        ctx: Context,
        duration: Optional[float] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        session: Optional[str] = None,
    ):
        containers = self._service.read_containers(session, max_age=duration)
        if not containers:
            return [_text(NO_TRACES)]
        traces = extract_traces(containers)
        if not traces:
            return [_text(NO_TRACE_CONTEXT)]

        ordered = sorted(traces.values(), key=lambda t: t.start_timestamp or 0, reverse=True)
        content = [_text(f"# Local Traces ({len(ordered)} found)\n\nRecent traces from your application:\n")]
        content.extend(_text(format_trace_summary(trace)) for trace in ordered[:MAX_TRACES_LISTED])
        content.append(_text(
            "\n**Next Steps:**\nUse `get_events_for_trace` with a trace ID (the first 8 characters "
            "shown above are enough) to see the span tree and timing breakdown of one trace."
        ))
        return paginate(content, limit, offset)

    async def get_events_for_trace(
        self,
        ctx: Context,
        trace_id: str,
        duration: Optional[float] = None,
        session: Optional[str] = None,
    ):
        traces = extract_traces(self._service.read_containers(session, max_age=duration))
        trace = find_trace(traces, trace_id)
        if trace is None:
            return [_text(
                f"Trace `{trace_id}` not found. Use `get_local_traces` to see available traces, "
                "or widen the time window if the trace is older."
            )]
        return [_text("\n".join(render_span_tree(build_span_tree(trace))))]

    async def get_event_by_id(self, ctx: Context, event_id: str, session: Optional[str] = None):
        try:
            blocks = self._service.find_by_id(session, event_id, "md")
        except (SessionNotFound, LookupMiss) as e:
            return [_text(f"Event `{event_id}` not found: {e}")]
        if not blocks:
            return [_text(f"Event `{event_id}` is buffered but carries no error, log or trace data.")]
        return [_text(block) for block in blocks]

    def _build_server(self) -> FastMCP:
        server = FastMCP(
            SERVER_NAME,
            instructions=(
                "Local development relay for error, log and trace telemetry. "
                "Call get_local_errors first when something is broken."
            ),
            stateless_http=True,
            streamable_http_path="/",
        )
        tools = [
            (
                "get_local_errors", "Get Local App Errors", self.get_local_errors,
                "Recent application errors captured by the relay: exception type and message, "
                "the most relevant stack frame, tags and request data. Call this first when the "
                f"user reports something broken or failing. `duration`: {DURATION_HELP} "
                f"`limit`/`offset` paginate the results. `session`: {SESSION_HELP}",
            ),
            (
                "get_local_logs", "Get Local App Logs", self.get_local_logs,
                "Recent structured log records captured by the relay, one block per entry with "
                "timestamp, level, body and attributes. Use it to follow runtime behaviour. "
                f"`duration`: {DURATION_HELP} `limit`/`offset` paginate the results. `session`: {SESSION_HELP}",
            ),
            (
                "get_local_traces", "Get Local Traces", self.get_local_traces,
                "Summaries of recent traces: short trace id, root transaction, duration, span "
                "and error counts. Follow up with get_events_for_trace for one trace's span tree. "
                f"`duration`: {DURATION_HELP} `session`: {SESSION_HELP}",
            ),
            (
                "get_events_for_trace", "Get Events for Trace", self.get_events_for_trace,
                "Span tree of one trace with per-span durations. `trace_id` is the full "
                "32-character id or its first 8 characters as shown by get_local_traces.",
            ),
            (
                "get_event_by_id", "Get Event by ID", self.get_event_by_id,
                "One buffered envelope by event id or relay envelope id, rendered as markdown.",
            ),
        ]
        for name, title, fn, description in tools:
            server.add_tool(self._tracked(name, fn), name=name, title=title, description=description)
        return server
