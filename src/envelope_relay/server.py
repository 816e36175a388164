"""
HTTP surface of the relay: ingestion, SSE stream, history, lookup, source
context for stack frames, MCP.

Every route picks its session from the `x-relay-session` header or the
`session` query parameter, falling back to the service's default session.
"""

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse

from envelope_relay.config import RelaySettings
from envelope_relay.container import EventContainer
from envelope_relay.contextlines import apply_source_context
from envelope_relay.errors import DecodeError, RelayError
from envelope_relay.facade import ToolProtocolFacade
from envelope_relay.formatters.base import FormatterFamily
from envelope_relay.formatters.registry import get_formatter
from envelope_relay.models.envelope import SENTRY_CONTENT_TYPE, EventKind
from envelope_relay.service import RelayService
from envelope_relay.transport.envelope import decompress_body

logger = logging.getLogger("envelope_relay.server")

SESSION_HEADER = "x-relay-session"
NO_CACHE = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
SSE_HEADERS = {**NO_CACHE, "X-Accel-Buffering": "no"}


def _session(request: Request) -> Optional[str]:
    return request.headers.get(SESSION_HEADER) or request.query_params.get("session") or None


def _content_type(request: Request) -> Optional[str]:
    content_type = request.headers.get("content-type")
    content_type = content_type.split(";")[0].strip().lower() if content_type else None
    # Browser SDKs send envelopes as text/plain to avoid CORS preflights.
    sentry_client = request.query_params.get("sentry_client") or ""
    if sentry_client.startswith("sentry.javascript.browser") and request.headers.get("origin"):
        content_type = SENTRY_CONTENT_TYPE
    return content_type or None


def parse_kinds(raw: Optional[str]) -> Optional[list[EventKind]]:
    """`error,log` style filter. Raises RelayError on an unknown kind."""
    if not raw:
        return None
    kinds = []
    for name in raw.split(","):
        name = name.strip().lower().rstrip("s")
        if not name:
            continue
        try:
            kinds.append(EventKind(name))
        except ValueError:
            raise RelayError("unknown_kind", f"Unknown event kind {name!r}", {"available": ["error", "log", "trace"]}) from None
    return kinds


def _join(family: FormatterFamily, lines: list[str]) -> str:
    return ("\n\n" if family.name == "md" else "\n").join(lines)


def sse_message(event_id: str, event: str, data: str) -> str:
    body = "".join(f"data: {line}\n" for line in data.split("\n"))
    return f"id: {event_id}\nevent: {event}\n{body}\n"


def _sse_payload(container: EventContainer, family: Optional[FormatterFamily], service: RelayService) -> Optional[str]:
    if family is not None:
        lines = service.render_container(container, family)
        return _join(family, lines) if lines else None
    envelope = container.get_parsed_envelope()
    if envelope is None:
        return None
    return json.dumps(envelope.to_json_compatible(), separators=(",", ":"), default=str)


def create_app(
    service: Optional[RelayService] = None,
    settings: Optional[RelaySettings] = None,
    facade: Optional[ToolProtocolFacade] = None,
    mcp: bool = True,
) -> FastAPI:
    settings = settings or RelaySettings()
    service = service or RelayService(
        buffer_size=settings.buffer_size,
        idle_ttl=settings.session_idle_ttl,
        queue_size=settings.subscriber_queue_size,
    )
    if mcp and facade is None:
        facade = ToolProtocolFacade(service)
    mcp_app = facade.http_app() if mcp and facade is not None else None

    @asynccontextmanager
    async def _lifespan(_: FastAPI):
        async with AsyncExitStack() as stack:
            if mcp_app is not None:
                await stack.enter_async_context(facade.server.session_manager.run())
            logger.info("Relay listening on %s (session %s)", settings.base_url, service.default_session_id)
            yield

    app = FastAPI(
        title="envelope-relay",
        description="Local relay for error, log and trace envelopes.",
        lifespan=_lifespan,
    )
    app.state.service = service
    app.state.settings = settings
    app.state.facade = facade

    @app.exception_handler(RelayError)
    async def relay_error(_: Request, exc: RelayError) -> JSONResponse:
        return JSONResponse({"code": exc.code, "message": str(exc), "details": exc.details}, status_code=400)

    async def ingest(request: Request) -> Response:
        content_type = _content_type(request)
        if content_type is None:
            logger.warning("No content type, skipping payload...")
            return Response(status_code=200, headers=NO_CACHE)
        try:
            body = decompress_body(await request.body(), request.headers.get("content-encoding"))
        except DecodeError as e:
            logger.warning("%s, skipping payload", e)
            return Response(status_code=200, headers=NO_CACHE)
        container = service.ingest(_session(request), content_type, body, request.headers.get("user-agent"))
        logger.debug("Received %s from %s", container.get_event_kinds_string(), container.user_agent or "unknown")
        return Response(status_code=200, headers=NO_CACHE)

    app.add_api_route("/stream", ingest, methods=["POST"])
    app.add_api_route("/api/{project_id}/envelope/", ingest, methods=["POST"])
    app.add_api_route("/api/{project_id}/envelope", ingest, methods=["POST"], include_in_schema=False)

    @app.get("/stream")
    async def stream(request: Request, format: Optional[str] = None) -> StreamingResponse:
        family = get_formatter(format) if format else None
        session_id = _session(request)

        async def event_stream() -> AsyncIterator[str]:
            yield ": connected\n\n"
            async for container in service.subscribe(session_id):
                payload = _sse_payload(container, family, service)
                if payload is not None:
                    yield sse_message(container.envelope_id, container.get_content_type(), payload)

        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.get("/history")
    async def history(
        request: Request,
        format: Optional[str] = None,
        kinds: Optional[str] = None,
        duration: Optional[float] = None,
    ) -> PlainTextResponse:
        family = get_formatter(format or settings.default_format)
        lines = service.read_history(_session(request), family, parse_kinds(kinds), duration)
        return PlainTextResponse(_join(family, lines), headers={"Cache-Control": "no-cache"})

    @app.delete("/clear")
    async def clear(request: Request) -> PlainTextResponse:
        service.clear_history(_session(request))
        return PlainTextResponse("Cleared")

    @app.get("/health")
    async def health() -> PlainTextResponse:
        return PlainTextResponse("OK")

    @app.put("/contextlines")
    async def contextlines(request: Request) -> JSONResponse:
        try:
            stacktrace = json.loads(await request.body())
        except ValueError:
            stacktrace = None
        if not isinstance(stacktrace, dict):
            raise RelayError("invalid_stacktrace", "Expected a JSON stack trace object with `frames`")
        return JSONResponse(apply_source_context(stacktrace))

    @app.get("/events")
    async def events(request: Request, id: Optional[str] = None, format: Optional[str] = None) -> Response:
        if not id:
            return PlainTextResponse("Missing id", status_code=400)
        container = service.find_container(_session(request), id)
        if format:
            family = get_formatter(format)
            return PlainTextResponse(_join(family, service.render_container(container, family)))
        envelope = container.get_parsed_envelope()
        if envelope is None:
            return Response(container.get_data(), media_type=container.get_content_type())
        return JSONResponse(envelope.to_json_compatible())

    if mcp_app is not None:
        app.mount("/mcp", mcp_app)

    return app


def run_server(settings: RelaySettings, service: Optional[RelayService] = None) -> None:
    import uvicorn

    app = create_app(service=service, settings=settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="debug" if settings.debug else "warning")


async def serve(settings: RelaySettings, service: RelayService) -> None:
    """Run the relay on the current event loop until cancelled."""
    import uvicorn

    app = create_app(service=service, settings=settings)
    config = uvicorn.Config(app, host=settings.host, port=settings.port,
                            log_level="debug" if settings.debug else "warning")
    await uvicorn.Server(config).serve()
