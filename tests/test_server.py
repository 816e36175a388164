"""HTTP routes."""

import asyncio
import gzip
import json

import httpx
import pytest
import uvicorn
from conftest import SENTRY, envelope_bytes, error_event, log_event
from fastapi.testclient import TestClient

from envelope_relay import RelayService, create_app
from envelope_relay.server import parse_kinds, sse_message
from envelope_relay.errors import RelayError
from envelope_relay.models.envelope import EventKind


@pytest.fixture
def service():
    return RelayService(default_session_id="main")


@pytest.fixture
def client(service):
    return TestClient(create_app(service=service, mcp=False))


def _post(client, body, **headers):
    headers.setdefault("content-type", SENTRY)
    return client.post("/stream", content=body, headers=headers)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.text == "OK"


def test_ingest_then_history(client, error_envelope):
    assert _post(client, error_envelope).status_code == 200
    response = client.get("/history", params={"format": "json"})
    assert response.status_code == 200
    data = json.loads(response.text)
    assert data["event_id"] == "e1"
    assert data["exception_value"] == "boom"


def test_sdk_ingest_route(client, error_envelope):
    response = client.post("/api/42/envelope/", content=error_envelope, headers={"content-type": SENTRY})
    assert response.status_code == 200
    assert "boom" in client.get("/history").text


def test_gzip_body(client, error_envelope):
    response = _post(client, gzip.compress(error_envelope), **{"content-encoding": "gzip"})
    assert response.status_code == 200
    assert "boom" in client.get("/history", params={"format": "logfmt"}).text


def test_corrupt_gzip_is_dropped(client, service):
    response = _post(client, b"not gzip at all", **{"content-encoding": "gzip"})
    assert response.status_code == 200
    assert service.read_containers() == []


def test_missing_content_type_is_accepted_and_dropped(client, service, error_envelope):
    response = client.post("/stream", content=error_envelope)
    assert response.status_code == 200
    assert service.read_containers() == []


def test_browser_text_plain_is_treated_as_envelope(client, service, error_envelope):
    response = client.post(
        "/api/1/envelope/",
        params={"sentry_client": "sentry.javascript.browser/8.0.0"},
        content=error_envelope,
        headers={"content-type": "text/plain;charset=UTF-8", "origin": "http://localhost:3000"},
    )
    assert response.status_code == 200
    (container,) = service.read_containers()
    assert container.get_content_type() == SENTRY
    assert container.get_parsed_envelope() is not None


def test_history_order_and_kinds(client):
    _post(client, envelope_bytes(({"type": "event"}, error_event(event_id="old", message="first"))))
    _post(client, envelope_bytes(({"type": "log"}, log_event("hello"))))
    _post(client, envelope_bytes(({"type": "event"}, error_event(event_id="new", message="second"))))

    lines = client.get("/history", params={"format": "json"}).text.splitlines()
    assert [json.loads(line)["type"] for line in lines] == ["error", "log", "error"]
    assert json.loads(lines[0])["event_id"] == "new"

    errors_only = client.get("/history", params={"format": "json", "kinds": "errors"}).text.splitlines()
    assert [json.loads(line)["event_id"] for line in errors_only] == ["new", "old"]


def test_history_rejects_unknown_format_and_kind(client):
    response = client.get("/history", params={"format": "xml"})
    assert response.status_code == 400
    assert response.json()["code"] == "unknown_format"

    response = client.get("/history", params={"kinds": "metrics"})
    assert response.status_code == 400
    assert response.json()["code"] == "unknown_kind"


def test_sessions_are_isolated(client, error_envelope):
    _post(client, error_envelope, **{"x-relay-session": "a"})
    assert "boom" in client.get("/history", params={"session": "a"}).text
    assert client.get("/history", headers={"x-relay-session": "b"}).text == ""
    assert client.get("/history").text == ""


def test_clear(client, error_envelope):
    _post(client, error_envelope)
    response = client.delete("/clear")
    assert response.status_code == 200
    assert response.text == "Cleared"
    assert client.get("/history").text == ""


class TestEvents:
    def test_missing_id(self, client):
        assert client.get("/events").status_code == 400

    def test_unknown_id(self, client, error_envelope):
        _post(client, error_envelope)
        response = client.get("/events", params={"id": "nope"})
        assert response.status_code == 400
        assert response.json()["code"] == "lookup_miss"

    def test_unknown_session(self, client):
        response = client.get("/events", params={"id": "e1", "session": "ghost"})
        assert response.status_code == 400
        assert response.json()["code"] == "session_not_found"

    def test_json_by_event_id(self, client, error_envelope):
        _post(client, error_envelope)
        header, items = client.get("/events", params={"id": "e1"}).json()
        assert header["event_id"] == "e1"
        item_header, payload = items[0]
        assert item_header["type"] == "event"
        assert payload["exception"]["values"][0]["value"] == "boom"

    def test_formatted(self, client, error_envelope):
        _post(client, error_envelope)
        text = client.get("/events", params={"id": "e1", "format": "md"}).text
        assert text.startswith("## ValueError: boom")

    def test_raw_payload(self, client, service):
        container = service.ingest(None, "text/plain", b"plain body")
        response = client.get("/events", params={"id": container.envelope_id})
        assert response.status_code == 200
        assert response.content == b"plain body"


def test_app_with_mcp_starts(service):
    with TestClient(create_app(service=service)) as client:
        assert client.get("/health").text == "OK"
        assert client.app.state.facade.connected


def test_parse_kinds():
    assert parse_kinds(None) is None
    assert parse_kinds("errors, logs,trace") == [EventKind.ERROR, EventKind.LOG, EventKind.TRACE]
    with pytest.raises(RelayError):
        parse_kinds("spans")


def test_sse_message_splits_lines():
    assert sse_message("id-1", SENTRY, "a\nb") == f"id: id-1\nevent: {SENTRY}\ndata: a\ndata: b\n\n"


async def _wait_for(predicate, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_stream_delivers_envelopes_ingested_after_subscribing(service, error_envelope):
    app = create_app(service=service, mcp=False)
    server = uvicorn.Server(uvicorn.Config(app, host="127.0.0.1", port=0, log_level="warning", lifespan="off"))
    serving = asyncio.create_task(server.serve())
    try:
        await _wait_for(lambda: server.started)
        port = server.servers[0].sockets[0].getsockname()[1]
        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}", timeout=5.0) as client:
            async with client.stream("GET", "/stream", params={"format": "json"}) as response:
                assert response.headers["content-type"].startswith("text/event-stream")
                lines = response.aiter_lines()
                assert await anext(lines) == ": connected"
                await _wait_for(lambda: service.subscriber_count() == 1)

                service.ingest(None, SENTRY, error_envelope)
                event = None
                async for line in lines:
                    if line.startswith("event:"):
                        event = line[6:].strip()
                    if line.startswith("data:"):
                        data = json.loads(line[5:].strip())
                        break
                assert event == SENTRY
                assert data["event_id"] == "e1"
                assert data["exception_value"] == "boom"

        await _wait_for(lambda: service.subscriber_count() == 0)
    finally:
        server.should_exit = True
        await serving


class TestContextLines:
    def test_adds_source_context(self, client, tmp_path):
        path = tmp_path / "app.py"
        path.write_text("a = 1\nb = 2\nraise ValueError\n")
        response = client.put("/contextlines", json={"frames": [{"filename": str(path), "lineno": 3}]})
        assert response.status_code == 200
        frame = response.json()["frames"][0]
        assert frame["context_line"] == "raise ValueError"
        assert frame["pre_context"] == ["a = 1", "b = 2"]

    def test_rejects_non_json(self, client):
        response = client.put("/contextlines", content=b"nope")
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_stacktrace"
