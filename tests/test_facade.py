"""MCP tool facade."""

import pytest
from conftest import SENTRY, TRACE_ID, envelope_bytes, error_event, log_event, transaction_event

from envelope_relay import RelayService, ToolProtocolFacade, TransportConnectionFailure
from envelope_relay.facade import NO_ERRORS, NO_LOGS, InteractionType, paginate
from envelope_relay.identity import CallerIdentity, caller_scope


def _texts(result):
    if isinstance(result, tuple):
        result = result[0]
    return [block.text for block in result]


@pytest.fixture
def service():
    service = RelayService()
    service.ingest(None, SENTRY, envelope_bytes(({"type": "event"}, error_event(event_id="e1", message="first"))))
    service.ingest(None, SENTRY, envelope_bytes(({"type": "event"}, error_event(event_id="e2", message="second"))))
    service.ingest(None, SENTRY, envelope_bytes(({"type": "transaction"}, transaction_event())))
    return service


def test_connect_is_idempotent(service):
    facade = ToolProtocolFacade(service)
    server = facade.connect()
    assert facade.connect() is server
    assert facade.connected
    opens = [i for i in facade.interactions() if i.method is InteractionType.CONNECTION_OPEN]
    assert len(opens) == 1


def test_connect_failure_is_tracked_and_raised(service):
    def broken():
        raise RuntimeError("port exploded")

    facade = ToolProtocolFacade(service, server_factory=broken)
    with pytest.raises(TransportConnectionFailure) as info:
        facade.connect()
    assert isinstance(info.value.__cause__, RuntimeError)
    assert not facade.connected
    last = facade.interactions()[-1]
    assert last.method is InteractionType.CONNECTION_ERROR
    assert last.success is False
    assert last.error == "port exploded"


def test_paginate():
    assert paginate([1, 2, 3, 4], limit=2, offset=1) == [2, 3]
    assert paginate([1, 2, 3], offset=2) == [3]
    assert paginate([1, 2, 3]) == [1, 2, 3]


class TestTools:
    @pytest.mark.asyncio
    async def test_registered_tools(self, service):
        tools = await ToolProtocolFacade(service).server.list_tools()
        assert {tool.name for tool in tools} == {
            "get_local_errors", "get_local_logs", "get_local_traces", "get_events_for_trace", "get_event_by_id",
        }

    @pytest.mark.asyncio
    async def test_get_local_errors(self, service):
        facade = ToolProtocolFacade(service)
        texts = _texts(await facade.server.call_tool("get_local_errors", {}))
        assert len(texts) == 2
        assert texts[0].startswith("## ValueError: second")
        assert "app.py" in texts[0]

        paged = _texts(await facade.server.call_tool("get_local_errors", {"limit": 1, "offset": 1}))
        assert len(paged) == 1
        assert paged[0].startswith("## ValueError: first")

    @pytest.mark.asyncio
    async def test_empty_results_explain_themselves(self):
        facade = ToolProtocolFacade(RelayService())
        assert _texts(await facade.server.call_tool("get_local_errors", {})) == [NO_ERRORS]
        assert _texts(await facade.server.call_tool("get_local_logs", {})) == [NO_LOGS]

    @pytest.mark.asyncio
    async def test_get_local_logs(self):
        service = RelayService()
        service.ingest("dev", SENTRY, envelope_bytes(({"type": "log"}, log_event("one", "two"))))
        facade = ToolProtocolFacade(service)
        texts = _texts(await facade.server.call_tool("get_local_logs", {"session": "dev"}))
        assert len(texts) == 2

    @pytest.mark.asyncio
    async def test_traces_and_span_tree(self):
        service = RelayService()
        service.ingest(None, SENTRY, envelope_bytes(({"type": "transaction"}, transaction_event())))
        facade = ToolProtocolFacade(service)
        summary = _texts(await facade.server.call_tool("get_local_traces", {}))
        assert summary[0].startswith("# Local Traces (1 found)")
        assert summary[1].startswith(f"**{TRACE_ID[:8]}** | GET /checkout | 250ms")

        tree = _texts(await facade.server.call_tool("get_events_for_trace", {"trace_id": TRACE_ID[:8]}))
        assert tree[0].splitlines()[0] == "GET /checkout [bbbbbbbb · 250ms]"

        missing = _texts(await facade.server.call_tool("get_events_for_trace", {"trace_id": "ffff"}))
        assert "not found" in missing[0]

    @pytest.mark.asyncio
    async def test_errors_count_towards_their_trace(self, service):
        facade = ToolProtocolFacade(service)
        summary = _texts(await facade.server.call_tool("get_local_traces", {}))
        assert "| 2 spans | 2 errors |" in summary[1]

        tree = _texts(await facade.server.call_tool("get_events_for_trace", {"trace_id": TRACE_ID}))
        assert tree[0].splitlines()[0].startswith(f"Trace {TRACE_ID[:8]} [")

    @pytest.mark.asyncio
    async def test_get_event_by_id(self, service):
        facade = ToolProtocolFacade(service)
        found = _texts(await facade.server.call_tool("get_event_by_id", {"event_id": "e1"}))
        assert found[0].startswith("## ValueError: first")
        missing = _texts(await facade.server.call_tool("get_event_by_id", {"event_id": "nope"}))
        assert "not found" in missing[0]


class TestTracking:
    @pytest.mark.asyncio
    async def test_tool_calls_are_attributed(self, service):
        facade = ToolProtocolFacade(service)
        with caller_scope(CallerIdentity(name="cursor")):
            await facade.server.call_tool("get_local_errors", {"limit": 1})
        success = [i for i in facade.interactions() if i.method is InteractionType.TOOL_CALL_SUCCESS]
        assert len(success) == 1
        assert success[0].tool == "get_local_errors"
        assert success[0].client == "cursor"
        assert success[0].input["limit"] == 1

    @pytest.mark.asyncio
    async def test_tool_failures_are_tracked_and_reraised(self, service, monkeypatch):
        facade = ToolProtocolFacade(service)

        def explode(*args, **kwargs):
            raise RuntimeError("buffer gone")

        monkeypatch.setattr(service, "read_containers", explode)
        with pytest.raises(Exception):
            await facade.server.call_tool("get_local_errors", {})
        errors = [i for i in facade.interactions() if i.method is InteractionType.TOOL_CALL_ERROR]
        assert len(errors) == 1
        assert errors[0].error == "buffer gone"
        assert errors[0].metadata["error_type"] == "RuntimeError"

    def test_interaction_history_is_bounded(self, service):
        facade = ToolProtocolFacade(service, history_size=3)
        for _ in range(10):
            facade.track_connection_close()
        assert len(facade.interactions()) == 3
