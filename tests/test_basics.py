"""Basic unit tests for envelope-relay package."""

import uuid

from envelope_relay import (
    AVAILABLE_FORMATTERS,
    DecodeError,
    EventKind,
    LookupMiss,
    RelayError,
    RelayService,
    SessionNotFound,
    ToolProtocolFacade,
    TransportConnectionFailure,
    UnknownFormatError,
    UnknownKind,
    __version__,
)
from envelope_relay import ids
from envelope_relay.ids import uuid7


def test_version():
    assert __version__ == "0.1.0"


def test_public_exports():
    assert RelayService is not None
    assert ToolProtocolFacade is not None
    assert set(AVAILABLE_FORMATTERS) == {"human", "logfmt", "json", "md"}


def test_error_hierarchy():
    for cls in (DecodeError, UnknownKind, SessionNotFound, LookupMiss, UnknownFormatError, TransportConnectionFailure):
        assert issubclass(cls, RelayError)
    assert issubclass(UnknownFormatError, ValueError)


def test_error_attributes():
    err = RelayError(code="test_code", message="something broke")
    assert err.code == "test_code"
    assert str(err) == "something broke"
    assert err.details is None

    miss = LookupMiss("abc", session_id="s1")
    assert miss.code == "lookup_miss"
    assert miss.details == {"event_id": "abc", "session_id": "s1"}


def test_event_kind_values():
    assert EventKind.ERROR == "error"
    assert EventKind.UNRECOGNIZED.value == "unrecognized"


def test_uuid7_is_time_sortable():
    ids = [uuid7() for _ in range(50)]
    assert all(u.version == 7 for u in ids)
    assert [str(u) for u in ids] == sorted(str(u) for u in ids)


class TestUuid7Counter:
    def test_same_millisecond_counts_up(self, monkeypatch):
        monkeypatch.setattr(ids, "_now_ms", lambda: 1_700_000_000_000)
        monkeypatch.setattr(ids, "_last_ms", 1_700_000_000_000)
        monkeypatch.setattr(ids, "_last_rand", 41)
        first = ids.uuid7()
        second = ids.uuid7()
        assert first == ids.compose(1_700_000_000_000, 42)
        assert second == ids.compose(1_700_000_000_000, 43)
        assert str(first) < str(second)

    def test_exhausted_counter_borrows_next_millisecond(self, monkeypatch):
        monkeypatch.setattr(ids, "_now_ms", lambda: 1_700_000_000_000)
        monkeypatch.setattr(ids, "_last_ms", 1_700_000_000_000)
        monkeypatch.setattr(ids, "_last_rand", (1 << ids.RAND_BITS) - 1)
        previous = ids.compose(1_700_000_000_000, (1 << ids.RAND_BITS) - 1)
        nxt = ids.uuid7()
        assert nxt == ids.compose(1_700_000_000_001, 0)
        assert nxt.version == 7
        assert nxt.variant == uuid.RFC_4122
        assert str(previous) < str(nxt)

    def test_clock_going_back_keeps_order(self, monkeypatch):
        monkeypatch.setattr(ids, "_last_ms", 1_700_000_000_500)
        monkeypatch.setattr(ids, "_last_rand", 0)
        monkeypatch.setattr(ids, "_now_ms", lambda: 1_700_000_000_000)
        assert ids.uuid7() == ids.compose(1_700_000_000_500, 1)

    def test_compose_layout(self):
        value = ids.compose(0xFFFFFFFFFFFF, (1 << ids.RAND_BITS) - 1)
        assert value.version == 7
        assert value.variant == uuid.RFC_4122
        assert str(value) == "ffffffff-ffff-7fff-bfff-ffffffffffff"
