"""History buffer and session registry."""

import pytest

from envelope_relay.buffer import HistoryBuffer
from envelope_relay.sessions import SessionRegistry, new_session_id


def test_read_is_most_recent_first():
    buf = HistoryBuffer(3)
    for i in range(3):
        buf.put(i)
    assert buf.read() == [2, 1, 0]
    assert buf.get_all() == [0, 1, 2]


def test_evicts_oldest_at_capacity():
    buf = HistoryBuffer(5)
    for i in range(6):
        buf.put(i)
    assert buf.size() == 5
    assert buf.read() == [5, 4, 3, 2, 1]


def test_size_never_exceeds_capacity():
    buf = HistoryBuffer(4)
    for i in range(100):
        buf.put(i)
        assert len(buf) <= 4


def test_clear():
    buf = HistoryBuffer(2)
    buf.put("a")
    buf.clear()
    assert buf.read() == []
    assert buf.size() == 0


def test_max_age_filters_old_items(monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr("envelope_relay.buffer.time.time", lambda: clock[0])
    buf = HistoryBuffer(10)
    buf.put("old")
    clock[0] += 120
    buf.put("new")
    assert buf.read(max_age=60) == ["new"]
    assert buf.read() == ["new", "old"]


def test_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        HistoryBuffer(0)


class TestSessionRegistry:
    def test_creates_lazily(self):
        reg = SessionRegistry(capacity=3)
        assert reg.get("a") is None
        buf = reg.get_buffer("a")
        assert reg.get_buffer("a") is buf
        assert "a" in reg

    def test_sessions_are_isolated(self):
        reg = SessionRegistry(capacity=3)
        reg.get_buffer("a").put(1)
        reg.get_buffer("b").put(2)
        reg.get_buffer("a").clear()
        assert reg.get_buffer("b").read() == [2]

    def test_evicts_idle_but_not_pinned(self):
        reg = SessionRegistry(capacity=3, idle_ttl=10, pinned={"keep"})
        reg.get_buffer("keep")
        reg.get_buffer("stale")
        far_future = reg.get("stale").last_access + 11
        assert reg.evict_idle(now=far_future) == ["stale"]
        assert "keep" in reg
        assert "stale" not in reg

    def test_no_eviction_without_ttl(self):
        reg = SessionRegistry(capacity=3, idle_ttl=None)
        reg.get_buffer("a")
        assert reg.evict_idle(now=1e12) == []

    def test_session_ids_are_unique(self):
        assert len({new_session_id() for _ in range(100)}) == 100
