"""Shared envelope fixtures."""

import pytest

from envelope_relay import build_envelope

SENTRY = "application/x-sentry-envelope"
TRACE_ID = "71a8c5e41ae1044dee67f50a07538fe7"


def error_event(event_id="e1", message="boom", exc_type="ValueError", in_app_file="app.py"):
    return {
        "event_id": event_id,
        "timestamp": 1700000000.5,
        "level": "error",
        "platform": "python",
        "contexts": {"trace": {"trace_id": TRACE_ID, "span_id": "aaaaaaaaaaaaaaaa"}},
        "exception": {
            "values": [{
                "type": exc_type,
                "value": message,
                "stacktrace": {"frames": [
                    {"filename": "lib.py", "lineno": 3, "function": "helper", "in_app": False},
                    {"filename": in_app_file, "lineno": 42, "function": "handler", "in_app": True,
                     "context_line": "    raise ValueError(msg)"},
                    {"filename": "lib.py", "lineno": 9, "function": "inner", "in_app": False},
                ]},
            }],
        },
        "tags": {"route": "/checkout"},
    }


def transaction_event(event_id="t1", name="GET /checkout", trace_id=TRACE_ID):
    return {
        "event_id": event_id,
        "transaction": name,
        "start_timestamp": 1700000000.0,
        "timestamp": 1700000000.25,
        "contexts": {"trace": {"trace_id": trace_id, "span_id": "bbbbbbbbbbbbbbbb", "op": "http.server",
                               "status": "ok"}},
        "spans": [
            {"span_id": "cccccccccccccccc", "parent_span_id": "bbbbbbbbbbbbbbbb", "op": "db.query",
             "description": "SELECT 1", "start_timestamp": 1700000000.05, "timestamp": 1700000000.15},
            {"span_id": "dddddddddddddddd", "parent_span_id": "cccccccccccccccc", "op": "db.fetch",
             "description": "fetch rows", "start_timestamp": 1700000000.06, "timestamp": 1700000000.08},
        ],
    }


def log_event(*bodies):
    return {
        "items": [
            {"timestamp": 1700000000.0 + i, "level": "info", "body": body,
             "attributes": {"user": {"value": "ada", "type": "string"},
                            "sentry.sdk.name": {"value": "sentry.python", "type": "string"}}}
            for i, body in enumerate(bodies)
        ],
    }


def envelope_bytes(*items, event_id=None, sdk="sentry.python"):
    header = {"sdk": {"name": sdk}}
    if event_id:
        header["event_id"] = event_id
    return build_envelope(header, items)


@pytest.fixture
def error_envelope():
    return envelope_bytes(({"type": "event"}, error_event()), event_id="e1")


@pytest.fixture
def trace_envelope():
    return envelope_bytes(({"type": "transaction"}, transaction_event()), event_id="t1")


@pytest.fixture
def log_envelope():
    return envelope_bytes(({"type": "log", "item_count": 2}, log_event("started", "finished")))
