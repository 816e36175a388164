"""
envelope-relay: local relay for error, log and trace envelopes.

Instrumented apps POST envelopes; the relay buffers recent history per
session and serves it over SSE, a terminal tail, and MCP tools.
"""

from envelope_relay.buffer import HistoryBuffer
from envelope_relay.config import RelaySettings, load_settings
from envelope_relay.container import EventContainer
from envelope_relay.errors import (
    DecodeError,
    LookupMiss,
    RelayError,
    SessionNotFound,
    TransportConnectionFailure,
    UnknownFormatError,
    UnknownKind,
)
from envelope_relay.facade import ToolProtocolFacade
from envelope_relay.formatters.registry import AVAILABLE_FORMATTERS, get_formatter
from envelope_relay.models.envelope import Envelope, EnvelopeItem, EventKind, ItemHeader
from envelope_relay.server import create_app
from envelope_relay.service import RelayService
from envelope_relay.sessions import SessionRegistry, new_session_id
from envelope_relay.transport.envelope import build_envelope, parse_envelope

__version__ = "0.1.0"
__all__ = [
    "RelayService",
    "ToolProtocolFacade",
    "create_app",
    "RelaySettings",
    "load_settings",
    "EventContainer",
    "HistoryBuffer",
    "SessionRegistry",
    "new_session_id",
    "Envelope",
    "EnvelopeItem",
    "ItemHeader",
    "EventKind",
    "parse_envelope",
    "build_envelope",
    "get_formatter",
    "AVAILABLE_FORMATTERS",
    "RelayError",
    "DecodeError",
    "UnknownKind",
    "SessionNotFound",
    "LookupMiss",
    "UnknownFormatError",
    "TransportConnectionFailure",
]
