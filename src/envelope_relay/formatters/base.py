"""
Formatter family contract and event-kind dispatch.

Every family renders the closed set of kinds {error, trace, log}; anything
`classify` cannot place is UNRECOGNIZED and renders to no lines.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Optional

from envelope_relay.models.envelope import Envelope, EnvelopeItem, EventKind

logger = logging.getLogger("envelope_relay.formatters")

Event = dict[str, Any]
Header = dict[str, Any]


def is_trace_event(payload: Any, item_type: Optional[str]) -> bool:
    return isinstance(payload, dict) and item_type == "transaction"


def is_log_event(payload: Any, item_type: Optional[str]) -> bool:
    return isinstance(payload, dict) and item_type == "log" and isinstance(payload.get("items"), list)


def is_error_event(payload: Any, item_type: Optional[str]) -> bool:
    return isinstance(payload, dict) and item_type in (None, "event", "error") and "exception" in payload


# Checked in order; the first match wins.
KIND_PREDICATES: list[tuple[EventKind, Callable[[Any, Optional[str]], bool]]] = [
    (EventKind.TRACE, is_trace_event),
    (EventKind.LOG, is_log_event),
    (EventKind.ERROR, is_error_event),
]


def classify(payload: Any, item_type: Optional[str] = None) -> EventKind:
    """Kind of a payload. `item_type` defaults to the payload's own `type`."""
    if item_type is None and isinstance(payload, dict):
        own_type = payload.get("type")
        item_type = own_type if isinstance(own_type, str) else None
    for kind, predicate in KIND_PREDICATES:
        if predicate(payload, item_type):
            return kind
    return EventKind.UNRECOGNIZED


class FormatterFamily(ABC):
    name: str = ""

    def render(self, event: Any, envelope_header: Optional[Header] = None,
               kind: Optional[EventKind] = None) -> list[str]:
        """Render one decoded item payload. Unrecognized kinds give []."""
        if kind is None:
            kind = classify(event)
        header = envelope_header or {}
        if kind is EventKind.ERROR:
            return self.render_error(event, header)
        if kind is EventKind.TRACE:
            return self.render_trace(event, header)
        if kind is EventKind.LOG:
            return self.render_log(event, header)
        return []

    @abstractmethod
    def render_error(self, event: Event, envelope_header: Header) -> list[str]:
        ...

    @abstractmethod
    def render_trace(self, event: Event, envelope_header: Header) -> list[str]:
        ...

    @abstractmethod
    def render_log(self, event: Event, envelope_header: Header) -> list[str]:
        """One line per entry in the event's `items`."""


def item_kind(item: EnvelopeItem) -> EventKind:
    return classify(item.payload, item.header.type)


def render_item(family: FormatterFamily, item: EnvelopeItem, envelope_header: Header) -> list[str]:
    return family.render(item.payload, envelope_header, item_kind(item))


def render_envelope(
    family: FormatterFamily,
    envelope: Envelope,
    kinds: Optional[Iterable[EventKind]] = None,
) -> list[str]:
    """Render every item, optionally only those of `kinds`.

    A failing item is logged and skipped; the rest of the envelope still renders.
    """
    wanted = set(kinds) if kinds is not None else None
    lines: list[str] = []
    for item in envelope.items:
        kind = item_kind(item)
        if kind is EventKind.UNRECOGNIZED or (wanted is not None and kind not in wanted):
            continue
        try:
            lines.extend(family.render(item.payload, envelope.header, kind))
        except Exception as e:
            logger.warning("%s formatter failed on %s item: %s", family.name, item.header.type, e)
    return lines
