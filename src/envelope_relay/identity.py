"""
Caller identity for tool calls.

The identity is derived from one request and carried in a ContextVar for the
dynamic extent of that call only; concurrent calls never see each other's.
"""

import contextvars
import re
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional

from pydantic import BaseModel

DEFAULT_USER_AGENT = "mcp-client"
UNKNOWN = "unknown"
LOOPBACK = "127.0.0.1"

_UA_TOKEN = re.compile(r"^([^/\s]+)")
_UA_UNSAFE = re.compile(r"[^\w.-]")


class CallerIdentity(BaseModel):
    name: str = UNKNOWN
    transport: str = "http"
    user_agent: Optional[str] = None
    origin: Optional[str] = None


STDIO_CALLER = CallerIdentity(name="stdio", transport="stdio")
ANONYMOUS_CALLER = CallerIdentity()

_current: contextvars.ContextVar[Optional[CallerIdentity]] = contextvars.ContextVar(
    "envelope_relay_caller", default=None,
)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.title())
    return value or None


def _user_agent_token(user_agent: str) -> Optional[str]:
    if user_agent == DEFAULT_USER_AGENT:
        return None
    match = _UA_TOKEN.match(user_agent)
    return match.group(1).lower() if match else None


def _origin_name(headers: Mapping[str, str]) -> Optional[str]:
    forwarded = _header(headers, "x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return f"client-{first}"
    real_ip = _header(headers, "cf-connecting-ip") or _header(headers, "x-real-ip")
    if real_ip and real_ip != LOOPBACK:
        return f"client-{real_ip}"
    return None


def _sanitized(user_agent: str) -> str:
    return _UA_UNSAFE.sub("", user_agent)[:20] or UNKNOWN


def from_request_parts(
    headers: Mapping[str, str],
    query: Optional[Mapping[str, str]] = None,
    client_host: Optional[str] = None,
    transport: str = "http",
) -> CallerIdentity:
    """Name the caller from the first usable signal.

    Order: `client` query param, `x-client-id` header, the user agent's
    product token, a forwarded client address, the sanitized user agent.
    """
    query = query or {}
    user_agent = _header(headers, "user-agent") or DEFAULT_USER_AGENT
    candidates = (
        lambda: query.get("client"),
        lambda: _header(headers, "x-client-id"),
        lambda: _user_agent_token(user_agent),
        lambda: _origin_name(headers),
        lambda: _sanitized(user_agent),
    )
    name = UNKNOWN
    for candidate in candidates:
        value = candidate()
        if value and value != UNKNOWN:
            name = value
            break

    origin = (
        _header(headers, "x-forwarded-for")
        or _header(headers, "cf-connecting-ip")
        or _header(headers, "x-real-ip")
        or client_host
    )
    return CallerIdentity(name=name, transport=transport, user_agent=user_agent, origin=origin)


def from_request(request: Any) -> CallerIdentity:
    """Identity of a Starlette request; anonymous when there is none."""
    if request is None:
        return ANONYMOUS_CALLER
    client = getattr(request, "client", None)
    return from_request_parts(request.headers, request.query_params, client.host if client else None)


@contextmanager
def caller_scope(identity: CallerIdentity) -> Iterator[CallerIdentity]:
    token = _current.set(identity)
    try:
        yield identity
    finally:
        _current.reset(token)


def current_caller() -> Optional[CallerIdentity]:
    return _current.get()


def current_caller_or_default() -> CallerIdentity:
    return _current.get() or ANONYMOUS_CALLER
