"""
Field extraction shared by every formatter family.

Payloads come straight off the wire, so every field may be missing, null, or
the wrong type. Helpers here return None (or skip the key) rather than guess.
"""

from datetime import datetime, timezone
from typing import Any, Optional

UNKNOWN_TIME = "??:??:??"

MOBILE_SDK_MARKERS = (
    "cocoa", "android", "react-native", "flutter", "capacitor",
    "cordova", "xamarin", "maui", "unity", "kotlin.kmp",
)

# JavaScript SDKs that run on a server or meta-framework rather than a browser.
NON_BROWSER_JS_MARKERS = (
    "node", "bun", "deno", "electron", "serverless", "cloudflare", "vercel-edge",
    "wasm", "opentelemetry", "nextjs", "remix", "gatsby", "astro", "nuxt",
    "sveltekit", "solidstart", "nestjs", "tanstackstart",
)


def get_nested(source: Any, path: str) -> Any:
    current = source
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def map_fields(source: Any, data: dict[str, Any], mapping: dict[str, str]) -> None:
    """Copy `source[path]` into `data[key]` for each present, non-null value."""
    for key, path in mapping.items():
        value = get_nested(source, path)
        if value is not None and value != "":
            data[key] = value


def to_epoch_seconds(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return None
    return None


def format_timestamp(value: Any) -> str:
    """ISO-8601 UTC with milliseconds; the epoch when `value` is missing or invalid."""
    seconds = to_epoch_seconds(value) or 0.0
    try:
        moment = datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        moment = datetime.fromtimestamp(0, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_local_time(value: Any) -> str:
    """HH:MM:SS in local time; now when missing, a same-width placeholder when invalid."""
    if value is None or value == "":
        return datetime.now().strftime("%H:%M:%S")
    seconds = to_epoch_seconds(value)
    if seconds is None:
        return UNKNOWN_TIME
    try:
        return datetime.fromtimestamp(seconds).strftime("%H:%M:%S")
    except (OverflowError, OSError, ValueError):
        return UNKNOWN_TIME


def get_duration(end: Any, start: Any) -> Optional[int]:
    """Milliseconds between two second-based timestamps."""
    end_s = to_epoch_seconds(end)
    start_s = to_epoch_seconds(start)
    if end_s is None or start_s is None:
        return None
    return round((end_s - start_s) * 1000)


def categorize_sdk(envelope_header: Optional[dict[str, Any]]) -> str:
    """`browser`, `mobile` or `server`, judged from the envelope's `sdk.name`."""
    name = get_nested(envelope_header or {}, "sdk.name")
    name = name if isinstance(name, str) else ""
    if any(marker in name for marker in MOBILE_SDK_MARKERS):
        return "mobile"
    if name.startswith("sentry.javascript.") and not any(m in name for m in NON_BROWSER_JS_MARKERS):
        return "browser"
    if "blazor.webassembly" in name:
        return "browser"
    return "server"


def primary_exception(event: dict[str, Any]) -> Optional[dict[str, Any]]:
    exception = event.get("exception")
    if not isinstance(exception, dict):
        return None
    values = exception.get("values")
    if isinstance(values, list):
        for value in values:
            if isinstance(value, dict):
                return value
        return None
    value = exception.get("value")
    return value if isinstance(value, dict) else None


def exception_frames(exception: Optional[dict[str, Any]]) -> list[dict[str, Any]]:
    frames = get_nested(exception or {}, "stacktrace.frames")
    if not isinstance(frames, list):
        return []
    return [frame for frame in frames if isinstance(frame, dict)]


def select_frame(frames: list[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """First in-app frame, else the last frame."""
    for frame in frames:
        if frame.get("in_app") is True:
            return frame
    return frames[-1] if frames else None


def event_message(event: dict[str, Any]) -> Optional[str]:
    message = event.get("message")
    if isinstance(message, dict):
        message = message.get("formatted") or message.get("message")
    if not message:
        message = get_nested(event, "logentry.formatted") or get_nested(event, "logentry.message")
    return str(message) if message else None


def frame_location(frame: Optional[dict[str, Any]]) -> Optional[str]:
    """`file:line in function`, omitting whatever the frame lacks."""
    if not frame:
        return None
    filename = frame.get("filename") or frame.get("abs_path") or frame.get("module")
    lineno = frame.get("lineno")
    function = frame.get("function")
    where = None
    if filename:
        where = f"{filename}:{lineno}" if lineno is not None else str(filename)
    if function:
        where = f"{where} in {function}" if where else f"in {function}"
    return where


def summarize_error(event: dict[str, Any]) -> str:
    exception = primary_exception(event)
    exc_type = exception.get("type") if exception else None
    exc_value = exception.get("value") if exception else None
    message = exc_value or event_message(event)
    head = ": ".join(str(part) for part in (exc_type, message) if part)
    location = frame_location(select_frame(exception_frames(exception)))
    if location:
        return f"{head} ({location})" if head else location
    return head


def trace_name(event: dict[str, Any]) -> Optional[str]:
    name = event.get("transaction") or get_nested(event, "contexts.trace.op")
    return str(name) if name else None


def span_count(event: dict[str, Any]) -> int:
    spans = event.get("spans")
    return len(spans) if isinstance(spans, list) else 0


def summarize_trace(event: dict[str, Any]) -> str:
    parts = [trace_name(event) or "trace"]
    duration = get_duration(event.get("timestamp"), event.get("start_timestamp"))
    if duration is not None:
        parts.append(f"{duration}ms")
    status = get_nested(event, "contexts.trace.status")
    if status and status != "ok":
        parts.append(f"status={status}")
    spans = span_count(event)
    if spans:
        parts.append(f"({spans} span{'s' if spans != 1 else ''})")
    return " ".join(parts)


def log_entries(event: dict[str, Any]) -> list[dict[str, Any]]:
    items = event.get("items")
    if not isinstance(items, list):
        return []
    return [entry for entry in items if isinstance(entry, dict)]


def attribute_value(attribute: Any) -> Any:
    if isinstance(attribute, dict) and "value" in attribute:
        return attribute["value"]
    return attribute


def _map_sdk(event: dict[str, Any], data: dict[str, Any]) -> None:
    name = get_nested(event, "sdk.name")
    if name:
        data["sdk"] = name
        version = get_nested(event, "sdk.version")
        if version:
            data["sdk_version"] = version


def _map_tags(event: dict[str, Any], data: dict[str, Any]) -> None:
    tags = event.get("tags")
    if isinstance(tags, dict):
        for key, value in tags.items():
            data[f"tag.{key}"] = value
    elif isinstance(tags, list):
        for pair in tags:
            if isinstance(pair, (list, tuple)) and len(pair) == 2:
                data[f"tag.{pair[0]}"] = pair[1]


def _breadcrumb_count(event: dict[str, Any]) -> int:
    breadcrumbs = event.get("breadcrumbs")
    if isinstance(breadcrumbs, dict):
        breadcrumbs = breadcrumbs.get("values")
    return len(breadcrumbs) if isinstance(breadcrumbs, list) else 0


def build_error_data(event: dict[str, Any]) -> dict[str, Any]:
    data: dict[str, Any] = {
        "timestamp": format_timestamp(event.get("timestamp")),
        "type": "error",
        "level": event.get("level") or "error",
    }
    map_fields(event, data, {"event_id": "event_id"})
    message = event_message(event)
    if message:
        data["message"] = message

    exception = primary_exception(event)
    if exception:
        map_fields(exception, data, {"exception_type": "type", "exception_value": "value"})
        frame = select_frame(exception_frames(exception))
        if frame:
            map_fields(frame, data, {
                "filename": "filename",
                "lineno": "lineno",
                "colno": "colno",
                "function": "function",
            })

    map_fields(event, data, {
        "trace_id": "contexts.trace.trace_id",
        "span_id": "contexts.trace.span_id",
        "environment": "environment",
        "release": "release",
        "dist": "dist",
        "platform": "platform",
        "transaction": "transaction",
        "logger": "logger",
        "server_name": "server_name",
        "user_id": "user.id",
        "user_email": "user.email",
        "user_username": "user.username",
        "request_url": "request.url",
        "request_method": "request.method",
    })
    _map_sdk(event, data)
    breadcrumbs = _breadcrumb_count(event)
    if breadcrumbs:
        data["breadcrumb_count"] = breadcrumbs
    spans = span_count(event)
    if spans:
        data["span_count"] = spans
    _map_tags(event, data)
    return data


def build_log_data(entry: dict[str, Any]) -> dict[str, Any]:
    data: dict[str, Any] = {
        "timestamp": format_timestamp(entry.get("timestamp")),
        "type": "log",
        "level": entry.get("level") or "log",
    }
    map_fields(entry, data, {
        "message": "body",
        "trace_id": "trace_id",
        "severity_number": "severity_number",
    })
    attributes = entry.get("attributes")
    if isinstance(attributes, dict):
        for key, attribute in attributes.items():
            value = attribute_value(attribute)
            if value is not None:
                data[key] = value
    return data


def build_trace_data(event: dict[str, Any]) -> dict[str, Any]:
    data: dict[str, Any] = {
        "timestamp": format_timestamp(event.get("timestamp")),
        "type": "trace",
    }
    map_fields(event, data, {
        "event_id": "event_id",
        "trace_id": "contexts.trace.trace_id",
        "span_id": "contexts.trace.span_id",
        "parent_span_id": "contexts.trace.parent_span_id",
        "op": "contexts.trace.op",
        "status": "contexts.trace.status",
        "description": "contexts.trace.description",
        "transaction": "transaction",
    })
    duration = get_duration(event.get("timestamp"), event.get("start_timestamp"))
    if duration is not None:
        data["duration_ms"] = duration
    spans = span_count(event)
    if spans:
        data["span_count"] = spans
    map_fields(event, data, {
        "environment": "environment",
        "release": "release",
        "platform": "platform",
        "server_name": "server_name",
    })
    _map_sdk(event, data)
    measurements = event.get("measurements")
    if isinstance(measurements, dict):
        for key, measurement in measurements.items():
            value = attribute_value(measurement)
            if value is not None:
                data[f"measurement.{key}"] = value
    _map_tags(event, data)
    return data
