from __future__ import annotations

import json
import traceback
import uuid
from dataclasses import asdict, dataclass
from typing import Any


class TraceViewError(Exception):
    """Base class for errors raised by trace-view."""


class TraceLoadError(TraceViewError):
    """The trace could not be loaded; nothing can be shown for it."""

    def __init__(self, message: str, *, trace_id: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.trace_id = trace_id
        self.status_code = status_code


class StreamTransportError(TraceViewError):
    """The push channel dropped or answered with a non-success status."""


class FrameDecodeError(TraceViewError):
    """A wire frame could not be decoded into a trace event."""

    def __init__(self, message: str, raw: str | None = None):
        super().__init__(message)
        self.raw = raw


class StreamCancelled(TraceViewError):
    """Raised inside the receive loop once the subscription was cancelled."""


@dataclass(frozen=True)
class SafeError:
    kind: str
    user_message: str
    tech_message: str
    traceback: str | None
    support_id: str
    context: dict[str, Any]


KIND_MESSAGES = {
    "not_found": "This trace does not exist or is no longer available.",
    "api": "The trace service did not accept the request. Try again later.",
    "timeout": "The trace service took too long to answer. Try again.",
    "validation": "The trace service returned data that could not be read.",
    "io": "The trace service could not be reached. Check the connection.",
    "unknown": "An unexpected error occurred while loading the trace.",
}


def classify(exc: Exception) -> str:
    if isinstance(exc, TraceLoadError) and exc.status_code == 404:
        return "not_found"
    name = exc.__class__.__name__.lower()
    if "timeout" in name:
        return "timeout"
    if "http" in name or "api" in name or isinstance(exc, TraceLoadError) and exc.status_code:
        return "api"
    if isinstance(exc, (ValueError, KeyError, FrameDecodeError)) or "validation" in name:
        return "validation"
    if isinstance(exc, OSError) or "connect" in name:
        return "io"
    return "unknown"


MAX_CHARS = 2000


def make_safe_error(exc: Exception, *, trace_id: str | None) -> SafeError:
    cause = exc.__cause__ if isinstance(exc, TraceLoadError) and exc.__cause__ else exc
    kind = classify(exc)
    if kind in ("api", "unknown") and cause is not exc:
        kind = classify(cause)
    tech_message = str(exc).strip().replace("\n", " ")[:MAX_CHARS]
    tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))[:MAX_CHARS]
    context: dict[str, Any] = {}
    if trace_id:
        context["trace_id"] = trace_id
    return SafeError(
        kind=kind,
        user_message=KIND_MESSAGES.get(kind, KIND_MESSAGES["unknown"]),
        tech_message=tech_message,
        traceback=tb or None,
        support_id=uuid.uuid4().hex[:8],
        context=context,
    )


def as_json(safe: SafeError) -> bytes:
    return json.dumps(asdict(safe), ensure_ascii=False).encode("utf-8")


__all__ = [
    "TraceViewError",
    "TraceLoadError",
    "StreamTransportError",
    "FrameDecodeError",
    "StreamCancelled",
    "SafeError",
    "KIND_MESSAGES",
    "classify",
    "make_safe_error",
    "as_json",
]
