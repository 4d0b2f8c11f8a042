"""Push-channel client for a trace's live events.

The client is a transport adapter only: it turns SSE frames into aggregator
actions and hands them to ``on_actions`` on its receive thread, one frame at
a time and in arrival order. It keeps no trace state of its own besides the
last SSE event id used to resume after a reconnect.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Mapping, Optional

import httpx

from trace_view.config.env import get_env
from trace_view.core.actions import Action
from trace_view.utils.cancellation import CancellationToken
from trace_view.utils.errors import FrameDecodeError, StreamCancelled, StreamTransportError
from trace_view.utils.logging import log_dropped_frame, log_transport_error, safe_exc
from trace_view.utils.retry import backoff

from .frames import TERMINAL_EVENT_TYPES, decode_frame, translate
from .snapshot import TOKEN_ENV, signed_headers
from .sse import SSEMessage, iter_sse

log = logging.getLogger(__name__)

ActionSink = Callable[[List[Action]], None]


class EventStreamClient:
    def __init__(
        self,
        base_url: str,
        trace_id: str,
        on_actions: ActionSink,
        *,
        token: Optional[str] = None,
        connect_timeout: float = 10.0,
        read_timeout: float = 300.0,
        max_retries: int = 5,
        backoff_base: float = 0.5,
        backoff_cap: float = 8.0,
        transport: Optional[httpx.BaseTransport] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.trace_id = trace_id
        self.on_actions = on_actions
        self.on_error = on_error
        self.token = token
        self.timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.transport = transport
        self.finished = False
        self.last_event_id: Optional[str] = None
        self._cancel = CancellationToken()
        self._lock = threading.Lock()
        self._response: Optional[httpx.Response] = None
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(
        cls, cfg: Mapping[str, Any], trace_id: str, on_actions: ActionSink, **kwargs: Any
    ) -> "EventStreamClient":
        api = dict(cfg.get("api") or {})
        stream = dict(cfg.get("stream") or {})
        kwargs.setdefault("token", get_env(TOKEN_ENV))
        return cls(
            api.get("base_url", ""),
            trace_id,
            on_actions,
            connect_timeout=float(stream.get("connect_timeout_s", 10)),
            read_timeout=float(stream.get("read_timeout_s", 300)),
            max_retries=int(stream.get("max_retries", 5)),
            backoff_base=float(stream.get("backoff_base_s", 0.5)),
            backoff_cap=float(stream.get("backoff_cap_s", 8.0)),
            **kwargs,
        )

    @property
    def url(self) -> str:
        return f"{self.base_url}/trace/traces/{self.trace_id}/events"

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self.run, name=f"trace-stream-{self.trace_id}", daemon=True
        )
        self._thread.start()

    def close(self, timeout: Optional[float] = 2.0) -> None:
        """Cancel the subscription and wait briefly for the receive thread to stop."""
        self._cancel.cancel()
        with self._lock:
            resp = self._response
        if resp is not None:
            try:
                resp.close()
            except (httpx.HTTPError, httpx.StreamError, RuntimeError) as exc:
                log.debug("stream close raised %s", exc)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        """Receive loop with reconnect; returns after a terminal frame, cancellation or giving up."""
        attempt = 0
        while not self.cancelled:
            try:
                if self._consume():
                    return
                raise StreamTransportError("stream ended before the trace finished")
            except StreamCancelled:
                return
            except (httpx.HTTPError, httpx.StreamError, StreamTransportError) as exc:
                if self.cancelled:
                    return
                attempt += 1
                log_transport_error(self.trace_id, attempt, exc)
                if self.on_error is not None:
                    self.on_error(exc)
                if attempt > self.max_retries:
                    log.error("stream_gave_up trace_id=%s attempts=%d", self.trace_id, attempt)
                    return
                delay = backoff(attempt, base=self.backoff_base, cap=self.backoff_cap)
                if self._cancel.wait(delay):
                    return

    def _headers(self) -> dict:
        headers = signed_headers(self.token, {"Accept": "text/event-stream", "Cache-Control": "no-cache"})
        if self.last_event_id:
            headers["Last-Event-ID"] = self.last_event_id
        return headers

    def _consume(self) -> bool:
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            with client.stream("GET", self.url, params={"stream": "true"}, headers=self._headers()) as resp:
                if resp.status_code >= 400:
                    raise StreamTransportError(f"stream answered HTTP {resp.status_code}")
                with self._lock:
                    self._response = resp
                try:
                    for msg in iter_sse(resp.iter_lines()):
                        self._cancel.raise_if_cancelled()
                        if self._handle(msg):
                            self.finished = True
                            return True
                finally:
                    with self._lock:
                        self._response = None
        self._cancel.raise_if_cancelled()
        return False

    def _handle(self, msg: SSEMessage) -> bool:
        if msg.id:
            self.last_event_id = msg.id
        try:
            event = decode_frame(msg.data, None if msg.event == "message" else msg.event)
            actions = translate(event)
        except FrameDecodeError as exc:
            log_dropped_frame(self.trace_id, str(exc), msg.data)
            return False
        if actions:
            try:
                self.on_actions(actions)
            except Exception as exc:
                # the receive thread outlives a failing consumer
                safe_exc(log, f"stream_sink_failed event={event.type}", exc, self.trace_id)
        return event.type in TERMINAL_EVENT_TYPES


__all__ = ["EventStreamClient", "ActionSink"]
