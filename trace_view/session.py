"""Single-writer owner of one view's trace state.

``TraceSession`` is the only place where :func:`reduce` results are stored.
The snapshot fetch and the event stream run concurrently and both deliver
into :meth:`TraceSession.dispatch`, which applies one batch at a time under a
lock. Every delivery is tagged with the generation of the trace id it was
started for, so results for an abandoned trace id are dropped instead of
applied.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, List, Mapping, Optional, Sequence

from trace_view.config import load_config
from trace_view.core.actions import Action, Reset, SetLoadError, SetMemoryUpdating, SetTraceInfo
from trace_view.core.aggregator import INITIAL_STATE, TraceState, reduce_all
from trace_view.core.models import TraceInfo, is_terminal_trace_status
from trace_view.stream.client import ActionSink, EventStreamClient
from trace_view.stream.snapshot import SnapshotLoader, history_actions
from trace_view.utils.errors import TraceLoadError, make_safe_error
from trace_view.utils.logging import log_load_error, safe_exc

log = logging.getLogger(__name__)

Listener = Callable[[TraceState], None]
StreamFactory = Callable[[str, ActionSink], Any]

MISSING_TRACE_ID = "No trace id was given."


class TraceSession:
    def __init__(
        self,
        cfg: Optional[Mapping[str, Any]] = None,
        *,
        loader: Optional[SnapshotLoader] = None,
        stream_factory: Optional[StreamFactory] = None,
    ) -> None:
        self.cfg = dict(cfg if cfg is not None else load_config())
        self.loader = loader or SnapshotLoader.from_config(self.cfg)
        self._stream_factory = stream_factory or (
            lambda trace_id, sink: EventStreamClient.from_config(self.cfg, trace_id, sink)
        )
        self.memory_flash_s = float((self.cfg.get("view") or {}).get("memory_flash_s", 0.4))
        self.trace_id: Optional[str] = None
        self._lock = threading.RLock()
        self._state: TraceState = INITIAL_STATE
        self._listeners: List[Listener] = []
        self._generation = 0
        self._stream: Any = None
        self._fetch: Optional[Future] = None
        self._timers: List[threading.Timer] = []
        self._executor: Optional[ThreadPoolExecutor] = None

    def __enter__(self) -> "TraceSession":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def state(self) -> TraceState:
        with self._lock:
            return self._state

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def pending_fetch(self) -> Optional[Future]:
        return self._fetch

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with the new state after every applied batch."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, actions: Sequence[Action], generation: Optional[int] = None) -> bool:
        """Apply ``actions`` as one transition.

        Returns False when ``generation`` belongs to a trace id this session
        has already moved away from; nothing is applied in that case.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                log.debug("dropped %d stale action(s) for generation %s", len(actions), generation)
                return False
            new_state = reduce_all(self._state, actions)
            if new_state is self._state:
                return True
            self._state = new_state
            for listener in list(self._listeners):
                try:
                    listener(new_state)
                except Exception as exc:
                    safe_exc(log, "listener_failed", exc, self.trace_id)
        return True

    def open(self, trace_id: Optional[str]) -> int:
        """Switch the view to ``trace_id``; returns the new generation."""
        with self._lock:
            self._generation += 1
            gen = self._generation
            self.trace_id = trace_id
            old_stream, self._stream = self._stream, None
            self._cancel_timers()
        if old_stream is not None:
            old_stream.close()
        self.dispatch([Reset()], generation=gen)

        if not trace_id or not trace_id.strip():
            log_load_error(trace_id, "-", "trace id is empty")
            self.dispatch([SetLoadError(MISSING_TRACE_ID)], generation=gen)
            return gen

        # register the stream first so a failing fetch can close it
        stream = self._stream_factory(trace_id, lambda actions: self._on_stream_actions(actions, gen))
        with self._lock:
            if gen != self._generation:
                return gen
            self._stream = stream
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="trace-snapshot")
            executor = self._executor
        self._fetch = executor.submit(self._load_snapshot, trace_id, gen)
        stream.start()
        return gen

    def close(self) -> None:
        """Stop the stream, forget in-flight fetches and release worker threads.

        The session can be opened again afterwards.
        """
        with self._lock:
            self._generation += 1
            old_stream, self._stream = self._stream, None
            executor, self._executor = self._executor, None
            self._cancel_timers()
        if old_stream is not None:
            old_stream.close()
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    def _load_snapshot(self, trace_id: str, gen: int) -> Optional[TraceInfo]:
        try:
            info = self.loader.fetch_info(trace_id)
        except TraceLoadError as exc:
            safe = make_safe_error(exc, trace_id=trace_id)
            log_load_error(trace_id, safe.support_id, safe.tech_message)
            if self.dispatch([SetLoadError(safe.user_message)], generation=gen):
                self._stop_stream(gen)
            return None
        if info.id and info.id != trace_id:
            log.warning("snapshot_id_mismatch requested=%s received=%s", trace_id, info.id)
            return None
        if not self.dispatch([SetTraceInfo(info)], generation=gen):
            return info
        if is_terminal_trace_status(info.status):
            # history becomes the only source, so the stream must not also deliver
            with self._lock:
                replay = gen == self._generation and not self._state.nodes
                stream = None
                if replay:
                    stream, self._stream = self._stream, None
            if stream is not None:
                stream.close()
            if replay:
                self._replay_history(trace_id, gen)
        return info

    def _replay_history(self, trace_id: str, gen: int) -> None:
        # a finished trace no longer streams its earlier frames
        try:
            history = self.loader.fetch_events(trace_id)
        except TraceLoadError as exc:
            log.warning("history_unavailable trace_id=%s error=%s", trace_id, exc)
            return
        actions = [a for a in history_actions(history.events, trace_id) if not isinstance(a, SetMemoryUpdating)]
        self.dispatch(actions, generation=gen)

    def _stop_stream(self, gen: int) -> None:
        with self._lock:
            if gen != self._generation:
                return
            stream, self._stream = self._stream, None
        if stream is not None:
            stream.close()

    def _on_stream_actions(self, actions: List[Action], gen: int) -> None:
        with self._lock:
            # a detached stream may still flush frames it already read
            if self._stream is None or not self.dispatch(actions, generation=gen):
                return
            for action in actions:
                if isinstance(action, SetMemoryUpdating) and action.updating:
                    self._schedule_memory_settle(action.space_id, gen)

    def _schedule_memory_settle(self, space_id: str, gen: int) -> None:
        settle = [SetMemoryUpdating(space_id=space_id, updating=False)]
        timer = threading.Timer(self.memory_flash_s, self.dispatch, args=(settle,), kwargs={"generation": gen})
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    def _cancel_timers(self) -> None:
        for t in self._timers:
            t.cancel()
        self._timers = []


__all__ = ["TraceSession", "Listener", "StreamFactory", "MISSING_TRACE_ID"]
