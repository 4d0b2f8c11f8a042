import json
import logging
import threading
import time

import pytest

from trace_view.core.actions import SetMemoryUpdating, UpdateMemoryItem, UpdateTraceStatus, UpsertMemorySpace, UpsertNodes
from trace_view.core.models import MemorySpace, Node, TraceInfo
from trace_view.session import MISSING_TRACE_ID, TraceSession
from trace_view.stream.frames import translate_frame
from trace_view.stream.snapshot import TraceHistory
from trace_view.utils.errors import KIND_MESSAGES, TraceLoadError

CFG = {"view": {"memory_flash_s": 0.2}}


class StubLoader:
    def __init__(self, infos=None, gates=None, error=None):
        self.infos = infos or {}
        self.gates = gates or {}
        self.error = error
        self.calls = []

    def fetch_info(self, trace_id):
        self.calls.append(trace_id)
        gate = self.gates.get(trace_id)
        if gate is not None:
            gate.wait(2)
        if self.error is not None:
            raise self.error
        return self.infos.get(trace_id, TraceInfo(id=trace_id, status="running"))


class StubStream:
    def __init__(self, trace_id, sink):
        self.trace_id = trace_id
        self.sink = sink
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def close(self):
        self.closed = True


@pytest.fixture
def streams():
    return []


def _session(loader, streams):
    def factory(trace_id, sink):
        stream = StubStream(trace_id, sink)
        streams.append(stream)
        return stream

    return TraceSession(CFG, loader=loader, stream_factory=factory)


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_open_loads_snapshot_and_starts_stream(streams):
    loader = StubLoader(infos={"t1": TraceInfo(id="t1", driver="local", status="running")})
    with _session(loader, streams) as session:
        session.open("t1")
        session.pending_fetch.result(timeout=2)
        assert session.state.trace_info.driver == "local"
        (stream,) = streams
        assert stream.started
        stream.sink([UpsertNodes(nodes=(Node(id="n1", status="running"),))])
        assert session.state.nodes["n1"].status == "running"


def test_listeners_are_notified_once_per_batch(streams):
    seen = []
    gate = threading.Event()
    with _session(StubLoader(gates={"t1": gate}), streams) as session:
        unsubscribe = session.subscribe(seen.append)
        session.open("t1")
        streams[0].sink([
            UpsertNodes(nodes=(Node(id="a"),)),
            UpsertNodes(nodes=(Node(id="b"),)),
        ])
        assert len(seen) == 1
        assert set(seen[0].nodes) == {"a", "b"}
        unsubscribe()
        streams[0].sink([UpsertNodes(nodes=(Node(id="c"),))])
        assert len(seen) == 1
        gate.set()


def test_empty_trace_id_sets_load_error(streams):
    with _session(StubLoader(), streams) as session:
        session.open("")
        assert session.state.load_error == MISSING_TRACE_ID
        assert streams == []


def test_load_error_is_shown_and_stream_closed(streams):
    loader = StubLoader(error=TraceLoadError("missing", trace_id="t1", status_code=404))
    with _session(loader, streams) as session:
        session.open("t1")
        session.pending_fetch.result(timeout=2)
        assert session.state.load_error == KIND_MESSAGES["not_found"]
        assert streams[0].closed


def test_switching_trace_drops_stale_results(streams):
    gate = threading.Event()
    loader = StubLoader(
        infos={"old": TraceInfo(id="old", driver="stale"), "new": TraceInfo(id="new", driver="fresh")},
        gates={"old": gate},
    )
    with _session(loader, streams) as session:
        session.open("old")
        old_fetch = session.pending_fetch
        old_stream = streams[0]
        session.open("new")
        session.pending_fetch.result(timeout=2)
        assert old_stream.closed

        gate.set()
        old_fetch.result(timeout=2)
        old_stream.sink([UpsertNodes(nodes=(Node(id="ghost"),))])

        state = session.state
        assert state.trace_info.id == "new"
        assert state.trace_info.driver == "fresh"
        assert "ghost" not in state.nodes


def test_snapshot_arriving_after_completion_keeps_terminal_status(streams):
    gate = threading.Event()
    loader = StubLoader(infos={"t1": TraceInfo(id="t1", status="running")}, gates={"t1": gate})
    with _session(loader, streams) as session:
        session.open("t1")
        streams[0].sink([UpdateTraceStatus(status="completed", at=10)])
        gate.set()
        session.pending_fetch.result(timeout=2)
        assert session.state.status == "completed"
        assert session.state.trace_info.id == "t1"


def test_memory_flash_settles(streams):
    gate = threading.Event()
    with _session(StubLoader(gates={"t1": gate}), streams) as session:
        session.open("t1")
        sink = streams[0].sink
        sink([UpsertMemorySpace(MemorySpace(id="ctx"))])
        sink([SetMemoryUpdating("ctx", True), UpdateMemoryItem("ctx", "k", "v")])
        assert "ctx" in session.state.updating_memory_ids
        assert _wait_for(lambda: not session.state.updating_memory_ids)
        gate.set()


class HistoryLoader(StubLoader):
    def __init__(self, events, **kwargs):
        super().__init__(**kwargs)
        self.events = events

    def fetch_events(self, trace_id):
        return TraceHistory(id=trace_id, status="completed", events=self.events)


def test_finished_trace_is_replayed_from_history(streams):
    events = [
        {"type": "node_start", "timestamp": 1, "data": {"node": {"id": "n1", "status": "running"}}},
        {"type": "memory_add", "timestamp": 2, "space_id": "ctx", "data": {"item": {"id": "k", "content": "v"}}},
        {"type": "node_complete", "timestamp": 5, "node_id": "n1", "data": {}},
    ]
    loader = HistoryLoader(events, infos={"t1": TraceInfo(id="t1", status="completed")})
    with _session(loader, streams) as session:
        session.open("t1")
        session.pending_fetch.result(timeout=2)
        state = session.state
        assert state.status == "completed"
        assert state.nodes["n1"].status == "success"
        assert state.nodes["n1"].duration == 4
        assert state.updating_memory_ids == frozenset()


class BlockingHistoryLoader(HistoryLoader):
    def __init__(self, events, **kwargs):
        super().__init__(events, **kwargs)
        self.fetching = threading.Event()
        self.release = threading.Event()

    def fetch_events(self, trace_id):
        self.fetching.set()
        self.release.wait(2)
        return super().fetch_events(trace_id)


def test_stream_frames_during_history_fetch_are_not_applied_twice(streams):
    events = [
        {"type": "node_start", "timestamp": 1, "data": {"node": {"id": "n1", "status": "running"}}},
        {"type": "log_added", "timestamp": 2, "node_id": "n1", "data": {"level": "info", "message": "hello"}},
        {"type": "node_complete", "timestamp": 3, "node_id": "n1", "data": {}},
    ]
    loader = BlockingHistoryLoader(events, infos={"t1": TraceInfo(id="t1", status="completed")})
    with _session(loader, streams) as session:
        session.open("t1")
        assert loader.fetching.wait(2)
        streams[0].sink([a for e in events for a in translate_frame(json.dumps(e))])
        loader.release.set()
        session.pending_fetch.result(timeout=2)
        assert [entry.message for entry in session.state.nodes["n1"].logs] == ["hello"]
        assert session.state.nodes["n1"].status == "success"
        assert streams[0].closed


def test_failing_listener_does_not_stop_other_listeners(streams, caplog):
    seen = []

    def broken(state):
        raise RuntimeError("render failed")

    gate = threading.Event()
    with _session(StubLoader(gates={"t1": gate}), streams) as session:
        session.subscribe(broken)
        session.subscribe(seen.append)
        session.open("t1")
        with caplog.at_level(logging.ERROR, logger="trace_view"):
            streams[0].sink([UpsertNodes(nodes=(Node(id="a"),))])
        assert "a" in session.state.nodes
        assert "a" in seen[-1].nodes
        assert "listener_failed" in caplog.text
        assert "render failed" in caplog.text
        gate.set()


def test_session_can_be_reopened_after_close(streams):
    loader = StubLoader(infos={"t1": TraceInfo(id="t1", driver="local", status="running")})
    session = _session(loader, streams)
    session.open("t1")
    session.pending_fetch.result(timeout=2)
    session.close()
    assert streams[0].closed

    session.open("t1")
    session.pending_fetch.result(timeout=2)
    assert session.state.trace_info.driver == "local"
    assert not streams[1].closed
    session.close()
