import json

import pytest

from trace_view.core.actions import (
    AppendNodeLog,
    RecolorEdgesForTarget,
    RemoveMemoryItem,
    RemoveMemorySpace,
    SetMemoryUpdating,
    UpdateMemoryItem,
    UpdateNodeStatus,
    UpdateTraceStatus,
    UpsertEdges,
    UpsertMemorySpace,
    UpsertNodes,
)
from trace_view.core.aggregator import INITIAL_STATE, reduce_all
from trace_view.stream.frames import decode_frame, to_ms, translate, translate_frame
from trace_view.utils.errors import FrameDecodeError


def _frame(type_, data=None, **extra):
    return json.dumps({"type": type_, "timestamp": 1000, "data": data, **extra})


def test_init_marks_trace_running():
    (action,) = translate_frame(_frame("init", {}))
    assert action == UpdateTraceStatus(status="running", at=1000)


def test_node_start_builds_nodes_and_edges_from_parents():
    actions = translate_frame(
        _frame("node_start", {"node": {"id": "n2", "label": "Search", "type": "search", "status": "running", "parent_ids": ["n1"]}})
    )
    upsert, edges, recolor = actions
    assert isinstance(upsert, UpsertNodes)
    (node,) = upsert.nodes
    assert node.id == "n2"
    assert node.start_time == 1000
    assert isinstance(edges, UpsertEdges)
    assert [e.id for e in edges.edges] == ["n1-n2"]
    assert recolor == RecolorEdgesForTarget(node_id="n2", status="running")


def test_node_start_accepts_node_lists():
    (upsert, _, _) = translate_frame(_frame("node_start", {"nodes": [{"id": "a"}, {"id": "b"}]}))
    assert [n.id for n in upsert.nodes] == ["a", "b"]


def test_node_complete_and_failed():
    done, recolor = translate_frame(_frame("node_complete", {"end_time": 1800, "output": {"ok": True}}, node_id="n1"))
    assert done == UpdateNodeStatus(node_id="n1", status="success", end_time=1800, output={"ok": True})
    assert recolor.status == "success"

    failed, _ = translate_frame(_frame("node_failed", {"node_id": "n2"}))
    assert failed.status == "error"
    assert failed.error == "Failed"
    assert failed.end_time == 1000


def test_log_added_uses_envelope_node_id():
    (action,) = translate_frame(_frame("log_added", {"level": "warn", "message": "slow"}, node_id="n1"))
    assert isinstance(action, AppendNodeLog)
    assert action.log.message == "slow"
    assert action.log.timestamp == 1000


def test_memory_frames():
    (created,) = translate_frame(_frame("space_created", {"space": {"id": "ctx", "label": "Context", "type": "context"}}))
    assert isinstance(created, UpsertMemorySpace)
    assert created.space.label == "Context"

    flash, update = translate_frame(_frame("memory_add", {"item": {"id": "k1", "content": "hello"}}, space_id="ctx"))
    assert flash == SetMemoryUpdating(space_id="ctx", updating=True)
    assert update == UpdateMemoryItem(space_id="ctx", item_id="k1", content="hello")

    (deleted,) = translate_frame(_frame("memory_delete", {"key": "k1"}, space_id="ctx"))
    assert deleted == RemoveMemoryItem(space_id="ctx", item_id="k1")

    (gone,) = translate_frame(_frame("space_deleted", {}, space_id="ctx"))
    assert gone == RemoveMemorySpace(space_id="ctx")


def test_complete_and_error_set_terminal_status():
    (done,) = translate_frame(_frame("complete", {"status": "success"}))
    assert done.status == "completed"
    (failed,) = translate_frame(_frame("error", {"message": "boom"}))
    assert failed.status == "failed"


def test_unknown_frame_type_is_ignored():
    assert translate_frame(_frame("heartbeat", {})) == []


def test_event_name_fills_missing_type():
    event = decode_frame(json.dumps({"timestamp": 5, "data": {}}), "init")
    assert event.type == "init"


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        json.dumps({"timestamp": 1}),
        _frame("node_complete", {}),
        _frame("log_added", "text payload", node_id="n1"),
        _frame("memory_add", {"item": {"content": "x"}}, space_id="ctx"),
    ],
)
def test_malformed_frames_raise(raw):
    with pytest.raises(FrameDecodeError):
        translate_frame(raw)


def test_iso_timestamps_are_converted():
    assert to_ms("1970-01-01T00:00:01Z") == 1000
    assert to_ms("2500") == 2500
    assert to_ms(None) is None


def test_end_to_end_frames():
    frames = [
        _frame("init", {}),
        _frame("node_start", {"node": {"id": "n1", "status": "running", "start_time": 1000, "parent_ids": []}}),
        _frame("node_start", {"node": {"id": "n2", "status": "running", "start_time": 1100, "parent_ids": ["n1"]}}),
        _frame("node_complete", {"end_time": 1600}, node_id="n1"),
        _frame("complete", {"status": "completed"}),
    ]
    actions = [a for raw in frames for a in translate_frame(raw)]
    state = reduce_all(INITIAL_STATE, actions)
    assert state.status == "completed"
    assert state.nodes["n1"].status == "success"
    assert state.nodes["n1"].duration == 600
    assert list(state.edges) == ["n1-n2"]
    assert state.nodes["n2"].status == "running"


def test_late_frames_do_not_recolor_finished_edges():
    frames = [
        _frame("node_start", {"node": {"id": "a", "status": "running"}}),
        _frame("node_start", {"node": {"id": "b", "status": "running", "parent_ids": ["a"]}}),
        _frame("node_failed", {"status": "error"}, node_id="b"),
        _frame("node_complete", {"status": "success"}, node_id="b"),
        _frame("node_start", {"node": {"id": "b", "status": "running", "parent_ids": ["a"]}}),
    ]
    state = reduce_all(INITIAL_STATE, [a for raw in frames for a in translate_frame(raw)])
    assert state.nodes["b"].status == "error"
    assert state.edges["a-b"].target_status == "error"
