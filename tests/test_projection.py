from trace_view.core.actions import (
    AppendNodeLog,
    SetMemoryUpdating,
    UpdateMemoryItem,
    UpdateNodeStatus,
    UpsertEdges,
    UpsertMemorySpace,
    UpsertNodes,
)
from trace_view.core.aggregator import INITIAL_STATE, reduce, reduce_all
from trace_view.core.colors import STATUS_COLOR, resolve_color
from trace_view.core.models import Edge, LogEntry, MemorySpace, Node
from trace_view.core.projection import (
    GraphProjector,
    format_duration,
    live_duration,
    live_durations,
    memory_cards,
    node_style,
    to_dot,
)


def _graph():
    return reduce_all(
        INITIAL_STATE,
        [
            UpsertNodes(nodes=(
                Node(id="a", label="Plan", type="llm", status="success", start_time=0, end_time=1500),
                Node(id="b", label="Search", type="search", status="running", start_time=1000),
            )),
            UpsertEdges(edges=(Edge("a", "b"),)),
        ],
    )


def test_layout_is_stable_under_data_only_changes():
    projector = GraphProjector()
    state = _graph()
    first = projector.project(state, now=2000)
    assert first.layout_version == 1

    log = LogEntry(timestamp=1200, level="info", message="query sent", node_id="b")
    state = reduce_all(state, [AppendNodeLog("b", log), UpdateNodeStatus("b", status="success", end_time=2500)])
    assert not projector.needs_layout(state)
    second = projector.project(state, now=3000)
    assert second.layout_version == 1
    assert {n.id: n.position for n in second.nodes} == {n.id: n.position for n in first.nodes}


def test_structure_change_triggers_new_layout():
    projector = GraphProjector()
    state = _graph()
    projector.project(state, now=0)
    state = reduce(state, UpsertEdges(edges=(Edge("b", "c"),)))
    assert projector.needs_layout(state)
    assert projector.project(state, now=0).layout_version == 2


def test_edges_take_target_status_color():
    view = GraphProjector().project(_graph(), now=2000)
    (edge,) = view.edges
    assert edge.id == "a-b"
    assert edge.color == STATUS_COLOR["running"]
    assert edge.animated


def test_render_nodes_carry_icons_and_durations():
    view = GraphProjector().project(_graph(), now=2000)
    by_id = {n.id: n for n in view.nodes}
    assert by_id["a"].duration == 1500
    assert by_id["b"].duration == 1000
    assert by_id["b"].icon == node_style("search")["icon"]
    assert by_id["a"].status_icon == "check_circle"


def test_live_duration_only_for_running_nodes():
    assert live_duration(Node(id="x", status="running", start_time=100), now=350) == 250
    assert live_duration(Node(id="x", status="pending"), now=350) is None
    assert live_duration(Node(id="x", status="error", start_time=100), now=350) is None
    assert live_durations(_graph(), now=4000) == {"b": 3000}


def test_format_duration():
    assert format_duration(None) == "-"
    assert format_duration(0) == "-"
    assert format_duration(850) == "850ms"
    assert format_duration(1234) == "1.2s"


def test_memory_cards_previews_are_truncated():
    long_text = "x" * 60
    state = reduce_all(
        INITIAL_STATE,
        [
            UpsertMemorySpace(MemorySpace(id="ctx", label="Context", type="context")),
            UpdateMemoryItem("ctx", "k1", {"content": long_text}),
            UpdateMemoryItem("ctx", "k2", "short"),
            SetMemoryUpdating("ctx", True),
        ],
    )
    (card,) = memory_cards(state)
    assert card.title == "Context"
    assert card.count == 2
    assert card.previews == ("x" * 40 + "...", "short")
    assert card.updating


def test_resolve_color_aliases_and_default():
    assert resolve_color("completed") == STATUS_COLOR["success"]
    assert resolve_color("failed") == STATUS_COLOR["error"]
    assert resolve_color(None) == STATUS_COLOR["default"]
    assert resolve_color("running", {"running": "#000000"}) == "#000000"


def test_to_dot_pins_positions():
    view = GraphProjector().project(_graph(), now=2000)
    dot = to_dot(view)
    assert dot.startswith("digraph G {")
    assert '"a" -> "b"' in dot
    assert 'label="Plan\\n1.5s"' in dot
    assert "!\"" in dot
