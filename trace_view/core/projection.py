"""Render-ready projection of a :class:`TraceState`.

:class:`GraphProjector` zips node state with layout positions. Positions are
cached by graph structure (node id set plus edge id set) so that status
flips, new logs and new outputs only swap node payloads; the layout engine
runs again only when a node or edge is added or removed.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .aggregator import TraceState
from .colors import resolve_color
from .layout import LayoutOptions, Position, compute_layout, layout_key
from .models import MemorySpace, Node

# Drawing-surface capabilities per node ``type``; unknown types fall back to "custom".
NODE_TYPE_STYLES: Dict[str, Dict[str, str]] = {
    "start":    {"icon": "play_circle",  "shape": "ellipse"},
    "search":   {"icon": "search",       "shape": "box"},
    "query":    {"icon": "database",     "shape": "cylinder"},
    "llm":      {"icon": "psychology",   "shape": "box"},
    "agent":    {"icon": "smart_toy",    "shape": "box"},
    "format":   {"icon": "description",  "shape": "note"},
    "complete": {"icon": "check_circle", "shape": "ellipse"},
    "custom":   {"icon": "extension",    "shape": "box"},
}

STATUS_ICONS = {
    "pending": "radio_button_unchecked",
    "running": "autorenew",
    "success": "check_circle",
    "error": "error",
}

MEMORY_TYPE_COLORS = {
    "context": "#3371fc",
    "intent": "#9c27b0",
    "knowledge": "#ff9800",
    "history": "#4caf50",
    "custom": "#607d8b",
}


def node_style(node_type: Optional[str]) -> Dict[str, str]:
    return NODE_TYPE_STYLES.get(node_type or "custom", NODE_TYPE_STYLES["custom"])


def now_ms() -> int:
    return int(time.time() * 1000)


def live_duration(node: Node, now: Optional[int] = None) -> Optional[int]:
    """Elapsed ms for ``node``: its recorded duration, or time since start while it runs."""
    if node.duration is not None:
        return node.duration
    if node.start_time is None or node.finished:
        return None
    current = now_ms() if now is None else now
    return max(0, current - node.start_time)


def live_durations(state: TraceState, now: Optional[int] = None) -> Dict[str, int]:
    """Live durations for every node still missing an ``end_time``."""
    current = now_ms() if now is None else now
    out: Dict[str, int] = {}
    for node in state.nodes.values():
        if node.end_time is None:
            d = live_duration(node, current)
            if d is not None:
                out[node.id] = d
    return out


def format_duration(ms: Optional[int]) -> str:
    if not ms:
        return "-"
    if ms < 1000:
        return f"{ms}ms"
    return f"{ms / 1000:.1f}s"


def _summary(text: Any, max_chars: int) -> str:
    if not isinstance(text, str):
        text = "" if text is None else str(text)
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


@dataclass(frozen=True)
class MemoryCard:
    id: str
    type: str
    title: str
    count: int
    previews: Tuple[str, ...]
    color: str
    updating: bool


def memory_cards(state: TraceState, preview_chars: int = 40) -> List[MemoryCard]:
    """Card summaries for each memory space; count and previews are derived from its items."""
    cards: List[MemoryCard] = []
    for space in state.spaces.values():
        previews = tuple(_summary(_item_text(v), preview_chars) for v in space.data.values())
        if not previews and space.description:
            previews = (_summary(space.description, preview_chars),)
        cards.append(
            MemoryCard(
                id=space.id,
                type=space.type,
                title=space.label or space.id,
                count=space.count,
                previews=previews,
                color=MEMORY_TYPE_COLORS.get(space.type, "#757575"),
                updating=space.id in state.updating_memory_ids,
            )
        )
    return cards


def _item_text(content: Any) -> str:
    if isinstance(content, Mapping):
        for key in ("content", "text", "summary", "title"):
            if isinstance(content.get(key), str):
                return content[key]
    return content if isinstance(content, str) else str(content)


@dataclass(frozen=True)
class RenderNode:
    id: str
    position: Position
    node: Node
    duration: Optional[int]
    icon: str
    status_icon: str


@dataclass(frozen=True)
class RenderEdge:
    id: str
    source: str
    target: str
    color: str
    animated: bool


@dataclass(frozen=True)
class GraphView:
    nodes: List[RenderNode]
    edges: List[RenderEdge]
    layout_version: int
    trace_status: Optional[str] = None
    load_error: Optional[str] = None
    memory: List[MemoryCard] = field(default_factory=list)


class GraphProjector:
    """Keeps the last computed layout and reuses it while the structure is unchanged."""

    def __init__(
        self,
        options: Optional[LayoutOptions] = None,
        palette: Optional[Mapping[str, str]] = None,
        preview_chars: int = 40,
    ) -> None:
        self.options = options or LayoutOptions()
        self.palette = dict(palette or {})
        self.preview_chars = preview_chars
        self.layout_version = 0
        self._key: Optional[Tuple[frozenset, frozenset]] = None
        self._positions: Dict[str, Position] = {}

    @classmethod
    def from_config(cls, cfg: Optional[Mapping[str, Any]]) -> "GraphProjector":
        cfg = cfg or {}
        return cls(
            options=LayoutOptions.from_config(cfg),
            palette=cfg.get("colors") or {},
            preview_chars=int((cfg.get("view") or {}).get("preview_chars", 40)),
        )

    def needs_layout(self, state: TraceState) -> bool:
        return layout_key(state.nodes.keys(), state.edges.keys()) != self._key

    def positions(self, state: TraceState) -> Dict[str, Position]:
        key = layout_key(state.nodes.keys(), state.edges.keys())
        if key != self._key:
            self._positions = compute_layout(
                list(state.nodes.keys()),
                [(e.source, e.target) for e in state.edges.values()],
                self.options,
            )
            self._key = key
            self.layout_version += 1
        return self._positions

    def project(self, state: TraceState, now: Optional[int] = None) -> GraphView:
        positions = self.positions(state)
        current = now_ms() if now is None else now
        nodes = [
            RenderNode(
                id=n.id,
                position=positions.get(n.id, Position(0.0, 0.0)),
                node=n,
                duration=live_duration(n, current),
                icon=n.icon or node_style(n.type)["icon"],
                status_icon=STATUS_ICONS.get(n.status, "help_outline"),
            )
            for n in state.nodes.values()
        ]
        edges = [
            RenderEdge(
                id=e.id,
                source=e.source,
                target=e.target,
                color=resolve_color(e.target_status, self.palette),
                animated=e.target_status == "running",
            )
            for e in state.edges.values()
        ]
        return GraphView(
            nodes=nodes,
            edges=edges,
            layout_version=self.layout_version,
            trace_status=state.status,
            load_error=state.load_error,
            memory=memory_cards(state, self.preview_chars),
        )


def _dot_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def to_dot(view: GraphView, *, scale: float = 72.0) -> str:
    """Render ``view`` as Graphviz DOT with pinned positions (``neato -n``)."""
    lines = [
        "digraph G {",
        'layout=neato; splines=true;',
        'node [shape=box, style="rounded,filled", fontname="Inter,Arial", fixedsize=true];',
    ]
    for rn in view.nodes:
        n = rn.node
        col = resolve_color(n.status)
        label = f"{_dot_escape(n.label or n.id)}\\n{format_duration(rn.duration)}"
        x = rn.position.x / scale
        y = -rn.position.y / scale
        shape = node_style(n.type)["shape"]
        lines.append(
            f'"{_dot_escape(n.id)}" [label="{label}", shape={shape}, '
            f'pos="{x:.2f},{y:.2f}!", fillcolor="{col}22", color="{col}"];'
        )
    for e in view.edges:
        style = "dashed" if e.animated else "solid"
        lines.append(
            f'"{_dot_escape(e.source)}" -> "{_dot_escape(e.target)}" [color="{e.color}", style="{style}"];'
        )
    lines.append("}")
    return "\n".join(lines)


__all__ = [
    "NODE_TYPE_STYLES",
    "STATUS_ICONS",
    "node_style",
    "now_ms",
    "live_duration",
    "live_durations",
    "format_duration",
    "MemoryCard",
    "memory_cards",
    "RenderNode",
    "RenderEdge",
    "GraphView",
    "GraphProjector",
    "to_dot",
]
