"""Layered (Sugiyama-style) layout for trace graphs.

Nodes are ranked by their longest path from a root, long edges are split
with dummy nodes so every edge spans one rank, ranks are reordered with
barycenter sweeps to reduce crossings, and each rank is centred on the
drawing axis. The result only depends on node ids and edge endpoints, never
on node contents.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

Pair = Tuple[str, str]


@dataclass(frozen=True)
class Position:
    x: float
    y: float


@dataclass(frozen=True)
class LayoutOptions:
    direction: str = "TB"  # "TB" (top to bottom) or "LR" (left to right)
    node_width: float = 200.0
    node_height: float = 120.0
    nodesep: float = 80.0
    ranksep: float = 100.0
    sweeps: int = 4

    @classmethod
    def from_config(cls, cfg: Optional[Mapping[str, Any]]) -> "LayoutOptions":
        section = dict((cfg or {}).get("layout") or {})
        known = {k: section[k] for k in cls.__dataclass_fields__ if k in section}
        return cls(**known)


@dataclass(frozen=True)
class _Dummy:
    source: str
    target: str
    index: int


def layout_key(node_ids: Iterable[str], edge_ids: Iterable[str]) -> Tuple[frozenset, frozenset]:
    """Identity of a graph's structure; layout is only recomputed when it changes."""
    return frozenset(node_ids), frozenset(edge_ids)


def _unique_pairs(ids: Set[str], edges: Iterable[Pair]) -> List[Pair]:
    out: List[Pair] = []
    seen: Set[Pair] = set()
    for s, t in edges:
        if s == t or s not in ids or t not in ids or (s, t) in seen:
            continue
        seen.add((s, t))
        out.append((s, t))
    return out


def _break_cycles(order: Sequence[str], pairs: List[Pair]) -> List[Pair]:
    """Reverse DFS back edges so the graph becomes acyclic."""
    succ: Dict[str, List[str]] = {n: [] for n in order}
    for s, t in pairs:
        succ[s].append(t)
    color = {n: 0 for n in order}
    back: Set[Pair] = set()
    for root in order:
        if color[root]:
            continue
        color[root] = 1
        stack = [(root, iter(succ[root]))]
        while stack:
            v, it = stack[-1]
            for w in it:
                if color[w] == 0:
                    color[w] = 1
                    stack.append((w, iter(succ[w])))
                    break
                if color[w] == 1:
                    back.add((v, w))
            else:
                color[v] = 2
                stack.pop()
    if not back:
        return pairs
    existing = set(pairs)
    dag: List[Pair] = []
    for s, t in pairs:
        if (s, t) not in back:
            dag.append((s, t))
        elif (t, s) not in existing:
            dag.append((t, s))
            existing.add((t, s))
    return dag


def _longest_path_ranks(order: Sequence[str], dag: List[Pair]) -> Dict[str, int]:
    succ: Dict[str, List[str]] = {n: [] for n in order}
    indeg = {n: 0 for n in order}
    for s, t in dag:
        succ[s].append(t)
        indeg[t] += 1
    rank = {n: 0 for n in order}
    q = deque(n for n in order if indeg[n] == 0)
    while q:
        u = q.popleft()
        for v in succ[u]:
            rank[v] = max(rank[v], rank[u] + 1)
            indeg[v] -= 1
            if indeg[v] == 0:
                q.append(v)
    return rank


def _count_crossings(upper: List[Hashable], lower: List[Hashable], succ: Mapping[Hashable, List[Hashable]]) -> int:
    pos = {n: i for i, n in enumerate(lower)}
    segs = [(i, pos[w]) for i, v in enumerate(upper) for w in succ.get(v, ()) if w in pos]
    crossings = 0
    for a in range(len(segs)):
        for b in range(a + 1, len(segs)):
            (u1, l1), (u2, l2) = segs[a], segs[b]
            if (u1 - u2) * (l1 - l2) < 0:
                crossings += 1
    return crossings


def _total_crossings(layers: List[List[Hashable]], succ: Mapping[Hashable, List[Hashable]]) -> int:
    return sum(_count_crossings(layers[i], layers[i + 1], succ) for i in range(len(layers) - 1))


def _reorder(layer: List[Hashable], fixed: List[Hashable], neighbours: Mapping[Hashable, List[Hashable]]) -> List[Hashable]:
    pos = {n: i for i, n in enumerate(fixed)}

    def barycenter(item: Tuple[int, Hashable]) -> float:
        i, n = item
        linked = [pos[m] for m in neighbours.get(n, ()) if m in pos]
        if not linked:
            return float(i)
        return sum(linked) / len(linked)

    return [n for _, n in sorted(enumerate(layer), key=lambda item: (barycenter(item), item[0]))]


def compute_layout(
    node_ids: Sequence[str],
    edges: Iterable[Pair],
    options: Optional[LayoutOptions] = None,
    **overrides: Any,
) -> Dict[str, Position]:
    """Return the top-left position of every node in ``node_ids``.

    ``edges`` are ``(source, target)`` pairs; pairs that reference unknown
    ids or loop on one node are ignored. Keyword ``overrides`` (``direction``,
    ``nodesep`` ...) replace fields of ``options``. Positions are normalized
    so the drawing starts at ``(0, 0)``.
    """
    opts = options or LayoutOptions()
    if overrides:
        opts = replace(opts, **overrides)
    order = list(dict.fromkeys(node_ids))
    if not order:
        return {}

    pairs = _unique_pairs(set(order), edges)
    dag = _break_cycles(order, pairs)
    rank = _longest_path_ranks(order, dag)

    depth = max(rank.values()) + 1
    layers: List[List[Hashable]] = [[] for _ in range(depth)]
    for n in order:
        layers[rank[n]].append(n)

    succ: Dict[Hashable, List[Hashable]] = {}
    pred: Dict[Hashable, List[Hashable]] = {}

    def link(a: Hashable, b: Hashable) -> None:
        succ.setdefault(a, []).append(b)
        pred.setdefault(b, []).append(a)

    for s, t in dag:
        prev: Hashable = s
        for r in range(rank[s] + 1, rank[t]):
            dummy = _Dummy(s, t, r)
            layers[r].append(dummy)
            link(prev, dummy)
            prev = dummy
        link(prev, t)

    best = [list(layer) for layer in layers]
    best_crossings = _total_crossings(best, succ)
    for _ in range(max(0, opts.sweeps)):
        if best_crossings == 0:
            break
        for i in range(1, depth):
            layers[i] = _reorder(layers[i], layers[i - 1], pred)
        for i in range(depth - 2, -1, -1):
            layers[i] = _reorder(layers[i], layers[i + 1], succ)
        crossings = _total_crossings(layers, succ)
        if crossings < best_crossings:
            best = [list(layer) for layer in layers]
            best_crossings = crossings

    horizontal = opts.direction.upper() == "LR"
    breadth = opts.node_height if horizontal else opts.node_width
    rank_step = (opts.node_width if horizontal else opts.node_height) + opts.ranksep

    centres: Dict[str, Tuple[float, float]] = {}
    for r, layer in enumerate(best):
        widths = [0.0 if isinstance(n, _Dummy) else breadth for n in layer]
        total = sum(widths) + opts.nodesep * (len(layer) - 1)
        cursor = -total / 2
        for n, w in zip(layer, widths):
            along = cursor + w / 2
            cursor += w + opts.nodesep
            if isinstance(n, _Dummy):
                continue
            across = r * rank_step
            centres[n] = (across, along) if horizontal else (along, across)

    half_w, half_h = opts.node_width / 2, opts.node_height / 2
    min_x = min(x for x, _ in centres.values()) - half_w
    min_y = min(y for _, y in centres.values()) - half_h
    return {
        n: Position(x=round(cx - half_w - min_x, 2), y=round(cy - half_h - min_y, 2))
        for n, (cx, cy) in centres.items()
    }


__all__ = ["Position", "LayoutOptions", "layout_key", "compute_layout"]
