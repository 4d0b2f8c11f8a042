"""Incremental state aggregator for one trace.

All changes to a trace's graph go through :func:`reduce`, which takes the
current :class:`TraceState` and one action and returns the next state. The
function is pure: it never mutates its input, never performs I/O and never
reads the clock. Unknown ids never raise; they degrade to a no-op, a buffered
log or a placeholder node.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from functools import reduce as _fold
from typing import Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from .actions import (
    Action,
    AppendNodeLog,
    RecolorEdgesForTarget,
    RemoveMemoryItem,
    RemoveMemorySpace,
    Reset,
    SetLoadError,
    SetMemoryUpdating,
    SetTraceInfo,
    UpdateMemoryItem,
    UpdateNodeStatus,
    UpdateTraceStatus,
    UpsertEdges,
    UpsertMemorySpace,
    UpsertNodes,
)
from .models import (
    TRACE_STATUSES,
    Edge,
    LogEntry,
    MemorySpace,
    Node,
    TraceInfo,
    advance_node_status,
    is_terminal_trace_status,
    normalize_node_status,
    trace_status_rank,
)


@dataclass(frozen=True)
class TraceState:
    trace_info: Optional[TraceInfo] = None
    nodes: Mapping[str, Node] = field(default_factory=dict)
    edges: Mapping[str, Edge] = field(default_factory=dict)
    spaces: Mapping[str, MemorySpace] = field(default_factory=dict)
    updating_memory_ids: FrozenSet[str] = frozenset()
    # logs that arrived before their node, keyed by node id
    pending_logs: Mapping[str, Tuple[LogEntry, ...]] = field(default_factory=dict)
    load_error: Optional[str] = None

    @property
    def status(self) -> Optional[str]:
        return self.trace_info.status if self.trace_info else None


INITIAL_STATE = TraceState()


def reconcile_trace_status(current: Optional[str], incoming: str) -> str:
    """Status to keep when a snapshot reports ``incoming``.

    Terminal snapshot statuses are authoritative. A non-terminal snapshot
    status never moves the trace backwards from what the stream already
    reported.
    """
    if current is None or is_terminal_trace_status(incoming):
        return incoming
    if trace_status_rank(current) > trace_status_rank(incoming):
        return current
    return incoming


def _reset(state: TraceState, action: Reset) -> TraceState:
    return INITIAL_STATE


def _set_trace_info(state: TraceState, action: SetTraceInfo) -> TraceState:
    info = action.info
    if info is None:
        return replace(state, trace_info=None)
    status = reconcile_trace_status(state.status, info.status)
    if status != info.status:
        info = info.model_copy(update={"status": status})
    return replace(state, trace_info=info)


def _update_trace_status(state: TraceState, action: UpdateTraceStatus) -> TraceState:
    status = action.status
    if status not in TRACE_STATUSES:
        return state
    if state.trace_info is None:
        placeholder = TraceInfo(
            id="",
            driver="unknown",
            status=status,
            created_at=action.at,
            updated_at=action.at,
            archived=False,
        )
        return replace(state, trace_info=placeholder)
    current = state.trace_info.status
    if is_terminal_trace_status(current) and not is_terminal_trace_status(status):
        return state
    if current == status:
        return state
    return replace(state, trace_info=state.trace_info.model_copy(update={"status": status}))


def _pick(new, old):
    return old if new is None else new


def _merge_node(existing: Node, incoming: Node) -> Node:
    return replace(
        existing,
        label=incoming.label or existing.label,
        type=incoming.type or existing.type,
        icon=_pick(incoming.icon, existing.icon),
        status=advance_node_status(existing.status, incoming.status),
        description=_pick(incoming.description, existing.description),
        start_time=_pick(incoming.start_time, existing.start_time),
        end_time=_pick(incoming.end_time, existing.end_time),
        input=_pick(incoming.input, existing.input),
        output=_pick(incoming.output, existing.output),
        error=_pick(incoming.error, existing.error),
        metadata={**existing.metadata, **incoming.metadata},
        placeholder=False,
    )


def _upsert_nodes(state: TraceState, action: UpsertNodes) -> TraceState:
    if not action.nodes:
        return state
    nodes: Dict[str, Node] = dict(state.nodes)
    pending = dict(state.pending_logs)
    for incoming in action.nodes:
        existing = nodes.get(incoming.id)
        if existing is None:
            nodes[incoming.id] = replace(
                incoming,
                status=normalize_node_status(incoming.status) or "pending",
                logs=pending.pop(incoming.id, ()),
                placeholder=False,
            )
        else:
            merged = _merge_node(existing, incoming)
            if incoming.id in pending:
                merged = replace(merged, logs=merged.logs + pending.pop(incoming.id))
            nodes[incoming.id] = merged
    return replace(state, nodes=nodes, pending_logs=pending)


def _update_node_status(state: TraceState, action: UpdateNodeStatus) -> TraceState:
    node = state.nodes.get(action.node_id)
    if node is None:
        return state
    updated = replace(
        node,
        status=advance_node_status(node.status, action.status),
        end_time=_pick(action.end_time, node.end_time),
        output=_pick(action.output, node.output),
        error=_pick(action.error, node.error),
    )
    if updated == node:
        return state
    nodes = dict(state.nodes)
    nodes[node.id] = updated
    return replace(state, nodes=nodes)


def _append_node_log(state: TraceState, action: AppendNodeLog) -> TraceState:
    node = state.nodes.get(action.node_id)
    if node is None:
        pending = dict(state.pending_logs)
        pending[action.node_id] = pending.get(action.node_id, ()) + (action.log,)
        return replace(state, pending_logs=pending)
    nodes = dict(state.nodes)
    nodes[node.id] = replace(node, logs=node.logs + (action.log,))
    return replace(state, nodes=nodes)


def _upsert_edges(state: TraceState, action: UpsertEdges) -> TraceState:
    edges: Dict[str, Edge] = dict(state.edges)
    nodes: Dict[str, Node] = dict(state.nodes)
    pending = dict(state.pending_logs)
    changed = False
    for edge in action.edges:
        if edge.id in edges:
            continue
        for endpoint in (edge.source, edge.target):
            if endpoint not in nodes:
                nodes[endpoint] = Node(
                    id=endpoint,
                    label=endpoint,
                    logs=pending.pop(endpoint, ()),
                    placeholder=True,
                )
        if edge.target_status is None:
            edge = replace(edge, target_status=nodes[edge.target].status)
        edges[edge.id] = edge
        changed = True
    if not changed:
        return state
    return replace(state, edges=edges, nodes=nodes, pending_logs=pending)


def _recolor_edges_for_target(state: TraceState, action: RecolorEdgesForTarget) -> TraceState:
    # edges mirror the node, whose status only moves forward
    node = state.nodes.get(action.node_id)
    if node is not None:
        status = node.status
    else:
        status = normalize_node_status(action.status) or action.status
    edges: Dict[str, Edge] = {}
    changed = False
    for key, edge in state.edges.items():
        if edge.target == action.node_id and edge.target_status != status:
            edge = replace(edge, target_status=status)
            changed = True
        edges[key] = edge
    if not changed:
        return state
    return replace(state, edges=edges)


def _upsert_memory_space(state: TraceState, action: UpsertMemorySpace) -> TraceState:
    spaces = dict(state.spaces)
    incoming = action.space
    existing = spaces.get(incoming.id)
    if existing is not None:
        incoming = replace(incoming, data={**existing.data, **incoming.data})
    spaces[incoming.id] = incoming
    return replace(state, spaces=spaces)


def _update_memory_item(state: TraceState, action: UpdateMemoryItem) -> TraceState:
    space = state.spaces.get(action.space_id)
    if space is None:
        return state
    spaces = dict(state.spaces)
    spaces[space.id] = replace(space, data={**space.data, action.item_id: action.content})
    return replace(state, spaces=spaces)


def _remove_memory_space(state: TraceState, action: RemoveMemorySpace) -> TraceState:
    if action.space_id not in state.spaces:
        return state
    spaces = {k: v for k, v in state.spaces.items() if k != action.space_id}
    return replace(
        state,
        spaces=spaces,
        updating_memory_ids=state.updating_memory_ids - {action.space_id},
    )


def _remove_memory_item(state: TraceState, action: RemoveMemoryItem) -> TraceState:
    space = state.spaces.get(action.space_id)
    if space is None or action.item_id not in space.data:
        return state
    data = {k: v for k, v in space.data.items() if k != action.item_id}
    spaces = dict(state.spaces)
    spaces[space.id] = replace(space, data=data)
    return replace(state, spaces=spaces)


def _set_memory_updating(state: TraceState, action: SetMemoryUpdating) -> TraceState:
    if action.updating:
        if action.space_id not in state.spaces:
            return state
        ids = state.updating_memory_ids | {action.space_id}
    else:
        ids = state.updating_memory_ids - {action.space_id}
    if ids == state.updating_memory_ids:
        return state
    return replace(state, updating_memory_ids=ids)


def _set_load_error(state: TraceState, action: SetLoadError) -> TraceState:
    return replace(state, load_error=action.message)


_HANDLERS: Dict[type, Callable[[TraceState, Action], TraceState]] = {
    Reset: _reset,
    SetTraceInfo: _set_trace_info,
    UpdateTraceStatus: _update_trace_status,
    UpsertNodes: _upsert_nodes,
    UpdateNodeStatus: _update_node_status,
    AppendNodeLog: _append_node_log,
    UpsertEdges: _upsert_edges,
    RecolorEdgesForTarget: _recolor_edges_for_target,
    UpsertMemorySpace: _upsert_memory_space,
    UpdateMemoryItem: _update_memory_item,
    RemoveMemorySpace: _remove_memory_space,
    RemoveMemoryItem: _remove_memory_item,
    SetMemoryUpdating: _set_memory_updating,
    SetLoadError: _set_load_error,
}


def reduce(state: TraceState, action: Action) -> TraceState:
    """Return the state after applying ``action``; unknown actions are ignored."""
    handler = _HANDLERS.get(type(action))
    if handler is None:
        return state
    return handler(state, action)


def reduce_all(state: TraceState, actions: Iterable[Action]) -> TraceState:
    """Apply ``actions`` in order as a single transition."""
    return _fold(reduce, actions, state)


__all__ = [
    "TraceState",
    "INITIAL_STATE",
    "reconcile_trace_status",
    "reduce",
    "reduce_all",
]
