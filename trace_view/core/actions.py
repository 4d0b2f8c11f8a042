"""State transitions understood by :func:`trace_view.core.aggregator.reduce`.

Each class is one event kind. Actions are plain immutable values so that the
stream client, the snapshot loader and tests can all build them without
touching the state they will be applied to.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

from .models import Edge, LogEntry, MemorySpace, Node, TraceInfo


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class SetTraceInfo:
    info: Optional[TraceInfo]


@dataclass(frozen=True)
class UpdateTraceStatus:
    status: str
    at: int = 0  # ms timestamp used when a placeholder TraceInfo is needed


@dataclass(frozen=True)
class UpsertNodes:
    nodes: Tuple[Node, ...]


@dataclass(frozen=True)
class UpdateNodeStatus:
    node_id: str
    status: Optional[str] = None
    end_time: Optional[int] = None
    output: Any = None
    error: Optional[str] = None


@dataclass(frozen=True)
class AppendNodeLog:
    node_id: str
    log: LogEntry


@dataclass(frozen=True)
class UpsertEdges:
    edges: Tuple[Edge, ...]


@dataclass(frozen=True)
class RecolorEdgesForTarget:
    node_id: str
    status: str


@dataclass(frozen=True)
class UpsertMemorySpace:
    space: MemorySpace


@dataclass(frozen=True)
class UpdateMemoryItem:
    space_id: str
    item_id: str
    content: Any


@dataclass(frozen=True)
class RemoveMemorySpace:
    space_id: str


@dataclass(frozen=True)
class RemoveMemoryItem:
    space_id: str
    item_id: str


@dataclass(frozen=True)
class SetMemoryUpdating:
    space_id: str
    updating: bool


@dataclass(frozen=True)
class SetLoadError:
    message: Optional[str]


Action = Union[
    Reset,
    SetTraceInfo,
    UpdateTraceStatus,
    UpsertNodes,
    UpdateNodeStatus,
    AppendNodeLog,
    UpsertEdges,
    RecolorEdgesForTarget,
    UpsertMemorySpace,
    UpdateMemoryItem,
    RemoveMemorySpace,
    RemoveMemoryItem,
    SetMemoryUpdating,
    SetLoadError,
]

__all__ = [
    "Action",
    "Reset",
    "SetTraceInfo",
    "UpdateTraceStatus",
    "UpsertNodes",
    "UpdateNodeStatus",
    "AppendNodeLog",
    "UpsertEdges",
    "RecolorEdgesForTarget",
    "UpsertMemorySpace",
    "UpdateMemoryItem",
    "RemoveMemorySpace",
    "RemoveMemoryItem",
    "SetMemoryUpdating",
    "SetLoadError",
]
