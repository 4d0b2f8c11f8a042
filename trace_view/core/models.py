"""Typed records for one trace's in-memory graph.

``TraceInfo`` is validated at the REST boundary and therefore a pydantic
model. Everything the reducer owns (nodes, edges, logs, memory spaces) is a
frozen dataclass so that a transition can only ever produce new values with
:func:`dataclasses.replace`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

TraceStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
NodeStatus = Literal["pending", "running", "success", "error"]

TRACE_STATUSES = ("pending", "running", "completed", "failed", "cancelled")
TERMINAL_TRACE_STATUSES = frozenset({"completed", "failed", "cancelled"})

NODE_STATUSES = ("pending", "running", "success", "error")
TERMINAL_NODE_STATUSES = frozenset({"success", "error"})

# The backend reports node outcomes with trace vocabulary on some frames.
_NODE_STATUS_ALIASES = {
    "completed": "success",
    "complete": "success",
    "succeeded": "success",
    "failed": "error",
    "cancelled": "error",
}

_NODE_RANK = {"pending": 0, "running": 1, "success": 2, "error": 2}
_TRACE_RANK = {"pending": 0, "running": 1, "completed": 2, "failed": 2, "cancelled": 2}


def normalize_node_status(status: Optional[str]) -> Optional[str]:
    """Map wire statuses onto :data:`NODE_STATUSES`; unknown values give ``None``."""
    if not status:
        return None
    s = str(status).lower()
    s = _NODE_STATUS_ALIASES.get(s, s)
    return s if s in _NODE_RANK else None


def advance_node_status(current: str, incoming: Optional[str]) -> str:
    """Return the status after observing ``incoming``.

    Status only moves forward along pending -> running -> success|error; once
    a terminal status is recorded it is kept.
    """
    new = normalize_node_status(incoming)
    if new is None:
        return current
    if _NODE_RANK[new] > _NODE_RANK.get(current, 0):
        return new
    return current


def is_terminal_trace_status(status: Optional[str]) -> bool:
    return status in TERMINAL_TRACE_STATUSES


def trace_status_rank(status: Optional[str]) -> int:
    return _TRACE_RANK.get(status or "", -1)


class TraceInfo(BaseModel):
    """Identity and lifecycle of one trace."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    driver: str = "unknown"
    status: TraceStatus = "pending"
    created_at: int = 0
    updated_at: int = 0
    archived: bool = False
    archived_at: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    team_id: Optional[str] = None
    tenant_id: Optional[str] = None


@dataclass(frozen=True)
class LogEntry:
    timestamp: int
    level: str
    message: str
    node_id: str
    data: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Node:
    """One unit of work in the trace graph."""

    id: str
    label: str = ""
    type: str = "custom"
    status: str = "pending"
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    icon: Optional[str] = None
    description: Optional[str] = None
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    logs: Tuple[LogEntry, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)
    placeholder: bool = False

    @property
    def duration(self) -> Optional[int]:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_NODE_STATUSES


def edge_id(source: str, target: str) -> str:
    return f"{source}-{target}"


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    target_status: Optional[str] = None

    @property
    def id(self) -> str:
        return edge_id(self.source, self.target)


@dataclass(frozen=True)
class MemorySpace:
    """Named key/value bucket attached to a trace."""

    id: str
    label: str = ""
    type: str = "custom"
    icon: Optional[str] = None
    description: Optional[str] = None
    ttl: int = 0
    created_at: int = 0
    updated_at: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.data)


__all__ = [
    "TraceStatus",
    "NodeStatus",
    "TRACE_STATUSES",
    "TERMINAL_TRACE_STATUSES",
    "NODE_STATUSES",
    "TERMINAL_NODE_STATUSES",
    "normalize_node_status",
    "advance_node_status",
    "is_terminal_trace_status",
    "trace_status_rank",
    "TraceInfo",
    "LogEntry",
    "Node",
    "Edge",
    "edge_id",
    "MemorySpace",
]
