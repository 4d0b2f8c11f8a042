"""Wire frames of the trace event stream and their translation into actions.

Decoding is the boundary where malformed input is rejected: anything that
reaches :func:`translate` is a validated :class:`WireEvent`, and everything
:func:`translate` returns is safe to hand to the reducer.
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from trace_view.core.actions import (
    Action,
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
from trace_view.core.models import TRACE_STATUSES, Edge, LogEntry, MemorySpace, Node
from trace_view.utils.errors import FrameDecodeError

EVENT_TYPES = (
    "init",
    "node_start",
    "node_complete",
    "node_failed",
    "log_added",
    "space_created",
    "space_deleted",
    "memory_add",
    "memory_update",
    "memory_delete",
    "complete",
    "error",
)
TERMINAL_EVENT_TYPES = frozenset({"complete", "error"})

_TRACE_STATUS_ALIASES = {"success": "completed", "error": "failed", "canceled": "cancelled"}


def to_ms(value: Any) -> Optional[int]:
    """Coerce an epoch-ms number or ISO-8601 string to integer milliseconds."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("boolean is not a timestamp")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return int(dt.timestamp() * 1000)
    raise ValueError(f"unsupported timestamp: {value!r}")


class _Wire(BaseModel):
    model_config = ConfigDict(extra="ignore")


class WireEvent(_Wire):
    type: str
    trace_id: Optional[str] = None
    node_id: Optional[str] = None
    space_id: Optional[str] = None
    timestamp: int = 0
    data: Any = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _ts(cls, v: Any) -> int:
        return to_ms(v) or 0


class WireNode(_Wire):
    id: str
    label: Optional[str] = None
    type: Optional[str] = None
    icon: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    parent_ids: List[str] = Field(default_factory=list)
    input: Any = None
    output: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _times(cls, v: Any) -> Optional[int]:
        return to_ms(v)

    @field_validator("parent_ids", mode="before")
    @classmethod
    def _parents(cls, v: Any) -> List[str]:
        return [] if v is None else v

    @field_validator("metadata", mode="before")
    @classmethod
    def _meta(cls, v: Any) -> Dict[str, Any]:
        return {} if v is None else v


class WireNodeResult(_Wire):
    node_id: Optional[str] = None
    status: Optional[str] = None
    end_time: Optional[int] = None
    output: Any = None
    error: Optional[str] = None

    @field_validator("end_time", mode="before")
    @classmethod
    def _end(cls, v: Any) -> Optional[int]:
        return to_ms(v)

    @field_validator("error", mode="before")
    @classmethod
    def _error(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, str):
            return v
        return json.dumps(v, ensure_ascii=False, default=str)


class WireLog(_Wire):
    node_id: Optional[str] = None
    timestamp: Optional[int] = None
    level: str = "info"
    message: str = ""
    data: Optional[Dict[str, Any]] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _ts(cls, v: Any) -> Optional[int]:
        return to_ms(v)


class WireSpace(_Wire):
    id: str
    label: Optional[str] = None
    type: Optional[str] = None
    icon: Optional[str] = None
    description: Optional[str] = None
    ttl: int = 0
    created_at: int = 0
    updated_at: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _times(cls, v: Any) -> int:
        return to_ms(v) or 0

    @field_validator("metadata", "data", mode="before")
    @classmethod
    def _maps(cls, v: Any) -> Dict[str, Any]:
        return {} if v is None else v

    def to_space(self) -> MemorySpace:
        return MemorySpace(
            id=self.id,
            label=self.label or self.id,
            type=self.type or "custom",
            icon=self.icon,
            description=self.description,
            ttl=self.ttl,
            created_at=self.created_at,
            updated_at=self.updated_at,
            metadata=dict(self.metadata),
            data=dict(self.data),
        )


class WireItem(_Wire):
    id: str
    content: Any = None


def decode_frame(raw: str | bytes, event_name: Optional[str] = None) -> WireEvent:
    """Parse one frame payload; ``event_name`` fills in a missing ``type``."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise FrameDecodeError(f"frame is not JSON: {exc}", raw=_as_text(raw)) from exc
    if not isinstance(payload, dict):
        raise FrameDecodeError("frame is not a JSON object", raw=_as_text(raw))
    if not payload.get("type") and event_name:
        payload["type"] = event_name
    try:
        return WireEvent.model_validate(payload)
    except ValidationError as exc:
        raise FrameDecodeError(f"invalid frame envelope: {exc.error_count()} error(s)", raw=_as_text(raw)) from exc


def _as_text(raw: Any) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


def _data(event: WireEvent) -> Dict[str, Any]:
    if event.data is None:
        return {}
    if not isinstance(event.data, dict):
        raise FrameDecodeError(f"{event.type} payload is not an object")
    return event.data


def _trace_status(value: Optional[str], default: str) -> str:
    s = (value or default).lower()
    s = _TRACE_STATUS_ALIASES.get(s, s)
    return s if s in TRACE_STATUSES else default


def _node_from_wire(w: WireNode, fallback_start: int) -> Node:
    return Node(
        id=w.id,
        label=w.label or w.id,
        type=w.type or "custom",
        icon=w.icon,
        status=w.status or "pending",
        description=w.description,
        start_time=w.start_time if w.start_time is not None else fallback_start or None,
        end_time=w.end_time,
        input=w.input,
        output=w.output,
        error="Failed" if (w.status or "").lower() in ("failed", "error") else None,
        metadata=dict(w.metadata),
    )


def _node_start(event: WireEvent) -> List[Action]:
    data = _data(event)
    raw_nodes = data.get("nodes")
    if raw_nodes is None:
        raw_nodes = [data["node"]] if data.get("node") is not None else []
    if not isinstance(raw_nodes, list):
        raise FrameDecodeError("node_start 'nodes' is not a list")
    wire = [WireNode.model_validate(n) for n in raw_nodes]
    if not wire:
        return []
    nodes = tuple(_node_from_wire(w, event.timestamp) for w in wire)
    edges = tuple(Edge(source=p, target=w.id) for w in wire for p in w.parent_ids)
    actions: List[Action] = [UpsertNodes(nodes=nodes)]
    if edges:
        actions.append(UpsertEdges(edges=edges))
    actions.extend(RecolorEdgesForTarget(node_id=n.id, status=n.status) for n in nodes)
    return actions


def _node_finished(event: WireEvent) -> List[Action]:
    result = WireNodeResult.model_validate(_data(event))
    node_id = result.node_id or event.node_id
    if not node_id:
        raise FrameDecodeError(f"{event.type} without node_id")
    failed = event.type == "node_failed"
    status = result.status or ("error" if failed else "success")
    error = result.error
    if failed and error is None:
        error = "Failed"
    return [
        UpdateNodeStatus(
            node_id=node_id,
            status=status,
            end_time=result.end_time if result.end_time is not None else event.timestamp or None,
            output=result.output,
            error=error,
        ),
        RecolorEdgesForTarget(node_id=node_id, status=status),
    ]


def _log_added(event: WireEvent) -> List[Action]:
    log = WireLog.model_validate(_data(event))
    node_id = event.node_id or log.node_id
    if not node_id:
        raise FrameDecodeError("log_added without node_id")
    entry = LogEntry(
        timestamp=log.timestamp if log.timestamp is not None else event.timestamp,
        level=log.level,
        message=log.message,
        node_id=node_id,
        data=log.data,
    )
    return [AppendNodeLog(node_id=node_id, log=entry)]


def _space_created(event: WireEvent) -> List[Action]:
    data = dict(_data(event))
    if isinstance(data.get("space"), dict):
        data = dict(data["space"])
    if not data.get("id") and event.space_id:
        data["id"] = event.space_id
    return [UpsertMemorySpace(space=WireSpace.model_validate(data).to_space())]


def _space_id(event: WireEvent, data: Dict[str, Any]) -> str:
    space_id = event.space_id or data.get("space_id")
    if not space_id:
        raise FrameDecodeError(f"{event.type} without space_id")
    return str(space_id)


def _space_deleted(event: WireEvent) -> List[Action]:
    data = _data(event)
    space_id = event.space_id or data.get("space_id") or data.get("id")
    if not space_id:
        raise FrameDecodeError("space_deleted without space_id")
    return [RemoveMemorySpace(space_id=str(space_id))]


def _item(data: Dict[str, Any]) -> WireItem:
    raw = data.get("item")
    if raw is None:
        raw = {"id": data.get("id") or data.get("key"), "content": data.get("content", data.get("value"))}
    return WireItem.model_validate(raw)


def _memory_put(event: WireEvent) -> List[Action]:
    data = _data(event)
    space_id = _space_id(event, data)
    item = _item(data)
    return [
        SetMemoryUpdating(space_id=space_id, updating=True),
        UpdateMemoryItem(space_id=space_id, item_id=item.id, content=item.content),
    ]


def _memory_delete(event: WireEvent) -> List[Action]:
    data = _data(event)
    space_id = _space_id(event, data)
    return [RemoveMemoryItem(space_id=space_id, item_id=_item(data).id)]


def _init(event: WireEvent) -> List[Action]:
    return [UpdateTraceStatus(status="running", at=event.timestamp)]


def _complete(event: WireEvent) -> List[Action]:
    data = event.data if isinstance(event.data, dict) else {}
    return [UpdateTraceStatus(status=_trace_status(data.get("status"), "completed"), at=event.timestamp)]


def _error(event: WireEvent) -> List[Action]:
    return [UpdateTraceStatus(status="failed", at=event.timestamp)]


_TRANSLATORS = {
    "init": _init,
    "node_start": _node_start,
    "node_complete": _node_finished,
    "node_failed": _node_finished,
    "log_added": _log_added,
    "space_created": _space_created,
    "space_deleted": _space_deleted,
    "memory_add": _memory_put,
    "memory_update": _memory_put,
    "memory_delete": _memory_delete,
    "complete": _complete,
    "error": _error,
}


def translate(event: WireEvent) -> List[Action]:
    """Actions for one decoded frame; unknown frame types yield no actions."""
    fn = _TRANSLATORS.get(event.type)
    if fn is None:
        return []
    try:
        return fn(event)
    except ValidationError as exc:
        raise FrameDecodeError(f"invalid {event.type} payload: {exc.error_count()} error(s)") from exc
    except (KeyError, TypeError, ValueError) as exc:
        raise FrameDecodeError(f"invalid {event.type} payload: {exc}") from exc


def translate_frame(raw: str | bytes, event_name: Optional[str] = None) -> List[Action]:
    return translate(decode_frame(raw, event_name))


__all__ = [
    "EVENT_TYPES",
    "TERMINAL_EVENT_TYPES",
    "WireEvent",
    "WireNode",
    "WireNodeResult",
    "WireLog",
    "WireSpace",
    "WireItem",
    "to_ms",
    "decode_frame",
    "translate",
    "translate_frame",
]
