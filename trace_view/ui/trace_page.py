from __future__ import annotations

import time
from typing import Any, Dict, Mapping, Optional

import streamlit as st

from trace_view.config import load_config
from trace_view.core.projection import (
    GraphProjector,
    GraphView,
    MemoryCard,
    format_duration,
    to_dot,
)
from trace_view.core.models import is_terminal_trace_status
from trace_view.session import TraceSession

from .graph import render_dot

STATUS_BADGES = {
    "pending": "⏸️",
    "running": "⏳",
    "completed": "✅",
    "failed": "⚠️",
    "cancelled": "⛔",
}

SESSION_KEY = "trace_view_session"
PROJECTOR_KEY = "trace_view_projector"


def _session(cfg: Mapping[str, Any]) -> TraceSession:
    session = st.session_state.get(SESSION_KEY)
    if session is None:
        session = TraceSession(cfg)
        st.session_state[SESSION_KEY] = session
    return session


def _projector(cfg: Mapping[str, Any]) -> GraphProjector:
    projector = st.session_state.get(PROJECTOR_KEY)
    if projector is None:
        projector = GraphProjector.from_config(cfg)
        st.session_state[PROJECTOR_KEY] = projector
    return projector


def render_memory(cards: list[MemoryCard]) -> None:
    if not cards:
        return
    st.subheader("Memory")
    cols = st.columns(min(len(cards), 4))
    for i, card in enumerate(cards):
        with cols[i % len(cols)]:
            marker = " 🔄" if card.updating else ""
            st.markdown(f"**{card.title}**{marker}  \n`{card.type}` · {card.count} items")
            for preview in card.previews:
                st.caption(preview)


def render_nodes(view: GraphView) -> None:
    rows = []
    for rn in sorted(view.nodes, key=lambda r: (r.position.y, r.position.x)):
        n = rn.node
        rows.append(
            {
                "node": n.label or n.id,
                "type": n.type,
                "status": n.status,
                "duration": format_duration(rn.duration),
                "logs": len(n.logs),
            }
        )
    if rows:
        st.dataframe(rows, hide_index=True)
    for rn in view.nodes:
        n = rn.node
        if not (n.logs or n.output is not None or n.error):
            continue
        with st.expander(f"{n.label or n.id} · {n.status}"):
            if n.error:
                st.error(n.error)
            for entry in n.logs:
                st.text(f"[{entry.level}] {entry.message}")
            if n.output is not None:
                st.json(n.output)


def render_view(view: GraphView) -> None:
    """Draw one projected frame of the trace."""
    if view.load_error:
        st.error(view.load_error)
        return
    status = view.trace_status or "pending"
    st.markdown(f"**Status:** {STATUS_BADGES.get(status, '')} {status}")
    render_memory(view.memory)
    if view.nodes:
        render_dot(to_dot(view))
        render_nodes(view)
    else:
        st.info("Waiting for the first node…")


def main(cfg: Optional[Dict[str, Any]] = None) -> None:
    cfg = cfg or load_config()
    st.title("Trace viewer")
    default_id = st.query_params.get("trace_id", "")
    trace_id = st.text_input("Trace id", value=default_id).strip()

    session = _session(cfg)
    projector = _projector(cfg)
    if trace_id != (session.trace_id or "") and (trace_id or session.trace_id is not None):
        st.query_params["trace_id"] = trace_id
        session.open(trace_id)

    if session.trace_id is None:
        st.caption("Enter a trace id to follow it live.")
        return

    view = projector.project(session.state)
    render_view(view)

    refresh_s = float((cfg.get("view") or {}).get("refresh_s", 1.0))
    # keep polling the session until the trace settles
    if not view.load_error and not is_terminal_trace_status(view.trace_status):
        time.sleep(refresh_s)
        st.rerun()


__all__ = ["main", "render_view", "render_memory", "render_nodes"]
