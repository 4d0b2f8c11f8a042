import logging

import streamlit as st

log = logging.getLogger(__name__)


def render_dot(dot: str, *, height: int = 520):
    """Render a Graphviz DOT string in Streamlit."""
    try:
        st.graphviz_chart(dot, width="stretch", height=height)
    except Exception as exc:  # graphviz rendering is best effort
        log.warning("graphviz_render_failed error=%s", exc)
        st.code(dot, language="dot")
