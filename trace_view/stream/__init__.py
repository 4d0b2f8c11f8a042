"""Transport adapters: REST snapshot loader and SSE event stream client."""

from .client import EventStreamClient
from .frames import decode_frame, translate, translate_frame
from .snapshot import SnapshotLoader, history_actions

__all__ = [
    "EventStreamClient",
    "SnapshotLoader",
    "decode_frame",
    "history_actions",
    "translate",
    "translate_frame",
]
