"""Status to accent color mapping used for edges and node badges."""
from __future__ import annotations

from typing import Dict, Mapping, Optional

STATUS_COLOR: Dict[str, str] = {
    "running": "#3371FC",
    "success": "#52C41A",
    "error":   "#F5222D",
    "default": "#8C8C8C",
}

# trace-level and node-level vocabularies share one palette
_ALIASES = {
    "completed": "success",
    "failed": "error",
}


def resolve_color(status: Optional[str], palette: Optional[Mapping[str, str]] = None) -> str:
    """Return the accent for ``status``; unknown or missing statuses get the default."""
    colors = {**STATUS_COLOR, **(palette or {})}
    key = _ALIASES.get(status or "", status or "")
    return colors.get(key) or colors["default"]


__all__ = ["STATUS_COLOR", "resolve_color"]
