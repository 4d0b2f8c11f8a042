"""Trace graph model, reducer, layout and projection."""

from .aggregator import INITIAL_STATE, TraceState, reduce, reduce_all
from .layout import LayoutOptions, Position, compute_layout
from .projection import GraphProjector, GraphView

__all__ = [
    "INITIAL_STATE",
    "TraceState",
    "reduce",
    "reduce_all",
    "LayoutOptions",
    "Position",
    "compute_layout",
    "GraphProjector",
    "GraphView",
]
