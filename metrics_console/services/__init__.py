"""Service-layer exports."""

from .dashboard_store import DashboardOperationError, DashboardSnapshot, DashboardStore
from .layout import (
    PositionUpdate,
    ReorderEngine,
    ReorderStateError,
    compute_position_updates,
    visible_sorted,
)
from .metric_data import MetricDataFetcher
from .sanitizer import LazyReferences, StaticReferences, reset_filters, sanitize_filters

__all__ = [
    "DashboardOperationError",
    "DashboardSnapshot",
    "DashboardStore",
    "LazyReferences",
    "MetricDataFetcher",
    "PositionUpdate",
    "ReorderEngine",
    "ReorderStateError",
    "StaticReferences",
    "compute_position_updates",
    "reset_filters",
    "sanitize_filters",
    "visible_sorted",
]
