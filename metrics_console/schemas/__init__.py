"""Pydantic schema exports."""

from .base import CamelModel
from .dashboard import (
    AnalyticsConfiguration,
    CreateDashboardRequest,
    Dashboard,
    DashboardSummary,
    GridPosition,
    MetricBinding,
    MetricDefinition,
    MetricPreferenceUpdate,
    MetricSettings,
    UpdateDashboardRequest,
)
from .filters import (
    FilterCapabilities,
    FilterConfiguration,
    FilterDimension,
    FilterOption,
)
from .metrics import (
    ChartDataPoint,
    HealthCheckResponse,
    MetricDataRequestSchema,
    MetricDataResponse,
)

__all__ = [
    "AnalyticsConfiguration",
    "CamelModel",
    "ChartDataPoint",
    "CreateDashboardRequest",
    "Dashboard",
    "DashboardSummary",
    "FilterCapabilities",
    "FilterConfiguration",
    "FilterDimension",
    "FilterOption",
    "GridPosition",
    "HealthCheckResponse",
    "MetricBinding",
    "MetricDataRequestSchema",
    "MetricDataResponse",
    "MetricDefinition",
    "MetricPreferenceUpdate",
    "MetricSettings",
    "UpdateDashboardRequest",
]
