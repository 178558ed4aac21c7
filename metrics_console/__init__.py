"""Core package for the metrics dashboard console."""

from .config import ConsoleSettings, get_settings
from .models import MetricDataRecord, MetricRequest, MetricStatus

__all__ = [
    "ConsoleSettings",
    "MetricDataRecord",
    "MetricRequest",
    "MetricStatus",
    "get_settings",
]
