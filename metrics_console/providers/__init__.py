"""Backend clients used by the metrics console."""

from .analytics_api import AnalyticsApiClient, AnalyticsApiError, normalize_filter_options

__all__ = ["AnalyticsApiClient", "AnalyticsApiError", "normalize_filter_options"]
