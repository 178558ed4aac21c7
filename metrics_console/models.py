"""Domain records held in the dashboard store."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from .schemas.filters import FilterConfiguration
from .schemas.metrics import ChartDataPoint, MetricDataResponse

NOT_AVAILABLE_MESSAGE = "Metric data not available"
NO_DATA_MESSAGE = "No data received"


class MetricStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class MetricRequest:
    """A metric paired with the filters it should be evaluated with."""

    metric_id: int
    filters: FilterConfiguration = field(default_factory=FilterConfiguration)


@dataclass(frozen=True)
class MetricDataRecord:
    """Latest known evaluation of one metric binding.

    Exactly one of loading, error or ready applies at a time. ``request_seq`` is
    the sequence number of the fetch that produced the record.
    """

    metric_id: int
    name: str
    status: MetricStatus
    chart_type: str = "Card"
    value: Any = None
    series: Optional[tuple[ChartDataPoint, ...]] = None
    error: Optional[str] = None
    last_updated: Optional[str] = None
    current_filters: Optional[FilterConfiguration] = None
    request_seq: int = 0

    @property
    def loading(self) -> bool:
        return self.status is MetricStatus.LOADING

    @property
    def ready(self) -> bool:
        return self.status is MetricStatus.READY

    @classmethod
    def placeholder_name(cls, metric_id: int) -> str:
        return f"Metric {metric_id}"

    @classmethod
    def pending(
        cls,
        metric_id: int,
        prior: "MetricDataRecord | None",
        *,
        filters: FilterConfiguration | None,
        request_seq: int,
    ) -> "MetricDataRecord":
        """Loading record that keeps the prior label, chart kind and series."""

        if prior is None:
            return cls(
                metric_id=metric_id,
                name=cls.placeholder_name(metric_id),
                status=MetricStatus.LOADING,
                current_filters=filters,
                request_seq=request_seq,
            )
        return replace(
            prior,
            status=MetricStatus.LOADING,
            error=None,
            current_filters=filters,
            request_seq=request_seq,
        )

    @classmethod
    def from_response(
        cls,
        response: MetricDataResponse,
        *,
        filters: FilterConfiguration | None,
        request_seq: int,
    ) -> "MetricDataRecord":
        series = tuple(response.chart_data) if response.chart_data is not None else None
        return cls(
            metric_id=response.metric_id,
            name=response.metric_name or cls.placeholder_name(response.metric_id),
            status=MetricStatus.ERROR if response.error else MetricStatus.READY,
            chart_type=response.chart_type,
            value=response.value,
            series=series,
            error=response.error,
            last_updated=response.last_updated,
            current_filters=filters,
            request_seq=request_seq,
        )

    @classmethod
    def failed(
        cls,
        metric_id: int,
        prior: "MetricDataRecord | None",
        message: str,
        *,
        filters: FilterConfiguration | None,
        request_seq: int,
    ) -> "MetricDataRecord":
        """Error record; name and chart kind survive from ``prior`` so the label does not flicker."""

        return cls(
            metric_id=metric_id,
            name=prior.name if prior else cls.placeholder_name(metric_id),
            status=MetricStatus.ERROR,
            chart_type=prior.chart_type if prior else "Card",
            value=None,
            series=None,
            error=message,
            last_updated=prior.last_updated if prior else None,
            current_filters=filters,
            request_seq=request_seq,
        )


__all__ = [
    "MetricDataRecord",
    "MetricRequest",
    "MetricStatus",
    "NOT_AVAILABLE_MESSAGE",
    "NO_DATA_MESSAGE",
]
