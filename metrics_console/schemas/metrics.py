"""Pydantic schemas for metric data responses."""

from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field, field_validator

from .base import CamelModel


class ChartDataPoint(CamelModel):
    """One chart-ready point; the backend adds metric specific extras."""

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    value: float | int | str | None = None
    label: str | None = None
    date: str | None = None
    percentage: str | float | None = None
    count: int | None = None
    gains: float | int | None = None


class MetricDataResponse(CamelModel):
    metric_id: int
    metric_name: str = ""
    value: Any = None
    chart_data: list[ChartDataPoint] | None = None
    chart_type: str = "Card"
    last_updated: str | None = None
    error: str | None = None

    @field_validator("chart_type", mode="before")
    @classmethod
    def _default_chart_type(cls, value: Any) -> Any:
        return value or "Card"

    @field_validator("error", mode="before")
    @classmethod
    def _blank_error_is_none(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return str(value)


class HealthCheckResponse(CamelModel):
    status: str
    timestamp: str | None = None
    available_metrics: int = 0
    user_is_admin: bool = False
    message: str = ""


class MetricDataRequestSchema(CamelModel):
    """Wire form of a (metric, filters) pair sent to the bulk endpoints."""

    metric_id: int
    filters: dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "ChartDataPoint",
    "HealthCheckResponse",
    "MetricDataRequestSchema",
    "MetricDataResponse",
]
