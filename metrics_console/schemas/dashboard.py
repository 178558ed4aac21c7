"""Pydantic schemas for dashboards, metric definitions and bindings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import Field, model_validator

from .base import CamelModel
from .filters import (
    DEFAULT_TERMS,
    FALLBACK_DEFAULT_TERM,
    FilterCapabilities,
    FilterDimension,
)

SETTINGS_VERSION = "1.0"


@dataclass(frozen=True)
class GridPosition:
    """Row/column slot of a card in the dashboard grid."""

    row: int
    col: int

    @classmethod
    def from_index(cls, index: int, columns: int) -> "GridPosition":
        return cls(row=index // columns, col=index % columns)

    @classmethod
    def parse(cls, raw: str | None) -> "GridPosition | None":
        """Parse the backend's ``"row,col"`` form; malformed values yield ``None``."""

        if not raw:
            return None
        parts = raw.split(",")
        if len(parts) != 2:
            return None
        try:
            row, col = (int(part.strip()) for part in parts)
        except ValueError:
            return None
        if row < 0 or col < 0:
            return None
        return cls(row=row, col=col)

    def __str__(self) -> str:
        return f"{self.row},{self.col}"


class MetricSettings(CamelModel):
    """Persisted per-binding settings; ``filters`` is stored as sent and may be stale."""

    filters: dict[str, Any] = Field(default_factory=dict)
    last_updated: str | None = None
    saved_at: str | None = None
    version: str = SETTINGS_VERSION

    @model_validator(mode="before")
    @classmethod
    def _coerce_filters(cls, data: Any) -> Any:
        if isinstance(data, dict) and not isinstance(data.get("filters"), dict):
            data = {**data, "filters": {}}
        if isinstance(data, dict) and not data.get("version"):
            data = {**data, "version": SETTINGS_VERSION}
        return data


class MetricDefinition(CamelModel):
    """Catalog entry for a metric; read-only on the client."""

    id: int
    name: str
    display_name: str = ""
    description: str | None = None
    chart_type: str = "Card"
    is_admin_only: bool = False
    supports_date_filter: bool = False
    supports_video_filter: bool = False
    supports_product_filter: bool = False
    supports_user_filter: bool = False
    supports_screen_filter: bool = False
    supports_signer_filter: bool = False
    supports_subscription_category_filter: bool = False
    supports_term: bool = False
    available_terms: list[str] = Field(default_factory=lambda: list(DEFAULT_TERMS))
    default_term: str = FALLBACK_DEFAULT_TERM

    @model_validator(mode="before")
    @classmethod
    def _merge_legacy_term_flag(cls, data: Any) -> Any:
        # Older backends publish ``supportsTermFilter`` instead of ``supportsTerm``.
        if isinstance(data, dict) and data.get("supportsTermFilter"):
            data = {**data, "supportsTerm": True}
        if isinstance(data, dict):
            for key in ("availableTerms", "defaultTerm", "chartType", "displayName"):
                if key in data and not data[key]:
                    data = {k: v for k, v in data.items() if k != key}
        return data

    @property
    def capabilities(self) -> FilterCapabilities:
        flags = {
            FilterDimension.DATE: self.supports_date_filter,
            FilterDimension.VIDEO: self.supports_video_filter,
            FilterDimension.PRODUCT: self.supports_product_filter,
            FilterDimension.USER: self.supports_user_filter,
            FilterDimension.SCREEN: self.supports_screen_filter,
            FilterDimension.SIGNER: self.supports_signer_filter,
            FilterDimension.SUBSCRIPTION_CATEGORY: self.supports_subscription_category_filter,
            FilterDimension.TERM: self.supports_term,
        }
        return FilterCapabilities(
            supported=frozenset(dimension for dimension, enabled in flags.items() if enabled),
            available_terms=tuple(self.available_terms) or DEFAULT_TERMS,
            default_term=self.default_term or FALLBACK_DEFAULT_TERM,
        )

    @property
    def label(self) -> str:
        return self.display_name or self.name


class MetricBinding(MetricDefinition):
    """A metric definition placed on a dashboard."""

    is_visible: bool = True
    sort_order: int = 0
    grid_position: str | None = None
    custom_settings: MetricSettings | None = None

    @property
    def position(self) -> GridPosition | None:
        return GridPosition.parse(self.grid_position)

    @property
    def saved_filters(self) -> dict[str, Any] | None:
        if self.custom_settings is None:
            return None
        return self.custom_settings.filters or None


class DashboardSummary(CamelModel):
    id: int
    name: str
    description: str | None = None
    is_default: bool = False


class Dashboard(DashboardSummary):
    layout_settings: dict[str, Any] = Field(default_factory=dict)
    metrics: list[MetricBinding] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _default_collections(cls, data: Any) -> Any:
        if isinstance(data, dict):
            if data.get("layoutSettings") is None and data.get("layout_settings") is None:
                data = {**data, "layoutSettings": {}}
            if data.get("metrics") is None:
                data = {**data, "metrics": []}
        return data

    def find_metric(self, metric_id: int) -> MetricBinding | None:
        return next((metric for metric in self.metrics if metric.id == metric_id), None)

    def summary(self) -> DashboardSummary:
        return DashboardSummary(
            id=self.id,
            name=self.name,
            description=self.description,
            is_default=self.is_default,
        )


class AnalyticsConfiguration(CamelModel):
    """A catalog group of metric definitions the operator may add."""

    id: int
    name: str
    display_name: str = ""
    description: str | None = None
    chart_types: list[str] = Field(default_factory=list)
    metrics: list[MetricDefinition] = Field(default_factory=list)


class CreateDashboardRequest(CamelModel):
    name: str = Field(..., min_length=1)
    description: str | None = None


class UpdateDashboardRequest(CamelModel):
    name: str = Field(..., min_length=1)
    description: str | None = None
    layout_settings: dict[str, Any] | None = None


class MetricPreferenceUpdate(CamelModel):
    """Visibility/order/position change for one binding."""

    metric_type_id: int
    is_visible: bool = True
    sort_order: int | None = None
    grid_position: str | None = None


__all__ = [
    "AnalyticsConfiguration",
    "CreateDashboardRequest",
    "Dashboard",
    "DashboardSummary",
    "GridPosition",
    "MetricBinding",
    "MetricDefinition",
    "MetricPreferenceUpdate",
    "MetricSettings",
    "SETTINGS_VERSION",
    "UpdateDashboardRequest",
]
