"""Client for the analytics preferences and analytics data backend."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Sequence, TypeVar

import httpx
from opentelemetry.propagate import inject
from pydantic import BaseModel, ValidationError

from metrics_console.config import get_settings
from metrics_console.schemas import (
    AnalyticsConfiguration,
    CreateDashboardRequest,
    Dashboard,
    DashboardSummary,
    FilterCapabilities,
    FilterConfiguration,
    FilterOption,
    HealthCheckResponse,
    MetricDataRequestSchema,
    MetricDataResponse,
    MetricPreferenceUpdate,
    MetricSettings,
    UpdateDashboardRequest,
)

logger = logging.getLogger(__name__)

PREFERENCES_PREFIX = "/api/analyticspreferences"
DATA_PREFIX = "/api/analytics"

ModelT = TypeVar("ModelT", bound=BaseModel)


class AnalyticsApiError(RuntimeError):
    """Raised when the analytics backend cannot be reached or rejects a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _singular(dimension: str) -> str:
    return dimension[:-1] if dimension.endswith("s") else dimension


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def normalize_filter_options(dimension: str, payload: Any) -> list[FilterOption]:
    """Coerce a reference list payload into ``FilterOption`` entries.

    The backend has been seen returning wrapped lists (``{"videos": [...]}``),
    JSON-encoded strings and even ``"[object Object]"`` placeholders. Anything
    without a usable id falls back to its position, and missing names are
    synthesised as ``"<dimension> <n>"``.
    """

    data = payload
    if isinstance(data, dict):
        data = data.get(dimension) or data.get("data") or data
    if not isinstance(data, list):
        logger.warning("Expected a list of %s options, got %s", dimension, type(data).__name__)
        return []

    singular = _singular(dimension)
    options: list[FilterOption] = []
    for index, item in enumerate(data):
        position = index + 1
        fallback_name = f"{singular} {position}"
        if isinstance(item, dict) and "id" in item and isinstance(item.get("name"), str):
            options.append(FilterOption(id=_as_int(item["id"]) or position, name=item["name"]))
            continue
        if isinstance(item, str):
            if "[object Object]" in item:
                logger.error("Unserialisable %s option at index %s: %r", dimension, index, item)
                options.append(FilterOption(id=position, name=fallback_name))
                continue
            if item.startswith(("{", "[")):
                try:
                    parsed = json.loads(item)
                except ValueError:
                    logger.warning("Failed to parse %s option %r as JSON", dimension, item)
                else:
                    if isinstance(parsed, dict):
                        options.append(
                            FilterOption(
                                id=_as_int(parsed.get("id")) or position,
                                name=str(parsed.get("name") or fallback_name),
                            )
                        )
                        continue
            options.append(FilterOption(id=position, name=item))
            continue
        if isinstance(item, dict):
            options.append(FilterOption(id=_as_int(item.get("id")) or position, name=str(item.get("name") or fallback_name)))
            continue
        text = "" if item is None else str(item)
        options.append(FilterOption(id=_as_int(item) or position, name=text or fallback_name))
    return options


def _metrics_list(payload: Any) -> list[Any]:
    if isinstance(payload, dict):
        payload = payload.get("metrics", [])
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise AnalyticsApiError("Analytics backend returned metrics in an unexpected shape")
    return payload


def _validate(model: type[ModelT], payload: Any, what: str) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise AnalyticsApiError(f"Analytics backend returned {what} in an unexpected shape: {exc}") from exc


def _parse_metric_responses(items: Iterable[Any]) -> list[MetricDataResponse]:
    responses: list[MetricDataResponse] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            responses.append(MetricDataResponse.model_validate(item))
        except ValidationError as exc:
            logger.warning("Skipping malformed metric data entry %r: %s", item, exc)
    return responses


class AnalyticsApiClient:
    """Async wrapper around the analytics REST endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.api_base_url).rstrip("/")
        self._token = token if token is not None else settings.api_token
        self._timeout = timeout_seconds or settings.request_timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout)

    async def __aenter__(self) -> "AnalyticsApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        headers: dict[str, str] = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        # Propagate the active trace so backend spans join the fetch span
        inject(headers)
        try:
            response = await self._client.request(method, url, json=json_body, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise AnalyticsApiError(f"Failed to reach analytics backend: {exc}") from exc

        if response.status_code >= 400:
            detail: Any
            try:
                payload = response.json()
                detail = payload
                if isinstance(payload, dict):
                    detail = payload.get("message") or payload.get("detail") or payload
            except ValueError:
                detail = response.text
            raise AnalyticsApiError(
                f"Analytics backend error {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise AnalyticsApiError("Analytics backend returned invalid JSON payload") from exc

    # Dashboards

    async def get_user_dashboards(self) -> list[DashboardSummary]:
        payload = await self._request("GET", f"{PREFERENCES_PREFIX}/dashboards")
        if not isinstance(payload, list):
            raise AnalyticsApiError("Dashboard list response is not a list")
        return [_validate(DashboardSummary, item, "dashboard summary") for item in payload]

    async def get_user_dashboard(self, dashboard_id: int | None = None) -> Dashboard | None:
        params = {"dashboardId": dashboard_id} if dashboard_id else None
        payload = await self._request("GET", f"{PREFERENCES_PREFIX}/dashboard", params=params)
        if payload is None:
            return None
        return _validate(Dashboard, payload, "dashboard")

    async def create_dashboard(self, request: CreateDashboardRequest) -> Dashboard:
        payload = await self._request("POST", f"{PREFERENCES_PREFIX}/dashboards", json_body=request.to_payload())
        return _validate(Dashboard, payload, "dashboard")

    async def update_dashboard(self, dashboard_id: int, request: UpdateDashboardRequest) -> Dashboard | None:
        payload = await self._request(
            "PUT",
            f"{PREFERENCES_PREFIX}/dashboards/{dashboard_id}",
            json_body=request.to_payload(),
        )
        if payload is None:
            return None
        return _validate(Dashboard, payload, "dashboard")

    async def delete_dashboard(self, dashboard_id: int) -> None:
        await self._request("DELETE", f"{PREFERENCES_PREFIX}/dashboards/{dashboard_id}")

    async def set_default_dashboard(self, dashboard_id: int) -> None:
        await self._request("PUT", f"{PREFERENCES_PREFIX}/dashboards/{dashboard_id}/set-default")

    async def get_available_analytics(self) -> list[AnalyticsConfiguration]:
        payload = await self._request("GET", f"{PREFERENCES_PREFIX}/available")
        if not isinstance(payload, list):
            raise AnalyticsApiError("Available analytics response is not a list")
        return [_validate(AnalyticsConfiguration, item, "analytics configuration") for item in payload]

    # Metric bindings

    async def update_metric_preference(
        self,
        metric_id: int,
        *,
        is_visible: bool,
        sort_order: int | None = None,
        grid_position: str | None = None,
        dashboard_id: int | None = None,
    ) -> None:
        body: dict[str, Any] = {"isVisible": is_visible}
        if sort_order is not None:
            body["sortOrder"] = sort_order
        if grid_position is not None:
            body["gridPosition"] = grid_position
        if dashboard_id is not None:
            body["dashboardId"] = dashboard_id
        await self._request("PUT", f"{PREFERENCES_PREFIX}/metrics/{metric_id}", json_body=body)

    async def bulk_update_metrics(
        self,
        updates: Sequence[MetricPreferenceUpdate],
        dashboard_id: int | None = None,
    ) -> None:
        body: dict[str, Any] = {"updates": [update.to_payload() for update in updates]}
        if dashboard_id is not None:
            body["dashboardId"] = dashboard_id
        await self._request("PUT", f"{PREFERENCES_PREFIX}/metrics/bulk", json_body=body)

    async def update_metric_settings(
        self,
        metric_id: int,
        settings: MetricSettings,
        dashboard_id: int | None = None,
    ) -> None:
        body: dict[str, Any] = {"customSettings": settings.to_payload()}
        if dashboard_id is not None:
            body["dashboardId"] = dashboard_id
        await self._request("PUT", f"{PREFERENCES_PREFIX}/metrics/{metric_id}/settings", json_body=body)

    # Metric data

    async def get_single_metric_data(
        self,
        metric_id: int,
        filters: FilterConfiguration,
    ) -> MetricDataResponse | None:
        payload = await self._request("POST", f"{DATA_PREFIX}/data/{metric_id}", json_body=filters.to_payload())
        if not payload:
            return None
        return _validate(MetricDataResponse, payload, "metric data")

    async def get_dashboard_metrics_data(
        self,
        dashboard_id: int,
        requests: Sequence[MetricDataRequestSchema],
    ) -> list[MetricDataResponse]:
        payload = await self._request(
            "POST",
            f"{DATA_PREFIX}/data/dashboard/{dashboard_id}",
            json_body={"metricRequests": [request.to_payload() for request in requests]},
        )
        return _parse_metric_responses(_metrics_list(payload))

    async def get_enhanced_metrics_data(
        self,
        requests: Sequence[MetricDataRequestSchema],
    ) -> list[MetricDataResponse]:
        payload = await self._request(
            "POST",
            f"{DATA_PREFIX}/data/bulk-enhanced",
            json_body={"metricRequests": [request.to_payload() for request in requests]},
        )
        return _parse_metric_responses(_metrics_list(payload))

    # Filters

    async def get_available_filters(self, metric_id: int) -> FilterCapabilities:
        payload = await self._request("GET", f"{DATA_PREFIX}/filters/{metric_id}")
        if payload is not None and not isinstance(payload, dict):
            raise AnalyticsApiError("Available filters response is not an object")
        return FilterCapabilities.from_payload(payload)

    async def get_filter_options(self, dimension: str) -> list[FilterOption]:
        payload = await self._request("GET", f"{DATA_PREFIX}/filter-options/{dimension}")
        return normalize_filter_options(dimension, payload)

    async def health_check(self) -> HealthCheckResponse:
        payload = await self._request("GET", f"{DATA_PREFIX}/health")
        return _validate(HealthCheckResponse, payload or {"status": "unknown"}, "health check")


__all__ = ["AnalyticsApiClient", "AnalyticsApiError", "normalize_filter_options"]
