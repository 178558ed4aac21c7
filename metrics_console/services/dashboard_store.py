"""Dashboard orchestration: selection, bindings, filters and metric data."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Iterator, Mapping, Sequence, TypeVar

from metrics_console.config import ConsoleSettings, get_settings
from metrics_console.models import MetricDataRecord, MetricRequest
from metrics_console.providers.analytics_api import AnalyticsApiClient, AnalyticsApiError
from metrics_console.schemas import (
    AnalyticsConfiguration,
    CreateDashboardRequest,
    Dashboard,
    DashboardSummary,
    FilterCapabilities,
    FilterConfiguration,
    FilterOption,
    GridPosition,
    HealthCheckResponse,
    MetricBinding,
    MetricPreferenceUpdate,
    MetricSettings,
    UpdateDashboardRequest,
)
from metrics_console.services.layout import (
    PositionUpdate,
    ReorderEngine,
    ReorderState,
    ReorderStateError,
    visible_sorted,
)
from metrics_console.services.metric_data import MetricDataFetcher
from metrics_console.services.sanitizer import LazyReferences, reset_filters, sanitize_filters

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANCELLED_MESSAGE = "Request cancelled"

Listener = Callable[["DashboardSnapshot"], None]
MetricRecords = dict[int, MetricDataRecord]


class DashboardOperationError(RuntimeError):
    """Raised when a dashboard level change must be surfaced to the operator."""


@dataclass(frozen=True)
class DashboardSnapshot:
    """Read-only view of the store at one instant."""

    dashboards: tuple[DashboardSummary, ...]
    current_dashboard: Dashboard | None
    available_analytics: tuple[AnalyticsConfiguration, ...]
    metrics_data: Mapping[int, MetricDataRecord]
    loading: bool
    error: str | None
    reorder_state: ReorderState


class DashboardStore:
    """Single owner of dashboard and metric data state.

    Server-side changes are followed by a reload from the backend rather than
    local patching; the default-dashboard flag and saved metric settings are
    the exceptions and are patched only after the backend accepted them.

    Metric data loads are plain methods: they mark every requested metric as
    loading before returning and hand back an ``asyncio.Task`` for the round
    trip. Each metric carries a request sequence number and responses from a
    superseded request are discarded.
    """

    def __init__(
        self,
        api: AnalyticsApiClient,
        *,
        fetcher: MetricDataFetcher | None = None,
        settings: ConsoleSettings | None = None,
        is_admin: bool | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._api = api
        self._fetcher = fetcher or MetricDataFetcher(api, timeout_seconds=settings.metric_fetch_timeout_seconds)
        self._is_admin = settings.is_admin if is_admin is None else is_admin
        self._reorder = ReorderEngine(columns=settings.grid_columns, enabled=settings.drag_and_drop_enabled)

        self._dashboards: tuple[DashboardSummary, ...] = ()
        self._current: Dashboard | None = None
        self._available: tuple[AnalyticsConfiguration, ...] = ()
        self._metrics: MetricRecords = {}
        self._pending_operations = 0
        self._error: str | None = None

        self._metric_seq: dict[int, int] = {}
        self._dashboard_seq = 0
        self._inflight: set[asyncio.Task[Any]] = set()
        self._listeners: list[Listener] = []

    # State

    def snapshot(self) -> DashboardSnapshot:
        return DashboardSnapshot(
            dashboards=self._dashboards,
            current_dashboard=self._current,
            available_analytics=self._available,
            metrics_data=MappingProxyType(dict(self._metrics)),
            loading=self._pending_operations > 0,
            error=self._error,
            reorder_state=self._reorder.state,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with a fresh snapshot after every state change."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)

    @contextmanager
    def _operation(self) -> Iterator[None]:
        self._pending_operations += 1
        self._error = None
        self._notify()
        try:
            yield
        finally:
            self._pending_operations -= 1
            self._notify()

    def _fail(self, action: str, exc: Exception | str) -> None:
        logger.error("Failed to %s: %s", action, exc)
        self._error = str(exc)
        self._notify()

    def clear_error(self) -> None:
        self._error = None
        self._notify()

    def _target_dashboard_id(self, dashboard_id: int | None) -> int | None:
        if dashboard_id:
            return dashboard_id
        return self._current.id if self._current else None

    def _is_current(self, dashboard_id: int | None) -> bool:
        return self._current is not None and dashboard_id == self._current.id

    # Dashboards

    async def load_dashboards(self) -> None:
        with self._operation():
            try:
                dashboards = await self._api.get_user_dashboards()
            except AnalyticsApiError as exc:
                self._fail("load dashboards", exc)
                return
            self._dashboards = tuple(dashboards)

    async def load_available_analytics(self) -> None:
        with self._operation():
            try:
                available = await self._api.get_available_analytics()
            except AnalyticsApiError as exc:
                self._fail("load available analytics", exc)
                return
            self._available = tuple(available)

    async def load_current_dashboard(
        self,
        dashboard_id: int | None = None,
        *,
        with_data: bool = True,
    ) -> Dashboard | None:
        """Load a dashboard (the default one when ``dashboard_id`` is omitted) and its metric data."""

        self._dashboard_seq += 1
        token = self._dashboard_seq
        with self._operation():
            try:
                dashboard = await self._api.get_user_dashboard(dashboard_id)
            except AnalyticsApiError as exc:
                self._fail("load dashboard", exc)
                return None
            if token != self._dashboard_seq:
                logger.info("Discarding dashboard %s response superseded by a newer load", dashboard_id)
                return None
            if dashboard is None:
                self._fail("load dashboard", "No dashboard data received")
                return None
            if self._current is not None and self._current.id != dashboard.id:
                self._leave_current_dashboard()
            self._current = dashboard
            logger.info("Loaded dashboard %s with %d metrics", dashboard.id, len(dashboard.metrics))

        if with_data:
            await self._settle(self.load_dashboard_metrics_data(dashboard.id))
        return dashboard

    def _leave_current_dashboard(self) -> None:
        self.cancel_pending_fetches()
        self._invalidate(self._metrics)
        self._metrics = {}
        if not self._reorder.is_idle:
            try:
                self._reorder.cancel()
            except ReorderStateError:
                logger.warning("Switching dashboards while a reorder is being committed")

    async def create_dashboard(self, name: str, description: str | None = None) -> Dashboard | None:
        if not name or not name.strip():
            self._fail("create dashboard", "Dashboard name is required")
            return None
        with self._operation():
            try:
                created = await self._api.create_dashboard(
                    CreateDashboardRequest(name=name.strip(), description=description)
                )
            except AnalyticsApiError as exc:
                self._fail("create dashboard", exc)
                return None
            await self.load_dashboards()
            return created

    async def update_dashboard(self, dashboard_id: int, name: str, description: str | None = None) -> bool:
        if not name or not name.strip():
            self._fail("update dashboard", "Dashboard name is required")
            return False
        with self._operation():
            try:
                await self._api.update_dashboard(
                    dashboard_id,
                    UpdateDashboardRequest(name=name.strip(), description=description),
                )
            except AnalyticsApiError as exc:
                self._fail("update dashboard", exc)
                return False
            if self._is_current(dashboard_id):
                await self.load_current_dashboard(dashboard_id, with_data=False)
            await self.load_dashboards()
            return True

    async def delete_dashboard(self, dashboard_id: int) -> bool:
        """Delete a dashboard; deleting the default one is left to the backend to resolve."""

        with self._operation():
            try:
                await self._api.delete_dashboard(dashboard_id)
            except AnalyticsApiError as exc:
                self._fail("delete dashboard", exc)
                return False
            if self._is_current(dashboard_id):
                self._leave_current_dashboard()
                self._current = None
            await self.load_dashboards()
            return True

    async def set_default_dashboard(self, dashboard_id: int) -> bool:
        with self._operation():
            try:
                await self._api.set_default_dashboard(dashboard_id)
            except AnalyticsApiError as exc:
                self._fail("set default dashboard", exc)
                return False
            self._dashboards = tuple(
                dashboard.model_copy(update={"is_default": dashboard.id == dashboard_id})
                for dashboard in self._dashboards
            )
            if self._current is not None:
                self._current = self._current.model_copy(update={"is_default": self._current.id == dashboard_id})
            return True

    # Metric bindings

    async def update_metric_visibility(
        self,
        metric_id: int,
        is_visible: bool,
        dashboard_id: int | None = None,
    ) -> bool:
        target = self._target_dashboard_id(dashboard_id)
        with self._operation():
            try:
                await self._api.update_metric_preference(metric_id, is_visible=is_visible, dashboard_id=target)
            except AnalyticsApiError as exc:
                self._fail("update metric visibility", exc)
                return False
            if self._is_current(target):
                await self.load_current_dashboard(target)
            return True

    async def remove_metric(self, metric_id: int) -> bool:
        return await self.update_metric_visibility(metric_id, False)

    async def add_metrics(self, metric_ids: Iterable[int]) -> bool:
        """Show catalog metrics on the current dashboard, appended after the visible cards."""

        if self._current is None:
            self._fail("add metrics", "No dashboard selected")
            return False
        columns = self._reorder.columns
        visible = visible_sorted(self._current.metrics)
        visible_ids = {binding.id for binding in visible}
        next_order = max((binding.sort_order for binding in visible), default=-1) + 1
        updates: list[MetricPreferenceUpdate] = []
        for metric_id in dict.fromkeys(metric_ids):
            if metric_id in visible_ids:
                continue
            offset = len(updates)
            updates.append(
                MetricPreferenceUpdate(
                    metric_type_id=metric_id,
                    is_visible=True,
                    sort_order=next_order + offset,
                    grid_position=str(GridPosition.from_index(len(visible) + offset, columns)),
                )
            )
        if not updates:
            return True
        return await self.bulk_update_metrics(updates)

    async def bulk_update_metrics(
        self,
        updates: Sequence[MetricPreferenceUpdate],
        dashboard_id: int | None = None,
    ) -> bool:
        target = self._target_dashboard_id(dashboard_id)
        with self._operation():
            try:
                await self._api.bulk_update_metrics(updates, target)
            except AnalyticsApiError as exc:
                self._fail("update metrics", exc)
                return False
            if self._is_current(target):
                await self.load_current_dashboard(target)
            return True

    async def update_metric_positions(
        self,
        updates: Sequence[PositionUpdate],
        dashboard_id: int | None = None,
    ) -> None:
        """Commit a batch of sort orders and grid slots as one preference update."""

        target = self._target_dashboard_id(dashboard_id)
        with self._operation():
            if not target:
                self._fail("update metric positions", "No dashboard ID available for updating metric positions")
                raise DashboardOperationError("No dashboard ID available for updating metric positions")
            try:
                await self._api.bulk_update_metrics([update.to_preference() for update in updates], target)
            except AnalyticsApiError as exc:
                self._fail("update metric positions", exc)
                raise DashboardOperationError(f"Failed to update metric positions: {exc}") from exc
            if not self._is_current(target):
                return
            reloaded = await self.load_current_dashboard(target)
            if reloaded is None and self._is_current(target):
                # Backend accepted the order but the reload failed; show what was committed
                self._current = _with_positions(self._current, updates)

    # Reordering

    def begin_drag(self, metric_id: int) -> None:
        if self._current is None:
            raise DashboardOperationError("No dashboard selected")
        self._reorder.begin_drag(metric_id, self._current.metrics)
        self._notify()

    def drag_enter(self, target_metric_id: int) -> None:
        self._reorder.drag_enter(target_metric_id)
        self._notify()

    def cancel_drag(self) -> None:
        self._reorder.cancel()
        self._notify()

    async def end_drag(self) -> None:
        """Drop the dragged card and commit the resulting order.

        On failure the optimistic order is discarded, the authoritative order
        (never touched during the drag) is shown again and the error re-raised.
        """

        updates = self._reorder.drop()
        self._notify()
        try:
            await self.update_metric_positions(updates, self._current.id if self._current else None)
        except BaseException:
            self._reorder.commit_failed()
            self._notify()
            raise
        self._reorder.commit_succeeded()
        self._notify()

    def display_order(self) -> list[MetricBinding]:
        return self._reorder.display_order(self._current.metrics if self._current else [])

    # Filters

    async def load_filter_options(self, list_name: str) -> list[FilterOption]:
        try:
            return await self._api.get_filter_options(list_name)
        except AnalyticsApiError as exc:
            logger.error("Failed to load %s filter options: %s", list_name, exc)
            return []

    async def get_metric_available_filters(self, metric_id: int) -> FilterCapabilities:
        try:
            return await self._api.get_available_filters(metric_id)
        except AnalyticsApiError as exc:
            logger.error("Failed to get available filters for metric %s: %s", metric_id, exc)
            return FilterCapabilities.unsupported()

    def load_metric_settings(self, metric_id: int) -> dict[str, Any] | None:
        """Saved (unvalidated) filters of a binding on the current dashboard."""

        if self._current is None:
            return None
        binding = self._current.find_metric(metric_id)
        return binding.saved_filters if binding else None

    async def load_validated_metric_settings(self, metric_id: int) -> FilterConfiguration:
        """Saved filters reconciled with the metric's live capabilities and reference lists."""

        capabilities = await self.get_metric_available_filters(metric_id)
        saved = self.load_metric_settings(metric_id)
        if saved is None:
            return reset_filters(capabilities)
        return await sanitize_filters(
            saved,
            capabilities,
            LazyReferences(self.load_filter_options),
            is_admin=self._is_admin,
        )

    async def save_metric_settings(
        self,
        metric_id: int,
        filters: FilterConfiguration,
        dashboard_id: int | None = None,
    ) -> MetricSettings:
        """Persist filters for a binding; raises ``AnalyticsApiError`` when the backend rejects them."""

        target = self._target_dashboard_id(dashboard_id)
        now = datetime.now(timezone.utc).isoformat()
        settings = MetricSettings(filters=filters.to_payload(), last_updated=now, saved_at=now)
        await self._api.update_metric_settings(metric_id, settings, target)
        logger.info("Saved filters for metric %s on dashboard %s", metric_id, target)
        if self._is_current(target):
            self._current = self._current.model_copy(
                update={
                    "metrics": [
                        binding.model_copy(update={"custom_settings": settings}) if binding.id == metric_id else binding
                        for binding in self._current.metrics
                    ]
                }
            )
            self._notify()
        return settings

    async def apply_metric_filters(self, metric_id: int, filters: FilterConfiguration) -> MetricRecords | None:
        """Save the filters, then refresh the metric with them."""

        with self._operation():
            try:
                await self.save_metric_settings(metric_id, filters)
            except AnalyticsApiError as exc:
                self._fail("apply filters", f"Failed to apply filters: {exc}")
                return None
            return await self._settle(self.refresh_metric_with_filters(metric_id, filters))

    async def reset_metric_filters(self, metric_id: int) -> FilterConfiguration:
        capabilities = await self.get_metric_available_filters(metric_id)
        filters = reset_filters(capabilities)
        await self.apply_metric_filters(metric_id, filters)
        return filters

    # Metric data

    def _invalidate(self, metric_ids: Iterable[int]) -> None:
        for metric_id in list(metric_ids):
            self._metric_seq[metric_id] = self._metric_seq.get(metric_id, 0) + 1

    def _mark_loading(self, requests: Iterable[tuple[int, FilterConfiguration | None]]) -> dict[int, int]:
        seqs: dict[int, int] = {}
        for metric_id, filters in requests:
            seq = self._metric_seq.get(metric_id, 0) + 1
            self._metric_seq[metric_id] = seq
            self._metrics[metric_id] = MetricDataRecord.pending(
                metric_id, self._metrics.get(metric_id), filters=filters, request_seq=seq
            )
            seqs[metric_id] = seq
        self._notify()
        return seqs

    def _apply(self, records: Mapping[int, MetricDataRecord]) -> None:
        for metric_id, record in records.items():
            if self._metric_seq.get(metric_id) != record.request_seq:
                logger.debug("Discarding stale response for metric %s (seq %s)", metric_id, record.request_seq)
                continue
            self._metrics[metric_id] = record
        self._notify()

    def _abandon(self, seqs: Mapping[int, int], message: str) -> None:
        for metric_id, seq in seqs.items():
            record = self._metrics.get(metric_id)
            if self._metric_seq.get(metric_id) != seq or record is None or not record.loading:
                continue
            self._metrics[metric_id] = MetricDataRecord.failed(
                metric_id, record, message, filters=record.current_filters, request_seq=seq
            )
        self._notify()

    def _spawn(
        self,
        seqs: dict[int, int],
        work: Callable[[], Awaitable[MetricRecords]],
    ) -> asyncio.Task[MetricRecords]:
        async def run() -> MetricRecords:
            try:
                records = await work()
            except asyncio.CancelledError:
                self._abandon(seqs, CANCELLED_MESSAGE)
                raise
            except Exception as exc:
                logger.exception("Metric load failed for %s", sorted(seqs))
                self._abandon(seqs, f"Failed to load metric data: {exc}")
                return {}
            self._apply(records)
            return records

        task = asyncio.get_running_loop().create_task(run())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _settle(self, task: asyncio.Task[T]) -> T | None:
        """Await a fetch task, treating its cancellation by a newer load as a no-op."""

        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task.cancelled():
            logger.info("Metric load superseded before completion")
            return None
        return task.result()

    def _binding(self, metric_id: int) -> MetricBinding | None:
        return self._current.find_metric(metric_id) if self._current else None

    def load_dashboard_metrics_data(self, dashboard_id: int) -> asyncio.Task[MetricRecords]:
        """Load every visible metric of the dashboard with its own sanitised saved filters."""

        bindings = visible_sorted(self._current.metrics) if self._is_current(dashboard_id) else []
        if not bindings:
            logger.info("Dashboard %s has no visible metrics to load", dashboard_id)
        seqs = self._mark_loading((binding.id, None) for binding in bindings)

        async def work() -> MetricRecords:
            if not bindings:
                return {}
            references = LazyReferences(self.load_filter_options)
            requests = [
                MetricRequest(binding.id, await self._sanitized_saved_filters(binding, references))
                for binding in bindings
            ]
            priors = {metric_id: self._metrics[metric_id] for metric_id in seqs if metric_id in self._metrics}
            return await self._fetcher.fetch_dashboard(dashboard_id, requests, priors, seqs)

        return self._spawn(seqs, work)

    async def _sanitized_saved_filters(self, binding: MetricBinding, references: LazyReferences) -> FilterConfiguration:
        try:
            return await sanitize_filters(
                binding.saved_filters,
                binding.capabilities,
                references,
                is_admin=self._is_admin,
            )
        except (TypeError, ValueError) as exc:
            logger.warning("Saved filters for metric %s could not be validated, using defaults: %s", binding.id, exc)
            return reset_filters(binding.capabilities)

    def load_enhanced_metrics_data(self, requests: Sequence[MetricRequest]) -> asyncio.Task[MetricRecords]:
        """Bulk load with explicitly supplied filters per metric."""

        seqs = self._mark_loading((request.metric_id, request.filters) for request in requests)
        priors = dict(self._metrics)

        async def work() -> MetricRecords:
            if not requests:
                return {}
            return await self._fetcher.fetch_enhanced(requests, priors, seqs)

        return self._spawn(seqs, work)

    def load_metrics_batch(self, requests: Sequence[MetricRequest]) -> asyncio.Task[MetricRecords]:
        """One isolated round trip per metric; a failing metric never blocks the others."""

        seqs = self._mark_loading((request.metric_id, request.filters) for request in requests)
        priors = dict(self._metrics)

        async def work() -> MetricRecords:
            return await self._fetcher.fetch_batch(requests, priors, seqs)

        return self._spawn(seqs, work)

    def load_metric_data(
        self,
        metric_ids: Sequence[int],
        filters: FilterConfiguration | None = None,
    ) -> asyncio.Task[MetricRecords]:
        """Reload metrics with their saved filters, falling back to ``filters`` when none are saved."""

        seqs = self._mark_loading((metric_id, None) for metric_id in metric_ids)
        priors = dict(self._metrics)

        async def work() -> MetricRecords:
            references = LazyReferences(self.load_filter_options)
            requests: list[MetricRequest] = []
            for metric_id in metric_ids:
                binding = self._binding(metric_id)
                saved = self.load_metric_settings(metric_id)
                if binding is not None and saved is not None:
                    effective = await self._sanitized_saved_filters(binding, references)
                else:
                    effective = filters if filters is not None else FilterConfiguration()
                requests.append(MetricRequest(metric_id, effective))
            if not requests:
                return {}
            return await self._fetcher.fetch_enhanced(requests, priors, seqs)

        return self._spawn(seqs, work)

    def load_single_metric_data(
        self,
        metric_id: int,
        filters: FilterConfiguration | None = None,
    ) -> asyncio.Task[MetricRecords]:
        effective = filters if filters is not None else FilterConfiguration()
        seqs = self._mark_loading([(metric_id, effective)])
        prior = self._metrics.get(metric_id)

        async def work() -> MetricRecords:
            record = await self._fetcher.fetch_single(MetricRequest(metric_id, effective), prior, seq=seqs[metric_id])
            return {metric_id: record}

        return self._spawn(seqs, work)

    def refresh_metric_with_filters(self, metric_id: int, filters: FilterConfiguration) -> asyncio.Task[MetricRecords]:
        return self.load_single_metric_data(metric_id, filters)

    def refresh_all_metrics_data(self) -> asyncio.Task[MetricRecords] | None:
        if self._current is None:
            return None
        return self.load_dashboard_metrics_data(self._current.id)

    # Misc

    async def health_check(self) -> HealthCheckResponse | None:
        try:
            return await self._api.health_check()
        except AnalyticsApiError as exc:
            logger.error("Analytics health check failed: %s", exc)
            return None

    def cancel_pending_fetches(self) -> int:
        """Cancel every in-flight metric load; returns how many were cancelled."""

        pending = [task for task in self._inflight if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.info("Cancelled %d in-flight metric loads", len(pending))
        return len(pending)

    async def close(self) -> None:
        pending = list(self._inflight)
        self.cancel_pending_fetches()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._listeners.clear()


def _with_positions(dashboard: Dashboard, updates: Sequence[PositionUpdate]) -> Dashboard:
    by_id = {update.metric_id: update for update in updates}
    return dashboard.model_copy(
        update={
            "metrics": [
                binding.model_copy(
                    update={
                        "sort_order": by_id[binding.id].sort_order,
                        "grid_position": str(by_id[binding.id].grid_position),
                    }
                )
                if binding.id in by_id
                else binding
                for binding in dashboard.metrics
            ]
        }
    )


__all__ = ["DashboardOperationError", "DashboardSnapshot", "DashboardStore"]
