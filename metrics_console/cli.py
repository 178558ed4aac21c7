"""Command line entry point for inspecting analytics dashboards."""

from __future__ import annotations

import argparse
import asyncio
import logging

from metrics_console.config import get_settings
from metrics_console.core.logging import setup_logging
from metrics_console.core.telemetry import setup_telemetry
from metrics_console.models import MetricDataRecord
from metrics_console.providers.analytics_api import AnalyticsApiClient
from metrics_console.services.dashboard_store import DashboardStore

logger = logging.getLogger(__name__)


def _format_record(position: str, label: str, record: MetricDataRecord | None) -> str:
    if record is None:
        return f"[{position}] {label}: not loaded"
    if record.error:
        return f"[{position}] {label}: ERROR {record.error}"
    points = f" ({len(record.series)} points)" if record.series else ""
    return f"[{position}] {label} <{record.chart_type}>: {record.value}{points}"


async def _list_dashboards(store: DashboardStore) -> int:
    await store.load_dashboards()
    snapshot = store.snapshot()
    if snapshot.error:
        print(f"Failed to load dashboards: {snapshot.error}")
        return 1
    for dashboard in snapshot.dashboards:
        marker = "*" if dashboard.is_default else " "
        print(f"{marker} {dashboard.id:>5}  {dashboard.name}")
    return 0


async def _show_dashboard(store: DashboardStore, dashboard_id: int | None) -> int:
    dashboard = await store.load_current_dashboard(dashboard_id)
    snapshot = store.snapshot()
    if dashboard is None:
        print(f"Failed to load dashboard: {snapshot.error or 'not found'}")
        return 1
    print(f"{dashboard.name} (#{dashboard.id})")
    for binding in store.display_order():
        print(_format_record(binding.grid_position or "-", binding.label, snapshot.metrics_data.get(binding.id)))
    return 0


async def _run(command: str, dashboard_id: int | None) -> int:
    settings = get_settings()
    async with AnalyticsApiClient(settings.api_base_url, token=settings.api_token) as api:
        store = DashboardStore(api, settings=settings)
        try:
            if command == "dashboards":
                return await _list_dashboards(store)
            return await _show_dashboard(store, dashboard_id)
        finally:
            await store.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect analytics dashboards and their metrics")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("dashboards", help="List the operator's dashboards")
    show = subparsers.add_parser("show", help="Load a dashboard and print its metrics")
    show.add_argument("--dashboard", type=int, default=None, help="Dashboard id (default dashboard when omitted)")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level)
    setup_telemetry(settings)
    logger.debug("Settings: %s", settings.dict_for_logging())
    raise SystemExit(asyncio.run(_run(args.command, getattr(args, "dashboard", None))))


if __name__ == "__main__":
    main()
