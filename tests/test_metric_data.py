"""Metric data fetcher tests."""

from __future__ import annotations

import asyncio

import pytest

from metrics_console.models import NOT_AVAILABLE_MESSAGE, MetricDataRecord, MetricRequest, MetricStatus
from metrics_console.providers.analytics_api import AnalyticsApiError
from metrics_console.schemas.filters import FilterConfiguration
from metrics_console.schemas.metrics import MetricDataResponse
from metrics_console.services.metric_data import MetricDataFetcher


def response(metric_id: int, value: object = 1, **extra: object) -> MetricDataResponse:
    return MetricDataResponse(metric_id=metric_id, metric_name=f"Metric {metric_id} label", value=value, **extra)


class StubApi:
    def __init__(self) -> None:
        self.bulk_payloads: list[list[dict[str, object]]] = []
        self.single_calls: list[tuple[int, FilterConfiguration]] = []
        self.bulk_result: list[MetricDataResponse] | Exception = []
        self.single_results: dict[int, MetricDataResponse | Exception | None] = {}
        self.delay = 0.0

    async def get_dashboard_metrics_data(self, dashboard_id, requests):
        self.bulk_payloads.append([request.to_payload() for request in requests])
        if isinstance(self.bulk_result, Exception):
            raise self.bulk_result
        return self.bulk_result

    async def get_enhanced_metrics_data(self, requests):
        return await self.get_dashboard_metrics_data(0, requests)

    async def get_single_metric_data(self, metric_id, filters):
        self.single_calls.append((metric_id, filters))
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.single_results.get(metric_id)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_metric_missing_from_bulk_response_is_marked_unavailable():
    api = StubApi()
    api.bulk_result = [response(10), response(12), response(99)]
    fetcher = MetricDataFetcher(api, timeout_seconds=1)

    records = await fetcher.fetch_dashboard(7, [MetricRequest(10), MetricRequest(11), MetricRequest(12)])

    assert sorted(records) == [10, 11, 12]
    assert records[10].status is MetricStatus.READY
    assert records[12].status is MetricStatus.READY
    assert records[11].status is MetricStatus.ERROR
    assert records[11].error == NOT_AVAILABLE_MESSAGE


@pytest.mark.asyncio
async def test_bulk_request_carries_each_metrics_filters():
    api = StubApi()
    api.bulk_result = [response(1), response(2)]
    fetcher = MetricDataFetcher(api, timeout_seconds=1)

    await fetcher.fetch_enhanced(
        [
            MetricRequest(1, FilterConfiguration(term="daily")),
            MetricRequest(2, FilterConfiguration(video_id=5, start_date="2024-01-01")),
        ]
    )

    assert api.bulk_payloads == [
        [
            {"metricId": 1, "filters": {"term": "daily"}},
            {"metricId": 2, "filters": {"videoId": 5, "startDate": "2024-01-01"}},
        ]
    ]


@pytest.mark.asyncio
async def test_failed_bulk_call_marks_every_requested_metric():
    api = StubApi()
    api.bulk_result = AnalyticsApiError("Analytics backend error 500: boom", status_code=500)
    fetcher = MetricDataFetcher(api, timeout_seconds=1)
    prior = MetricDataRecord(metric_id=1, name="Revenue", status=MetricStatus.LOADING, chart_type="Bar")

    records = await fetcher.fetch_dashboard(3, [MetricRequest(1), MetricRequest(2)], priors={1: prior})

    assert all(record.status is MetricStatus.ERROR for record in records.values())
    assert records[1].name == "Revenue"
    assert records[1].chart_type == "Bar"
    assert records[2].name == "Metric 2"


@pytest.mark.asyncio
async def test_one_failing_metric_does_not_block_the_others():
    api = StubApi()
    api.single_results = {1: response(1, value=42), 2: RuntimeError("socket closed")}
    fetcher = MetricDataFetcher(api, timeout_seconds=1)

    records = await fetcher.fetch_batch([MetricRequest(1), MetricRequest(2)], seqs={1: 4, 2: 9})

    assert records[1].status is MetricStatus.READY
    assert records[1].value == 42
    assert records[1].request_seq == 4
    assert records[2].status is MetricStatus.ERROR
    assert "socket closed" in records[2].error
    assert records[2].request_seq == 9


@pytest.mark.asyncio
async def test_slow_metric_times_out_into_an_error_record():
    api = StubApi()
    api.single_results = {5: response(5)}
    api.delay = 0.5
    fetcher = MetricDataFetcher(api, timeout_seconds=0.01)

    record = await fetcher.fetch_single(MetricRequest(5))

    assert record.status is MetricStatus.ERROR
    assert "timed out" in record.error


@pytest.mark.asyncio
async def test_backend_error_field_becomes_error_record():
    api = StubApi()
    api.single_results = {8: response(8, value=None, error="Metric is admin only")}
    fetcher = MetricDataFetcher(api, timeout_seconds=1)

    record = await fetcher.fetch_single(MetricRequest(8, FilterConfiguration(term="weekly")))

    assert record.status is MetricStatus.ERROR
    assert record.error == "Metric is admin only"
    assert record.current_filters == FilterConfiguration(term="weekly")


@pytest.mark.asyncio
async def test_empty_single_response_is_an_error():
    api = StubApi()
    fetcher = MetricDataFetcher(api, timeout_seconds=1)

    record = await fetcher.fetch_single(MetricRequest(3))

    assert record.status is MetricStatus.ERROR
    assert record.error == "No data received"
