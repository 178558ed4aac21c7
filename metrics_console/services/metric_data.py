"""Turn metric data round trips into per-metric records."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Mapping, Sequence, TypeVar

from opentelemetry import trace

from metrics_console.config import get_settings
from metrics_console.models import (
    NO_DATA_MESSAGE,
    NOT_AVAILABLE_MESSAGE,
    MetricDataRecord,
    MetricRequest,
)
from metrics_console.providers.analytics_api import AnalyticsApiClient, AnalyticsApiError
from metrics_console.schemas.metrics import MetricDataRequestSchema, MetricDataResponse

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

Priors = Mapping[int, MetricDataRecord]
Sequences = Mapping[int, int]


class MetricDataFetcher:
    """Fetches metric values and normalises every outcome into a record.

    Backend failures and timeouts become error records; only cancellation
    propagates to the caller. ``priors`` supply the last known record per
    metric so error records keep their label, and ``seqs`` carry the request
    sequence number stamped on each resulting record.
    """

    def __init__(self, api: AnalyticsApiClient, *, timeout_seconds: float | None = None) -> None:
        self._api = api
        self._timeout = timeout_seconds or get_settings().metric_fetch_timeout_seconds

    async def _bounded(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise AnalyticsApiError(f"Request timed out after {self._timeout:g} seconds") from exc

    async def fetch_single(
        self,
        request: MetricRequest,
        prior: MetricDataRecord | None = None,
        *,
        seq: int = 0,
    ) -> MetricDataRecord:
        with tracer.start_as_current_span("metrics.fetch_single") as span:
            span.set_attribute("metric.id", request.metric_id)
            try:
                response = await self._bounded(self._api.get_single_metric_data(request.metric_id, request.filters))
            except AnalyticsApiError as exc:
                logger.warning("Metric %s failed to load: %s", request.metric_id, exc)
                span.set_attribute("metric.error", str(exc))
                return MetricDataRecord.failed(
                    request.metric_id, prior, str(exc), filters=request.filters, request_seq=seq
                )
        if response is None:
            return MetricDataRecord.failed(
                request.metric_id, prior, NO_DATA_MESSAGE, filters=request.filters, request_seq=seq
            )
        if response.metric_id != request.metric_id:
            logger.warning("Metric %s answered with data for metric %s", request.metric_id, response.metric_id)
            response = response.model_copy(update={"metric_id": request.metric_id})
        return MetricDataRecord.from_response(response, filters=request.filters, request_seq=seq)

    async def fetch_dashboard(
        self,
        dashboard_id: int,
        requests: Sequence[MetricRequest],
        priors: Priors | None = None,
        seqs: Sequences | None = None,
    ) -> dict[int, MetricDataRecord]:
        """Dashboard-scoped bulk load; each request carries the metric's sanitised saved filters."""

        with tracer.start_as_current_span("metrics.fetch_dashboard") as span:
            span.set_attribute("dashboard.id", dashboard_id)
            span.set_attribute("metric.count", len(requests))
            return await self._bulk(
                self._api.get_dashboard_metrics_data(dashboard_id, _wire(requests)),
                requests,
                priors or {},
                seqs or {},
            )

    async def fetch_enhanced(
        self,
        requests: Sequence[MetricRequest],
        priors: Priors | None = None,
        seqs: Sequences | None = None,
    ) -> dict[int, MetricDataRecord]:
        """Bulk load with explicitly supplied filters per metric."""

        with tracer.start_as_current_span("metrics.fetch_enhanced") as span:
            span.set_attribute("metric.count", len(requests))
            return await self._bulk(
                self._api.get_enhanced_metrics_data(_wire(requests)),
                requests,
                priors or {},
                seqs or {},
            )

    async def fetch_batch(
        self,
        requests: Sequence[MetricRequest],
        priors: Priors | None = None,
        seqs: Sequences | None = None,
    ) -> dict[int, MetricDataRecord]:
        """One single-metric round trip per request, run concurrently and isolated."""

        priors = priors or {}
        seqs = seqs or {}
        outcomes = await asyncio.gather(
            *(
                self.fetch_single(request, priors.get(request.metric_id), seq=seqs.get(request.metric_id, 0))
                for request in requests
            ),
            return_exceptions=True,
        )
        records: dict[int, MetricDataRecord] = {}
        for request, outcome in zip(requests, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, Exception):
                logger.exception("Unexpected failure loading metric %s", request.metric_id, exc_info=outcome)
                outcome = MetricDataRecord.failed(
                    request.metric_id,
                    priors.get(request.metric_id),
                    f"Failed to load metric data: {outcome}",
                    filters=request.filters,
                    request_seq=seqs.get(request.metric_id, 0),
                )
            records[request.metric_id] = outcome
        return records

    async def _bulk(
        self,
        call: Awaitable[list[MetricDataResponse]],
        requests: Sequence[MetricRequest],
        priors: Priors,
        seqs: Sequences,
    ) -> dict[int, MetricDataRecord]:
        by_id = {request.metric_id: request for request in requests}
        try:
            responses = await self._bounded(call)
        except AnalyticsApiError as exc:
            logger.warning("Bulk metric load failed for %d metrics: %s", len(by_id), exc)
            return {
                metric_id: MetricDataRecord.failed(
                    metric_id,
                    priors.get(metric_id),
                    str(exc),
                    filters=request.filters,
                    request_seq=seqs.get(metric_id, 0),
                )
                for metric_id, request in by_id.items()
            }

        records: dict[int, MetricDataRecord] = {}
        for response in responses:
            request = by_id.get(response.metric_id)
            if request is None:
                logger.debug("Ignoring unrequested metric %s in bulk response", response.metric_id)
                continue
            records[response.metric_id] = MetricDataRecord.from_response(
                response,
                filters=request.filters,
                request_seq=seqs.get(response.metric_id, 0),
            )
        for metric_id, request in by_id.items():
            if metric_id not in records:
                logger.warning("Metric %s missing from bulk response", metric_id)
                records[metric_id] = MetricDataRecord.failed(
                    metric_id,
                    priors.get(metric_id),
                    NOT_AVAILABLE_MESSAGE,
                    filters=request.filters,
                    request_seq=seqs.get(metric_id, 0),
                )
        return records


def _wire(requests: Sequence[MetricRequest]) -> list[MetricDataRequestSchema]:
    return [
        MetricDataRequestSchema(metric_id=request.metric_id, filters=request.filters.to_payload())
        for request in requests
    ]


__all__ = ["MetricDataFetcher"]
