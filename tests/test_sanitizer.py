"""Saved filter reconciliation tests."""

from __future__ import annotations

import pytest

from metrics_console.providers.analytics_api import AnalyticsApiError
from metrics_console.schemas.filters import FilterCapabilities, FilterConfiguration, FilterDimension, FilterOption
from metrics_console.services.sanitizer import (
    LazyReferences,
    StaticReferences,
    parse_calendar_date,
    reset_filters,
    sanitize_filters,
)

EVERYTHING = FilterCapabilities(supported=frozenset(FilterDimension), default_term="weekly")


class CountingLoader:
    def __init__(self, lists: dict[str, list[int]]) -> None:
        self.lists = lists
        self.calls: list[str] = []

    async def __call__(self, list_name: str) -> list[FilterOption]:
        self.calls.append(list_name)
        return [FilterOption(id=item, name=f"{list_name} {item}") for item in self.lists.get(list_name, [])]


@pytest.mark.asyncio
async def test_stale_video_and_unknown_term_fall_back_to_default():
    capabilities = FilterCapabilities.from_payload(
        {
            "supportsVideoFilter": True,
            "supportsTerm": True,
            "availableTerms": ["daily", "weekly", "monthly", "yearly"],
            "defaultTerm": "monthly",
        }
    )
    references = StaticReferences({"videos": [1, 2, 3]})

    result = await sanitize_filters({"videoId": 777, "term": "century"}, capabilities, references)

    assert result.to_payload() == {"term": "monthly"}


@pytest.mark.asyncio
async def test_unparseable_end_date_is_dropped_alone():
    capabilities = FilterCapabilities(supported=frozenset({FilterDimension.DATE}))

    result = await sanitize_filters(
        {"startDate": "2024-01-10", "endDate": "not-a-date"},
        capabilities,
        StaticReferences(),
    )

    assert result.to_payload() == {"startDate": "2024-01-10"}


@pytest.mark.asyncio
async def test_inverted_date_range_drops_end_date():
    capabilities = FilterCapabilities(supported=frozenset({FilterDimension.DATE}))

    result = await sanitize_filters(
        {"startDate": "2024-03-01", "endDate": "2024-02-01T00:00:00Z"},
        capabilities,
        StaticReferences(),
    )

    assert result.start_date == "2024-03-01"
    assert result.end_date is None


@pytest.mark.asyncio
async def test_unsupported_dimensions_are_dropped_even_when_valid():
    capabilities = FilterCapabilities(supported=frozenset({FilterDimension.PRODUCT}))
    references = StaticReferences({"videos": [5], "products": [9]})

    result = await sanitize_filters(
        {"videoId": 5, "productId": 9, "screen": "home", "subscriptionCategory": "basic", "term": "daily"},
        capabilities,
        references,
    )

    assert result == FilterConfiguration(product_id=9)


@pytest.mark.asyncio
async def test_term_is_filled_with_default_when_missing():
    capabilities = FilterCapabilities(supported=frozenset({FilterDimension.TERM}), default_term="yearly")

    result = await sanitize_filters({}, capabilities, StaticReferences())

    assert result.term == "yearly"


@pytest.mark.asyncio
async def test_entity_ids_accept_digit_strings_and_reject_garbage():
    references = StaticReferences({"videos": [12], "products": [4]})

    accepted = await sanitize_filters({"videoId": "12", "productId": 0}, EVERYTHING, references)
    rejected = await sanitize_filters({"videoId": True, "productId": -4}, EVERYTHING, references)

    assert accepted.video_id == 12
    assert accepted.product_id is None
    assert rejected.video_id is None
    assert rejected.product_id is None


@pytest.mark.asyncio
async def test_user_filter_requires_administrator():
    references = StaticReferences({"users": [42]})

    as_operator = await sanitize_filters({"userId": 42}, EVERYTHING, references, is_admin=False)
    as_admin = await sanitize_filters({"userId": 42}, EVERYTHING, references, is_admin=True)

    assert as_operator.user_id is None
    assert as_admin.user_id == 42


@pytest.mark.asyncio
async def test_subscription_category_must_be_known():
    kept = await sanitize_filters({"subscriptionCategory": "premium"}, EVERYTHING, StaticReferences())
    dropped = await sanitize_filters({"subscriptionCategory": "platinum"}, EVERYTHING, StaticReferences())

    assert kept.subscription_category == "premium"
    assert dropped.subscription_category is None


@pytest.mark.asyncio
async def test_reference_lists_load_once_per_pass_and_only_when_needed():
    loader = CountingLoader({"videos": [1, 2], "products": [3]})
    references = LazyReferences(loader)

    await sanitize_filters({"term": "daily", "screen": "home"}, EVERYTHING, references)
    assert loader.calls == []

    first = await sanitize_filters({"videoId": 1}, EVERYTHING, references)
    second = await sanitize_filters({"videoId": 2, "productId": 3}, EVERYTHING, references)

    assert first.video_id == 1
    assert second.video_id == 2
    assert second.product_id == 3
    assert loader.calls == ["videos", "products"]
    assert references.loaded == ("videos", "products")


@pytest.mark.asyncio
async def test_failed_reference_load_drops_the_entity():
    async def failing_loader(list_name: str) -> list[FilterOption]:
        raise AnalyticsApiError("backend down", status_code=503)

    result = await sanitize_filters(
        {"videoId": 1, "term": "daily"},
        EVERYTHING,
        LazyReferences(failing_loader),
    )

    assert result == FilterConfiguration(term="daily")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        {"videoId": 777, "term": "century"},
        {"startDate": "2024-05-01", "endDate": "2024-04-01", "screen": "home"},
        {"userId": "42", "productId": 3, "signee": "alice", "subscriptionCategory": "enterprise"},
        {"video_id": 1, "term": "daily", "bogus": "value"},
        {},
    ],
)
async def test_sanitize_is_idempotent_and_contained(raw):
    capabilities = FilterCapabilities(
        supported=frozenset({FilterDimension.VIDEO, FilterDimension.DATE, FilterDimension.TERM, FilterDimension.USER}),
        available_terms=("daily", "monthly"),
        default_term="monthly",
    )
    references = StaticReferences({"videos": [1], "users": [42], "products": [3]})

    once = await sanitize_filters(raw, capabilities, references)
    twice = await sanitize_filters(once, capabilities, references)

    assert twice == once
    assert once.populated_dimensions() <= capabilities.supported


def test_reset_filters_only_carries_the_default_term():
    with_term = FilterCapabilities(supported=frozenset({FilterDimension.TERM, FilterDimension.DATE}), default_term="daily")
    without_term = FilterCapabilities(supported=frozenset({FilterDimension.DATE}))

    assert reset_filters(with_term) == FilterConfiguration(term="daily")
    assert reset_filters(without_term).is_empty()


def test_parse_calendar_date_accepts_dates_and_datetimes():
    assert parse_calendar_date("2024-01-10").isoformat() == "2024-01-10"
    assert parse_calendar_date("2024-01-10T08:30:00Z").isoformat() == "2024-01-10"
    assert parse_calendar_date("yesterday") is None
    assert parse_calendar_date(20240110) is None
