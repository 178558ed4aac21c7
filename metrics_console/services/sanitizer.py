"""Reconcile persisted metric filters with live capabilities and reference data.

Saved filters outlive the things they point at: a video gets deleted, a metric
stops supporting a dimension, a term is renamed. ``sanitize_filters`` turns
whatever was stored into a configuration that is safe to send, silently
dropping anything stale. Nothing here raises for bad input; every drop is
logged instead.

Precedence per dimension:

1. unsupported dimensions are dropped, even when the value is otherwise valid;
2. term keeps a legal value, anything else becomes the default term;
3. entity ids keep ``None``/``0`` as "all" (absent) and keep positive ids only
   if present in the current reference list;
4. start/end dates are kept individually when they parse as ISO dates;
5. screen and signer text is kept verbatim;
6. subscription category must be one of ``SUBSCRIPTION_CATEGORIES``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence

from metrics_console.providers.analytics_api import AnalyticsApiError
from metrics_console.schemas.filters import (
    DIMENSION_FIELDS,
    ENTITY_DIMENSIONS,
    SUBSCRIPTION_CATEGORIES,
    FilterCapabilities,
    FilterConfiguration,
    FilterDimension,
    FilterOption,
)

logger = logging.getLogger(__name__)

ReferenceLoader = Callable[[str], Awaitable[Sequence[FilterOption]]]

_ALIASES: dict[str, str] = {
    (info.alias or name): name for name, info in FilterConfiguration.model_fields.items()
}


class ReferenceLookup:
    """Source of the current reference ids for the entity dimensions."""

    async def ids(self, list_name: str) -> frozenset[int]:
        raise NotImplementedError


class StaticReferences(ReferenceLookup):
    """Reference lists that are already in memory."""

    def __init__(self, lists: Mapping[str, Iterable[FilterOption | int]] | None = None) -> None:
        self._ids: dict[str, frozenset[int]] = {}
        for list_name, entries in (lists or {}).items():
            self._ids[list_name] = frozenset(
                entry.id if isinstance(entry, FilterOption) else int(entry) for entry in entries
            )

    async def ids(self, list_name: str) -> frozenset[int]:
        return self._ids.get(list_name, frozenset())


class LazyReferences(ReferenceLookup):
    """Loads each reference list on first use and reuses it for the rest of the pass.

    Concurrent callers asking for the same list share one in-flight load.
    """

    def __init__(self, loader: ReferenceLoader) -> None:
        self._loader = loader
        self._loads: dict[str, asyncio.Task[frozenset[int]]] = {}

    async def _load(self, list_name: str) -> frozenset[int]:
        try:
            options = await self._loader(list_name)
        except AnalyticsApiError as exc:
            logger.warning("Failed to load %s for filter validation: %s", list_name, exc)
            return frozenset()
        logger.debug("Loaded %d %s for filter validation", len(options), list_name)
        return frozenset(option.id for option in options)

    async def ids(self, list_name: str) -> frozenset[int]:
        task = self._loads.get(list_name)
        if task is None:
            task = asyncio.ensure_future(self._load(list_name))
            self._loads[list_name] = task
        return await task

    @property
    def loaded(self) -> tuple[str, ...]:
        return tuple(self._loads)


def _read(raw: FilterConfiguration | Mapping[str, Any] | None) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, FilterConfiguration):
        return {name: value for name, value in raw.model_dump().items() if value is not None}
    values: dict[str, Any] = {}
    for key, value in raw.items():
        name = _ALIASES.get(key, key)
        if name in FilterConfiguration.model_fields:
            values[name] = value
        else:
            logger.debug("Ignoring unknown filter key %r", key)
    return values


class _InvalidId(ValueError):
    pass


def _entity_id(value: Any) -> int | None:
    """Return the id, ``None`` for the "all" selector, or raise ``_InvalidId``."""

    if value is None:
        return None
    if isinstance(value, bool):
        raise _InvalidId(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.isdigit():
            raise _InvalidId(value)
        value = int(stripped)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or value < 0:
        raise _InvalidId(value)
    return value or None


def parse_calendar_date(value: Any) -> date | None:
    """Parse an ISO date or datetime string, returning ``None`` when it is not one."""

    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


async def sanitize_filters(
    raw: FilterConfiguration | Mapping[str, Any] | None,
    capabilities: FilterCapabilities,
    references: ReferenceLookup,
    *,
    is_admin: bool = True,
) -> FilterConfiguration:
    """Return the subset of ``raw`` that is legal for ``capabilities`` right now."""

    values = _read(raw)
    result: dict[str, Any] = {}

    for dimension, names in DIMENSION_FIELDS.items():
        if capabilities.supports(dimension):
            continue
        dropped = [name for name in names if values.get(name) is not None]
        if dropped:
            logger.warning("Dropping %s: metric does not support %s filtering", ", ".join(dropped), dimension.value)

    if capabilities.supports(FilterDimension.TERM):
        term = values.get("term")
        if isinstance(term, str) and term in capabilities.available_terms:
            result["term"] = term
        else:
            if term is not None:
                logger.warning(
                    "Invalid term %r, available: %s; using %s",
                    term,
                    ", ".join(capabilities.available_terms),
                    capabilities.default_term,
                )
            result["term"] = capabilities.default_term

    for dimension, list_name in ENTITY_DIMENSIONS.items():
        (name,) = DIMENSION_FIELDS[dimension]
        if name not in values or not capabilities.supports(dimension):
            continue
        if dimension is FilterDimension.USER and not is_admin:
            if values[name] is not None:
                logger.warning("Dropping %s: user filtering requires an administrator", name)
            continue
        try:
            entity_id = _entity_id(values[name])
        except _InvalidId:
            logger.warning("Dropping %s: %r is not a valid identifier", name, values[name])
            continue
        if entity_id is None:
            continue
        known = await references.ids(list_name)
        if entity_id in known:
            result[name] = entity_id
        else:
            logger.warning("Dropping %s=%s: no longer present in %s", name, entity_id, list_name)

    if capabilities.supports(FilterDimension.DATE):
        parsed: dict[str, date] = {}
        for name in DIMENSION_FIELDS[FilterDimension.DATE]:
            value = values.get(name)
            if value is None:
                continue
            day = parse_calendar_date(value)
            if day is None:
                logger.warning("Dropping %s: %r is not a calendar date", name, value)
                continue
            parsed[name] = day
            result[name] = value.strip()
        if "start_date" in parsed and "end_date" in parsed and parsed["start_date"] > parsed["end_date"]:
            logger.warning(
                "Dropping end_date %s: earlier than start_date %s",
                result["end_date"],
                result["start_date"],
            )
            del result["end_date"]

    for dimension in (FilterDimension.SCREEN, FilterDimension.SIGNER):
        (name,) = DIMENSION_FIELDS[dimension]
        value = values.get(name)
        if capabilities.supports(dimension) and isinstance(value, str) and value:
            result[name] = value

    if capabilities.supports(FilterDimension.SUBSCRIPTION_CATEGORY):
        category = values.get("subscription_category")
        if category in SUBSCRIPTION_CATEGORIES:
            result["subscription_category"] = category
        elif category is not None:
            logger.warning(
                "Dropping subscription_category %r, valid options: %s",
                category,
                ", ".join(SUBSCRIPTION_CATEGORIES),
            )

    return FilterConfiguration(**result)


def reset_filters(capabilities: FilterCapabilities) -> FilterConfiguration:
    """Default configuration for a metric; bypasses validation entirely."""

    if capabilities.supports(FilterDimension.TERM):
        return FilterConfiguration(term=capabilities.default_term)
    return FilterConfiguration()


__all__ = [
    "LazyReferences",
    "ReferenceLoader",
    "ReferenceLookup",
    "StaticReferences",
    "parse_calendar_date",
    "reset_filters",
    "sanitize_filters",
]
