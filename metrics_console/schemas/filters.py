"""Filter capability model and filter configuration schemas."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from pydantic import ConfigDict, Field

from .base import CamelModel

DEFAULT_TERMS: tuple[str, ...] = ("daily", "weekly", "monthly", "yearly")
FALLBACK_DEFAULT_TERM = "monthly"
SUBSCRIPTION_CATEGORIES: tuple[str, ...] = ("basic", "premium", "enterprise")


class FilterDimension(str, Enum):
    """Every filter axis a metric may support."""

    DATE = "date"
    VIDEO = "video"
    PRODUCT = "product"
    USER = "user"
    SCREEN = "screen"
    SIGNER = "signer"
    SUBSCRIPTION_CATEGORY = "subscription_category"
    TERM = "term"


# Backend capability flag for each dimension.
CAPABILITY_FLAGS: dict[FilterDimension, str] = {
    FilterDimension.DATE: "supportsDateFilter",
    FilterDimension.VIDEO: "supportsVideoFilter",
    FilterDimension.PRODUCT: "supportsProductFilter",
    FilterDimension.USER: "supportsUserFilter",
    FilterDimension.SCREEN: "supportsScreenFilter",
    FilterDimension.SIGNER: "supportsSignerFilter",
    FilterDimension.SUBSCRIPTION_CATEGORY: "supportsSubscriptionCategoryFilter",
    FilterDimension.TERM: "supportsTerm",
}

# Entity dimensions and the reference list backing each of them.
ENTITY_DIMENSIONS: dict[FilterDimension, str] = {
    FilterDimension.VIDEO: "videos",
    FilterDimension.PRODUCT: "products",
    FilterDimension.USER: "users",
}

# Filter configuration fields owned by each dimension.
DIMENSION_FIELDS: dict[FilterDimension, tuple[str, ...]] = {
    FilterDimension.DATE: ("start_date", "end_date"),
    FilterDimension.VIDEO: ("video_id",),
    FilterDimension.PRODUCT: ("product_id",),
    FilterDimension.USER: ("user_id",),
    FilterDimension.SCREEN: ("screen",),
    FilterDimension.SIGNER: ("signee",),
    FilterDimension.SUBSCRIPTION_CATEGORY: ("subscription_category",),
    FilterDimension.TERM: ("term",),
}


def _flag(payload: Mapping[str, Any], name: str) -> bool:
    value = payload.get(name)
    if value is None:
        value = payload.get(_snake(name))
    return bool(value)


def _snake(name: str) -> str:
    return "".join(f"_{char.lower()}" if char.isupper() else char for char in name)


@dataclass(frozen=True)
class FilterCapabilities:
    """Which filter dimensions a metric accepts and its legal terms."""

    supported: frozenset[FilterDimension] = field(default_factory=frozenset)
    available_terms: tuple[str, ...] = DEFAULT_TERMS
    default_term: str = FALLBACK_DEFAULT_TERM

    def supports(self, dimension: FilterDimension) -> bool:
        return dimension in self.supported

    @classmethod
    def unsupported(cls) -> "FilterCapabilities":
        """Capability set used when nothing is known about a metric."""

        return cls()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "FilterCapabilities":
        """Build capabilities from the backend's boolean flag bag.

        Missing flags mean "unsupported"; the legacy ``supportsTermFilter`` flag
        is honoured alongside ``supportsTerm``.
        """

        if not payload:
            return cls.unsupported()
        supported = {dimension for dimension, flag in CAPABILITY_FLAGS.items() if _flag(payload, flag)}
        if _flag(payload, "supportsTermFilter"):
            supported.add(FilterDimension.TERM)

        raw_terms = payload.get("availableTerms") or payload.get("available_terms")
        terms = tuple(str(term) for term in raw_terms) if isinstance(raw_terms, (list, tuple)) and raw_terms else DEFAULT_TERMS
        default_term = payload.get("defaultTerm") or payload.get("default_term") or FALLBACK_DEFAULT_TERM
        return cls(supported=frozenset(supported), available_terms=terms, default_term=str(default_term))

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {flag: dimension in self.supported for dimension, flag in CAPABILITY_FLAGS.items()}
        payload["availableTerms"] = list(self.available_terms)
        payload["defaultTerm"] = self.default_term
        return payload


class FilterConfiguration(CamelModel):
    """Sparse filter record applied to a single metric binding."""

    model_config = ConfigDict(frozen=True)

    start_date: str | None = None
    end_date: str | None = None
    video_id: int | None = Field(default=None, gt=0)
    product_id: int | None = Field(default=None, gt=0)
    user_id: int | None = Field(default=None, gt=0)
    screen: str | None = None
    signee: str | None = None
    subscription_category: str | None = None
    term: str | None = None

    def populated_dimensions(self) -> set[FilterDimension]:
        """Return the dimensions for which at least one field is set."""

        return {
            dimension
            for dimension, names in DIMENSION_FIELDS.items()
            if any(getattr(self, name) is not None for name in names)
        }

    def is_empty(self) -> bool:
        return not self.populated_dimensions()


class FilterOption(CamelModel):
    """Reference list entry (video, product or user)."""

    id: int
    name: str


__all__ = [
    "CAPABILITY_FLAGS",
    "DEFAULT_TERMS",
    "DIMENSION_FIELDS",
    "ENTITY_DIMENSIONS",
    "FALLBACK_DEFAULT_TERM",
    "FilterCapabilities",
    "FilterConfiguration",
    "FilterDimension",
    "FilterOption",
    "SUBSCRIPTION_CATEGORIES",
]
