"""Shared pydantic base for camelCase wire payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model that reads and writes the analytics backend's camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """Serialise to the backend representation, omitting unset optionals."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


__all__ = ["CamelModel"]
