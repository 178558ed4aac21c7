"""Configuration for the metrics console."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_GRID_COLUMNS = 4


class ConsoleSettings(BaseSettings):
    """Runtime options for the dashboard orchestration engine."""

    app_name: str = Field(default="Metrics Console")

    api_base_url: str = Field(
        default="http://localhost:5000",
        description="Base URL of the analytics backend.",
    )
    api_token: str | None = Field(
        default=None,
        description="Optional bearer token forwarded to the analytics backend.",
    )
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    metric_fetch_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Upper bound for a single metric data round trip.",
    )

    grid_columns: int = Field(default=DEFAULT_GRID_COLUMNS, ge=1)
    drag_and_drop_enabled: bool = Field(default=True)
    is_admin: bool = Field(
        default=False,
        description="Whether the operator may filter metrics by user.",
    )

    log_level: str = Field(default="INFO")

    telemetry_enabled: bool = Field(default=False)
    telemetry_service_name: str = Field(default="metrics-console")
    telemetry_otlp_endpoint: str | None = Field(default=None)
    telemetry_otlp_insecure: bool = Field(default=True)
    telemetry_sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="METRICS_CONSOLE_",
    )

    def dict_for_logging(self) -> dict[str, Any]:
        """Return a sanitised dict for logging purposes."""

        hidden = {"api_token"}
        return {k: ("***" if k in hidden and v else v) for k, v in self.model_dump().items()}


@lru_cache(maxsize=1)
def get_settings(**overrides: Any) -> ConsoleSettings:
    """Return cached settings, optionally overriding values for tests."""

    if overrides:
        return ConsoleSettings(**overrides)
    return ConsoleSettings()


__all__ = ["ConsoleSettings", "DEFAULT_GRID_COLUMNS", "get_settings"]
