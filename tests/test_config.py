"""Settings tests."""

from __future__ import annotations

from metrics_console.config import ConsoleSettings, get_settings


def test_token_is_masked_for_logging():
    settings = ConsoleSettings(api_token="top-secret")

    logged = settings.dict_for_logging()

    assert logged["api_token"] == "***"
    assert logged["grid_columns"] == 4


def test_environment_overrides_use_prefix(monkeypatch):
    monkeypatch.setenv("METRICS_CONSOLE_API_BASE_URL", "http://backend:8080")
    monkeypatch.setenv("METRICS_CONSOLE_DRAG_AND_DROP_ENABLED", "false")

    settings = ConsoleSettings()

    assert settings.api_base_url == "http://backend:8080"
    assert settings.drag_and_drop_enabled is False


def test_get_settings_accepts_overrides():
    settings = get_settings(is_admin=True, grid_columns=3)

    assert settings.is_admin is True
    assert settings.grid_columns == 3
