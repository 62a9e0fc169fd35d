"""Tests for configuration loading and validation."""

import pytest

from taskdist.core.config import Constants, Settings


def test_require_credential_with_valid_value() -> None:
    """Test require_credential returns value when credential is set."""
    settings = Settings(registry_api_key="secret")

    result = settings.require_credential("registry_api_key", "Registry API key")

    assert result == "secret"


def test_require_credential_with_none_raises_error() -> None:
    """Test require_credential raises ValueError when credential is None."""
    settings = Settings(registry_api_key=None)

    with pytest.raises(ValueError, match="Registry API key credential not configured"):
        settings.require_credential("registry_api_key", "Registry API key")


def test_require_credential_with_empty_string_raises_error() -> None:
    """Test require_credential raises ValueError when credential is empty."""
    settings = Settings(registry_api_key="")

    with pytest.raises(ValueError, match="REGISTRY_API_KEY"):
        settings.require_credential("registry_api_key", "Registry API key")


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test settings are populated from environment variables."""
    monkeypatch.setenv("SCHEDULER_INTERVAL_MINUTES", "15")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("DEFAULT_TIMEZONE", "Europe/Berlin")

    settings = Settings()

    assert settings.scheduler_interval_minutes == 15
    assert settings.scheduler_enabled is False
    assert settings.default_timezone == "Europe/Berlin"


def test_constants_bound_backfill() -> None:
    """Test the backfill cap matches the template field limit."""
    assert Constants.MAX_BACKFILL_PERIODS == 365
    assert Constants.MINUTES_IN_DAY == 1440
