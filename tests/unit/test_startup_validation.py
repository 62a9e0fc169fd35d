"""Tests for startup validation functions."""

from unittest.mock import AsyncMock, Mock, patch

import pytest

from taskdist.main import check_redis_connectivity, validate_startup_configuration


@pytest.mark.unit
async def test_check_redis_connectivity_disabled() -> None:
    """Test Redis check when Redis is not configured."""
    mock_redis = Mock()
    mock_redis.is_available = False
    mock_redis.ping = AsyncMock()

    with patch("taskdist.main.redis_client", mock_redis):
        await check_redis_connectivity()

    mock_redis.ping.assert_not_called()


@pytest.mark.unit
async def test_check_redis_connectivity_success() -> None:
    """Test successful Redis connectivity check."""
    mock_redis = Mock()
    mock_redis.is_available = True
    mock_redis.ping = AsyncMock(return_value=True)

    with patch("taskdist.main.redis_client", mock_redis):
        await check_redis_connectivity()
        mock_redis.ping.assert_called_once()


@pytest.mark.unit
async def test_check_redis_connectivity_unreachable_is_not_fatal() -> None:
    """Test an unreachable Redis only logs; job history falls back to memory."""
    mock_redis = Mock()
    mock_redis.is_available = True
    mock_redis.ping = AsyncMock(return_value=False)

    with patch("taskdist.main.redis_client", mock_redis):
        await check_redis_connectivity()


@pytest.mark.unit
async def test_validate_startup_configuration_remote_registry_without_key() -> None:
    """Test validation exits when the remote registry has no API key."""
    with (
        patch("taskdist.main.settings") as mock_settings,
        pytest.raises(SystemExit) as exc_info,
    ):
        mock_settings.registry_base_url = "https://registry.example"
        mock_settings.require_credential.side_effect = ValueError("Registry API key credential not configured")
        await validate_startup_configuration()

    assert exc_info.value.code == 1


@pytest.mark.unit
async def test_validate_startup_configuration_local_registry() -> None:
    """Test validation passes without credentials when registries are local."""
    with (
        patch("taskdist.main.settings") as mock_settings,
        patch("taskdist.main.check_redis_connectivity", new=AsyncMock()) as mock_redis_check,
    ):
        mock_settings.registry_base_url = None
        await validate_startup_configuration()

    mock_settings.require_credential.assert_not_called()
    mock_redis_check.assert_awaited_once()
