import pytest

from docchat.config.settings import AuthMode, Settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings(_env_file=None)

    assert settings.app_name == "DocChat Jobs"
    assert settings.version == "1.0.0"
    assert settings.auth_mode == AuthMode.NONE
    assert settings.job_concurrency == 2
    assert settings.job_poll_interval_ms == 2000
    assert settings.job_max_attempts == 3
    assert settings.webhook_max_attempts == 5
    assert settings.webhook_redelivery_batch_size == 50


def test_production_validation_blocks_none_auth():
    """Test that production environment blocks AUTH_MODE=none."""
    with pytest.raises(ValueError, match="AUTH_MODE=none is not allowed in production"):
        Settings(_env_file=None, environment="production", auth_mode=AuthMode.NONE)


def test_production_allows_dev_auth():
    settings = Settings(_env_file=None, environment="production", auth_mode=AuthMode.DEV)
    assert settings.auth_mode == AuthMode.DEV


def test_chunk_overlap_must_be_smaller_than_chunk_size():
    with pytest.raises(ValueError, match="CHUNK_OVERLAP must be smaller"):
        Settings(_env_file=None, chunk_size=100, chunk_overlap=100)


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        Settings(_env_file=None, job_concurrency=0)


def test_settings_from_environment(monkeypatch):
    """Test that settings can be loaded from environment variables."""
    monkeypatch.setenv("JOB_CONCURRENCY", "8")
    monkeypatch.setenv("JOB_POLL_INTERVAL_MS", "250")
    monkeypatch.setenv("WEBHOOK_TIMEOUT_S", "2.5")

    settings = Settings(_env_file=None)

    assert settings.job_concurrency == 8
    assert settings.job_poll_interval_ms == 250
    assert settings.webhook_timeout_s == 2.5
