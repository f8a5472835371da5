"""Tests for environment-driven settings."""

from core.config import Settings


def test_event_store_defaults_to_writable_tmp():
    assert Settings().event_store_url == "sqlite+aiosqlite:////tmp/compliance_events.db"


def test_from_env_overrides(monkeypatch):
    monkeypatch.setenv("EVENT_STORE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "5")
    settings = Settings.from_env()
    assert settings.event_store_url == "sqlite+aiosqlite:///:memory:"
    assert settings.retry_max_attempts == 5
