"""Tests for application settings."""
from app.core.config import Settings


def test_settings_read_env_file_case_sensitively():
    assert Settings.model_config["env_file"] == ".env"
    assert Settings.model_config["case_sensitive"] is True


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("SYNC_INTERVAL_MINUTES", "5")
    monkeypatch.setenv("sync_max_concurrency", "9")

    settings = Settings(_env_file=None)

    assert settings.SYNC_INTERVAL_MINUTES == 5
    assert settings.SYNC_MAX_CONCURRENCY == 4
