"""Tests for configuration."""

from datetime import timedelta

from batchline.utils.config import get_config, reset_config
from batchline.utils.constants import ON_TIME_THRESHOLD


def test_defaults():
    config = get_config()

    assert config.on_time_threshold == ON_TIME_THRESHOLD == timedelta(hours=12)
    assert config.enforce_composition is True
    assert config.log_level == "INFO"
    assert config.uses_default_database
    assert config.database_url.startswith("sqlite:///")
    assert config.database_url.endswith("batchline.db")


def test_singleton():
    assert get_config() is get_config()


def test_on_time_hours_override(monkeypatch):
    monkeypatch.setenv("BATCHLINE_ON_TIME_HOURS", "8.5")
    reset_config()

    assert get_config().on_time_threshold == timedelta(hours=8.5)


def test_invalid_on_time_hours_falls_back(monkeypatch, caplog):
    monkeypatch.setenv("BATCHLINE_ON_TIME_HOURS", "soon")
    reset_config()

    assert get_config().on_time_threshold == ON_TIME_THRESHOLD
    assert "BATCHLINE_ON_TIME_HOURS" in caplog.text


def test_non_positive_on_time_hours_falls_back(monkeypatch):
    monkeypatch.setenv("BATCHLINE_ON_TIME_HOURS", "0")
    reset_config()

    assert get_config().on_time_threshold == ON_TIME_THRESHOLD


def test_composition_enforcement_can_be_disabled(monkeypatch):
    monkeypatch.setenv("BATCHLINE_ENFORCE_COMPOSITION", "false")
    reset_config()

    assert get_config().enforce_composition is False


def test_database_url_override(monkeypatch, tmp_path):
    url = f"sqlite:///{tmp_path / 'other.db'}"
    monkeypatch.setenv("BATCHLINE_DATABASE_URL", url)
    reset_config()

    config = get_config()
    assert config.database_url == url
    assert not config.uses_default_database


def test_development_environment_uses_project_data_dir(monkeypatch):
    monkeypatch.setenv("BATCHLINE_ENV", "development")
    reset_config()

    config = get_config()
    assert config.is_development
    assert config.database_path.parent.name == "data"


def test_log_level_is_uppercased(monkeypatch):
    monkeypatch.setenv("BATCHLINE_LOG_LEVEL", "debug")
    reset_config()

    assert get_config().log_level == "DEBUG"
