import logging
from pathlib import Path

import pytest

from dlsettings.bootstrap import initialize_store
from dlsettings.db import default_db_url
from dlsettings.env_settings import get_env
from dlsettings.errors import ConflictError, ValidationError
from dlsettings.log_config import configure_from_profile, get_log_dir, setup_logging
from dlsettings.services.settings.schema import AppProfile, TelemetryConfig


def test_env_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DLSETTINGS_LOG_LEVEL", "debug")
    monkeypatch.setenv("DLSETTINGS_SETUP_TOKEN_TTL_S", "120")
    monkeypatch.setenv("DLSETTINGS_FEED_QUEUE_SIZE", "8")
    get_env.cache_clear()
    env = get_env()
    assert env.log_level == "debug"
    assert env.setup_token_ttl_s == 120
    assert env.feed_queue_size == 8
    assert env.log_retention_days == 30


def test_default_db_url_uses_sqlite_path(tmp_path: Path) -> None:
    url = default_db_url()
    expected = tmp_path / "data" / "dlsettings.db"
    assert url == f"sqlite:///{expected.as_posix()}"
    assert expected.parent.is_dir()


def test_database_url_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DLSETTINGS_DATABASE_URL", "sqlite://")
    get_env.cache_clear()
    assert default_db_url() == "sqlite://"


def test_setup_logging_writes_to_log_dir(tmp_path: Path, restore_root_logger) -> None:
    log_dir = tmp_path / "custom-logs"
    setup_logging(level="warning", retention_days=0, max_size_mb=1, log_dir=str(log_dir))
    assert logging.getLogger().level == logging.WARNING
    assert get_log_dir() == str(log_dir)
    logging.getLogger("dlsettings.test").warning("hello")
    assert (log_dir / "dlsettings.log").is_file()

    # reconfiguring replaces our handlers instead of stacking them
    count = len(logging.getLogger().handlers)
    setup_logging(level="bogus", log_dir=str(log_dir))
    assert len(logging.getLogger().handlers) == count
    assert logging.getLogger().level == logging.INFO


def test_profile_level_overrides_env(tmp_path: Path, restore_root_logger) -> None:
    setup_logging(level="INFO", log_dir=str(tmp_path / "logs"))
    level = configure_from_profile(AppProfile(telemetry=TelemetryConfig(level="debug")))
    assert level == "DEBUG"
    assert logging.getLogger().level == logging.DEBUG
    assert configure_from_profile(AppProfile()) == "DEBUG"


def test_initialize_store_uses_environment(tmp_path: Path, restore_root_logger) -> None:
    store = initialize_store()
    try:
        assert store.current_revision() == 0
        assert (tmp_path / "data" / "dlsettings.db").is_file()
        assert (tmp_path / "logs" / "dlsettings.log").is_file()
    finally:
        store.close()


def test_error_payloads() -> None:
    err = ValidationError("bad port", section="app_profile", field="http_port", value=0)
    assert err.to_dict() == {
        "code": "VALIDATION_ERROR",
        "message": "bad port",
        "meta": {"section": "app_profile", "field": "http_port", "value": 0},
    }
    assert ConflictError("dup").to_dict() == {"code": "CONFLICT", "message": "dup"}
