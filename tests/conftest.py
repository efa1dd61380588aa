import logging
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from dlsettings.env_settings import get_env
from dlsettings.store import SettingsStore


@pytest.fixture(autouse=True)
def _test_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.delenv("DLSETTINGS_DATABASE_URL", raising=False)
    monkeypatch.setenv("DLSETTINGS_SQLITE_PATH", str(tmp_path / "data" / "dlsettings.db"))
    monkeypatch.setenv("DLSETTINGS_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("DLSETTINGS_WATCH_POLL_INTERVAL_S", "0.05")
    get_env.cache_clear()
    try:
        yield
    finally:
        get_env.cache_clear()


@pytest.fixture()
def make_store(tmp_path: Path) -> Iterator[Callable[[str], SettingsStore]]:
    opened: list[SettingsStore] = []

    def _make(name: str = "settings.db") -> SettingsStore:
        store = SettingsStore(url=f"sqlite:///{(tmp_path / name).as_posix()}")
        opened.append(store)
        return store

    try:
        yield _make
    finally:
        for store in opened:
            store.close()


@pytest.fixture()
def store(make_store: Callable[[str], SettingsStore]) -> SettingsStore:
    return make_store("settings.db")


@pytest.fixture()
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    try:
        yield
    finally:
        for handler in list(root.handlers):
            if handler not in handlers:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(level)
