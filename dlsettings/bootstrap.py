"""Process bootstrap: logging, schema and the store."""

from __future__ import annotations

from .log_config import configure_from_profile, setup_logging_from_env
from .store import SettingsStore


def initialize_store(url: str | None = None) -> SettingsStore:
    """Configure logging from the environment, open the store, then apply
    the persisted telemetry level."""
    setup_logging_from_env()
    store = SettingsStore(url=url)
    configure_from_profile(store.fetch_app_profile())
    return store
