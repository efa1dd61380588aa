"""Configuration backbone for a self-hosted download manager."""

from .errors import (
    ConfigError,
    ConflictError,
    ErrorCode,
    FatalError,
    ImmutableFieldError,
    NotFoundError,
    ValidationError,
)
from .events import ChangeFeed, SettingsChange, Subscription
from .services.settings.snapshot import ConfigSnapshot
from .store import ConfigWatcher, SettingsStore

__all__ = [
    "ChangeFeed",
    "ConfigError",
    "ConfigSnapshot",
    "ConfigWatcher",
    "ConflictError",
    "ErrorCode",
    "FatalError",
    "ImmutableFieldError",
    "NotFoundError",
    "SettingsChange",
    "SettingsStore",
    "Subscription",
    "ValidationError",
]
