"""Logging setup for the settings backbone.

Log files live in ``data/logs/`` (relative to the project root unless
DLSETTINGS_LOG_DIR is absolute) and rotate daily via TimedRotatingFileHandler.

- Rotation: daily (midnight, UTC).
- Retention: log_retention_days (default 30).
- Level: log_level (default INFO); the app profile's telemetry level wins once loaded.
"""
from __future__ import annotations

import glob
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from .env_settings import get_env

_LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Handlers we installed, so reconfiguration can replace them.
_file_handler: logging.Handler | None = None
_console_handler: logging.Handler | None = None
_log_dir: str | None = None

logger = logging.getLogger("dlsettings")


def _resolve_log_dir(log_dir: str | None) -> str:
    raw = (log_dir or get_env().log_dir or "data/logs").strip()
    p = Path(raw)
    if not p.is_absolute():
        p = Path(__file__).resolve().parents[1] / p
    os.makedirs(p, exist_ok=True)
    return str(p)


def _level_name(level: str | None) -> str:
    name = (level or "INFO").strip().upper()
    if name == "WARN":
        name = "WARNING"
    return name if name in _LEVELS else "INFO"


def setup_logging(
    level: str = "INFO",
    retention_days: int = 30,
    max_size_mb: int = 50,
    log_dir: str | None = None,
) -> None:
    """Configure the root logger: a dated file handler plus the console.

    Calling it again swaps our handlers instead of stacking new ones.
    """
    global _file_handler, _console_handler, _log_dir

    level_str = _level_name(level)
    log_level = getattr(logging, level_str, logging.INFO)
    retention_days = max(1, min(365, int(retention_days or 30)))
    max_size_mb = max(5, min(500, int(max_size_mb or 50)))

    root = logging.getLogger()
    if _file_handler is not None and _file_handler in root.handlers:
        root.removeHandler(_file_handler)
        _file_handler.close()
    if _console_handler is not None and _console_handler in root.handlers:
        root.removeHandler(_console_handler)

    _log_dir = _resolve_log_dir(log_dir)
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT)

    fh = TimedRotatingFileHandler(
        os.path.join(_log_dir, "dlsettings.log"),
        when="midnight",
        interval=1,
        backupCount=retention_days,
        encoding="utf-8",
        utc=True,
    )
    fh.suffix = "%Y-%m-%d"
    fh.setLevel(log_level)
    fh.setFormatter(formatter)
    _file_handler = fh

    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(formatter)
    _console_handler = ch

    root.setLevel(log_level)
    root.addHandler(fh)
    root.addHandler(ch)

    _cleanup_old_logs(_log_dir, retention_days)

    logging.getLogger("sqlalchemy.engine").setLevel(max(log_level, logging.WARNING))

    logger.info(
        "logging configured: level=%s, retention=%d days, max size=%d MB",
        level_str, retention_days, max_size_mb,
    )


def setup_logging_from_env() -> None:
    env = get_env()
    setup_logging(
        level=env.log_level,
        retention_days=env.log_retention_days,
        max_size_mb=env.log_max_size_mb,
        log_dir=env.log_dir,
    )


def configure_from_profile(app_profile) -> str:
    """Apply ``app_profile.telemetry.level`` to the installed handlers.

    Returns the level in effect. Unknown levels fall back to INFO.
    """
    telemetry = getattr(app_profile, "telemetry", None)
    requested = getattr(telemetry, "level", None)
    if not requested:
        return logging.getLevelName(logging.getLogger().level)

    level_str = _level_name(requested)
    log_level = getattr(logging, level_str, logging.INFO)
    logging.getLogger().setLevel(log_level)
    for h in (_file_handler, _console_handler):
        if h is not None:
            h.setLevel(log_level)
    logger.info("log level set to %s from app profile", level_str)
    return level_str


def _cleanup_old_logs(log_dir: str, retention_days: int) -> None:
    """Remove rotated files older than retention_days."""
    cutoff = time.time() - (retention_days * 86400)
    for f in glob.glob(os.path.join(log_dir, "dlsettings.log.*")):
        try:
            if os.path.getmtime(f) < cutoff:
                os.remove(f)
        except OSError:
            logger.debug("could not remove old log file %s", f, exc_info=True)


def get_log_dir() -> str:
    return _log_dir or _resolve_log_dir(None)
