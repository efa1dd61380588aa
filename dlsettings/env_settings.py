from functools import lru_cache

from pydantic_settings import BaseSettings
from pydantic import Field


class EnvSettings(BaseSettings):
    database_url: str = Field("", alias="DLSETTINGS_DATABASE_URL")
    sqlite_path: str = Field("data/dlsettings.db", alias="DLSETTINGS_SQLITE_PATH")

    log_dir: str = Field("data/logs", alias="DLSETTINGS_LOG_DIR")
    log_level: str = Field("INFO", alias="DLSETTINGS_LOG_LEVEL")
    log_retention_days: int = Field(30, alias="DLSETTINGS_LOG_RETENTION_DAYS")
    log_max_size_mb: int = Field(50, alias="DLSETTINGS_LOG_MAX_SIZE_MB")

    setup_token_ttl_s: int = Field(900, alias="DLSETTINGS_SETUP_TOKEN_TTL_S")
    feed_queue_size: int = Field(256, alias="DLSETTINGS_FEED_QUEUE_SIZE")
    watch_poll_interval_s: float = Field(5.0, alias="DLSETTINGS_WATCH_POLL_INTERVAL_S")

    class Config:
        populate_by_name = True


@lru_cache(maxsize=1)
def get_env() -> EnvSettings:
    return EnvSettings()
