from __future__ import annotations

import ipaddress
import logging
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ...defaults import (
    APP_PROFILE_ID,
    APP_PROFILE_SEED,
    ENGINE_PROFILE_ID,
    ENGINE_PROFILE_SEED,
    FS_ALLOW_PATHS_SEED,
    FS_POLICY_ID,
    FS_POLICY_SEED,
    PEER_CONNECTION_FACTOR_DEFAULT,
)

logger = logging.getLogger(__name__)

AppMode = Literal["setup", "active"]
AuthMode = Literal["api_key", "none"]
LabelKind = Literal["category", "tag"]


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid")


# --- app profile --------------------------------------------------------------


class TelemetryConfig(_Model):
    level: str | None = None
    format: str | None = None
    otel_enabled: bool | None = None
    otel_service_name: str | None = None
    otel_endpoint: str | None = None


class LabelCleanup(_Model):
    seed_ratio_limit: float | None = None
    seed_time_limit: int | None = None
    remove_data: bool = False


class LabelPolicy(_Model):
    kind: LabelKind
    name: str = Field(min_length=1, max_length=255)
    download_dir: str | None = None
    rate_limit_download_bps: int | None = None
    rate_limit_upload_bps: int | None = None
    queue_position: int | None = None
    auto_managed: bool | None = None
    seed_ratio_limit: float | None = None
    seed_time_limit: int | None = None
    cleanup: LabelCleanup | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        s = (v or "").strip()
        if not s:
            raise ValueError("label name must not be blank")
        return s


class AppProfileSettings(_Model):
    """Everything an app profile update writes."""

    mode: AppMode = APP_PROFILE_SEED["mode"]
    auth_mode: AuthMode = APP_PROFILE_SEED["auth_mode"]
    instance_name: str = Field(default=APP_PROFILE_SEED["instance_name"], min_length=1, max_length=255)
    http_port: int = Field(default=APP_PROFILE_SEED["http_port"], ge=1, le=65535)
    bind_addr: str = Field(default=APP_PROFILE_SEED["bind_addr"])
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    immutable_keys: list[str] = Field(default_factory=list)
    label_policies: list[LabelPolicy] = Field(default_factory=list)

    @field_validator("instance_name")
    @classmethod
    def _strip(cls, v: str) -> str:
        s = (v or "").strip()
        if not s:
            raise ValueError("instance_name must not be blank")
        return s

    @field_validator("bind_addr")
    @classmethod
    def _validate_bind_addr(cls, v: str) -> str:
        s = (v or "").strip()
        try:
            return str(ipaddress.ip_address(s))
        except ValueError as e:
            raise ValueError(f"bind_addr must be an IP address: {s!r}") from e


class AppProfile(AppProfileSettings):
    id: str = APP_PROFILE_ID
    version: int = 0


# --- engine profile -------------------------------------------------------------


_SCHEDULE_KEYS = frozenset({"days", "start", "end"})
_ALT_SPEED_KEYS = frozenset({"download_bps", "upload_bps", "schedule"})


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _loose_schedule(raw: Any) -> Any:
    """Shape check for a raw schedule; anything unusable becomes None."""
    if raw is None or isinstance(raw, AltSpeedSchedule):
        return raw
    if not isinstance(raw, dict) or set(raw) - _SCHEDULE_KEYS:
        logger.warning("alt_speed.schedule: unexpected shape; clearing schedule")
        return None
    days = raw.get("days")
    if not isinstance(days, list) or not all(isinstance(d, str) for d in days):
        logger.warning("alt_speed.schedule.days must be a list of strings; clearing schedule")
        return None
    if not isinstance(raw.get("start"), str) or not isinstance(raw.get("end"), str):
        logger.warning("alt_speed.schedule: start and end must be HH:MM strings; clearing schedule")
        return None
    return raw


class AltSpeedSchedule(_Model):
    model_config = ConfigDict(extra="ignore")

    days: list[str] = Field(default_factory=list)
    start: str = ""  # HH:MM
    end: str = ""  # HH:MM


class AltSpeedConfig(_Model):
    """Malformed input parses to an empty config instead of failing validation."""

    model_config = ConfigDict(extra="ignore")

    download_bps: int | None = None
    upload_bps: int | None = None
    schedule: AltSpeedSchedule | None = None

    @model_validator(mode="before")
    @classmethod
    def _lenient(cls, data: Any) -> Any:
        if data is None:
            return {}
        if isinstance(data, BaseModel):
            return data
        if not isinstance(data, dict):
            logger.warning("alt_speed must be an object; clearing alternate speeds")
            return {}
        unknown = set(data) - _ALT_SPEED_KEYS
        if unknown:
            logger.warning("alt_speed has unknown keys %s; clearing alternate speeds", sorted(unknown))
            return {}
        for key in ("download_bps", "upload_bps"):
            value = data.get(key)
            if value is not None and not _is_integer(value):
                logger.warning("alt_speed.%s must be an integer; clearing alternate speeds", key)
                return {}
        return {**data, "schedule": _loose_schedule(data.get("schedule"))}

    def is_empty(self) -> bool:
        return self.download_bps is None and self.upload_bps is None and self.schedule is None


class IpFilterConfig(_Model):
    blocklist_url: str | None = None
    etag: str | None = None
    last_updated_at: datetime | None = None
    last_error: str | None = None
    cidrs: list[str] = Field(default_factory=list)


class TrackerProxyConfig(_Model):
    host: str = ""
    port: int = 0
    kind: str = "http"
    username_secret: str | None = None
    password_secret: str | None = None
    proxy_peers: bool = False


class TrackerAuthConfig(_Model):
    username_secret: str | None = None
    password_secret: str | None = None
    cookie_secret: str | None = None


class TrackerConfig(_Model):
    default: list[str] = Field(default_factory=list)
    extra: list[str] = Field(default_factory=list)
    replace: bool = False
    user_agent: str | None = None
    announce_ip: str | None = None
    listen_interface: str | None = None
    request_timeout_ms: int | None = None
    announce_to_all: bool = False
    proxy: TrackerProxyConfig | None = None
    auth: TrackerAuthConfig | None = None
    ssl_cert: str | None = None
    ssl_private_key: str | None = None
    ssl_ca_cert: str | None = None
    ssl_tracker_verify: bool = True


class PeerClassConfig(_Model):
    id: int
    label: str | None = None
    download_priority: int = 1
    upload_priority: int = 1
    connection_limit_factor: int = PEER_CONNECTION_FACTOR_DEFAULT
    ignore_unchoke_slots: bool = False


class PeerClassesConfig(_Model):
    classes: list[PeerClassConfig] = Field(default_factory=list)
    default: list[int] = Field(default_factory=list)


class EngineProfileSettings(_Model):
    implementation: str = ENGINE_PROFILE_SEED["implementation"]

    listen_port: int | None = None
    dht: bool = False
    encryption: str = "require"
    enable_lsd: bool = False
    enable_upnp: bool = False
    enable_natpmp: bool = False
    enable_pex: bool = False
    ipv6_mode: str = "disabled"
    anonymous_mode: bool = False
    force_proxy: bool = False
    prefer_rc4: bool = False
    allow_multiple_connections_per_ip: bool = False
    enable_outgoing_utp: bool = False
    enable_incoming_utp: bool = False
    outgoing_port_min: int | None = None
    outgoing_port_max: int | None = None
    peer_dscp: int | None = None
    connections_limit: int | None = None
    connections_limit_per_torrent: int | None = None
    unchoke_slots: int | None = None
    half_open_limit: int | None = None

    max_active: int | None = None
    max_download_bps: int | None = None
    max_upload_bps: int | None = None
    seed_ratio_limit: float | None = None
    seed_time_limit: int | None = None
    sequential_default: bool = True
    auto_managed: bool = True
    auto_manage_prefer_seeds: bool = False
    dont_count_slow_torrents: bool = True
    super_seeding: bool = False
    choking_algorithm: str = "fixed_slots"
    seed_choking_algorithm: str = "round_robin"
    strict_super_seeding: bool = False
    optimistic_unchoke_slots: int | None = None

    resume_dir: str = ENGINE_PROFILE_SEED["resume_dir"]
    download_root: str = ENGINE_PROFILE_SEED["download_root"]
    storage_mode: str = "sparse"
    use_partfile: bool = True
    max_queued_disk_bytes: int | None = None
    cache_size: int | None = None
    cache_expiry: int | None = None
    coalesce_reads: bool = True
    coalesce_writes: bool = True
    use_disk_cache_pool: bool = True
    disk_read_mode: str | None = None
    disk_write_mode: str | None = None
    verify_piece_hashes: bool = True
    stats_interval_ms: int | None = None

    listen_interfaces: list[str] = Field(default_factory=list)
    dht_bootstrap_nodes: list[str] = Field(default_factory=list)
    dht_router_nodes: list[str] = Field(default_factory=list)
    ip_filter: IpFilterConfig = Field(default_factory=IpFilterConfig)
    alt_speed: AltSpeedConfig = Field(default_factory=AltSpeedConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    peer_classes: PeerClassesConfig = Field(default_factory=PeerClassesConfig)

    @field_validator("implementation")
    @classmethod
    def _strip_implementation(cls, v: str) -> str:
        s = (v or "").strip()
        if not s:
            raise ValueError("implementation must not be blank")
        return s


class EngineProfile(EngineProfileSettings):
    id: str = ENGINE_PROFILE_ID


# Scalar columns copied one-to-one between EngineProfileSettings and the row.
ENGINE_SCALAR_FIELDS: tuple[str, ...] = tuple(
    name
    for name in EngineProfileSettings.model_fields
    if name
    not in (
        "listen_interfaces",
        "dht_bootstrap_nodes",
        "dht_router_nodes",
        "ip_filter",
        "alt_speed",
        "tracker",
        "peer_classes",
    )
)


# --- fs policy --------------------------------------------------------------------


class FsPolicySettings(_Model):
    library_root: str = FS_POLICY_SEED["library_root"]
    extract: bool = False
    par2: str = "off"
    flatten: bool = False
    move_mode: str = "hardlink"
    chmod_file: str | None = None
    chmod_dir: str | None = None
    owner: str | None = None
    group: str | None = None
    umask: str | None = None
    cleanup_keep: list[str] = Field(default_factory=list)
    cleanup_drop: list[str] = Field(default_factory=list)
    allow_paths: list[str] = Field(default_factory=lambda: list(FS_ALLOW_PATHS_SEED))

    @field_validator("library_root", "par2", "move_mode")
    @classmethod
    def _required(cls, v: str) -> str:
        s = (v or "").strip()
        if not s:
            raise ValueError("must not be blank")
        return s

    @field_validator("chmod_file", "chmod_dir", "umask")
    @classmethod
    def _octal(cls, v: str | None) -> str | None:
        s = (v or "").strip()
        if not s:
            return None
        if len(s) > 4 or any(ch not in "01234567" for ch in s):
            raise ValueError(f"expected an octal mode like 0644, got {s!r}")
        return s

    @field_validator("owner", "group")
    @classmethod
    def _strip_optional(cls, v: str | None) -> str | None:
        s = (v or "").strip()
        return s or None


class FsPolicy(FsPolicySettings):
    id: str = FS_POLICY_ID


FS_SCALAR_FIELDS: tuple[str, ...] = (
    "library_root",
    "extract",
    "par2",
    "flatten",
    "move_mode",
    "chmod_file",
    "chmod_dir",
    "owner",
    "group",
    "umask",
)

