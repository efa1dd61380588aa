from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    ForeignKeyConstraint,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base
from .defaults import APP_PROFILE_ID, ENGINE_PROFILE_ID, FS_POLICY_ID, REVISION_ROW_ID
from .timezone_utils import utcnow


class TorrentState(str, enum.Enum):
    QUEUED = "queued"
    FETCHING_METADATA = "fetching_metadata"
    DOWNLOADING = "downloading"
    SEEDING = "seeding"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


class FsJobStatus(str, enum.Enum):
    PENDING = "pending"
    MOVING = "moving"
    MOVED = "moved"
    FAILED = "failed"
    SKIPPED = "skipped"


def _in(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(str(getattr(v, 'value', v))) for v in values)})"


# --- revision ---------------------------------------------------------------


class SettingsRevision(Base):
    __tablename__ = "settings_revision"
    __table_args__ = (CheckConstraint(f"id = {REVISION_ROW_ID}", name="settings_revision_singleton"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)  # always 1
    revision: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# --- app profile --------------------------------------------------------------


class AppProfileRow(Base):
    __tablename__ = "app_profile"
    __table_args__ = (
        CheckConstraint(f"id = '{APP_PROFILE_ID}'", name="app_profile_singleton"),
        CheckConstraint(_in("mode", ("setup", "active")), name="app_profile_mode"),
        CheckConstraint(_in("auth_mode", ("api_key", "none")), name="app_profile_auth_mode"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    version: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    mode: Mapped[str] = mapped_column(String(16), nullable=False)
    auth_mode: Mapped[str] = mapped_column(String(16), default="api_key", nullable=False)
    instance_name: Mapped[str] = mapped_column(String(255), nullable=False)
    http_port: Mapped[int] = mapped_column(Integer, default=7070, nullable=False)
    bind_addr: Mapped[str] = mapped_column(String(64), default="127.0.0.1", nullable=False)

    telemetry_level: Mapped[str | None] = mapped_column(String(32), nullable=True)
    telemetry_format: Mapped[str | None] = mapped_column(String(32), nullable=True)
    telemetry_otel_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    telemetry_otel_service_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    telemetry_otel_endpoint: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class AppImmutableKeyRow(Base):
    __tablename__ = "app_profile_immutable_keys"
    __table_args__ = (UniqueConstraint("profile_id", "ord", name="app_profile_immutable_keys_order"),)

    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("app_profile.id", ondelete="CASCADE"), primary_key=True
    )
    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    ord: Mapped[int] = mapped_column(Integer, nullable=False)


class AppLabelPolicyRow(Base):
    __tablename__ = "app_label_policies"
    __table_args__ = (CheckConstraint(_in("kind", ("category", "tag")), name="app_label_policies_kind"),)

    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("app_profile.id", ondelete="CASCADE"), primary_key=True
    )
    kind: Mapped[str] = mapped_column(String(16), primary_key=True)  # category|tag
    name: Mapped[str] = mapped_column(String(255), primary_key=True)

    download_dir: Mapped[str | None] = mapped_column(Text, nullable=True)
    rate_limit_download_bps: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    rate_limit_upload_bps: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    queue_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    auto_managed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    seed_ratio_limit: Mapped[float | None] = mapped_column(Float, nullable=True)
    seed_time_limit: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cleanup_seed_ratio_limit: Mapped[float | None] = mapped_column(Float, nullable=True)
    cleanup_seed_time_limit: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cleanup_remove_data: Mapped[bool | None] = mapped_column(Boolean, nullable=True)


# --- engine profile -----------------------------------------------------------


class EngineProfileRow(Base):
    __tablename__ = "engine_profile"
    __table_args__ = (CheckConstraint(f"id = '{ENGINE_PROFILE_ID}'", name="engine_profile_singleton"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    implementation: Mapped[str] = mapped_column(String(64), nullable=False)

    # networking
    listen_port: Mapped[int | None] = mapped_column(Integer, nullable=True)
    dht: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    encryption: Mapped[str] = mapped_column(String(16), default="require", nullable=False)
    enable_lsd: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enable_upnp: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enable_natpmp: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enable_pex: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ipv6_mode: Mapped[str] = mapped_column(String(16), default="disabled", nullable=False)
    anonymous_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    force_proxy: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    prefer_rc4: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    allow_multiple_connections_per_ip: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enable_outgoing_utp: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enable_incoming_utp: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    outgoing_port_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    outgoing_port_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    peer_dscp: Mapped[int | None] = mapped_column(Integer, nullable=True)
    connections_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    connections_limit_per_torrent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    unchoke_slots: Mapped[int | None] = mapped_column(Integer, nullable=True)
    half_open_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # queueing / seeding
    max_active: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_download_bps: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    max_upload_bps: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    seed_ratio_limit: Mapped[float | None] = mapped_column(Float, nullable=True)
    seed_time_limit: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    sequential_default: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_managed: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_manage_prefer_seeds: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dont_count_slow_torrents: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    super_seeding: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    choking_algorithm: Mapped[str] = mapped_column(String(32), default="fixed_slots", nullable=False)
    seed_choking_algorithm: Mapped[str] = mapped_column(String(32), default="round_robin", nullable=False)
    strict_super_seeding: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    optimistic_unchoke_slots: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # storage / disk cache
    resume_dir: Mapped[str] = mapped_column(Text, nullable=False)
    download_root: Mapped[str] = mapped_column(Text, nullable=False)
    storage_mode: Mapped[str] = mapped_column(String(16), default="sparse", nullable=False)
    use_partfile: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_queued_disk_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cache_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cache_expiry: Mapped[int | None] = mapped_column(Integer, nullable=True)
    coalesce_reads: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    coalesce_writes: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    use_disk_cache_pool: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    disk_read_mode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    disk_write_mode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    verify_piece_hashes: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    stats_interval_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


ENGINE_LIST_KINDS = ("listen_interfaces", "dht_bootstrap_nodes", "dht_router_nodes")


class EngineListValueRow(Base):
    __tablename__ = "engine_profile_list_values"
    __table_args__ = (
        CheckConstraint(_in("kind", ENGINE_LIST_KINDS), name="engine_profile_list_values_kind"),
        UniqueConstraint("profile_id", "kind", "value", name="engine_profile_list_values_dedup"),
    )

    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("engine_profile.id", ondelete="CASCADE"), primary_key=True
    )
    kind: Mapped[str] = mapped_column(String(32), primary_key=True)
    ord: Mapped[int] = mapped_column(Integer, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class EngineIpFilterRow(Base):
    __tablename__ = "engine_ip_filter"

    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("engine_profile.id", ondelete="CASCADE"), primary_key=True
    )
    blocklist_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    etag: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)


class EngineIpFilterEntryRow(Base):
    __tablename__ = "engine_ip_filter_entries"
    __table_args__ = (UniqueConstraint("profile_id", "cidr", name="engine_ip_filter_entries_dedup"),)

    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("engine_profile.id", ondelete="CASCADE"), primary_key=True
    )
    ord: Mapped[int] = mapped_column(Integer, primary_key=True)
    cidr: Mapped[str] = mapped_column(String(64), nullable=False)


class EngineAltSpeedRow(Base):
    __tablename__ = "engine_alt_speed"

    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("engine_profile.id", ondelete="CASCADE"), primary_key=True
    )
    download_bps: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    upload_bps: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    schedule_start_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    schedule_end_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)


WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


class EngineAltSpeedDayRow(Base):
    __tablename__ = "engine_alt_speed_days"
    __table_args__ = (
        CheckConstraint(_in("day", WEEKDAYS), name="engine_alt_speed_days_day"),
        UniqueConstraint("profile_id", "day", name="engine_alt_speed_days_dedup"),
    )

    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("engine_profile.id", ondelete="CASCADE"), primary_key=True
    )
    ord: Mapped[int] = mapped_column(Integer, primary_key=True)
    day: Mapped[str] = mapped_column(String(3), nullable=False)


class EngineTrackerConfigRow(Base):
    __tablename__ = "engine_tracker_config"

    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("engine_profile.id", ondelete="CASCADE"), primary_key=True
    )
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)
    announce_ip: Mapped[str | None] = mapped_column(String(255), nullable=True)
    listen_interface: Mapped[str | None] = mapped_column(String(255), nullable=True)
    request_timeout_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    announce_to_all: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    replace_trackers: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    proxy_host: Mapped[str | None] = mapped_column(String(255), nullable=True)
    proxy_port: Mapped[int | None] = mapped_column(Integer, nullable=True)
    proxy_kind: Mapped[str | None] = mapped_column(String(16), nullable=True)  # http|https|socks5
    proxy_username_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    proxy_password_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    proxy_peers: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    ssl_cert: Mapped[str | None] = mapped_column(String(512), nullable=True)
    ssl_private_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    ssl_ca_cert: Mapped[str | None] = mapped_column(String(512), nullable=True)
    ssl_tracker_verify: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    auth_username_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    auth_password_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    auth_cookie_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)


class EngineTrackerEndpointRow(Base):
    __tablename__ = "engine_tracker_endpoints"
    __table_args__ = (
        CheckConstraint(_in("kind", ("default", "extra")), name="engine_tracker_endpoints_kind"),
        UniqueConstraint("profile_id", "kind", "url", name="engine_tracker_endpoints_dedup"),
    )

    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("engine_profile.id", ondelete="CASCADE"), primary_key=True
    )
    kind: Mapped[str] = mapped_column(String(16), primary_key=True)
    ord: Mapped[int] = mapped_column(Integer, primary_key=True)
    url: Mapped[str] = mapped_column(String(512), nullable=False)


class EnginePeerClassRow(Base):
    __tablename__ = "engine_peer_classes"
    __table_args__ = (
        CheckConstraint("class_id >= 0 AND class_id <= 31", name="engine_peer_class_id_bounds"),
        CheckConstraint(
            "download_priority >= 1 AND download_priority <= 255",
            name="engine_peer_class_download_priority_bounds",
        ),
        CheckConstraint(
            "upload_priority >= 1 AND upload_priority <= 255",
            name="engine_peer_class_upload_priority_bounds",
        ),
        CheckConstraint("connection_limit_factor >= 1", name="engine_peer_class_connection_limit_factor_bounds"),
    )

    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("engine_profile.id", ondelete="CASCADE"), primary_key=True
    )
    class_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    download_priority: Mapped[int] = mapped_column(Integer, nullable=False)
    upload_priority: Mapped[int] = mapped_column(Integer, nullable=False)
    connection_limit_factor: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    ignore_unchoke_slots: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class EnginePeerClassDefaultRow(Base):
    __tablename__ = "engine_peer_class_defaults"
    __table_args__ = (
        ForeignKeyConstraint(
            ["profile_id", "class_id"],
            ["engine_peer_classes.profile_id", "engine_peer_classes.class_id"],
            ondelete="CASCADE",
            name="engine_peer_class_defaults_fk",
        ),
    )

    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("engine_profile.id", ondelete="CASCADE"), primary_key=True
    )
    class_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)


# --- fs policy ----------------------------------------------------------------


class FsPolicyRow(Base):
    __tablename__ = "fs_policy"
    __table_args__ = (CheckConstraint(f"id = '{FS_POLICY_ID}'", name="fs_policy_singleton"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    library_root: Mapped[str] = mapped_column(Text, nullable=False)
    extract: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    par2: Mapped[str] = mapped_column(String(16), default="off", nullable=False)
    flatten: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    move_mode: Mapped[str] = mapped_column(String(16), default="hardlink", nullable=False)
    chmod_file: Mapped[str | None] = mapped_column(String(8), nullable=True)
    chmod_dir: Mapped[str | None] = mapped_column(String(8), nullable=True)
    owner: Mapped[str | None] = mapped_column(String(128), nullable=True)
    group: Mapped[str | None] = mapped_column(String(128), nullable=True)
    umask: Mapped[str | None] = mapped_column(String(8), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


FS_LIST_KINDS = ("cleanup_keep", "cleanup_drop", "allow_paths")


class FsPolicyListValueRow(Base):
    __tablename__ = "fs_policy_list_values"
    __table_args__ = (
        CheckConstraint(_in("kind", FS_LIST_KINDS), name="fs_policy_list_values_kind"),
        UniqueConstraint("policy_id", "kind", "value", name="fs_policy_list_values_dedup"),
    )

    policy_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("fs_policy.id", ondelete="CASCADE"), primary_key=True
    )
    kind: Mapped[str] = mapped_column(String(16), primary_key=True)
    ord: Mapped[int] = mapped_column(Integer, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


# --- credentials ---------------------------------------------------------------


class ApiKeyRow(Base):
    __tablename__ = "auth_api_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    hash: Mapped[str] = mapped_column(Text, nullable=False)  # opaque
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rate_limit_burst: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rate_limit_per_seconds: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class SecretRow(Base):
    __tablename__ = "settings_secret"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    ciphertext: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)  # opaque
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class SetupTokenRow(Base):
    __tablename__ = "setup_tokens"
    __table_args__ = (
        # active_slot is 1 while unconsumed and NULL afterwards; the unique
        # constraint then allows at most one unconsumed token.
        UniqueConstraint("active_slot", name="setup_tokens_active_unique"),
        CheckConstraint(
            "(consumed_at IS NULL AND active_slot = 1) OR (consumed_at IS NOT NULL AND active_slot IS NULL)",
            name="setup_tokens_active_slot",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_hash: Mapped[str] = mapped_column(Text, nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    issued_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    active_slot: Mapped[int | None] = mapped_column(Integer, default=1, nullable=True)


# --- runtime mirror ---------------------------------------------------------------


class RuntimeTorrentRow(Base):
    __tablename__ = "runtime_torrents"
    __table_args__ = (CheckConstraint(_in("state", TorrentState), name="runtime_torrents_state"),)

    torrent_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str] = mapped_column(String(32), nullable=False)
    state_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    progress_bytes_downloaded: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    progress_bytes_total: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    progress_eta_seconds: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    download_bps: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    upload_bps: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    ratio: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    sequential: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    library_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    download_dir: Mapped[str | None] = mapped_column(Text, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str | None] = mapped_column(Text, nullable=True)
    private: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class RuntimeTorrentFileRow(Base):
    __tablename__ = "runtime_torrent_files"

    torrent_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("runtime_torrents.torrent_id", ondelete="CASCADE"), primary_key=True
    )
    file_index: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    bytes_completed: Mapped[int] = mapped_column(BigInteger, nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False)
    selected: Mapped[bool] = mapped_column(Boolean, nullable=False)


class RuntimeFsJobRow(Base):
    __tablename__ = "runtime_fs_jobs"
    __table_args__ = (CheckConstraint(_in("status", FsJobStatus), name="runtime_fs_jobs_status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    torrent_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("runtime_torrents.torrent_id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    src_path: Mapped[str] = mapped_column(Text, nullable=False)
    dst_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    transfer_mode: Mapped[str | None] = mapped_column(String(16), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=FsJobStatus.PENDING.value, nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# Tables whose writes advance the revision and reach the change feed.
WATCHED_TABLES = (
    AppProfileRow.__tablename__,
    EngineProfileRow.__tablename__,
    FsPolicyRow.__tablename__,
    ApiKeyRow.__tablename__,
)
