"""Read projection and write orchestration for the three singleton aggregates.

An update rewrites the aggregate's scalar columns and then fully replaces
every structured field (delete all rows, reinsert the normalized set with
contiguous ordinals), all inside the caller's transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Iterable, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, insert, select
from sqlalchemy.orm import Session

from ...defaults import APP_PROFILE_ID, ENGINE_PROFILE_ID, FS_POLICY_ID
from ...errors import ValidationError, from_pydantic
from ...models import (
    ENGINE_LIST_KINDS,
    FS_LIST_KINDS,
    AppImmutableKeyRow,
    AppLabelPolicyRow,
    AppProfileRow,
    EngineAltSpeedDayRow,
    EngineAltSpeedRow,
    EngineIpFilterEntryRow,
    EngineIpFilterRow,
    EngineListValueRow,
    EnginePeerClassDefaultRow,
    EnginePeerClassRow,
    EngineProfileRow,
    EngineTrackerConfigRow,
    EngineTrackerEndpointRow,
    FsPolicyListValueRow,
    FsPolicyRow,
)
from ...repo import require_singleton
from ...revision import WriteTx
from ...timezone_utils import to_utc_naive, utcnow
from .normalize import (
    ensure_mutable,
    format_hhmm,
    normalize_alt_speed,
    normalize_app_profile,
    normalize_engine_profile_settings,
    normalize_fs_policy,
    normalize_ip_filter,
    normalize_label_policies,
    normalize_listen_interfaces,
    normalize_peer_classes,
    normalize_string_list,
    normalize_tracker,
    parse_hhmm,
)
from .schema import (
    ENGINE_SCALAR_FIELDS,
    FS_SCALAR_FIELDS,
    AltSpeedConfig,
    AltSpeedSchedule,
    AppProfile,
    AppProfileSettings,
    AppMode,
    EngineProfile,
    EngineProfileSettings,
    FsPolicy,
    FsPolicySettings,
    IpFilterConfig,
    LabelCleanup,
    LabelPolicy,
    PeerClassConfig,
    PeerClassesConfig,
    TelemetryConfig,
    TrackerAuthConfig,
    TrackerConfig,
    TrackerProxyConfig,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_VIEW_ONLY_FIELDS = ("id", "version")


def coerce(model_cls: type[M], data: Any, *, section: str) -> M:
    """Accept a model instance or a mapping; pydantic errors become ValidationError."""
    if type(data) is model_cls:
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    if isinstance(data, Mapping):
        data = {k: v for k, v in data.items() if k not in _VIEW_ONLY_FIELDS}
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        raise from_pydantic(exc, section=section) from exc


def _replace_rows(db: Session, model, where: Iterable, rows: list[dict]) -> None:
    db.execute(delete(model).where(*where))
    if rows:
        db.execute(insert(model), rows)


def _current_immutable_keys(db: Session) -> list[str]:
    return list(
        db.scalars(
            select(AppImmutableKeyRow.key)
            .where(AppImmutableKeyRow.profile_id == APP_PROFILE_ID)
            .order_by(AppImmutableKeyRow.ord)
        )
    )


def _guard_changes(
    immutable_keys: list[str], section: str, before: BaseModel, after: BaseModel, fields: Iterable[str]
) -> list[str]:
    """Check every changed field against the immutable keys; return the changed names."""
    changed = [name for name in fields if getattr(before, name) != getattr(after, name)]
    for name in changed:
        ensure_mutable(immutable_keys, section, name)
    return changed


# =============================================================================
# app profile
# =============================================================================


def _label_from_row(r: AppLabelPolicyRow) -> LabelPolicy:
    cleanup = None
    if r.cleanup_seed_ratio_limit is not None or r.cleanup_seed_time_limit is not None or r.cleanup_remove_data is not None:
        cleanup = LabelCleanup(
            seed_ratio_limit=r.cleanup_seed_ratio_limit,
            seed_time_limit=r.cleanup_seed_time_limit,
            remove_data=bool(r.cleanup_remove_data),
        )
    return LabelPolicy(
        kind=r.kind,
        name=r.name,
        download_dir=r.download_dir,
        rate_limit_download_bps=r.rate_limit_download_bps,
        rate_limit_upload_bps=r.rate_limit_upload_bps,
        queue_position=r.queue_position,
        auto_managed=r.auto_managed,
        seed_ratio_limit=r.seed_ratio_limit,
        seed_time_limit=r.seed_time_limit,
        cleanup=cleanup,
    )


def fetch_app_profile(db: Session, profile_id: str | None = None) -> AppProfile:
    st = require_singleton(db, AppProfileRow, APP_PROFILE_ID, profile_id)
    labels = db.scalars(
        select(AppLabelPolicyRow)
        .where(AppLabelPolicyRow.profile_id == st.id)
        .order_by(AppLabelPolicyRow.kind, AppLabelPolicyRow.name)
    )
    return AppProfile(
        id=st.id,
        version=int(st.version or 0),
        mode=st.mode,
        auth_mode=st.auth_mode,
        instance_name=st.instance_name,
        http_port=st.http_port,
        bind_addr=st.bind_addr,
        telemetry=TelemetryConfig(
            level=st.telemetry_level,
            format=st.telemetry_format,
            otel_enabled=st.telemetry_otel_enabled,
            otel_service_name=st.telemetry_otel_service_name,
            otel_endpoint=st.telemetry_otel_endpoint,
        ),
        immutable_keys=_current_immutable_keys(db),
        label_policies=[_label_from_row(r) for r in labels],
    )


def _write_immutable_keys(db: Session, keys: list[str]) -> None:
    _replace_rows(
        db,
        AppImmutableKeyRow,
        (AppImmutableKeyRow.profile_id == APP_PROFILE_ID,),
        [{"profile_id": APP_PROFILE_ID, "key": k, "ord": i} for i, k in enumerate(keys)],
    )


def _write_label_policies(db: Session, policies: list[LabelPolicy]) -> None:
    rows = []
    for p in policies:
        cleanup = p.cleanup
        rows.append(
            {
                "profile_id": APP_PROFILE_ID,
                "kind": p.kind,
                "name": p.name,
                "download_dir": p.download_dir,
                "rate_limit_download_bps": p.rate_limit_download_bps,
                "rate_limit_upload_bps": p.rate_limit_upload_bps,
                "queue_position": p.queue_position,
                "auto_managed": p.auto_managed,
                "seed_ratio_limit": p.seed_ratio_limit,
                "seed_time_limit": p.seed_time_limit,
                "cleanup_seed_ratio_limit": cleanup.seed_ratio_limit if cleanup else None,
                "cleanup_seed_time_limit": cleanup.seed_time_limit if cleanup else None,
                "cleanup_remove_data": cleanup.remove_data if cleanup else None,
            }
        )
    _replace_rows(db, AppLabelPolicyRow, (AppLabelPolicyRow.profile_id == APP_PROFILE_ID,), rows)


def _touch_app_row(tx: WriteTx, st: AppProfileRow) -> None:
    tx.touch(AppProfileRow.__tablename__, "UPDATE")
    st.version = int(st.version or 0) + 1
    st.updated_at = utcnow()


def update_app_profile(tx: WriteTx, data: AppProfileSettings | Mapping, *, profile_id: str | None = None) -> AppProfile:
    db = tx.db
    new = normalize_app_profile(coerce(AppProfileSettings, data, section="app_profile"))
    st = require_singleton(db, AppProfileRow, APP_PROFILE_ID, profile_id, for_update=True)
    current = fetch_app_profile(db)
    _guard_changes(current.immutable_keys, "app_profile", current, new, AppProfileSettings.model_fields)

    _touch_app_row(tx, st)
    st.mode = new.mode
    st.auth_mode = new.auth_mode
    st.instance_name = new.instance_name
    st.http_port = new.http_port
    st.bind_addr = new.bind_addr
    st.telemetry_level = new.telemetry.level
    st.telemetry_format = new.telemetry.format
    st.telemetry_otel_enabled = new.telemetry.otel_enabled
    st.telemetry_otel_service_name = new.telemetry.otel_service_name
    st.telemetry_otel_endpoint = new.telemetry.otel_endpoint
    db.flush()

    _write_immutable_keys(db, new.immutable_keys)
    _write_label_policies(db, new.label_policies)
    db.flush()
    db.expire_all()
    logger.info("app_profile updated (revision=%d)", tx.revision)
    return fetch_app_profile(db)


def set_app_mode(tx: WriteTx, mode: AppMode) -> AppProfile:
    """Flip setup/active without touching anything else."""
    db = tx.db
    if mode not in ("setup", "active"):
        raise ValidationError(f"invalid mode {mode!r}", section="app_profile", field="mode", value=mode)
    st = require_singleton(db, AppProfileRow, APP_PROFILE_ID, None, for_update=True)
    if st.mode != mode:
        ensure_mutable(_current_immutable_keys(db), "app_profile", "mode")
    _touch_app_row(tx, st)
    st.mode = mode
    db.flush()
    logger.info("app_profile mode set to %s (revision=%d)", mode, tx.revision)
    return fetch_app_profile(db)


def set_immutable_keys(tx: WriteTx, keys: Iterable[str]) -> AppProfile:
    db = tx.db
    st = require_singleton(db, AppProfileRow, APP_PROFILE_ID, None, for_update=True)
    _touch_app_row(tx, st)
    _write_immutable_keys(db, normalize_string_list(keys))
    db.flush()
    db.expire_all()
    return fetch_app_profile(db)


def set_label_policies(tx: WriteTx, policies: Iterable[LabelPolicy | Mapping]) -> AppProfile:
    db = tx.db
    normalized = normalize_label_policies(coerce(LabelPolicy, p, section="app_profile") for p in policies)
    st = require_singleton(db, AppProfileRow, APP_PROFILE_ID, None, for_update=True)
    current = fetch_app_profile(db)
    if current.label_policies != normalized:
        ensure_mutable(current.immutable_keys, "app_profile", "label_policies")
    _touch_app_row(tx, st)
    _write_label_policies(db, normalized)
    db.flush()
    db.expire_all()
    return fetch_app_profile(db)


# =============================================================================
# engine profile
# =============================================================================


def _engine_lists(db: Session, profile_id: str) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {k: [] for k in ENGINE_LIST_KINDS}
    rows = db.execute(
        select(EngineListValueRow.kind, EngineListValueRow.value)
        .where(EngineListValueRow.profile_id == profile_id)
        .order_by(EngineListValueRow.kind, EngineListValueRow.ord)
    )
    for kind, value in rows:
        out.setdefault(kind, []).append(value)
    return out


def _fetch_ip_filter(db: Session, profile_id: str) -> IpFilterConfig:
    row = db.get(EngineIpFilterRow, profile_id)
    cidrs = list(
        db.scalars(
            select(EngineIpFilterEntryRow.cidr)
            .where(EngineIpFilterEntryRow.profile_id == profile_id)
            .order_by(EngineIpFilterEntryRow.ord)
        )
    )
    if row is None:
        return IpFilterConfig(cidrs=cidrs)
    return IpFilterConfig(
        blocklist_url=row.blocklist_url,
        etag=row.etag,
        last_updated_at=row.last_updated_at,
        last_error=row.last_error,
        cidrs=cidrs,
    )


def _fetch_alt_speed(db: Session, profile_id: str) -> AltSpeedConfig:
    row = db.get(EngineAltSpeedRow, profile_id)
    if row is None:
        return AltSpeedConfig()
    days = list(
        db.scalars(
            select(EngineAltSpeedDayRow.day)
            .where(EngineAltSpeedDayRow.profile_id == profile_id)
            .order_by(EngineAltSpeedDayRow.ord)
        )
    )
    schedule = None
    if days and row.schedule_start_minutes is not None and row.schedule_end_minutes is not None:
        schedule = AltSpeedSchedule(
            days=days,
            start=format_hhmm(row.schedule_start_minutes),
            end=format_hhmm(row.schedule_end_minutes),
        )
    return AltSpeedConfig(download_bps=row.download_bps, upload_bps=row.upload_bps, schedule=schedule)


def _fetch_tracker(db: Session, profile_id: str) -> TrackerConfig:
    endpoints: dict[str, list[str]] = {"default": [], "extra": []}
    for kind, url in db.execute(
        select(EngineTrackerEndpointRow.kind, EngineTrackerEndpointRow.url)
        .where(EngineTrackerEndpointRow.profile_id == profile_id)
        .order_by(EngineTrackerEndpointRow.kind, EngineTrackerEndpointRow.ord)
    ):
        endpoints[kind].append(url)

    row = db.get(EngineTrackerConfigRow, profile_id)
    if row is None:
        return TrackerConfig(default=endpoints["default"], extra=endpoints["extra"])

    proxy = None
    if row.proxy_host:
        proxy = TrackerProxyConfig(
            host=row.proxy_host,
            port=row.proxy_port or 0,
            kind=row.proxy_kind or "http",
            username_secret=row.proxy_username_secret,
            password_secret=row.proxy_password_secret,
            proxy_peers=bool(row.proxy_peers),
        )
    auth = None
    if row.auth_username_secret or row.auth_password_secret or row.auth_cookie_secret:
        auth = TrackerAuthConfig(
            username_secret=row.auth_username_secret,
            password_secret=row.auth_password_secret,
            cookie_secret=row.auth_cookie_secret,
        )
    return TrackerConfig(
        default=endpoints["default"],
        extra=endpoints["extra"],
        replace=bool(row.replace_trackers),
        user_agent=row.user_agent,
        announce_ip=row.announce_ip,
        listen_interface=row.listen_interface,
        request_timeout_ms=row.request_timeout_ms,
        announce_to_all=bool(row.announce_to_all),
        proxy=proxy,
        auth=auth,
        ssl_cert=row.ssl_cert,
        ssl_private_key=row.ssl_private_key,
        ssl_ca_cert=row.ssl_ca_cert,
        ssl_tracker_verify=bool(row.ssl_tracker_verify),
    )


def _fetch_peer_classes(db: Session, profile_id: str) -> PeerClassesConfig:
    classes = [
        PeerClassConfig(
            id=r.class_id,
            label=r.label,
            download_priority=r.download_priority,
            upload_priority=r.upload_priority,
            connection_limit_factor=r.connection_limit_factor,
            ignore_unchoke_slots=bool(r.ignore_unchoke_slots),
        )
        for r in db.scalars(
            select(EnginePeerClassRow)
            .where(EnginePeerClassRow.profile_id == profile_id)
            .order_by(EnginePeerClassRow.class_id)
        )
    ]
    defaults = list(
        db.scalars(
            select(EnginePeerClassDefaultRow.class_id)
            .where(EnginePeerClassDefaultRow.profile_id == profile_id)
            .order_by(EnginePeerClassDefaultRow.class_id)
        )
    )
    return PeerClassesConfig(classes=classes, default=defaults)


def fetch_engine_profile(db: Session, profile_id: str | None = None) -> EngineProfile:
    st = require_singleton(db, EngineProfileRow, ENGINE_PROFILE_ID, profile_id)
    scalars = {name: getattr(st, name) for name in ENGINE_SCALAR_FIELDS}
    lists = _engine_lists(db, st.id)
    return EngineProfile(
        id=st.id,
        **scalars,
        listen_interfaces=lists["listen_interfaces"],
        dht_bootstrap_nodes=lists["dht_bootstrap_nodes"],
        dht_router_nodes=lists["dht_router_nodes"],
        ip_filter=_fetch_ip_filter(db, st.id),
        alt_speed=_fetch_alt_speed(db, st.id),
        tracker=_fetch_tracker(db, st.id),
        peer_classes=_fetch_peer_classes(db, st.id),
    )


def _write_engine_list(db: Session, kind: str, values: list[str]) -> None:
    _replace_rows(
        db,
        EngineListValueRow,
        (EngineListValueRow.profile_id == ENGINE_PROFILE_ID, EngineListValueRow.kind == kind),
        [{"profile_id": ENGINE_PROFILE_ID, "kind": kind, "ord": i, "value": v} for i, v in enumerate(values)],
    )


def _write_ip_filter(db: Session, cfg: IpFilterConfig) -> None:
    pid = ENGINE_PROFILE_ID
    meta_rows = []
    if cfg.blocklist_url or cfg.etag or cfg.last_updated_at or cfg.last_error:
        meta_rows.append(
            {
                "profile_id": pid,
                "blocklist_url": cfg.blocklist_url,
                "etag": cfg.etag,
                "last_updated_at": to_utc_naive(cfg.last_updated_at),
                "last_error": cfg.last_error,
            }
        )
    _replace_rows(db, EngineIpFilterRow, (EngineIpFilterRow.profile_id == pid,), meta_rows)
    _replace_rows(
        db,
        EngineIpFilterEntryRow,
        (EngineIpFilterEntryRow.profile_id == pid,),
        [{"profile_id": pid, "ord": i, "cidr": c} for i, c in enumerate(cfg.cidrs)],
    )


def _write_alt_speed(db: Session, cfg: AltSpeedConfig) -> None:
    pid = ENGINE_PROFILE_ID
    db.execute(delete(EngineAltSpeedDayRow).where(EngineAltSpeedDayRow.profile_id == pid))
    if cfg.is_empty():
        _replace_rows(db, EngineAltSpeedRow, (EngineAltSpeedRow.profile_id == pid,), [])
        return
    schedule = cfg.schedule
    _replace_rows(
        db,
        EngineAltSpeedRow,
        (EngineAltSpeedRow.profile_id == pid,),
        [
            {
                "profile_id": pid,
                "download_bps": cfg.download_bps,
                "upload_bps": cfg.upload_bps,
                "schedule_start_minutes": parse_hhmm(schedule.start) if schedule else None,
                "schedule_end_minutes": parse_hhmm(schedule.end) if schedule else None,
            }
        ],
    )
    if schedule and schedule.days:
        db.execute(
            insert(EngineAltSpeedDayRow),
            [{"profile_id": pid, "ord": i, "day": d} for i, d in enumerate(schedule.days)],
        )


def _write_tracker(db: Session, cfg: TrackerConfig) -> None:
    pid = ENGINE_PROFILE_ID
    proxy = cfg.proxy
    auth = cfg.auth
    _replace_rows(
        db,
        EngineTrackerConfigRow,
        (EngineTrackerConfigRow.profile_id == pid,),
        [
            {
                "profile_id": pid,
                "user_agent": cfg.user_agent,
                "announce_ip": cfg.announce_ip,
                "listen_interface": cfg.listen_interface,
                "request_timeout_ms": cfg.request_timeout_ms,
                "announce_to_all": cfg.announce_to_all,
                "replace_trackers": cfg.replace,
                "proxy_host": proxy.host if proxy else None,
                "proxy_port": proxy.port if proxy else None,
                "proxy_kind": proxy.kind if proxy else None,
                "proxy_username_secret": proxy.username_secret if proxy else None,
                "proxy_password_secret": proxy.password_secret if proxy else None,
                "proxy_peers": proxy.proxy_peers if proxy else False,
                "ssl_cert": cfg.ssl_cert,
                "ssl_private_key": cfg.ssl_private_key,
                "ssl_ca_cert": cfg.ssl_ca_cert,
                "ssl_tracker_verify": cfg.ssl_tracker_verify,
                "auth_username_secret": auth.username_secret if auth else None,
                "auth_password_secret": auth.password_secret if auth else None,
                "auth_cookie_secret": auth.cookie_secret if auth else None,
            }
        ],
    )
    _replace_rows(
        db,
        EngineTrackerEndpointRow,
        (EngineTrackerEndpointRow.profile_id == pid,),
        [{"profile_id": pid, "kind": "default", "ord": i, "url": u} for i, u in enumerate(cfg.default)]
        + [{"profile_id": pid, "kind": "extra", "ord": i, "url": u} for i, u in enumerate(cfg.extra)],
    )


def _write_peer_classes(db: Session, cfg: PeerClassesConfig) -> None:
    pid = ENGINE_PROFILE_ID
    # defaults reference classes, so they go first on delete and last on insert
    db.execute(delete(EnginePeerClassDefaultRow).where(EnginePeerClassDefaultRow.profile_id == pid))
    _replace_rows(
        db,
        EnginePeerClassRow,
        (EnginePeerClassRow.profile_id == pid,),
        [
            {
                "profile_id": pid,
                "class_id": c.id,
                "label": c.label,
                "download_priority": c.download_priority,
                "upload_priority": c.upload_priority,
                "connection_limit_factor": c.connection_limit_factor,
                "ignore_unchoke_slots": c.ignore_unchoke_slots,
            }
            for c in cfg.classes
        ],
    )
    known = {c.id for c in cfg.classes}
    defaults = [d for d in cfg.default if d in known]
    if defaults:
        db.execute(
            insert(EnginePeerClassDefaultRow),
            [{"profile_id": pid, "class_id": d} for d in defaults],
        )


def _touch_engine_row(tx: WriteTx, st: EngineProfileRow) -> None:
    tx.touch(EngineProfileRow.__tablename__, "UPDATE")
    st.updated_at = utcnow()


def update_engine_profile(
    tx: WriteTx, data: EngineProfileSettings | Mapping, *, profile_id: str | None = None
) -> EngineProfile:
    db = tx.db
    new = normalize_engine_profile_settings(coerce(EngineProfileSettings, data, section="engine_profile"))
    st = require_singleton(db, EngineProfileRow, ENGINE_PROFILE_ID, profile_id, for_update=True)
    current = fetch_engine_profile(db)
    _guard_changes(
        _current_immutable_keys(db), "engine_profile", current, new, EngineProfileSettings.model_fields
    )

    _touch_engine_row(tx, st)
    for name in ENGINE_SCALAR_FIELDS:
        setattr(st, name, getattr(new, name))
    db.flush()

    _write_engine_list(db, "listen_interfaces", new.listen_interfaces)
    _write_engine_list(db, "dht_bootstrap_nodes", new.dht_bootstrap_nodes)
    _write_engine_list(db, "dht_router_nodes", new.dht_router_nodes)
    _write_ip_filter(db, new.ip_filter)
    _write_alt_speed(db, new.alt_speed)
    _write_tracker(db, new.tracker)
    _write_peer_classes(db, new.peer_classes)
    db.flush()
    db.expire_all()
    logger.info("engine_profile updated (revision=%d)", tx.revision)
    return fetch_engine_profile(db)


def _set_engine_field(tx: WriteTx, field: str, value: Any, writer) -> EngineProfile:
    db = tx.db
    st = require_singleton(db, EngineProfileRow, ENGINE_PROFILE_ID, None, for_update=True)
    current = fetch_engine_profile(db)
    if getattr(current, field) != value:
        ensure_mutable(_current_immutable_keys(db), "engine_profile", field)
    _touch_engine_row(tx, st)
    writer(db, value)
    db.flush()
    db.expire_all()
    logger.info("engine_profile.%s replaced (revision=%d)", field, tx.revision)
    return fetch_engine_profile(db)


def set_listen_interfaces(tx: WriteTx, values: Iterable[str]) -> EngineProfile:
    normalized = normalize_listen_interfaces(values)
    return _set_engine_field(
        tx, "listen_interfaces", normalized, lambda db, v: _write_engine_list(db, "listen_interfaces", v)
    )


def set_dht_bootstrap_nodes(tx: WriteTx, values: Iterable[str]) -> EngineProfile:
    normalized = normalize_string_list(values)
    return _set_engine_field(
        tx, "dht_bootstrap_nodes", normalized, lambda db, v: _write_engine_list(db, "dht_bootstrap_nodes", v)
    )


def set_dht_router_nodes(tx: WriteTx, values: Iterable[str]) -> EngineProfile:
    normalized = normalize_string_list(values)
    return _set_engine_field(
        tx, "dht_router_nodes", normalized, lambda db, v: _write_engine_list(db, "dht_router_nodes", v)
    )


def set_ip_filter(tx: WriteTx, cfg: IpFilterConfig | Mapping) -> EngineProfile:
    normalized = normalize_ip_filter(coerce(IpFilterConfig, cfg, section="engine_profile"))
    return _set_engine_field(tx, "ip_filter", normalized, _write_ip_filter)


def set_alt_speed(tx: WriteTx, cfg: AltSpeedConfig | Mapping | None) -> EngineProfile:
    normalized = normalize_alt_speed(coerce(AltSpeedConfig, cfg or {}, section="engine_profile"))
    return _set_engine_field(tx, "alt_speed", normalized, _write_alt_speed)


def set_tracker(tx: WriteTx, cfg: TrackerConfig | Mapping) -> EngineProfile:
    normalized = normalize_tracker(coerce(TrackerConfig, cfg, section="engine_profile"))
    return _set_engine_field(tx, "tracker", normalized, _write_tracker)


def set_peer_classes(tx: WriteTx, cfg: PeerClassesConfig | Mapping) -> EngineProfile:
    normalized = normalize_peer_classes(coerce(PeerClassesConfig, cfg, section="engine_profile"))
    return _set_engine_field(tx, "peer_classes", normalized, _write_peer_classes)


# =============================================================================
# fs policy
# =============================================================================


def fetch_fs_policy(db: Session, policy_id: str | None = None) -> FsPolicy:
    st = require_singleton(db, FsPolicyRow, FS_POLICY_ID, policy_id)
    lists: dict[str, list[str]] = {k: [] for k in FS_LIST_KINDS}
    for kind, value in db.execute(
        select(FsPolicyListValueRow.kind, FsPolicyListValueRow.value)
        .where(FsPolicyListValueRow.policy_id == st.id)
        .order_by(FsPolicyListValueRow.kind, FsPolicyListValueRow.ord)
    ):
        lists[kind].append(value)
    return FsPolicy(id=st.id, **{name: getattr(st, name) for name in FS_SCALAR_FIELDS}, **lists)


def _write_fs_list(db: Session, kind: str, values: list[str]) -> None:
    _replace_rows(
        db,
        FsPolicyListValueRow,
        (FsPolicyListValueRow.policy_id == FS_POLICY_ID, FsPolicyListValueRow.kind == kind),
        [{"policy_id": FS_POLICY_ID, "kind": kind, "ord": i, "value": v} for i, v in enumerate(values)],
    )


def update_fs_policy(tx: WriteTx, data: FsPolicySettings | Mapping, *, policy_id: str | None = None) -> FsPolicy:
    db = tx.db
    new = normalize_fs_policy(coerce(FsPolicySettings, data, section="fs_policy"))
    st = require_singleton(db, FsPolicyRow, FS_POLICY_ID, policy_id, for_update=True)
    current = fetch_fs_policy(db)
    _guard_changes(_current_immutable_keys(db), "fs_policy", current, new, FsPolicySettings.model_fields)

    tx.touch(FsPolicyRow.__tablename__, "UPDATE")
    for name in FS_SCALAR_FIELDS:
        setattr(st, name, getattr(new, name))
    st.updated_at = utcnow()
    db.flush()

    for kind in FS_LIST_KINDS:
        _write_fs_list(db, kind, getattr(new, kind))
    db.flush()
    db.expire_all()
    logger.info("fs_policy updated (revision=%d)", tx.revision)
    return fetch_fs_policy(db)


def set_fs_list(tx: WriteTx, kind: str, values: Iterable[str]) -> FsPolicy:
    """Replace one of cleanup_keep / cleanup_drop / allow_paths."""
    if kind not in FS_LIST_KINDS:
        raise ValidationError(f"unknown fs policy list {kind!r}", section="fs_policy", field=kind, value=kind)
    db = tx.db
    normalized = normalize_string_list(values)
    st = require_singleton(db, FsPolicyRow, FS_POLICY_ID, None, for_update=True)
    if getattr(fetch_fs_policy(db), kind) != normalized:
        ensure_mutable(_current_immutable_keys(db), "fs_policy", kind)
    tx.touch(FsPolicyRow.__tablename__, "UPDATE")
    st.updated_at = utcnow()
    _write_fs_list(db, kind, normalized)
    db.flush()
    db.expire_all()
    return fetch_fs_policy(db)
