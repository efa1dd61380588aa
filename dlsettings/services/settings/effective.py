"""Runtime-ready view of the engine profile.

Never raises and never writes: anything unusable is replaced by a safe value
and explained in ``warnings``.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, TypeVar

from pydantic import BaseModel, Field

from ...defaults import ENGINE_PROFILE_SEED
from ...errors import ValidationError
from .normalize import (
    canonical_listen_interface,
    normalize_alt_speed,
    normalize_cidrs,
    normalize_ip_filter,
    normalize_peer_classes,
    normalize_proxy,
    normalize_rate_limit,
    normalize_string_list,
    normalize_tracker,
    normalize_tracker_auth,
)
from .schema import AltSpeedConfig, EngineProfileSettings, IpFilterConfig, PeerClassesConfig, TrackerConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CHOKING = {
    "fixed": "fixed_slots",
    "fixed_slots": "fixed_slots",
    "rate_based": "rate_based",
    "rate-based": "rate_based",
    "rate": "rate_based",
}
_SEED_CHOKING = {
    "round_robin": "round_robin",
    "round-robin": "round_robin",
    "roundrobin": "round_robin",
    "fastest_upload": "fastest_upload",
    "fastest-upload": "fastest_upload",
    "fastest": "fastest_upload",
    "anti_leech": "anti_leech",
    "anti-leech": "anti_leech",
    "antileech": "anti_leech",
}
_ENCRYPTION = {"require": "require", "required": "require", "disable": "disable", "disabled": "disable", "prefer": "prefer"}
_IPV6 = {
    "": "disabled",
    "disabled": "disabled",
    "disable": "disabled",
    "off": "disabled",
    "enabled": "enabled",
    "enable": "enabled",
    "on": "enabled",
    "v6": "enabled",
    "ipv6": "enabled",
    "prefer_v6": "prefer_v6",
    "prefer-v6": "prefer_v6",
    "prefer6": "prefer_v6",
    "prefer": "prefer_v6",
}
_STORAGE_MODES = ("sparse", "allocate")
_DISK_MODES = ("enable_os_cache", "disable_os_cache", "write_through")


class OutgoingPortRange(BaseModel):
    start: int
    end: int


class EngineNetworkConfig(BaseModel):
    listen_port: int | None = None
    listen_interfaces: list[str] = Field(default_factory=list)
    ipv6_mode: str = "disabled"
    outgoing_ports: OutgoingPortRange | None = None
    peer_dscp: int | None = None
    anonymous_mode: bool = False
    force_proxy: bool = False
    prefer_rc4: bool = False
    allow_multiple_connections_per_ip: bool = False
    enable_outgoing_utp: bool = False
    enable_incoming_utp: bool = False
    enable_dht: bool = False
    dht_bootstrap_nodes: list[str] = Field(default_factory=list)
    dht_router_nodes: list[str] = Field(default_factory=list)
    encryption: str = "prefer"
    enable_lsd: bool = False
    enable_upnp: bool = False
    enable_natpmp: bool = False
    enable_pex: bool = False
    ip_filter: IpFilterConfig = Field(default_factory=IpFilterConfig)


class EngineLimitsConfig(BaseModel):
    max_active: int | None = None
    download_rate_limit: int | None = None
    upload_rate_limit: int | None = None
    seed_ratio_limit: float | None = None
    seed_time_limit: int | None = None
    connections_limit: int | None = None
    connections_limit_per_torrent: int | None = None
    unchoke_slots: int | None = None
    half_open_limit: int | None = None
    stats_interval_ms: int | None = None
    choking_algorithm: str = "fixed_slots"
    seed_choking_algorithm: str = "round_robin"
    strict_super_seeding: bool = False
    optimistic_unchoke_slots: int | None = None
    max_queued_disk_bytes: int | None = None


class EngineStorageConfig(BaseModel):
    download_root: str
    resume_dir: str
    storage_mode: str = "sparse"
    use_partfile: bool = True
    disk_read_mode: str | None = None
    disk_write_mode: str | None = None
    verify_piece_hashes: bool = True
    cache_size: int | None = None
    cache_expiry: int | None = None
    coalesce_reads: bool = True
    coalesce_writes: bool = True
    use_disk_cache_pool: bool = True


class EngineBehaviorConfig(BaseModel):
    sequential_default: bool = True
    auto_managed: bool = True
    auto_manage_prefer_seeds: bool = False
    dont_count_slow_torrents: bool = True
    super_seeding: bool = False


class EngineProfileEffective(BaseModel):
    implementation: str
    network: EngineNetworkConfig
    limits: EngineLimitsConfig
    storage: EngineStorageConfig
    behavior: EngineBehaviorConfig
    alt_speed: AltSpeedConfig = Field(default_factory=AltSpeedConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    peer_classes: PeerClassesConfig = Field(default_factory=PeerClassesConfig)
    warnings: list[str] = Field(default_factory=list)


def _canonical(raw: str | None, table: dict[str, str], field: str, default: str, warnings: list[str]) -> str:
    key = (raw or "").strip().lower()
    if key in table:
        return table[key]
    warnings.append(f"unknown {field} '{key}'; defaulting to '{default}'")
    return default


def _positive(value: int | None, field: str, warnings: list[str]) -> int | None:
    if value is None or value > 0:
        return value
    warnings.append(f"{field} {value} is non-positive; disabling override")
    return None


def _non_negative(value, field: str, warnings: list[str]):
    if value is None or value >= 0:
        return value
    warnings.append(f"{field} {value} is negative; disabling override")
    return None


def _rate(value: int | None, field: str, warnings: list[str]) -> int | None:
    clamped = normalize_rate_limit(value)
    if value is not None and clamped != value:
        warnings.append(f"{field} {value} adjusted to {clamped}")
    return clamped


def _lenient(fn: Callable[[T], T], value: T, fallback: T, warnings: list[str], what: str) -> T:
    try:
        return fn(value)
    except ValidationError as exc:
        warnings.append(f"{exc.message}; disabling {what}")
        return fallback


def _listen_interfaces(values: list[str], warnings: list[str]) -> list[str]:
    out: list[str] = []
    for entry in normalize_string_list(values):
        try:
            out.append(canonical_listen_interface(entry))
        except ValueError as exc:
            warnings.append(f"listen_interfaces: {exc} ({entry!r}); skipping")
    return normalize_string_list(out)


def _outgoing_ports(lo: int | None, hi: int | None, warnings: list[str]) -> OutgoingPortRange | None:
    if lo is None and hi is None:
        return None
    if lo is None or hi is None:
        warnings.append("outgoing_port_min/outgoing_port_max must both be set; ignoring range")
        return None
    if not (1 <= lo <= 65535 and 1 <= hi <= 65535) or lo > hi:
        warnings.append(f"invalid outgoing port range {lo}..={hi}; disabling override")
        return None
    return OutgoingPortRange(start=lo, end=hi)


def _path(value: str, fallback: str, field: str, warnings: list[str]) -> str:
    s = (value or "").strip()
    if s:
        return s
    warnings.append(f"{field} was empty; using {fallback}")
    return fallback


def _tracker(cfg: TrackerConfig, warnings: list[str]) -> TrackerConfig:
    proxy = _lenient(normalize_proxy, cfg.proxy, None, warnings, "tracker proxy")
    auth = _lenient(normalize_tracker_auth, cfg.auth, None, warnings, "tracker auth")
    rest = cfg.model_copy(update={"proxy": None, "auth": None})
    rest = _lenient(normalize_tracker, rest, TrackerConfig(), warnings, "tracker overrides")
    return rest.model_copy(update={"proxy": proxy, "auth": auth})


def normalize_engine_profile(profile: EngineProfileSettings) -> EngineProfileEffective:
    """Derive the effective engine configuration with explanatory warnings."""
    warnings: list[str] = []

    listen_port = profile.listen_port
    if listen_port is not None and not 1 <= listen_port <= 65535:
        warnings.append(f"listen_port {listen_port} is out of range; disabling listen override")
        listen_port = None

    peer_dscp = profile.peer_dscp
    if peer_dscp is not None and not 0 <= peer_dscp <= 63:
        warnings.append(f"peer_dscp {peer_dscp} is out of range 0-63; disabling marking")
        peer_dscp = None

    seed_ratio = profile.seed_ratio_limit
    if seed_ratio is not None and (not math.isfinite(seed_ratio) or seed_ratio < 0):
        warnings.append(f"seed_ratio_limit {seed_ratio} is invalid; disabling ratio stop")
        seed_ratio = None

    storage_mode = (profile.storage_mode or "").strip().lower()
    if storage_mode not in _STORAGE_MODES:
        warnings.append(f"unknown storage_mode '{storage_mode}'; defaulting to sparse")
        storage_mode = "sparse"

    def disk_mode(raw: str | None, field: str) -> str | None:
        s = (raw or "").strip().lower()
        if not s:
            return None
        if s not in _DISK_MODES:
            warnings.append(f"unknown {field} '{s}'; ignoring")
            return None
        return s

    tracker = _tracker(profile.tracker, warnings)
    cidrs = _lenient(normalize_cidrs, profile.ip_filter.cidrs, [], warnings, "ip filter entries")
    ip_filter = _lenient(
        normalize_ip_filter,
        profile.ip_filter.model_copy(update={"cidrs": cidrs}),
        IpFilterConfig(cidrs=cidrs),
        warnings,
        "ip filter",
    )
    peer_classes = _lenient(normalize_peer_classes, profile.peer_classes, PeerClassesConfig(), warnings, "peer classes")

    force_proxy = profile.force_proxy
    if profile.anonymous_mode and tracker.proxy is not None and not force_proxy:
        warnings.append("anonymous_mode requested with a tracker proxy; forcing peer proxy")
        force_proxy = True

    effective = EngineProfileEffective(
        implementation=profile.implementation,
        network=EngineNetworkConfig(
            listen_port=listen_port,
            listen_interfaces=_listen_interfaces(profile.listen_interfaces, warnings),
            ipv6_mode=_canonical(profile.ipv6_mode, _IPV6, "ipv6_mode", "disabled", warnings),
            outgoing_ports=_outgoing_ports(profile.outgoing_port_min, profile.outgoing_port_max, warnings),
            peer_dscp=peer_dscp,
            anonymous_mode=profile.anonymous_mode,
            force_proxy=force_proxy,
            prefer_rc4=profile.prefer_rc4,
            allow_multiple_connections_per_ip=profile.allow_multiple_connections_per_ip,
            enable_outgoing_utp=profile.enable_outgoing_utp,
            enable_incoming_utp=profile.enable_incoming_utp,
            enable_dht=profile.dht,
            dht_bootstrap_nodes=normalize_string_list(profile.dht_bootstrap_nodes),
            dht_router_nodes=normalize_string_list(profile.dht_router_nodes),
            encryption=_canonical(profile.encryption, _ENCRYPTION, "encryption policy", "prefer", warnings),
            enable_lsd=profile.enable_lsd,
            enable_upnp=profile.enable_upnp,
            enable_natpmp=profile.enable_natpmp,
            enable_pex=profile.enable_pex,
            ip_filter=ip_filter,
        ),
        limits=EngineLimitsConfig(
            max_active=_positive(profile.max_active, "max_active", warnings),
            download_rate_limit=_rate(profile.max_download_bps, "max_download_bps", warnings),
            upload_rate_limit=_rate(profile.max_upload_bps, "max_upload_bps", warnings),
            seed_ratio_limit=seed_ratio,
            seed_time_limit=_non_negative(profile.seed_time_limit, "seed_time_limit", warnings),
            connections_limit=_positive(profile.connections_limit, "connections_limit", warnings),
            connections_limit_per_torrent=_positive(
                profile.connections_limit_per_torrent, "connections_limit_per_torrent", warnings
            ),
            unchoke_slots=_positive(profile.unchoke_slots, "unchoke_slots", warnings),
            half_open_limit=_positive(profile.half_open_limit, "half_open_limit", warnings),
            stats_interval_ms=_non_negative(profile.stats_interval_ms, "stats_interval_ms", warnings),
            choking_algorithm=_canonical(
                profile.choking_algorithm, _CHOKING, "choking_algorithm", "fixed_slots", warnings
            ),
            seed_choking_algorithm=_canonical(
                profile.seed_choking_algorithm, _SEED_CHOKING, "seed_choking_algorithm", "round_robin", warnings
            ),
            strict_super_seeding=profile.strict_super_seeding,
            optimistic_unchoke_slots=_positive(
                profile.optimistic_unchoke_slots, "optimistic_unchoke_slots", warnings
            ),
            max_queued_disk_bytes=_non_negative(profile.max_queued_disk_bytes, "max_queued_disk_bytes", warnings),
        ),
        storage=EngineStorageConfig(
            download_root=_path(
                profile.download_root, ENGINE_PROFILE_SEED["download_root"], "download_root", warnings
            ),
            resume_dir=_path(profile.resume_dir, ENGINE_PROFILE_SEED["resume_dir"], "resume_dir", warnings),
            storage_mode=storage_mode,
            use_partfile=profile.use_partfile,
            disk_read_mode=disk_mode(profile.disk_read_mode, "disk_read_mode"),
            disk_write_mode=disk_mode(profile.disk_write_mode, "disk_write_mode"),
            verify_piece_hashes=profile.verify_piece_hashes,
            cache_size=profile.cache_size,
            cache_expiry=profile.cache_expiry,
            coalesce_reads=profile.coalesce_reads,
            coalesce_writes=profile.coalesce_writes,
            use_disk_cache_pool=profile.use_disk_cache_pool,
        ),
        behavior=EngineBehaviorConfig(
            sequential_default=profile.sequential_default,
            auto_managed=profile.auto_managed,
            auto_manage_prefer_seeds=profile.auto_manage_prefer_seeds,
            dont_count_slow_torrents=profile.dont_count_slow_torrents,
            super_seeding=profile.super_seeding,
        ),
        alt_speed=normalize_alt_speed(profile.alt_speed),
        tracker=tracker,
        peer_classes=peer_classes,
        warnings=warnings,
    )
    if warnings:
        logger.debug("effective engine profile produced %d warning(s)", len(warnings))
    return effective
