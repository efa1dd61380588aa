"""Canonicalization of caller input before it is written.

Two policies live here side by side. Tracker, proxy, auth, peer-class rows,
CIDRs and listen interfaces are strict: any violation raises ValidationError
and the whole update is aborted. The alt-speed schedule and dangling
peer-class defaults are lenient: malformed input is cleared or dropped with a
warning in the log.
"""

from __future__ import annotations

import ipaddress
import logging
import math
import re
from typing import Iterable

from ...defaults import (
    MAX_RATE_LIMIT_BPS,
    MAX_REQUEST_TIMEOUT_MS,
    MAX_TLS_FIELD_LEN,
    MAX_TRACKER_FIELD_LEN,
    MAX_TRACKER_URL_LEN,
    PEER_CLASS_ID_MAX,
    PEER_PRIORITY_MAX,
    PEER_PRIORITY_MIN,
)
from ...errors import ConflictError, ImmutableFieldError, ValidationError
from ...models import WEEKDAYS
from .schema import (
    AltSpeedConfig,
    AltSpeedSchedule,
    AppProfileSettings,
    EngineProfileSettings,
    FsPolicySettings,
    IpFilterConfig,
    LabelPolicy,
    PeerClassConfig,
    PeerClassesConfig,
    TrackerAuthConfig,
    TrackerConfig,
    TrackerProxyConfig,
)

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
PROXY_KINDS = ("http", "https", "socks5")
_HHMM_RE = re.compile(r"([0-9]{2}):([0-9]{2})")

_WEEKDAY_ALIASES = {
    "mon": "mon",
    "monday": "mon",
    "tue": "tue",
    "tues": "tue",
    "tuesday": "tue",
    "wed": "wed",
    "wednesday": "wed",
    "thu": "thu",
    "thur": "thu",
    "thurs": "thu",
    "thursday": "thu",
    "fri": "fri",
    "friday": "fri",
    "sat": "sat",
    "saturday": "sat",
    "sun": "sun",
    "sunday": "sun",
}


# --- primitives ------------------------------------------------------------------


def normalize_string_list(values: Iterable[str] | None) -> list[str]:
    """Trim, drop empties, drop repeats (first wins), keep order."""
    out: list[str] = []
    seen: set[str] = set()
    for raw in values or ():
        s = (raw or "").strip()
        if not s or s in seen:
            continue
        seen.add(s)
        out.append(s)
    return out


def normalize_rate_limit(value: int | None) -> int | None:
    if value is None or value <= 0:
        return None
    return min(int(value), MAX_RATE_LIMIT_BPS)


def normalize_tracker_urls(values: Iterable[str] | None, *, field: str) -> list[str]:
    urls = normalize_string_list(values)
    for url in urls:
        if len(url) > MAX_TRACKER_URL_LEN:
            raise ValidationError(
                f"{field} entry exceeds {MAX_TRACKER_URL_LEN} characters",
                section="engine_profile",
                field=field,
                value=url[:64] + "...",
            )
    return urls


def canonical_cidr(entry: str) -> str:
    """Canonical network form; a bare address becomes a host network."""
    s = (entry or "").strip()
    net = ipaddress.ip_network(s, strict=False)
    return net.with_prefixlen


def normalize_cidrs(values: Iterable[str] | None, *, field: str = "ip_filter.cidrs") -> list[str]:
    canonical: list[str] = []
    for entry in normalize_string_list(values):
        try:
            canonical.append(canonical_cidr(entry))
        except ValueError as exc:
            raise ValidationError(
                f"{field}: invalid CIDR {entry!r}", section="engine_profile", field=field, value=entry
            ) from exc
    return normalize_string_list(canonical)


def _parse_port(text: str) -> int:
    port = int(text)
    if not 1 <= port <= 65535:
        raise ValueError("port must be between 1 and 65535")
    return port


def canonical_listen_interface(entry: str) -> str:
    """Accepts ``host:port`` or ``[ipv6]:port``; raises ValueError otherwise."""
    s = (entry or "").strip()
    if not s:
        raise ValueError("entries cannot be empty")
    if any(ch.isspace() for ch in s):
        raise ValueError("entries cannot contain whitespace")

    if s.startswith("["):
        closing = s.find("]")
        if closing < 0:
            raise ValueError("IPv6 entries must be bracketed like [::1]:6881")
        host = s[1:closing].strip()
        rest = s[closing + 1 :]
        if not host or not rest.startswith(":"):
            raise ValueError("IPv6 entries must be formatted as [addr]:port")
        return f"[{host}]:{_parse_port(rest[1:])}"

    host, sep, port_text = s.rpartition(":")
    if not sep:
        raise ValueError("entries must be host:port or [ipv6]:port")
    if not host:
        raise ValueError("host component cannot be empty")
    return f"{host}:{_parse_port(port_text)}"


def normalize_listen_interfaces(values: Iterable[str] | None, *, field: str = "listen_interfaces") -> list[str]:
    out: list[str] = []
    for entry in normalize_string_list(values):
        try:
            out.append(canonical_listen_interface(entry))
        except ValueError as exc:
            raise ValidationError(
                f"{field}: {exc}", section="engine_profile", field=field, value=entry
            ) from exc
    return normalize_string_list(out)


def _optional_text(value: str | None, *, field: str, max_len: int) -> str | None:
    s = (value or "").strip()
    if not s:
        return None
    if len(s) > max_len:
        raise ValidationError(
            f"{field} exceeds {max_len} characters", section="engine_profile", field=field
        )
    return s


# --- alt speed (lenient) ------------------------------------------------------------


def canonical_weekday(label: str) -> str | None:
    return _WEEKDAY_ALIASES.get((label or "").strip().lower())


def parse_hhmm(text: str) -> int | None:
    """``"HH:MM"`` to minute-of-day, None if malformed."""
    s = (text or "").strip()
    m = _HHMM_RE.fullmatch(s)
    if m is None:
        return None
    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_schedule(schedule: AltSpeedSchedule | None) -> tuple[list[str], int, int] | None:
    """Return (days, start, end) or None when the schedule must be cleared."""
    if schedule is None:
        return None
    days: set[str] = set()
    for label in schedule.days:
        if not (label or "").strip():
            continue
        day = canonical_weekday(label)
        if day is None:
            logger.warning("alt_speed.schedule: unknown weekday %r; clearing schedule", label)
            return None
        days.add(day)
    if not days:
        logger.warning("alt_speed.schedule.days empty; clearing schedule")
        return None

    start = parse_hhmm(schedule.start)
    end = parse_hhmm(schedule.end)
    if start is None or end is None:
        logger.warning("alt_speed.schedule: malformed time window; clearing schedule")
        return None
    if start == end:
        logger.warning("alt_speed.schedule: start equals end; clearing schedule")
        return None
    return [d for d in WEEKDAYS if d in days], start, end


def normalize_alt_speed(cfg: AltSpeedConfig | None) -> AltSpeedConfig:
    """Alternate speed needs both a valid schedule and a cap; otherwise it is absent."""
    if cfg is None or cfg.is_empty():
        return AltSpeedConfig()
    download = normalize_rate_limit(cfg.download_bps)
    upload = normalize_rate_limit(cfg.upload_bps)
    schedule = normalize_schedule(cfg.schedule)
    if schedule is None:
        if download is not None or upload is not None:
            logger.warning("alt_speed has no usable schedule; clearing alternate speeds")
        return AltSpeedConfig()
    if download is None and upload is None:
        logger.warning("alt_speed requires download_bps or upload_bps; clearing alternate speeds")
        return AltSpeedConfig()
    days, start, end = schedule
    return AltSpeedConfig(
        download_bps=download,
        upload_bps=upload,
        schedule=AltSpeedSchedule(days=days, start=format_hhmm(start), end=format_hhmm(end)),
    )


# --- tracker (strict) ------------------------------------------------------------------


def normalize_proxy(proxy: TrackerProxyConfig | None) -> TrackerProxyConfig | None:
    if proxy is None:
        return None
    host = (proxy.host or "").strip()
    if not host:
        raise ValidationError("tracker.proxy.host is required", section="engine_profile", field="tracker.proxy.host")
    if not 1 <= int(proxy.port) <= 65535:
        raise ValidationError(
            "tracker.proxy.port must be between 1 and 65535",
            section="engine_profile",
            field="tracker.proxy.port",
            value=proxy.port,
        )
    kind = (proxy.kind or "").strip().lower()
    if kind not in PROXY_KINDS:
        raise ValidationError(
            f"tracker.proxy.kind must be one of {', '.join(PROXY_KINDS)}",
            section="engine_profile",
            field="tracker.proxy.kind",
            value=proxy.kind,
        )
    return TrackerProxyConfig(
        host=host,
        port=int(proxy.port),
        kind=kind,
        username_secret=_optional_text(
            proxy.username_secret, field="tracker.proxy.username_secret", max_len=MAX_TRACKER_FIELD_LEN
        ),
        password_secret=_optional_text(
            proxy.password_secret, field="tracker.proxy.password_secret", max_len=MAX_TRACKER_FIELD_LEN
        ),
        proxy_peers=proxy.proxy_peers,
    )


def normalize_tracker_auth(auth: TrackerAuthConfig | None) -> TrackerAuthConfig | None:
    if auth is None:
        return None
    out = TrackerAuthConfig(
        username_secret=_optional_text(
            auth.username_secret, field="tracker.auth.username_secret", max_len=MAX_TRACKER_FIELD_LEN
        ),
        password_secret=_optional_text(
            auth.password_secret, field="tracker.auth.password_secret", max_len=MAX_TRACKER_FIELD_LEN
        ),
        cookie_secret=_optional_text(
            auth.cookie_secret, field="tracker.auth.cookie_secret", max_len=MAX_TRACKER_FIELD_LEN
        ),
    )
    if out.username_secret is None and out.password_secret is None and out.cookie_secret is None:
        raise ValidationError(
            "tracker.auth requires at least one secret reference",
            section="engine_profile",
            field="tracker.auth",
        )
    return out


def normalize_tracker(cfg: TrackerConfig | None) -> TrackerConfig:
    if cfg is None:
        return TrackerConfig()

    listen_interface = _optional_text(
        cfg.listen_interface, field="tracker.listen_interface", max_len=MAX_TRACKER_FIELD_LEN
    )
    if listen_interface is not None:
        try:
            listen_interface = canonical_listen_interface(listen_interface)
        except ValueError as exc:
            raise ValidationError(
                f"tracker.listen_interface: {exc}",
                section="engine_profile",
                field="tracker.listen_interface",
                value=listen_interface,
            ) from exc

    timeout = cfg.request_timeout_ms
    if timeout is not None and not 0 <= timeout <= MAX_REQUEST_TIMEOUT_MS:
        raise ValidationError(
            f"tracker.request_timeout_ms must be between 0 and {MAX_REQUEST_TIMEOUT_MS}",
            section="engine_profile",
            field="tracker.request_timeout_ms",
            value=timeout,
        )

    return TrackerConfig(
        default=normalize_tracker_urls(cfg.default, field="tracker.default"),
        extra=normalize_tracker_urls(cfg.extra, field="tracker.extra"),
        replace=cfg.replace,
        user_agent=_optional_text(cfg.user_agent, field="tracker.user_agent", max_len=MAX_TRACKER_FIELD_LEN),
        announce_ip=_optional_text(cfg.announce_ip, field="tracker.announce_ip", max_len=MAX_TRACKER_FIELD_LEN),
        listen_interface=listen_interface,
        request_timeout_ms=timeout,
        announce_to_all=cfg.announce_to_all,
        proxy=normalize_proxy(cfg.proxy),
        auth=normalize_tracker_auth(cfg.auth),
        ssl_cert=_optional_text(cfg.ssl_cert, field="tracker.ssl_cert", max_len=MAX_TLS_FIELD_LEN),
        ssl_private_key=_optional_text(
            cfg.ssl_private_key, field="tracker.ssl_private_key", max_len=MAX_TLS_FIELD_LEN
        ),
        ssl_ca_cert=_optional_text(cfg.ssl_ca_cert, field="tracker.ssl_ca_cert", max_len=MAX_TLS_FIELD_LEN),
        ssl_tracker_verify=cfg.ssl_tracker_verify,
    )


# --- peer classes --------------------------------------------------------------------


def _normalize_peer_class(entry: PeerClassConfig) -> PeerClassConfig:
    def reject(field: str, message: str, value) -> ValidationError:
        return ValidationError(message, section="engine_profile", field=f"peer_classes.{field}", value=value)

    if not 0 <= entry.id <= PEER_CLASS_ID_MAX:
        raise reject("id", f"peer class id must be between 0 and {PEER_CLASS_ID_MAX}", entry.id)
    for name in ("download_priority", "upload_priority"):
        value = getattr(entry, name)
        if not PEER_PRIORITY_MIN <= value <= PEER_PRIORITY_MAX:
            raise reject(
                name, f"{name} must be between {PEER_PRIORITY_MIN} and {PEER_PRIORITY_MAX}", value
            )
    if entry.connection_limit_factor < 1:
        raise reject(
            "connection_limit_factor", "connection_limit_factor must be at least 1", entry.connection_limit_factor
        )
    label = (entry.label or "").strip() or f"class_{entry.id}"
    return entry.model_copy(update={"label": label})


def normalize_peer_classes(cfg: PeerClassesConfig | None) -> PeerClassesConfig:
    if cfg is None:
        return PeerClassesConfig()
    classes: dict[int, PeerClassConfig] = {}
    for entry in cfg.classes:
        normalized = _normalize_peer_class(entry)
        if normalized.id in classes:
            raise ConflictError(
                f"duplicate peer class id {normalized.id}",
                meta={"section": "engine_profile", "field": "peer_classes.id", "value": normalized.id},
            )
        classes[normalized.id] = normalized

    defaults: list[int] = []
    for class_id in cfg.default:
        if class_id not in classes:
            logger.warning("peer_classes.default references undefined class %s; dropping", class_id)
            continue
        if class_id not in defaults:
            defaults.append(class_id)

    return PeerClassesConfig(
        classes=[classes[k] for k in sorted(classes)],
        default=sorted(defaults),
    )


# --- ip filter --------------------------------------------------------------------------


def normalize_ip_filter(cfg: IpFilterConfig | None) -> IpFilterConfig:
    if cfg is None:
        return IpFilterConfig()
    url = (cfg.blocklist_url or "").strip() or None
    if url is not None and len(url) > MAX_TRACKER_URL_LEN:
        raise ValidationError(
            f"ip_filter.blocklist_url exceeds {MAX_TRACKER_URL_LEN} characters",
            section="engine_profile",
            field="ip_filter.blocklist_url",
        )
    return IpFilterConfig(
        blocklist_url=url,
        etag=(cfg.etag or "").strip() or None,
        last_updated_at=cfg.last_updated_at,
        last_error=(cfg.last_error or "").strip() or None,
        cidrs=normalize_cidrs(cfg.cidrs),
    )


# --- aggregates ---------------------------------------------------------------------------


def normalize_label_policies(policies: Iterable[LabelPolicy]) -> list[LabelPolicy]:
    keyed: dict[tuple[str, str], LabelPolicy] = {}
    for policy in policies:
        key = (policy.kind, policy.name)
        if key in keyed:
            raise ConflictError(
                f"duplicate label policy {policy.kind}:{policy.name}",
                meta={"section": "app_profile", "field": "label_policies", "value": f"{policy.kind}:{policy.name}"},
            )
        keyed[key] = policy.model_copy(
            update={
                "download_dir": (policy.download_dir or "").strip() or None,
                "rate_limit_download_bps": normalize_rate_limit(policy.rate_limit_download_bps),
                "rate_limit_upload_bps": normalize_rate_limit(policy.rate_limit_upload_bps),
            }
        )
    return [keyed[k] for k in sorted(keyed)]


def normalize_app_profile(data: AppProfileSettings) -> AppProfileSettings:
    telemetry = data.telemetry.model_copy(
        update={
            "level": (data.telemetry.level or "").strip() or None,
            "format": (data.telemetry.format or "").strip() or None,
            "otel_service_name": (data.telemetry.otel_service_name or "").strip() or None,
            "otel_endpoint": (data.telemetry.otel_endpoint or "").strip() or None,
        }
    )
    return data.model_copy(
        update={
            "telemetry": telemetry,
            "immutable_keys": normalize_string_list(data.immutable_keys),
            "label_policies": normalize_label_policies(data.label_policies),
        }
    )


def normalize_engine_profile_settings(data: EngineProfileSettings) -> EngineProfileSettings:
    if data.listen_port is not None and not 1 <= data.listen_port <= 65535:
        raise ValidationError(
            "listen_port must be between 1 and 65535",
            section="engine_profile",
            field="listen_port",
            value=data.listen_port,
        )
    if data.seed_ratio_limit is not None and not math.isfinite(data.seed_ratio_limit):
        raise ValidationError(
            "seed_ratio_limit must be a finite number", section="engine_profile", field="seed_ratio_limit"
        )
    return data.model_copy(
        update={
            "encryption": (data.encryption or "").strip().lower() or "require",
            "max_download_bps": normalize_rate_limit(data.max_download_bps),
            "max_upload_bps": normalize_rate_limit(data.max_upload_bps),
            "listen_interfaces": normalize_listen_interfaces(data.listen_interfaces),
            "dht_bootstrap_nodes": normalize_string_list(data.dht_bootstrap_nodes),
            "dht_router_nodes": normalize_string_list(data.dht_router_nodes),
            "ip_filter": normalize_ip_filter(data.ip_filter),
            "alt_speed": normalize_alt_speed(data.alt_speed),
            "tracker": normalize_tracker(data.tracker),
            "peer_classes": normalize_peer_classes(data.peer_classes),
        }
    )


def normalize_fs_policy(data: FsPolicySettings) -> FsPolicySettings:
    return data.model_copy(
        update={
            "cleanup_keep": normalize_string_list(data.cleanup_keep),
            "cleanup_drop": normalize_string_list(data.cleanup_drop),
            "allow_paths": normalize_string_list(data.allow_paths),
        }
    )


# --- immutable keys ------------------------------------------------------------------------


def ensure_mutable(immutable_keys: Iterable[str], section: str, field: str) -> None:
    """Raise ImmutableFieldError when ``section.field`` is protected.

    A key matches on the section, the bare field, ``section.field`` or
    ``section.*``. The immutable_keys field itself is never protected.
    """
    if field == "immutable_keys":
        return
    qualified = f"{section}.{field}"
    wildcard = f"{section}.*"
    for key in immutable_keys:
        if key in (section, field, qualified, wildcard):
            raise ImmutableFieldError(section, field)
