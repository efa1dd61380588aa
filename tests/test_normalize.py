import pytest

from dlsettings.errors import ConflictError, ErrorCode, ImmutableFieldError, ValidationError
from dlsettings.services.settings.normalize import (
    canonical_cidr,
    canonical_listen_interface,
    ensure_mutable,
    normalize_alt_speed,
    normalize_cidrs,
    normalize_engine_profile_settings,
    normalize_label_policies,
    normalize_listen_interfaces,
    normalize_peer_classes,
    normalize_rate_limit,
    normalize_string_list,
    normalize_tracker,
    parse_hhmm,
)
from dlsettings.services.settings.schema import (
    AltSpeedConfig,
    EngineProfileSettings,
    LabelPolicy,
    PeerClassesConfig,
    TrackerConfig,
)


def test_string_list_trims_dedupes_and_keeps_order() -> None:
    assert normalize_string_list([" b ", "a", "", "b", "  ", "a", "c"]) == ["b", "a", "c"]
    assert normalize_string_list(None) == []


def test_string_list_dedupe_is_case_sensitive() -> None:
    assert normalize_string_list(["udp://A", "udp://a"]) == ["udp://A", "udp://a"]


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("10.0.0.1", "10.0.0.1/32"),
        ("10.0.0.5/24", "10.0.0.0/24"),
        ("::1", "::1/128"),
        ("2001:db8::1/32", "2001:db8::/32"),
    ],
)
def test_canonical_cidr(raw: str, expected: str) -> None:
    assert canonical_cidr(raw) == expected


def test_invalid_cidr_names_the_field() -> None:
    with pytest.raises(ValidationError) as exc:
        normalize_cidrs(["10.0.0.0/8", "not-a-network"])
    assert exc.value.field == "ip_filter.cidrs"
    assert exc.value.value == "not-a-network"


def test_cidrs_collapse_to_one_canonical_entry() -> None:
    assert normalize_cidrs(["10.0.0.1/24", "10.0.0.0/24"]) == ["10.0.0.0/24"]


@pytest.mark.parametrize(
    "raw, expected",
    [("0.0.0.0:6881", "0.0.0.0:6881"), ("[::]:6881", "[::]:6881"), ("eth0:51413", "eth0:51413")],
)
def test_listen_interface_accepts_host_port(raw: str, expected: str) -> None:
    assert canonical_listen_interface(raw) == expected


@pytest.mark.parametrize("raw", ["eth0", ":6881", "host:0", "host:70000", "[::1]6881", "a b:1"])
def test_listen_interface_rejects_malformed(raw: str) -> None:
    with pytest.raises(ValidationError):
        normalize_listen_interfaces([raw])


def test_normalization_is_idempotent() -> None:
    values = [" 0.0.0.0:6881", "[::]:6881", "0.0.0.0:6881 "]
    once = normalize_listen_interfaces(values)
    assert normalize_listen_interfaces(once) == once

    cidrs = normalize_cidrs(["192.168.1.7/16", "10.1.2.3"])
    assert normalize_cidrs(cidrs) == cidrs

    settings = EngineProfileSettings(
        listen_interfaces=values,
        encryption=" Prefer ",
        max_download_bps=10_000_000_000,
        alt_speed={"upload_bps": 10, "schedule": {"days": ["Fri", "monday"], "start": "8:00", "end": "17:30"}},
        peer_classes={"classes": [{"id": 4}, {"id": 2, "label": " bulk "}], "default": [4, 9, 2]},
    )
    first = normalize_engine_profile_settings(settings)
    assert normalize_engine_profile_settings(first) == first


def test_rate_limit_is_capped_and_non_positive_means_unlimited() -> None:
    assert normalize_rate_limit(10_000_000_000) == 5_000_000_000
    assert normalize_rate_limit(0) is None
    assert normalize_rate_limit(-5) is None
    assert normalize_rate_limit(1024) == 1024


def test_alt_speed_with_equal_start_and_end_is_cleared() -> None:
    cfg = AltSpeedConfig(
        download_bps=1000,
        schedule={"days": ["Mon", "mon", "MON"], "start": "10:00", "end": "10:00"},
    )
    assert normalize_alt_speed(cfg).is_empty()


def test_alt_speed_window_may_cross_midnight() -> None:
    cfg = AltSpeedConfig(upload_bps=5000, schedule={"days": ["tuesday"], "start": "23:30", "end": "00:15"})
    out = normalize_alt_speed(cfg)
    assert out.upload_bps == 5000
    assert out.schedule.days == ["tue"]
    assert (out.schedule.start, out.schedule.end) == ("23:30", "00:15")


def test_alt_speed_days_come_out_in_week_order() -> None:
    cfg = AltSpeedConfig(download_bps=1, schedule={"days": ["sun", "Wed", "mon"], "start": "01:00", "end": "02:00"})
    assert normalize_alt_speed(cfg).schedule.days == ["mon", "wed", "sun"]


@pytest.mark.parametrize(
    "cfg",
    [
        {"download_bps": 10, "schedule": {"days": ["someday"], "start": "01:00", "end": "02:00"}},
        {"download_bps": 10, "schedule": {"days": [], "start": "01:00", "end": "02:00"}},
        {"download_bps": 10, "schedule": {"days": ["mon"], "start": "25:00", "end": "02:00"}},
        {"download_bps": 10},
        {"schedule": {"days": ["mon"], "start": "01:00", "end": "02:00"}},
        {"download_bps": 0, "upload_bps": -1, "schedule": {"days": ["mon"], "start": "01:00", "end": "02:00"}},
    ],
)
def test_unusable_alt_speed_is_cleared(cfg: dict) -> None:
    assert normalize_alt_speed(AltSpeedConfig(**cfg)).is_empty()


@pytest.mark.parametrize(
    "raw",
    [
        {"download_bps": 10, "schedule": {"days": "mon", "start": "01:00", "end": "02:00"}},
        {"download_bps": 10, "schedule": {"days": [None], "start": "01:00", "end": "02:00"}},
        {"download_bps": 10, "schedule": {"days": ["mon"], "start": "01:00"}},
        {"download_bps": 10, "schedule": {"days": ["mon"], "start": "01:00", "end": "02:00", "tz": "UTC"}},
        {"download_bps": True, "schedule": {"days": ["mon"], "start": "01:00", "end": "02:00"}},
        ["mon"],
        None,
    ],
)
def test_malformed_alt_speed_parses_as_empty(raw) -> None:
    cfg = AltSpeedConfig.model_validate(raw)
    assert cfg.schedule is None
    assert normalize_alt_speed(cfg).is_empty()


def test_blank_weekday_is_skipped() -> None:
    cfg = AltSpeedConfig(download_bps=1, schedule={"days": ["mon", " "], "start": "01:00", "end": "02:00"})
    assert normalize_alt_speed(cfg).schedule.days == ["mon"]


@pytest.mark.parametrize(
    "text, expected",
    [("09:00", 540), (" 23:59 ", 1439), ("9:00", None), ("009:00", None), ("09:5", None), ("24:00", None), ("", None)],
)
def test_parse_hhmm_needs_two_digit_fields(text: str, expected) -> None:
    assert parse_hhmm(text) == expected


def test_peer_class_defaults_drop_undefined_ids() -> None:
    out = normalize_peer_classes(PeerClassesConfig(classes=[{"id": 3}, {"id": 1}], default=[7, 3, 3]))
    assert [c.id for c in out.classes] == [1, 3]
    assert out.default == [3]
    assert out.classes[1].label == "class_3"


def test_duplicate_peer_class_is_a_conflict() -> None:
    with pytest.raises(ConflictError):
        normalize_peer_classes(PeerClassesConfig(classes=[{"id": 1}, {"id": 1, "label": "again"}]))


@pytest.mark.parametrize(
    "entry, field",
    [
        ({"id": 32}, "peer_classes.id"),
        ({"id": 1, "download_priority": 0}, "peer_classes.download_priority"),
        ({"id": 1, "upload_priority": 256}, "peer_classes.upload_priority"),
        ({"id": 1, "connection_limit_factor": 0}, "peer_classes.connection_limit_factor"),
    ],
)
def test_peer_class_bounds_are_strict(entry: dict, field: str) -> None:
    with pytest.raises(ValidationError) as exc:
        normalize_peer_classes(PeerClassesConfig(classes=[entry]))
    assert exc.value.field == field


def test_tracker_urls_over_limit_are_rejected() -> None:
    with pytest.raises(ValidationError) as exc:
        normalize_tracker(TrackerConfig(extra=["udp://t.example/" + "x" * 600]))
    assert exc.value.field == "tracker.extra"


def test_tracker_proxy_and_auth_are_strict() -> None:
    with pytest.raises(ValidationError):
        normalize_tracker(TrackerConfig(proxy={"host": " ", "port": 8080}))
    with pytest.raises(ValidationError):
        normalize_tracker(TrackerConfig(proxy={"host": "proxy", "port": 8080, "kind": "gopher"}))
    with pytest.raises(ValidationError):
        normalize_tracker(TrackerConfig(auth={"username_secret": "  "}))
    with pytest.raises(ValidationError):
        normalize_tracker(TrackerConfig(request_timeout_ms=900_001))


def test_tracker_normalizes_proxy_kind_and_trims() -> None:
    out = normalize_tracker(
        TrackerConfig(
            default=[" udp://a/announce ", "udp://a/announce"],
            user_agent="  ",
            proxy={"host": " proxy.local ", "port": 1080, "kind": "SOCKS5"},
            auth={"cookie_secret": "tracker-cookie"},
        )
    )
    assert out.default == ["udp://a/announce"]
    assert out.user_agent is None
    assert out.proxy.host == "proxy.local"
    assert out.proxy.kind == "socks5"
    assert out.auth.cookie_secret == "tracker-cookie"


def test_label_policies_are_sorted_and_unique() -> None:
    policies = [
        LabelPolicy(kind="tag", name="b"),
        LabelPolicy(kind="category", name="tv", rate_limit_download_bps=9_000_000_000),
    ]
    out = normalize_label_policies(policies)
    assert [(p.kind, p.name) for p in out] == [("category", "tv"), ("tag", "b")]
    assert out[0].rate_limit_download_bps == 5_000_000_000

    with pytest.raises(ConflictError):
        normalize_label_policies([LabelPolicy(kind="tag", name="x"), LabelPolicy(kind="tag", name=" x ")])


@pytest.mark.parametrize("key", ["engine_profile", "listen_port", "engine_profile.listen_port", "engine_profile.*"])
def test_ensure_mutable_matches_every_key_form(key: str) -> None:
    with pytest.raises(ImmutableFieldError) as exc:
        ensure_mutable([key], "engine_profile", "listen_port")
    assert exc.value.code is ErrorCode.IMMUTABLE_FIELD


def test_ensure_mutable_ignores_other_sections_and_the_key_list_itself() -> None:
    ensure_mutable(["fs_policy.*"], "engine_profile", "listen_port")
    ensure_mutable(["app_profile"], "app_profile", "immutable_keys")
