import pytest

from dlsettings.errors import ConflictError, ValidationError
from dlsettings.services.settings.schema import EngineProfile


def test_seeded_profile(store) -> None:
    profile = store.fetch_engine_profile()
    assert profile == EngineProfile()
    assert profile.implementation == "libtorrent"
    assert profile.download_root == ".server_root/downloads"
    assert profile.resume_dir == ".server_root/resume"


def test_update_normalizes_everything(store) -> None:
    data = store.fetch_engine_profile().model_dump()
    data.update(
        {
            "listen_port": 51413,
            "listen_interfaces": [" 0.0.0.0:6881 ", "0.0.0.0:6881", "[::]:6881"],
            "dht_bootstrap_nodes": ["router.example:6881", "", "router.example:6881"],
            "max_download_bps": 10_000_000_000,
            "max_upload_bps": 0,
            "encryption": " Prefer ",
            "ip_filter": {"cidrs": ["10.0.0.7/8", "192.168.1.1"], "blocklist_url": " https://lists/x "},
        }
    )
    updated = store.update_engine_profile(data)
    assert updated.listen_port == 51413
    assert updated.listen_interfaces == ["0.0.0.0:6881", "[::]:6881"]
    assert updated.dht_bootstrap_nodes == ["router.example:6881"]
    assert updated.max_download_bps == 5_000_000_000
    assert updated.max_upload_bps is None
    assert updated.encryption == "prefer"
    assert updated.ip_filter.cidrs == ["10.0.0.0/8", "192.168.1.1/32"]
    assert updated.ip_filter.blocklist_url == "https://lists/x"
    assert store.fetch_engine_profile() == updated
    assert store.current_revision() == 1


def test_failed_update_leaves_profile_intact(store) -> None:
    before = store.fetch_engine_profile()
    bad = before.model_copy(update={"listen_port": 6881, "listen_interfaces": ["no-port-here"]})
    with pytest.raises(ValidationError) as exc:
        store.update_engine_profile(bad)
    assert exc.value.field == "listen_interfaces"
    assert store.fetch_engine_profile() == before
    assert store.current_revision() == 0


def test_list_setters_each_bump_once(store) -> None:
    for i in range(5):
        store.set_dht_router_nodes([f"router{i}.example:6881"])
    assert store.current_revision() == 5
    assert store.fetch_engine_profile().dht_router_nodes == ["router4.example:6881"]


def test_alt_speed_with_equal_times_is_cleared(store) -> None:
    profile = store.set_alt_speed(
        {"download_bps": 1000, "schedule": {"days": ["Mon", "mon", "MON"], "start": "10:00", "end": "10:00"}}
    )
    assert profile.alt_speed.is_empty()
    assert store.current_revision() == 1


def test_alt_speed_overnight_window_is_stored(store) -> None:
    store.set_alt_speed({"upload_bps": 5000, "schedule": {"days": ["tuesday"], "start": "23:30", "end": "00:15"}})
    alt = store.fetch_engine_profile().alt_speed
    assert alt.upload_bps == 5000
    assert alt.download_bps is None
    assert alt.schedule.days == ["tue"]
    assert (alt.schedule.start, alt.schedule.end) == ("23:30", "00:15")

    store.set_alt_speed(None)
    assert store.fetch_engine_profile().alt_speed.is_empty()


def test_peer_class_default_to_missing_class_is_dropped(store) -> None:
    store.set_peer_classes(
        {"classes": [{"id": 1, "label": "", "download_priority": 2, "upload_priority": 3}], "default": [1, 7]}
    )
    peers = store.fetch_engine_profile().peer_classes
    assert peers.default == [1]
    assert peers.classes[0].label == "class_1"
    assert peers.classes[0].connection_limit_factor == 100


def test_peer_class_duplicates_and_bounds(store) -> None:
    with pytest.raises(ConflictError):
        store.set_peer_classes({"classes": [{"id": 2}, {"id": 2}]})
    with pytest.raises(ValidationError):
        store.set_peer_classes({"classes": [{"id": 40}]})
    assert store.current_revision() == 0


def test_tracker_round_trip(store) -> None:
    store.set_tracker(
        {
            "default": ["udp://a/announce", " udp://a/announce "],
            "extra": ["https://b/announce"],
            "replace": True,
            "listen_interface": "0.0.0.0:7000",
            "request_timeout_ms": 5000,
            "proxy": {"host": "proxy.local", "port": 8080, "kind": "SOCKS5", "proxy_peers": True},
            "auth": {"cookie_secret": "tracker-cookie"},
            "ssl_tracker_verify": False,
        }
    )
    tracker = store.fetch_engine_profile().tracker
    assert tracker.default == ["udp://a/announce"]
    assert tracker.extra == ["https://b/announce"]
    assert tracker.replace is True
    assert tracker.listen_interface == "0.0.0.0:7000"
    assert tracker.request_timeout_ms == 5000
    assert tracker.proxy.kind == "socks5"
    assert tracker.proxy.proxy_peers is True
    assert tracker.auth.cookie_secret == "tracker-cookie"
    assert tracker.auth.username_secret is None
    assert tracker.ssl_tracker_verify is False


def test_ip_filter_setter_replaces_entries(store) -> None:
    store.set_ip_filter({"cidrs": ["10.0.0.0/8"]})
    store.set_ip_filter({"cidrs": ["172.16.0.1/12"], "etag": "abc"})
    ip_filter = store.fetch_engine_profile().ip_filter
    assert ip_filter.cidrs == ["172.16.0.0/12"]
    assert ip_filter.etag == "abc"


def test_structured_fields_are_guarded(store) -> None:
    store.set_immutable_keys(["engine_profile.tracker"])
    with pytest.raises(ValidationError):
        store.set_tracker({"default": ["udp://x/announce"]})
    # identical value passes the guard
    store.set_tracker({})


def test_same_full_update_twice_reads_back_identically(store) -> None:
    data = store.fetch_engine_profile().model_dump()
    data.update(
        {
            "listen_port": 6881,
            "listen_interfaces": ["0.0.0.0:6881", "[::]:6881"],
            "dht_bootstrap_nodes": ["router.example:6881"],
            "dht_router_nodes": ["dht.example:6881"],
            "ip_filter": {"cidrs": ["10.1.2.3/8", "192.168.0.1"], "blocklist_url": "https://lists/x", "etag": "v1"},
            "alt_speed": {
                "download_bps": 1000,
                "schedule": {"days": ["Fri", "monday"], "start": "22:00", "end": "06:00"},
            },
            "tracker": {
                "default": ["udp://a/announce"],
                "extra": ["https://b/announce"],
                "proxy": {"host": "proxy.local", "port": 1080, "kind": "SOCKS5", "username_secret": "proxy-user"},
                "auth": {"username_secret": "tracker-user", "password_secret": "tracker-pass"},
            },
            "peer_classes": {"classes": [{"id": 1, "label": "slow"}, {"id": 3}], "default": [3, 9]},
        }
    )
    store.update_engine_profile(data)
    first = store.fetch_engine_profile()
    store.update_engine_profile(data)
    second = store.fetch_engine_profile()

    assert second == first
    assert store.current_revision() == 2
    assert first.peer_classes.default == [3]
    assert first.alt_speed.schedule.days == ["mon", "fri"]
    assert first.tracker.proxy.kind == "socks5"
    assert first.ip_filter.cidrs == ["10.0.0.0/8", "192.168.0.1/32"]

    # feeding the read back in is also a fixed point
    store.update_engine_profile(second)
    assert store.fetch_engine_profile() == first
    assert store.current_revision() == 3


@pytest.mark.parametrize(
    "schedule",
    [
        {"days": "mon", "start": "09:00", "end": "10:00"},
        {"days": [1], "start": "09:00", "end": "10:00"},
        {"days": ["mon"], "start": 900, "end": "10:00"},
        {"days": ["mon"], "start": "09:00", "end": "10:00", "tz": "UTC"},
        {"days": ["mon"], "start": "9:00", "end": "10:00"},
        "mon 09:00-10:00",
    ],
)
def test_malformed_alt_speed_schedule_is_cleared_not_rejected(store, schedule) -> None:
    profile = store.set_alt_speed({"download_bps": 1000, "schedule": schedule})
    assert profile.alt_speed.is_empty()
    assert store.fetch_engine_profile().alt_speed.is_empty()
    assert store.current_revision() == 1


@pytest.mark.parametrize(
    "alt_speed",
    [
        {"download_bps": "fast", "schedule": {"days": ["mon"], "start": "09:00", "end": "10:00"}},
        {"download_bps": 10, "burst": 5, "schedule": {"days": ["mon"], "start": "09:00", "end": "10:00"}},
        "on",
    ],
)
def test_malformed_alt_speed_in_full_update_is_cleared(store, alt_speed) -> None:
    data = store.fetch_engine_profile().model_dump()
    data["alt_speed"] = alt_speed
    assert store.update_engine_profile(data).alt_speed.is_empty()
    assert store.current_revision() == 1


def test_blank_weekday_labels_are_skipped(store) -> None:
    store.set_alt_speed({"upload_bps": 10, "schedule": {"days": ["mon", " ", ""], "start": "09:00", "end": "10:00"}})
    alt = store.fetch_engine_profile().alt_speed
    assert alt.schedule.days == ["mon"]
    assert alt.upload_bps == 10
