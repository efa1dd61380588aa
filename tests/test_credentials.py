from datetime import timedelta

import pytest

from dlsettings.errors import NotFoundError, ValidationError
from dlsettings.timezone_utils import utcnow


def test_upsert_inserts_then_replaces(store) -> None:
    key = store.upsert_api_key("k1", "hash-1", label=" ci ", rate_limit={"burst": 10, "per_seconds": 60})
    assert key.label == "ci"
    assert key.enabled is True
    assert key.rate_limit.burst == 10
    assert store.current_revision() == 1

    key = store.upsert_api_key("k1", "hash-2")
    assert key.hash == "hash-2"
    assert key.label is None
    assert key.rate_limit is None
    assert store.current_revision() == 2
    assert [k.key_id for k in store.list_api_keys()] == ["k1"]


def test_disabled_and_expired_keys_are_excluded_alike(store) -> None:
    now = utcnow()
    store.upsert_api_key("live", "h1", expires_at=now + timedelta(days=1))
    store.upsert_api_key("forever", "h2")
    store.upsert_api_key("off", "h3", enabled=False)
    store.upsert_api_key("old", "h4", expires_at=now - timedelta(seconds=1))

    assert [k.key_id for k in store.list_api_keys(now=now)] == ["live", "forever"]
    assert store.get_api_key("off", now=now) is None
    assert store.get_api_key("old", now=now) is None
    with pytest.raises(NotFoundError):
        store.require_api_key("off", now=now)
    with pytest.raises(NotFoundError):
        store.require_api_key("old", now=now)
    assert store.require_api_key("live", now=now).hash == "h1"


def test_auth_lookup_filters_expiry_only(store) -> None:
    now = utcnow()
    store.upsert_api_key("off", "h3", enabled=False)
    store.upsert_api_key("old", "h4", expires_at=now - timedelta(minutes=5))
    auth = store.fetch_api_key_auth("off", now=now)
    assert auth is not None and auth.enabled is False
    assert store.fetch_api_key_auth("old", now=now) is None


def test_has_api_keys(store) -> None:
    assert store.has_api_keys() is False
    store.upsert_api_key("off", "h", enabled=False)
    assert store.has_api_keys() is False
    store.set_api_key_enabled("off", True)
    assert store.has_api_keys() is True


def test_narrow_setters(store) -> None:
    store.upsert_api_key("k1", "hash-1")
    expiry = (utcnow() + timedelta(days=14)).replace(microsecond=0)
    assert store.set_api_key_label("k1", "deploy") is True
    assert store.set_api_key_expires_at("k1", expiry) is True
    assert store.set_api_key_rate_limit("k1", {"burst": 5, "per_seconds": 1}) is True
    assert store.set_api_key_hash("k1", "hash-2") is True
    key = store.get_api_key("k1")
    assert (key.label, key.hash, key.expires_at) == ("deploy", "hash-2", expiry)
    assert key.rate_limit.per_seconds == 1
    assert store.current_revision() == 5


def test_setters_on_unknown_key_do_not_bump(store) -> None:
    assert store.set_api_key_label("ghost", "x") is False
    assert store.set_api_key_enabled("ghost", False) is False
    assert store.current_revision() == 0


@pytest.mark.parametrize("rate_limit", [{"burst": 0, "per_seconds": 60}, {"burst": 1, "per_seconds": 0}])
def test_invalid_rate_limit(store, rate_limit: dict) -> None:
    with pytest.raises(ValidationError):
        store.upsert_api_key("k1", "hash", rate_limit=rate_limit)
    assert store.current_revision() == 0


def test_blank_key_id_is_rejected(store) -> None:
    with pytest.raises(ValidationError):
        store.upsert_api_key("  ", "hash")


def test_delete_bumps_only_when_a_row_is_removed(store) -> None:
    store.upsert_api_key("k1", "hash")
    with store.subscribe() as sub:
        assert store.delete_api_key("k1") == 1
        assert store.delete_api_key("k1") == 0
        changes = sub.drain()
    assert [c.payload for c in changes] == ["auth_api_keys:2:DELETE"]
    assert store.current_revision() == 2


def test_secrets_are_opaque_and_unwatched(store) -> None:
    store.upsert_secret("tracker-cookie", b"\x00\x01cipher", actor="admin")
    store.upsert_secret("proxy-pass", b"p")
    assert store.get_secret("tracker-cookie") == b"\x00\x01cipher"
    store.upsert_secret("tracker-cookie", b"rotated")
    assert store.get_secret("tracker-cookie") == b"rotated"
    assert store.list_secret_names() == ["proxy-pass", "tracker-cookie"]
    assert store.delete_secret("proxy-pass") == 1
    assert store.delete_secret("proxy-pass") == 0
    assert store.get_secret("proxy-pass") is None
    assert store.current_revision() == 0
