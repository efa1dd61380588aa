import pytest
from sqlalchemy import select

from dlsettings.db import make_session_factory
from dlsettings.errors import ConflictError, FatalError, ValidationError
from dlsettings.events import ChangeFeed, SettingsChange
from dlsettings.models import ApiKeyRow
from dlsettings.revision import write_scope
from dlsettings.store import SettingsStore


def test_payload_round_trip() -> None:
    change = SettingsChange(table="engine_profile", revision=12, operation="UPDATE")
    assert change.payload == "engine_profile:12:UPDATE"
    assert SettingsChange.parse(change.payload) == change
    assert SettingsChange.parse(" fs_policy : 3 : delete ").operation == "DELETE"


@pytest.mark.parametrize("payload", ["", "app_profile:1", "app_profile:x:UPDATE", "app_profile:1:UPSERT", ":1:INSERT"])
def test_malformed_payload_is_rejected(payload: str) -> None:
    with pytest.raises(ValidationError):
        SettingsChange.parse(payload)


def test_each_committed_write_publishes_once(store) -> None:
    with store.subscribe() as sub:
        store.set_app_mode("active")
        store.set_fs_list("cleanup_drop", ["*.txt"])
        store.upsert_api_key("k1", "hash-1")
        changes = sub.drain()
    assert [c.payload for c in changes] == [
        "app_profile:1:UPDATE",
        "fs_policy:2:UPDATE",
        "auth_api_keys:3:INSERT",
    ]
    assert store.feed.stats()["subscribers"] == 0


def test_failed_write_publishes_nothing(store) -> None:
    with store.subscribe() as sub:
        with pytest.raises(ValidationError):
            store.update_app_profile({"bind_addr": "nope"})
        assert sub.get(timeout=0) is None
    assert store.current_revision() == 0


def test_one_transaction_bumps_once(store) -> None:
    with store.subscribe() as sub:
        store.import_profiles(store.export())
        changes = sub.drain()
    assert store.current_revision() == 1
    assert {c.table for c in changes} == {"app_profile", "engine_profile", "fs_policy"}
    assert {c.revision for c in changes} == {1}


def test_revision_is_monotonic_across_writes(store) -> None:
    seen = []
    for i in range(4):
        store.set_dht_bootstrap_nodes([f"node{i}:6881"])
        seen.append(store.current_revision())
    assert seen == [1, 2, 3, 4]


def test_overflowing_subscriber_keeps_newest() -> None:
    feed = ChangeFeed(max_queue=2)
    sub = feed.subscribe()
    for rev in (1, 2, 3):
        feed.publish(SettingsChange(table="app_profile", revision=rev, operation="UPDATE"))
    assert sub.take_dropped() == 1
    assert sub.take_dropped() == 0
    assert [c.revision for c in sub.drain()] == [2, 3]
    assert sub.last_revision == 3
    assert feed.stats()["published"] == 3


def test_integrity_error_becomes_conflict(store) -> None:
    sessions = make_session_factory(store.engine)
    with pytest.raises(ConflictError):
        with write_scope(sessions) as tx:
            tx.touch("auth_api_keys", "INSERT")
            tx.db.add(ApiKeyRow(key_id="dup", hash="a"))
            tx.db.add(ApiKeyRow(key_id="dup", hash="b"))
            tx.db.flush()
    assert store.current_revision() == 0
    with sessions() as db:
        assert db.scalars(select(ApiKeyRow)).all() == []


def test_unwatched_table_cannot_be_touched(store) -> None:
    sessions = make_session_factory(store.engine)
    with pytest.raises(ValueError):
        with write_scope(sessions) as tx:
            tx.touch("settings_secret", "INSERT")


def test_unreachable_database_is_fatal(tmp_path) -> None:
    store = SettingsStore(url=f"sqlite:///{(tmp_path / 'missing' / 'x.db').as_posix()}", create_schema=False)
    try:
        with pytest.raises(FatalError) as exc:
            store.current_revision()
        assert exc.value.to_dict()["code"] == "STORAGE_UNAVAILABLE"
    finally:
        store.close()
