import pytest

from dlsettings.defaults import APP_PROFILE_ID
from dlsettings.errors import ConflictError, ErrorCode, ImmutableFieldError, NotFoundError, ValidationError
from dlsettings.services.settings.schema import AppProfile


def test_seeded_profile(store) -> None:
    profile = store.fetch_app_profile()
    assert profile.id == APP_PROFILE_ID
    assert profile.mode == "setup"
    assert profile.auth_mode == "api_key"
    assert profile.instance_name == "revaer"
    assert profile.http_port == 7070
    assert profile.bind_addr == "127.0.0.1"
    assert profile.version == 0
    assert store.current_revision() == 0


def test_update_bumps_revision_and_version(store) -> None:
    current = store.fetch_app_profile()
    updated = store.update_app_profile(current.model_copy(update={"instance_name": "  seedbox  ", "http_port": 8080}))
    assert updated.instance_name == "seedbox"
    assert updated.http_port == 8080
    assert updated.version == 1
    assert store.current_revision() == 1


def test_update_with_same_values_still_bumps(store) -> None:
    current = store.fetch_app_profile()
    store.update_app_profile(current)
    store.update_app_profile(current)
    assert store.current_revision() == 2
    assert store.fetch_app_profile().version == 2


def test_unknown_profile_id_is_not_found(store) -> None:
    with pytest.raises(NotFoundError) as exc:
        store.update_app_profile(store.fetch_app_profile(), profile_id="11111111-1111-1111-1111-111111111111")
    assert exc.value.code is ErrorCode.NOT_FOUND
    assert store.current_revision() == 0

    with pytest.raises(NotFoundError):
        store.fetch_app_profile("not-the-singleton")


@pytest.mark.parametrize(
    "patch, field",
    [
        ({"bind_addr": "not-an-ip"}, "bind_addr"),
        ({"http_port": 0}, "http_port"),
        ({"mode": "maintenance"}, "mode"),
        ({"bogus": 1}, "bogus"),
    ],
)
def test_invalid_input_writes_nothing(store, patch: dict, field: str) -> None:
    data = store.fetch_app_profile().model_dump()
    data.update(patch)
    with pytest.raises(ValidationError) as exc:
        store.update_app_profile(data)
    assert exc.value.section == "app_profile"
    assert exc.value.field == field
    assert store.current_revision() == 0
    assert store.fetch_app_profile().version == 0


def test_immutable_key_blocks_changes_only(store) -> None:
    store.set_immutable_keys(["app_profile.http_port", " app_profile.http_port "])
    profile = store.fetch_app_profile()
    assert profile.immutable_keys == ["app_profile.http_port"]

    with pytest.raises(ImmutableFieldError) as exc:
        store.update_app_profile(profile.model_copy(update={"http_port": 9090}))
    assert exc.value.to_dict()["code"] == "IMMUTABLE_FIELD"
    assert store.fetch_app_profile().http_port == 7070

    # unchanged protected field is fine
    store.update_app_profile(profile.model_copy(update={"instance_name": "other"}))
    assert store.fetch_app_profile().instance_name == "other"


def test_section_wide_immutable_key_guards_other_aggregates(store) -> None:
    store.set_immutable_keys(["fs_policy"])
    policy = store.fetch_fs_policy()
    with pytest.raises(ImmutableFieldError):
        store.update_fs_policy(policy.model_copy(update={"library_root": "/srv/library"}))


def test_label_policies_round_trip(store) -> None:
    store.set_label_policies(
        [
            {"kind": "tag", "name": "linux", "queue_position": 2},
            {
                "kind": "category",
                "name": "movies",
                "download_dir": " /data/movies ",
                "rate_limit_upload_bps": 1024,
                "cleanup": {"seed_ratio_limit": 2.0, "remove_data": True},
            },
        ]
    )
    policies = store.fetch_app_profile().label_policies
    assert [(p.kind, p.name) for p in policies] == [("category", "movies"), ("tag", "linux")]
    movies = policies[0]
    assert movies.download_dir == "/data/movies"
    assert movies.rate_limit_upload_bps == 1024
    assert movies.cleanup.seed_ratio_limit == 2.0
    assert movies.cleanup.remove_data is True
    assert policies[1].cleanup is None


def test_duplicate_label_policy_is_a_conflict(store) -> None:
    with pytest.raises(ConflictError):
        store.set_label_policies([{"kind": "tag", "name": "a"}, {"kind": "tag", "name": "a"}])
    assert store.fetch_app_profile().label_policies == []


def test_set_app_mode(store) -> None:
    profile = store.set_app_mode("active")
    assert profile.mode == "active"
    assert profile.version == 1
    with pytest.raises(ValidationError):
        store.set_app_mode("paused")


def test_telemetry_round_trip(store) -> None:
    data = store.fetch_app_profile().model_dump()
    data["telemetry"] = {"level": " debug ", "format": "json", "otel_enabled": True, "otel_endpoint": ""}
    profile = store.update_app_profile(data)
    assert profile.telemetry.level == "debug"
    assert profile.telemetry.format == "json"
    assert profile.telemetry.otel_enabled is True
    assert profile.telemetry.otel_endpoint is None


def test_fetch_returns_typed_model(store) -> None:
    assert isinstance(store.fetch_app_profile(), AppProfile)
