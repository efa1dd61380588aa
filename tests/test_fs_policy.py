import pytest

from dlsettings.defaults import FS_POLICY_ID
from dlsettings.errors import ValidationError
from dlsettings.services.settings.schema import FsPolicy


def test_seeded_policy(store) -> None:
    policy = store.fetch_fs_policy()
    assert policy == FsPolicy()
    assert policy.id == FS_POLICY_ID
    assert policy.library_root == ".server_root/library"
    assert policy.allow_paths == [".server_root/downloads", ".server_root/library"]


def test_update_policy(store) -> None:
    data = store.fetch_fs_policy().model_dump()
    data.update(
        {
            "library_root": "/srv/library",
            "move_mode": "copy",
            "chmod_file": "0644",
            "umask": " 022 ",
            "owner": "  ",
            "cleanup_keep": ["*.mkv", "*.mkv", " *.srt "],
            "cleanup_drop": ["*.nfo"],
        }
    )
    policy = store.update_fs_policy(data)
    assert policy.library_root == "/srv/library"
    assert policy.move_mode == "copy"
    assert policy.chmod_file == "0644"
    assert policy.umask == "022"
    assert policy.owner is None
    assert policy.cleanup_keep == ["*.mkv", "*.srt"]
    assert policy.cleanup_drop == ["*.nfo"]
    assert store.fetch_fs_policy() == policy
    assert store.current_revision() == 1


@pytest.mark.parametrize("field, value", [("chmod_dir", "0999"), ("umask", "rwx"), ("library_root", "  ")])
def test_invalid_policy_is_rejected(store, field: str, value: str) -> None:
    data = store.fetch_fs_policy().model_dump()
    data[field] = value
    with pytest.raises(ValidationError) as exc:
        store.update_fs_policy(data)
    assert exc.value.field == field
    assert store.current_revision() == 0


def test_set_fs_list(store) -> None:
    policy = store.set_fs_list("allow_paths", ["/data", " /data ", "/media"])
    assert policy.allow_paths == ["/data", "/media"]
    assert store.current_revision() == 1

    with pytest.raises(ValidationError):
        store.set_fs_list("deny_paths", ["/"])


def test_same_update_twice_reads_back_identically(store) -> None:
    data = store.fetch_fs_policy().model_dump()
    data.update(
        {
            "library_root": " /srv/library ",
            "chmod_dir": "0755",
            "allow_paths": ["/srv/library", "/srv/library", "/data"],
            "cleanup_keep": ["*.mkv"],
            "cleanup_drop": ["*.nfo", " "],
        }
    )
    store.update_fs_policy(data)
    first = store.fetch_fs_policy()
    store.update_fs_policy(data)
    second = store.fetch_fs_policy()

    assert second == first
    assert store.current_revision() == 2
    assert first.allow_paths == ["/srv/library", "/data"]
    assert first.cleanup_drop == ["*.nfo"]
