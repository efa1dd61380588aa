from datetime import timedelta

import pytest

from dlsettings.errors import ConflictError, ValidationError
from dlsettings.timezone_utils import utcnow


def test_only_one_active_token(store) -> None:
    first = store.issue_setup_token("hash-1", issued_by="installer")
    assert first.consumed_at is None
    assert first.issued_by == "installer"
    assert (first.expires_at - first.issued_at) == timedelta(seconds=900)

    with pytest.raises(ConflictError):
        store.issue_setup_token("hash-2")

    assert store.consume_setup_token(first.id) is True
    assert store.consume_setup_token(first.id) is False
    second = store.issue_setup_token("hash-2")
    assert store.active_setup_token().id == second.id


def test_expired_token_is_swept_before_issuing(store) -> None:
    earlier = utcnow() - timedelta(hours=1)
    store.issue_setup_token("stale", ttl_s=60, now=earlier)
    assert store.active_setup_token() is None
    fresh = store.issue_setup_token("fresh")
    assert fresh.token_hash == "fresh"


def test_cleanup_counts_removed_tokens(store) -> None:
    t0 = utcnow()
    store.issue_setup_token("a", ttl_s=30, now=t0)
    assert store.cleanup_expired_setup_tokens(now=t0 + timedelta(seconds=10)) == 0
    assert store.cleanup_expired_setup_tokens(now=t0 + timedelta(seconds=31)) == 1


def test_validate_compares_against_the_active_token(store) -> None:
    token = store.issue_setup_token("secret-hash")
    assert store.validate_setup_token("secret-hash").id == token.id
    assert store.validate_setup_token("other-hash") is None
    assert store.validate_setup_token("") is None


def test_invalidate_clears_the_slot(store) -> None:
    store.issue_setup_token("a")
    assert store.invalidate_active_setup_tokens() == 1
    assert store.active_setup_token() is None
    assert store.invalidate_active_setup_tokens() == 0
    store.issue_setup_token("b")


def test_expiry_must_be_in_the_future(store) -> None:
    with pytest.raises(ValidationError):
        store.issue_setup_token("x", expires_at=utcnow() - timedelta(seconds=1))
    with pytest.raises(ValidationError):
        store.issue_setup_token("x", ttl_s=0)
    with pytest.raises(ValidationError):
        store.issue_setup_token("")


def test_tokens_do_not_touch_the_revision(store) -> None:
    token = store.issue_setup_token("a")
    store.consume_setup_token(token.id)
    assert store.current_revision() == 0
