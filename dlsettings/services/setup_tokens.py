"""Single-use setup tokens.

At most one unconsumed token exists at any time; the database enforces this
with a unique ``active_slot`` column. Issuing while a token is active fails
with ConflictError instead of superseding it.
"""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timedelta

from pydantic import BaseModel
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, ValidationError
from ..models import SetupTokenRow
from ..timezone_utils import to_utc_naive, utcnow

logger = logging.getLogger(__name__)


class SetupToken(BaseModel):
    id: int
    token_hash: str
    issued_at: datetime
    expires_at: datetime
    consumed_at: datetime | None = None
    issued_by: str | None = None


def _to_model(r: SetupTokenRow) -> SetupToken:
    return SetupToken(
        id=r.id,
        token_hash=r.token_hash,
        issued_at=r.issued_at,
        expires_at=r.expires_at,
        consumed_at=r.consumed_at,
        issued_by=r.issued_by,
    )


def cleanup_expired_setup_tokens(db: Session, *, now: datetime | None = None) -> int:
    """Delete unconsumed tokens whose expiry has passed."""
    now = to_utc_naive(now) or utcnow()
    res = db.execute(
        delete(SetupTokenRow).where(SetupTokenRow.consumed_at.is_(None), SetupTokenRow.expires_at <= now)
    )
    removed = int(res.rowcount or 0)
    if removed:
        logger.info("swept %d expired setup token(s)", removed)
    return removed


def active_setup_token(db: Session, *, now: datetime | None = None) -> SetupToken | None:
    cleanup_expired_setup_tokens(db, now=now)
    r = db.scalar(
        select(SetupTokenRow)
        .where(SetupTokenRow.consumed_at.is_(None))
        .order_by(SetupTokenRow.issued_at.desc(), SetupTokenRow.id.desc())
        .limit(1)
    )
    return _to_model(r) if r else None


def issue_setup_token(
    db: Session,
    token_hash: str,
    *,
    expires_at: datetime | None = None,
    ttl_s: int | float | None = None,
    issued_by: str | None = None,
    now: datetime | None = None,
) -> SetupToken:
    if not token_hash:
        raise ValidationError("token hash must not be empty", section="setup_tokens", field="token_hash")
    now = to_utc_naive(now) or utcnow()
    if expires_at is None:
        if ttl_s is None or ttl_s <= 0:
            raise ValidationError(
                "either expires_at or a positive ttl is required", section="setup_tokens", field="expires_at"
            )
        expires_at = now + timedelta(seconds=float(ttl_s))
    expires_at = to_utc_naive(expires_at)
    if expires_at <= now:
        raise ValidationError(
            "setup token must expire in the future", section="setup_tokens", field="expires_at"
        )

    if active_setup_token(db, now=now) is not None:
        raise ConflictError("an unconsumed setup token already exists")

    row = SetupTokenRow(
        token_hash=token_hash,
        issued_at=now,
        expires_at=expires_at,
        issued_by=issued_by,
        active_slot=1,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError as exc:
        raise ConflictError("an unconsumed setup token already exists") from exc
    logger.info("setup token %d issued (expires %s)", row.id, expires_at.isoformat())
    return _to_model(row)


def consume_setup_token(db: Session, token_id: int, *, now: datetime | None = None) -> bool:
    """Mark a token consumed. False when it is unknown or already consumed."""
    now = to_utc_naive(now) or utcnow()
    res = db.execute(
        update(SetupTokenRow)
        .where(SetupTokenRow.id == token_id, SetupTokenRow.consumed_at.is_(None))
        .values(consumed_at=now, active_slot=None)
    )
    return bool(res.rowcount)


def invalidate_active_setup_tokens(db: Session, *, now: datetime | None = None) -> int:
    now = to_utc_naive(now) or utcnow()
    res = db.execute(
        update(SetupTokenRow)
        .where(SetupTokenRow.consumed_at.is_(None))
        .values(consumed_at=now, active_slot=None)
    )
    count = int(res.rowcount or 0)
    if count:
        logger.info("invalidated %d active setup token(s)", count)
    return count


def validate_setup_token(db: Session, token_hash: str, *, now: datetime | None = None) -> SetupToken | None:
    """Return the active token if ``token_hash`` matches it, otherwise None."""
    token = active_setup_token(db, now=now)
    if token is None or not token_hash:
        return None
    if not hmac.compare_digest(token.token_hash.encode(), token_hash.encode()):
        return None
    return token
