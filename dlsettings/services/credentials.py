"""API keys and opaque secrets.

Hashes and ciphertexts are stored and returned as-is; nothing here computes,
verifies or decrypts them.
"""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from ..errors import NotFoundError, ValidationError
from ..models import ApiKeyRow, SecretRow
from ..revision import WriteTx
from ..timezone_utils import to_utc_naive, utcnow

logger = logging.getLogger(__name__)

_TABLE = ApiKeyRow.__tablename__


class ApiKeyRateLimit(BaseModel):
    burst: int
    per_seconds: int


class ApiKey(BaseModel):
    key_id: str
    hash: str
    label: str | None = None
    enabled: bool = True
    expires_at: datetime | None = None
    rate_limit: ApiKeyRateLimit | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


def _to_model(r: ApiKeyRow) -> ApiKey:
    rate_limit = None
    if r.rate_limit_burst is not None and r.rate_limit_per_seconds is not None:
        rate_limit = ApiKeyRateLimit(burst=r.rate_limit_burst, per_seconds=r.rate_limit_per_seconds)
    return ApiKey(
        key_id=r.key_id,
        hash=r.hash,
        label=r.label,
        enabled=bool(r.enabled),
        expires_at=r.expires_at,
        rate_limit=rate_limit,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


def _not_expired(now: datetime):
    return or_(ApiKeyRow.expires_at.is_(None), ApiKeyRow.expires_at > now)


def validate_rate_limit(rate_limit: ApiKeyRateLimit | dict | None) -> ApiKeyRateLimit | None:
    if rate_limit is None:
        return None
    if isinstance(rate_limit, dict):
        rate_limit = ApiKeyRateLimit(
            burst=int(rate_limit.get("burst", 0)), per_seconds=int(rate_limit.get("per_seconds", 0))
        )
    if rate_limit.burst < 1:
        raise ValidationError(
            "rate limit burst must be at least 1",
            section="api_keys",
            field="rate_limit.burst",
            value=rate_limit.burst,
        )
    if rate_limit.per_seconds < 1:
        raise ValidationError(
            "rate limit period must be at least 1 second",
            section="api_keys",
            field="rate_limit.per_seconds",
            value=rate_limit.per_seconds,
        )
    return rate_limit


# --- reads ----------------------------------------------------------------------


def list_api_keys(db: Session, *, now: datetime | None = None) -> list[ApiKey]:
    """Enabled, unexpired keys in creation order."""
    now = to_utc_naive(now) or utcnow()
    rows = db.scalars(
        select(ApiKeyRow)
        .where(ApiKeyRow.enabled.is_(True), _not_expired(now))
        .order_by(ApiKeyRow.created_at, ApiKeyRow.id)
    )
    return [_to_model(r) for r in rows]


def get_api_key(db: Session, key_id: str, *, now: datetime | None = None) -> ApiKey | None:
    """Point lookup; disabled and expired keys are both reported as absent."""
    now = to_utc_naive(now) or utcnow()
    r = db.scalar(
        select(ApiKeyRow).where(ApiKeyRow.key_id == key_id, ApiKeyRow.enabled.is_(True), _not_expired(now))
    )
    return _to_model(r) if r else None


def require_api_key(db: Session, key_id: str, *, now: datetime | None = None) -> ApiKey:
    key = get_api_key(db, key_id, now=now)
    if key is None:
        raise NotFoundError(f"api key {key_id} not found", meta={"key_id": key_id})
    return key


def fetch_api_key_auth(db: Session, key_id: str, *, now: datetime | None = None) -> ApiKey | None:
    """Lookup for authentication: filters expiry only, the caller checks ``enabled``."""
    now = to_utc_naive(now) or utcnow()
    r = db.scalar(select(ApiKeyRow).where(ApiKeyRow.key_id == key_id, _not_expired(now)))
    return _to_model(r) if r else None


def has_api_keys(db: Session, *, now: datetime | None = None) -> bool:
    now = to_utc_naive(now) or utcnow()
    n = db.scalar(
        select(func.count()).select_from(ApiKeyRow).where(ApiKeyRow.enabled.is_(True), _not_expired(now))
    )
    return bool(n)


# --- writes ---------------------------------------------------------------------


def upsert_api_key(
    tx: WriteTx,
    key_id: str,
    key_hash: str,
    *,
    label: str | None = None,
    enabled: bool = True,
    expires_at: datetime | None = None,
    rate_limit: ApiKeyRateLimit | dict | None = None,
) -> ApiKey:
    """Insert a key, or overwrite every field of an existing one with the same key_id."""
    key_id = (key_id or "").strip()
    if not key_id:
        raise ValidationError("key_id must not be blank", section="api_keys", field="key_id")
    if not key_hash:
        raise ValidationError("hash must not be empty", section="api_keys", field="hash")
    rl = validate_rate_limit(rate_limit)

    db = tx.db
    row = db.scalar(select(ApiKeyRow).where(ApiKeyRow.key_id == key_id))
    op = "UPDATE" if row else "INSERT"
    tx.touch(_TABLE, op)
    if row is None:
        row = ApiKeyRow(key_id=key_id)
        db.add(row)
    row.hash = key_hash
    row.label = (label or "").strip() or None
    row.enabled = bool(enabled)
    row.expires_at = to_utc_naive(expires_at)
    row.rate_limit_burst = rl.burst if rl else None
    row.rate_limit_per_seconds = rl.per_seconds if rl else None
    row.updated_at = utcnow()
    db.flush()
    logger.info("api key %s %s (revision=%d)", key_id, "created" if op == "INSERT" else "replaced", tx.revision)
    return _to_model(row)


def _set_fields(tx: WriteTx, key_id: str, values: dict) -> bool:
    """Update one key; an unknown key_id is a no-op without a revision bump."""
    db = tx.db
    exists = db.scalar(select(ApiKeyRow.id).where(ApiKeyRow.key_id == key_id))
    if exists is None:
        return False
    tx.touch(_TABLE, "UPDATE")
    db.execute(update(ApiKeyRow).where(ApiKeyRow.id == exists).values(**values, updated_at=utcnow()))
    return True


def set_api_key_hash(tx: WriteTx, key_id: str, key_hash: str) -> bool:
    if not key_hash:
        raise ValidationError("hash must not be empty", section="api_keys", field="hash")
    return _set_fields(tx, key_id, {"hash": key_hash})


def set_api_key_label(tx: WriteTx, key_id: str, label: str | None) -> bool:
    return _set_fields(tx, key_id, {"label": (label or "").strip() or None})


def set_api_key_enabled(tx: WriteTx, key_id: str, enabled: bool) -> bool:
    return _set_fields(tx, key_id, {"enabled": bool(enabled)})


def set_api_key_expires_at(tx: WriteTx, key_id: str, expires_at: datetime | None) -> bool:
    return _set_fields(tx, key_id, {"expires_at": to_utc_naive(expires_at)})


def set_api_key_rate_limit(tx: WriteTx, key_id: str, rate_limit: ApiKeyRateLimit | dict | None) -> bool:
    rl = validate_rate_limit(rate_limit)
    return _set_fields(
        tx,
        key_id,
        {
            "rate_limit_burst": rl.burst if rl else None,
            "rate_limit_per_seconds": rl.per_seconds if rl else None,
        },
    )


def delete_api_key(tx: WriteTx, key_id: str) -> int:
    res = tx.db.execute(delete(ApiKeyRow).where(ApiKeyRow.key_id == key_id))
    removed = int(res.rowcount or 0)
    if removed:
        tx.touch(_TABLE, "DELETE")
        logger.info("api key %s deleted (revision=%d)", key_id, tx.revision)
    return removed


# --- secrets --------------------------------------------------------------------


def get_secret(db: Session, name: str) -> bytes | None:
    return db.scalar(select(SecretRow.ciphertext).where(SecretRow.name == name))


def list_secret_names(db: Session) -> list[str]:
    return list(db.scalars(select(SecretRow.name).order_by(SecretRow.name)))


def upsert_secret(db: Session, name: str, ciphertext: bytes, *, actor: str | None = None) -> None:
    name = (name or "").strip()
    if not name:
        raise ValidationError("secret name must not be blank", section="secrets", field="name")
    row = db.scalar(select(SecretRow).where(SecretRow.name == name))
    if row is None:
        row = SecretRow(name=name)
        db.add(row)
    row.ciphertext = bytes(ciphertext)
    row.created_by = actor
    row.created_at = utcnow()
    db.flush()
    logger.info("secret %s stored", name)


def delete_secret(db: Session, name: str) -> int:
    res = db.execute(delete(SecretRow).where(SecretRow.name == name))
    return int(res.rowcount or 0)
