from __future__ import annotations

from sqlalchemy import delete
from sqlalchemy.orm import Session

from .defaults import (
    APP_PROFILE_ID,
    APP_PROFILE_SEED,
    ENGINE_PROFILE_ID,
    ENGINE_PROFILE_SEED,
    FS_ALLOW_PATHS_SEED,
    FS_POLICY_ID,
    FS_POLICY_SEED,
    REVISION_ROW_ID,
)
from .errors import NotFoundError
from .models import AppProfileRow, EngineProfileRow, FsPolicyRow, FsPolicyListValueRow, SettingsRevision


def get_or_create_revision(db: Session) -> SettingsRevision:
    row = db.get(SettingsRevision, REVISION_ROW_ID)
    if row:
        return row
    row = SettingsRevision(id=REVISION_ROW_ID, revision=0)
    db.add(row)
    db.flush()
    return row


def seed_app_profile(db: Session) -> AppProfileRow:
    row = AppProfileRow(id=APP_PROFILE_ID, version=0, **APP_PROFILE_SEED)
    db.add(row)
    db.flush()
    return row


def seed_engine_profile(db: Session) -> EngineProfileRow:
    row = EngineProfileRow(id=ENGINE_PROFILE_ID, **ENGINE_PROFILE_SEED)
    db.add(row)
    db.flush()
    return row


def seed_fs_policy(db: Session) -> FsPolicyRow:
    row = FsPolicyRow(id=FS_POLICY_ID, **FS_POLICY_SEED)
    db.add(row)
    db.flush()
    db.execute(delete(FsPolicyListValueRow).where(FsPolicyListValueRow.policy_id == FS_POLICY_ID))
    for i, path in enumerate(FS_ALLOW_PATHS_SEED):
        db.add(FsPolicyListValueRow(policy_id=FS_POLICY_ID, kind="allow_paths", ord=i, value=path))
    db.flush()
    return row


def get_or_create_app_profile(db: Session) -> AppProfileRow:
    return db.get(AppProfileRow, APP_PROFILE_ID) or seed_app_profile(db)


def get_or_create_engine_profile(db: Session) -> EngineProfileRow:
    return db.get(EngineProfileRow, ENGINE_PROFILE_ID) or seed_engine_profile(db)


def get_or_create_fs_policy(db: Session) -> FsPolicyRow:
    return db.get(FsPolicyRow, FS_POLICY_ID) or seed_fs_policy(db)


def require_singleton(db: Session, model, expected_id: str, requested_id: str | None, *, for_update: bool = False):
    """Load the singleton row, rejecting any identifier other than the fixed one."""
    if requested_id is not None and str(requested_id) != expected_id:
        raise NotFoundError(
            f"{model.__tablename__} {requested_id} not found",
            meta={"table": model.__tablename__, "id": str(requested_id)},
        )
    row = db.get(model, expected_id, with_for_update=for_update)
    if row is None:
        raise NotFoundError(
            f"{model.__tablename__} is not initialized",
            meta={"table": model.__tablename__, "id": expected_id},
        )
    return row
