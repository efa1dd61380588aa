"""Revision counter and transaction scopes.

The first watched write inside a transaction bumps the single revision row and
the new value is reused for the rest of that transaction, so one logical
multi-table write yields exactly one bump. Changes are queued on the
transaction and published only after a successful commit.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .defaults import REVISION_ROW_ID
from .errors import ConfigError, ConflictError, FatalError
from .events import ChangeFeed, SettingsChange
from .models import SettingsRevision, WATCHED_TABLES
from .timezone_utils import utcnow

logger = logging.getLogger(__name__)


def current_revision(db: Session) -> int:
    value = db.scalar(select(SettingsRevision.revision).where(SettingsRevision.id == REVISION_ROW_ID))
    return int(value or 0)


def bump_revision(db: Session) -> int:
    """Increment the counter. The UPDATE takes the write lock on the revision row."""
    res = db.execute(
        update(SettingsRevision)
        .where(SettingsRevision.id == REVISION_ROW_ID)
        .values(revision=SettingsRevision.revision + 1, updated_at=utcnow())
    )
    if res.rowcount == 0:
        db.add(SettingsRevision(id=REVISION_ROW_ID, revision=1, updated_at=utcnow()))
        db.flush()
        return 1
    return current_revision(db)


def reset_revision(db: Session) -> None:
    db.execute(
        update(SettingsRevision)
        .where(SettingsRevision.id == REVISION_ROW_ID)
        .values(revision=0, updated_at=utcnow())
    )


class WriteTx:
    """One mutating transaction: session, tx-local revision and pending changes."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.revision: int | None = None
        self.changes: list[SettingsChange] = []

    def touch(self, table: str, operation: str) -> int:
        """Record a write to ``table``; bumps the revision on the first call."""
        if table not in WATCHED_TABLES:
            raise ValueError(f"table {table!r} is not watched")
        if self.revision is None:
            self.revision = bump_revision(self.db)
        self.changes.append(SettingsChange(table=table, revision=self.revision, operation=operation))
        return self.revision

    def announce(self, table: str, operation: str, revision: int) -> None:
        """Queue a change without bumping (used by factory reset)."""
        self.changes.append(SettingsChange(table=table, revision=revision, operation=operation))


def _storage_error(exc: DBAPIError) -> ConfigError:
    if isinstance(exc, IntegrityError):
        return ConflictError(f"uniqueness violation: {exc.orig}")
    return FatalError(f"settings storage unavailable: {exc.orig}")


@contextmanager
def write_scope(session_factory: sessionmaker[Session], feed: ChangeFeed | None = None) -> Iterator[WriteTx]:
    """Run one all-or-nothing write; publish its changes after commit."""
    db = session_factory()
    tx = WriteTx(db)
    try:
        yield tx
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        err = _storage_error(exc)
        if isinstance(err, FatalError):
            logger.error("settings write failed", exc_info=True)
        raise err from exc
    except BaseException:
        db.rollback()
        raise
    finally:
        db.close()

    if feed is not None:
        feed.publish_all(tx.changes)


@contextmanager
def read_scope(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    db = session_factory()
    try:
        yield db
    except DBAPIError as exc:
        logger.error("settings read failed", exc_info=True)
        raise FatalError(f"settings storage unavailable: {exc.orig}") from exc
    finally:
        db.close()
