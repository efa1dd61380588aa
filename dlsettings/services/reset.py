"""Factory reset: wipe every table and reseed, in one transaction."""

from __future__ import annotations

import logging

from sqlalchemy import delete

from ..models import AppProfileRow, Base, EngineProfileRow, FsPolicyRow
from ..repo import get_or_create_revision, seed_app_profile, seed_engine_profile, seed_fs_policy
from ..revision import WriteTx, reset_revision

logger = logging.getLogger(__name__)


def factory_reset(tx: WriteTx) -> None:
    """Delete all rows, set the revision to 0 and reseed the three singletons.

    Must be serialized against every other operation by the caller. Any
    failure rolls the whole reset back with the surrounding transaction.
    """
    db = tx.db
    # children before parents
    for table in reversed(Base.metadata.sorted_tables):
        db.execute(delete(table))
    db.expunge_all()

    get_or_create_revision(db)
    reset_revision(db)
    seed_app_profile(db)
    seed_engine_profile(db)
    seed_fs_policy(db)
    db.flush()

    tx.revision = 0
    for table in (AppProfileRow, EngineProfileRow, FsPolicyRow):
        tx.announce(table.__tablename__, "INSERT", 0)
    logger.warning("factory reset completed; settings reseeded at revision 0")
