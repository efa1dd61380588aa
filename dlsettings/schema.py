"""DB schema bootstrap.

Tables are created with ``create_all``; there is no migration tooling. After
that the revision row and the three singleton aggregates are seeded when absent.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .models import Base
from .repo import (
    get_or_create_app_profile,
    get_or_create_engine_profile,
    get_or_create_fs_policy,
    get_or_create_revision,
)

logger = logging.getLogger(__name__)


def seed_defaults(db: Session) -> None:
    get_or_create_revision(db)
    get_or_create_app_profile(db)
    get_or_create_engine_profile(db)
    get_or_create_fs_policy(db)


def ensure_schema(engine: Engine) -> None:
    """Create missing tables and seed the singleton rows."""
    Base.metadata.create_all(bind=engine)

    with Session(engine) as db:
        seed_defaults(db)
        db.commit()
    logger.debug("settings schema ready on %s", engine.url.render_as_string(hide_password=True))
