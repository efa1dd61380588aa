import os
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session

from .env_settings import get_env


class Base(DeclarativeBase):
    pass


def default_db_url() -> str:
    s = get_env()
    url = (s.database_url or "").strip()
    if url:
        return url

    sqlite_path = (s.sqlite_path or "").strip() or "data/dlsettings.db"
    p = Path(sqlite_path)
    if not p.is_absolute():
        # Relative paths are anchored at the project root, not the process CWD.
        project_root = Path(__file__).resolve().parents[1]
        p = (project_root / p).resolve()

    db_dir = str(p.parent)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    return f"sqlite:///{p.as_posix()}"


def _set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    # WAL can fail on some filesystems (bind mounts, in-memory databases).
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
    except Exception:
        cursor.execute("PRAGMA journal_mode=DELETE")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def build_engine(url: str | None = None, **kwargs) -> Engine:
    """Create an engine for the settings store.

    SQLite connections get foreign keys, WAL and a busy timeout.
    """
    url = url or default_db_url()
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        connect_args = dict(kwargs.pop("connect_args", {}) or {})
        connect_args.setdefault("check_same_thread", False)
        kwargs["connect_args"] = connect_args

    engine = create_engine(url, echo=False, future=True, **kwargs)
    if is_sqlite:
        event.listen(engine, "connect", _set_sqlite_pragma)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )
