"""Release history database.

The history store is optional: the orchestrator never touches it, the CLI
records a report after a run finishes. ``open_history()`` returns a
session factory bound to an engine whose tables already exist.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from monoship.config import get_settings


class Base(DeclarativeBase):
    """Declarative base of the history tables."""


def _sqlite_file(db_url: str) -> Path | None:
    if not db_url.startswith("sqlite"):
        return None
    _, _, location = db_url.partition(":///")
    if not location or location == ":memory:":
        return None
    return Path(location)


def make_engine(db_url: str | None = None) -> Engine:
    """Create an engine for the history database.

    For file-backed SQLite the parent directory is created first, and
    connections may be shared across threads.

    Args:
        db_url: Database URL (``Settings.db_url`` when None).
    """
    db_url = db_url or get_settings().db_url
    connect_args: dict[str, Any] = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    sqlite_file = _sqlite_file(db_url)
    if sqlite_file is not None:
        sqlite_file.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(db_url, connect_args=connect_args)


def create_tables(engine: Engine) -> None:
    """Create every history table that does not exist yet."""
    from monoship.release import records  # noqa: F401  (registers the models)

    Base.metadata.create_all(bind=engine)


def open_history(db_url: str | None = None) -> sessionmaker[Session]:
    """Open the history database and return a session factory."""
    engine = make_engine(db_url)
    create_tables(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Yield a session that commits on success and rolls back on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = ["Base", "create_tables", "make_engine", "open_history", "session_scope"]
