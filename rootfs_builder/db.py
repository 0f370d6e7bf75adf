"""Database engine and session management for rootfs_builder.

Build records and recipe cache entries live in one SQLite file by
default. Several builds may run at once (each in its own job directory),
so connections wait on the database lock instead of failing right away.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from rootfs_builder.config import get_settings

# Seconds a connection waits for another build to release the lock
SQLITE_LOCK_TIMEOUT = 30


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def sqlite_database_path(db_url: str) -> Path | None:
    """Return the database file of a SQLite URL.

    Returns:
        File path, or None for other backends and in-memory databases.
    """
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite":
        return None
    if not url.database or url.database == ":memory:":
        return None
    return Path(url.database)


def get_engine(db_url: str | None = None) -> Any:
    """Create and return a SQLAlchemy engine.

    The directory of a SQLite database file is created when missing.

    Args:
        db_url: Database URL. If not provided, uses settings default.

    Returns:
        SQLAlchemy Engine instance.
    """
    if db_url is None:
        db_url = get_settings().db_url

    connect_args: dict[str, Any] = {}
    if make_url(db_url).get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = SQLITE_LOCK_TIMEOUT
        db_file = sqlite_database_path(db_url)
        if db_file is not None:
            db_file.parent.mkdir(parents=True, exist_ok=True)

    return create_engine(db_url, connect_args=connect_args, echo=False)


def get_session_factory(engine: Any | None = None) -> sessionmaker[Session]:
    """Create and return a session factory.

    Objects stay usable after commit; build records are printed by the CLI
    once the session is done.
    """
    if engine is None:
        engine = get_engine()
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Commit on success, roll back when the block raises.

    Build commands do not use this: a failed build still commits its
    failed record.

    Args:
        session_factory: Optional session factory. Creates one if not provided.

    Yields:
        SQLAlchemy Session instance.
    """
    if session_factory is None:
        session_factory = get_session_factory()

    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Any | None = None) -> None:
    """Create all tables defined by ORM models.

    Args:
        engine: SQLAlchemy engine. If not provided, creates one from settings.
    """
    # Import all models so they are registered with the metadata
    from rootfs_builder.builds import models as builds_models  # noqa: F401
    from rootfs_builder.recipes import models as recipes_models  # noqa: F401

    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(bind=engine)


__all__ = [
    "SQLITE_LOCK_TIMEOUT",
    "Base",
    "create_all_tables",
    "get_engine",
    "get_session_factory",
    "session_scope",
    "sqlite_database_path",
]
