"""SQLAlchemy access to the panel's SQLite database.

The dashboard owns this file and keeps writing to it while the guard runs.
Every connection therefore uses WAL (dashboard reads never block on the
snapshot rewrite) and waits up to ``busy_timeout_ms`` for a write lock.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from inbound_guard.config.defaults import DEFAULT_DB_BUSY_TIMEOUT_MS
from inbound_guard.utils.logger import get_logger

logger = get_logger(__name__)

Base = declarative_base()


def create_panel_engine(
    db_path: str, *, busy_timeout_ms: int = DEFAULT_DB_BUSY_TIMEOUT_MS, echo: bool = False
) -> Engine:
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    timeout = busy_timeout_ms / 1000
    engine = create_engine(
        f"sqlite:///{path}",
        echo=echo,
        pool_pre_ping=True,
        # One scheduler worker plus the odd CLI read
        pool_size=2,
        max_overflow=2,
        pool_timeout=timeout + 5,
        connect_args={"timeout": timeout},
    )

    @event.listens_for(engine, "connect")
    def _apply_pragmas(dbapi_conn, connection_record):  # noqa: ANN001
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        finally:
            cursor.close()

    return engine


def get_session_factory(
    db_path: str, *, busy_timeout_ms: int = DEFAULT_DB_BUSY_TIMEOUT_MS, echo: bool = False
) -> sessionmaker[Session]:
    """Return a sessionmaker bound to a fresh panel engine for ``db_path``."""
    return sessionmaker(
        bind=create_panel_engine(db_path, busy_timeout_ms=busy_timeout_ms, echo=echo),
        autoflush=False,
        expire_on_commit=False,
    )


def init_schema(factory: sessionmaker[Session]) -> None:
    """Create the guard's tables when the panel has not created them yet."""
    from inbound_guard.db import models  # noqa: F401

    Base.metadata.create_all(factory.kw["bind"])


def dispose_session_factory(factory: sessionmaker[Session]) -> None:
    factory.kw["bind"].dispose()


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Commit on success, roll back and re-raise on any error."""
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.debug(
            "Rolled back panel transaction",
            event="guard.db.rollback",
            error_type=type(e).__name__,
        )
        raise
    finally:
        session.close()
