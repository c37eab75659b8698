"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Any, Generator, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from studio.core.config import settings

logger = logging.getLogger(__name__)

_DEFAULT_POOL_KWARGS: dict[str, Any] = {
    "pool_pre_ping": True,
    "future": True,
}


def _install_sqlite_locking(engine: Engine) -> None:
    """
    Make every SQLite transaction take the database write lock up front.

    pysqlite defers BEGIN until the first write, which lets two transactions
    read the same row and both decide to mutate it. Emitting BEGIN IMMEDIATE
    ourselves serializes writers the way SELECT ... FOR UPDATE does on Postgres.
    """

    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        connection_record.info["connect_time"] = datetime.now()
        logger.debug("SQLite connection established")

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(db_url: Optional[str] = None, *, echo: Optional[bool] = None) -> Engine:
    """Create an engine configured for the scheduling store's locking model."""
    url = db_url or settings.database_url
    kwargs = dict(_DEFAULT_POOL_KWARGS)
    kwargs["echo"] = settings.database_echo if echo is None else echo

    if url.startswith("sqlite"):
        kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": settings.sqlite_busy_timeout_seconds,
        }
        new_engine = create_engine(url, **kwargs)
        _install_sqlite_locking(new_engine)
        return new_engine

    kwargs.update({"pool_size": 5, "max_overflow": 10, "pool_timeout": 5, "pool_recycle": 300})
    new_engine = create_engine(url, **kwargs)

    @event.listens_for(new_engine, "connect")
    def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
        connection_record.info["connect_time"] = datetime.now()
        logger.debug("Database connection established")

    return new_engine


engine: Engine = build_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db_session() -> Iterator[Session]:
    """Context manager for short-lived DB operations."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def create_schema(bind: Optional[Engine] = None) -> None:
    """Create all tables known to the metadata (used by tests and local setups)."""
    import studio.models  # noqa: F401  registers every table on Base.metadata

    Base.metadata.create_all(bind=bind or engine)


__all__ = [
    "Base",
    "SessionLocal",
    "build_engine",
    "create_schema",
    "engine",
    "get_db",
    "get_db_session",
]
