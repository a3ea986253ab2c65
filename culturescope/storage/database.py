"""
Database engine and session management.

Wraps a SQLAlchemy engine and session factory so the stores can be pointed at
any database URL (SQLite file in development, in-memory SQLite in tests,
PostgreSQL in production).

Usage:
    from culturescope.storage.database import Database

    db = Database("sqlite:///./culturescope.db")
    db.create_all()
    with db.session() as session:
        session.add(row)
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from culturescope.storage.models import Base

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the persistence layer fails to read or write."""
    pass


class Database:
    """Engine + session factory with a transactional session helper."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        kwargs: dict = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise every session sees an empty database
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **kwargs)
        self._sessions = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            logger.error(
                "database.init_failed",
                extra={"action": "database.init_failed", "error": str(e)},
            )
            raise StoreError(f"Failed to initialize database: {e}") from e
        logger.info("database.initialized", extra={"action": "database.initialized"})

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Yield a session inside a transaction.

        Commits on success, rolls back on any exception. SQLAlchemy errors are
        re-raised as StoreError so callers deal with one exception type.
        """
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(
                "database.transaction_failed",
                extra={"action": "database.transaction_failed", "error": str(e)},
            )
            raise StoreError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
