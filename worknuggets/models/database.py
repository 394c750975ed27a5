"""Database connection management.

``DatabaseManager`` owns one engine and a session factory. Sessions are
handed out through :meth:`DatabaseManager.get_session`, which commits on a
clean exit and rolls back on error.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from . import create_database_engine, create_tables

logger = logging.getLogger(__name__)


def _ensure_sqlite_parent(database_url: str) -> None:
    if not database_url.startswith("sqlite:///"):
        return
    path = database_url[len("sqlite:///"):]
    if not path or path == ":memory:":
        return
    Path(path).parent.mkdir(parents=True, exist_ok=True)


class DatabaseManager:
    """Engine plus session factory for the pipeline tables."""

    def __init__(self, database_url: str | None = None, create: bool = True):
        if database_url is None:
            from worknuggets import config

            database_url = config.DATABASE_URL

        self.database_url = database_url
        _ensure_sqlite_parent(database_url)
        self.engine = create_database_engine(database_url)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        if create:
            create_tables(self.engine)

        # Avoid logging credentials embedded in the URL
        logger.debug("DatabaseManager ready for %s", database_url.split("@")[-1])

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """Yield a session; commit on success, roll back on error."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        self.engine.dispose()

    def __enter__(self) -> "DatabaseManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def safe_session_execute(
    session: Session, statement: Any, params: dict[str, Any] | None = None
):
    """Execute ``statement`` and roll the session back if it fails.

    Strings are wrapped in :func:`sqlalchemy.text`. The original error is
    re-raised after the rollback so callers can map it.
    """
    if isinstance(statement, str):
        statement = text(statement)

    try:
        return session.execute(statement, params or {})
    except SQLAlchemyError as exc:
        logger.error("Statement failed, rolling back: %s", exc)
        session.rollback()
        raise
