"""Engine and session handling for the local store.

Every orchestrator action runs inside exactly one `Database.transaction()`
block, so a work item row and the ledger entry describing its change are
committed together or not at all.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from taskbridge.orchestrator.store.models import Base

logger = logging.getLogger(__name__)


def _on_sqlite_connect(dbapi_connection: Any, _connection_record: Any) -> None:
    # Take transaction control away from pysqlite so SAVEPOINT works and the
    # foreign_keys pragma runs outside a transaction.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _on_sqlite_begin(connection: Any) -> None:
    # Take the write lock up front; lock upgrades from a shared lock can
    # deadlock between worker threads instead of waiting on the busy timeout.
    connection.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Owns the engine and hands out transaction-scoped sessions."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        # In-memory SQLite lives on one shared connection; it cannot serve
        # concurrent workers.
        self.single_connection = url in {"sqlite://", "sqlite:///:memory:"}
        kwargs: dict[str, Any] = {"echo": echo, "future": True}
        if url.startswith("sqlite"):
            # Worker threads each open their own session; the busy timeout lets
            # concurrent writers queue instead of failing with "database is locked".
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
            if self.single_connection:
                kwargs["poolclass"] = StaticPool

        self.engine: Engine = create_engine(url, **kwargs)
        if url.startswith("sqlite"):
            event.listen(self.engine, "connect", _on_sqlite_connect)
            event.listen(self.engine, "begin", _on_sqlite_begin)

        # Objects stay readable after commit; callers never lazy-load across sessions.
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.debug("Database schema ensured", extra={"url": self._safe_url()})

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Yield a session inside one transaction; commit on success, roll back on error."""

        with self._sessions.begin() as session:
            yield session

    @contextmanager
    def read(self) -> Iterator[Session]:
        """Yield a session for read-only queries."""

        session = self._sessions()
        try:
            yield session
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()

    def _safe_url(self) -> str:
        return self.engine.url.render_as_string(hide_password=True)
