"""Database engine, session factory and schema bootstrap."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from kube_snapshot.errors import StoreError
from kube_snapshot.storage.schema import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url: str | URL, **kwargs: Any) -> Engine:
    """Create an engine; SQLite gets cross-thread access and enforced foreign keys."""
    is_sqlite = str(url).startswith("sqlite")
    if is_sqlite:
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
    engine = create_engine(url, **kwargs)
    if is_sqlite:
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


class Database:
    """Wraps the engine and session factory shared by the store and retention manager."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.sessions: sessionmaker[Session] = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def connect(cls, url: str | URL, create_schema: bool = True, **kwargs: Any) -> Database:
        """Open the database, verify connectivity and create missing tables."""
        db = cls(make_engine(url, **kwargs))
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            db.close()
            raise StoreError(f"failed to connect to database: {e}") from e
        if create_schema:
            db.init_schema()
        logger.info("Database connection established (%s)", db.engine.url.render_as_string(hide_password=True))
        return db

    def init_schema(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"failed to create tables: {e}") from e
        logger.info("Database tables created/verified")

    def close(self) -> None:
        logger.info("Closing database connection")
        self.engine.dispose()
