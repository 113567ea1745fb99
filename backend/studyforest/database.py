"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file by default) and provides the
small helpers used by the application, scripts and tests: table creation,
the FastAPI session dependency and the `transaction` scope that services
wrap their writes in.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session

from .config import settings

logger = logging.getLogger("studyforest.db")


def _make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=settings.SQL_ECHO, connect_args=connect_args)


engine = _make_engine(settings.DATABASE_URL)


@event.listens_for(engine, "connect")
def _set_session_timezone(dbapi_conn, connection_record):
    """Pin the server-side session timezone once per new connection.

    SQLite has no session timezone; timestamps are written by the
    application in the configured zone instead.
    """
    dialect = engine.dialect.name
    if dialect == "mysql":
        stmt = "SET time_zone = %s"
    elif dialect == "postgresql":
        stmt = "SET TIME ZONE %s"
    else:
        return
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute(stmt, (settings.DB_SESSION_TIMEZONE,))
    finally:
        cursor.close()
    logger.debug("session timezone set to %s", settings.DB_SESSION_TIMEZONE)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    This function is intended for local development and lightweight
    scripts; production deployments should rely on a proper migration
    tool instead.
    """
    from . import models  # noqa: F401  (registers the tables)
    SQLModel.metadata.create_all(engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes. Objects stay loaded after commit so services
    can return them for serialization.
    """
    with Session(engine, expire_on_commit=False) as session:
        yield session


@contextmanager
def transaction(session: Session) -> Iterator[Session]:
    """Run a unit of work atomically on `session`.

    Commits when the block exits normally. Any exception rolls back every
    change made inside the block and is re-raised unchanged.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
