from __future__ import annotations

import logging
from collections.abc import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from cadence.core.settings import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


engine: Engine | None = None
SessionLocal: sessionmaker[Session] | None = None


def _enable_sqlite_wal(dbapi_connection, _connection_record) -> None:
    # The API process and the worker processes write the same database file.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def configure_engine(database_url: str) -> None:
    global engine, SessionLocal
    is_sqlite = database_url.startswith("sqlite")
    logger.debug("Configuring database engine url=%s", database_url)
    engine = create_engine(database_url, connect_args={"check_same_thread": False} if is_sqlite else {})
    if is_sqlite:
        event.listen(engine, "connect", _enable_sqlite_wal)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    logger.info("Database engine configured dialect=%s", engine.dialect.name)


configure_engine(get_settings().database_url)


def init_db() -> None:
    import cadence.models  # noqa: F401  registers every table on Base.metadata

    if engine is None:
        raise RuntimeError("Database engine is not configured")
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready tables=%s", len(Base.metadata.tables))


def open_session() -> Session:
    """Open a session from the currently configured factory.

    This is the ``session_factory`` handed to listeners, workers and the
    gateway; it is resolved at call time so tests can reconfigure the engine.
    """
    if SessionLocal is None:
        raise RuntimeError("Database session factory is not configured")
    return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    db = open_session()
    try:
        yield db
    finally:
        db.close()
