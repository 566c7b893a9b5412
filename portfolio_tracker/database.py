# portfolio_tracker/database.py
"""
Database engine and sessions.

- SQLite (test only): one shared in-memory connection (StaticPool)
- PostgreSQL: QueuePool tuned by DB_POOL_* settings; every connection gets
  a statement_timeout equal to the request deadline, so a stuck query
  cannot outlive the request that issued it

Ledger writes are all-or-nothing: services flush inside the request's
session and commit once, or roll back on any error.
"""

import logging
from collections.abc import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from portfolio_tracker.config import settings

logger = logging.getLogger(__name__)


def _create_engine() -> Engine:
    if settings.is_sqlite:
        logger.info("Configuring SQLite database (test mode)")
        return create_engine(
            settings.database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=settings.debug,
        )

    logger.info(
        f"Configuring PostgreSQL pool: size={settings.db_pool_size}, "
        f"max_overflow={settings.db_pool_max_overflow}, recycle={settings.db_pool_recycle}s"
    )
    pg_engine = create_engine(
        settings.database_url,
        poolclass=QueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_pool_max_overflow,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_timeout=settings.request_timeout_seconds,
        echo=settings.debug,
    )
    event.listen(pg_engine, "connect", _set_statement_timeout)
    return pg_engine


def _set_statement_timeout(dbapi_connection, connection_record) -> None:
    timeout_ms = int(settings.request_timeout_seconds * 1000)
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute(f"SET statement_timeout = {timeout_ms}")
    finally:
        cursor.close()


engine = _create_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Request-scoped session. Services commit; anything left open is
    rolled back when the session closes.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ping(db: Session) -> None:
    """Round-trip to the database. Raises the driver error when unreachable."""
    db.execute(text("SELECT 1"))
