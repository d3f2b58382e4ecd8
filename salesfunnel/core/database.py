from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from typing import Any, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from salesfunnel.core.config import get_settings
from salesfunnel.metrics import observe_transaction_retry


logger = logging.getLogger("salesfunnel.db")

T = TypeVar("T")

# deadlock_detected, serialization_failure
_RETRYABLE_SQLSTATES = {"40P01", "40001"}


class Base(DeclarativeBase):
    pass


def _configure_sqlite(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first DML statement, which lets two writers hold
    # SHARED locks and then deadlock on upgrade. Take the write lock at BEGIN instead.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(connection):  # type: ignore[no-untyped-def]
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, **kwargs: Any) -> Engine:
    if url.startswith("sqlite"):
        connect_args = dict(kwargs.pop("connect_args", {}))
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", get_settings().sqlite_busy_timeout_seconds)
        engine = create_engine(url, connect_args=connect_args, **kwargs)
        _configure_sqlite(engine)
        return engine
    return create_engine(url, pool_pre_ping=True, **kwargs)


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False)


engine = build_engine(get_settings().database_url)
SessionLocal = build_sessionmaker(engine)


def get_db() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def is_retryable_error(exc: DBAPIError) -> bool:
    original = getattr(exc, "orig", None)
    sqlstate = getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    message = str(original if original is not None else exc).lower()
    return "deadlock detected" in message or "database is locked" in message


def run_in_transaction(session: Session, work: Callable[[], T], *, operation: str) -> T:
    """Run ``work`` and commit it as one unit.

    Any failure rolls the whole unit back. Deadlock-class failures are re-run up to
    ``deadlock_retry_attempts`` times; everything else propagates unchanged.
    """
    retries = max(get_settings().deadlock_retry_attempts, 0)
    attempt = 0
    while True:
        attempt += 1
        try:
            result = work()
            session.commit()
        except DBAPIError as exc:
            session.rollback()
            if attempt > retries or not is_retryable_error(exc):
                raise
            observe_transaction_retry(operation)
            logger.warning(
                "transaction.retry",
                extra={"operation": operation, "attempt": attempt, "error": str(exc)},
            )
            continue
        except Exception:
            session.rollback()
            raise
        return result
