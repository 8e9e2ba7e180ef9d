"""
Database engine and session management for the classroom economy.
This module is separate from the models to avoid circular imports.
Uses SQLModel with SQLite (WAL mode) by default; any SQLAlchemy URL works.

Write sessions are serialised: SQLite takes the write lock up front with
BEGIN IMMEDIATE, other backends run at the configured isolation level.
"""

from contextlib import contextmanager
from typing import Iterator, Optional
import logging

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import SQLModel, Session, create_engine
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from config import get_settings
from errors import ConcurrentModification, Unavailable

logger = logging.getLogger(__name__)

# Global engine instance
_engine: Optional[Engine] = None

# SQLSTATE for serialization failures (PostgreSQL and friends)
_SERIALIZATION_FAILURE = "40001"


def get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        if settings.is_sqlite:
            _engine = create_engine(
                settings.database_url,
                echo=settings.db_echo,
                connect_args={
                    "check_same_thread": False,  # Allow use across threads
                }
            )
            _install_sqlite_hooks(_engine, settings.db_busy_timeout_ms)
        else:
            _engine = create_engine(
                settings.database_url,
                echo=settings.db_echo,
                isolation_level=settings.db_isolation_level,
                pool_pre_ping=True,
            )
        logger.info(f"Database engine created for {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def _install_sqlite_hooks(engine: Engine, busy_timeout_ms: int):
    """
    Enable WAL mode and take over transaction control from pysqlite.

    pysqlite defers BEGIN until the first write, which lets two writers read
    the same balance. Emitting BEGIN IMMEDIATE ourselves acquires the write
    lock before anything is read.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get("snapshot_read"):
            conn.exec_driver_sql("BEGIN DEFERRED")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_db():
    """Initialize the database and create all tables."""
    import models  # noqa: F401  (registers every table on SQLModel.metadata)

    engine = get_engine()
    SQLModel.metadata.create_all(engine)
    logger.info("Database initialized")


def reset_engine():
    """Dispose of the current engine so the next call rebuilds it from settings."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


def get_session() -> Session:
    """Get a new database session (caller manages the transaction)."""
    return Session(get_engine(), expire_on_commit=False)


def _translate_store_error(exc: Exception) -> Exception:
    """Map a SQLAlchemy failure onto the engine's error kinds."""
    if isinstance(exc, IntegrityError):
        return ConcurrentModification(f"Conflicting concurrent update: {exc.orig}")
    if getattr(exc.orig, "pgcode", None) == _SERIALIZATION_FAILURE:
        return ConcurrentModification("Transaction could not be serialized; retry the request")
    return Unavailable(f"Store unavailable: {exc.orig}")


@contextmanager
def write_session() -> Iterator[Session]:
    """
    Open one atomic unit of work.

    Everything done through the yielded session commits together or not at
    all. Engine errors raised inside propagate unchanged after rollback.
    """
    session = get_session()
    try:
        with session.begin():
            yield session
    except (IntegrityError, OperationalError) as e:
        logger.error(f"Write transaction failed: {e}")
        raise _translate_store_error(e) from e
    finally:
        session.close()


@contextmanager
def read_session() -> Iterator[Session]:
    """Open a snapshot session for read-only projections."""
    session = Session(
        get_engine().execution_options(snapshot_read=True),
        expire_on_commit=False,
    )
    try:
        yield session
    except OperationalError as e:
        logger.error(f"Read failed: {e}")
        raise Unavailable(f"Store unavailable: {e.orig}") from e
    finally:
        session.close()


# Read projections are safe to retry; money-moving operations never are.
retry_read = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
    retry=retry_if_exception_type(Unavailable),
    reraise=True
)

# Sweep rows re-validate inside their own transaction, so a conflicting
# writer only costs another attempt.
retry_sweep_row = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
    retry=retry_if_exception_type((ConcurrentModification, Unavailable)),
    reraise=True
)
