"""
Database connection and session management.
Uses SQLAlchemy for Postgres connections (SQLite for local development and tests).
"""

from contextlib import contextmanager
import time

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from storefront.config import get_config
from storefront.errors import TransactionTimeoutError
from storefront.logger import get_logger

logger = get_logger("database")

# Base class for all our database models (must be defined before engine)
Base = declarative_base()

# SQLSTATEs Postgres uses for statement_timeout and lock_timeout
_PG_TIMEOUT_CODES = {"57014", "55P03"}


def make_engine(database_url: str, lock_timeout_seconds: float = 10.0):
    """
    Create an engine with the pool and connection settings the order core needs.

    SQLite gets a busy timeout so concurrent writers queue on the database lock
    instead of failing, and foreign keys are switched on so ON DELETE rules apply.
    The busy timeout is the transaction budget: a writer never waits on the lock
    longer than its transaction is allowed to run.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": lock_timeout_seconds},
        )

        @event.listens_for(engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    # pool_pre_ping ensures connections are alive before using them
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20
    )


engine = make_engine(get_config().database_url, get_config().transaction_timeout_seconds)

# Session is the gateway to interact with the database
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None) -> None:
    """Create tables if they don't exist. In production, use migrations instead."""
    # Import models so they register on Base.metadata
    from storefront import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    """
    Dependency function that provides a database session.
    Automatically closes the session after the request is done.

    Usage in FastAPI:
        @router.post("/endpoint")
        def my_endpoint(db: Session = Depends(get_db)):
            # use db here
            pass
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _is_timeout(exc: OperationalError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in _PG_TIMEOUT_CODES:
        return True
    return "database is locked" in str(orig)


def _apply_timeouts(db: Session, timeout_seconds: float) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    timeout_ms = int(timeout_seconds * 1000)
    # SET does not accept bind parameters; timeout_ms is an int we computed
    db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))
    db.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))


@contextmanager
def transaction(db: Session, timeout_seconds: float):
    """
    Run a unit of work that commits as a whole or not at all.

    Commits on success and rolls back on any exception. The transaction is
    bounded by timeout_seconds: Postgres enforces it per statement and per lock
    wait, and the elapsed time is checked again before commit so a slow unit
    of work is rolled back rather than committed late.

    Raises:
        TransactionTimeoutError: the budget was exceeded; nothing was committed.
    """
    started = time.monotonic()
    try:
        _apply_timeouts(db, timeout_seconds)
        yield db
        elapsed = time.monotonic() - started
        if elapsed > timeout_seconds:
            logger.warning(f"Transaction took {elapsed:.2f}s (budget {timeout_seconds:g}s), rolling back")
            raise TransactionTimeoutError(timeout_seconds)
        db.commit()
    except OperationalError as e:
        db.rollback()
        if _is_timeout(e):
            logger.warning(f"Transaction aborted by database timeout: {e.orig}")
            raise TransactionTimeoutError(timeout_seconds) from e
        raise
    except Exception:
        db.rollback()
        raise
