"""
Module: billing_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  This is the single point of database
    connection configuration for the kernel.
Architecture position: Kernel > DB.  May import from db/base.py and the
    exception hierarchy.  MUST NOT import from services/, selectors/ or
    domain/ (except create_tables, which imports the models so that
    Base.metadata is complete).

Invariants enforced:
    - PostgreSQL is the production backend: READ COMMITTED isolation with
      explicit row-level locking (SELECT ... FOR UPDATE) where stronger
      guarantees are needed (sequence counters, linkage checks).
    - SQLite is supported for local runs and tests.  Every transaction is
      opened with BEGIN IMMEDIATE so writers serialize at transaction start
      (SQLite has no row locks), foreign keys are switched on, and
      SAVEPOINT works under pysqlite.
    - One request = one transaction: session_scope() commits on success and
      rolls back and re-raises on any exception.  A unique-constraint
      violation surfacing at commit is re-raised as a retryable
      DuplicateIdentifierError.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory are called
      before init_engine_from_url().
    - DuplicateIdentifierError from run_in_transaction() once max_attempts
      is exhausted.
"""

import atexit
import time
from contextlib import contextmanager
from typing import Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from billing_kernel.exceptions import ConflictError, DuplicateIdentifierError
from billing_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

T = TypeVar("T")

# Module-level engine and session factory
_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_transaction_hooks(engine: Engine) -> None:
    """Take over transaction control from pysqlite.

    pysqlite defers BEGIN until the first DML statement, which breaks
    SAVEPOINT and lets two readers race into the same max+1.  Emitting
    BEGIN IMMEDIATE ourselves makes SQLite take the write lock up front.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create an Engine for the given URL without registering it globally.

    Used directly by tests that need a second, independent engine (e.g.
    multi-threaded allocation against a file-backed database).
    """
    if database_url.startswith("sqlite"):
        options: dict = {
            "echo": echo,
            "connect_args": {"check_same_thread": False, "timeout": pool_timeout},
        }
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            options["poolclass"] = StaticPool
        engine = create_engine(database_url, **options)
        _install_sqlite_transaction_hooks(engine)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """
    Initialize the module engine and session factory.

    Preconditions: database_url is a PostgreSQL or SQLite connection string.
    Postconditions: get_engine/get_session/get_session_factory use this
        engine.  A second call replaces the first.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

    _engine = build_engine(database_url, echo=echo, **pool_options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )

    return _engine


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """
    Get a new session instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory.

    Useful for multi-threaded callers where each thread needs its own session.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when an IntegrityError was caused by a UNIQUE constraint."""
    orig = exc.orig
    # psycopg2 exposes the SQLSTATE; 23505 is unique_violation
    if getattr(orig, "pgcode", None) == "23505":
        return True
    return "unique" in str(orig).lower()


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, the session is committed and closed.
        On exception, the session is rolled back and closed and the
        exception is re-raised.  A unique violation at commit time is
        re-raised as DuplicateIdentifierError.

    Usage:
        with session_scope() as session:
            service = build_consolidation_service(session, config)
            service.create_invoice(request)
    """
    session = session_factory() if session_factory is not None else get_session()
    logger.debug("transaction_started")
    try:
        yield session
        try:
            session.commit()
        except IntegrityError as exc:
            if not is_unique_violation(exc):
                raise
            raise DuplicateIdentifierError("row", str(exc.orig)) from exc
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def run_in_transaction(
    work: Callable[[Session], T],
    session_factory: sessionmaker[Session] | None = None,
    max_attempts: int = 3,
    retry_on: tuple[type[ConflictError], ...] = (DuplicateIdentifierError,),
) -> T:
    """
    Run ``work(session)`` in its own transaction, retrying on conflicts.

    Each attempt gets a fresh session so that numbers are re-read after
    the competing transaction committed.  Conflicts not listed in
    ``retry_on`` (and non-conflict errors) propagate immediately.

    Raises:
        The last conflict once max_attempts is exhausted.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            with session_scope(session_factory) as session:
                return work(session)
        except retry_on as exc:
            if not exc.retryable or attempt == max_attempts:
                raise
            logger.warning(
                "transaction_conflict_retry",
                extra={
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "code": exc.code,
                },
            )
            time.sleep(0.05 * attempt)
    raise RuntimeError("unreachable")  # pragma: no cover


def create_tables(engine: Engine | None = None) -> None:
    """
    Create all kernel tables.

    Imports every model module first so Base.metadata is complete.
    """
    from billing_kernel.db.base import Base
    import billing_kernel.models  # noqa: F401
    import billing_kernel.services.sequence_service  # noqa: F401

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """
    Drop all tables. Use with caution - primarily for testing.
    """
    from billing_kernel.db.base import Base
    import billing_kernel.models  # noqa: F401
    import billing_kernel.services.sequence_service  # noqa: F401

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """
    Reset the engine and session factory.

    Useful for test cleanup.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    """Dispose the engine on process exit to release pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)


def is_postgres() -> bool:
    """Check if the current engine is PostgreSQL."""
    if _engine is None:
        return False
    return _engine.dialect.name == "postgresql"
