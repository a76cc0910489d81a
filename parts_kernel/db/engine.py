"""
Module: parts_kernel.db.engine
Responsibility: SQLAlchemy engine construction, session factories, and
    transactional scope utilities.  Nothing here is process-global: callers
    build an engine, own the factory bound to it, and pass it along.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from services/, selectors/, domain/, or outer layers
    (except for create_tables/drop_tables which import models).

Invariants enforced:
    - PostgreSQL is the production backend: READ COMMITTED isolation with
      explicit row-level locking (SELECT ... FOR UPDATE) around every stock
      mutation.
    - SQLite is accepted for local runs and tests.  The pysqlite driver is
      switched to explicit BEGIN so that SAVEPOINTs nest correctly, and
      foreign keys are enforced.
    - Connection pooling via QueuePool with pre-ping on PostgreSQL.

Failure modes:
    - Connection pool exhaustion if pool_size + max_overflow is exceeded.

Audit relevance:
    All database transactions flow through sessions created by this module.
    session_scope() gives atomic commit-or-rollback semantics, so a stock
    change and its ledger entry are never committed apart.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from parts_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy emit BEGIN itself so nested SAVEPOINTs behave."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


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
    Create an engine for the given URL.

    PostgreSQL gets a QueuePool at READ COMMITTED; SQLite gets the
    savepoint-friendly driver hooks.
    """
    dialect = make_url(database_url).get_backend_name()

    if dialect == "sqlite":
        engine = create_engine(database_url, echo=echo)
        _enable_sqlite_savepoints(engine)
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


def session_factory(engine: Engine) -> sessionmaker[Session]:
    """
    Build a session factory bound to ``engine``.

    The caller owns the factory and passes it to whatever needs sessions;
    multi-threaded callers give each thread its own session from it.
    """
    configure_logging()
    logger.info("session_factory_created", extra={"dialect": engine.dialect.name})
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    On normal exit the session is committed and closed.  On exception it is
    rolled back and closed, and the exception is re-raised.

    Usage:
        factory = session_factory(build_engine(url))
        with session_scope(factory) as session:
            PartService(session).restock(part_id, 20)
            # Commits on successful exit, rolls back on exception
    """
    session = factory()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """Create all inventory tables on ``engine``."""
    from parts_kernel.db.base import Base
    import parts_kernel.models  # noqa: F401  (registers tables on Base.metadata)

    Base.metadata.create_all(engine)


def drop_tables(engine: Engine) -> None:
    """
    Drop all tables. Use with caution - primarily for testing.
    """
    from parts_kernel.db.base import Base
    import parts_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)
