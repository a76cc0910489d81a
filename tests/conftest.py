"""
Pytest fixtures for the parts kernel test suite.

Provides:
- A session-scoped engine and schema (created once per run)
- Per-test sessions isolated by an outer transaction that is rolled back
- Service, selector and clock fixtures
- Factories for parts and requirements

Environment Variables:
- DATABASE_URL: connection URL for the test database.  If not set, a
  SQLite file in a temporary directory is used.  Tests marked
  ``postgres`` are skipped unless DATABASE_URL points at PostgreSQL.
"""

import json
import logging
import os
import threading
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from parts_kernel.config import InventoryConfig
from parts_kernel.db.base import Base
from parts_kernel.db.engine import build_engine, create_tables, drop_tables
from parts_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from parts_kernel.domain.approval_policy import policy_from_config
from parts_kernel.domain.clock import DeterministicClock
from parts_kernel.domain.dtos import TemplateRef
from parts_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from parts_kernel.models.part import PartCategory
from parts_kernel.selectors.part_selector import PartSelector
from parts_kernel.selectors.transaction_selector import TransactionSelector
from parts_kernel.services.fulfillment_engine import RequirementFulfillmentEngine
from parts_kernel.services.ledger_service import TransactionLedgerService
from parts_kernel.services.part_service import PartService
from parts_kernel.services.requirement_service import RequirementService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture parts_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, part_service):
            part_service.use_parts(...)
            logs = captured_logs()
            assert any(r["message"] == "stock_used" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("parts_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


def get_database_url(tmp_dir) -> str:
    """Database URL from the environment, or a throwaway SQLite file."""
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_dir / 'parts_kernel_test.db'}"


@pytest.fixture(scope="session")
def db_engine(tmp_path_factory):
    """Single engine for the entire test session."""
    eng = build_engine(
        get_database_url(tmp_path_factory.mktemp("db")),
        pool_size=30,
        max_overflow=20,
        pool_timeout=10,
    )
    yield eng
    eng.dispose()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end.

    Immutability listeners are registered once and remain active.
    """
    drop_tables(db_engine)
    create_tables(db_engine)
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables(db_engine)


def _delete_all_rows(engine):
    """Remove all data after tests that really commit.

    Runs as plain SQL so the ORM immutability listeners do not fire.
    """
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(text(f"DELETE FROM {table.name}"))


@pytest.fixture(autouse=True)
def _require_postgres(request, db_engine):
    """Skip ``postgres``-marked tests on any other backend."""
    if request.node.get_closest_marker("postgres") and db_engine.dialect.name != "postgresql":
        pytest.skip("requires PostgreSQL (set DATABASE_URL)")


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    Opens a dedicated connection with an outer transaction and a session
    that joins it with ``create_savepoint``.  Any ``session.commit()`` in a
    test only releases a savepoint; the outer transaction is rolled back at
    teardown, undoing every change the test made.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture(scope="function")
def pg_session_factory(db_engine, db_tables):
    """Provide a tracked session factory for sessions in concurrent threads.

    Sessions commit for real.  On teardown all tracked sessions are closed
    and the tables are emptied.
    """
    factory = sessionmaker(bind=db_engine, expire_on_commit=False)
    created_sessions = []
    lock = threading.Lock()
    closed = False

    def tracked_factory():
        with lock:
            if closed:
                raise RuntimeError("pg_session_factory closed (fixture teardown)")
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    with lock:
        closed = True

    for s in created_sessions:
        if s.is_active:
            s.rollback()
        s.close()

    _delete_all_rows(db_engine)


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


# Clock and config fixtures


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def inventory_config():
    return InventoryConfig()


# Service fixtures


@pytest.fixture
def ledger_service(session: Session, deterministic_clock, inventory_config) -> TransactionLedgerService:
    return TransactionLedgerService(
        session,
        clock=deterministic_clock,
        approval_policy=policy_from_config(inventory_config),
    )


@pytest.fixture
def part_service(session: Session, deterministic_clock, inventory_config, ledger_service) -> PartService:
    return PartService(session, clock=deterministic_clock, config=inventory_config, ledger=ledger_service)


@pytest.fixture
def requirement_service(session: Session, deterministic_clock) -> RequirementService:
    return RequirementService(session, deterministic_clock)


@pytest.fixture
def fulfillment_engine(session: Session) -> RequirementFulfillmentEngine:
    return RequirementFulfillmentEngine(session)


# Selector fixtures


@pytest.fixture
def part_selector(session: Session) -> PartSelector:
    return PartSelector(session)


@pytest.fixture
def transaction_selector(session: Session) -> TransactionSelector:
    return TransactionSelector(session)


# =============================================================================
# Data factories
# =============================================================================


@pytest.fixture
def create_part(part_service: PartService, test_actor_id: UUID):
    """Factory fixture to create parts with unique numbers."""
    counter = iter(range(1, 100_000))

    def _create_part(
        quantity_on_hand: int = 0,
        part_number: str | None = None,
        name: str | None = None,
        category: PartCategory = PartCategory.OTHER,
        **attributes,
    ):
        n = next(counter)
        return part_service.create_part(
            part_number or f"TP-{n:04d}",
            name or f"Test part {n}",
            category,
            quantity_on_hand=quantity_on_hand,
            actor_id=test_actor_id,
            **attributes,
        )

    return _create_part


@pytest.fixture
def project_template() -> TemplateRef:
    return TemplateRef.project(uuid4())


@pytest.fixture
def create_requirement(requirement_service: RequirementService, project_template: TemplateRef, test_actor_id):
    """Factory fixture for requirements on ``project_template``."""

    def _create_requirement(part_id: UUID, quantity_required: int, **kwargs):
        kwargs.setdefault("project_template_id", project_template.template_id)
        return requirement_service.create_requirement(
            part_id,
            quantity_required,
            actor_id=test_actor_id,
            **kwargs,
        )

    return _create_requirement
