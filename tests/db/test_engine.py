"""Engine construction and the transactional session scope."""

import pytest
from sqlalchemy import text

from parts_kernel.db.engine import (
    build_engine,
    create_tables,
    session_factory,
    session_scope,
)
from parts_kernel.services.part_service import PartService


@pytest.fixture
def scratch_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'scope.db'}")
    create_tables(engine)
    yield session_factory(engine)
    engine.dispose()


def test_factories_are_independent(tmp_path):
    first = build_engine(f"sqlite:///{tmp_path / 'a.db'}")
    second = build_engine(f"sqlite:///{tmp_path / 'b.db'}")
    with session_factory(first)() as a, session_factory(second)() as b:
        assert a.get_bind() is first
        assert b.get_bind() is second
    first.dispose()
    second.dispose()


def test_sqlite_enforces_foreign_keys(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'fk.db'}")
    with engine.connect() as conn:
        assert conn.execute(text("PRAGMA foreign_keys")).scalar_one() == 1
    engine.dispose()


def test_sqlite_savepoints_nest(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'sp.db'}")
    with engine.connect() as conn:
        conn.execute(text("CREATE TABLE t (x INTEGER)"))
        conn.commit()
        outer = conn.begin()
        conn.execute(text("INSERT INTO t VALUES (1)"))
        inner = conn.begin_nested()
        conn.execute(text("INSERT INTO t VALUES (2)"))
        inner.rollback()
        outer.commit()
        assert conn.execute(text("SELECT x FROM t")).scalars().all() == [1]
    engine.dispose()


def test_session_scope_commits(scratch_factory):
    with session_scope(scratch_factory) as session:
        part = PartService(session).create_part("SCOPE-1", "Committed", quantity_on_hand=3)

    with session_scope(scratch_factory) as session:
        assert PartService(session).get_part(part.id).quantity_on_hand == 3


def test_session_scope_rolls_back_on_error(scratch_factory, captured_logs):
    with pytest.raises(ValueError):
        with session_scope(scratch_factory) as session:
            PartService(session).create_part("SCOPE-2", "Abandoned")
            raise ValueError("operator cancelled")

    with session_scope(scratch_factory) as session:
        assert PartService(session).find_part_by_number("SCOPE-2") is None
    assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())
