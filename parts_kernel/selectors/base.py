"""
Module: parts_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.  Selectors
    form the "Q" side of the CQRS-lite split: stock reports, ledger history,
    spending and usage roll-ups.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/dtos.py.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(), delete(),
      commit(), or flush().
    - DTO return convention: selectors return frozen dataclasses or plain
      values, never ORM instances.
    - Session ownership: the caller owns the session and its transaction.

Failure modes:
    - A database error inside a query is logged as ``query_failed`` (with
      the exception) and the query returns its empty value: [], None, 0.
      Each query runs in its own SAVEPOINT, so a failure rolls back only
      that savepoint and the caller's unit of work stays usable.
      Reporting callers degrade to "no data" instead of crashing.
"""

from abc import ABC
from collections.abc import Callable
from typing import Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from parts_kernel.db.base import Base
from parts_kernel.logging_config import get_logger

ModelType = TypeVar("ModelType", bound=Base)
R = TypeVar("R")

logger = get_logger("selectors")


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Subclasses wrap each public query in ``_query()`` so failures are
    logged and mapped to the query's empty value.
    """

    def __init__(self, session: Session):
        """
        Args:
            session: SQLAlchemy session for database operations.
        """
        self.session = session

    def _query(self, name: str, run: Callable[[], R], empty: R) -> R:
        # A failed statement aborts the enclosing transaction on PostgreSQL;
        # the savepoint confines that to this query.
        savepoint = self.session.begin_nested()
        try:
            with savepoint:
                return run()
        except SQLAlchemyError:
            logger.error(
                "query_failed",
                extra={"selector": type(self).__name__, "query": name},
                exc_info=True,
            )
            return empty
