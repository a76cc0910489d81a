"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write-side service.  Services receive a SQLAlchemy ``Session``
    and use ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit it or roll it back.  Their own atomic
      units are SAVEPOINTs (``session.begin_nested()``), so a failed
      mutation leaves the caller's earlier work intact.

Audit relevance:
    Every concrete subclass that mutates state logs the operation through
    the structured logging infrastructure.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from parts_kernel.db.base import Base
from parts_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage the outer transaction (commit/rollback).
        - Does NOT provide reporting queries -- those belong in
          ``parts_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source; defaults to the system clock.
        """
        self.session = session
        self.clock = clock or SystemClock()
