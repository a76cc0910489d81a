"""
Module: parts_kernel.models.part_transaction
Responsibility: ORM persistence for the append-only stock movement ledger.
    One row per quantity change on a Part: what moved, in which direction,
    why, at what cost, and the part's balance right after the movement.
Architecture position: Kernel > Models.  May import from db/base.py and
    models/part.py.  MUST NOT import from services/, selectors/, domain/,
    or outer layers.

Invariants enforced:
    - quantity > 0; direction comes from transaction_type, never from sign.
    - balance_after >= 0.
    - (part_id, sequence) is unique: sequence is the entry's position in the
      part's ledger, allocated under the part row lock, starting at 1.
    - Append-only: only approval fields may change after insert, and
      approval is one-way (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate (part_id, sequence) if two writers raced
      past the row lock (prevented by PartService locking).
    - ImmutabilityViolationError on any edit or delete of a recorded entry.

Audit relevance:
    Replaying a part's entries in sequence order from zero reproduces every
    balance_after and the part's current quantity_on_hand.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from parts_kernel.db.base import TrackedBase, UUIDString


class TransactionType(str, Enum):
    """Kind of stock movement.  Each kind has a fixed direction."""

    INITIAL_STOCK = "INITIAL_STOCK"
    PURCHASE = "PURCHASE"
    DONATION = "DONATION"
    RETURN = "RETURN"
    FOUND = "FOUND"
    ADJUSTMENT_POSITIVE = "ADJUSTMENT_POSITIVE"
    TRANSFER_IN = "TRANSFER_IN"

    USAGE = "USAGE"
    DAMAGED = "DAMAGED"
    LOST = "LOST"
    DISPOSED = "DISPOSED"
    ADJUSTMENT_NEGATIVE = "ADJUSTMENT_NEGATIVE"
    TRANSFER_OUT = "TRANSFER_OUT"

    @property
    def quantity_multiplier(self) -> int:
        return 1 if self in INCOMING_TYPES else -1

    @property
    def is_incoming(self) -> bool:
        return self in INCOMING_TYPES

    @property
    def is_outgoing(self) -> bool:
        return self in OUTGOING_TYPES

    @property
    def is_adjustment(self) -> bool:
        return self in ADJUSTMENT_TYPES


INCOMING_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.INITIAL_STOCK,
    TransactionType.PURCHASE,
    TransactionType.DONATION,
    TransactionType.RETURN,
    TransactionType.FOUND,
    TransactionType.ADJUSTMENT_POSITIVE,
    TransactionType.TRANSFER_IN,
})

OUTGOING_TYPES: frozenset[TransactionType] = frozenset(TransactionType) - INCOMING_TYPES

ADJUSTMENT_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.ADJUSTMENT_POSITIVE,
    TransactionType.ADJUSTMENT_NEGATIVE,
})


class PartTransaction(TrackedBase):
    """
    A single recorded stock movement.

    Contract:
        Created only by TransactionLedgerService.record_movement() inside
        PartService's locked critical section.  Never edited afterwards
        except to approve it.

    Non-goals:
        - project_id, task_id, performed_by_id and approved_by_id are opaque
          references into collaborating systems; no foreign keys.
    """

    __tablename__ = "part_transactions"

    __table_args__ = (
        UniqueConstraint("part_id", "sequence", name="uq_part_transaction_sequence"),
        CheckConstraint("quantity > 0", name="ck_part_transaction_quantity_positive"),
        CheckConstraint("balance_after >= 0", name="ck_part_transaction_balance_non_negative"),
        Index("idx_part_transaction_part", "part_id"),
        Index("idx_part_transaction_date", "transaction_date"),
        Index("idx_part_transaction_type", "transaction_type"),
        Index("idx_part_transaction_project", "project_id"),
        Index("idx_part_transaction_approved", "is_approved"),
    )

    part_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("parts.id"),
        nullable=False,
    )

    # Position in the part's ledger (1-based, gap-free)
    sequence: Mapped[int] = mapped_column(nullable=False)

    transaction_type: Mapped[TransactionType] = mapped_column(
        String(30),
        nullable=False,
    )

    # Always positive; sign comes from transaction_type
    quantity: Mapped[int] = mapped_column(nullable=False)

    balance_after: Mapped[int] = mapped_column(nullable=False)

    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    vendor: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Opaque collaborator references
    project_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    task_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    performed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    transaction_date: Mapped[datetime] = mapped_column(nullable=False)

    # Approval workflow (the only mutable fields)
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def kind(self) -> TransactionType:
        """transaction_type as an enum member (rows load it as a string)."""
        return TransactionType(self.transaction_type)

    @property
    def effective_quantity_change(self) -> int:
        return self.quantity * self.kind.quantity_multiplier

    @property
    def quantity_before(self) -> int:
        return self.balance_after - self.effective_quantity_change

    def __repr__(self) -> str:
        return (
            f"<PartTransaction {self.part_id}#{self.sequence}: "
            f"{self.kind.value} {self.effective_quantity_change:+d} -> {self.balance_after}>"
        )
