"""
Module: parts_kernel.models.part
Responsibility: ORM persistence for stockable parts (motors, extrusion,
    fasteners, electronics) and the derived stock-level rules used by
    purchasing and build planning.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - quantity_on_hand >= 0 (ck_part_quantity_non_negative).
    - part_number is unique across active AND inactive parts
      (uq_part_number); soft-deleted parts keep their number reserved.
    - quantity_on_hand is only changed together with a new ledger entry
      (enforced by db/immutability.py at flush time).
    - version is an optimistic-concurrency counter (version_id_col):
      an UPDATE that races another writer fails with StaleDataError.

Failure modes:
    - IntegrityError on duplicate part_number or negative quantity.
    - StaleDataError when a concurrent writer bumped version first.

Audit relevance:
    Part holds the current stock snapshot; the full history lives in
    PartTransaction.  ledger_sequence is the number of ledger entries
    written for this part and is the allocation point for the next one.
"""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Date, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from parts_kernel.db.base import TrackedBase

# Days per reorder-buffer unit when lead time is known.
LEAD_TIME_DIVISOR_DAYS = 7


class PartCategory(str, Enum):
    """Shop classification of a part."""

    DRIVETRAIN = "DRIVETRAIN"
    STRUCTURAL = "STRUCTURAL"
    ELECTRONICS = "ELECTRONICS"
    PNEUMATICS = "PNEUMATICS"
    GAME_SPECIFIC = "GAME_SPECIFIC"
    FASTENERS = "FASTENERS"
    TOOLS = "TOOLS"
    RAW_MATERIALS = "RAW_MATERIALS"
    SAFETY = "SAFETY"
    OTHER = "OTHER"


class Part(TrackedBase):
    """
    A stockable part with its current on-hand quantity.

    Contract:
        Stock fields are mutated only by PartService, which writes a
        PartTransaction for every change.  Metadata fields (name, vendor,
        location, thresholds) may be edited freely.

    Non-goals:
        - No live collection of ledger entries; history is queried
          explicitly through TransactionSelector.
    """

    __tablename__ = "parts"

    __table_args__ = (
        UniqueConstraint("part_number", name="uq_part_number"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_part_quantity_non_negative"),
        CheckConstraint("ledger_sequence >= 0", name="ck_part_ledger_sequence"),
        Index("idx_part_category", "category"),
        Index("idx_part_active", "is_active"),
        Index("idx_part_vendor", "vendor"),
    )

    part_number: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    category: Mapped[PartCategory] = mapped_column(
        String(20),
        nullable=False,
        default=PartCategory.OTHER,
    )

    # Stock levels
    quantity_on_hand: Mapped[int] = mapped_column(nullable=False, default=0)

    minimum_stock: Mapped[int] = mapped_column(nullable=False, default=0)

    safety_stock: Mapped[int] = mapped_column(nullable=False, default=0)

    optimal_stock: Mapped[int | None] = mapped_column(nullable=True)

    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="pcs")

    # Sourcing
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    vendor: Mapped[str | None] = mapped_column(String(100), nullable=True)

    vendor_part_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    vendor_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    lead_time_days: Mapped[int | None] = mapped_column(nullable=True)

    storage_location: Mapped[str | None] = mapped_column(String(100), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    is_consumable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    last_restock_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    last_used_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Concurrency plumbing
    version: Mapped[int] = mapped_column(nullable=False)

    ledger_sequence: Mapped[int] = mapped_column(nullable=False, default=0)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_on_hand <= (self.minimum_stock or 0)

    @property
    def is_critically_low(self) -> bool:
        return self.quantity_on_hand <= (self.safety_stock or 0)

    @property
    def is_out_of_stock(self) -> bool:
        return self.quantity_on_hand == 0

    @property
    def reorder_quantity(self) -> int:
        """Units to order: up to optimal stock, else twice the minimum."""
        if self.optimal_stock is not None and self.quantity_on_hand < self.optimal_stock:
            return self.optimal_stock - self.quantity_on_hand
        return max((self.minimum_stock or 0) * 2 - self.quantity_on_hand, 0)

    @property
    def inventory_value(self) -> Decimal:
        if self.unit_cost is None:
            return Decimal("0")
        return self.unit_cost * self.quantity_on_hand

    def needs_reorder(self, lead_time_divisor: int = LEAD_TIME_DIVISOR_DAYS) -> bool:
        """
        Low stock, or not enough buffer to cover the vendor lead time.

        The buffer is one unit per ``lead_time_divisor`` days of lead time
        on top of the minimum stock.
        """
        if self.is_low_stock:
            return True
        if self.lead_time_days is None:
            return False
        buffer = self.lead_time_days // lead_time_divisor
        return self.quantity_on_hand <= (self.minimum_stock or 0) + buffer

    @property
    def needs_reordering(self) -> bool:
        return self.needs_reorder()

    def __repr__(self) -> str:
        return (
            f"<Part {self.part_number}: {self.name} "
            f"({self.quantity_on_hand}/{self.minimum_stock})>"
        )
