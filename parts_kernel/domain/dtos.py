"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures returned by inventory services and
    selectors: PartInfo, TransactionInfo, RequirementInfo, fulfillment results
    (RequirementShortfall, PartNeed, ReadinessSummary), bulk operation results
    (BulkResult, BulkFailure), ledger verification, and reporting aggregates.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies, database access, and external services.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers.

Invariants enforced:
    - Callers never receive live ORM entities, so a caller cannot change
      stock by assigning to an attribute and flushing.

Failure modes:
    - ValueError on TemplateRef with an unknown kind.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Generic, TypeVar
from uuid import UUID

from parts_kernel.models.part import PartCategory
from parts_kernel.models.part_requirement import BuildPhase, RequirementPriority
from parts_kernel.models.part_transaction import TransactionType

if TYPE_CHECKING:
    from parts_kernel.models.part import Part as PartModel
    from parts_kernel.models.part_requirement import (
        PartRequirement as PartRequirementModel,
    )
    from parts_kernel.models.part_transaction import (
        PartTransaction as PartTransactionModel,
    )

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Template addressing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TemplateRef:
    """
    Opaque reference to a planning template.

    Requirements hang off either a project template or a task template;
    the kind says which foreign column to match.
    """

    kind: str
    template_id: UUID

    PROJECT = "project"
    TASK = "task"

    def __post_init__(self) -> None:
        if self.kind not in (self.PROJECT, self.TASK):
            raise ValueError(f"Unknown template kind: {self.kind!r}")

    @classmethod
    def project(cls, template_id: UUID) -> TemplateRef:
        return cls(kind=cls.PROJECT, template_id=template_id)

    @classmethod
    def task(cls, template_id: UUID) -> TemplateRef:
        return cls(kind=cls.TASK, template_id=template_id)

    def __str__(self) -> str:
        return f"{self.kind}:{self.template_id}"


# ---------------------------------------------------------------------------
# Parts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PartDraft:
    """
    Input shape for creating a part in bulk or idempotently.

    Mirrors the keyword arguments of PartService.create_part().
    """

    part_number: str
    name: str
    category: PartCategory = PartCategory.OTHER
    quantity_on_hand: int = 0
    description: str | None = None
    minimum_stock: int = 0
    safety_stock: int = 0
    optimal_stock: int | None = None
    unit: str = "pcs"
    unit_cost: Decimal | None = None
    vendor: str | None = None
    vendor_part_number: str | None = None
    vendor_url: str | None = None
    storage_location: str | None = None
    lead_time_days: int | None = None
    is_consumable: bool = True
    notes: str | None = None

    def as_kwargs(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PartInfo:
    """
    Immutable snapshot of a part and its derived stock flags.

    The flags are evaluated when the snapshot is taken; they do not track
    later stock changes.
    """

    id: UUID
    part_number: str
    name: str
    category: PartCategory
    quantity_on_hand: int
    minimum_stock: int
    safety_stock: int
    is_active: bool
    is_low_stock: bool
    is_critically_low: bool
    is_out_of_stock: bool
    needs_reordering: bool
    reorder_quantity: int
    inventory_value: Decimal
    version: int
    ledger_sequence: int
    description: str | None = None
    optimal_stock: int | None = None
    unit: str = "pcs"
    unit_cost: Decimal | None = None
    vendor: str | None = None
    vendor_part_number: str | None = None
    vendor_url: str | None = None
    storage_location: str | None = None
    lead_time_days: int | None = None
    is_consumable: bool = True
    notes: str | None = None
    last_restock_date: date | None = None
    last_used_date: date | None = None

    @classmethod
    def from_model(cls, model: PartModel) -> PartInfo:
        return cls(
            id=model.id,
            part_number=model.part_number,
            name=model.name,
            category=PartCategory(model.category),
            quantity_on_hand=model.quantity_on_hand,
            minimum_stock=model.minimum_stock,
            safety_stock=model.safety_stock,
            is_active=model.is_active,
            is_low_stock=model.is_low_stock,
            is_critically_low=model.is_critically_low,
            is_out_of_stock=model.is_out_of_stock,
            needs_reordering=model.needs_reordering,
            reorder_quantity=model.reorder_quantity,
            inventory_value=model.inventory_value,
            version=model.version,
            ledger_sequence=model.ledger_sequence,
            description=model.description,
            optimal_stock=model.optimal_stock,
            unit=model.unit,
            unit_cost=model.unit_cost,
            vendor=model.vendor,
            vendor_part_number=model.vendor_part_number,
            vendor_url=model.vendor_url,
            storage_location=model.storage_location,
            lead_time_days=model.lead_time_days,
            is_consumable=model.is_consumable,
            notes=model.notes,
            last_restock_date=model.last_restock_date,
            last_used_date=model.last_used_date,
        )


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactionInfo:
    """Immutable snapshot of one ledger entry."""

    id: UUID
    part_id: UUID
    sequence: int
    transaction_type: TransactionType
    quantity: int
    effective_quantity_change: int
    balance_after: int
    transaction_date: datetime
    is_approved: bool
    unit_cost: Decimal | None = None
    total_cost: Decimal | None = None
    reason: str | None = None
    vendor: str | None = None
    reference_number: str | None = None
    notes: str | None = None
    project_id: UUID | None = None
    task_id: UUID | None = None
    performed_by_id: UUID | None = None
    approved_by_id: UUID | None = None
    approved_at: datetime | None = None

    @property
    def quantity_before(self) -> int:
        return self.balance_after - self.effective_quantity_change

    @classmethod
    def from_model(cls, model: PartTransactionModel) -> TransactionInfo:
        return cls(
            id=model.id,
            part_id=model.part_id,
            sequence=model.sequence,
            transaction_type=model.kind,
            quantity=model.quantity,
            effective_quantity_change=model.effective_quantity_change,
            balance_after=model.balance_after,
            transaction_date=model.transaction_date,
            is_approved=model.is_approved,
            unit_cost=model.unit_cost,
            total_cost=model.total_cost,
            reason=model.reason,
            vendor=model.vendor,
            reference_number=model.reference_number,
            notes=model.notes,
            project_id=model.project_id,
            task_id=model.task_id,
            performed_by_id=model.performed_by_id,
            approved_by_id=model.approved_by_id,
            approved_at=model.approved_at,
        )


@dataclass(frozen=True)
class LedgerVerification:
    """
    Result of replaying one part's ledger from zero.

    is_consistent is True when every entry's balance_after matches the
    running replay, sequences are gap-free from 1, and the final balance
    equals the part's stored quantity_on_hand.
    """

    part_id: UUID
    is_consistent: bool
    entry_count: int
    replayed_balance: int
    stored_quantity: int
    ledger_sequence: int
    first_mismatch_sequence: int | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Bulk operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BulkFailure:
    """One item of a bulk call that did not go through."""

    item: str
    code: str
    message: str


@dataclass(frozen=True)
class BulkResult(Generic[T]):
    """Partial-success outcome: what went through and what did not."""

    succeeded: tuple[T, ...] = ()
    failures: tuple[BulkFailure, ...] = ()

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def all_succeeded(self) -> bool:
        return not self.failures

    def failed_items(self) -> tuple[str, ...]:
        return tuple(f.item for f in self.failures)


# ---------------------------------------------------------------------------
# Requirements and fulfillment
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequirementInfo:
    """Immutable snapshot of a part requirement."""

    id: UUID
    part_id: UUID
    quantity_required: int
    priority: RequirementPriority
    build_phase: BuildPhase
    is_critical: bool = False
    is_optional: bool = False
    is_active: bool = True
    project_template_id: UUID | None = None
    task_template_id: UUID | None = None
    minimum_quantity: int | None = None
    maximum_quantity: int | None = None
    estimated_cost_per_unit: Decimal | None = None
    lead_time_days: int | None = None
    preferred_vendor: str | None = None
    specifications: str | None = None
    alternatives: str | None = None
    usage_notes: str | None = None

    @classmethod
    def from_model(cls, model: PartRequirementModel) -> RequirementInfo:
        return cls(
            id=model.id,
            part_id=model.part_id,
            quantity_required=model.quantity_required,
            priority=RequirementPriority(model.priority),
            build_phase=BuildPhase(model.build_phase),
            is_critical=model.is_critical,
            is_optional=model.is_optional,
            is_active=model.is_active,
            project_template_id=model.project_template_id,
            task_template_id=model.task_template_id,
            minimum_quantity=model.minimum_quantity,
            maximum_quantity=model.maximum_quantity,
            estimated_cost_per_unit=model.estimated_cost_per_unit,
            lead_time_days=model.lead_time_days,
            preferred_vendor=model.preferred_vendor,
            specifications=model.specifications,
            alternatives=model.alternatives,
            usage_notes=model.usage_notes,
        )


@dataclass(frozen=True)
class RequirementShortfall:
    """A requirement that current stock cannot cover, with the gap size."""

    requirement: RequirementInfo
    part_number: str
    quantity_on_hand: int
    shortfall: int

    @property
    def requirement_id(self) -> UUID:
        return self.requirement.id

    @property
    def part_id(self) -> UUID:
        return self.requirement.part_id

    @property
    def quantity_required(self) -> int:
        return self.requirement.quantity_required


@dataclass(frozen=True)
class PartNeed:
    """Aggregate demand for one part across a template's requirements."""

    part_id: UUID
    part_number: str
    quantity_required: int
    quantity_on_hand: int
    shortfall: int
    requirement_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class ReadinessSummary:
    """Counts and totals describing whether a template can be built."""

    template: TemplateRef
    total_requirements: int
    required_count: int
    optional_count: int
    fulfillable_count: int
    unfulfillable_count: int
    can_fulfill_all: bool
    total_cost: Decimal
    total_shortfall_units: int

    @classmethod
    def empty(cls, template: TemplateRef) -> "ReadinessSummary":
        """Summary reported when the requirements could not be read."""
        return cls(
            template=template,
            total_requirements=0,
            required_count=0,
            optional_count=0,
            fulfillable_count=0,
            unfulfillable_count=0,
            can_fulfill_all=False,
            total_cost=Decimal("0"),
            total_shortfall_units=0,
        )


# ---------------------------------------------------------------------------
# Reporting aggregates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PartUsageStats:
    """Movement totals for one part."""

    part_id: UUID
    transaction_count: int
    total_incoming: int
    total_outgoing: int
    total_used: int
    last_transaction_date: datetime | None = None


@dataclass(frozen=True)
class PartUsageRank:
    """A part and how many units of it were consumed by USAGE entries."""

    part_id: UUID
    part_number: str
    name: str
    total_used: int


@dataclass(frozen=True)
class ProjectConsumption:
    """Units and cost of one part consumed by a project."""

    part_id: UUID
    quantity_used: int
    total_cost: Decimal = field(default=Decimal("0"))
