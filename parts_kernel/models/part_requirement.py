"""
Module: parts_kernel.models.part_requirement
Responsibility: ORM persistence for declared part needs of planning
    templates (project templates and task templates).
Architecture position: Kernel > Models.  May import from db/base.py.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - At least one of project_template_id / task_template_id is set
      (ck_part_requirement_template).
    - quantity_required > 0.
    - When both bounds are set: minimum_quantity <= quantity_required
      <= maximum_quantity (ck_part_requirement_bounds).

Failure modes:
    - IntegrityError if a check constraint is violated by a direct write
      that bypassed RequirementService validation.

Audit relevance:
    Requirements are read-only inputs to readiness and purchasing reports.
    Soft deletion (is_active=False) keeps past readiness answers explainable.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from parts_kernel.db.base import TrackedBase, UUIDString


class RequirementPriority(str, Enum):
    """How badly the template needs the part.  Declaration order is rank."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)


_PRIORITY_ORDER = list(RequirementPriority)


class BuildPhase(str, Enum):
    """Build season stage.  ANY matches every stage."""

    DESIGN = "DESIGN"
    FABRICATION = "FABRICATION"
    TESTING = "TESTING"
    INTEGRATION = "INTEGRATION"
    COMPETITION = "COMPETITION"
    ANY = "ANY"

    @property
    def next_phase(self) -> "BuildPhase | None":
        """The following stage, or None after COMPETITION and for ANY."""
        if self is BuildPhase.ANY:
            return None
        idx = PHASE_ORDER.index(self)
        if idx + 1 < len(PHASE_ORDER):
            return PHASE_ORDER[idx + 1]
        return None


PHASE_ORDER: tuple[BuildPhase, ...] = (
    BuildPhase.DESIGN,
    BuildPhase.FABRICATION,
    BuildPhase.TESTING,
    BuildPhase.INTEGRATION,
    BuildPhase.COMPETITION,
)


class PartRequirement(TrackedBase):
    """
    A quantity of one part needed by a project or task template.

    Contract:
        Template ids are opaque references into the planning system; the
        inventory kernel never loads templates themselves.
    """

    __tablename__ = "part_requirements"

    __table_args__ = (
        CheckConstraint(
            "project_template_id IS NOT NULL OR task_template_id IS NOT NULL",
            name="ck_part_requirement_template",
        ),
        CheckConstraint("quantity_required > 0", name="ck_part_requirement_quantity"),
        CheckConstraint(
            "minimum_quantity IS NULL OR maximum_quantity IS NULL OR "
            "(minimum_quantity <= quantity_required AND quantity_required <= maximum_quantity)",
            name="ck_part_requirement_bounds",
        ),
        Index("idx_part_requirement_part", "part_id"),
        Index("idx_part_requirement_project_template", "project_template_id"),
        Index("idx_part_requirement_task_template", "task_template_id"),
    )

    part_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("parts.id"),
        nullable=False,
    )

    project_template_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    task_template_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    quantity_required: Mapped[int] = mapped_column(nullable=False)

    minimum_quantity: Mapped[int | None] = mapped_column(nullable=True)

    maximum_quantity: Mapped[int | None] = mapped_column(nullable=True)

    priority: Mapped[RequirementPriority] = mapped_column(
        String(20),
        nullable=False,
        default=RequirementPriority.MEDIUM,
    )

    is_critical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    is_optional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    build_phase: Mapped[BuildPhase] = mapped_column(
        String(20),
        nullable=False,
        default=BuildPhase.ANY,
    )

    estimated_cost_per_unit: Mapped[Decimal | None] = mapped_column(nullable=True)

    lead_time_days: Mapped[int | None] = mapped_column(nullable=True)

    preferred_vendor: Mapped[str | None] = mapped_column(String(100), nullable=True)

    specifications: Mapped[str | None] = mapped_column(Text, nullable=True)

    alternatives: Mapped[str | None] = mapped_column(Text, nullable=True)

    usage_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def has_bounds(self) -> bool:
        return self.minimum_quantity is not None and self.maximum_quantity is not None

    def __repr__(self) -> str:
        return (
            f"<PartRequirement part={self.part_id} x{self.quantity_required} "
            f"[{self.build_phase}]>"
        )
