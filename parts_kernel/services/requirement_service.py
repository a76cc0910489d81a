"""
Service layer for PartRequirement authoring.

Planning tools declare which parts a project or task template needs.
This service validates and stores those declarations; the fulfillment
engine reads them.

Returns RequirementInfo DTOs instead of ORM entities.
"""

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from parts_kernel.domain.clock import Clock
from parts_kernel.domain.dtos import RequirementInfo, TemplateRef
from parts_kernel.domain.fulfillment import requirement_problems
from parts_kernel.exceptions import (
    InvalidQuantityError,
    PartNotFoundError,
    RequirementBoundsError,
    RequirementNotFoundError,
    ValidationError,
)
from parts_kernel.logging_config import LogContext, get_logger
from parts_kernel.models.part import Part
from parts_kernel.models.part_requirement import (
    BuildPhase,
    PartRequirement,
    RequirementPriority,
)
from parts_kernel.services.base import BaseService

logger = get_logger("services.requirement")

EDITABLE_REQUIREMENT_FIELDS = frozenset({
    "quantity_required",
    "minimum_quantity",
    "maximum_quantity",
    "priority",
    "is_critical",
    "is_optional",
    "build_phase",
    "estimated_cost_per_unit",
    "lead_time_days",
    "preferred_vendor",
    "specifications",
    "alternatives",
    "usage_notes",
})


def template_filter(template: TemplateRef):
    """WHERE clause selecting a template's requirements."""
    if template.kind == TemplateRef.PROJECT:
        return PartRequirement.project_template_id == template.template_id
    return PartRequirement.task_template_id == template.template_id


class RequirementService(BaseService[PartRequirement]):
    """
    CRUD for part requirements.

    Contract:
        Invalid shapes are rejected with typed errors before anything is
        written.  Deletion is soft (is_active=False).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def _get_by_id(self, requirement_id: UUID) -> PartRequirement:
        requirement = self.session.get(PartRequirement, requirement_id)
        if requirement is None:
            raise RequirementNotFoundError(str(requirement_id))
        return requirement

    def _check(self, values: dict[str, Any], check_template: bool) -> None:
        quantity = values.get("quantity_required")
        if quantity is None or quantity <= 0:
            raise InvalidQuantityError("quantity_required", quantity, "must be positive")
        minimum = values.get("minimum_quantity")
        maximum = values.get("maximum_quantity")
        if minimum is not None and maximum is not None and not minimum <= quantity <= maximum:
            raise RequirementBoundsError(quantity, minimum, maximum)

        problems = requirement_problems(
            part_id=values.get("part_id"),
            priority=values.get("priority"),
            quantity_required=quantity,
            minimum_quantity=minimum,
            maximum_quantity=maximum,
            project_template_id=values.get("project_template_id"),
            task_template_id=values.get("task_template_id"),
            check_template=check_template,
        )
        if problems:
            raise ValidationError("; ".join(problems))

    def create_requirement(
        self,
        part_id: UUID,
        quantity_required: int,
        *,
        project_template_id: UUID | None = None,
        task_template_id: UUID | None = None,
        priority: RequirementPriority = RequirementPriority.MEDIUM,
        build_phase: BuildPhase = BuildPhase.ANY,
        minimum_quantity: int | None = None,
        maximum_quantity: int | None = None,
        is_critical: bool = False,
        is_optional: bool = False,
        estimated_cost_per_unit: Decimal | None = None,
        actor_id: UUID | None = None,
        **details: Any,
    ) -> RequirementInfo:
        """
        Declare that a template needs ``quantity_required`` of a part.

        Raises:
            InvalidQuantityError: quantity_required is not positive.
            RequirementBoundsError: quantity outside [minimum, maximum].
            ValidationError: no template, unknown priority, or unknown field.
            PartNotFoundError: unknown part.
        """
        unknown = set(details) - {"lead_time_days", "preferred_vendor", "specifications", "alternatives", "usage_notes"}
        if unknown:
            raise ValidationError(f"Unknown requirement fields: {sorted(unknown)}")

        values = {
            "part_id": part_id,
            "quantity_required": quantity_required,
            "project_template_id": project_template_id,
            "task_template_id": task_template_id,
            "priority": priority,
            "minimum_quantity": minimum_quantity,
            "maximum_quantity": maximum_quantity,
        }
        self._check(values, check_template=True)
        if self.session.get(Part, part_id) is None:
            raise PartNotFoundError(str(part_id))

        with self.session.begin_nested():
            requirement = PartRequirement(
                part_id=part_id,
                quantity_required=quantity_required,
                project_template_id=project_template_id,
                task_template_id=task_template_id,
                priority=RequirementPriority(priority),
                build_phase=BuildPhase(build_phase),
                minimum_quantity=minimum_quantity,
                maximum_quantity=maximum_quantity,
                is_critical=is_critical,
                is_optional=is_optional,
                estimated_cost_per_unit=estimated_cost_per_unit,
                created_by_id=actor_id,
                **details,
            )
            self.session.add(requirement)
            self.session.flush()

        with LogContext.bind(template_id=project_template_id or task_template_id, part_id=part_id):
            logger.info(
                "requirement_created",
                extra={
                    "requirement_id": str(requirement.id),
                    "quantity_required": quantity_required,
                    "priority": RequirementPriority(priority).value,
                    "build_phase": BuildPhase(build_phase).value,
                },
            )
        return RequirementInfo.from_model(requirement)

    def update_requirement(
        self,
        requirement_id: UUID,
        *,
        actor_id: UUID | None = None,
        **changes: Any,
    ) -> RequirementInfo:
        """
        Edit a requirement.  The part and template links cannot change.

        Raises:
            RequirementNotFoundError: unknown requirement.
            ValidationError / RequirementBoundsError: resulting shape invalid.
        """
        not_editable = set(changes) - EDITABLE_REQUIREMENT_FIELDS
        if not_editable:
            raise ValidationError(f"Fields cannot be edited here: {sorted(not_editable)}")

        requirement = self._get_by_id(requirement_id)
        merged = {
            "part_id": requirement.part_id,
            "quantity_required": requirement.quantity_required,
            "priority": requirement.priority,
            "minimum_quantity": requirement.minimum_quantity,
            "maximum_quantity": requirement.maximum_quantity,
            "project_template_id": requirement.project_template_id,
            "task_template_id": requirement.task_template_id,
        }
        merged.update({k: v for k, v in changes.items() if k in merged})
        self._check(merged, check_template=True)

        if "priority" in changes:
            changes["priority"] = RequirementPriority(changes["priority"])
        if "build_phase" in changes:
            changes["build_phase"] = BuildPhase(changes["build_phase"])

        with self.session.begin_nested():
            for key, value in changes.items():
                setattr(requirement, key, value)
            requirement.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "requirement_updated",
            extra={"requirement_id": str(requirement_id), "fields": sorted(changes)},
        )
        return RequirementInfo.from_model(requirement)

    def delete_requirement(self, requirement_id: UUID, *, actor_id: UUID | None = None) -> RequirementInfo:
        """Soft delete: the requirement stops counting toward its template."""
        requirement = self._get_by_id(requirement_id)
        with self.session.begin_nested():
            requirement.is_active = False
            requirement.updated_by_id = actor_id
            self.session.flush()
        logger.info("requirement_deactivated", extra={"requirement_id": str(requirement_id)})
        return RequirementInfo.from_model(requirement)

    def get_requirement(self, requirement_id: UUID) -> RequirementInfo:
        return RequirementInfo.from_model(self._get_by_id(requirement_id))

    def list_requirements(self, template: TemplateRef, include_inactive: bool = False) -> list[RequirementInfo]:
        """A template's requirements, oldest first."""
        stmt = select(PartRequirement).where(template_filter(template))
        if not include_inactive:
            stmt = stmt.where(PartRequirement.is_active.is_(True))
        stmt = stmt.order_by(PartRequirement.created_at, PartRequirement.id)
        return [RequirementInfo.from_model(r) for r in self.session.execute(stmt).scalars()]
