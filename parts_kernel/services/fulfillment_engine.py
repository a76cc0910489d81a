"""
Requirement fulfillment engine.

Answers build-readiness questions for a planning template: can current
stock cover its declared part needs, what is short and by how much, what
is needed for the current and next build phase, and what it all costs.

The engine only loads rows and converts them to DTOs; every decision is
made by the pure functions in parts_kernel.domain.fulfillment.  It never
writes.
"""

from collections.abc import Callable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from parts_kernel.domain import fulfillment
from parts_kernel.domain.dtos import (
    PartInfo,
    PartNeed,
    ReadinessSummary,
    RequirementInfo,
    RequirementShortfall,
    TemplateRef,
)
from parts_kernel.exceptions import PartNotFoundError, RequirementNotFoundError
from parts_kernel.logging_config import LogContext, get_logger
from parts_kernel.models.part import Part
from parts_kernel.models.part_requirement import (
    BuildPhase,
    PartRequirement,
    RequirementPriority,
)
from parts_kernel.selectors.base import BaseSelector
from parts_kernel.services.requirement_service import template_filter

logger = get_logger("services.fulfillment")


class RequirementFulfillmentEngine(BaseSelector[PartRequirement]):
    """
    Read-only readiness checks over a template's active requirements.

    Contract:
        Every answer reflects stock as seen by the caller's session at the
        moment of the call; nothing is cached between calls.  A database
        failure is logged as ``query_failed`` and the check answers with
        its empty value: no requirements, not fulfillable, zero cost.
    """

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(self, template: TemplateRef) -> tuple[list[RequirementInfo], dict[UUID, PartInfo]]:
        rows = self.session.execute(
            select(PartRequirement, Part)
            .join(Part, Part.id == PartRequirement.part_id)
            .where(template_filter(template))
            .where(PartRequirement.is_active.is_(True))
            .order_by(PartRequirement.created_at, PartRequirement.id)
        ).all()

        requirements = []
        parts: dict[UUID, PartInfo] = {}
        for requirement, part in rows:
            requirements.append(RequirementInfo.from_model(requirement))
            if part.id not in parts:
                parts[part.id] = PartInfo.from_model(part)
        return requirements, parts

    def _requirements(
        self,
        name: str,
        template: TemplateRef,
        pick: Callable[[list[RequirementInfo]], list[RequirementInfo]],
    ) -> list[RequirementInfo]:
        return self._query(name, lambda: pick(self._load(template)[0]), [])

    def _part_info(self, part_id: UUID) -> PartInfo:
        part = self.session.get(Part, part_id)
        if part is None:
            raise PartNotFoundError(str(part_id))
        return PartInfo.from_model(part)

    # ------------------------------------------------------------------
    # Fulfillment
    # ------------------------------------------------------------------

    def can_be_fulfilled(self, requirement: UUID | RequirementInfo) -> bool:
        """
        True if the requirement is optional or stock covers it.

        Accepts a requirement id or an already-loaded RequirementInfo.

        Raises:
            RequirementNotFoundError: unknown requirement id.
            PartNotFoundError: the requirement's part is gone.
        """

        def run() -> bool:
            info = requirement
            if not isinstance(info, RequirementInfo):
                row = self.session.get(PartRequirement, info)
                if row is None:
                    raise RequirementNotFoundError(str(info))
                info = RequirementInfo.from_model(row)
            return fulfillment.requirement_fulfillable(info, self._part_info(info.part_id))

        return self._query("can_be_fulfilled", run, False)

    def can_fulfill_all_requirements(self, template: TemplateRef) -> bool:
        def run() -> bool:
            requirements, parts = self._load(template)
            result = fulfillment.can_fulfill_all(requirements, parts)
            with LogContext.bind(template_id=template.template_id):
                logger.debug(
                    "template_fulfillment_checked",
                    extra={"requirements": len(requirements), "fulfillable": result},
                )
            return result

        return self._query("can_fulfill_all_requirements", run, False)

    def get_unfulfillable_requirements(self, template: TemplateRef) -> list[RequirementShortfall]:
        return self._query(
            "unfulfillable_requirements",
            lambda: fulfillment.unfulfillable(*self._load(template)),
            [],
        )

    def get_parts_needed_for_template(self, template: TemplateRef) -> list[PartNeed]:
        """Per-part shortfall with demand summed across the template."""
        return self._query(
            "parts_needed_for_template",
            lambda: fulfillment.parts_needed(*self._load(template)),
            [],
        )

    # ------------------------------------------------------------------
    # Build phases
    # ------------------------------------------------------------------

    def get_requirements_by_build_phase(self, template: TemplateRef, phase: BuildPhase) -> list[RequirementInfo]:
        phase = BuildPhase(phase)
        return self._requirements(
            "requirements_by_build_phase", template, lambda reqs: fulfillment.filter_by_phase(reqs, phase)
        )

    def get_immediate_requirements(self, template: TemplateRef, current_phase: BuildPhase) -> list[RequirementInfo]:
        """Requirements for ``current_phase`` and the phase after it."""
        current_phase = BuildPhase(current_phase)
        return self._requirements(
            "immediate_requirements", template, lambda reqs: fulfillment.immediate(reqs, current_phase)
        )

    # ------------------------------------------------------------------
    # Priority
    # ------------------------------------------------------------------

    def get_requirements_by_priority(
        self,
        template: TemplateRef,
        priority: RequirementPriority | None = None,
    ) -> list[RequirementInfo]:
        """
        With ``priority``: only that priority.  Without: all requirements,
        CRITICAL first.
        """
        if priority is None:
            return self._requirements("requirements_by_priority", template, fulfillment.sort_by_priority)
        priority = RequirementPriority(priority)
        return self._requirements(
            "requirements_by_priority", template, lambda reqs: [r for r in reqs if r.priority is priority]
        )

    def get_high_priority_requirements(self, template: TemplateRef) -> list[RequirementInfo]:
        return self._requirements(
            "high_priority_requirements",
            template,
            lambda reqs: fulfillment.sort_by_priority(r for r in reqs if fulfillment.is_high_priority(r)),
        )

    def get_critical_requirements(self, template: TemplateRef) -> list[RequirementInfo]:
        return self._requirements("critical_requirements", template, lambda reqs: [r for r in reqs if r.is_critical])

    def get_optional_requirements(self, template: TemplateRef) -> list[RequirementInfo]:
        return self._requirements("optional_requirements", template, lambda reqs: [r for r in reqs if r.is_optional])

    # ------------------------------------------------------------------
    # Cost and summary
    # ------------------------------------------------------------------

    def calculate_total_cost(self, template: TemplateRef) -> Decimal:
        return self._query(
            "total_cost",
            lambda: fulfillment.total_cost(*self._load(template)),
            Decimal("0"),
        )

    def get_readiness_summary(self, template: TemplateRef) -> ReadinessSummary:
        summary = self._query("readiness_summary", lambda: self._summarize(template), None)
        if summary is None:
            return ReadinessSummary.empty(template)
        with LogContext.bind(template_id=template.template_id):
            logger.info(
                "readiness_summary_computed",
                extra={
                    "total_requirements": summary.total_requirements,
                    "unfulfillable": summary.unfulfillable_count,
                    "total_cost": summary.total_cost,
                },
            )
        return summary

    def _summarize(self, template: TemplateRef) -> ReadinessSummary:
        requirements, parts = self._load(template)
        short = fulfillment.unfulfillable(requirements, parts)
        optional = sum(1 for r in requirements if r.is_optional)
        return ReadinessSummary(
            template=template,
            total_requirements=len(requirements),
            required_count=len(requirements) - optional,
            optional_count=optional,
            fulfillable_count=len(requirements) - len(short),
            unfulfillable_count=len(short),
            can_fulfill_all=not short,
            total_cost=fulfillment.total_cost(requirements, parts),
            total_shortfall_units=sum(s.shortfall for s in short),
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_requirement(
        requirement: RequirementInfo | None = None,
        *,
        part_id: UUID | None = None,
        priority: RequirementPriority | None = None,
        quantity_required: int | None = None,
        minimum_quantity: int | None = None,
        maximum_quantity: int | None = None,
    ) -> bool:
        """
        Shape check for form validation.  Never raises.

        Pass either a RequirementInfo or the individual fields.
        """
        if requirement is not None:
            part_id = requirement.part_id
            priority = requirement.priority
            quantity_required = requirement.quantity_required
            minimum_quantity = requirement.minimum_quantity
            maximum_quantity = requirement.maximum_quantity
        try:
            return not fulfillment.requirement_problems(
                part_id=part_id,
                priority=priority,
                quantity_required=quantity_required,
                minimum_quantity=minimum_quantity,
                maximum_quantity=maximum_quantity,
            )
        except TypeError:
            return False
