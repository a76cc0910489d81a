"""
Fulfillment -- pure requirement-vs-stock rules.

Responsibility:
    Answers "can current stock cover this requirement?" and the derived
    planning questions (shortfall, build-phase windows, cost roll-up,
    requirement shape validation) over plain values and DTOs.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The
    RequirementFulfillmentEngine loads rows, converts them to DTOs, and
    delegates every decision to this module.

Invariants enforced:
    - An optional requirement is always fulfillable.
    - A non-optional requirement is fulfillable iff
      quantity_on_hand >= quantity_required.
    - shortfall = max(0, quantity_required - quantity_on_hand).
    - A requirement tagged ANY belongs to every build phase.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal
from uuid import UUID

from parts_kernel.domain.dtos import (
    PartInfo,
    PartNeed,
    RequirementInfo,
    RequirementShortfall,
)
from parts_kernel.models.part_requirement import BuildPhase, RequirementPriority

ZERO = Decimal("0")


def can_be_fulfilled(quantity_required: int, is_optional: bool, quantity_on_hand: int) -> bool:
    if is_optional:
        return True
    return quantity_on_hand >= quantity_required


def shortfall(quantity_required: int, quantity_on_hand: int) -> int:
    return max(0, quantity_required - quantity_on_hand)


def requirement_fulfillable(requirement: RequirementInfo, part: PartInfo) -> bool:
    return can_be_fulfilled(
        requirement.quantity_required,
        requirement.is_optional,
        part.quantity_on_hand,
    )


def can_fulfill_all(
    requirements: Iterable[RequirementInfo],
    parts: Mapping[UUID, PartInfo],
) -> bool:
    """True iff every non-optional requirement is individually covered."""
    return all(
        requirement_fulfillable(r, parts[r.part_id])
        for r in requirements
        if not r.is_optional
    )


def unfulfillable(
    requirements: Iterable[RequirementInfo],
    parts: Mapping[UUID, PartInfo],
) -> list[RequirementShortfall]:
    """Every requirement stock cannot cover, in input order, with its gap."""
    result = []
    for requirement in requirements:
        part = parts[requirement.part_id]
        if requirement_fulfillable(requirement, part):
            continue
        result.append(
            RequirementShortfall(
                requirement=requirement,
                part_number=part.part_number,
                quantity_on_hand=part.quantity_on_hand,
                shortfall=shortfall(requirement.quantity_required, part.quantity_on_hand),
            )
        )
    return result


def parts_needed(
    requirements: Iterable[RequirementInfo],
    parts: Mapping[UUID, PartInfo],
) -> list[PartNeed]:
    """
    Aggregate non-optional demand per part and compare it with stock.

    Only parts whose combined demand exceeds stock are returned, ordered by
    part number.
    """
    demand: dict[UUID, int] = {}
    sources: dict[UUID, list[UUID]] = {}
    for requirement in requirements:
        if requirement.is_optional:
            continue
        demand[requirement.part_id] = demand.get(requirement.part_id, 0) + requirement.quantity_required
        sources.setdefault(requirement.part_id, []).append(requirement.id)

    needs = []
    for part_id, required in demand.items():
        part = parts[part_id]
        gap = shortfall(required, part.quantity_on_hand)
        if gap:
            needs.append(
                PartNeed(
                    part_id=part_id,
                    part_number=part.part_number,
                    quantity_required=required,
                    quantity_on_hand=part.quantity_on_hand,
                    shortfall=gap,
                    requirement_ids=tuple(sources[part_id]),
                )
            )
    return sorted(needs, key=lambda n: n.part_number)


# ---------------------------------------------------------------------------
# Build phases
# ---------------------------------------------------------------------------


def matches_phase(requirement_phase: BuildPhase, phase: BuildPhase) -> bool:
    requirement_phase = BuildPhase(requirement_phase)
    return requirement_phase is BuildPhase.ANY or requirement_phase is BuildPhase(phase)


def filter_by_phase(
    requirements: Iterable[RequirementInfo],
    phase: BuildPhase,
) -> list[RequirementInfo]:
    return [r for r in requirements if matches_phase(r.build_phase, phase)]


def immediate(
    requirements: Sequence[RequirementInfo],
    current_phase: BuildPhase,
) -> list[RequirementInfo]:
    """
    Requirements for the current phase followed by those for the next one.

    Deduplicated by id; first occurrence wins, so ANY requirements appear
    once, in the current-phase block.
    """
    phases = [BuildPhase(current_phase)]
    upcoming = phases[0].next_phase
    if upcoming is not None:
        phases.append(upcoming)

    seen: set[UUID] = set()
    result = []
    for phase in phases:
        for requirement in filter_by_phase(requirements, phase):
            if requirement.id not in seen:
                seen.add(requirement.id)
                result.append(requirement)
    return result


# ---------------------------------------------------------------------------
# Cost
# ---------------------------------------------------------------------------


def unit_cost_for(requirement: RequirementInfo, part: PartInfo) -> Decimal:
    """Estimated cost wins over the part's catalogue cost; unknown is zero."""
    if requirement.estimated_cost_per_unit is not None:
        return requirement.estimated_cost_per_unit
    if part.unit_cost is not None:
        return part.unit_cost
    return ZERO


def total_cost(
    requirements: Iterable[RequirementInfo],
    parts: Mapping[UUID, PartInfo],
) -> Decimal:
    return sum(
        (r.quantity_required * unit_cost_for(r, parts[r.part_id]) for r in requirements),
        ZERO,
    )


# ---------------------------------------------------------------------------
# Priority
# ---------------------------------------------------------------------------


def sort_by_priority(requirements: Iterable[RequirementInfo]) -> list[RequirementInfo]:
    """CRITICAL first, stable within a priority."""
    return sorted(requirements, key=lambda r: RequirementPriority(r.priority).rank)


def is_high_priority(requirement: RequirementInfo) -> bool:
    """CRITICAL or HIGH priority.  The is_critical flag does not count."""
    return RequirementPriority(requirement.priority) in (
        RequirementPriority.CRITICAL,
        RequirementPriority.HIGH,
    )


# ---------------------------------------------------------------------------
# Shape validation
# ---------------------------------------------------------------------------


def requirement_problems(
    *,
    part_id: UUID | None,
    priority: RequirementPriority | str | None,
    quantity_required: int | None,
    minimum_quantity: int | None = None,
    maximum_quantity: int | None = None,
    project_template_id: UUID | None = None,
    task_template_id: UUID | None = None,
    check_template: bool = False,
) -> list[str]:
    """
    List what is wrong with a requirement's shape.  Empty means valid.

    Template presence is only checked when ``check_template`` is set;
    form-level validation may run before a template is chosen.
    """
    problems = []
    if part_id is None:
        problems.append("part_id is required")
    if priority is None:
        problems.append("priority is required")
    else:
        try:
            RequirementPriority(priority)
        except ValueError:
            problems.append(f"unknown priority {priority!r}")
    if quantity_required is None or quantity_required <= 0:
        problems.append("quantity_required must be positive")
    elif minimum_quantity is not None and maximum_quantity is not None:
        if not minimum_quantity <= quantity_required <= maximum_quantity:
            problems.append("quantity_required is outside [minimum_quantity, maximum_quantity]")
    if minimum_quantity is not None and minimum_quantity < 0:
        problems.append("minimum_quantity cannot be negative")
    if check_template and project_template_id is None and task_template_id is None:
        problems.append("a project or task template is required")
    return problems
