"""Domain models for the parts kernel."""

from parts_kernel.models.part import LEAD_TIME_DIVISOR_DAYS, Part, PartCategory
from parts_kernel.models.part_requirement import (
    PHASE_ORDER,
    BuildPhase,
    PartRequirement,
    RequirementPriority,
)
from parts_kernel.models.part_transaction import (
    ADJUSTMENT_TYPES,
    INCOMING_TYPES,
    OUTGOING_TYPES,
    PartTransaction,
    TransactionType,
)

__all__ = [
    "Part",
    "PartCategory",
    "LEAD_TIME_DIVISOR_DAYS",
    "PartTransaction",
    "TransactionType",
    "INCOMING_TYPES",
    "OUTGOING_TYPES",
    "ADJUSTMENT_TYPES",
    "PartRequirement",
    "RequirementPriority",
    "BuildPhase",
    "PHASE_ORDER",
]
