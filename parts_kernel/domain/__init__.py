"""
Pure domain layer.

Data transfer objects and inventory rules with NO dependencies on
the database, the session, or the system clock.  All domain objects are
immutable and deterministic.
"""

from parts_kernel.domain.approval_policy import (
    DEFAULT_APPROVAL_THRESHOLD,
    ApprovalPolicy,
    never_require_approval,
    policy_from_config,
    threshold_approval_policy,
)
from parts_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from parts_kernel.domain.dtos import (
    BulkFailure,
    BulkResult,
    LedgerVerification,
    PartDraft,
    PartInfo,
    PartNeed,
    PartUsageRank,
    PartUsageStats,
    ProjectConsumption,
    ReadinessSummary,
    RequirementInfo,
    RequirementShortfall,
    TemplateRef,
    TransactionInfo,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "ApprovalPolicy",
    "DEFAULT_APPROVAL_THRESHOLD",
    "threshold_approval_policy",
    "never_require_approval",
    "policy_from_config",
    "PartDraft",
    "PartInfo",
    "TransactionInfo",
    "LedgerVerification",
    "BulkFailure",
    "BulkResult",
    "TemplateRef",
    "RequirementInfo",
    "RequirementShortfall",
    "PartNeed",
    "ReadinessSummary",
    "PartUsageStats",
    "PartUsageRank",
    "ProjectConsumption",
]
