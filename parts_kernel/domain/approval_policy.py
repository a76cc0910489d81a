"""
Approval policy (``parts_kernel.domain.approval_policy``).

Responsibility
--------------
Decides whether a new stock movement must wait for sign-off before it
counts as approved.  The ledger service receives the policy by injection
and calls it once per recorded movement.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.

Rules
-----
A policy is any callable ``(transaction_type, total_cost) -> bool``
returning True when approval is REQUIRED.  ``threshold_approval_policy``
builds the standard one: cost strictly above a threshold, or a type listed
as sensitive.  Unknown cost never trips the threshold.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from decimal import Decimal

from parts_kernel.models.part_transaction import TransactionType

ApprovalPolicy = Callable[[TransactionType, Decimal | None], bool]

DEFAULT_APPROVAL_THRESHOLD = Decimal("500.00")


def threshold_approval_policy(
    threshold: Decimal = DEFAULT_APPROVAL_THRESHOLD,
    sensitive_types: Iterable[TransactionType] = (),
) -> ApprovalPolicy:
    """Build a policy requiring approval above ``threshold`` or for sensitive types."""
    sensitive = frozenset(TransactionType(t) for t in sensitive_types)

    def requires_approval(
        transaction_type: TransactionType,
        total_cost: Decimal | None,
    ) -> bool:
        if TransactionType(transaction_type) in sensitive:
            return True
        return total_cost is not None and total_cost > threshold

    return requires_approval


def never_require_approval(
    transaction_type: TransactionType,
    total_cost: Decimal | None,
) -> bool:
    return False


def policy_from_config(config) -> ApprovalPolicy:
    """Standard policy for an InventoryConfig."""
    return threshold_approval_policy(
        config.approval_cost_threshold,
        config.sensitive_transaction_types,
    )
