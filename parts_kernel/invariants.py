"""
Ledger Invariants Contract.

These invariants are structural law for the parts inventory. They are
hardcoded in the mutation path, the ledger service, and the ORM
immutability listeners. No InventoryConfig setting or approval policy may
override them.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across PartService, TransactionLedgerService,
the Part/PartTransaction table constraints, and parts_kernel.db.immutability.
"""

from enum import Enum, unique


@unique
class LedgerInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel.

    Configuration may influence *which* movements need approval, but never
    *whether* these rules apply.
    """

    NON_NEGATIVE_STOCK = "non_negative_stock"
    """quantity_on_hand and every balance_after are >= 0. Enforced by
    PartService's sufficiency check, by TransactionLedgerService before an
    entry is staged, and by DB check constraints."""

    BALANCE_CONTINUITY = "balance_continuity"
    """Every quantity change writes exactly one ledger entry whose
    balance_after equals the new quantity_on_hand. Enforced by PartService
    under the part row lock and by the before_flush listener."""

    APPEND_ONLY = "append_only"
    """Ledger entries are never edited or deleted except for approval
    metadata and audited administrative removal. Enforced by ORM listeners
    (parts_kernel.db.immutability)."""

    SEQUENCE_CONTIGUITY = "sequence_contiguity"
    """Each part's ledger is numbered 1, 2, 3, ... with no gaps or
    duplicates. Enforced by the per-part ledger_sequence counter and a
    unique constraint on (part_id, sequence)."""

    ONE_WAY_APPROVAL = "one_way_approval"
    """An approved entry can never become unapproved. Enforced by
    TransactionLedgerService and the immutability listener."""


# All invariants as a frozenset for programmatic checks.
ALL_LEDGER_INVARIANTS: frozenset[LedgerInvariant] = frozenset(LedgerInvariant)

# Read-side and pure-domain packages may not import the write side.
# This is enforced by tests/architecture/test_layer_boundary.py.
FORBIDDEN_LAYER_IMPORTS: dict[str, tuple[str, ...]] = {
    "parts_kernel/selectors": ("parts_kernel.services",),
    "parts_kernel/domain": ("parts_kernel.services", "parts_kernel.selectors", "parts_kernel.db"),
    "parts_kernel/models": ("parts_kernel.services", "parts_kernel.selectors"),
}
