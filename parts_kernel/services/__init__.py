"""Services for the parts kernel (write side)."""

from parts_kernel.services.fulfillment_engine import RequirementFulfillmentEngine
from parts_kernel.services.ledger_service import TransactionLedgerService
from parts_kernel.services.part_service import PartService
from parts_kernel.services.requirement_service import RequirementService

__all__ = [
    "PartService",
    "RequirementFulfillmentEngine",
    "RequirementService",
    "TransactionLedgerService",
]
