"""Selectors for the parts kernel (read side)."""

from parts_kernel.selectors.part_selector import PartSelector
from parts_kernel.selectors.transaction_selector import TransactionSelector

__all__ = [
    "PartSelector",
    "TransactionSelector",
]
