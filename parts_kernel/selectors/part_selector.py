"""
Module: parts_kernel.selectors.part_selector
Responsibility: Read-only inventory reports over active parts: listings,
    stock status, reorder candidates and inventory valuation.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/dtos.py and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - Only active parts (is_active=True) appear in any result.
    - Returns PartInfo DTOs or plain values, never ORM models.

Failure modes:
    - Database errors are logged as query_failed and yield an empty result.
"""

from collections.abc import Callable
from datetime import date
from decimal import Decimal

from sqlalchemy import Select, func, or_, select

from parts_kernel.domain.dtos import PartInfo
from parts_kernel.models.part import LEAD_TIME_DIVISOR_DAYS, Part, PartCategory
from parts_kernel.selectors.base import BaseSelector

ZERO = Decimal("0")


class PartSelector(BaseSelector[Part]):
    """Inventory queries.  Every method is side-effect free."""

    def _active(self, *criteria) -> Select:
        return (
            select(Part)
            .where(Part.is_active.is_(True), *criteria)
            .order_by(Part.part_number)
        )

    def _list(self, name: str, build: Callable[[], Select]) -> list[PartInfo]:
        def run() -> list[PartInfo]:
            return [PartInfo.from_model(p) for p in self.session.execute(build()).scalars()]

        return self._query(name, run, [])

    def _filtered(self, name: str, keep: Callable[[Part], bool]) -> list[PartInfo]:
        """Active parts for which ``keep`` holds; used for derived stock rules."""

        def run() -> list[PartInfo]:
            parts = self.session.execute(self._active()).scalars()
            return [PartInfo.from_model(p) for p in parts if keep(p)]

        return self._query(name, run, [])

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def get_active_parts(self) -> list[PartInfo]:
        return self._list("active_parts", self._active)

    def count_active_parts(self) -> int:
        return self._query(
            "count_active_parts",
            lambda: self.session.execute(
                select(func.count()).select_from(Part).where(Part.is_active.is_(True))
            ).scalar_one(),
            0,
        )

    def get_parts_by_category(self, category: PartCategory) -> list[PartInfo]:
        return self._list(
            "parts_by_category",
            lambda: self._active(Part.category == PartCategory(category).value),
        )

    def search_parts(self, text: str) -> list[PartInfo]:
        """Case-insensitive substring match on name, description or part number."""
        return self._list(
            "search_parts",
            lambda: self._active(
                or_(
                    Part.name.icontains(text, autoescape=True),
                    Part.description.icontains(text, autoescape=True),
                    Part.part_number.icontains(text, autoescape=True),
                )
            ),
        )

    def get_parts_by_vendor(self, vendor: str) -> list[PartInfo]:
        return self._list(
            "parts_by_vendor",
            lambda: self._active(Part.vendor.icontains(vendor, autoescape=True)),
        )

    def get_parts_by_storage_location(self, location: str) -> list[PartInfo]:
        return self._list(
            "parts_by_storage_location",
            lambda: self._active(Part.storage_location.icontains(location, autoescape=True)),
        )

    # ------------------------------------------------------------------
    # Stock status
    # ------------------------------------------------------------------

    def get_low_stock_parts(self) -> list[PartInfo]:
        return self._list("low_stock_parts", lambda: self._active(Part.quantity_on_hand <= Part.minimum_stock))

    def get_critically_low_parts(self) -> list[PartInfo]:
        return self._list(
            "critically_low_parts", lambda: self._active(Part.quantity_on_hand <= Part.safety_stock)
        )

    def get_out_of_stock_parts(self) -> list[PartInfo]:
        return self._list("out_of_stock_parts", lambda: self._active(Part.quantity_on_hand == 0))

    def get_parts_needing_reorder(self, lead_time_divisor: int = LEAD_TIME_DIVISOR_DAYS) -> list[PartInfo]:
        return self._filtered("parts_needing_reorder", lambda p: p.needs_reorder(lead_time_divisor))

    def get_parts_requiring_attention(self) -> list[PartInfo]:
        """Low or critically low parts, each listed once."""
        return self._filtered("parts_requiring_attention", lambda p: p.is_low_stock or p.is_critically_low)

    def get_parts_unused_since(self, cutoff: date) -> list[PartInfo]:
        """Parts never used, or last used before ``cutoff``."""
        return self._list(
            "parts_unused_since",
            lambda: self._active(or_(Part.last_used_date.is_(None), Part.last_used_date < cutoff)),
        )

    def get_parts_with_long_lead_times(self, min_days: int) -> list[PartInfo]:
        return self._list(
            "parts_with_long_lead_times",
            lambda: select(Part)
            .where(Part.is_active.is_(True), Part.lead_time_days >= min_days)
            .order_by(Part.lead_time_days.desc(), Part.part_number),
        )

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    def get_total_inventory_value(self) -> Decimal:
        """Sum of unit_cost x quantity_on_hand; parts without a cost count as zero."""

        def run() -> Decimal:
            rows = self.session.execute(
                select(Part.unit_cost, Part.quantity_on_hand).where(
                    Part.is_active.is_(True), Part.unit_cost.is_not(None)
                )
            ).all()
            return sum((cost * quantity for cost, quantity in rows), ZERO)

        return self._query("total_inventory_value", run, ZERO)

    def get_inventory_value_by_category(self) -> dict[PartCategory, Decimal]:
        def run() -> dict[PartCategory, Decimal]:
            rows = self.session.execute(
                select(Part.category, Part.unit_cost, Part.quantity_on_hand).where(
                    Part.is_active.is_(True), Part.unit_cost.is_not(None)
                )
            ).all()
            totals: dict[PartCategory, Decimal] = {}
            for category, cost, quantity in rows:
                category = PartCategory(category)
                totals[category] = totals.get(category, ZERO) + cost * quantity
            return totals

        return self._query("inventory_value_by_category", run, {})

    def get_most_expensive_parts(self, limit: int = 10) -> list[PartInfo]:
        """Highest unit cost first."""
        return self._list(
            "most_expensive_parts",
            lambda: select(Part)
            .where(Part.is_active.is_(True), Part.unit_cost.is_not(None))
            .order_by(Part.unit_cost.desc(), Part.part_number)
            .limit(limit),
        )

    def get_highest_value_parts(self, limit: int = 10) -> list[PartInfo]:
        """Highest stock value (unit cost x quantity) first."""

        def run() -> list[PartInfo]:
            parts = self.session.execute(
                select(Part).where(Part.is_active.is_(True), Part.unit_cost.is_not(None))
            ).scalars().all()
            ranked = sorted(parts, key=lambda p: (-p.inventory_value, p.part_number))
            return [PartInfo.from_model(p) for p in ranked[:limit]]

        return self._query("highest_value_parts", run, [])
