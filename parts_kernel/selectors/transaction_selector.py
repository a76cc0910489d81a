"""
Module: parts_kernel.selectors.transaction_selector
Responsibility: Read-only query access to the stock movement ledger: history
    per part, project, task and performer; the approval backlog; spending,
    usage and consumption roll-ups.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/dtos.py and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - DTO convention: returns TransactionInfo and aggregate DTOs, never ORM
      models.
    - Per-part history is ordered by ledger sequence; cross-part listings
      are newest first (transaction_date, then sequence).

Failure modes:
    - Database errors are logged as query_failed and yield an empty result
      (see BaseSelector).

Audit relevance:
    Spending and audit queries derive from the ledger rows themselves;
    nothing is pre-aggregated.
"""

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Select, func, select

from parts_kernel.domain.dtos import (
    PartUsageRank,
    PartUsageStats,
    ProjectConsumption,
    TransactionInfo,
)
from parts_kernel.models.part import Part
from parts_kernel.models.part_transaction import (
    ADJUSTMENT_TYPES,
    INCOMING_TYPES,
    OUTGOING_TYPES,
    PartTransaction,
    TransactionType,
)
from parts_kernel.selectors.base import BaseSelector

ZERO = Decimal("0")

_NEWEST_FIRST = (
    PartTransaction.transaction_date.desc(),
    PartTransaction.sequence.desc(),
    PartTransaction.id,
)


def _type_values(types) -> list[str]:
    return sorted(t.value for t in types)


class TransactionSelector(BaseSelector[PartTransaction]):
    """Ledger queries.  Every method is side-effect free."""

    def _list(self, name: str, build: Callable[[], Select]) -> list[TransactionInfo]:
        def run() -> list[TransactionInfo]:
            return [TransactionInfo.from_model(t) for t in self.session.execute(build()).scalars()]

        return self._query(name, run, [])

    def _newest(self, *criteria) -> Select:
        return select(PartTransaction).where(*criteria).order_by(*_NEWEST_FIRST)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_transactions_for_part(self, part_id: UUID) -> list[TransactionInfo]:
        """The part's full ledger in sequence order (oldest first)."""
        return self._list(
            "transactions_for_part",
            lambda: select(PartTransaction)
            .where(PartTransaction.part_id == part_id)
            .order_by(PartTransaction.sequence),
        )

    def get_transactions_for_part_in_range(
        self, part_id: UUID, start: datetime, end: datetime
    ) -> list[TransactionInfo]:
        return self._list(
            "transactions_for_part_in_range",
            lambda: self._newest(
                PartTransaction.part_id == part_id,
                PartTransaction.transaction_date.between(start, end),
            ),
        )

    def get_transactions_in_range(self, start: datetime, end: datetime) -> list[TransactionInfo]:
        return self._list(
            "transactions_in_range",
            lambda: self._newest(PartTransaction.transaction_date.between(start, end)),
        )

    def get_transactions_by_type(self, transaction_type: TransactionType) -> list[TransactionInfo]:
        return self._list(
            "transactions_by_type",
            lambda: self._newest(PartTransaction.transaction_type == TransactionType(transaction_type).value),
        )

    def get_transactions_for_project(self, project_id: UUID) -> list[TransactionInfo]:
        return self._list(
            "transactions_for_project",
            lambda: self._newest(PartTransaction.project_id == project_id),
        )

    def get_transactions_for_task(self, task_id: UUID) -> list[TransactionInfo]:
        return self._list(
            "transactions_for_task",
            lambda: self._newest(PartTransaction.task_id == task_id),
        )

    def get_transactions_by_performer(self, performer_id: UUID) -> list[TransactionInfo]:
        return self._list(
            "transactions_by_performer",
            lambda: self._newest(PartTransaction.performed_by_id == performer_id),
        )

    def get_recent_transactions(self, limit: int = 50) -> list[TransactionInfo]:
        return self._list("recent_transactions", lambda: self._newest().limit(limit))

    def get_recent_transactions_for_part(self, part_id: UUID, limit: int = 10) -> list[TransactionInfo]:
        return self._list(
            "recent_transactions_for_part",
            lambda: select(PartTransaction)
            .where(PartTransaction.part_id == part_id)
            .order_by(PartTransaction.sequence.desc())
            .limit(limit),
        )

    def get_last_transaction_for_part(self, part_id: UUID) -> TransactionInfo | None:
        recent = self.get_recent_transactions_for_part(part_id, limit=1)
        return recent[0] if recent else None

    # ------------------------------------------------------------------
    # Direction
    # ------------------------------------------------------------------

    def get_incoming_transactions(self, start: datetime, end: datetime) -> list[TransactionInfo]:
        return self._list(
            "incoming_transactions",
            lambda: self._newest(
                PartTransaction.transaction_type.in_(_type_values(INCOMING_TYPES)),
                PartTransaction.transaction_date.between(start, end),
            ),
        )

    def get_outgoing_transactions(self, start: datetime, end: datetime) -> list[TransactionInfo]:
        return self._list(
            "outgoing_transactions",
            lambda: self._newest(
                PartTransaction.transaction_type.in_(_type_values(OUTGOING_TYPES)),
                PartTransaction.transaction_date.between(start, end),
            ),
        )

    def get_adjustment_transactions(self, start: datetime, end: datetime) -> list[TransactionInfo]:
        return self._list(
            "adjustment_transactions",
            lambda: self._newest(
                PartTransaction.transaction_type.in_(_type_values(ADJUSTMENT_TYPES)),
                PartTransaction.transaction_date.between(start, end),
            ),
        )

    # ------------------------------------------------------------------
    # Approval and cost
    # ------------------------------------------------------------------

    def get_unapproved_transactions(self) -> list[TransactionInfo]:
        """Approval backlog, oldest first."""
        return self._list(
            "unapproved_transactions",
            lambda: select(PartTransaction)
            .where(PartTransaction.is_approved.is_(False))
            .order_by(PartTransaction.transaction_date, PartTransaction.sequence, PartTransaction.id),
        )

    def count_unapproved_transactions(self) -> int:
        return self._count("count_unapproved", PartTransaction.is_approved.is_(False))

    def get_high_value_transactions(self, threshold: Decimal) -> list[TransactionInfo]:
        """Entries whose total cost is strictly above ``threshold``."""
        return self._list(
            "high_value_transactions",
            lambda: self._newest(PartTransaction.total_cost > threshold),
        )

    def get_transactions_requiring_audit(self, threshold: Decimal) -> list[TransactionInfo]:
        """Approved entries above ``threshold``: the ones an auditor samples."""
        return self._list(
            "transactions_requiring_audit",
            lambda: self._newest(
                PartTransaction.total_cost > threshold,
                PartTransaction.is_approved.is_(True),
            ),
        )

    def get_transactions_without_cost(self) -> list[TransactionInfo]:
        return self._list(
            "transactions_without_cost",
            lambda: self._newest(PartTransaction.total_cost.is_(None)),
        )

    # ------------------------------------------------------------------
    # Text search
    # ------------------------------------------------------------------

    def get_transactions_by_reference(self, reference: str) -> list[TransactionInfo]:
        return self._list(
            "transactions_by_reference",
            lambda: self._newest(PartTransaction.reference_number.icontains(reference, autoescape=True)),
        )

    def get_transactions_by_vendor(self, vendor: str) -> list[TransactionInfo]:
        return self._list(
            "transactions_by_vendor",
            lambda: self._newest(PartTransaction.vendor.icontains(vendor, autoescape=True)),
        )

    def search_by_reason(self, text: str) -> list[TransactionInfo]:
        return self._list(
            "search_by_reason",
            lambda: self._newest(PartTransaction.reason.icontains(text, autoescape=True)),
        )

    def search_by_notes(self, text: str) -> list[TransactionInfo]:
        return self._list(
            "search_by_notes",
            lambda: self._newest(PartTransaction.notes.icontains(text, autoescape=True)),
        )

    def get_transactions_by_quantity_range(self, minimum: int, maximum: int) -> list[TransactionInfo]:
        return self._list(
            "transactions_by_quantity_range",
            lambda: self._newest(PartTransaction.quantity.between(minimum, maximum)),
        )

    # ------------------------------------------------------------------
    # Counts
    # ------------------------------------------------------------------

    def _count(self, name: str, *criteria) -> int:
        return self._query(
            name,
            lambda: self.session.execute(
                select(func.count()).select_from(PartTransaction).where(*criteria)
            ).scalar_one(),
            0,
        )

    def count_transactions_by_type(self, transaction_type: TransactionType) -> int:
        return self._count(
            "count_by_type",
            PartTransaction.transaction_type == TransactionType(transaction_type).value,
        )

    def count_transactions_for_project(self, project_id: UUID) -> int:
        return self._count("count_for_project", PartTransaction.project_id == project_id)

    # ------------------------------------------------------------------
    # Roll-ups
    # ------------------------------------------------------------------

    def _in_range(self, start: datetime | None, end: datetime | None) -> list:
        criteria = []
        if start is not None:
            criteria.append(PartTransaction.transaction_date >= start)
        if end is not None:
            criteria.append(PartTransaction.transaction_date <= end)
        return criteria

    def get_total_spending(self, start: datetime | None = None, end: datetime | None = None) -> Decimal:
        """Sum of total_cost over incoming entries that carry a cost."""

        def run() -> Decimal:
            costs = self.session.execute(
                select(PartTransaction.total_cost).where(
                    PartTransaction.total_cost.is_not(None),
                    PartTransaction.transaction_type.in_(_type_values(INCOMING_TYPES)),
                    *self._in_range(start, end),
                )
            ).scalars()
            return sum(costs, ZERO)

        return self._query("total_spending", run, ZERO)

    def get_spending_by_vendor(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> dict[str, Decimal]:
        """Incoming spend per vendor, largest first.  Entries without a vendor are skipped."""

        def run() -> dict[str, Decimal]:
            rows = self.session.execute(
                select(PartTransaction.vendor, PartTransaction.total_cost).where(
                    PartTransaction.vendor.is_not(None),
                    PartTransaction.total_cost.is_not(None),
                    PartTransaction.transaction_type.in_(_type_values(INCOMING_TYPES)),
                    *self._in_range(start, end),
                )
            ).all()
            totals: dict[str, Decimal] = {}
            for vendor, cost in rows:
                totals[vendor] = totals.get(vendor, ZERO) + cost
            return dict(sorted(totals.items(), key=lambda kv: (-kv[1], kv[0])))

        return self._query("spending_by_vendor", run, {})

    def get_part_usage_stats(
        self, part_id: UUID, start: datetime | None = None, end: datetime | None = None
    ) -> PartUsageStats:
        def run() -> PartUsageStats:
            rows = self.session.execute(
                select(
                    PartTransaction.transaction_type,
                    PartTransaction.quantity,
                    PartTransaction.transaction_date,
                ).where(PartTransaction.part_id == part_id, *self._in_range(start, end))
            ).all()
            incoming = outgoing = used = 0
            last = None
            for kind, quantity, when in rows:
                kind = TransactionType(kind)
                if kind.is_incoming:
                    incoming += quantity
                else:
                    outgoing += quantity
                if kind is TransactionType.USAGE:
                    used += quantity
                if last is None or when > last:
                    last = when
            return PartUsageStats(
                part_id=part_id,
                transaction_count=len(rows),
                total_incoming=incoming,
                total_outgoing=outgoing,
                total_used=used,
                last_transaction_date=last,
            )

        return self._query("part_usage_stats", run, PartUsageStats(part_id, 0, 0, 0, 0))

    def get_most_used_parts(
        self,
        limit: int = 10,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[PartUsageRank]:
        """Parts ranked by units consumed through USAGE entries."""

        def run() -> list[PartUsageRank]:
            total = func.sum(PartTransaction.quantity).label("total_used")
            rows = self.session.execute(
                select(Part.id, Part.part_number, Part.name, total)
                .join(PartTransaction, PartTransaction.part_id == Part.id)
                .where(
                    PartTransaction.transaction_type == TransactionType.USAGE.value,
                    *self._in_range(start, end),
                )
                .group_by(Part.id, Part.part_number, Part.name)
                .order_by(total.desc(), Part.part_number)
                .limit(limit)
            ).all()
            return [
                PartUsageRank(part_id=pid, part_number=number, name=name, total_used=int(used))
                for pid, number, name, used in rows
            ]

        return self._query("most_used_parts", run, [])

    def get_project_consumption(self, project_id: UUID) -> list[ProjectConsumption]:
        """Net units (outgoing minus returns) and cost each part gave to a project."""

        def run() -> list[ProjectConsumption]:
            rows = self.session.execute(
                select(
                    PartTransaction.part_id,
                    PartTransaction.transaction_type,
                    PartTransaction.quantity,
                    PartTransaction.total_cost,
                ).where(PartTransaction.project_id == project_id)
            ).all()
            units: dict[UUID, int] = {}
            cost: dict[UUID, Decimal] = {}
            for part_id, kind, quantity, total_cost in rows:
                sign = -TransactionType(kind).quantity_multiplier
                units[part_id] = units.get(part_id, 0) + sign * quantity
                cost[part_id] = cost.get(part_id, ZERO) + sign * (total_cost or ZERO)
            return sorted(
                (ProjectConsumption(part_id=p, quantity_used=units[p], total_cost=cost[p]) for p in units),
                key=lambda c: (-c.quantity_used, str(c.part_id)),
            )

        return self._query("project_consumption", run, [])

    def get_performer_activity(
        self,
        performer_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[TransactionType, int]:
        """Number of entries per movement type recorded by one person."""

        def run() -> dict[TransactionType, int]:
            rows = self.session.execute(
                select(PartTransaction.transaction_type, func.count())
                .where(PartTransaction.performed_by_id == performer_id, *self._in_range(start, end))
                .group_by(PartTransaction.transaction_type)
            ).all()
            return {TransactionType(kind): count for kind, count in rows}

        return self._query("performer_activity", run, {})
