"""TransactionSelector history, approval backlog and spending roll-ups."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from parts_kernel.models.part_transaction import TransactionType


def ids(entries):
    return [e.id for e in entries]


@pytest.fixture
def gearbox(create_part):
    return create_part(quantity_on_hand=10, part_number="GBX-01", unit_cost=Decimal("12.00"))


class TestHistory:
    def test_part_history_in_sequence_order(self, gearbox, part_service, transaction_selector):
        part_service.restock(gearbox.id, 5)
        part_service.use_parts(gearbox.id, 3)

        history = transaction_selector.get_transactions_for_part(gearbox.id)

        assert [e.sequence for e in history] == [1, 2, 3]
        assert [e.transaction_type for e in history] == [
            TransactionType.INITIAL_STOCK,
            TransactionType.PURCHASE,
            TransactionType.USAGE,
        ]
        assert [e.balance_after for e in history] == [10, 15, 12]

    def test_recent_and_last(self, gearbox, part_service, transaction_selector):
        used = part_service.use_parts(gearbox.id, 1)
        recent = transaction_selector.get_recent_transactions_for_part(gearbox.id, limit=1)
        assert ids(recent) == [used.id]
        assert transaction_selector.get_last_transaction_for_part(gearbox.id).id == used.id
        assert transaction_selector.get_last_transaction_for_part(uuid4()) is None

    def test_recent_newest_first(self, gearbox, part_service, transaction_selector, deterministic_clock):
        deterministic_clock.advance(60)
        later = part_service.restock(gearbox.id, 1)
        recent = transaction_selector.get_recent_transactions()
        assert recent[0].id == later.id
        assert len(recent) == 2

    def test_date_ranges(self, gearbox, part_service, transaction_selector, deterministic_clock):
        start = deterministic_clock.now()
        deterministic_clock.advance(days=3)
        middle = part_service.use_parts(gearbox.id, 2)
        deterministic_clock.advance(days=3)
        part_service.use_parts(gearbox.id, 2)

        window = (start + timedelta(days=1), start + timedelta(days=4))
        assert ids(transaction_selector.get_transactions_in_range(*window)) == [middle.id]
        assert ids(transaction_selector.get_transactions_for_part_in_range(gearbox.id, *window)) == [middle.id]
        assert ids(transaction_selector.get_outgoing_transactions(*window)) == [middle.id]
        assert transaction_selector.get_incoming_transactions(*window) == []

    def test_by_type_and_direction(self, gearbox, part_service, transaction_selector, deterministic_clock):
        part_service.adjust_inventory(gearbox.id, 8)
        purchase = part_service.restock(gearbox.id, 2)
        now = deterministic_clock.now()

        assert ids(transaction_selector.get_transactions_by_type(TransactionType.PURCHASE)) == [purchase.id]
        assert transaction_selector.count_transactions_by_type("INITIAL_STOCK") == 1
        incoming = transaction_selector.get_incoming_transactions(now, now)
        assert {e.transaction_type for e in incoming} == {TransactionType.INITIAL_STOCK, TransactionType.PURCHASE}
        (adjustment,) = transaction_selector.get_adjustment_transactions(now, now)
        assert adjustment.transaction_type is TransactionType.ADJUSTMENT_NEGATIVE

    def test_project_task_and_performer(self, gearbox, part_service, transaction_selector, test_actor_id):
        project_id, task_id = uuid4(), uuid4()
        entry = part_service.use_parts(gearbox.id, 2, project_id=project_id, task_id=task_id, actor_id=test_actor_id)
        part_service.use_parts(gearbox.id, 1)

        assert ids(transaction_selector.get_transactions_for_project(project_id)) == [entry.id]
        assert ids(transaction_selector.get_transactions_for_task(task_id)) == [entry.id]
        assert transaction_selector.count_transactions_for_project(project_id) == 1
        assert entry.id in ids(transaction_selector.get_transactions_by_performer(test_actor_id))


class TestApprovalQueries:
    @pytest.fixture
    def movements(self, create_part, part_service, ledger_service, test_actor_id):
        part = create_part()
        pending = part_service.restock(part.id, 10, unit_cost=Decimal("80.00"))
        approved_big = part_service.restock(part.id, 10, unit_cost=Decimal("70.00"))
        ledger_service.approve_transaction(approved_big.id, test_actor_id)
        cheap = part_service.restock(part.id, 1, unit_cost=Decimal("5.00"))
        no_cost = part_service.restock(part.id, 1)
        return {"pending": pending, "approved_big": approved_big, "cheap": cheap, "no_cost": no_cost}

    def test_unapproved_backlog(self, movements, transaction_selector):
        assert ids(transaction_selector.get_unapproved_transactions()) == [movements["pending"].id]
        assert transaction_selector.count_unapproved_transactions() == 1

    def test_high_value_is_strict(self, movements, transaction_selector):
        high = set(ids(transaction_selector.get_high_value_transactions(Decimal("700.00"))))
        assert high == {movements["pending"].id}

    def test_audit_only_approved(self, movements, transaction_selector):
        audit = ids(transaction_selector.get_transactions_requiring_audit(Decimal("100.00")))
        assert audit == [movements["approved_big"].id]

    def test_without_cost(self, movements, transaction_selector):
        assert ids(transaction_selector.get_transactions_without_cost()) == [movements["no_cost"].id]


class TestSearch:
    def test_reference_vendor_reason_notes(self, gearbox, part_service, transaction_selector):
        entry = part_service.restock(
            gearbox.id, 3, vendor="WestCoast Products", reference_number="PO-2024-117", notes="rush order"
        )
        used = part_service.use_parts(gearbox.id, 1, reason="Drivetrain rebuild")

        assert ids(transaction_selector.get_transactions_by_reference("po-2024")) == [entry.id]
        assert ids(transaction_selector.get_transactions_by_vendor("westcoast")) == [entry.id]
        assert ids(transaction_selector.search_by_notes("RUSH")) == [entry.id]
        assert ids(transaction_selector.search_by_reason("drivetrain")) == [used.id]

    def test_quantity_range_inclusive(self, gearbox, part_service, transaction_selector):
        three = part_service.use_parts(gearbox.id, 3)
        part_service.use_parts(gearbox.id, 1)
        assert ids(transaction_selector.get_transactions_by_quantity_range(2, 3)) == [three.id]


class TestRollUps:
    def test_spending(self, create_part, part_service, transaction_selector):
        part = create_part()
        part_service.restock(part.id, 10, unit_cost=Decimal("2.50"), vendor="AndyMark")
        part_service.restock(part.id, 4, unit_cost=Decimal("10.00"), vendor="REV")
        part_service.restock(part.id, 2, unit_cost=Decimal("1.00"), vendor="AndyMark")
        part_service.use_parts(part.id, 5)

        assert transaction_selector.get_total_spending() == Decimal("67.00")
        assert transaction_selector.get_spending_by_vendor() == {
            "REV": Decimal("40.00"),
            "AndyMark": Decimal("27.00"),
        }
        assert list(transaction_selector.get_spending_by_vendor()) == ["REV", "AndyMark"]

    def test_spending_window(self, create_part, part_service, transaction_selector, deterministic_clock):
        part = create_part()
        part_service.restock(part.id, 1, unit_cost=Decimal("9.00"))
        deterministic_clock.advance(days=10)
        cutoff = deterministic_clock.now()
        part_service.restock(part.id, 1, unit_cost=Decimal("4.00"))
        assert transaction_selector.get_total_spending(start=cutoff) == Decimal("4.00")
        assert transaction_selector.get_total_spending(end=cutoff - timedelta(days=1)) == Decimal("9.00")

    def test_part_usage_stats(self, gearbox, part_service, transaction_selector, deterministic_clock):
        part_service.use_parts(gearbox.id, 4)
        part_service.update_quantity(gearbox.id, -1, TransactionType.LOST)
        part_service.update_quantity(gearbox.id, 2, TransactionType.RETURN)

        stats = transaction_selector.get_part_usage_stats(gearbox.id)

        assert stats.transaction_count == 4
        assert stats.total_incoming == 12
        assert stats.total_outgoing == 5
        assert stats.total_used == 4
        assert stats.last_transaction_date is not None

    def test_most_used_parts(self, create_part, part_service, transaction_selector):
        heavy = create_part(quantity_on_hand=50, part_number="HEAVY")
        light = create_part(quantity_on_hand=50, part_number="LIGHT")
        part_service.use_parts(heavy.id, 20)
        part_service.use_parts(heavy.id, 5)
        part_service.use_parts(light.id, 3)
        part_service.update_quantity(light.id, -40, TransactionType.DISPOSED)

        ranked = transaction_selector.get_most_used_parts()

        assert [(r.part_number, r.total_used) for r in ranked] == [("HEAVY", 25), ("LIGHT", 3)]

    def test_project_consumption_nets_returns(self, gearbox, create_part, part_service, transaction_selector):
        project_id = uuid4()
        other = create_part(quantity_on_hand=5)
        part_service.use_parts(gearbox.id, 6, project_id=project_id)
        part_service.update_quantity(gearbox.id, 2, TransactionType.RETURN, project_id=project_id, unit_cost=Decimal("12.00"))
        part_service.use_parts(other.id, 1, project_id=project_id)

        consumption = transaction_selector.get_project_consumption(project_id)

        assert [(c.part_id, c.quantity_used) for c in consumption] == [(gearbox.id, 4), (other.id, 1)]
        assert consumption[0].total_cost == Decimal("48.00")
        assert consumption[1].total_cost == Decimal("0")

    def test_performer_activity(self, gearbox, part_service, transaction_selector, test_actor_id):
        part_service.use_parts(gearbox.id, 1, actor_id=test_actor_id)
        part_service.use_parts(gearbox.id, 1, actor_id=test_actor_id)
        part_service.restock(gearbox.id, 1, actor_id=test_actor_id)

        activity = transaction_selector.get_performer_activity(test_actor_id)

        assert activity[TransactionType.USAGE] == 2
        assert activity[TransactionType.PURCHASE] == 1
        assert transaction_selector.get_performer_activity(uuid4()) == {}
