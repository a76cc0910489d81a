"""
PartService: the only path that changes stock.

Every mutation must leave the part's quantity equal to the newest ledger
entry's balance_after, or change nothing at all.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.orm.exc import StaleDataError

from parts_kernel.domain.dtos import PartDraft
from parts_kernel.exceptions import (
    DuplicatePartNumberError,
    InsufficientStockError,
    InvalidQuantityError,
    InvalidTransactionTypeError,
    MissingFieldError,
    OptimisticLockError,
    PartNotFoundError,
    PartReferencedError,
    ValidationError,
)
from parts_kernel.models.part import PartCategory
from parts_kernel.models.part_transaction import PartTransaction, TransactionType
from parts_kernel.services.part_service import (
    DEFAULT_ADJUSTMENT_REASON,
    DEFAULT_RESTOCK_REASON,
    DEFAULT_USAGE_REASON,
    INITIAL_STOCK_REASON,
    PartService,
)


class TestStockroomScenarios:
    """Receive 50 sheets of stock, try to over-draw, then recount."""

    @pytest.fixture
    def raw_material(self, part_service, test_actor_id):
        part = part_service.create_part("RM-100", "6061 plate", PartCategory.RAW_MATERIALS, actor_id=test_actor_id)
        part_service.restock(part.id, 50, unit_cost=Decimal("2.00"), actor_id=test_actor_id)
        return part

    def test_restock_from_empty(self, raw_material, part_service, transaction_selector):
        assert part_service.get_part(raw_material.id).quantity_on_hand == 50
        (entry,) = transaction_selector.get_transactions_for_part(raw_material.id)
        assert entry.transaction_type is TransactionType.PURCHASE
        assert entry.balance_after == 50
        assert entry.total_cost == Decimal("100.00")

    def test_overdraw_rejected_without_entry(self, raw_material, part_service, transaction_selector):
        with pytest.raises(InsufficientStockError):
            part_service.use_parts(raw_material.id, 70)
        assert part_service.get_part(raw_material.id).quantity_on_hand == 50
        assert len(transaction_selector.get_transactions_for_part(raw_material.id)) == 1

    def test_recount_down(self, raw_material, part_service):
        entry = part_service.adjust_inventory(raw_material.id, 45)
        assert entry.transaction_type is TransactionType.ADJUSTMENT_NEGATIVE
        assert entry.quantity == 5
        assert entry.balance_after == 45
        assert part_service.get_part(raw_material.id).quantity_on_hand == 45


class TestCreatePart:
    def test_initial_stock_entry_written(self, create_part, transaction_selector):
        part = create_part(quantity_on_hand=12)

        assert part.quantity_on_hand == 12
        assert part.ledger_sequence == 1
        (entry,) = transaction_selector.get_transactions_for_part(part.id)
        assert entry.transaction_type is TransactionType.INITIAL_STOCK
        assert entry.quantity == 12
        assert entry.balance_after == 12
        assert entry.reason == INITIAL_STOCK_REASON

    def test_zero_stock_writes_no_entry(self, create_part, transaction_selector):
        part = create_part(quantity_on_hand=0)
        assert part.ledger_sequence == 0
        assert transaction_selector.get_transactions_for_part(part.id) == []

    def test_attributes_stored(self, part_service, test_actor_id):
        part = part_service.create_part(
            "  MOT-775  ",
            "775 motor",
            PartCategory.ELECTRONICS,
            actor_id=test_actor_id,
            unit_cost=Decimal("19.99"),
            vendor="AndyMark",
            lead_time_days=10,
            storage_location="Bin A3",
        )
        assert part.part_number == "MOT-775"
        assert part.category is PartCategory.ELECTRONICS
        assert part.unit_cost == Decimal("19.99")
        assert part.storage_location == "Bin A3"
        assert part.is_active

    def test_duplicate_part_number_rejected(self, create_part):
        create_part(part_number="DUP-1")
        with pytest.raises(DuplicatePartNumberError) as exc_info:
            create_part(part_number="DUP-1")
        assert exc_info.value.part_number == "DUP-1"

    def test_duplicate_of_inactive_part_rejected(self, create_part, part_service):
        part = create_part(part_number="OLD-1")
        part_service.delete_part(part.id)
        with pytest.raises(DuplicatePartNumberError):
            create_part(part_number="OLD-1")

    @pytest.mark.parametrize("number,name", [("", "x"), ("   ", "x"), ("P-1", ""), ("P-1", None)])
    def test_blank_identity_rejected(self, part_service, number, name):
        with pytest.raises(MissingFieldError):
            part_service.create_part(number, name)

    def test_negative_values_rejected(self, part_service):
        with pytest.raises(InvalidQuantityError):
            part_service.create_part("NEG-1", "neg", quantity_on_hand=-1)
        with pytest.raises(InvalidQuantityError):
            part_service.create_part("NEG-2", "neg", minimum_stock=-3)
        with pytest.raises(InvalidQuantityError):
            part_service.create_part("NEG-3", "neg", unit_cost=Decimal("-0.01"))

    def test_unknown_attribute_rejected(self, part_service):
        with pytest.raises(ValidationError):
            part_service.create_part("BAD-1", "bad", quantity="ten")


    def test_failed_opening_stock_leaves_no_part(self, session, deterministic_clock, inventory_config):
        def unavailable_policy(transaction_type, total_cost):
            raise RuntimeError("approval backend unavailable")

        service = PartService(
            session, clock=deterministic_clock, config=inventory_config, approval_policy=unavailable_policy
        )
        with pytest.raises(RuntimeError):
            service.create_part("ATOM-1", "Bearing block", quantity_on_hand=10)
        assert service.find_part_by_number("ATOM-1") is None

        created = service.create_part("ATOM-1", "Bearing block")
        assert created.quantity_on_hand == 0


class TestRestock:
    def test_restock_then_use(self, create_part, part_service, transaction_selector, deterministic_clock):
        part = create_part(quantity_on_hand=0)
        project_id = uuid4()

        restock = part_service.restock(part.id, 20, unit_cost=Decimal("1.50"), vendor="McMaster")
        used = part_service.use_parts(part.id, 5, project_id=project_id)

        assert part_service.get_part(part.id).quantity_on_hand == 15
        assert restock.transaction_type is TransactionType.PURCHASE
        assert restock.balance_after == 20
        assert restock.total_cost == Decimal("30.00")
        assert restock.reason == f"{DEFAULT_RESTOCK_REASON}: McMaster"
        assert used.transaction_type is TransactionType.USAGE
        assert used.quantity == 5
        assert used.effective_quantity_change == -5
        assert used.balance_after == 15
        assert used.project_id == project_id
        assert used.reason == DEFAULT_USAGE_REASON
        assert [e.sequence for e in transaction_selector.get_transactions_for_part(part.id)] == [1, 2]

        info = part_service.get_part(part.id)
        assert info.last_restock_date == deterministic_clock.today()
        assert info.last_used_date == deterministic_clock.today()

    def test_restock_without_vendor_uses_default_reason(self, create_part, part_service):
        part = create_part()
        assert part_service.restock(part.id, 1).reason == DEFAULT_RESTOCK_REASON

    @pytest.mark.parametrize("quantity", [0, -4])
    def test_non_positive_quantity_rejected(self, create_part, part_service, quantity):
        part = create_part(quantity_on_hand=3)
        with pytest.raises(InvalidQuantityError):
            part_service.restock(part.id, quantity)
        assert part_service.get_part(part.id).quantity_on_hand == 3

    def test_unknown_part(self, part_service):
        with pytest.raises(PartNotFoundError):
            part_service.restock(uuid4(), 5)


class TestUseParts:
    def test_insufficient_stock_changes_nothing(self, create_part, part_service, transaction_selector):
        part = create_part(quantity_on_hand=3)

        with pytest.raises(InsufficientStockError) as exc_info:
            part_service.use_parts(part.id, 5)

        assert exc_info.value.requested == 5
        assert exc_info.value.available == 3
        info = part_service.get_part(part.id)
        assert info.quantity_on_hand == 3
        assert info.ledger_sequence == 1
        assert len(transaction_selector.get_transactions_for_part(part.id)) == 1

    def test_using_exactly_all_stock(self, create_part, part_service):
        part = create_part(quantity_on_hand=4)
        entry = part_service.use_parts(part.id, 4)
        assert entry.balance_after == 0
        assert part_service.get_part(part.id).is_out_of_stock

    def test_inactive_part_can_still_move(self, create_part, part_service):
        part = create_part(quantity_on_hand=4)
        part_service.delete_part(part.id)
        assert part_service.use_parts(part.id, 1).balance_after == 3

    def test_usage_logged(self, create_part, part_service, captured_logs):
        part = create_part(quantity_on_hand=4)
        part_service.use_parts(part.id, 2)
        record = next(r for r in captured_logs() if r["message"] == "stock_used")
        assert record["part_id"] == str(part.id)
        assert record["balance_after"] == 2

    def test_insufficient_stock_logged(self, create_part, part_service, captured_logs):
        part = create_part(quantity_on_hand=1)
        with pytest.raises(InsufficientStockError):
            part_service.use_parts(part.id, 2)
        assert any(r["message"] == "insufficient_stock" for r in captured_logs())


class TestAdjustInventory:
    def test_adjust_down_then_up(self, create_part, part_service, transaction_selector):
        part = create_part(quantity_on_hand=10)

        down = part_service.adjust_inventory(part.id, 7, "cycle count")
        up = part_service.adjust_inventory(part.id, 9)

        assert down.transaction_type is TransactionType.ADJUSTMENT_NEGATIVE
        assert down.quantity == 3
        assert down.balance_after == 7
        assert down.reason == "cycle count"
        assert up.transaction_type is TransactionType.ADJUSTMENT_POSITIVE
        assert up.quantity == 2
        assert up.reason == DEFAULT_ADJUSTMENT_REASON
        assert part_service.get_part(part.id).quantity_on_hand == 9
        assert len(transaction_selector.get_transactions_for_part(part.id)) == 3

    def test_same_quantity_is_a_no_op(self, create_part, part_service):
        part = create_part(quantity_on_hand=5)
        assert part_service.adjust_inventory(part.id, 5) is None
        assert part_service.get_part(part.id).ledger_sequence == 1

    def test_adjust_to_zero(self, create_part, part_service):
        part = create_part(quantity_on_hand=5)
        assert part_service.adjust_inventory(part.id, 0).balance_after == 0

    def test_negative_target_rejected(self, create_part, part_service):
        part = create_part(quantity_on_hand=5)
        with pytest.raises(InvalidQuantityError):
            part_service.adjust_inventory(part.id, -1)


class TestUpdateQuantity:
    def test_signed_movement(self, create_part, part_service):
        part = create_part(quantity_on_hand=5)
        entry = part_service.update_quantity(part.id, -2, TransactionType.DAMAGED, "dropped")
        assert entry.transaction_type is TransactionType.DAMAGED
        assert entry.balance_after == 3
        assert entry.reason == "dropped"

    def test_transfer_in_with_details(self, create_part, part_service):
        part = create_part()
        entry = part_service.update_quantity(
            part.id, 4, TransactionType.TRANSFER_IN, reference_number="XFER-9", notes="from shop B"
        )
        assert entry.balance_after == 4
        assert entry.reference_number == "XFER-9"

    def test_direction_must_match_type(self, create_part, part_service):
        part = create_part(quantity_on_hand=5)
        with pytest.raises(InvalidTransactionTypeError):
            part_service.update_quantity(part.id, 2, TransactionType.LOST)
        with pytest.raises(InvalidTransactionTypeError):
            part_service.update_quantity(part.id, -2, TransactionType.DONATION)

    def test_unknown_type_rejected(self, create_part, part_service):
        part = create_part(quantity_on_hand=5)
        with pytest.raises(InvalidTransactionTypeError):
            part_service.update_quantity(part.id, 1, "GIFT")

    def test_zero_delta_rejected(self, create_part, part_service):
        part = create_part(quantity_on_hand=5)
        with pytest.raises(InvalidQuantityError):
            part_service.update_quantity(part.id, 0, TransactionType.FOUND)

    def test_outgoing_beyond_stock(self, create_part, part_service):
        part = create_part(quantity_on_hand=1)
        with pytest.raises(InsufficientStockError):
            part_service.update_quantity(part.id, -2, TransactionType.LOST)


class TestBulkOperations:
    def test_bulk_adjust_partial_success(self, create_part, part_service):
        a = create_part(quantity_on_hand=5)
        b = create_part(quantity_on_hand=5)
        c = create_part(quantity_on_hand=5)
        missing = uuid4()

        result = part_service.bulk_adjust_inventory(
            {a.id: 8, b.id: -1, missing: 3, c.id: 5}, "annual count"
        )

        assert result.success_count == 1
        assert result.succeeded[0].part_id == a.id
        assert {f.code for f in result.failures} == {"INVALID_QUANTITY", "PART_NOT_FOUND"}
        assert set(result.failed_items()) == {str(b.id), str(missing)}
        assert part_service.get_part(a.id).quantity_on_hand == 8
        assert part_service.get_part(b.id).quantity_on_hand == 5
        assert part_service.get_part(c.id).ledger_sequence == 1

    def test_import_parts_partial_success(self, part_service, create_part):
        create_part(part_number="TAKEN")
        drafts = [
            PartDraft(part_number="IMP-1", name="Shaft collar", quantity_on_hand=10),
            PartDraft(part_number="TAKEN", name="dup"),
            PartDraft(part_number="IMP-2", name="Hex shaft", category=PartCategory.STRUCTURAL),
        ]

        result = part_service.import_parts(drafts)

        assert [p.part_number for p in result.succeeded] == ["IMP-1", "IMP-2"]
        assert result.failure_count == 1
        assert result.failures[0].code == "DUPLICATE_PART_NUMBER"
        assert not result.all_succeeded
        assert part_service.find_part_by_number("IMP-1").quantity_on_hand == 10

    def test_ensure_part_is_idempotent(self, part_service):
        draft = PartDraft(part_number="ENS-1", name="Zip ties", quantity_on_hand=100)
        first = part_service.ensure_part(draft)
        again = part_service.ensure_part(PartDraft(part_number="ENS-1", name="Renamed", quantity_on_hand=3))

        assert again.id == first.id
        assert again.name == "Zip ties"
        assert again.quantity_on_hand == 100
        assert again.ledger_sequence == 1


class TestPartLifecycle:
    def test_update_part_metadata(self, create_part, part_service):
        part = create_part(quantity_on_hand=2)
        updated = part_service.update_part(part.id, name="New name", minimum_stock=4, vendor="REV")
        assert updated.name == "New name"
        assert updated.minimum_stock == 4
        assert updated.quantity_on_hand == 2
        assert updated.is_low_stock

    def test_update_part_cannot_touch_quantity(self, create_part, part_service):
        part = create_part(quantity_on_hand=2)
        with pytest.raises(ValidationError):
            part_service.update_part(part.id, quantity_on_hand=50)

    def test_update_part_number_must_stay_unique(self, create_part, part_service):
        create_part(part_number="A-1")
        b = create_part(part_number="B-1")
        with pytest.raises(DuplicatePartNumberError):
            part_service.update_part(b.id, part_number="A-1")
        assert part_service.update_part(b.id, part_number="B-1").part_number == "B-1"

    def test_soft_delete_and_reactivate(self, create_part, part_service):
        part = create_part()
        assert not part_service.delete_part(part.id).is_active
        assert part_service.reactivate_part(part.id).is_active

    def test_permanent_delete_without_history(self, create_part, part_service):
        part = create_part()
        assert part_service.can_delete_part(part.id)
        part_service.permanently_delete_part(part.id)
        with pytest.raises(PartNotFoundError):
            part_service.get_part(part.id)

    def test_permanent_delete_with_history_blocked(self, create_part, part_service):
        part = create_part(quantity_on_hand=1)
        assert not part_service.can_delete_part(part.id)
        with pytest.raises(PartReferencedError) as exc_info:
            part_service.permanently_delete_part(part.id)
        assert exc_info.value.transaction_count == 1
        assert part_service.get_part(part.id).quantity_on_hand == 1

    def test_permanent_delete_with_requirement_blocked(self, create_part, part_service, create_requirement):
        part = create_part()
        create_requirement(part.id, 2)
        with pytest.raises(PartReferencedError) as exc_info:
            part_service.permanently_delete_part(part.id)
        assert exc_info.value.requirement_count == 1

    def test_can_delete_unknown_part(self, part_service):
        assert not part_service.can_delete_part(uuid4())


class TestQueries:
    def test_find_by_number(self, create_part, part_service):
        part = create_part(part_number="FIND-1")
        assert part_service.find_part_by_number("FIND-1").id == part.id
        assert part_service.find_part_by_number("NOPE") is None

    def test_is_part_number_unique(self, create_part, part_service):
        part = create_part(part_number="UNQ-1")
        assert not part_service.is_part_number_unique("UNQ-1")
        assert part_service.is_part_number_unique("UNQ-1", exclude_part_id=part.id)
        assert part_service.is_part_number_unique("UNQ-2")

    def test_validate_inventory_transaction(self, create_part, part_service):
        part = create_part(quantity_on_hand=3)
        assert part_service.validate_inventory_transaction(part.id, -3)
        assert not part_service.validate_inventory_transaction(part.id, -4)
        assert part_service.validate_inventory_transaction(part.id, 10)
        assert not part_service.validate_inventory_transaction(part.id, 0)
        assert not part_service.validate_inventory_transaction(uuid4(), 1)


class TestOptimisticRetry:
    """A stale version on flush restarts the movement from a fresh read."""

    @pytest.fixture
    def stale_flushes(self, session, monkeypatch):
        real_flush = session.flush
        pending = {"remaining": 0}

        def flush(*args, **kwargs):
            if pending["remaining"] and any(isinstance(obj, PartTransaction) for obj in session.new):
                pending["remaining"] -= 1
                raise StaleDataError("UPDATE statement on table 'parts' expected to update 1 row(s); 0 were matched.")
            return real_flush(*args, **kwargs)

        monkeypatch.setattr(session, "flush", flush)
        return pending

    def test_single_conflict_is_retried(
        self, create_part, part_service, transaction_selector, stale_flushes, captured_logs
    ):
        part = create_part(quantity_on_hand=5)
        stale_flushes["remaining"] = 1

        entry = part_service.use_parts(part.id, 2)

        assert entry.balance_after == 3
        assert part_service.get_part(part.id).quantity_on_hand == 3
        assert [e.balance_after for e in transaction_selector.get_transactions_for_part(part.id)] == [5, 3]
        retries = [r for r in captured_logs() if r["message"] == "optimistic_lock_retry"]
        assert len(retries) == 1
        assert retries[0]["attempt"] == 1

    def test_exhausted_retries_change_nothing(
        self, create_part, part_service, transaction_selector, stale_flushes, inventory_config, captured_logs
    ):
        part = create_part(quantity_on_hand=5)
        stale_flushes["remaining"] = inventory_config.max_lock_retries

        with pytest.raises(OptimisticLockError) as exc_info:
            part_service.use_parts(part.id, 2)

        assert exc_info.value.attempts == inventory_config.max_lock_retries
        assert part_service.get_part(part.id).quantity_on_hand == 5
        assert [e.balance_after for e in transaction_selector.get_transactions_for_part(part.id)] == [5]
        assert any(r["message"] == "optimistic_lock_exhausted" for r in captured_logs())

    def test_exhausted_retries_on_create_leave_no_part(self, part_service, stale_flushes, inventory_config):
        stale_flushes["remaining"] = inventory_config.max_lock_retries

        with pytest.raises(OptimisticLockError):
            part_service.create_part("ATOM-2", "Hex bearing", quantity_on_hand=4)
        assert part_service.find_part_by_number("ATOM-2") is None
