"""
Part mutation service - the only way stock levels change.

Every stock change follows the same critical section, per part:

    SAVEPOINT
      SELECT part ... FOR UPDATE           (serializes writers on this part)
      validate against the locked quantity
      ledger.record_movement(part, ...)    (stages entry, allocates sequence)
      part.quantity_on_hand = entry.balance_after
      flush                                (UPDATE checks part.version)
    RELEASE SAVEPOINT

If the version check fails (another writer got in between, e.g. on a
backend without row locks) the savepoint is rolled back and the whole
section is retried, up to ``max_lock_retries`` times.  Validation
failures roll back the savepoint and leave the caller's transaction
untouched.

Public methods return PartInfo / TransactionInfo DTOs,
never ORM entities.
"""

from collections.abc import Callable, Iterable, Mapping
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError as DBIntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from parts_kernel.config import InventoryConfig
from parts_kernel.domain.approval_policy import ApprovalPolicy, policy_from_config
from parts_kernel.domain.clock import Clock
from parts_kernel.domain.dtos import (
    BulkFailure,
    BulkResult,
    PartDraft,
    PartInfo,
    TransactionInfo,
)
from parts_kernel.exceptions import (
    DuplicatePartNumberError,
    InsufficientStockError,
    InvalidQuantityError,
    InvalidTransactionTypeError,
    MissingFieldError,
    OptimisticLockError,
    PartNotFoundError,
    PartReferencedError,
    PartsKernelError,
    ValidationError,
)
from parts_kernel.logging_config import LogContext, get_logger
from parts_kernel.models.part import Part, PartCategory
from parts_kernel.models.part_requirement import PartRequirement
from parts_kernel.models.part_transaction import PartTransaction, TransactionType
from parts_kernel.services.base import BaseService
from parts_kernel.services.ledger_service import TransactionLedgerService

logger = get_logger("services.part")

T = TypeVar("T")

DEFAULT_RESTOCK_REASON = "Restocked from vendor"
DEFAULT_USAGE_REASON = "Used in project/task"
DEFAULT_ADJUSTMENT_REASON = "Inventory adjustment"
INITIAL_STOCK_REASON = "Initial inventory entry"

# Fields update_part() may change.  Stock and plumbing are excluded.
EDITABLE_PART_FIELDS = frozenset({
    "part_number",
    "name",
    "description",
    "category",
    "minimum_stock",
    "safety_stock",
    "optimal_stock",
    "unit",
    "unit_cost",
    "vendor",
    "vendor_part_number",
    "vendor_url",
    "storage_location",
    "lead_time_days",
    "is_consumable",
    "notes",
})

_NON_NEGATIVE_FIELDS = ("minimum_stock", "safety_stock", "optimal_stock", "lead_time_days")


class PartService(BaseService[Part]):
    """
    Creates parts and moves stock, one ledger entry per movement.

    Contract:
        Flush-only: the caller owns commit.  Each public mutator is atomic
        on its own (SAVEPOINT) and either changes the part and appends its
        ledger entry, or changes nothing.

    Guarantees:
        - quantity_on_hand never goes below zero.
        - After every mutator, the newest ledger entry's balance_after
          equals the part's quantity_on_hand.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: InventoryConfig | None = None,
        approval_policy: ApprovalPolicy | None = None,
        ledger: TransactionLedgerService | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or InventoryConfig()
        self.ledger = ledger or TransactionLedgerService(
            session,
            clock=self.clock,
            approval_policy=approval_policy or policy_from_config(self.config),
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _get_by_id(self, part_id: UUID) -> Part:
        part = self.session.get(Part, part_id)
        if part is None:
            raise PartNotFoundError(str(part_id))
        return part

    def _find_by_number(self, part_number: str) -> Part | None:
        return self.session.execute(
            select(Part).where(Part.part_number == part_number)
        ).scalar_one_or_none()

    def _lock_part(self, part_id: UUID) -> Part:
        part = self.session.execute(
            select(Part)
            .where(Part.id == part_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if part is None:
            raise PartNotFoundError(str(part_id))
        return part

    def get_part(self, part_id: UUID) -> PartInfo:
        """
        Raises:
            PartNotFoundError: If the part doesn't exist.
        """
        return PartInfo.from_model(self._get_by_id(part_id))

    def find_part_by_number(self, part_number: str) -> PartInfo | None:
        part = self._find_by_number(part_number)
        return PartInfo.from_model(part) if part is not None else None

    def is_part_number_unique(self, part_number: str, exclude_part_id: UUID | None = None) -> bool:
        """True if no other part (active or inactive) uses ``part_number``."""
        part = self._find_by_number(part_number)
        return part is None or part.id == exclude_part_id

    def _reference_counts(self, part_id: UUID) -> tuple[int, int]:
        transactions = self.session.execute(
            select(func.count()).select_from(PartTransaction).where(PartTransaction.part_id == part_id)
        ).scalar_one()
        requirements = self.session.execute(
            select(func.count()).select_from(PartRequirement).where(PartRequirement.part_id == part_id)
        ).scalar_one()
        return transactions, requirements

    def can_delete_part(self, part_id: UUID) -> bool:
        """True if the part exists and nothing references it."""
        if self.session.get(Part, part_id) is None:
            return False
        return self._reference_counts(part_id) == (0, 0)

    def validate_inventory_transaction(self, part_id: UUID, signed_delta: int) -> bool:
        """
        Dry-run check for a movement of ``signed_delta`` units.

        Reads without locking; the answer can be stale by the time a real
        mutation runs, which re-checks under the lock.
        """
        part = self.session.get(Part, part_id)
        if part is None or not signed_delta:
            return False
        return part.quantity_on_hand + signed_delta >= 0

    # ------------------------------------------------------------------
    # Critical section
    # ------------------------------------------------------------------

    def _with_locked_part(self, part_id: UUID, operation: str, fn: Callable[[Part], T]) -> T:
        attempts = self.config.max_lock_retries
        for attempt in range(1, attempts + 1):
            try:
                with self.session.begin_nested(), self.session.no_autoflush:
                    part = self._lock_part(part_id)
                    result = fn(part)
                    self.session.flush()
                return result
            except StaleDataError:
                logger.warning(
                    "optimistic_lock_retry",
                    extra={
                        "part_id": str(part_id),
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": attempts,
                    },
                )

        logger.error(
            "optimistic_lock_exhausted",
            extra={"part_id": str(part_id), "operation": operation, "attempts": attempts},
        )
        raise OptimisticLockError("Part", str(part_id), attempts)

    def _apply_movement(
        self,
        part: Part,
        transaction_type: TransactionType,
        quantity: int,
        actor_id: UUID | None,
        **details: Any,
    ) -> PartTransaction:
        if transaction_type.is_outgoing and quantity > part.quantity_on_hand:
            logger.warning(
                "insufficient_stock",
                extra={
                    "part_id": str(part.id),
                    "transaction_type": transaction_type.value,
                    "requested": quantity,
                    "available": part.quantity_on_hand,
                },
            )
            raise InsufficientStockError(str(part.id), quantity, part.quantity_on_hand)

        entry = self.ledger.record_movement(
            part,
            transaction_type,
            quantity,
            performed_by_id=actor_id,
            **details,
        )
        part.quantity_on_hand = entry.balance_after
        part.updated_by_id = actor_id

        today = self.clock.today()
        if transaction_type is TransactionType.PURCHASE:
            part.last_restock_date = today
        elif transaction_type is TransactionType.USAGE:
            part.last_used_date = today
        return entry

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_part(
        self,
        part_number: str,
        name: str,
        category: PartCategory = PartCategory.OTHER,
        *,
        quantity_on_hand: int = 0,
        actor_id: UUID | None = None,
        **attributes: Any,
    ) -> PartInfo:
        """
        Register a new part, with an INITIAL_STOCK entry if it starts stocked.

        ``attributes`` are any of EDITABLE_PART_FIELDS.

        Raises:
            MissingFieldError: part_number or name is blank.
            InvalidQuantityError: a quantity or threshold is negative.
            DuplicatePartNumberError: the number is taken by any part,
                active or not.
        """
        part_number = (part_number or "").strip()
        if not part_number:
            raise MissingFieldError("part_number")
        if not name or not name.strip():
            raise MissingFieldError("name")
        if quantity_on_hand is None or quantity_on_hand < 0:
            raise InvalidQuantityError("quantity_on_hand", quantity_on_hand, "cannot be negative")
        self._validate_attributes(attributes)

        if self._find_by_number(part_number) is not None:
            logger.warning("duplicate_part_number_rejected", extra={"part_number": part_number})
            raise DuplicatePartNumberError(part_number)

        part_id = uuid4()
        with LogContext.bind(part_id=part_id, actor_id=actor_id):
            # The part row and its opening stock entry commit or vanish together.
            with self.session.begin_nested():
                try:
                    with self.session.begin_nested():
                        part = Part(
                            id=part_id,
                            part_number=part_number,
                            name=name.strip(),
                            category=PartCategory(category),
                            quantity_on_hand=0,
                            ledger_sequence=0,
                            created_by_id=actor_id,
                            **attributes,
                        )
                        self.session.add(part)
                        self.session.flush()
                except DBIntegrityError:
                    if self._find_by_number(part_number) is not None:
                        raise DuplicatePartNumberError(part_number) from None
                    raise

                if quantity_on_hand > 0:
                    self._with_locked_part(
                        part_id,
                        "create_part",
                        lambda p: self._apply_movement(
                            p,
                            TransactionType.INITIAL_STOCK,
                            quantity_on_hand,
                            actor_id,
                            unit_cost=p.unit_cost,
                            reason=INITIAL_STOCK_REASON,
                        ),
                    )

            logger.info(
                "part_created",
                extra={
                    "part_number": part_number,
                    "category": PartCategory(category).value,
                    "quantity_on_hand": quantity_on_hand,
                },
            )
            return PartInfo.from_model(part)

    def ensure_part(self, draft: PartDraft, actor_id: UUID | None = None) -> PartInfo:
        """
        Idempotent create: return the existing part for ``draft.part_number``
        unchanged, or create it from the draft.
        """
        existing = self._find_by_number(draft.part_number.strip())
        if existing is not None:
            logger.debug("part_already_exists", extra={"part_number": draft.part_number})
            return PartInfo.from_model(existing)
        return self.create_part(actor_id=actor_id, **draft.as_kwargs())

    def import_parts(
        self,
        drafts: Iterable[PartDraft],
        actor_id: UUID | None = None,
    ) -> BulkResult[PartInfo]:
        """Create each draft independently; bad rows are reported, not fatal."""
        succeeded: list[PartInfo] = []
        failures: list[BulkFailure] = []
        for draft in drafts:
            try:
                succeeded.append(self.create_part(actor_id=actor_id, **draft.as_kwargs()))
            except PartsKernelError as exc:
                failures.append(BulkFailure(item=draft.part_number, code=exc.code, message=str(exc)))

        logger.info(
            "parts_imported",
            extra={"created": len(succeeded), "failed": len(failures)},
        )
        return BulkResult(succeeded=tuple(succeeded), failures=tuple(failures))

    # ------------------------------------------------------------------
    # Stock movements
    # ------------------------------------------------------------------

    def restock(
        self,
        part_id: UUID,
        quantity: int,
        unit_cost: Decimal | None = None,
        vendor: str | None = None,
        reference_number: str | None = None,
        *,
        actor_id: UUID | None = None,
        notes: str | None = None,
    ) -> TransactionInfo:
        """
        Receive a purchase: increments stock and sets last_restock_date.

        Raises:
            InvalidQuantityError: quantity is not positive or cost negative.
            PartNotFoundError: unknown part.
        """
        self._require_positive(quantity)
        if unit_cost is not None and unit_cost < 0:
            raise InvalidQuantityError("unit_cost", unit_cost, "cannot be negative")
        reason = f"{DEFAULT_RESTOCK_REASON}: {vendor}" if vendor else DEFAULT_RESTOCK_REASON

        with LogContext.bind(part_id=part_id, actor_id=actor_id):
            entry = self._with_locked_part(
                part_id,
                "restock",
                lambda part: self._apply_movement(
                    part,
                    TransactionType.PURCHASE,
                    quantity,
                    actor_id,
                    unit_cost=unit_cost,
                    vendor=vendor,
                    reference_number=reference_number,
                    reason=reason,
                    notes=notes,
                ),
            )
            logger.info(
                "stock_restocked",
                extra={
                    "quantity": quantity,
                    "balance_after": entry.balance_after,
                    "total_cost": entry.total_cost,
                    "vendor": vendor,
                },
            )
            return TransactionInfo.from_model(entry)

    def use_parts(
        self,
        part_id: UUID,
        quantity: int,
        project_id: UUID | None = None,
        task_id: UUID | None = None,
        reason: str | None = None,
        *,
        actor_id: UUID | None = None,
    ) -> TransactionInfo:
        """
        Consume stock for a project or task; sets last_used_date.

        Raises:
            InvalidQuantityError: quantity is not positive.
            InsufficientStockError: quantity exceeds stock on hand.  Nothing
                is changed and no entry is written.
            PartNotFoundError: unknown part.
        """
        self._require_positive(quantity)

        with LogContext.bind(part_id=part_id, actor_id=actor_id):
            entry = self._with_locked_part(
                part_id,
                "use_parts",
                lambda part: self._apply_movement(
                    part,
                    TransactionType.USAGE,
                    quantity,
                    actor_id,
                    unit_cost=part.unit_cost,
                    project_id=project_id,
                    task_id=task_id,
                    reason=reason or DEFAULT_USAGE_REASON,
                ),
            )
            logger.info(
                "stock_used",
                extra={
                    "quantity": quantity,
                    "balance_after": entry.balance_after,
                    "project_id": project_id,
                    "task_id": task_id,
                },
            )
            return TransactionInfo.from_model(entry)

    def adjust_inventory(
        self,
        part_id: UUID,
        new_quantity: int,
        reason: str | None = None,
        *,
        actor_id: UUID | None = None,
    ) -> TransactionInfo | None:
        """
        Set stock to a counted value.

        Returns the ADJUSTMENT_POSITIVE / ADJUSTMENT_NEGATIVE entry, or None
        when the count already matches (no entry is written).

        Raises:
            InvalidQuantityError: new_quantity is negative.
            PartNotFoundError: unknown part.
        """
        if new_quantity is None or new_quantity < 0:
            raise InvalidQuantityError("new_quantity", new_quantity, "cannot be negative")

        def adjust(part: Part) -> PartTransaction | None:
            delta = new_quantity - part.quantity_on_hand
            if delta == 0:
                return None
            kind = TransactionType.ADJUSTMENT_POSITIVE if delta > 0 else TransactionType.ADJUSTMENT_NEGATIVE
            return self._apply_movement(
                part,
                kind,
                abs(delta),
                actor_id,
                unit_cost=part.unit_cost,
                reason=reason or DEFAULT_ADJUSTMENT_REASON,
            )

        with LogContext.bind(part_id=part_id, actor_id=actor_id):
            entry = self._with_locked_part(part_id, "adjust_inventory", adjust)
            if entry is None:
                logger.debug("adjustment_skipped_no_change", extra={"new_quantity": new_quantity})
                return None
            logger.info(
                "stock_adjusted",
                extra={
                    "transaction_type": entry.kind.value,
                    "quantity": entry.quantity,
                    "balance_after": entry.balance_after,
                },
            )
            return TransactionInfo.from_model(entry)

    def update_quantity(
        self,
        part_id: UUID,
        signed_delta: int,
        transaction_type: TransactionType,
        reason: str | None = None,
        *,
        actor_id: UUID | None = None,
        **details: Any,
    ) -> TransactionInfo:
        """
        Generic movement: ``signed_delta`` units of ``transaction_type``.

        ``details`` may carry unit_cost, vendor, reference_number, notes,
        project_id and task_id for the ledger entry.

        Raises:
            InvalidQuantityError: signed_delta is zero.
            InvalidTransactionTypeError: the type's direction disagrees with
                the sign of signed_delta.
            InsufficientStockError: outgoing delta exceeds stock on hand.
            PartNotFoundError: unknown part.
        """
        try:
            transaction_type = TransactionType(transaction_type)
        except ValueError:
            raise InvalidTransactionTypeError(str(transaction_type), signed_delta or 0) from None
        if not signed_delta:
            raise InvalidQuantityError("signed_delta", signed_delta, "must be non-zero")
        if (signed_delta > 0) != transaction_type.is_incoming:
            raise InvalidTransactionTypeError(transaction_type.value, signed_delta)
        unknown = set(details) - {"unit_cost", "vendor", "reference_number", "notes", "project_id", "task_id"}
        if unknown:
            raise ValidationError(f"Unknown movement details: {sorted(unknown)}")

        with LogContext.bind(part_id=part_id, actor_id=actor_id):
            entry = self._with_locked_part(
                part_id,
                "update_quantity",
                lambda part: self._apply_movement(
                    part,
                    transaction_type,
                    abs(signed_delta),
                    actor_id,
                    reason=reason,
                    **details,
                ),
            )
            logger.info(
                "stock_moved",
                extra={
                    "transaction_type": transaction_type.value,
                    "signed_delta": signed_delta,
                    "balance_after": entry.balance_after,
                },
            )
            return TransactionInfo.from_model(entry)

    def bulk_adjust_inventory(
        self,
        adjustments: Mapping[UUID, int],
        reason: str | None = None,
        *,
        actor_id: UUID | None = None,
    ) -> BulkResult[TransactionInfo]:
        """
        Apply a stock count to many parts, each independently.

        Parts already at their counted quantity produce no entry and no
        failure.
        """
        succeeded: list[TransactionInfo] = []
        failures: list[BulkFailure] = []
        for part_id, new_quantity in adjustments.items():
            try:
                entry = self.adjust_inventory(part_id, new_quantity, reason, actor_id=actor_id)
            except PartsKernelError as exc:
                failures.append(BulkFailure(item=str(part_id), code=exc.code, message=str(exc)))
                continue
            if entry is not None:
                succeeded.append(entry)

        logger.info(
            "bulk_adjustment_completed",
            extra={"adjusted": len(succeeded), "failed": len(failures)},
        )
        return BulkResult(succeeded=tuple(succeeded), failures=tuple(failures))

    # ------------------------------------------------------------------
    # Metadata and lifecycle
    # ------------------------------------------------------------------

    def update_part(self, part_id: UUID, *, actor_id: UUID | None = None, **changes: Any) -> PartInfo:
        """
        Edit descriptive fields.  Stock is never touched here.

        Raises:
            ValidationError: a field outside EDITABLE_PART_FIELDS was given.
            DuplicatePartNumberError: the new part number is taken.
        """
        not_editable = set(changes) - EDITABLE_PART_FIELDS
        if not_editable:
            raise ValidationError(f"Fields cannot be edited here: {sorted(not_editable)}")
        self._validate_attributes(changes)

        if "part_number" in changes:
            changes["part_number"] = (changes["part_number"] or "").strip()
            if not changes["part_number"]:
                raise MissingFieldError("part_number")
            if not self.is_part_number_unique(changes["part_number"], exclude_part_id=part_id):
                raise DuplicatePartNumberError(changes["part_number"])
        if "name" in changes and (not changes["name"] or not changes["name"].strip()):
            raise MissingFieldError("name")
        if "category" in changes:
            changes["category"] = PartCategory(changes["category"])

        def apply(part: Part) -> Part:
            for key, value in changes.items():
                setattr(part, key, value)
            part.updated_by_id = actor_id
            return part

        with LogContext.bind(part_id=part_id, actor_id=actor_id):
            part = self._with_locked_part(part_id, "update_part", apply)
            logger.info("part_updated", extra={"fields": sorted(changes)})
            return PartInfo.from_model(part)

    def delete_part(self, part_id: UUID, *, actor_id: UUID | None = None) -> PartInfo:
        """Soft delete: the part is deactivated and its number stays reserved."""
        return self._set_active(part_id, False, actor_id, "part_deactivated")

    def reactivate_part(self, part_id: UUID, *, actor_id: UUID | None = None) -> PartInfo:
        return self._set_active(part_id, True, actor_id, "part_reactivated")

    def _set_active(self, part_id: UUID, active: bool, actor_id: UUID | None, event: str) -> PartInfo:
        def apply(part: Part) -> Part:
            part.is_active = active
            part.updated_by_id = actor_id
            return part

        with LogContext.bind(part_id=part_id, actor_id=actor_id):
            part = self._with_locked_part(part_id, event, apply)
            logger.info(event, extra={"part_number": part.part_number})
            return PartInfo.from_model(part)

    def permanently_delete_part(self, part_id: UUID, *, actor_id: UUID | None = None) -> None:
        """
        Hard delete a part that was never moved or planned for.

        Raises:
            PartNotFoundError: unknown part.
            PartReferencedError: ledger entries or requirements reference it.
        """
        with LogContext.bind(part_id=part_id, actor_id=actor_id):
            with self.session.begin_nested():
                part = self._lock_part(part_id)
                transactions, requirements = self._reference_counts(part_id)
                if transactions or requirements:
                    logger.warning(
                        "part_delete_blocked",
                        extra={"transactions": transactions, "requirements": requirements},
                    )
                    raise PartReferencedError(str(part_id), transactions, requirements)
                part_number = part.part_number
                self.session.delete(part)
                self.session.flush()

            logger.warning("part_permanently_deleted", extra={"part_number": part_number})

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_positive(quantity: int) -> None:
        if quantity is None or quantity <= 0:
            raise InvalidQuantityError("quantity", quantity, "must be positive")

    @staticmethod
    def _validate_attributes(attributes: Mapping[str, Any]) -> None:
        unknown = set(attributes) - EDITABLE_PART_FIELDS
        if unknown:
            raise ValidationError(f"Unknown part fields: {sorted(unknown)}")
        for name in _NON_NEGATIVE_FIELDS:
            value = attributes.get(name)
            if value is not None and value < 0:
                raise InvalidQuantityError(name, value, "cannot be negative")
        unit_cost = attributes.get("unit_cost")
        if unit_cost is not None and unit_cost < 0:
            raise InvalidQuantityError("unit_cost", unit_cost, "cannot be negative")
