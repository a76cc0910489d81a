"""
Transaction ledger service - persistence and approval of stock movements.

The ledger is responsible for:
- Recording one PartTransaction per stock movement, with its running
  balance and its position in the part's ledger
- Deciding initial approval state through an injected ApprovalPolicy
- The one-way approval workflow (single and bulk)
- Administrative, audit-logged removal of an entry
- Replaying a part's ledger to verify it against stored stock

The ledger does NOT:
- Change quantity_on_hand (that's PartService, which calls
  record_movement() under the part row lock)
- Answer reporting queries (that's TransactionSelector)
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from parts_kernel.db.immutability import administrative_override
from parts_kernel.domain.approval_policy import ApprovalPolicy, threshold_approval_policy
from parts_kernel.domain.clock import Clock
from parts_kernel.domain.dtos import (
    BulkFailure,
    BulkResult,
    LedgerVerification,
    TransactionInfo,
)
from parts_kernel.exceptions import (
    InvalidQuantityError,
    LedgerImbalanceError,
    MissingFieldError,
    PartNotFoundError,
    PartsKernelError,
    TransactionAlreadyApprovedError,
    TransactionNotFoundError,
)
from parts_kernel.logging_config import LogContext, get_logger
from parts_kernel.models.part import Part
from parts_kernel.models.part_transaction import PartTransaction, TransactionType
from parts_kernel.services.base import BaseService

logger = get_logger("services.ledger")


class TransactionLedgerService(BaseService[PartTransaction]):
    """
    Append-only ledger of stock movements.

    Contract:
        record_movement() must be called with a Part row the caller has
        locked, and the caller must apply the returned entry's
        balance_after to the part in the same flush.

    Guarantees:
        - Sequences per part are 1, 2, 3, ... with no gaps, allocated from
          the part's ledger_sequence counter (never max()+1).
        - balance_after is never negative.
        - Approval goes False -> True at most once.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        approval_policy: ApprovalPolicy | None = None,
    ):
        super().__init__(session, clock)
        self.approval_policy = approval_policy or threshold_approval_policy()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_movement(
        self,
        part: Part,
        transaction_type: TransactionType,
        quantity: int,
        *,
        unit_cost: Decimal | None = None,
        reason: str | None = None,
        vendor: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
        project_id: UUID | None = None,
        task_id: UUID | None = None,
        performed_by_id: UUID | None = None,
    ) -> PartTransaction:
        """
        Build and stage the ledger entry for one movement on ``part``.

        The entry is added to the session but not flushed.

        Raises:
            InvalidQuantityError: quantity is not positive.
            LedgerImbalanceError: the movement would take the balance
                below zero.
        """
        transaction_type = TransactionType(transaction_type)
        if quantity is None or quantity <= 0:
            raise InvalidQuantityError("quantity", quantity, "must be positive")

        quantity_before = part.quantity_on_hand
        balance_after = quantity_before + quantity * transaction_type.quantity_multiplier
        if balance_after < 0:
            logger.error(
                "ledger_imbalance_blocked",
                extra={
                    "part_id": str(part.id),
                    "transaction_type": transaction_type.value,
                    "quantity_before": quantity_before,
                    "balance_after": balance_after,
                },
            )
            raise LedgerImbalanceError(str(part.id), quantity_before, balance_after)

        total_cost = unit_cost * quantity if unit_cost is not None else None
        requires_approval = self.approval_policy(transaction_type, total_cost)

        part.ledger_sequence = (part.ledger_sequence or 0) + 1
        entry = PartTransaction(
            id=uuid4(),
            part_id=part.id,
            sequence=part.ledger_sequence,
            transaction_type=transaction_type,
            quantity=quantity,
            balance_after=balance_after,
            unit_cost=unit_cost,
            total_cost=total_cost,
            reason=reason,
            vendor=vendor,
            reference_number=reference_number,
            notes=notes,
            project_id=project_id,
            task_id=task_id,
            performed_by_id=performed_by_id,
            created_by_id=performed_by_id,
            transaction_date=self.clock.now(),
            is_approved=not requires_approval,
        )
        self.session.add(entry)

        logger.debug(
            "movement_recorded",
            extra={
                "part_id": str(part.id),
                "transaction_id": str(entry.id),
                "sequence": entry.sequence,
                "transaction_type": transaction_type.value,
                "quantity": quantity,
                "balance_after": balance_after,
            },
        )
        if requires_approval:
            logger.info(
                "transaction_pending_approval",
                extra={
                    "part_id": str(part.id),
                    "transaction_id": str(entry.id),
                    "transaction_type": transaction_type.value,
                    "total_cost": total_cost,
                },
            )
        return entry

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def _lock_transaction(self, transaction_id: UUID) -> PartTransaction:
        entry = self.session.execute(
            select(PartTransaction)
            .where(PartTransaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            raise TransactionNotFoundError(str(transaction_id))
        return entry

    def approve_transaction(self, transaction_id: UUID, approver_id: UUID) -> TransactionInfo:
        """
        Approve a pending ledger entry.

        Raises:
            TransactionNotFoundError: no entry with this id.
            TransactionAlreadyApprovedError: the entry is already approved.
        """
        with LogContext.bind(transaction_id=transaction_id, actor_id=approver_id):
            with self.session.begin_nested():
                entry = self._lock_transaction(transaction_id)
                if entry.is_approved:
                    raise TransactionAlreadyApprovedError(str(transaction_id))

                entry.is_approved = True
                entry.approved_by_id = approver_id
                entry.approved_at = self.clock.now()
                entry.updated_by_id = approver_id
                self.session.flush()

            logger.info(
                "transaction_approved",
                extra={
                    "part_id": str(entry.part_id),
                    "sequence": entry.sequence,
                    "total_cost": entry.total_cost,
                },
            )
            return TransactionInfo.from_model(entry)

    def bulk_approve_transactions(
        self,
        transaction_ids: Iterable[UUID],
        approver_id: UUID,
    ) -> BulkResult[TransactionInfo]:
        """
        Approve each id independently.

        A missing or already-approved id is reported in ``failures`` and
        does not stop the rest.
        """
        succeeded: list[TransactionInfo] = []
        failures: list[BulkFailure] = []
        for transaction_id in transaction_ids:
            try:
                succeeded.append(self.approve_transaction(transaction_id, approver_id))
            except PartsKernelError as exc:
                failures.append(BulkFailure(item=str(transaction_id), code=exc.code, message=str(exc)))

        logger.info(
            "bulk_approval_completed",
            extra={
                "actor_id": str(approver_id),
                "approved": len(succeeded),
                "failed": len(failures),
            },
        )
        return BulkResult(succeeded=tuple(succeeded), failures=tuple(failures))

    # ------------------------------------------------------------------
    # Administrative
    # ------------------------------------------------------------------

    def get_transaction(self, transaction_id: UUID) -> TransactionInfo:
        entry = self.session.get(PartTransaction, transaction_id)
        if entry is None:
            raise TransactionNotFoundError(str(transaction_id))
        return TransactionInfo.from_model(entry)

    def administratively_delete_transaction(
        self,
        transaction_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> TransactionInfo:
        """
        Remove a ledger entry outside normal operation.

        The part's stock is NOT changed; verify_ledger() will report the
        gap until a corrective entry is recorded.  Returns a snapshot of the
        removed entry.

        Raises:
            MissingFieldError: reason is blank.
            TransactionNotFoundError: no entry with this id.
        """
        if not reason or not reason.strip():
            raise MissingFieldError("reason")

        with LogContext.bind(transaction_id=transaction_id, actor_id=actor_id):
            with self.session.begin_nested():
                entry = self._lock_transaction(transaction_id)
                snapshot = TransactionInfo.from_model(entry)
                with administrative_override(self.session):
                    self.session.delete(entry)
                    self.session.flush()

            logger.warning(
                "ledger_entry_administratively_deleted",
                extra={
                    "part_id": str(snapshot.part_id),
                    "sequence": snapshot.sequence,
                    "transaction_type": snapshot.transaction_type.value,
                    "quantity": snapshot.quantity,
                    "balance_after": snapshot.balance_after,
                    "reason": reason,
                },
            )
            return snapshot

    def verify_ledger(self, part_id: UUID) -> LedgerVerification:
        """
        Replay the part's ledger from zero and compare with stored state.

        Checks, in sequence order: sequences are 1..n without gaps, each
        balance_after equals the running total, and the final total equals
        quantity_on_hand.
        """
        part = self.session.get(Part, part_id)
        if part is None:
            raise PartNotFoundError(str(part_id))

        entries = self.session.execute(
            select(PartTransaction)
            .where(PartTransaction.part_id == part_id)
            .order_by(PartTransaction.sequence)
        ).scalars().all()

        running = 0
        mismatch: int | None = None
        message: str | None = None
        for expected_sequence, entry in enumerate(entries, start=1):
            running += entry.effective_quantity_change
            if entry.sequence != expected_sequence:
                mismatch, message = entry.sequence, f"expected sequence {expected_sequence}"
                break
            if entry.balance_after != running:
                mismatch, message = entry.sequence, (
                    f"balance_after {entry.balance_after} != replayed {running}"
                )
                break

        if mismatch is None and running != part.quantity_on_hand:
            message = f"replayed balance {running} != quantity_on_hand {part.quantity_on_hand}"
        if mismatch is None and message is None and len(entries) != part.ledger_sequence:
            message = f"{len(entries)} entries but ledger_sequence is {part.ledger_sequence}"

        result = LedgerVerification(
            part_id=part.id,
            is_consistent=message is None,
            entry_count=len(entries),
            replayed_balance=running,
            stored_quantity=part.quantity_on_hand,
            ledger_sequence=part.ledger_sequence,
            first_mismatch_sequence=mismatch,
            message=message,
        )
        if not result.is_consistent:
            logger.warning(
                "ledger_verification_failed",
                extra={"part_id": str(part_id), "detail": message},
            )
        return result
