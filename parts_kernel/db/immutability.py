"""
ORM-Level Ledger Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The part transaction ledger is the history of every unit that entered or
left the shop.  Stock levels are only trustworthy if that history cannot be
rewritten: a wrong entry is corrected by a new adjusting entry, never by
editing or deleting the old one.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the ledger rules:

    session.flush()
         |
         v
    [before_flush]  --> _check_part_quantity_has_ledger_entry()
         |
    [before_update] --> _check_part_transaction_immutability() --+
         |                                                       |
    [before_delete] --> _check_part_transaction_delete() --------+--> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | Rule                                         | Why
----------------|----------------------------------------------|------------------------------
PartTransaction | Only approval fields may change              | Ledger is append-only
PartTransaction | is_approved True -> False is blocked         | Approval is one-way
PartTransaction | DELETE blocked without administrative flag   | History must stay complete
Part            | quantity_on_hand changes need a ledger entry | Stock == replay of the ledger
                | in the same flush whose balance_after agrees |

===============================================================================
DESIGN DECISIONS
===============================================================================

1. updated_at/updated_by_id may change on ledger rows.  They are metadata,
   not movement data.

2. Administrative deletes run inside ``administrative_override(session)``,
   which sets a flag in ``session.info`` for the duration of one flush.  The
   ledger service is the only caller and logs every use at WARNING.

3. Inline model imports avoid circular imports (models import from db).

===============================================================================
USAGE
===============================================================================

    from parts_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, object_session
from sqlalchemy.orm.attributes import get_history

from parts_kernel.exceptions import ImmutabilityViolationError
from parts_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

ADMIN_OVERRIDE_KEY = "parts_kernel.ledger_admin_override"

PART_TRANSACTION_MUTABLE_FIELDS = frozenset({
    "is_approved",
    "approved_by_id",
    "approved_at",
    "updated_at",
    "updated_by_id",
})


@contextmanager
def administrative_override(session: Session) -> Generator[Session, None, None]:
    """Allow ledger deletes on this session until the block exits."""
    session.info[ADMIN_OVERRIDE_KEY] = True
    try:
        yield session
    finally:
        session.info.pop(ADMIN_OVERRIDE_KEY, None)


def _violation(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_part_transaction_immutability(mapper, connection, target):
    """
    Allow only the approval lifecycle to touch a recorded ledger entry.

    Approval may go from False to True exactly once; every other attribute
    is frozen from the moment the row is inserted.
    """
    from parts_kernel.models.part_transaction import PartTransaction

    if not isinstance(target, PartTransaction):
        return

    approved = get_history(target, "is_approved")
    if approved.deleted and approved.deleted[0] and not (
        approved.added and approved.added[0]
    ):
        raise _violation(
            "PartTransaction",
            target.id,
            "UPDATE",
            "Approval cannot be revoked",
            field="is_approved",
        )

    for attr in inspect(target).attrs:
        if attr.key in PART_TRANSACTION_MUTABLE_FIELDS:
            continue
        if attr.history.has_changes():
            raise _violation(
                "PartTransaction",
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a ledger entry",
                field=attr.key,
            )


def _check_part_transaction_delete(mapper, connection, target):
    """Block ledger deletes unless the session carries the admin override."""
    from parts_kernel.models.part_transaction import PartTransaction

    if not isinstance(target, PartTransaction):
        return

    session = object_session(target)
    if session is not None and session.info.get(ADMIN_OVERRIDE_KEY):
        return

    raise _violation(
        "PartTransaction",
        target.id,
        "DELETE",
        "Ledger entries cannot be deleted",
    )


def _check_part_quantity_has_ledger_entry(session, flush_context, instances):
    """
    Require every stock change in a flush to be explained by a new ledger row.

    Runs in SessionEvents.before_flush so the whole unit of work is visible:
    the Part update and the PartTransaction insert land in the same flush.
    """
    from parts_kernel.models.part import Part
    from parts_kernel.models.part_transaction import PartTransaction

    balances: dict = {}
    for obj in session.new:
        if isinstance(obj, PartTransaction):
            balances.setdefault(obj.part_id, set()).add(obj.balance_after)

    for obj in list(session.new) + list(session.dirty):
        if not isinstance(obj, Part):
            continue
        if obj in session.new:
            if not obj.quantity_on_hand:
                continue
        elif not get_history(obj, "quantity_on_hand").has_changes():
            continue

        if obj.quantity_on_hand not in balances.get(obj.id, ()):
            raise _violation(
                "Part",
                obj.id,
                "UPDATE",
                "quantity_on_hand changed without a matching ledger entry",
                field="quantity_on_hand",
            )


def register_immutability_listeners():
    """
    Register all ledger immutability event listeners.

    Call this after models are imported and before any database operations
    begin.  Safe to call more than once.
    """
    from parts_kernel.models.part_transaction import PartTransaction

    if not event.contains(Session, "before_flush", _check_part_quantity_has_ledger_entry):
        event.listen(Session, "before_flush", _check_part_quantity_has_ledger_entry)
    if not event.contains(PartTransaction, "before_update", _check_part_transaction_immutability):
        event.listen(PartTransaction, "before_update", _check_part_transaction_immutability)
    if not event.contains(PartTransaction, "before_delete", _check_part_transaction_delete):
        event.listen(PartTransaction, "before_delete", _check_part_transaction_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove ledger immutability event listeners.

    WARNING: Only use this in tests that need to tamper with the ledger to
    verify detection.
    """
    from parts_kernel.models.part_transaction import PartTransaction

    _safe_remove_listener(Session, "before_flush", _check_part_quantity_has_ledger_entry)
    _safe_remove_listener(PartTransaction, "before_update", _check_part_transaction_immutability)
    _safe_remove_listener(PartTransaction, "before_delete", _check_part_transaction_delete)
