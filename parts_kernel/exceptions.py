"""
Typed Exception Hierarchy for the Parts Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Inventory callers (dashboards, purchasing tools, usage loggers) need to react
to failures precisely: "not enough stock" is a user message, "part number
taken" is a form error, "lost update" is a retry.  Parsing message strings
for that is fragile, so every failure has:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (part_id, requested, available, ...)

Example:
    try:
        part_service.use_parts(part_id, 70)
    except InsufficientStockError as e:
        notify(f"Only {e.available} left of {e.part_id}")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PartsKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- MissingFieldError
    |   +-- RequirementBoundsError
    |   +-- InvalidTransactionTypeError
    |
    +-- NotFoundError
    |   +-- PartNotFoundError
    |   +-- TransactionNotFoundError
    |   +-- RequirementNotFoundError
    |
    +-- ConflictError
    |   +-- DuplicatePartNumberError
    |   +-- TransactionAlreadyApprovedError
    |
    +-- InsufficientStockError
    |
    +-- IntegrityError
    |   +-- PartReferencedError
    |   +-- LedgerImbalanceError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                        | When Raised
--------------|-----------------------------|-------------------------------------
Validation    | INVALID_QUANTITY            | Null / non-positive / negative qty
              | MISSING_FIELD               | Required field absent or blank
              | REQUIREMENT_BOUNDS          | min <= required <= max violated
              | INVALID_TRANSACTION_TYPE    | Type direction disagrees with delta
--------------|-----------------------------|-------------------------------------
Not found     | PART_NOT_FOUND              | Unknown part id / number
              | TRANSACTION_NOT_FOUND       | Unknown transaction id
              | REQUIREMENT_NOT_FOUND       | Unknown requirement id
--------------|-----------------------------|-------------------------------------
Conflict      | DUPLICATE_PART_NUMBER       | Part number used (active or not)
              | TRANSACTION_ALREADY_APPROVED| Approval is one-way
--------------|-----------------------------|-------------------------------------
Stock         | INSUFFICIENT_STOCK          | Outgoing movement exceeds on-hand
--------------|-----------------------------|-------------------------------------
Integrity     | PART_REFERENCED             | Hard delete with ledger or requirements
              | LEDGER_IMBALANCE            | balance_after would break continuity
--------------|-----------------------------|-------------------------------------
Concurrency   | OPTIMISTIC_LOCK_CONFLICT    | Part changed underneath, retries spent
--------------|-----------------------------|-------------------------------------
Immutability  | IMMUTABILITY_VIOLATION      | Edit/delete of a ledger entry

The class names ``ValidationError`` and ``IntegrityError`` shadow names in
SQLAlchemy; modules that need both import SQLAlchemy's under an alias.
"""


class PartsKernelError(Exception):
    """
    Base exception for all parts kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "PARTS_KERNEL_ERROR"


# Validation errors


class ValidationError(PartsKernelError):
    """Malformed input detected before any mutation."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """Quantity is missing, non-positive, or negative where not allowed."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


class MissingFieldError(ValidationError):
    """A required field is missing or blank."""

    code: str = "MISSING_FIELD"

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Required field missing: {field}")


class RequirementBoundsError(ValidationError):
    """Requirement quantity is outside its declared minimum/maximum."""

    code: str = "REQUIREMENT_BOUNDS"

    def __init__(
        self,
        quantity_required: int,
        minimum_quantity: int | None,
        maximum_quantity: int | None,
    ):
        self.quantity_required = quantity_required
        self.minimum_quantity = minimum_quantity
        self.maximum_quantity = maximum_quantity
        super().__init__(
            f"quantity_required={quantity_required} violates bounds "
            f"[{minimum_quantity}, {maximum_quantity}]"
        )


class InvalidTransactionTypeError(ValidationError):
    """Transaction type direction does not match the requested movement."""

    code: str = "INVALID_TRANSACTION_TYPE"

    def __init__(self, transaction_type: str, quantity_change: int):
        self.transaction_type = transaction_type
        self.quantity_change = quantity_change
        super().__init__(
            f"Transaction type {transaction_type} cannot carry a change of "
            f"{quantity_change:+d}"
        )


# Not-found errors


class NotFoundError(PartsKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"


class PartNotFoundError(NotFoundError):
    """Part with the given id or part number was not found."""

    code: str = "PART_NOT_FOUND"

    def __init__(self, part_id: str):
        self.part_id = part_id
        super().__init__(f"Part not found: {part_id}")


class TransactionNotFoundError(NotFoundError):
    """Ledger entry with the given id was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class RequirementNotFoundError(NotFoundError):
    """Part requirement with the given id was not found."""

    code: str = "REQUIREMENT_NOT_FOUND"

    def __init__(self, requirement_id: str):
        self.requirement_id = requirement_id
        super().__init__(f"Requirement not found: {requirement_id}")


# Conflict errors


class ConflictError(PartsKernelError):
    """Request conflicts with existing state."""

    code: str = "CONFLICT"


class DuplicatePartNumberError(ConflictError):
    """Part number is already used by an active or inactive part."""

    code: str = "DUPLICATE_PART_NUMBER"

    def __init__(self, part_number: str):
        self.part_number = part_number
        super().__init__(f"Part number already exists: {part_number}")


class TransactionAlreadyApprovedError(ConflictError):
    """Transaction has already been approved."""

    code: str = "TRANSACTION_ALREADY_APPROVED"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction already approved: {transaction_id}")


# Stock errors


class InsufficientStockError(PartsKernelError):
    """Outgoing movement exceeds the quantity on hand."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, part_id: str, requested: int, available: int):
        self.part_id = part_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for part {part_id}: "
            f"requested {requested}, available {available}"
        )


# Integrity errors


class IntegrityError(PartsKernelError):
    """Operation would break referential or ledger integrity."""

    code: str = "INTEGRITY_ERROR"


class PartReferencedError(IntegrityError):
    """Part cannot be hard-deleted because ledger entries reference it."""

    code: str = "PART_REFERENCED"

    def __init__(self, part_id: str, transaction_count: int, requirement_count: int = 0):
        self.part_id = part_id
        self.transaction_count = transaction_count
        self.requirement_count = requirement_count
        super().__init__(
            f"Part {part_id} cannot be deleted: referenced by "
            f"{transaction_count} transaction(s) and "
            f"{requirement_count} requirement(s)"
        )


class LedgerImbalanceError(IntegrityError):
    """A ledger entry would not agree with the part's stock level."""

    code: str = "LEDGER_IMBALANCE"

    def __init__(self, part_id: str, expected_balance: int, actual_balance: int):
        self.part_id = part_id
        self.expected_balance = expected_balance
        self.actual_balance = actual_balance
        super().__init__(
            f"Ledger imbalance on part {part_id}: expected balance "
            f"{expected_balance}, got {actual_balance}"
        )


# Concurrency errors


class ConcurrencyError(PartsKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected and retries exhausted."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, attempts: int = 1):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id} "
            f"after {attempts} attempt(s): entity was modified by another "
            "transaction"
        )


# Immutability errors


class ImmutabilityViolationError(PartsKernelError):
    """
    Attempted to modify or delete an immutable ledger record.

    PartTransaction rows are append-only; only approval fields may change.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
