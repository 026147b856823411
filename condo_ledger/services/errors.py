"""Typed errors raised by the payment engine.

Every error carries a machine-readable ``code``, the HTTP status the API
layer should answer with, and a ``retryable`` marker:

    LedgerError
    +-- ValidationError           caller error, not retryable
    |   +-- UnknownAccountError
    +-- NotFoundError             referenced record missing, not retryable
    |   +-- TransactionNotFoundError
    +-- ConflictError             concurrent modification, retryable
    +-- InvariantViolationError   bug; the write is aborted, not retryable

The engine never retries on its own; retry policy belongs to the caller.
"""


class LedgerError(Exception):
    """Base engine error."""

    code = "ledger_error"
    http_status = 500
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(LedgerError):
    """Invalid input: non-positive amount, malformed scope filter, etc."""

    code = "validation_error"
    http_status = 422


class UnknownAccountError(ValidationError):
    """Payment requested against an account that does not exist."""

    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


class NotFoundError(LedgerError):
    """Referenced account, obligation or transaction does not exist."""

    code = "not_found"
    http_status = 404


class TransactionNotFoundError(NotFoundError):
    """Payment transaction does not exist (never committed or already reversed)."""

    def __init__(self, transaction_id: int):
        self.transaction_id = transaction_id
        super().__init__(f"Payment transaction {transaction_id} not found")


class ConflictError(LedgerError):
    """Version mismatch: data changed since it was read. Re-plan and retry."""

    code = "conflict"
    http_status = 409
    retryable = True

    def __init__(self, message: str, account_id: int | None = None, obligation_ids: tuple = ()):
        self.account_id = account_id
        self.obligation_ids = tuple(obligation_ids)
        super().__init__(message)


class InvariantViolationError(LedgerError):
    """Money-accuracy invariant broken. Indicates a bug; nothing is persisted."""

    code = "invariant_violation"
    http_status = 500


__all__ = [
    "ConflictError",
    "InvariantViolationError",
    "LedgerError",
    "NotFoundError",
    "TransactionNotFoundError",
    "UnknownAccountError",
    "ValidationError",
]
