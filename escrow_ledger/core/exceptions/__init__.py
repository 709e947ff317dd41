"""Business Exceptions

Error taxonomy shared by the escrow engine, the stores and the services.
The engine hands these back as values; services raise them.
"""

from typing import Any


class LedgerError(Exception):
    """Base exception for the escrow ledger"""

    code = "LEDGER_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


class InsufficientFunds(LedgerError):
    """Available balance does not cover the requested amount"""

    code = "INSUFFICIENT_FUNDS"


class InvalidState(LedgerError):
    """Action not permitted from the task's current status"""

    code = "INVALID_STATE"


class TerminalStateViolation(InvalidState):
    """Action attempted against a PAID or CANCELLED task"""

    code = "TERMINAL_STATE"


class Unauthorized(LedgerError):
    """Actor has no right to perform the action on this task"""

    code = "UNAUTHORIZED"


class ProofRequired(LedgerError):
    """Completion attempted without a final deliverable"""

    code = "PROOF_REQUIRED"


class ConcurrencyConflict(LedgerError):
    """Version mismatch or lock timeout; safe to retry with fresh state"""

    code = "CONCURRENCY_CONFLICT"


class DuplicateIdempotencyKey(ConcurrencyConflict):
    """An entry with this idempotency key is already committed"""

    code = "DUPLICATE_IDEMPOTENCY_KEY"


class StorageError(LedgerError):
    """Transient storage or transport failure"""

    code = "STORAGE_ERROR"


class InvariantViolation(LedgerError):
    """A write would break a ledger invariant (e.g. negative escrow)"""

    code = "INVARIANT_VIOLATION"


class InvalidAmount(LedgerError):
    """Malformed or non-positive monetary input"""

    code = "INVALID_AMOUNT"


class InvalidRequest(LedgerError):
    """Request is missing data the action needs"""

    code = "INVALID_REQUEST"


class NotFoundError(LedgerError):
    """Requested record does not exist"""

    code = "NOT_FOUND"


class TaskNotFound(NotFoundError):
    code = "TASK_NOT_FOUND"


class OfferNotFound(NotFoundError):
    code = "OFFER_NOT_FOUND"


class AccountNotFound(NotFoundError):
    code = "ACCOUNT_NOT_FOUND"


__all__ = [
    "AccountNotFound",
    "ConcurrencyConflict",
    "DuplicateIdempotencyKey",
    "InsufficientFunds",
    "InvalidAmount",
    "InvalidRequest",
    "InvalidState",
    "InvariantViolation",
    "LedgerError",
    "NotFoundError",
    "OfferNotFound",
    "ProofRequired",
    "StorageError",
    "TaskNotFound",
    "TerminalStateViolation",
    "Unauthorized",
]
