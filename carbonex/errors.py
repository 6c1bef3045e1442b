"""
Typed errors for ledger, marketplace and onboarding operations.

Every error carries a stable code and an HTTP status so the API layer can
render it as a structured payload without per-route handling.
"""
from typing import Any


class LedgerError(Exception):
    """Base class for expected failures of core operations."""
    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload = {"error": self.code, "detail": self.message}
        payload.update({k: v for k, v in self.context.items() if v is not None})
        return payload


class ValidationError(LedgerError):
    """Non-positive amount or price, self-trade, malformed domain."""
    code = "validation_error"
    status_code = 422


class InsufficientBalance(LedgerError):
    """Listing exceeds tradable credits or settlement exceeds buyer cash."""
    code = "insufficient_balance"
    status_code = 402


class IllegalTransition(LedgerError):
    """Operation attempted from a state that does not permit it."""
    code = "illegal_transition"
    status_code = 409

    def __init__(self, message: str, current_status: str | None = None, **context: Any):
        super().__init__(message, current_status=current_status, **context)
        self.current_status = current_status


class NotFound(LedgerError):
    """Referenced record does not exist or was already consumed."""
    code = "not_found"
    status_code = 404


class ConcurrencyConflict(LedgerError):
    """Another operation changed the record first; retry with fresh data."""
    code = "concurrency_conflict"
    status_code = 409


class StoreUnavailable(LedgerError):
    """Underlying persistence failed."""
    code = "store_unavailable"
    status_code = 503
