# Overview: Typed error taxonomy shared by the ledger, aggregator and transfer workflow.

"""
Error categories:

- validation: caller error, surfaced immediately, never retried.
- conflict: state error; the caller decides whether to retry with fresh state.
- integrity: ledger/aggregator drift. Always logged; monitoring alerts on these.

Routes serialize any StockLedgerError with to_dict() and its status_code.
"""

from __future__ import annotations


class StockLedgerError(Exception):
    """Base class for all business-rule failures raised by the core."""

    code = "STOCK_LEDGER_ERROR"
    category = "internal"
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {
            "error": self.message,
            "code": self.code,
            "category": self.category,
        }
        if self.details:
            payload["details"] = self.details
        return payload


# =============================================================================
# VALIDATION (400-level)
# =============================================================================

class ValidationError(StockLedgerError, ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"
    category = "validation"
    status_code = 400


class UnknownProduct(ValidationError):
    code = "UNKNOWN_PRODUCT"
    status_code = 404


class InvalidKind(ValidationError):
    """Unknown movement kind or non-positive quantity."""

    code = "INVALID_KIND"


class InvalidLocation(ValidationError):
    code = "INVALID_LOCATION"


class MissingRejectionReason(ValidationError):
    code = "MISSING_REJECTION_REASON"


class MovementNotFound(ValidationError):
    code = "MOVEMENT_NOT_FOUND"
    status_code = 404


class TransferNotFound(ValidationError):
    code = "TRANSFER_NOT_FOUND"
    status_code = 404


class VerificationError(ValidationError):
    code = "VERIFICATION_ERROR"


# =============================================================================
# CONFLICT (409-level)
# =============================================================================

class ConflictError(StockLedgerError):
    """409-level business rule conflict."""

    code = "CONFLICT"
    category = "conflict"
    status_code = 409


class ConflictingTransferExists(ConflictError):
    code = "CONFLICTING_TRANSFER_EXISTS"


class InvalidStateTransition(ConflictError):
    code = "INVALID_STATE_TRANSITION"


class LocationMismatch(ConflictError):
    code = "LOCATION_MISMATCH"


class ConcurrencyConflict(ConflictError):
    """A lost race that kept losing after the bounded internal retries."""

    code = "CONCURRENCY_CONFLICT"


# =============================================================================
# INTEGRITY (500-level)
# =============================================================================

class IntegrityFailure(StockLedgerError):
    code = "INTEGRITY_FAILURE"
    category = "integrity"
    status_code = 500


class BalanceIntegrityError(IntegrityFailure):
    code = "BALANCE_INTEGRITY_ERROR"
