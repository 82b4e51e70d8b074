"""
Error Taxonomy for Digibook

DESIGN DECISION: Every failure the ledger can raise carries an ErrorKind.
Validators report the same kinds as data (ValidationIssue.kind), so the
command layer can turn a failed validation into the matching exception
without string matching.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Kinds of failure and warning the ledger reports."""
    # Reference problems
    NOT_FOUND = "NotFound"
    DANGLING_REFERENCE = "DanglingReference"
    INVALID_PAYMENT_SOURCE = "InvalidPaymentSource"
    REFERENCED = "Referenced"

    # Payment amount checks
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    AMOUNT_NOT_POSITIVE = "AmountNotPositive"
    INVALID_AMOUNT = "InvalidAmount"
    OVERPAYMENT = "Overpayment"
    ALREADY_ZERO = "AlreadyZero"
    OVER_LIMIT = "OverLimit"

    # Field checks
    REQUIRED = "Required"
    INVALID_VALUE = "InvalidValue"
    DUPLICATE = "Duplicate"
    VALIDATION_FAILED = "ValidationFailed"

    # Concurrency
    BUSY = "Busy"

    # Import / backup / persistence
    SCHEMA_TOO_NEW = "SchemaTooNew"
    MALFORMED = "Malformed"
    BAD_PASSWORD = "BadPassword"
    TRANSACTION_FAILED = "TransactionFailed"


class DigibookError(Exception):
    """Base exception for all ledger failures."""

    kind: ErrorKind = ErrorKind.VALIDATION_FAILED

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StorageError(DigibookError):
    """Base exception for storage operations."""
    kind = ErrorKind.TRANSACTION_FAILED


class NotFoundError(StorageError):
    """Referenced id is absent from its store."""
    kind = ErrorKind.NOT_FOUND


class TransactionFailedError(StorageError):
    """The store could not commit; state is unchanged."""
    kind = ErrorKind.TRANSACTION_FAILED


class SchemaTooNewError(StorageError):
    """Data was written by a newer schema version than this build knows."""
    kind = ErrorKind.SCHEMA_TOO_NEW


class DanglingReferenceError(DigibookError):
    """A payment source references an account or card that no longer exists."""
    kind = ErrorKind.DANGLING_REFERENCE


class InvalidPaymentSourceError(DigibookError):
    """Structural violation of the payment source union."""
    kind = ErrorKind.INVALID_PAYMENT_SOURCE


class InsufficientFundsError(DigibookError):
    """Payment exceeds the funding account balance."""
    kind = ErrorKind.INSUFFICIENT_FUNDS


class InvalidAmountError(DigibookError):
    """A paid amount is negative or not a finite number."""
    kind = ErrorKind.INVALID_AMOUNT


class BusyError(DigibookError):
    """Another update for the same expense is still in flight."""
    kind = ErrorKind.BUSY


class ReferencedError(DigibookError):
    """Entity cannot be deleted while other records point at it."""
    kind = ErrorKind.REFERENCED


class MalformedError(DigibookError):
    """Imported, restored or persisted data is not in the expected shape."""
    kind = ErrorKind.MALFORMED


class BadPasswordError(DigibookError):
    """Encrypted payload could not be decrypted with the given password."""
    kind = ErrorKind.BAD_PASSWORD


class ValidationFailedError(DigibookError):
    """
    Command input was rejected by a validator.

    The full list of issues is kept on the exception so callers can
    show every problem at once.
    """
    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, message: str, issues: Optional[list] = None):
        super().__init__(message)
        self.issues = issues or []


_KIND_TO_ERROR: dict[ErrorKind, type[DigibookError]] = {
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.SCHEMA_TOO_NEW: SchemaTooNewError,
    ErrorKind.DANGLING_REFERENCE: DanglingReferenceError,
    ErrorKind.INVALID_PAYMENT_SOURCE: InvalidPaymentSourceError,
    ErrorKind.INSUFFICIENT_FUNDS: InsufficientFundsError,
    ErrorKind.INVALID_AMOUNT: InvalidAmountError,
    ErrorKind.MALFORMED: MalformedError,
}


def raise_for_issues(issues: list, context: str) -> None:
    """
    Raise the exception matching the first error-level issue.

    Warnings and info issues are ignored. Does nothing if there are no
    errors.
    """
    errors = [issue for issue in issues if issue.severity == "error"]
    if not errors:
        return

    first = errors[0]
    summary = "; ".join(issue.message for issue in errors)
    error_class = _KIND_TO_ERROR.get(first.kind)
    if error_class is not None:
        raise error_class(f"{context}: {summary}", details=first.details)

    raise ValidationFailedError(f"{context}: {summary}", issues=errors)
