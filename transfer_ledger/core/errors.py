from __future__ import annotations

from typing import Any, Optional


class LedgerError(Exception):
    """Base class for failures that map to a stable API status and code."""

    status_code = 400
    code = "ledger_error"
    default_message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    def to_payload(self) -> dict[str, Any]:
        return {"detail": str(self), "code": self.code}


class ValidationError(LedgerError):
    code = "validation_error"
    default_message = "Validation failed"


class InvalidAmountError(ValidationError):
    code = "invalid_amount"
    default_message = "Amount must be a positive integer number of minor units"


class InvalidIdempotencyKeyError(ValidationError):
    code = "invalid_idempotency_key"
    default_message = "Invalid idempotency key format"


class NotFoundError(LedgerError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class SenderNotFoundError(NotFoundError):
    code = "sender_not_found"
    default_message = "Sender not found"


class RecipientNotFoundError(NotFoundError):
    code = "recipient_not_found"
    default_message = "Recipient not found"


class AccountNotFoundError(NotFoundError):
    """Raised when an account id is missing from the store."""

    code = "account_not_found"
    default_message = "Account not found"


class TransferNotFoundError(NotFoundError):
    code = "transfer_not_found"
    default_message = "Transfer not found"


class SelfTransferError(LedgerError):
    code = "self_transfer"
    default_message = "Cannot transfer money to yourself"


class InsufficientFundsError(LedgerError):
    """Raised when a transfer would drop the sender's balance below zero."""

    code = "insufficient_funds"
    default_message = "Insufficient balance for this transaction"


class AccountExistsError(LedgerError):
    status_code = 409
    code = "account_exists"
    default_message = "An account with this email already exists"


class IdempotencyInProgressError(LedgerError):
    """The original request for this key has not completed yet. Safe to retry later."""

    status_code = 409
    code = "idempotency_in_progress"
    default_message = "Request with this idempotency key is already being processed"


class IdempotencyMismatchError(LedgerError):
    """Raised when the same idempotency key is reused with different input."""

    status_code = 422
    code = "idempotency_key_mismatch"
    default_message = "Idempotency key reused with different request parameters"


class StorageError(LedgerError):
    status_code = 503
    code = "storage_unavailable"
    default_message = "Storage is temporarily unavailable"


# Failures that still produce a response envelope worth recording for replay.
BUSINESS_ERRORS: tuple[type[LedgerError], ...] = (
    ValidationError,
    NotFoundError,
    SelfTransferError,
    InsufficientFundsError,
)
