"""
Ledger Error Taxonomy

Every failure the engine reports to a caller is a LedgerError subclass
with a stable machine-readable code. The HTTP layer maps codes to status
codes; nothing else needs to inspect messages.
"""

from typing import Any, Dict, Optional


class ErrorCodes:
    """Stable error codes"""
    INVALID_INPUT = "invalid_input"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_CREDENTIAL = "invalid_credential"
    INVALID_OR_EXPIRED_CODE = "invalid_or_expired_code"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    UNLINKED_NOTIFICATION_TARGET = "unlinked_notification_target"
    DUPLICATE_CREDENTIAL = "duplicate_credential"
    STORAGE_FAILURE = "storage_failure"
    UNAUTHORIZED = "unauthorized"


class LedgerError(Exception):
    """Base class for failures reported to callers"""

    code = ErrorCodes.INVALID_INPUT
    retryable = False

    def __init__(self, message: str, code: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        self.message = message
        if code:
            self.code = code
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = {"code": self.code, "message": self.message}
        if self.context:
            result["context"] = self.context
        return result


class InvalidInput(LedgerError):
    """Missing or malformed fields, non-integer or non-positive amounts"""
    code = ErrorCodes.INVALID_INPUT


class InvalidCredential(LedgerError):
    """Unknown card or card owned by another account"""
    code = ErrorCodes.INVALID_CREDENTIAL


class InvalidOrExpiredCode(LedgerError):
    """Missing, wrong or expired authorization code"""
    code = ErrorCodes.INVALID_OR_EXPIRED_CODE


class InsufficientFunds(LedgerError):
    code = ErrorCodes.INSUFFICIENT_FUNDS


class UnlinkedNotificationTarget(LedgerError):
    """Account has no delivery address on file"""
    code = ErrorCodes.UNLINKED_NOTIFICATION_TARGET


class DuplicateCredential(LedgerError):
    code = ErrorCodes.DUPLICATE_CREDENTIAL


class StorageFailure(LedgerError):
    """Durable store unavailable or transaction aborted; safe to retry"""
    code = ErrorCodes.STORAGE_FAILURE
    retryable = True


class Unauthorized(LedgerError):
    """Administrative secret missing or wrong"""
    code = ErrorCodes.UNAUTHORIZED
