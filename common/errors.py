"""
Error taxonomy and result type shared by ingestion and payments

Every error carries a machine-readable code and the HTTP status the API
answers with. Operations that cross an external boundary return a Result
instead of raising, so per-message and per-pass failure handling stays
visible at the call site.
"""

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCodes:
    """Standard error codes"""
    INTERNAL_ERROR = "INTERNAL_ERROR"

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    PLAN_NOT_FOUND = "PLAN_NOT_FOUND"
    OPEN_CHECKOUT_EXISTS = "OPEN_CHECKOUT_EXISTS"

    AUTH_ERROR = "AUTH_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    STORE_ERROR = "STORE_ERROR"
    CHECKOUT_INCONSISTENCY = "CHECKOUT_INCONSISTENCY"

    EXTRACTION_SKIP = "EXTRACTION_SKIP"
    RECONCILIATION_WARNING = "RECONCILIATION_WARNING"


class WalletError(Exception):
    code = ErrorCodes.INTERNAL_ERROR
    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        error = {"code": self.code, "message": self.message}
        if self.context:
            error["context"] = self.context
        return error


class ValidationError(WalletError):
    """Bad input or an unresolved reference; user-correctable"""
    code = ErrorCodes.VALIDATION_ERROR
    status_code = 400


class NotConfigured(ValidationError):
    """No active mailbox credential for the user; the UI must prompt reconnection"""
    code = ErrorCodes.NOT_CONFIGURED


class PlanNotFound(ValidationError):
    code = ErrorCodes.PLAN_NOT_FOUND


class OpenCheckoutExists(ValidationError):
    code = ErrorCodes.OPEN_CHECKOUT_EXISTS

    def __init__(self, order_id: str, redirect_url: Optional[str]):
        super().__init__(
            "There is still an unfinished transaction for this user",
            context={"order_id": order_id, "redirect_url": redirect_url},
        )
        self.order_id = order_id
        self.redirect_url = redirect_url


class AuthError(WalletError):
    """Token refresh or mailbox authentication failed; the user must reconnect"""
    code = ErrorCodes.AUTH_ERROR


class ProviderError(WalletError):
    """Transient mailbox or gateway failure; the whole pass can be retried later"""
    code = ErrorCodes.PROVIDER_ERROR


class StoreError(WalletError):
    code = ErrorCodes.STORE_ERROR


class CheckoutInconsistency(StoreError):
    """The gateway created a transaction but the pending payment row was not written"""
    code = ErrorCodes.CHECKOUT_INCONSISTENCY

    def __init__(self, order_id: str, message: str):
        super().__init__(message, context={"order_id": order_id})
        self.order_id = order_id


class ExtractionSkip(WalletError):
    """A single message could not be turned into a transaction; never fatal"""
    code = ErrorCodes.EXTRACTION_SKIP
    status_code = 200


class ReconciliationWarning(WalletError):
    """Webhook state that does not match the store; logged, never surfaced to the gateway"""
    code = ErrorCodes.RECONCILIATION_WARNING
    status_code = 200


@dataclass
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[WalletError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: WalletError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise the carried error"""
        if self.error is not None:
            raise self.error
        return self.value
