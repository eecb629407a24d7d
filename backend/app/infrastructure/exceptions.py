"""
Custom Exceptions for Podcast Billing

Hierarchical exception classes for proper error handling across layers.
Each class maps to a single HTTP status in app.main.
"""

from typing import Optional, Dict, Any


class PodcastBillingError(Exception):
    """Base exception for all Podcast Billing errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(PodcastBillingError):
    """Raised when input validation fails."""
    pass


class UnauthorizedError(PodcastBillingError):
    """Raised when the caller cannot be authenticated."""
    pass


class ForbiddenError(PodcastBillingError):
    """Raised when an authenticated caller lacks the required role."""
    pass


class DatabaseError(PodcastBillingError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass


class InvalidStateError(PodcastBillingError):
    """Raised when an entity is not in a state that allows the transition."""

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        details = dict(details or {})
        if current_status:
            details["current_status"] = current_status
        super().__init__(message, details, original_error)


class InvalidSignatureError(PodcastBillingError):
    """Raised when a gateway signature does not match."""

    def __init__(
        self,
        message: str = "Invalid payment signature",
        source: Optional[str] = None,
    ):
        details = {}
        if source:
            details["source"] = source
        super().__init__(message, details)


class InvalidAmountError(PodcastBillingError):
    """Raised when a computed or requested charge is not payable."""

    def __init__(
        self,
        message: str,
        amount: Optional[Any] = None,
    ):
        details = {}
        if amount is not None:
            details["amount"] = str(amount)
        super().__init__(message, details)


class RefundWindowExpiredError(PodcastBillingError):
    """Raised when a refund is requested after the refund window closed."""

    def __init__(self, days_elapsed: int, refund_window_days: int):
        super().__init__(
            f"Refund window of {refund_window_days} days has expired",
            {
                "days_elapsed": days_elapsed,
                "refund_window_days": refund_window_days,
            },
        )
        self.days_elapsed = days_elapsed
        self.refund_window_days = refund_window_days


class GatewayUnavailableError(PodcastBillingError):
    """Raised when the payment gateway times out or rejects a call."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {"retryable": True}
        if operation:
            details["operation"] = operation
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, details, original_error)


class ConfigurationError(PodcastBillingError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)
