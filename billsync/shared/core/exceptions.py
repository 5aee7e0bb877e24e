from typing import Optional, Dict, Any


class BillsyncException(Exception):
    """Base exception for all billsync errors."""

    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class AuthError(BillsyncException):
    """Raised when an inbound webhook fails signature verification."""

    def __init__(self, message: str, code: str = "auth_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=401, details=details)


class ConfigurationError(BillsyncException):
    """Raised when application configuration is invalid or missing."""

    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)


class ResourceNotFoundError(BillsyncException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, code: str = "not_found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=404, details=details)


class BillingError(BillsyncException):
    """Raised when a tenant-initiated billing operation cannot proceed."""

    def __init__(self, message: str, code: str = "billing_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=400, details=details)


class UnresolvedTenantError(BillsyncException):
    """Raised when no tenant identifier can be derived from a billing event."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="unresolved_tenant", status_code=200, details=details)


class PersistenceError(BillsyncException):
    """Raised when a subscription store or ledger write fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="persistence_error", status_code=500, details=details)


class PaystackAPIError(BillsyncException):
    """Raised when the Paystack REST API rejects a request."""

    def __init__(
        self,
        message: str,
        code: str = "paystack_api_error",
        status_code: int = 502,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, status_code=status_code, details=details)


class PaystackDuplicateSubscriptionError(PaystackAPIError):
    """Raised when Paystack reports the subscription already exists."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="paystack_duplicate_subscription", status_code=409, details=details)
