"""
Exception taxonomy for payment creation and reconciliation.

Validation and business-rule errors are raised before any network call.
Gateway and store errors are raised at the boundary of each external call
so callers never see httpx or SQLAlchemy exception shapes.
"""
from typing import Optional


class PaymentError(Exception):
    """Base exception for payment processing errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PaymentValidationError(PaymentError):
    """Raised when the request itself is malformed."""

    pass


class BusinessRuleError(PaymentError):
    """Raised when the orders cannot be paid in their current state."""

    pass


class OrderNotFoundError(BusinessRuleError):
    """No order matched the requested ids."""

    def __init__(self, message: str = "Orders not found"):
        super().__init__(message)


class AlreadyPaidError(BusinessRuleError):
    """At least one order is already paid or confirmed."""

    def __init__(self, message: str = "Pesanan sudah dibayar"):
        super().__init__(message)


class DeliveryWindowExpiredError(BusinessRuleError):
    """At least one order has a delivery date before today."""

    def __init__(
        self, message: str = "Tidak dapat membayar - tanggal penerimaan sudah lewat"
    ):
        super().__init__(message)


class GuestScopeViolationError(BusinessRuleError):
    """A guest checkout tried to touch an account-bound order."""

    def __init__(self, message: str = "Guest checkout can only be used for guest orders"):
        super().__init__(message)


class GatewayError(PaymentError):
    """Base exception for payment gateway failures."""

    pass


class GatewayUnavailableError(GatewayError):
    """Credential missing, network failure or timeout talking to the gateway."""

    pass


class GatewayRejectedError(GatewayError):
    """The gateway answered with a non-success HTTP status."""

    def __init__(self, message: str, status_code: int, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class StoreError(PaymentError):
    """The order store failed or timed out."""

    pass
