"""
Payment Service Domain Exceptions

All exceptions raised by the payment service layer.
"""

from typing import Optional


class PaymentServiceError(Exception):
    """Base exception for payment service errors"""
    pass


class ValidationError(PaymentServiceError):
    """Raised when a request or notification payload is missing or malformed"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class SignatureError(PaymentServiceError):
    """Raised when a notification fails signature verification"""

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id


class GatewayError(PaymentServiceError):
    """Raised when a call to the payment gateway fails"""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        detail: Optional[str] = None
    ):
        super().__init__(message)
        self.status = status
        self.detail = detail


class OrderNotFoundError(PaymentServiceError):
    """Raised when a reconciliation action references an unknown order"""
    pass
