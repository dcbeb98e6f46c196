"""Domain exceptions for the order core.

Each error carries the HTTP status and a machine-readable code so the API
layer can translate it without knowing individual types.
"""
from typing import Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500
    code = "ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(StorefrontError):
    """Raised for malformed input before any side effect happens."""

    status_code = 400
    code = "INVALID"


class NotFoundError(StorefrontError):
    """Raised when a product, size or order does not exist."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class InsufficientStockError(StorefrontError):
    """Raised inside the reservation transaction when a row cannot cover a line."""

    status_code = 400
    code = "OUT_OF_STOCK"

    def __init__(self, product_name: str, available: int, size_label: Optional[str] = None):
        self.product_name = product_name
        self.size_label = size_label
        self.available = available
        label = f"{product_name} (Size: {size_label})" if size_label else product_name
        super().__init__(f"Insufficient stock for {label}. Available: {available}")


class GatewayError(StorefrontError):
    """Raised when the payment gateway rejects or fails a request."""

    status_code = 500
    code = "GATEWAY_ERROR"


class SignatureError(StorefrontError):
    """Raised when a payment signature does not verify. The message stays opaque."""

    status_code = 400
    code = "INVALID_SIGNATURE"

    def __init__(self):
        super().__init__("Invalid signature")


class TransactionTimeoutError(StorefrontError):
    """Raised after a transaction exceeded its time budget and was rolled back."""

    status_code = 500
    code = "TIMEOUT"

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Transaction exceeded {timeout_seconds:g}s and was rolled back")


class InvalidTransitionError(StorefrontError):
    """Raised for an order status change the lifecycle does not allow."""

    status_code = 409
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from '{current}' to '{requested}'")


class AuthenticationError(StorefrontError):
    """Raised when the caller's identity is missing or not allowed."""

    status_code = 401
    code = "UNAUTHENTICATED"
