"""
errors.py — Error Taxonomy for the Order Service

Every failure that may reach a client is an `OrderServiceError` carrying a stable
machine-readable code, an HTTP status, a human message and optional details.
The HTTP layer renders them as:

    {"error": {"code": ..., "message": ..., "details": ...}}

Anything that is not an `OrderServiceError` is treated as unexpected and rendered
as a generic internal error without leaking internals.
"""

from typing import List, Optional


class OrderServiceError(Exception):
    """
    Base class for all domain errors.

    Attributes:
        status (int): HTTP status code used when rendering the error.
        code (str): Stable error code (e.g. 'INVALID_ORDER').
        message (str): Human readable message.
        details: Optional extra information (string or list of strings).
    """
    status = 500
    code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, details=None, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class InvalidItems(OrderServiceError):
    """The request carries no items (or malformed ones). Raised before any I/O."""
    status = 400
    code = "INVALID_ITEMS"

    def __init__(self, message: str = "At least one item is required", details=None):
        super().__init__(message, details)


class InvalidOrder(OrderServiceError):
    """One or more line items failed the existence, quantity or stock checks."""
    status = 400
    code = "INVALID_ORDER"

    def __init__(self, reasons: List[str], message: str = "Order items are invalid"):
        super().__init__(message, details=list(reasons))
        self.reasons = list(reasons)


class OrderNotFound(OrderServiceError):
    status = 404
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: int):
        super().__init__("Order not found", details=f"No order exists with id {order_id}")
        self.order_id = order_id


class ProductNotFound(OrderServiceError):
    status = 404
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: int):
        super().__init__("Product not found", details=f"No product exists with id {product_id}")
        self.product_id = product_id


class InvalidProduct(OrderServiceError):
    """Admin supplied product data that violates price/stock/name rules."""
    status = 400


class UserNotFound(OrderServiceError):
    status = 404
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        super().__init__("User not found", details=f"No user exists with id {user_id}")
        self.user_id = user_id


class UserAlreadyExists(OrderServiceError):
    status = 409
    code = "USER_ALREADY_EXISTS"

    def __init__(self, user_id: str):
        super().__init__("User is already registered", details=f"A user record exists for {user_id}")
        self.user_id = user_id


class InvalidEmail(OrderServiceError):
    status = 400
    code = "INVALID_EMAIL"


class InvalidRole(OrderServiceError):
    status = 400
    code = "INVALID_ROLE"

    def __init__(self, role: str):
        super().__init__("Role must be 'user' or 'admin'", details=f"Got {role!r}")


class AuthenticationFailed(OrderServiceError):
    status = 401
    code = "INVALID_TOKEN"


class Forbidden(OrderServiceError):
    status = 403
    code = "FORBIDDEN"


class RetryExhausted(OrderServiceError):
    """
    Raised by the retry executor once every attempt has failed.

    Attributes:
        label (str): Name of the operation that was retried.
        attempts (int): Number of attempts made.
        last_error (Exception): The failure of the final attempt. Kept for logging only;
            driver messages carry statements and bound parameters, so `details`
            names the error class and nothing more.
    """
    status = 503
    code = "RETRY_FAILED"

    def __init__(self, label: str, attempts: int, last_error: Exception):
        super().__init__(
            f"Failed after {attempts} attempts: {label}",
            details=f"Transient dependency failure ({type(last_error).__name__})",
        )
        self.label = label
        self.attempts = attempts
        self.last_error = last_error


class Unexpected(OrderServiceError):
    """Normalized form of any failure that is not part of the domain taxonomy."""
    status = 500
    code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str = "An unexpected error occurred", code: Optional[str] = None):
        super().__init__(message, details=None, code=code)
