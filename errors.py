"""
Storefront error taxonomy

Services raise these; main.py renders them as JSON with the matching status code.
"""
from typing import Any, Dict, List, Optional


class StoreError(Exception):
    status_code = 400
    code = "error"
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


class Unauthorized(StoreError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required"


class Forbidden(StoreError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied: You don't have the required permission"


class NotFound(StoreError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class ProductNotFound(NotFound):
    code = "product_not_found"
    default_message = "Product not found"


class InvalidArgument(StoreError):
    code = "invalid_argument"
    default_message = "Invalid argument"


class InsufficientStock(StoreError):
    code = "insufficient_stock"
    default_message = "Some items are out of stock"

    def __init__(self, items: List[str], message: Optional[str] = None):
        self.items = list(items)
        super().__init__(message, items=self.items)


class EmptyCart(StoreError):
    code = "empty_cart"
    default_message = "Your cart is empty"


class AlreadyReviewed(StoreError):
    code = "already_reviewed"
    default_message = "You have already reviewed this product"


class NotEligible(StoreError):
    status_code = 403
    code = "not_eligible"
    default_message = "You can only review products from delivered orders"


class Conflict(StoreError):
    status_code = 409
    code = "conflict"
    default_message = "Conflict"


class PaymentUnavailable(StoreError):
    status_code = 503
    code = "payment_unavailable"
    default_message = "Payment processor is not configured"
