"""Exceptions raised by the storefront core.

Each class carries the HTTP status the API answers with, so route handlers
never translate errors by hand.
"""
from decimal import Decimal
from typing import Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500
    code = "error"


# Validation (400)

class ValidationError(StorefrontError):
    status_code = 400
    code = "validation_error"


class EmptyCartError(ValidationError):
    code = "empty_cart"

    def __init__(self):
        super().__init__("Cart items are required. Your cart was empty.")


class MissingCustomerInfoError(ValidationError):
    code = "missing_customer_info"

    def __init__(self, missing: list):
        self.missing = missing
        super().__init__(f"Name, email, and address are required. Missing: {', '.join(missing)}")


class TotalMismatchError(ValidationError):
    code = "total_mismatch"

    def __init__(self, claimed: Decimal, expected: Decimal):
        self.claimed = claimed
        self.expected = expected
        super().__init__(
            f"Order total {claimed:.2f} does not match the current total {expected:.2f}. "
            "Please review your cart."
        )


class InvalidDiscountError(ValidationError):
    code = "invalid_discount"

    def __init__(self, discount: Decimal, subtotal: Decimal):
        super().__init__(f"Discount {discount:.2f} exceeds subtotal {subtotal:.2f}")


class NegativeTotalError(ValidationError):
    code = "negative_total"

    def __init__(self, total: Decimal):
        super().__init__(f"Order total cannot be negative ({total:.2f})")


class InvalidCouponValueError(ValidationError):
    code = "invalid_coupon_value"

    def __init__(self, code: str, value: Decimal):
        super().__init__(f"Coupon {code} has an invalid percentage value: {value}")


class ProductInactiveError(ValidationError):
    code = "product_inactive"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Product is not active: {name}")


class CouponInactiveError(ValidationError):
    code = "coupon_inactive"

    def __init__(self, code: str):
        super().__init__(f"Coupon {code} is no longer active")


class CouponExpiredError(ValidationError):
    code = "coupon_expired"

    def __init__(self, code: str):
        super().__init__(f"Coupon {code} has expired")


class UnknownCouponError(ValidationError):
    """A coupon code in the cart that matches no coupon."""

    code = "unknown_coupon"

    def __init__(self, code: str):
        self.coupon_code = code
        super().__init__(f"Invalid coupon code: {code}")


class BelowMinimumError(ValidationError):
    code = "below_minimum"

    def __init__(self, code: str, minimum: Decimal):
        self.minimum = minimum
        super().__init__(f"Minimum order of ${minimum:.2f} required for coupon {code}.")


# Not found (404)

class NotFoundError(StorefrontError):
    status_code = 404
    code = "not_found"


class OrderNotFoundError(NotFoundError):
    code = "order_not_found"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("Order not found")


class CouponNotFoundError(NotFoundError):
    code = "coupon_not_found"

    def __init__(self, code: str):
        self.coupon_code = code
        super().__init__(f"Invalid coupon code: {code}")


class ProductNotFoundError(NotFoundError):
    # during checkout a missing product is a cart problem, not a missing resource
    status_code = 400
    code = "product_not_found"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


# Conflicts and state transitions

class ConflictError(StorefrontError):
    status_code = 409
    code = "conflict"


class DuplicateError(ConflictError):
    code = "duplicate"

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} already exists: {key}")


class IllegalTransitionError(ConflictError):
    status_code = 400
    code = "illegal_transition"

    def __init__(self, current: str, target: str, message: Optional[str] = None):
        self.current = current
        self.target = target
        super().__init__(message or f"Cannot move order from {current} to {target}")


class AlreadyShippedError(IllegalTransitionError):
    code = "already_shipped"

    def __init__(self):
        super().__init__("SHIPPED", "CANCELLED", "Cannot cancel orders that have already been shipped.")


class AlreadyDeliveredError(IllegalTransitionError):
    code = "already_delivered"

    def __init__(self):
        super().__init__("DELIVERED", "CANCELLED", "Cannot cancel orders that have already been delivered.")


class AlreadyCancelledError(IllegalTransitionError):
    code = "already_cancelled"

    def __init__(self):
        super().__init__(
            "CANCELLED", "CANCELLED", "Order has already been cancelled. No further action is required."
        )


# Authorization

class AuthorizationError(StorefrontError):
    status_code = 403
    code = "forbidden"


class AccessDeniedError(AuthorizationError):
    code = "access_denied"

    def __init__(self):
        super().__init__("Access denied - this order does not belong to you")


class AuthenticationRequiredError(StorefrontError):
    status_code = 401
    code = "authentication_required"

    def __init__(self, message: str = "Authentication required - provide userId or customerEmail"):
        super().__init__(message)


# Capacity

class CapacityError(StorefrontError):
    status_code = 400
    code = "capacity"


class InsufficientStockError(CapacityError):
    code = "insufficient_stock"

    def __init__(self, name: str, available: int, requested: int):
        self.name = name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {name}. Available: {available}, Requested: {requested}"
        )


# Store

class TransientStoreError(StorefrontError):
    """Raised when the underlying store fails; the whole operation may be retried."""

    status_code = 500
    code = "store_unavailable"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Failed to {operation}")
