from rest_framework import status

from apps.utils.exceptions import BusinessLogicException


class CartNotFound(BusinessLogicException):
    code = "cart_not_found"

    def __init__(self, message="No cart found for this buyer.", **extra):
        super().__init__(message, **extra)


class CartEmpty(BusinessLogicException):
    code = "cart_empty"

    def __init__(self, message="Your cart is empty.", **extra):
        super().__init__(message, **extra)


class ProductUnavailable(BusinessLogicException):
    code = "product_unavailable"


class InsufficientStock(BusinessLogicException):
    code = "insufficient_stock"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, product_id, requested, available, product_name=None):
        label = product_name or str(product_id)
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, available {max(available, 0)}.",
            product_id=str(product_id),
            requested=requested,
            available=max(available, 0),
        )


class CouponError(BusinessLogicException):
    code = "coupon_invalid"


class CouponNotFound(CouponError):
    code = "coupon_not_found"

    def __init__(self, message="Invalid coupon code.", **extra):
        super().__init__(message, **extra)


class CouponExpired(CouponError):
    code = "coupon_expired"

    def __init__(self, message="This coupon has expired.", **extra):
        super().__init__(message, **extra)


class CouponUsageExceeded(CouponError):
    code = "coupon_usage_exceeded"

    def __init__(self, message="This coupon has reached its usage limit.", **extra):
        super().__init__(message, **extra)


class CouponMinimumNotMet(CouponError):
    code = "coupon_minimum_not_met"


class InvalidStatusTransition(BusinessLogicException):
    code = "invalid_status_transition"

    def __init__(self, current, target):
        super().__init__(
            f"Cannot move from {current} to {target}.",
            current_status=str(current),
            target_status=str(target),
        )


class TransactionAborted(BusinessLogicException):
    code = "transaction_aborted"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message="We could not place your order right now. Please try again.", **extra):
        super().__init__(message, **extra)


class OrderNumberCollision(BusinessLogicException):
    """Internal: retried by CheckoutService, never rendered to clients."""
    code = "order_number_collision"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
