from django.conf import settings
from django.db import models
from django.db.models import F, Q

from apps.utils.models import TimestampedModel, FrozenFieldsMixin

__all__ = ["Order", "SellerOrder", "ORDER_TRANSITIONS", "SELLER_ORDER_TRANSITIONS"]


class Order(FrozenFieldsMixin, TimestampedModel):
    class Status(models.TextChoices):
        PAYMENT_PENDING = "PAYMENT_PENDING", "Awaiting Payment"
        CONFIRMED = "CONFIRMED", "Confirmed"
        PROCESSING = "PROCESSING", "Processing"
        SHIPPED = "SHIPPED", "Shipped"
        OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY", "Out for Delivery"
        DELIVERED = "DELIVERED", "Delivered"
        CANCELLED = "CANCELLED", "Cancelled"
        REFUNDED = "REFUNDED", "Refunded"
        FAILED = "FAILED", "Failed"

    TERMINAL_STATUSES = frozenset({
        Status.DELIVERED, Status.CANCELLED, Status.REFUNDED, Status.FAILED,
    })

    frozen_fields = (
        "order_number",
        "subtotal_in_pesewas",
        "shipping_fee_in_pesewas",
        "discount_in_pesewas",
        "tax_in_pesewas",
        "total_in_pesewas",
    )

    order_number = models.CharField(max_length=32, unique=True, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='orders')
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PAYMENT_PENDING, db_index=True)

    # Money (pesewas), immutable once written
    subtotal_in_pesewas = models.PositiveIntegerField()
    shipping_fee_in_pesewas = models.PositiveIntegerField(default=0)
    discount_in_pesewas = models.PositiveIntegerField(default=0)
    tax_in_pesewas = models.PositiveIntegerField(default=0)
    total_in_pesewas = models.PositiveIntegerField()

    coupon = models.ForeignKey(
        "orders.Coupon", null=True, blank=True, on_delete=models.SET_NULL, related_name="orders"
    )
    coupon_code = models.CharField(max_length=50, blank=True)

    # Shipping snapshot
    shipping_full_name = models.CharField(max_length=255)
    shipping_phone = models.CharField(max_length=20)
    shipping_region = models.CharField(max_length=100)
    shipping_city = models.CharField(max_length=100)
    shipping_area = models.CharField(max_length=100, blank=True)
    shipping_street_address = models.CharField(max_length=255)
    shipping_gps_address = models.CharField(max_length=20, blank=True)

    # Contact snapshot
    customer_email = models.EmailField()
    customer_phone = models.CharField(max_length=20)

    notes = models.TextField(blank=True)

    confirmed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "created_at"], name="order_user_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(total_in_pesewas=(
                    F("subtotal_in_pesewas")
                    - F("discount_in_pesewas")
                    + F("shipping_fee_in_pesewas")
                    + F("tax_in_pesewas")
                )),
                name="order_total_reconciles",
            ),
        ]

    def __str__(self):
        return f"{self.order_number} [{self.status}]"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @property
    def can_cancel(self):
        return self.status in [self.Status.PAYMENT_PENDING, self.Status.CONFIRMED]

    def can_transition_to(self, new_status) -> bool:
        return new_status in ORDER_TRANSITIONS.get(self.status, frozenset())


class SellerOrder(TimestampedModel):
    """
    The slice of an Order one seller fulfils.
    Progresses independently of its siblings.
    """
    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        PROCESSING = "PROCESSING", "Processing"
        SHIPPED = "SHIPPED", "Shipped"
        DELIVERED = "DELIVERED", "Delivered"
        CANCELLED = "CANCELLED", "Cancelled"
        REFUNDED = "REFUNDED", "Refunded"

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="seller_orders")
    seller = models.ForeignKey("sellers.SellerProfile", on_delete=models.PROTECT, related_name="seller_orders")
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)

    subtotal_in_pesewas = models.PositiveIntegerField()
    shipping_fee_in_pesewas = models.PositiveIntegerField(default=0)
    commission_in_pesewas = models.PositiveIntegerField(default=0)
    payout_in_pesewas = models.PositiveIntegerField()
    total_in_pesewas = models.PositiveIntegerField()

    class Meta:
        db_table = "seller_orders"
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(fields=["order", "seller"], name="uniq_seller_per_order"),
        ]

    def __str__(self):
        return f"{self.order_id} / {self.seller_id} [{self.status}]"

    def can_transition_to(self, new_status) -> bool:
        return new_status in SELLER_ORDER_TRANSITIONS.get(self.status, frozenset())


_S = Order.Status
_CLOSE = {_S.CANCELLED, _S.REFUNDED, _S.FAILED}

ORDER_TRANSITIONS = {
    _S.PAYMENT_PENDING: frozenset({_S.CONFIRMED, _S.PROCESSING, *_CLOSE}),
    _S.CONFIRMED: frozenset({_S.PROCESSING, _S.SHIPPED, *_CLOSE}),
    _S.PROCESSING: frozenset({_S.SHIPPED, *_CLOSE}),
    _S.SHIPPED: frozenset({_S.OUT_FOR_DELIVERY, *_CLOSE}),
    _S.OUT_FOR_DELIVERY: frozenset({_S.DELIVERED, *_CLOSE}),
}

_SO = SellerOrder.Status

SELLER_ORDER_TRANSITIONS = {
    _SO.PENDING: frozenset({_SO.PROCESSING, _SO.SHIPPED, _SO.CANCELLED, _SO.REFUNDED}),
    _SO.PROCESSING: frozenset({_SO.SHIPPED, _SO.CANCELLED, _SO.REFUNDED}),
    _SO.SHIPPED: frozenset({_SO.DELIVERED, _SO.CANCELLED, _SO.REFUNDED}),
}
