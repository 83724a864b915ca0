from django.db import models

from apps.utils.models import TimestampedModel, FrozenFieldsMixin
from .order import Order, SellerOrder

__all__ = ["OrderItem"]


class OrderItem(FrozenFieldsMixin, TimestampedModel):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    seller_order = models.ForeignKey(SellerOrder, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey("catalog.Product", on_delete=models.PROTECT, related_name='order_items')

    # Snapshot fields, never re-derived from the live product
    product_name = models.CharField(max_length=255)
    product_sku = models.CharField(max_length=100)
    product_image = models.URLField(blank=True)
    quantity = models.PositiveIntegerField()
    unit_price_in_pesewas = models.PositiveIntegerField()
    total_price_in_pesewas = models.PositiveIntegerField()

    frozen_fields = (
        "product_id",
        "product_name",
        "product_sku",
        "product_image",
        "quantity",
        "unit_price_in_pesewas",
        "total_price_in_pesewas",
    )

    class Meta:
        db_table = "order_items"
        ordering = ["created_at"]

    def __str__(self):
        return f"{self.quantity}x {self.product_name}"
