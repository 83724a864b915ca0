# apps/catalog/models.py
from django.db import models
from django.db.models import Q

from apps.utils.models import TimestampedModel


class Product(TimestampedModel):
    """
    Sellable catalog item. Prices are integer pesewas.

    NOTE:
    - Checkout only ever writes ``stock_quantity`` here; everything else is
      owned by catalog management.
    - ``seller`` is nullable for platform-owned items (see PLATFORM_SELLER_ID).
    """
    seller = models.ForeignKey(
        "sellers.SellerProfile",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="products",
    )

    name = models.CharField(max_length=255)
    sku = models.CharField(max_length=100, unique=True, db_index=True)
    image_url = models.URLField(blank=True)

    price_in_pesewas = models.PositiveIntegerField()

    stock_quantity = models.IntegerField(default=0)
    track_inventory = models.BooleanField(default=True)
    allow_backorder = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "products"
        indexes = [
            models.Index(fields=["seller", "is_active"], name="product_seller_active_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(track_inventory=False)
                    | Q(allow_backorder=True)
                    | Q(stock_quantity__gte=0)
                ),
                name="product_stock_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.sku} | {self.name}"
