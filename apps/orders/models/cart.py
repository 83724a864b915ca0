from django.conf import settings
from django.db import models
from django.db.models import Q

from apps.utils.models import TimestampedModel

__all__ = ["Cart", "CartItem"]


class Cart(TimestampedModel):
    """
    Buyer cart. Owned by a user, or by an anonymous session until login.
    Created lazily on first add; checkout empties it but keeps the row.
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        related_name="cart",
        on_delete=models.CASCADE,
    )
    session_key = models.CharField(max_length=64, null=True, blank=True, unique=True)

    class Meta:
        db_table = "carts"
        constraints = [
            models.CheckConstraint(
                condition=Q(user__isnull=False) | Q(session_key__isnull=False),
                name="cart_has_owner",
            ),
        ]

    def __str__(self):
        return f"Cart for {self.user_id or self.session_key}"

    @property
    def total_in_pesewas(self) -> int:
        return sum(item.product.price_in_pesewas * item.quantity for item in self.items.all())


class CartItem(TimestampedModel):
    """
    Product + quantity. price_at_add is informational; checkout re-reads the product.
    """

    cart = models.ForeignKey(
        Cart,
        related_name="items",
        on_delete=models.CASCADE,
    )
    product = models.ForeignKey(
        "catalog.Product",
        related_name="cart_items",
        on_delete=models.CASCADE,
    )

    quantity = models.PositiveIntegerField(default=1)
    price_at_add_in_pesewas = models.PositiveIntegerField()

    class Meta:
        db_table = "cart_items"
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(fields=["cart", "product"], name="uniq_cart_product"),
            models.CheckConstraint(condition=Q(quantity__gte=1), name="cart_item_quantity_positive"),
        ]

    def __str__(self):
        return f"{self.cart_id} -> {self.product_id} x {self.quantity}"

    def save(self, *args, **kwargs):
        if self.price_at_add_in_pesewas is None and self.product_id:
            self.price_at_add_in_pesewas = self.product.price_in_pesewas
        super().save(*args, **kwargs)
