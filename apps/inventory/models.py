import uuid
from django.db import models
from django.conf import settings


class InventoryLog(models.Model):
    """
    Immutable Ledger of all stock changes.
    """
    class Action(models.TextChoices):
        SALE = "SALE", "Sale (Order)"
        CANCELLATION = "CANCELLATION", "Release (Cancellation)"
        RESTOCK = "RESTOCK", "Restock"
        ADJUSTMENT = "ADJUSTMENT", "Manual Adjustment"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(
        "catalog.Product",
        on_delete=models.PROTECT,
        related_name='inventory_logs'
    )
    action = models.CharField(max_length=20, choices=Action.choices)

    quantity_change = models.IntegerField(help_text="Delta value (+/-)")
    previous_quantity = models.IntegerField()
    new_quantity = models.IntegerField()

    # Traceability
    order = models.ForeignKey(
        "orders.Order",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name='inventory_logs'
    )
    reference = models.CharField(max_length=100, blank=True, db_index=True, help_text="Order number, ticket, etc.")
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "inventory_logs"
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.product_id} {self.quantity_change:+d} ({self.action})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Inventory log entries are append-only.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Inventory log entries are append-only.")
