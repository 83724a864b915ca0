from django.db import models
from django.db.models import Q

from apps.utils.models import TimestampedModel

__all__ = ["Coupon"]


class Coupon(TimestampedModel):
    class DiscountType(models.TextChoices):
        PERCENTAGE = "PERCENTAGE", "Percentage"
        FIXED = "FIXED", "Fixed amount"

    code = models.CharField(max_length=50, unique=True)
    discount_type = models.CharField(max_length=20, choices=DiscountType.choices)
    # Percent for PERCENTAGE, pesewas for FIXED
    discount_value = models.PositiveIntegerField()

    min_order_in_pesewas = models.PositiveIntegerField(null=True, blank=True)
    max_discount_in_pesewas = models.PositiveIntegerField(null=True, blank=True)

    usage_limit = models.PositiveIntegerField(null=True, blank=True)
    usage_count = models.PositiveIntegerField(default=0)

    is_active = models.BooleanField(default=True)
    valid_from = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "coupons"
        constraints = [
            models.CheckConstraint(
                condition=Q(usage_limit__isnull=True) | Q(usage_count__lte=models.F("usage_limit")),
                name="coupon_usage_within_limit",
            ),
        ]

    def __str__(self):
        return self.code

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)
