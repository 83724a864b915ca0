from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models

from apps.utils.models import TimestampedModel


class SellerProfile(TimestampedModel):
    """
    Independent storefront. Region/city drive delivery fees,
    commission_rate overrides the platform default when set.
    """
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="seller_profile",
    )
    business_name = models.CharField(max_length=255)
    region = models.CharField(max_length=100)
    city = models.CharField(max_length=100, blank=True)

    commission_rate = models.DecimalField(
        max_digits=5,
        decimal_places=4,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("1"))],
        help_text="Fraction of subtotal kept by the platform (0.05 = 5%). Blank uses the default.",
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "seller_profiles"
        indexes = [
            models.Index(fields=["region"], name="seller_region_idx"),
        ]

    def __str__(self):
        return self.business_name
