import logging
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError

from .models import SellerProfile

logger = logging.getLogger(__name__)


class CommissionSchedule:
    """
    Read-only commission configuration for seller payouts.
    """

    def __init__(self, default_rate=None):
        if default_rate is None:
            default_rate = settings.DEFAULT_COMMISSION_RATE
        self.default_rate = Decimal(str(default_rate))

    def rate_for(self, commission_rate) -> Decimal:
        """
        ``commission_rate`` is the seller's own override (may be None).
        """
        if commission_rate is None:
            return self.default_rate
        return Decimal(str(commission_rate))


def get_platform_seller(seller_id=None):
    """
    Seller that fulfils catalog items without an owner.
    Returns None when the platform does not sell seller-less products.
    """
    seller_id = seller_id if seller_id is not None else settings.PLATFORM_SELLER_ID
    if not seller_id:
        return None
    try:
        return SellerProfile.objects.get(id=seller_id, is_active=True)
    except (SellerProfile.DoesNotExist, ValueError, ValidationError):
        logger.error(f"PLATFORM_SELLER_ID {seller_id} does not match an active seller.")
        return None
