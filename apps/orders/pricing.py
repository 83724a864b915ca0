import logging
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db.models import F, Q
from django.utils import timezone

from .dto import AppliedCoupon, PricingResult
from .exceptions import (
    CouponExpired,
    CouponMinimumNotMet,
    CouponNotFound,
    CouponUsageExceeded,
)
from .models import Coupon

logger = logging.getLogger(__name__)


def round_half_up(value) -> int:
    """Decimal-exact rounding to whole pesewas, .5 goes up."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_discount(coupon: Coupon, subtotal: int) -> int:
    """
    Percentage -> rounded share of the subtotal, capped by max_discount.
    Fixed -> face value. Either way never more than the subtotal.
    """
    if coupon.discount_type == Coupon.DiscountType.PERCENTAGE:
        discount = round_half_up(Decimal(subtotal) * Decimal(coupon.discount_value) / Decimal(100))
        if coupon.max_discount_in_pesewas is not None:
            discount = min(discount, coupon.max_discount_in_pesewas)
    else:
        discount = coupon.discount_value

    return max(0, min(discount, subtotal))


class CouponStore:
    """
    Read side and the conditional usage increment for coupons.
    """

    def get_valid(self, code: str, subtotal: int, now=None) -> Coupon:
        """
        Checks run in a fixed order so the buyer always sees the
        first reason a coupon is refused.
        """
        now = now or timezone.now()
        code = (code or "").strip().upper()

        coupon = Coupon.objects.filter(code=code, is_active=True).first()
        if coupon is None:
            raise CouponNotFound()

        if (coupon.expires_at and now > coupon.expires_at) or (
            coupon.valid_from and now < coupon.valid_from
        ):
            raise CouponExpired()

        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            raise CouponUsageExceeded()

        if coupon.min_order_in_pesewas and subtotal < coupon.min_order_in_pesewas:
            raise CouponMinimumNotMet(
                f"Minimum order of {coupon.min_order_in_pesewas} pesewas required for this coupon.",
                minimum_in_pesewas=coupon.min_order_in_pesewas,
            )

        return coupon

    def increment_usage(self, coupon_id) -> None:
        """
        usage_count += 1 only while under the limit. Must run inside the
        order transaction so a rollback takes the increment with it.
        """
        updated = (
            Coupon.objects.filter(pk=coupon_id)
            .filter(Q(usage_limit__isnull=True) | Q(usage_count__lt=F("usage_limit")))
            .update(usage_count=F("usage_count") + 1)
        )
        if not updated:
            logger.warning(f"Coupon {coupon_id} hit its usage limit during checkout")
            raise CouponUsageExceeded()


class PricingEngine:
    def __init__(self, coupon_store=None, tax_rate=None):
        self.coupon_store = coupon_store or CouponStore()
        if tax_rate is None:
            tax_rate = getattr(settings, "CHECKOUT_TAX_RATE", 0)
        self.tax_rate = Decimal(str(tax_rate))

    @staticmethod
    def subtotal(lines) -> int:
        return sum(line.product.price_in_pesewas * line.quantity for line in lines)

    def price(self, lines, shipping_fee_in_pesewas=0, coupon_code=None, now=None) -> PricingResult:
        subtotal = self.subtotal(lines)

        discount = 0
        applied = None
        if coupon_code and coupon_code.strip():
            coupon = self.coupon_store.get_valid(coupon_code, subtotal, now=now)
            discount = compute_discount(coupon, subtotal)
            applied = AppliedCoupon(id=coupon.id, code=coupon.code)

        tax = round_half_up(Decimal(subtotal - discount) * self.tax_rate) if self.tax_rate else 0

        return PricingResult(
            subtotal_in_pesewas=subtotal,
            discount_in_pesewas=discount,
            shipping_fee_in_pesewas=max(int(shipping_fee_in_pesewas), 0),
            tax_in_pesewas=max(tax, 0),
            coupon=applied,
        )
