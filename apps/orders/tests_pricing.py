# apps/orders/tests_pricing.py
from datetime import timedelta
from decimal import Decimal

from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from hypothesis import given, settings as hypothesis_settings, strategies as st

from .dto import CartLine, ProductSnapshot
from .exceptions import CouponExpired, CouponMinimumNotMet, CouponNotFound, CouponUsageExceeded
from .models import Coupon
from .pricing import CouponStore, PricingEngine, compute_discount, round_half_up


def line(price, quantity=1):
    product = ProductSnapshot(
        id=None, name="Item", sku="SKU", image_url="", price_in_pesewas=price,
        stock_quantity=100, track_inventory=True, allow_backorder=False, is_active=True,
    )
    return CartLine(product=product, quantity=quantity)


class RoundHalfUpTests(SimpleTestCase):
    def test_rounding(self):
        self.assertEqual(round_half_up(Decimal("2.5")), 3)
        self.assertEqual(round_half_up(Decimal("2.4999")), 2)
        self.assertEqual(round_half_up(Decimal("3.5")), 4)
        self.assertEqual(round_half_up(0), 0)


class ComputeDiscountTests(SimpleTestCase):
    def test_percentage_is_rounded_half_up(self):
        coupon = Coupon(discount_type=Coupon.DiscountType.PERCENTAGE, discount_value=15)
        # 15% of 1003 = 150.45
        self.assertEqual(compute_discount(coupon, 1003), 150)
        # 15% of 1010 = 151.5
        self.assertEqual(compute_discount(coupon, 1010), 152)

    def test_percentage_capped(self):
        coupon = Coupon(
            discount_type=Coupon.DiscountType.PERCENTAGE, discount_value=50, max_discount_in_pesewas=1000,
        )
        self.assertEqual(compute_discount(coupon, 10_000), 1000)

    def test_fixed_never_exceeds_subtotal(self):
        coupon = Coupon(discount_type=Coupon.DiscountType.FIXED, discount_value=5000)
        self.assertEqual(compute_discount(coupon, 3000), 3000)
        self.assertEqual(compute_discount(coupon, 8000), 5000)


class CouponStoreTests(TestCase):
    def setUp(self):
        self.store = CouponStore()
        self.now = timezone.now()

    def make_coupon(self, **kwargs):
        defaults = {
            "code": "GHANA20",
            "discount_type": Coupon.DiscountType.PERCENTAGE,
            "discount_value": 20,
        }
        defaults.update(kwargs)
        return Coupon.objects.create(**defaults)

    def test_lookup_is_case_insensitive(self):
        coupon = self.make_coupon()
        self.assertEqual(self.store.get_valid(" ghana20 ", 1000), coupon)

    def test_inactive_coupon_is_not_found(self):
        self.make_coupon(is_active=False)
        with self.assertRaises(CouponNotFound):
            self.store.get_valid("GHANA20", 1000)

    def test_expired_and_not_yet_valid(self):
        self.make_coupon(expires_at=self.now - timedelta(minutes=1))
        with self.assertRaises(CouponExpired):
            self.store.get_valid("GHANA20", 1000)

        self.make_coupon(code="LATER", valid_from=self.now + timedelta(days=1))
        with self.assertRaises(CouponExpired):
            self.store.get_valid("LATER", 1000)

    def test_usage_exceeded(self):
        self.make_coupon(usage_limit=3, usage_count=3)
        with self.assertRaises(CouponUsageExceeded):
            self.store.get_valid("GHANA20", 1000)

    def test_minimum_not_met(self):
        self.make_coupon(min_order_in_pesewas=5000)
        with self.assertRaises(CouponMinimumNotMet) as ctx:
            self.store.get_valid("GHANA20", 4999)
        self.assertEqual(ctx.exception.extra["minimum_in_pesewas"], 5000)

    def test_expiry_is_reported_before_usage_and_minimum(self):
        self.make_coupon(
            expires_at=self.now - timedelta(days=1), usage_limit=1, usage_count=1, min_order_in_pesewas=10_000,
        )
        with self.assertRaises(CouponExpired):
            self.store.get_valid("GHANA20", 1)

    def test_increment_respects_limit(self):
        coupon = self.make_coupon(usage_limit=1)

        self.store.increment_usage(coupon.id)
        with self.assertRaises(CouponUsageExceeded):
            self.store.increment_usage(coupon.id)

        coupon.refresh_from_db()
        self.assertEqual(coupon.usage_count, 1)


class PricingEngineTests(TestCase):
    def test_totals_without_coupon(self):
        result = PricingEngine().price([line(1500, 2), line(250)], shipping_fee_in_pesewas=500)

        self.assertEqual(result.subtotal_in_pesewas, 3250)
        self.assertEqual(result.discount_in_pesewas, 0)
        self.assertEqual(result.tax_in_pesewas, 0)
        self.assertEqual(result.total_in_pesewas, 3750)
        self.assertIsNone(result.coupon)

    def test_tax_applies_after_discount(self):
        Coupon.objects.create(code="FLAT", discount_type=Coupon.DiscountType.FIXED, discount_value=1000)
        engine = PricingEngine(tax_rate=Decimal("0.125"))

        result = engine.price([line(5000)], shipping_fee_in_pesewas=500, coupon_code="flat")

        self.assertEqual(result.discount_in_pesewas, 1000)
        self.assertEqual(result.tax_in_pesewas, 500)
        self.assertEqual(result.total_in_pesewas, 5000 - 1000 + 500 + 500)
        self.assertEqual(result.coupon.code, "FLAT")

    def test_blank_coupon_code_is_ignored(self):
        result = PricingEngine().price([line(100)], coupon_code="   ")
        self.assertEqual(result.discount_in_pesewas, 0)


class DiscountPropertyTests(SimpleTestCase):
    @hypothesis_settings(max_examples=200)
    @given(
        subtotal=st.integers(min_value=0, max_value=10**9),
        percent=st.integers(min_value=0, max_value=100),
        cap=st.one_of(st.none(), st.integers(min_value=0, max_value=10**8)),
    )
    def test_percentage_discount_bounded(self, subtotal, percent, cap):
        coupon = Coupon(
            discount_type=Coupon.DiscountType.PERCENTAGE,
            discount_value=percent,
            max_discount_in_pesewas=cap,
        )
        discount = compute_discount(coupon, subtotal)

        self.assertGreaterEqual(discount, 0)
        self.assertLessEqual(discount, subtotal)
        if cap is not None:
            self.assertLessEqual(discount, cap)

    @hypothesis_settings(max_examples=200)
    @given(subtotal=st.integers(min_value=0, max_value=10**9), value=st.integers(min_value=0, max_value=10**9))
    def test_fixed_discount_bounded(self, subtotal, value):
        coupon = Coupon(discount_type=Coupon.DiscountType.FIXED, discount_value=value)
        discount = compute_discount(coupon, subtotal)

        self.assertLessEqual(discount, subtotal)
        self.assertLessEqual(discount, value)

    @hypothesis_settings(max_examples=200)
    @given(
        prices=st.lists(
            st.tuples(st.integers(min_value=0, max_value=10**7), st.integers(min_value=1, max_value=20)),
            min_size=1, max_size=10,
        ),
        shipping=st.integers(min_value=0, max_value=10**5),
        tax_rate=st.decimals(min_value=0, max_value=Decimal("0.3"), places=3),
    )
    def test_total_identity(self, prices, shipping, tax_rate):
        engine = PricingEngine(tax_rate=tax_rate)
        result = engine.price([line(p, q) for p, q in prices], shipping_fee_in_pesewas=shipping)

        self.assertEqual(
            result.total_in_pesewas,
            result.subtotal_in_pesewas - result.discount_in_pesewas
            + result.shipping_fee_in_pesewas + result.tax_in_pesewas,
        )
        self.assertGreaterEqual(result.total_in_pesewas, 0)
