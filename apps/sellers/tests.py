# apps/sellers/tests.py
from decimal import Decimal

from django.test import SimpleTestCase, TestCase, override_settings

from apps.utils.testing import make_seller
from .services import CommissionSchedule, get_platform_seller


class CommissionScheduleTests(SimpleTestCase):
    def test_default_rate(self):
        schedule = CommissionSchedule(default_rate="0.05")
        self.assertEqual(schedule.rate_for(None), Decimal("0.05"))

    def test_seller_override(self):
        schedule = CommissionSchedule(default_rate="0.05")
        self.assertEqual(schedule.rate_for(Decimal("0.1200")), Decimal("0.12"))
        self.assertEqual(schedule.rate_for(0), Decimal("0"))

    @override_settings(DEFAULT_COMMISSION_RATE=Decimal("0.08"))
    def test_reads_setting(self):
        self.assertEqual(CommissionSchedule().rate_for(None), Decimal("0.08"))


class PlatformSellerTests(TestCase):
    def test_unset_means_no_platform_seller(self):
        self.assertIsNone(get_platform_seller())

    def test_configured_seller(self):
        seller = make_seller(business_name="GhanaMarket Official")
        with override_settings(PLATFORM_SELLER_ID=str(seller.id)):
            self.assertEqual(get_platform_seller(), seller)

    def test_inactive_or_bad_id_is_logged(self):
        seller = make_seller(is_active=False)
        with self.assertLogs("apps.sellers.services", level="ERROR"):
            self.assertIsNone(get_platform_seller(seller.id))
        with self.assertLogs("apps.sellers.services", level="ERROR"):
            self.assertIsNone(get_platform_seller("not-a-uuid"))
