from django.test import SimpleTestCase, override_settings

from .services import DeliveryFeeCalculator, normalize_location


class NormalizeLocationTests(SimpleTestCase):
    def test_strips_case_whitespace_and_region_suffix(self):
        self.assertEqual(normalize_location("  Bono Region "), "bono")
        self.assertEqual(normalize_location("BONO"), "bono")
        self.assertEqual(normalize_location(None), "")


class DeliveryFeeCalculatorTests(SimpleTestCase):
    def setUp(self):
        self.calc = DeliveryFeeCalculator(
            zones={"bono": {"same_city": 500, "same_region": 1000}},
            default_fee=2500,
        )

    def test_same_zone_same_city_is_cheapest(self):
        self.assertEqual(self.calc.fee("Bono Region", "Sunyani", "bono", " sunyani "), 500)

    def test_same_zone_other_city(self):
        self.assertEqual(self.calc.fee("Bono", "Sunyani", "Bono", "Berekum"), 1000)

    def test_same_zone_unknown_city(self):
        self.assertEqual(self.calc.fee("Bono", "", "Bono", "Berekum"), 1000)
        self.assertEqual(self.calc.fee("Bono", None, "Bono", None), 1000)

    def test_outside_zone_pays_default(self):
        self.assertEqual(self.calc.fee("Greater Accra", "Accra", "Greater Accra", "Accra"), 2500)
        self.assertEqual(self.calc.fee("Bono", "Sunyani", "Ashanti", "Kumasi"), 2500)

    def test_misconfigured_zone_falls_back_to_default(self):
        calc = DeliveryFeeCalculator(zones={"bono": {"same_city": 500}}, default_fee=2500)
        self.assertEqual(calc.fee("Bono", "Sunyani", "Bono", "Berekum"), 2500)

    @override_settings(
        DELIVERY_FEE_ZONES={"Ashanti Region": {"same_city": 700, "same_region": 1200}},
        DELIVERY_DEFAULT_FEE=3000,
    )
    def test_reads_zones_from_settings(self):
        calc = DeliveryFeeCalculator()
        self.assertEqual(calc.fee("Ashanti", "Kumasi", "ashanti region", "kumasi"), 700)
        self.assertEqual(calc.fee("Bono", "Sunyani", "Bono", "Sunyani"), 3000)
