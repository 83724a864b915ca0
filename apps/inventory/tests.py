from django.test import TestCase
from hypothesis import given, settings as hypothesis_settings, strategies as st
from hypothesis.extra.django import TestCase as HypothesisTestCase

from apps.orders.exceptions import InsufficientStock
from apps.utils.exceptions import BusinessLogicException
from apps.utils.testing import make_product, make_seller, make_user
from .models import InventoryLog
from .services import InventoryLedger


class InventoryLedgerTests(TestCase):
    def setUp(self):
        self.ledger = InventoryLedger()
        self.product = make_product(seller=make_seller(), stock=5)

    def test_decrement_updates_stock_and_logs_sale(self):
        log = self.ledger.decrement(self.product.id, 2, reference="GH-TEST-0001")

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)
        self.assertEqual(log.action, InventoryLog.Action.SALE)
        self.assertEqual(log.quantity_change, -2)
        self.assertEqual(log.previous_quantity, 5)
        self.assertEqual(log.new_quantity, 3)
        self.assertEqual(log.reference, "GH-TEST-0001")

    def test_decrement_beyond_stock_raises_and_changes_nothing(self):
        with self.assertRaises(InsufficientStock) as ctx:
            self.ledger.decrement(self.product.id, 6)

        self.assertEqual(ctx.exception.extra["requested"], 6)
        self.assertEqual(ctx.exception.extra["available"], 5)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)
        self.assertFalse(InventoryLog.objects.exists())

    def test_backorder_may_go_negative(self):
        product = make_product(seller=make_seller(), stock=1, allow_backorder=True)

        log = self.ledger.decrement(product.id, 3, allow_backorder=True)

        product.refresh_from_db()
        self.assertEqual(product.stock_quantity, -2)
        self.assertEqual(log.new_quantity, -2)

    def test_restock_logs_cancellation(self):
        user = make_user()
        log = self.ledger.restock(self.product.id, 4, action=InventoryLog.Action.CANCELLATION, user=user)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 9)
        self.assertEqual(log.action, InventoryLog.Action.CANCELLATION)
        self.assertEqual(log.created_by, user)

    def test_adjust_cannot_go_below_zero(self):
        with self.assertRaises(BusinessLogicException):
            self.ledger.adjust(self.product.id, -6, user=None, reason="cycle count")

        log = self.ledger.adjust(self.product.id, -5, user=None, reason="cycle count")
        self.assertEqual(log.new_quantity, 0)
        self.assertTrue(log.reference.startswith("MANUAL:"))

    def test_quantity_must_be_positive(self):
        with self.assertRaises(BusinessLogicException):
            self.ledger.decrement(self.product.id, 0)

    def test_log_is_append_only(self):
        log = self.ledger.decrement(self.product.id, 1)

        log.quantity_change = -100
        with self.assertRaises(ValueError):
            log.save()
        with self.assertRaises(ValueError):
            log.delete()


class StockDecrementPropertyTests(HypothesisTestCase):
    @hypothesis_settings(max_examples=40, deadline=None)
    @given(stock=st.integers(min_value=0, max_value=50), quantity=st.integers(min_value=1, max_value=60))
    def test_stock_after_is_before_minus_quantity_and_never_negative(self, stock, quantity):
        product = make_product(seller=make_seller(), stock=stock)
        ledger = InventoryLedger()

        try:
            ledger.decrement(product.id, quantity)
        except InsufficientStock:
            product.refresh_from_db()
            self.assertGreater(quantity, stock)
            self.assertEqual(product.stock_quantity, stock)
        else:
            product.refresh_from_db()
            self.assertEqual(product.stock_quantity, stock - quantity)

        self.assertGreaterEqual(product.stock_quantity, 0)
