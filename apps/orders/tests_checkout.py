# apps/orders/tests_checkout.py
from datetime import timedelta
from unittest import mock

from django.db import connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.delivery.services import DeliveryFeeCalculator
from apps.inventory.models import InventoryLog
from apps.notifications.signals import order_placed
from apps.payments.exceptions import PaymentGatewayError
from apps.payments.models import Payment, PaymentStatus
from apps.payments.services import PaymentGateway, PaystackClient
from apps.utils.testing import CHECKOUT_PAYLOAD, make_cart, make_product, make_seller, make_user
from .container import build_checkout_service
from .dto import CheckoutRequest, ShippingDetails
from .exceptions import (
    CartEmpty,
    CartNotFound,
    InsufficientStock,
    ProductUnavailable,
    TransactionAborted,
)
from .models import CartItem, Coupon, Order, OrderItem, OrderTimeline, SellerOrder
from .services import OrderTransaction

FREE_DELIVERY = DeliveryFeeCalculator(zones={}, default_fee=0)


def checkout_request(**overrides):
    shipping = ShippingDetails(
        full_name="Ama Mensah",
        phone="0241234567",
        region=overrides.pop("region", "Bono"),
        city=overrides.pop("city", "Sunyani"),
        street_address="12 Market Road",
    )
    data = {
        "customer_email": "ama@example.com",
        "customer_phone": "0241234567",
        "payment_method": "CASH_ON_DELIVERY",
    }
    data.update(overrides)
    return CheckoutRequest(shipping=shipping, **data)


class PassThroughValidator:
    """Accepts whatever snapshot it is given, like a validation that ran just before a competing commit."""

    def validate(self, cart):
        return cart


class CheckoutServiceTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.seller = make_seller(region="Bono", city="Sunyani")
        self.product = make_product(seller=self.seller, price=1_500_000, stock=10)

    def test_cash_on_delivery_creates_confirmed_order(self):
        cart = make_cart(user=self.user, items=[(self.product, 2)])
        service = build_checkout_service(fee_calculator=FREE_DELIVERY)

        result = service.checkout(self.user, checkout_request())

        order = Order.objects.get(id=result.order_id)
        self.assertEqual(order.status, Order.Status.CONFIRMED)
        self.assertIsNotNone(order.confirmed_at)
        self.assertEqual(order.total_in_pesewas, 3_000_000)
        self.assertFalse(CartItem.objects.filter(cart=cart).exists())
        self.assertTrue(type(cart).objects.filter(pk=cart.pk).exists())

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 8)
        log = InventoryLog.objects.get(order=order)
        self.assertEqual(log.action, InventoryLog.Action.SALE)
        self.assertEqual(log.quantity_change, -2)

        payment = order.payment
        self.assertEqual(payment.status, PaymentStatus.PENDING)
        self.assertEqual(payment.amount_in_pesewas, 3_000_000)
        self.assertFalse(result.payment.initialized)
        self.assertTrue(OrderTimeline.objects.filter(order=order, status=Order.Status.CONFIRMED).exists())

    def test_order_number_format(self):
        make_cart(user=self.user, items=[(self.product, 1)])
        result = build_checkout_service().checkout(self.user, checkout_request())

        self.assertRegex(result.order_number, r"^GH-\d{8}-[A-Z0-9]{4}$")

    def test_empty_cart_creates_nothing(self):
        make_cart(user=self.user)

        with self.assertRaises(CartEmpty):
            build_checkout_service().checkout(self.user, checkout_request())
        self.assertFalse(Order.objects.exists())

    def test_missing_cart(self):
        with self.assertRaises(CartNotFound):
            build_checkout_service().checkout(self.user, checkout_request())

    def test_coupon_discount_and_usage(self):
        coupon = Coupon.objects.create(
            code="save10",
            discount_type=Coupon.DiscountType.PERCENTAGE,
            discount_value=10,
            max_discount_in_pesewas=500_000,
            valid_from=timezone.now() - timedelta(days=1),
            expires_at=timezone.now() + timedelta(days=1),
        )
        make_cart(user=self.user, items=[(self.product, 2)])
        service = build_checkout_service(fee_calculator=FREE_DELIVERY)

        result = service.checkout(self.user, checkout_request(coupon_code="SAVE10"))

        order = Order.objects.get(id=result.order_id)
        self.assertEqual(order.discount_in_pesewas, 300_000)
        self.assertEqual(order.total_in_pesewas, 2_700_000)
        self.assertEqual(order.coupon_code, "SAVE10")
        coupon.refresh_from_db()
        self.assertEqual(coupon.usage_count, 1)

    def test_coupon_usage_not_counted_when_checkout_rolls_back(self):
        coupon = Coupon.objects.create(
            code="ONEOFF", discount_type=Coupon.DiscountType.FIXED, discount_value=100, usage_limit=5,
        )
        cart = make_cart(user=self.user, items=[(self.product, 2)])
        # Validation saw stock, the commit does not
        type(self.product).objects.filter(pk=self.product.pk).update(stock_quantity=1)
        service = build_checkout_service(validator=PassThroughValidator())

        with self.assertRaises(InsufficientStock):
            service.checkout(self.user, checkout_request(coupon_code="ONEOFF"))

        coupon.refresh_from_db()
        self.assertEqual(coupon.usage_count, 0)
        self.assertTrue(CartItem.objects.filter(cart=cart).exists())

    def test_inactive_product_rejected(self):
        self.product.is_active = False
        self.product.save()
        make_cart(user=self.user, items=[(self.product, 1)])

        with self.assertRaises(ProductUnavailable) as ctx:
            build_checkout_service().checkout(self.user, checkout_request())
        self.assertEqual(ctx.exception.extra["product_id"], str(self.product.id))

    def test_insufficient_stock_reports_product_and_limit(self):
        make_cart(user=self.user, items=[(self.product, 11)])

        with self.assertRaises(InsufficientStock) as ctx:
            build_checkout_service().checkout(self.user, checkout_request())
        self.assertEqual(ctx.exception.extra["requested"], 11)
        self.assertEqual(ctx.exception.extra["available"], 10)
        self.assertFalse(Order.objects.exists())

    def test_untracked_product_keeps_stock(self):
        product = make_product(seller=self.seller, stock=0, track_inventory=False)
        make_cart(user=self.user, items=[(product, 3)])

        build_checkout_service().checkout(self.user, checkout_request())

        product.refresh_from_db()
        self.assertEqual(product.stock_quantity, 0)
        self.assertFalse(InventoryLog.objects.filter(product=product).exists())

    def test_lost_stock_race_rolls_everything_back(self):
        cart = make_cart(user=self.user, items=[(self.product, 1)])
        type(self.product).objects.filter(pk=self.product.pk).update(stock_quantity=0)
        service = build_checkout_service(validator=PassThroughValidator())

        with self.assertRaises(InsufficientStock):
            service.checkout(self.user, checkout_request())

        self.assertFalse(Order.objects.exists())
        self.assertFalse(Payment.objects.exists())
        self.assertFalse(SellerOrder.objects.exists())
        self.assertTrue(CartItem.objects.filter(cart=cart).exists())
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 0)

    def test_multi_seller_order_is_partitioned(self):
        other_seller = make_seller(region="Greater Accra", city="Accra", commission_rate="0.10")
        other_product = make_product(seller=other_seller, price=2000)
        make_cart(user=self.user, items=[(self.product, 1), (other_product, 2)])

        result = build_checkout_service().checkout(self.user, checkout_request())

        order = Order.objects.get(id=result.order_id)
        slices = {so.seller_id: so for so in order.seller_orders.all()}
        self.assertEqual(len(slices), 2)

        local = slices[self.seller.id]
        self.assertEqual(local.subtotal_in_pesewas, 1_500_000)
        self.assertEqual(local.shipping_fee_in_pesewas, 500)
        self.assertEqual(local.commission_in_pesewas, 75_000)
        self.assertEqual(local.payout_in_pesewas, 1_425_000)

        remote = slices[other_seller.id]
        self.assertEqual(remote.subtotal_in_pesewas, 4000)
        self.assertEqual(remote.shipping_fee_in_pesewas, 2500)
        self.assertEqual(remote.commission_in_pesewas, 400)
        self.assertEqual(remote.total_in_pesewas, 6500)

        self.assertEqual(
            sum(so.subtotal_in_pesewas for so in slices.values()), order.subtotal_in_pesewas
        )
        self.assertEqual(order.shipping_fee_in_pesewas, 3000)
        self.assertEqual(
            order.total_in_pesewas,
            order.subtotal_in_pesewas - order.discount_in_pesewas
            + order.shipping_fee_in_pesewas + order.tax_in_pesewas,
        )
        self.assertEqual(OrderItem.objects.filter(seller_order=remote).count(), 1)

    def test_sellerless_product_without_platform_seller_is_rejected(self):
        orphan = make_product(seller=None)
        make_cart(user=self.user, items=[(orphan, 1)])

        with self.assertRaises(ProductUnavailable):
            build_checkout_service().checkout(self.user, checkout_request())
        self.assertFalse(Order.objects.exists())

    def test_sellerless_product_goes_to_platform_seller(self):
        official = make_seller(business_name="GhanaMarket Official")
        orphan = make_product(seller=None)
        make_cart(user=self.user, items=[(orphan, 1)])

        with override_settings(PLATFORM_SELLER_ID=str(official.id)):
            result = build_checkout_service().checkout(self.user, checkout_request())

        seller_order = SellerOrder.objects.get(order_id=result.order_id)
        self.assertEqual(seller_order.seller, official)

    def test_order_number_collision_is_retried(self):
        make_cart(user=self.user, items=[(self.product, 1)])
        first = build_checkout_service().checkout(self.user, checkout_request())
        CartItem.objects.create(cart=self.user.cart, product=self.product, quantity=1)

        numbers = iter([first.order_number, "GH-20260101-ZZZZ"])
        service = build_checkout_service()
        service.order_transaction.number_generator = lambda: next(numbers)

        result = service.checkout(self.user, checkout_request())

        self.assertEqual(result.order_number, "GH-20260101-ZZZZ")
        self.assertEqual(Order.objects.count(), 2)

    def test_order_number_collisions_exhaust_attempts(self):
        make_cart(user=self.user, items=[(self.product, 1)])
        first = build_checkout_service().checkout(self.user, checkout_request())
        CartItem.objects.create(cart=self.user.cart, product=self.product, quantity=1)

        service = build_checkout_service(max_attempts=2)
        service.order_transaction.number_generator = lambda: first.order_number

        with self.assertRaises(TransactionAborted):
            service.checkout(self.user, checkout_request())
        self.assertEqual(Order.objects.count(), 1)

    def test_gateway_failure_keeps_order(self):
        client = mock.Mock(spec=PaystackClient)
        client.initialize.side_effect = PaymentGatewayError("Gateway down")
        gateway = PaymentGateway(client=client, sandbox=False)
        make_cart(user=self.user, items=[(self.product, 1)])

        result = build_checkout_service(payment_gateway=gateway).checkout(
            self.user, checkout_request(payment_method="MOMO_MTN", momo_phone_number="0241234567")
        )

        order = Order.objects.get(id=result.order_id)
        self.assertEqual(order.status, Order.Status.PAYMENT_PENDING)
        self.assertFalse(result.payment.initialized)
        self.assertEqual(order.payment.momo_network, "MTN")
        self.assertIn("Gateway down", order.payment.error_message)

    def test_unexpected_gateway_error_keeps_order(self):
        gateway = mock.Mock(spec=PaymentGateway)
        gateway.initiate.side_effect = RuntimeError("serializer blew up")
        make_cart(user=self.user, items=[(self.product, 1)])

        with self.assertLogs("apps.orders.services", level="ERROR") as logs:
            result = build_checkout_service(payment_gateway=gateway).checkout(
                self.user, checkout_request(payment_method="CARD")
            )

        self.assertIn("serializer blew up", "\n".join(logs.output))
        self.assertFalse(result.payment.initialized)
        self.assertIn("retry", result.payment.message)
        order = Order.objects.get(id=result.order_id)
        self.assertEqual(order.status, Order.Status.PAYMENT_PENDING)

    def test_non_object_gateway_body_keeps_order(self):
        session = mock.Mock()
        session.request.return_value = mock.Mock(status_code=200)
        session.request.return_value.json.return_value = ["unexpected"]
        client = PaystackClient(secret_key="sk_test_x", base_url="https://api.paystack.co", session=session, breaker=None)
        gateway = PaymentGateway(client=client, sandbox=False)
        make_cart(user=self.user, items=[(self.product, 1)])

        with self.assertLogs("apps.payments.services", level="ERROR"):
            result = build_checkout_service(payment_gateway=gateway).checkout(
                self.user, checkout_request(payment_method="CARD")
            )

        self.assertFalse(result.payment.initialized)
        order = Order.objects.get(id=result.order_id)
        self.assertIn("Unexpected gateway response", order.payment.error_message)

    def test_notification_failure_does_not_block_checkout(self):
        def broken_receiver(sender, order, **kwargs):
            raise RuntimeError("broker down")

        order_placed.connect(broken_receiver)
        self.addCleanup(order_placed.disconnect, broken_receiver)
        make_cart(user=self.user, items=[(self.product, 1)])

        with self.assertLogs("apps.notifications.services", level="ERROR"):
            result = build_checkout_service().checkout(self.user, checkout_request())

        self.assertTrue(Order.objects.filter(id=result.order_id).exists())


@override_settings(PAYSTACK_SANDBOX=True)
class CheckoutAPITests(APITestCase):
    def setUp(self):
        self.user = make_user()
        self.seller = make_seller(region="Bono", city="Sunyani")
        self.product = make_product(seller=self.seller, price=1_500_000, stock=5)
        self.url = reverse("checkout")
        self.client.force_authenticate(self.user)

    def test_requires_authentication(self):
        self.client.force_authenticate(None)
        response = self.client.post(self.url, CHECKOUT_PAYLOAD, format="json")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_cash_checkout_response_shape(self):
        make_cart(user=self.user, items=[(self.product, 2)])

        response = self.client.post(self.url, CHECKOUT_PAYLOAD, format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["status"], "success")
        order = response.data["data"]["order"]
        self.assertEqual(order["status"], Order.Status.CONFIRMED)
        self.assertEqual(order["subtotal_in_pesewas"], 3_000_000)
        self.assertEqual(order["shipping_fee_in_pesewas"], 500)
        self.assertEqual(len(order["items"]), 1)
        self.assertFalse(response.data["data"]["payment"]["initialized"])

    def test_empty_cart_is_client_error(self):
        make_cart(user=self.user)

        response = self.client.post(self.url, CHECKOUT_PAYLOAD, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "cart_empty")
        self.assertFalse(Order.objects.exists())

    def test_insufficient_stock_is_conflict(self):
        make_cart(user=self.user, items=[(self.product, 6)])

        response = self.client.post(self.url, CHECKOUT_PAYLOAD, format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "insufficient_stock")
        self.assertEqual(response.data["product_id"], str(self.product.id))

    def test_unknown_coupon(self):
        make_cart(user=self.user, items=[(self.product, 1)])

        response = self.client.post(self.url, {**CHECKOUT_PAYLOAD, "coupon_code": "NOPE"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "coupon_not_found")

    def test_momo_requires_phone(self):
        make_cart(user=self.user, items=[(self.product, 1)])

        response = self.client.post(self.url, {**CHECKOUT_PAYLOAD, "payment_method": "MOMO_MTN"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("momo_phone_number", response.data)

    def test_invalid_phone_rejected(self):
        make_cart(user=self.user, items=[(self.product, 1)])

        response = self.client.post(self.url, {**CHECKOUT_PAYLOAD, "shipping_phone": "12345"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("shipping_phone", response.data)

    def test_sandbox_momo_checkout_returns_authorization_url(self):
        make_cart(user=self.user, items=[(self.product, 1)])
        payload = {**CHECKOUT_PAYLOAD, "payment_method": "MOMO_MTN", "momo_phone_number": "0551234567"}

        response = self.client.post(self.url, payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        payment = response.data["data"]["payment"]
        self.assertTrue(payment["initialized"])
        self.assertIn("reference=", payment["authorization_url"])
        self.assertEqual(response.data["data"]["order"]["status"], Order.Status.PAYMENT_PENDING)
        self.assertTrue(Payment.objects.filter(external_reference=payment["reference"]).exists())

    def test_gateway_failure_still_creates_order(self):
        client = mock.Mock(spec=PaystackClient)
        client.initialize.side_effect = PaymentGatewayError("timeout")
        gateway = PaymentGateway(client=client, sandbox=False)
        make_cart(user=self.user, items=[(self.product, 1)])
        payload = {**CHECKOUT_PAYLOAD, "payment_method": "CARD"}

        with mock.patch(
            "apps.orders.views.build_checkout_service",
            lambda: build_checkout_service(payment_gateway=gateway),
        ):
            response = self.client.post(self.url, payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertFalse(response.data["data"]["payment"]["initialized"])
        self.assertEqual(response.data["data"]["order"]["status"], Order.Status.PAYMENT_PENDING)

    def test_duplicate_idempotency_key_is_rejected(self):
        make_cart(user=self.user, items=[(self.product, 1)])
        headers = {"HTTP_X_IDEMPOTENCY_KEY": "abc-123"}

        first = self.client.post(self.url, CHECKOUT_PAYLOAD, format="json", **headers)
        second = self.client.post(self.url, CHECKOUT_PAYLOAD, format="json", **headers)

        self.assertEqual(first.status_code, status.HTTP_201_CREATED)
        self.assertEqual(second.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(Order.objects.count(), 1)

    def test_failed_checkout_releases_idempotency_key(self):
        make_cart(user=self.user)
        headers = {"HTTP_X_IDEMPOTENCY_KEY": "retry-me"}

        first = self.client.post(self.url, CHECKOUT_PAYLOAD, format="json", **headers)
        CartItem.objects.create(cart=self.user.cart, product=self.product, quantity=1)
        second = self.client.post(self.url, CHECKOUT_PAYLOAD, format="json", **headers)

        self.assertEqual(first.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(second.status_code, status.HTTP_201_CREATED)


class CheckoutQuoteAPITests(APITestCase):
    def setUp(self):
        self.seller = make_seller(region="Bono", city="Sunyani")
        self.product = make_product(seller=self.seller, price=2500, stock=5)
        self.url = reverse("checkout-quote")

    def test_anonymous_quote_by_session(self):
        make_cart(session_key="anon-session-1", items=[(self.product, 2)])

        response = self.client.post(
            self.url,
            {"shipping_region": "Bono Region", "shipping_city": "Berekum"},
            format="json",
            HTTP_X_SESSION_ID="anon-session-1",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        data = response.data["data"]
        self.assertEqual(data["subtotal_in_pesewas"], 5000)
        self.assertEqual(data["shipping_fee_in_pesewas"], 1000)
        self.assertEqual(data["total_in_pesewas"], 6000)
        self.assertEqual(len(data["sellers"]), 1)
        self.assertFalse(Order.objects.exists())

    def test_quote_without_cart(self):
        response = self.client.post(self.url, {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "cart_not_found")


class OrderTransactionTimeoutTests(SimpleTestCase):
    def test_postgres_bounds_statements_and_idle_gaps(self):
        with mock.patch("apps.orders.services.connection") as conn:
            conn.vendor = "postgresql"
            OrderTransaction(timeout_ms=5000)._set_timeouts()

        cursor = conn.cursor.return_value.__enter__.return_value
        self.assertEqual(cursor.execute.call_args_list, [
            mock.call("SET LOCAL statement_timeout = %s", [5000]),
            mock.call("SET LOCAL idle_in_transaction_session_timeout = %s", [5000]),
        ])

    def test_other_backends_are_untouched(self):
        with mock.patch("apps.orders.services.connection") as conn:
            conn.vendor = "sqlite"
            OrderTransaction(timeout_ms=5000)._set_timeouts()

        conn.cursor.assert_not_called()


class ConcurrentCheckoutTests(TransactionTestCase):
    """
    Two buyers race for the last unit. Needs real row locking, so PostgreSQL only.
    """

    def setUp(self):
        if connection.vendor != "postgresql":
            self.skipTest("Concurrent checkout needs PostgreSQL row locking.")
        self.product = make_product(seller=make_seller(), stock=1)
        self.buyers = [make_user(), make_user()]
        for buyer in self.buyers:
            make_cart(user=buyer, items=[(self.product, 1)])

    def test_exactly_one_checkout_wins_the_last_unit(self):
        import concurrent.futures

        def attempt(user):
            try:
                build_checkout_service().checkout(user, checkout_request())
                return "ok"
            except InsufficientStock:
                return "insufficient"
            finally:
                connection.close()

        with concurrent.futures.ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = sorted(pool.map(attempt, self.buyers))

        self.assertEqual(outcomes, ["insufficient", "ok"])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 0)
        self.assertEqual(Order.objects.count(), 1)
