# apps/orders/tests.py
from datetime import timedelta
from unittest import mock

from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.inventory.models import InventoryLog
from apps.payments.exceptions import PaymentGatewayError
from apps.payments.models import Payment, PaymentStatus
from apps.utils.testing import make_cart, make_product, make_seller, make_user
from .container import build_checkout_service, build_order_service
from .dto import CheckoutRequest, ShippingDetails
from .exceptions import InvalidStatusTransition
from .models import CartItem, Order, OrderItem, OrderTimeline, SellerOrder
from .tasks import auto_cancel_unpaid_orders


def place_order(user, product, quantity=1, payment_method="CASH_ON_DELIVERY"):
    make_cart(user=user, items=[(product, quantity)])
    request = CheckoutRequest(
        shipping=ShippingDetails(
            full_name="Kofi Boateng", phone="0201234567", region="Bono", city="Sunyani",
            street_address="4 Hospital Road",
        ),
        customer_email=user.email,
        customer_phone="0201234567",
        payment_method=payment_method,
        momo_phone_number="0241234567" if payment_method.startswith("MOMO") else "",
    )
    result = build_checkout_service().checkout(user, request)
    return Order.objects.get(id=result.order_id)


class OrderServiceTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.seller = make_seller()
        self.product = make_product(seller=self.seller, price=2000, stock=10)
        self.service = build_order_service()

    def test_happy_path_transitions(self):
        order = place_order(self.user, self.product)

        for target in (
            Order.Status.PROCESSING,
            Order.Status.SHIPPED,
            Order.Status.OUT_FOR_DELIVERY,
            Order.Status.DELIVERED,
        ):
            order = self.service.transition(order.id, target)

        self.assertEqual(order.status, Order.Status.DELIVERED)
        self.assertIsNotNone(order.delivered_at)
        self.assertEqual(OrderTimeline.objects.filter(order=order).count(), 5)

    def test_illegal_transition(self):
        order = place_order(self.user, self.product)

        with self.assertRaises(InvalidStatusTransition):
            self.service.transition(order.id, Order.Status.DELIVERED)

    def test_terminal_state_is_final(self):
        order = place_order(self.user, self.product)
        self.service.cancel_order(order.id)

        with self.assertRaises(InvalidStatusTransition):
            self.service.transition(order.id, Order.Status.PROCESSING)

    def test_cancel_restocks_and_cancels_slices(self):
        order = place_order(self.user, self.product, quantity=3)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 7)

        order = self.service.cancel_order(order.id, actor=self.user, reason="Changed my mind")

        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertIsNotNone(order.cancelled_at)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 10)
        self.assertTrue(
            InventoryLog.objects.filter(order=order, action=InventoryLog.Action.CANCELLATION, quantity_change=3).exists()
        )
        self.assertFalse(order.seller_orders.exclude(status=SellerOrder.Status.CANCELLED).exists())
        self.assertEqual(order.payment.status, PaymentStatus.FAILED)
        self.assertEqual(order.timeline.get(status=Order.Status.CANCELLED).note, "Changed my mind")

    def test_cancel_after_payment_marks_refund(self):
        order = place_order(self.user, self.product, payment_method="MOMO_MTN")
        Payment.objects.filter(order=order).update(status=PaymentStatus.SUCCESS)

        self.service.cancel_order(order.id)

        self.assertEqual(Payment.objects.get(order=order).status, PaymentStatus.REFUNDED)

    def test_buyer_cannot_cancel_once_processing(self):
        order = place_order(self.user, self.product)
        self.service.transition(order.id, Order.Status.PROCESSING)

        with self.assertRaises(InvalidStatusTransition):
            self.service.cancel_order(order.id)

        # Operations may still cancel through the state machine
        order = self.service.transition(order.id, Order.Status.CANCELLED, note="Out of stock at seller")
        self.assertEqual(order.status, Order.Status.CANCELLED)

    def test_mark_paid_moves_pending_to_processing_once(self):
        order = place_order(self.user, self.product, payment_method="MOMO_MTN")
        self.assertEqual(order.status, Order.Status.PAYMENT_PENDING)

        order = self.service.mark_paid(order.id)
        self.assertEqual(order.status, Order.Status.PROCESSING)
        self.assertIsNotNone(order.confirmed_at)

        again = self.service.mark_paid(order.id)
        self.assertEqual(again.status, Order.Status.PROCESSING)

    def test_seller_order_waits_for_payment(self):
        order = place_order(self.user, self.product, payment_method="MOMO_MTN")
        seller_order = order.seller_orders.get()

        with self.assertRaises(InvalidStatusTransition):
            self.service.advance_seller_order(seller_order.id, SellerOrder.Status.PROCESSING)

        self.service.mark_paid(order.id)
        seller_order = self.service.advance_seller_order(seller_order.id, SellerOrder.Status.PROCESSING)
        self.assertEqual(seller_order.status, SellerOrder.Status.PROCESSING)

    def test_seller_order_may_cancel_while_unpaid(self):
        order = place_order(self.user, self.product, payment_method="MOMO_MTN")
        seller_order = order.seller_orders.get()

        seller_order = self.service.advance_seller_order(seller_order.id, SellerOrder.Status.CANCELLED)
        self.assertEqual(seller_order.status, SellerOrder.Status.CANCELLED)


class OrderImmutabilityTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.product = make_product(seller=make_seller(), price=4500)
        self.order = place_order(self.user, self.product, quantity=2)

    def test_money_fields_are_frozen(self):
        order = Order.objects.get(pk=self.order.pk)
        order.total_in_pesewas += 1

        with self.assertRaises(ValueError):
            order.save()

    def test_status_still_saves(self):
        order = Order.objects.get(pk=self.order.pk)
        order.notes = "Leave at the gate"
        order.save()

        self.assertEqual(Order.objects.get(pk=order.pk).notes, "Leave at the gate")

    def test_order_item_snapshot_survives_price_change(self):
        self.product.price_in_pesewas = 9999
        self.product.name = "Renamed"
        self.product.save()

        item = OrderItem.objects.get(order=self.order)
        self.assertEqual(item.unit_price_in_pesewas, 4500)
        self.assertEqual(item.total_price_in_pesewas, 9000)
        self.assertNotEqual(item.product_name, "Renamed")

    def test_order_item_is_frozen(self):
        item = OrderItem.objects.get(order=self.order)
        item.unit_price_in_pesewas = 1

        with self.assertRaises(ValueError):
            item.save()

    def _new_item(self, **extra):
        source = OrderItem.objects.get(order=self.order)
        fields = {
            "order": self.order,
            "seller_order": source.seller_order,
            "product": self.product,
            "product_name": source.product_name,
            "product_sku": source.product_sku,
            "quantity": 1,
            "unit_price_in_pesewas": 4500,
            "total_price_in_pesewas": 4500,
        }
        fields.update(extra)
        return OrderItem(**fields)

    def test_item_created_in_process_is_frozen(self):
        item = self._new_item()
        item.save()
        item.quantity = 3

        with self.assertRaises(ValueError):
            item.save()
        self.assertEqual(OrderItem.objects.get(pk=item.pk).quantity, 1)

    def test_bulk_created_item_is_frozen(self):
        item = self._new_item()
        OrderItem.objects.bulk_create([item])
        item.unit_price_in_pesewas = 1

        with self.assertRaises(ValueError):
            item.save()
        self.assertEqual(OrderItem.objects.get(pk=item.pk).unit_price_in_pesewas, 4500)

    def test_guard_survives_an_allowed_save(self):
        order = Order.objects.get(pk=self.order.pk)
        order.notes = "Call on arrival"
        order.save()
        order.total_in_pesewas += 1

        with self.assertRaises(ValueError):
            order.save()


class AutoCancelTaskTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.product = make_product(seller=make_seller(), stock=5)

    def _age(self, order, minutes=45):
        Order.objects.filter(pk=order.pk).update(created_at=timezone.now() - timedelta(minutes=minutes))

    def test_cancels_stale_unpaid_orders(self):
        order = place_order(self.user, self.product, payment_method="CARD")
        self._age(order)
        Payment.objects.filter(order=order).update(external_reference=None)

        auto_cancel_unpaid_orders()

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)

    def test_fresh_orders_are_left_alone(self):
        order = place_order(self.user, self.product, payment_method="CARD")

        auto_cancel_unpaid_orders()

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PAYMENT_PENDING)

    def test_paid_at_gateway_is_synced_not_cancelled(self):
        order = place_order(self.user, self.product, payment_method="CARD")
        self._age(order)
        reference = Payment.objects.get(order=order).external_reference

        gateway = mock.Mock()
        gateway.verify.return_value = {
            "status": "success", "reference": reference, "amount": order.total_in_pesewas,
        }
        with mock.patch("apps.orders.container.build_payment_gateway", return_value=gateway):
            auto_cancel_unpaid_orders()

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PROCESSING)
        self.assertEqual(Payment.objects.get(order=order).status, PaymentStatus.SUCCESS)

    def test_unverifiable_payment_is_skipped(self):
        order = place_order(self.user, self.product, payment_method="CARD")
        self._age(order)

        gateway = mock.Mock()
        gateway.verify.side_effect = PaymentGatewayError("Gateway down")
        with mock.patch("apps.orders.container.build_payment_gateway", return_value=gateway):
            auto_cancel_unpaid_orders()

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PAYMENT_PENDING)

    def test_abandoned_payment_is_cancelled(self):
        order = place_order(self.user, self.product, payment_method="CARD")
        self._age(order)

        gateway = mock.Mock()
        gateway.verify.return_value = {"status": "abandoned"}
        with mock.patch("apps.orders.container.build_payment_gateway", return_value=gateway):
            auto_cancel_unpaid_orders()

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.CANCELLED)


class OrderHistoryAPITests(APITestCase):
    def setUp(self):
        self.user = make_user()
        self.other = make_user()
        self.product = make_product(seller=make_seller(), stock=20)
        self.client.force_authenticate(self.user)
        self.list_url = reverse("orders-list")

    def test_single_order_page(self):
        place_order(self.user, self.product)
        place_order(self.other, self.product)

        response = self.client.get(self.list_url, {"page": 1, "limit": 10})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data["results"]), 1)
        self.assertEqual(response.data["pagination"]["total"], 1)
        self.assertEqual(response.data["pagination"]["page"], 1)
        self.assertEqual(response.data["pagination"]["total_pages"], 1)

    def test_limit_is_capped(self):
        place_order(self.user, self.product)

        response = self.client.get(self.list_url, {"limit": 500})

        self.assertEqual(response.data["pagination"]["limit"], 50)

    def test_status_filter(self):
        place_order(self.user, self.product)
        place_order(self.user, self.product, payment_method="CARD")

        response = self.client.get(self.list_url, {"status": Order.Status.PAYMENT_PENDING})

        self.assertEqual(response.data["pagination"]["total"], 1)
        self.assertEqual(response.data["results"][0]["status"], Order.Status.PAYMENT_PENDING)

    def test_detail_by_id_and_number(self):
        order = place_order(self.user, self.product)

        by_id = self.client.get(reverse("orders-detail", args=[order.id]))
        by_number = self.client.get(reverse("orders-detail", args=[order.order_number]))

        self.assertEqual(by_id.status_code, status.HTTP_200_OK)
        self.assertEqual(by_number.data["id"], str(order.id))
        self.assertEqual(len(by_number.data["items"]), 1)
        self.assertEqual(by_number.data["payment"]["method"], "CASH_ON_DELIVERY")

    def test_other_buyers_orders_are_hidden(self):
        order = place_order(self.other, self.product)

        response = self.client.get(reverse("orders-detail", args=[order.order_number]))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_cancel_endpoint(self):
        order = place_order(self.user, self.product)

        response = self.client.post(reverse("orders-cancel", args=[order.id]), {"reason": "Wrong size"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["data"]["status"], Order.Status.CANCELLED)

    def test_cancel_too_late(self):
        order = place_order(self.user, self.product)
        build_order_service().transition(order.id, Order.Status.PROCESSING)

        response = self.client.post(reverse("orders-cancel", args=[order.id]), format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "invalid_status_transition")


class CartAPITests(APITestCase):
    def setUp(self):
        self.product = make_product(seller=make_seller(), price=1200)

    def test_anonymous_cart_by_session_header(self):
        url = reverse("cart-add-item")

        first = self.client.post(url, {"product_id": str(self.product.id), "quantity": 2}, format="json")
        session_key = first["X-Session-Id"]
        second = self.client.post(
            url, {"product_id": str(self.product.id)}, format="json", HTTP_X_SESSION_ID=session_key,
        )

        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.assertEqual(second.data["items"][0]["quantity"], 3)
        self.assertEqual(second.data["total_in_pesewas"], 3600)

    def test_user_cart_list_and_clear(self):
        user = make_user()
        self.client.force_authenticate(user)
        make_cart(user=user, items=[(self.product, 1)])

        listed = self.client.get(reverse("cart-list"))
        self.assertEqual(len(listed.data["items"]), 1)

        self.client.post(reverse("cart-clear"))
        self.assertFalse(CartItem.objects.filter(cart__user=user).exists())

    def test_inactive_product_cannot_be_added(self):
        self.product.is_active = False
        self.product.save()

        response = self.client.post(reverse("cart-add-item"), {"product_id": str(self.product.id)}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "product_unavailable")
