# apps/payments/tests.py
import json
from unittest import mock

import requests
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from apps.orders.container import build_checkout_service
from apps.orders.dto import CheckoutRequest, ShippingDetails
from apps.orders.models import Order
from apps.utils.resilience import CircuitBreaker
from apps.utils.testing import make_cart, make_product, make_seller, make_user
from .exceptions import PaymentGatewayError
from .models import Payment, PaymentStatus, WebhookEvent
from .services import PaymentGateway, PaystackClient, compute_signature

WEBHOOK_SECRET = "sk_test_webhook_secret"


def place_momo_order(user, product):
    make_cart(user=user, items=[(product, 1)])
    request = CheckoutRequest(
        shipping=ShippingDetails(
            full_name="Yaw Asante", phone="0241234567", region="Bono", city="Sunyani",
            street_address="Plot 7, Penkwase",
        ),
        customer_email=user.email,
        customer_phone="0241234567",
        payment_method="MOMO_MTN",
        momo_phone_number="0241234567",
    )
    result = build_checkout_service().checkout(user, request)
    return Order.objects.get(id=result.order_id)


class PaystackWebhookTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.url = reverse('paystack-webhook')
        self.user = make_user()
        self.order = place_momo_order(self.user, make_product(seller=make_seller(), price=2500))
        self.payment = Payment.objects.get(order=self.order)

    def _post(self, payload, secret=WEBHOOK_SECRET, signature=None):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        if signature is None and secret:
            signature = compute_signature(body, secret)
        headers = {"HTTP_X_PAYSTACK_SIGNATURE": signature} if signature else {}
        return self.client.post(self.url, data=body, content_type="application/json", **headers)

    def _charge_success(self, amount=None):
        return {
            "event": "charge.success",
            "data": {
                "id": 302961,
                "status": "success",
                "reference": self.payment.external_reference,
                "amount": self.payment.amount_in_pesewas if amount is None else amount,
                "currency": "GHS",
            },
        }

    def test_charge_success_confirms_payment(self):
        response = self._post(self._charge_success())

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {"status": "received"})
        self.payment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.SUCCESS)
        self.assertIsNotNone(self.payment.confirmed_at)
        self.assertEqual(self.order.status, Order.Status.PROCESSING)
        self.assertTrue(WebhookEvent.objects.get(event_key="charge.success:302961").is_processed)

    def test_replay_is_a_noop(self):
        self._post(self._charge_success())
        timeline_count = self.order.timeline.count()

        response = self._post(self._charge_success())

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(WebhookEvent.objects.count(), 1)
        self.assertEqual(self.order.timeline.count(), timeline_count)

    def test_unknown_reference_with_bad_metadata_is_ignored(self):
        payload = self._charge_success()
        payload["data"]["reference"] = "GH-UNKNOWN-REF"
        payload["data"]["metadata"] = {"order_id": "not-a-uuid"}

        with self.assertLogs("apps.payments.services", level="WARNING"):
            response = self._post(payload)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.PENDING)

    def test_bad_signature_is_rejected(self):
        response = self._post(self._charge_success(), signature="deadbeef")

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.PENDING)

    def test_missing_signature_is_rejected(self):
        response = self._post(self._charge_success(), secret=None)

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(WebhookEvent.objects.exists())

    def test_malformed_body_is_acknowledged(self):
        response = self._post(b"not json at all")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(WebhookEvent.objects.exists())

    def test_amount_mismatch_changes_nothing(self):
        with self.assertLogs("apps.payments.services", level="ERROR"):
            response = self._post(self._charge_success(amount=1))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.payment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.PENDING)
        self.assertEqual(self.order.status, Order.Status.PAYMENT_PENDING)

    def test_unknown_event_is_recorded(self):
        payload = {"event": "transfer.success", "data": {"id": 77, "reference": "TRF-1"}}

        response = self._post(payload)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(WebhookEvent.objects.get(event_key="transfer.success:77").is_processed)

    def test_charge_after_cancel_flags_refund(self):
        Order.objects.filter(pk=self.order.pk).update(status=Order.Status.CANCELLED)

        with self.assertLogs("apps.payments.services", level="ERROR") as logs:
            self._post(self._charge_success())

        self.assertTrue(any("Refund required" in line for line in logs.output))
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.SUCCESS)


class PaymentVerifyViewTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = make_user()
        self.client.force_authenticate(self.user)
        self.order = place_momo_order(self.user, make_product(seller=make_seller()))
        self.payment = Payment.objects.get(order=self.order)

    def test_sandbox_verify_confirms(self):
        url = reverse('payment-verify', args=[self.payment.external_reference])

        response = self.client.get(url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["data"]["status"], PaymentStatus.SUCCESS)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PROCESSING)

    def test_failed_charge_leaves_payment_pending(self):
        gateway = mock.Mock()
        gateway.verify.return_value = {"status": "failed", "reference": self.payment.external_reference}
        url = reverse('payment-verify', args=[self.payment.external_reference])

        with mock.patch("apps.payments.views.build_payment_gateway", return_value=gateway):
            response = self.client.get(url)

        self.assertEqual(response.data["data"]["status"], PaymentStatus.PENDING)

    def test_other_buyers_reference_is_hidden(self):
        self.client.force_authenticate(make_user())

        response = self.client.get(reverse('payment-verify', args=[self.payment.external_reference]))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class InitializePaymentViewTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = make_user()
        self.client.force_authenticate(self.user)
        self.order = place_momo_order(self.user, make_product(seller=make_seller()))
        self.url = reverse('payment-initialize', args=[self.order.id])

    def test_reinitialize_issues_new_reference(self):
        old_reference = Payment.objects.get(order=self.order).external_reference

        response = self.client.post(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["data"]["initialized"])
        self.assertNotEqual(response.data["data"]["reference"], old_reference)
        self.assertIn("demo=true", response.data["data"]["authorization_url"])

    def test_charge_for_superseded_reference_still_confirms(self):
        payment = Payment.objects.get(order=self.order)
        old_reference = payment.external_reference
        self.client.post(self.url)
        payment.refresh_from_db()
        self.assertNotEqual(payment.external_reference, old_reference)

        body = json.dumps({
            "event": "charge.success",
            "data": {
                "id": 302962,
                "status": "success",
                "reference": old_reference,
                "amount": payment.amount_in_pesewas,
                "metadata": {"order_id": str(self.order.id), "order_number": self.order.order_number},
            },
        }).encode()
        response = self.client.post(
            reverse('paystack-webhook'), data=body, content_type="application/json",
            HTTP_X_PAYSTACK_SIGNATURE=compute_signature(body, WEBHOOK_SECRET),
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        payment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(payment.status, PaymentStatus.SUCCESS)
        self.assertEqual(self.order.status, Order.Status.PROCESSING)

    def test_paid_order_cannot_reinitialize(self):
        Payment.objects.filter(order=self.order).update(status=PaymentStatus.SUCCESS)

        response = self.client.post(self.url)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_gateway_failure_is_502(self):
        gateway = mock.Mock()
        gateway.initiate.return_value = mock.Mock(initialized=False, message="Gateway down")

        with mock.patch("apps.payments.views.build_payment_gateway", return_value=gateway):
            response = self.client.post(self.url)

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)


class PaystackClientTests(SimpleTestCase):
    def _client(self, response=None, exc=None, breaker=None):
        session = mock.Mock()
        if exc is not None:
            session.request.side_effect = exc
        else:
            session.request.return_value = response
        return PaystackClient(
            secret_key="sk_test_x", base_url="https://api.paystack.co", timeout=5,
            session=session, breaker=breaker,
        ), session

    def _response(self, body, status_code=200):
        response = mock.Mock(status_code=status_code)
        response.json.return_value = body
        return response

    def test_initialize_sends_pesewas_and_auth(self):
        client, session = self._client(self._response({
            "status": True, "data": {"authorization_url": "https://checkout.paystack.com/x", "reference": "R1"},
        }))

        data = client.initialize(
            email="ama@example.com", amount=250000, reference="R1", currency="GHS",
            metadata={"order_number": "ORD-1"}, channels=["mobile_money"],
        )

        self.assertEqual(data["reference"], "R1")
        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        self.assertEqual((method, url), ("POST", "https://api.paystack.co/transaction/initialize"))
        self.assertEqual(kwargs["json"]["amount"], 250000)
        self.assertEqual(kwargs["json"]["channels"], ["mobile_money"])
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk_test_x")

    def test_status_false_raises(self):
        client, _ = self._client(self._response({"status": False, "message": "Invalid key"}, status_code=401))

        with self.assertRaisesMessage(PaymentGatewayError, "Invalid key"):
            client.verify("R1")

    def test_non_object_body_raises(self):
        client, _ = self._client(self._response(["unexpected"]))

        with self.assertLogs("apps.payments.services", level="ERROR"):
            with self.assertRaisesMessage(PaymentGatewayError, "Unexpected gateway response"):
                client.verify("R1")

    def test_network_error_raises(self):
        client, _ = self._client(exc=requests.ConnectionError("boom"))

        with self.assertRaises(PaymentGatewayError):
            client.verify("R1")

    def test_breaker_opens_after_server_errors(self):
        failing = self._response({}, status_code=503)
        failing.raise_for_status.side_effect = requests.HTTPError("503")
        breaker = CircuitBreaker("paystack-test", failure_threshold=2, recovery_timeout=60)
        breaker.reset()
        client, session = self._client(failing, breaker=breaker)

        for _ in range(2):
            with self.assertRaises(PaymentGatewayError):
                client.verify("R1")
        with self.assertRaises(PaymentGatewayError):
            client.verify("R1")

        self.assertEqual(session.request.call_count, 2)


class PaymentGatewayTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.order = place_momo_order(self.user, make_product(seller=make_seller()))
        self.payment = Payment.objects.get(order=self.order)

    def test_live_initiation_failure_is_recorded(self):
        client = mock.Mock()
        client.initialize.side_effect = PaymentGatewayError("Paystack unavailable")
        gateway = PaymentGateway(client=client, sandbox=False)

        result = gateway.initiate(self.order, self.payment)

        self.assertFalse(result.initialized)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.error_message, "Paystack unavailable")
        self.assertEqual(self.payment.status, PaymentStatus.PENDING)

    def test_sandbox_verify_unknown_reference(self):
        with self.assertRaises(PaymentGatewayError):
            PaymentGateway(sandbox=True).verify("NOPE")
