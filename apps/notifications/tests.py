# apps/notifications/tests.py
from unittest import mock

from django.core import mail
from django.test import TestCase, override_settings
from twilio.base.exceptions import TwilioRestException

from apps.orders.container import build_checkout_service
from apps.orders.dto import CheckoutRequest, ShippingDetails
from apps.orders.models import Order
from apps.utils.testing import make_cart, make_product, make_seller, make_user
from .services import OrderNotifier
from .signals import order_placed
from .tasks import format_cedis, send_order_confirmation_email, send_order_confirmation_sms

TWILIO = {
    "TWILIO_ACCOUNT_SID": "AC123",
    "TWILIO_AUTH_TOKEN": "token",
    "TWILIO_FROM_NUMBER": "+15005550006",
}


def place_order(user):
    make_cart(user=user, items=[(make_product(seller=make_seller(), price=12345, name="Kente Scarf"), 2)])
    request = CheckoutRequest(
        shipping=ShippingDetails(
            full_name="Efua Owusu", phone="0201234567", region="Bono", city="Sunyani",
            street_address="3 Stadium Road",
        ),
        customer_email=user.email,
        customer_phone="0201234567",
        payment_method="CASH_ON_DELIVERY",
    )
    result = build_checkout_service().checkout(user, request)
    return Order.objects.get(id=result.order_id)


class FormatCedisTests(TestCase):
    def test_format(self):
        self.assertEqual(format_cedis(0), "GH₵0.00")
        self.assertEqual(format_cedis(5), "GH₵0.05")
        self.assertEqual(format_cedis(3000000), "GH₵30,000.00")


class OrderNotifierTests(TestCase):
    def setUp(self):
        self.order = place_order(make_user())
        mail.outbox.clear()

    def test_receiver_failure_is_logged_not_raised(self):
        def broken_receiver(sender, order, **kwargs):
            raise RuntimeError("mail relay down")

        order_placed.connect(broken_receiver)
        self.addCleanup(order_placed.disconnect, broken_receiver)

        with self.assertLogs("apps.notifications.services", level="ERROR") as logs:
            OrderNotifier().order_placed(self.order)

        self.assertIn("mail relay down", logs.output[0])

    def test_confirmation_queued_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            OrderNotifier().order_placed(self.order)

        # email + sms
        self.assertEqual(len(callbacks), 2)
        self.assertEqual(len(mail.outbox), 1)


class ConfirmationEmailTests(TestCase):
    def setUp(self):
        self.order = place_order(make_user(email="efua@example.com"))
        mail.outbox.clear()

    def test_email_lists_items_and_total(self):
        send_order_confirmation_email(str(self.order.id))

        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.to, ["efua@example.com"])
        self.assertIn(self.order.order_number, message.subject)
        self.assertIn("2 x Kente Scarf = GH₵246.90", message.body)
        self.assertIn(f"Total: {format_cedis(self.order.total_in_pesewas)}", message.body)

    def test_missing_order_sends_nothing(self):
        with self.assertLogs("apps.notifications.tasks", level="ERROR"):
            send_order_confirmation_email("00000000-0000-0000-0000-000000000000")

        self.assertEqual(mail.outbox, [])


class ConfirmationSmsTests(TestCase):
    def setUp(self):
        self.order = place_order(make_user())

    def test_skipped_without_twilio(self):
        with mock.patch("apps.notifications.tasks.Client") as client_cls:
            self.assertIsNone(send_order_confirmation_sms(str(self.order.id)))

        client_cls.assert_not_called()

    @override_settings(**TWILIO)
    def test_sends_to_e164_number(self):
        with mock.patch("apps.notifications.tasks.Client") as client_cls:
            client_cls.return_value.messages.create.return_value = mock.Mock(sid="SM1")

            sid = send_order_confirmation_sms(str(self.order.id))

        self.assertEqual(sid, "SM1")
        kwargs = client_cls.return_value.messages.create.call_args.kwargs
        self.assertEqual(kwargs["to"], "+233201234567")
        self.assertEqual(kwargs["from_"], "+15005550006")
        self.assertIn(self.order.order_number, kwargs["body"])

    @override_settings(**TWILIO)
    def test_twilio_error_is_retried(self):
        error = TwilioRestException(status=500, uri="/Messages", msg="Service unavailable")

        with mock.patch("apps.notifications.tasks.Client") as client_cls, \
                mock.patch.object(send_order_confirmation_sms, "retry", side_effect=RuntimeError("retry")) as retry:
            client_cls.return_value.messages.create.side_effect = error
            with self.assertRaises(RuntimeError):
                send_order_confirmation_sms(str(self.order.id))

        retry.assert_called_once_with(exc=error)
