import logging

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from apps.utils.validators import to_e164

logger = logging.getLogger(__name__)


def format_cedis(pesewas: int) -> str:
    return f"GH₵{pesewas // 100:,}.{pesewas % 100:02d}"


def _load_order(order_id):
    from apps.orders.models import Order

    try:
        return Order.objects.prefetch_related("items").get(id=order_id)
    except Order.DoesNotExist:
        logger.error(f"Order {order_id} not found for confirmation.")
        return None


@shared_task(bind=True, max_retries=3, default_retry_delay=30)
def send_order_confirmation_email(self, order_id: str):
    order = _load_order(order_id)
    if order is None:
        return

    lines = [
        f"{item.quantity} x {item.product_name} = {format_cedis(item.total_price_in_pesewas)}"
        for item in order.items.all()
    ]
    body = "\n".join([
        f"Hi {order.shipping_full_name},",
        "",
        f"Thank you for your order {order.order_number}.",
        "",
        *lines,
        "",
        f"Subtotal: {format_cedis(order.subtotal_in_pesewas)}",
        f"Delivery: {format_cedis(order.shipping_fee_in_pesewas)}",
        f"Discount: -{format_cedis(order.discount_in_pesewas)}",
        f"Total: {format_cedis(order.total_in_pesewas)}",
        "",
        f"Track it at {settings.FRONTEND_URL}/orders/{order.order_number}",
    ])

    try:
        send_mail(
            subject=f"Order {order.order_number} received",
            message=body,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[order.customer_email],
        )
    except OSError as exc:
        logger.exception(f"Failed to email confirmation for {order.order_number}")
        raise self.retry(exc=exc)

    logger.info(f"Confirmation email sent for {order.order_number}", extra={"order_id": order_id})


@shared_task(bind=True, max_retries=3, default_retry_delay=30)
def send_order_confirmation_sms(self, order_id: str):
    account_sid = settings.TWILIO_ACCOUNT_SID
    auth_token = settings.TWILIO_AUTH_TOKEN
    from_number = settings.TWILIO_FROM_NUMBER

    if not all([account_sid, auth_token, from_number]):
        logger.info("Twilio not configured. Order SMS skipped.")
        return None

    order = _load_order(order_id)
    if order is None:
        return None

    try:
        client = Client(account_sid, auth_token)
        message = client.messages.create(
            body=f"GhanaMarket: order {order.order_number} received. Total {format_cedis(order.total_in_pesewas)}.",
            from_=from_number,
            to=to_e164(order.customer_phone),
        )
    except TwilioRestException as exc:
        logger.error(f"Twilio Error sending SMS for {order.order_number}: {exc}")
        raise self.retry(exc=exc)

    logger.info(f"SMS sent for {order.order_number}. SID: {message.sid}")
    return message.sid
