# apps/notifications/receivers.py
import logging

from django.db import transaction
from django.dispatch import receiver

from .signals import order_placed
from .tasks import send_order_confirmation_email, send_order_confirmation_sms

logger = logging.getLogger(__name__)


@receiver(order_placed)
def queue_order_confirmation(sender, order, **kwargs):
    """
    Order placed -> confirmation email + SMS, after the order row is visible to workers.
    """
    order_id = str(order.id)
    transaction.on_commit(lambda: send_order_confirmation_email.delay(order_id), robust=True)
    if order.customer_phone:
        transaction.on_commit(lambda: send_order_confirmation_sms.delay(order_id), robust=True)
