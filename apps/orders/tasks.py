from celery import shared_task
from django.conf import settings
from django.utils import timezone
from datetime import timedelta
import logging

from apps.payments.exceptions import PaymentGatewayError
from .exceptions import InvalidStatusTransition
from .models import Order

logger = logging.getLogger(__name__)


@shared_task
def auto_cancel_unpaid_orders():
    """
    Runs every 5 minutes.
    Cancels orders stuck in PAYMENT_PENDING, BUT asks the gateway first.
    """
    from .container import build_order_service, build_payment_gateway, build_webhook_reconciler

    cutoff = timezone.now() - timedelta(minutes=settings.UNPAID_ORDER_TIMEOUT_MINUTES)
    pending_orders = (
        Order.objects.filter(status=Order.Status.PAYMENT_PENDING, created_at__lt=cutoff)
        .select_related("payment")
    )

    order_service = build_order_service()
    gateway = build_payment_gateway()
    reconciler = build_webhook_reconciler(order_service)

    count = 0
    for order in pending_orders:
        payment = getattr(order, "payment", None)
        reference = payment.external_reference if payment else None

        if reference:
            try:
                data = gateway.verify(reference)
            except PaymentGatewayError as e:
                # Unknown is not unpaid; try again next run
                logger.warning(f"Auto-cancel skipped {order.order_number}: could not verify payment ({e.message})")
                continue

            if data.get("status") == "success":
                reconciler.apply_charge_success(data)
                logger.info(f"Auto-Cancel Aborted: Order {order.order_number} was actually paid. Synced successfully.")
                continue

        try:
            order_service.cancel_order(order.id, reason="Payment timeout")
            count += 1
        except InvalidStatusTransition:
            # Moved on (paid or cancelled) while we were looking
            logger.info(f"Order {order.order_number} changed state during auto-cancel, skipping.")

    logger.info(f"Auto-cancelled {count} unpaid orders")
    return f"Auto-cancelled {count} orders"
