# apps/notifications/services.py
import logging

from .signals import order_placed

logger = logging.getLogger(__name__)


class OrderNotifier:
    """
    Tells the rest of the system an order exists.
    Receiver failures are logged here and never reach checkout.
    """

    def order_placed(self, order):
        results = order_placed.send_robust(sender=type(order), order=order)
        for receiver_fn, response in results:
            if isinstance(response, Exception):
                logger.error(
                    f"Order notification receiver {getattr(receiver_fn, '__name__', receiver_fn)} failed: {response}",
                    extra={"order_id": str(order.id), "order_number": order.order_number},
                )
        return results
