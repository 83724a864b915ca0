import logging
from django.db import transaction
from django.db.models import F, Q

from apps.catalog.models import Product
from apps.orders.exceptions import InsufficientStock, ProductUnavailable
from apps.utils.exceptions import BusinessLogicException

from .models import InventoryLog

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    ALL stock changes must pass through here.

    Every mutation is a single conditional UPDATE followed by an append to
    the InventoryLog; callers own the surrounding transaction.
    """

    @transaction.atomic
    def decrement(self, product_id, quantity: int, *, allow_backorder=False,
                  order=None, user=None, reference="") -> InventoryLog:
        """
        stock = stock - quantity, guarded by stock >= quantity unless
        backorders are allowed. Zero rows updated means concurrent demand
        got there first.
        """
        if quantity <= 0:
            raise BusinessLogicException("Quantity must be positive.")

        qs = Product.objects.filter(pk=product_id)
        if not allow_backorder:
            qs = qs.filter(stock_quantity__gte=quantity)

        updated = qs.update(stock_quantity=F("stock_quantity") - quantity)
        if not updated:
            available = (
                Product.objects.filter(pk=product_id)
                .values_list("stock_quantity", flat=True)
                .first()
            )
            if available is None:
                raise ProductUnavailable(
                    f"Product {product_id} no longer exists.", product_id=str(product_id)
                )
            logger.warning(
                f"Stock race lost for {product_id}: requested {quantity}, available {available}",
                extra={"reference": reference},
            )
            raise InsufficientStock(
                product_id=product_id, requested=quantity, available=available
            )

        return self._log(
            product_id, -quantity, InventoryLog.Action.SALE,
            order=order, user=user, reference=reference,
        )

    @transaction.atomic
    def restock(self, product_id, quantity: int, *, action=InventoryLog.Action.RESTOCK,
                order=None, user=None, reference="") -> InventoryLog:
        """
        Puts units back (cancellation, supplier delivery).
        """
        if quantity <= 0:
            raise BusinessLogicException("Quantity must be positive.")

        updated = Product.objects.filter(pk=product_id).update(
            stock_quantity=F("stock_quantity") + quantity
        )
        if not updated:
            raise ProductUnavailable(f"Product {product_id} no longer exists.", product_id=str(product_id))

        return self._log(product_id, quantity, action, order=order, user=user, reference=reference)

    @transaction.atomic
    def adjust(self, product_id, delta: int, *, user, reason: str) -> InventoryLog:
        """
        For cycle counts / audits. A negative delta may not take tracked,
        non-backorder stock below zero.
        """
        if delta == 0:
            raise BusinessLogicException("Adjustment delta cannot be zero.")

        qs = Product.objects.filter(pk=product_id)
        if delta < 0:
            qs = qs.filter(
                Q(track_inventory=False) | Q(allow_backorder=True) | Q(stock_quantity__gte=-delta)
            )

        updated = qs.update(stock_quantity=F("stock_quantity") + delta)
        if not updated:
            raise BusinessLogicException("Adjustment would make stock negative.", code="invalid_adjustment")

        return self._log(
            product_id, delta, InventoryLog.Action.ADJUSTMENT,
            user=user, reference=f"MANUAL: {reason}"[:100],
        )

    def _log(self, product_id, delta, action, *, order=None, user=None, reference=""):
        # Row is locked by our UPDATE until commit, so this read is our own write
        new_quantity = Product.objects.filter(pk=product_id).values_list("stock_quantity", flat=True).get()
        return InventoryLog.objects.create(
            product_id=product_id,
            action=action,
            quantity_change=delta,
            previous_quantity=new_quantity - delta,
            new_quantity=new_quantity,
            order=order,
            created_by=user,
            reference=reference,
        )
