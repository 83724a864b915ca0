import logging

from django.conf import settings
from django.db import DatabaseError, IntegrityError, connection, transaction
from django.db.models import Q
from django.utils import timezone

from apps.catalog.services import CatalogService
from apps.delivery.services import DeliveryFeeCalculator
from apps.inventory.models import InventoryLog
from apps.inventory.services import InventoryLedger
from apps.payments.models import MOMO_NETWORK_BY_METHOD, Payment, PaymentMethod, PaymentStatus
from apps.sellers.services import CommissionSchedule, get_platform_seller
from apps.utils.utils import generate_order_number

from .dto import (
    CartLine,
    CartSnapshot,
    CheckoutQuote,
    CheckoutResult,
    PaymentInitiation,
    ProductSnapshot,
    SellerGroup,
)
from .exceptions import (
    CartEmpty,
    CartNotFound,
    InsufficientStock,
    InvalidStatusTransition,
    OrderNumberCollision,
    ProductUnavailable,
    TransactionAborted,
)
from .models import Cart, CartItem, Order, OrderItem, OrderTimeline, SellerOrder
from .pricing import CouponStore, round_half_up

logger = logging.getLogger(__name__)


def snapshot_product(product) -> ProductSnapshot:
    seller = product.seller
    return ProductSnapshot(
        id=product.id,
        name=product.name,
        sku=product.sku,
        image_url=product.image_url,
        price_in_pesewas=product.price_in_pesewas,
        stock_quantity=product.stock_quantity,
        track_inventory=product.track_inventory,
        allow_backorder=product.allow_backorder,
        is_active=product.is_active,
        seller_id=seller.id if seller else None,
        seller_region=seller.region if seller else "",
        seller_city=seller.city if seller else "",
        seller_commission_rate=seller.commission_rate if seller else None,
    )


class CartReader:
    """
    Read-only view of a buyer's cart joined to current product state.
    """

    def read(self, user=None, session_key=None) -> CartSnapshot:
        if user is not None and user.is_authenticated:
            lookup = Q(user=user)
        elif session_key:
            lookup = Q(session_key=session_key)
        else:
            raise CartNotFound()

        cart = Cart.objects.filter(lookup).first()
        if cart is None:
            raise CartNotFound()

        items = (
            CartItem.objects.filter(cart=cart)
            .select_related("product__seller")
            .order_by("created_at")
        )
        return CartSnapshot(
            cart_id=cart.id,
            lines=tuple(CartLine(product=snapshot_product(i.product), quantity=i.quantity) for i in items),
        )


class CartValidator:
    """
    Re-reads every product and checks it can still be sold in the requested quantity.
    """

    def __init__(self, catalog=None):
        self.catalog = catalog or CatalogService()

    def validate(self, cart: CartSnapshot) -> CartSnapshot:
        if cart.is_empty:
            raise CartEmpty()

        products = self.catalog.get_products(line.product.id for line in cart.lines)
        fresh_lines = []
        for line in cart.lines:
            product = products.get(line.product.id)
            if product is None or not product.is_active:
                name = product.name if product else line.product.name
                raise ProductUnavailable(
                    f"{name} is no longer available.", product_id=str(line.product.id)
                )

            if (
                product.track_inventory
                and not product.allow_backorder
                and product.stock_quantity < line.quantity
            ):
                raise InsufficientStock(
                    product_id=product.id,
                    requested=line.quantity,
                    available=product.stock_quantity,
                    product_name=product.name,
                )

            fresh_lines.append(CartLine(product=snapshot_product(product), quantity=line.quantity))

        return CartSnapshot(cart_id=cart.cart_id, lines=tuple(fresh_lines))


class SellerPartitioner:
    """
    Splits validated lines into one group per seller, in first-seen order.
    Seller-less products go to the platform seller, or are refused when none is configured.
    """

    def __init__(self, fee_calculator=None, commission_schedule=None, platform_seller_resolver=get_platform_seller):
        self.fee_calculator = fee_calculator or DeliveryFeeCalculator()
        self.commission_schedule = commission_schedule or CommissionSchedule()
        self.platform_seller_resolver = platform_seller_resolver

    def partition(self, lines, buyer_region, buyer_city):
        buckets = {}
        locations = {}
        platform_seller = None

        for line in lines:
            seller_id = line.product.seller_id
            if seller_id is None:
                if platform_seller is None:
                    platform_seller = self.platform_seller_resolver()
                if platform_seller is None:
                    raise ProductUnavailable(
                        f"{line.product.name} is not sold by any seller.",
                        product_id=str(line.product.id),
                    )
                seller_id = platform_seller.id
                locations.setdefault(
                    seller_id,
                    (platform_seller.region, platform_seller.city, platform_seller.commission_rate),
                )
            else:
                locations.setdefault(
                    seller_id,
                    (line.product.seller_region, line.product.seller_city, line.product.seller_commission_rate),
                )
            buckets.setdefault(seller_id, []).append(line)

        groups = []
        for seller_id, seller_lines in buckets.items():
            region, city, commission_rate = locations[seller_id]
            subtotal = sum(line.line_total for line in seller_lines)
            commission = round_half_up(subtotal * self.commission_schedule.rate_for(commission_rate))
            commission = min(commission, subtotal)
            groups.append(SellerGroup(
                seller_id=seller_id,
                lines=tuple(seller_lines),
                subtotal_in_pesewas=subtotal,
                shipping_fee_in_pesewas=self.fee_calculator.fee(region, city, buyer_region, buyer_city),
                commission_in_pesewas=commission,
                payout_in_pesewas=subtotal - commission,
            ))
        return tuple(groups)


class OrderTransaction:
    """
    Persists a priced checkout in one database transaction.

    Either everything below commits or nothing does: order, payment,
    seller orders, items, stock decrements, coupon usage and cart clearing.
    """

    def __init__(self, ledger=None, coupon_store=None, number_generator=generate_order_number, timeout_ms=None):
        self.ledger = ledger or InventoryLedger()
        self.coupon_store = coupon_store or CouponStore()
        self.number_generator = number_generator
        self.timeout_ms = timeout_ms if timeout_ms is not None else settings.CHECKOUT_TRANSACTION_TIMEOUT_MS

    def execute(self, *, user, cart_id, request, groups, pricing) -> Order:
        try:
            with transaction.atomic():
                self._set_timeouts()
                return self._write(user, cart_id, request, groups, pricing)
        except DatabaseError as e:
            logger.exception(f"Checkout transaction aborted for user {user.pk}", extra={"user_id": str(user.pk)})
            raise TransactionAborted() from e

    def _set_timeouts(self):
        # Both limits are per step: statement_timeout caps each statement,
        # the idle timeout caps the gaps between them. Neither caps the total.
        if connection.vendor == "postgresql" and self.timeout_ms:
            timeout = int(self.timeout_ms)
            with connection.cursor() as cursor:
                cursor.execute("SET LOCAL statement_timeout = %s", [timeout])
                cursor.execute("SET LOCAL idle_in_transaction_session_timeout = %s", [timeout])

    def _write(self, user, cart_id, request, groups, pricing):
        is_cash = request.payment_method == PaymentMethod.CASH_ON_DELIVERY
        now = timezone.now()

        # A. Order (unique order number decides collisions)
        order_number = self.number_generator()
        try:
            with transaction.atomic():
                order = Order.objects.create(
                    order_number=order_number,
                    user=user,
                    status=Order.Status.CONFIRMED if is_cash else Order.Status.PAYMENT_PENDING,
                    subtotal_in_pesewas=pricing.subtotal_in_pesewas,
                    shipping_fee_in_pesewas=pricing.shipping_fee_in_pesewas,
                    discount_in_pesewas=pricing.discount_in_pesewas,
                    tax_in_pesewas=pricing.tax_in_pesewas,
                    total_in_pesewas=pricing.total_in_pesewas,
                    coupon_id=pricing.coupon.id if pricing.coupon else None,
                    coupon_code=pricing.coupon.code if pricing.coupon else "",
                    shipping_full_name=request.shipping.full_name,
                    shipping_phone=request.shipping.phone,
                    shipping_region=request.shipping.region,
                    shipping_city=request.shipping.city,
                    shipping_area=request.shipping.area,
                    shipping_street_address=request.shipping.street_address,
                    shipping_gps_address=request.shipping.gps_address,
                    customer_email=request.customer_email,
                    customer_phone=request.customer_phone,
                    notes=request.notes,
                    confirmed_at=now if is_cash else None,
                )
        except IntegrityError:
            if Order.objects.filter(order_number=order_number).exists():
                raise OrderNumberCollision(f"Order number {order_number} already taken.")
            raise

        # B. Payment snapshot
        Payment.objects.create(
            order=order,
            amount_in_pesewas=order.total_in_pesewas,
            currency=settings.PAYMENT_CURRENCY,
            method=request.payment_method,
            status=PaymentStatus.PENDING,
            momo_phone_number=request.momo_phone_number,
            momo_network=MOMO_NETWORK_BY_METHOD.get(request.payment_method, ""),
        )

        # C. Seller orders, items, stock
        for group in groups:
            seller_order = SellerOrder.objects.create(
                order=order,
                seller_id=group.seller_id,
                subtotal_in_pesewas=group.subtotal_in_pesewas,
                shipping_fee_in_pesewas=group.shipping_fee_in_pesewas,
                commission_in_pesewas=group.commission_in_pesewas,
                payout_in_pesewas=group.payout_in_pesewas,
                total_in_pesewas=group.total_in_pesewas,
            )
            OrderItem.objects.bulk_create([
                OrderItem(
                    order=order,
                    seller_order=seller_order,
                    product_id=line.product.id,
                    product_name=line.product.name,
                    product_sku=line.product.sku,
                    product_image=line.product.image_url,
                    quantity=line.quantity,
                    unit_price_in_pesewas=line.product.price_in_pesewas,
                    total_price_in_pesewas=line.line_total,
                )
                for line in group.lines
            ])
            for line in group.lines:
                if not line.product.track_inventory:
                    continue
                self.ledger.decrement(
                    line.product.id,
                    line.quantity,
                    allow_backorder=line.product.allow_backorder,
                    order=order,
                    user=user,
                    reference=order.order_number,
                )

        # D. Coupon usage
        if pricing.coupon:
            self.coupon_store.increment_usage(pricing.coupon.id)

        # E. Empty the cart, keep the row
        CartItem.objects.filter(cart_id=cart_id).delete()

        OrderTimeline.objects.create(
            order=order,
            status=order.status,
            note="Order placed, pay on delivery." if is_cash else "Order placed, awaiting payment.",
            created_by=user,
        )

        logger.info(
            f"Order {order.order_number} created: {order.total_in_pesewas} pesewas, {len(groups)} seller(s)",
            extra={"order_id": str(order.id), "order_number": order.order_number, "user_id": str(user.pk)},
        )
        return order


class CheckoutService:
    """
    Cart -> priced, partitioned order -> payment initiation.
    Built by ``apps.orders.container.build_checkout_service``.
    """

    def __init__(self, *, cart_reader, validator, pricing, partitioner, order_transaction,
                 payment_gateway, notifier, max_attempts=None):
        self.cart_reader = cart_reader
        self.validator = validator
        self.pricing = pricing
        self.partitioner = partitioner
        self.order_transaction = order_transaction
        self.payment_gateway = payment_gateway
        self.notifier = notifier
        self.max_attempts = max_attempts or settings.CHECKOUT_MAX_ATTEMPTS

    def quote(self, *, user=None, session_key=None, region="", city="", coupon_code=None) -> CheckoutQuote:
        _, quote = self._prepare(user, session_key, region, city, coupon_code)
        return quote

    def _prepare(self, user, session_key, region, city, coupon_code):
        cart = self.validator.validate(self.cart_reader.read(user=user, session_key=session_key))
        groups = self.partitioner.partition(cart.lines, region, city)
        shipping = sum(g.shipping_fee_in_pesewas for g in groups)
        pricing = self.pricing.price(cart.lines, shipping, coupon_code)
        return cart, CheckoutQuote(pricing=pricing, groups=groups)

    def checkout(self, user, request) -> CheckoutResult:
        order = None
        for attempt in range(1, self.max_attempts + 1):
            # Fresh read each attempt, stock may have moved since the last one
            cart, quote = self._prepare(
                user, None, request.shipping.region, request.shipping.city, request.coupon_code
            )
            try:
                order = self.order_transaction.execute(
                    user=user,
                    cart_id=cart.cart_id,
                    request=request,
                    groups=quote.groups,
                    pricing=quote.pricing,
                )
                break
            except OrderNumberCollision as e:
                logger.warning(f"Checkout attempt {attempt}/{self.max_attempts} failed: {e.message}")

        if order is None:
            raise TransactionAborted()

        payment = order.payment
        if payment.is_cash:
            initiation = PaymentInitiation(initialized=False, message="Pay with cash on delivery.")
        else:
            # The order is committed at this point, so a gateway fault only
            # degrades the payment step
            try:
                initiation = self.payment_gateway.initiate(order, payment)
            except Exception:
                logger.exception(
                    f"Payment initiation crashed for order {order.order_number}",
                    extra={"order_id": str(order.id)},
                )
                initiation = PaymentInitiation(
                    initialized=False,
                    message="Order placed, but we could not start the payment. Please retry from your orders page.",
                )

        self.notifier.order_placed(order)

        return CheckoutResult(order_id=order.id, order_number=order.order_number, payment=initiation)


class OrderService:
    """
    Status changes after checkout. Every change locks the order row first.
    """

    def __init__(self, ledger=None):
        self.ledger = ledger or InventoryLedger()

    @transaction.atomic
    def transition(self, order_id, new_status, actor=None, note="") -> Order:
        order = Order.objects.select_for_update().get(pk=order_id)

        if new_status == Order.Status.CANCELLED:
            return self._cancel(order, actor=actor, reason=note)

        if not order.can_transition_to(new_status):
            raise InvalidStatusTransition(order.status, new_status)

        now = timezone.now()
        update_fields = ["status", "updated_at"]
        if new_status in (Order.Status.CONFIRMED, Order.Status.PROCESSING) and not order.confirmed_at:
            order.confirmed_at = now
            update_fields.append("confirmed_at")
        if new_status == Order.Status.DELIVERED:
            order.delivered_at = now
            update_fields.append("delivered_at")

        order.status = new_status
        order.save(update_fields=update_fields)

        OrderTimeline.objects.create(order=order, status=new_status, note=note, created_by=actor)
        logger.info(f"Order {order.order_number} -> {new_status}", extra={"order_id": str(order.id)})
        return order

    @transaction.atomic
    def mark_paid(self, order_id, note="Payment confirmed.") -> Order:
        """
        PAYMENT_PENDING -> PROCESSING. Orders already past that are returned unchanged.
        """
        order = Order.objects.select_for_update().get(pk=order_id)
        if order.status != Order.Status.PAYMENT_PENDING:
            logger.warning(f"Order {order.order_number} already {order.status}. Ignoring payment confirmation.")
            return order
        return self.transition(order.id, Order.Status.PROCESSING, note=note)

    @transaction.atomic
    def cancel_order(self, order_id, actor=None, reason="") -> Order:
        """
        Buyer-facing cancel, only before fulfilment starts.
        """
        order = Order.objects.select_for_update().get(pk=order_id)
        if not order.can_cancel:
            raise InvalidStatusTransition(order.status, Order.Status.CANCELLED)
        return self._cancel(order, actor=actor, reason=reason)

    def _cancel(self, order, actor=None, reason=""):
        if not order.can_transition_to(Order.Status.CANCELLED):
            raise InvalidStatusTransition(order.status, Order.Status.CANCELLED)

        # 1. Release stock
        for item in order.items.select_related("product"):
            if not item.product.track_inventory:
                continue
            self.ledger.restock(
                item.product_id,
                item.quantity,
                action=InventoryLog.Action.CANCELLATION,
                order=order,
                user=actor,
                reference=order.order_number,
            )

        # 2. Seller slices
        order.seller_orders.exclude(
            status__in=[SellerOrder.Status.DELIVERED, SellerOrder.Status.REFUNDED]
        ).update(status=SellerOrder.Status.CANCELLED, updated_at=timezone.now())

        # 3. Payment
        payment = Payment.objects.select_for_update().filter(order=order).first()
        if payment is not None:
            if payment.status == PaymentStatus.SUCCESS:
                payment.status = PaymentStatus.REFUNDED
                payment.save(update_fields=["status", "updated_at"])
                logger.warning(
                    f"Order {order.order_number} cancelled after payment, refund owed.",
                    extra={"order_id": str(order.id), "reference": payment.external_reference},
                )
            elif payment.status == PaymentStatus.PENDING:
                payment.status = PaymentStatus.FAILED
                payment.failed_at = timezone.now()
                payment.error_message = "Order cancelled before payment."
                payment.save(update_fields=["status", "failed_at", "error_message", "updated_at"])

        order.status = Order.Status.CANCELLED
        order.cancelled_at = timezone.now()
        order.save(update_fields=["status", "cancelled_at", "updated_at"])

        OrderTimeline.objects.create(
            order=order,
            status=Order.Status.CANCELLED,
            note=reason or "Order cancelled.",
            created_by=actor,
        )
        logger.info(f"Order {order.order_number} cancelled", extra={"order_id": str(order.id)})
        return order

    @transaction.atomic
    def advance_seller_order(self, seller_order_id, new_status, actor=None) -> SellerOrder:
        seller_order = SellerOrder.objects.select_for_update().select_related("order").get(pk=seller_order_id)

        if (
            seller_order.order.status == Order.Status.PAYMENT_PENDING
            and new_status != SellerOrder.Status.CANCELLED
        ):
            raise InvalidStatusTransition(seller_order.status, new_status)
        if not seller_order.can_transition_to(new_status):
            raise InvalidStatusTransition(seller_order.status, new_status)

        seller_order.status = new_status
        seller_order.save(update_fields=["status", "updated_at"])
        OrderTimeline.objects.create(
            order=seller_order.order,
            status=seller_order.order.status,
            note=f"Seller {seller_order.seller_id} marked their items {new_status}.",
            created_by=actor,
        )
        return seller_order
