"""
Builds the checkout object graph. Views and tasks call these factories
instead of holding module-level service instances, so tests can swap any
collaborator by keyword.
"""
from apps.catalog.services import CatalogService
from apps.delivery.services import DeliveryFeeCalculator
from apps.inventory.services import InventoryLedger
from apps.notifications.services import OrderNotifier
from apps.payments.services import PaymentGateway, WebhookReconciler
from apps.sellers.services import CommissionSchedule

from .pricing import CouponStore, PricingEngine
from .services import (
    CartReader,
    CartValidator,
    CheckoutService,
    OrderService,
    OrderTransaction,
    SellerPartitioner,
)


def build_order_service(ledger=None) -> OrderService:
    return OrderService(ledger=ledger or InventoryLedger())


def build_payment_gateway(**overrides) -> PaymentGateway:
    return overrides.get("payment_gateway") or PaymentGateway()


def build_webhook_reconciler(order_service=None) -> WebhookReconciler:
    return WebhookReconciler(order_service=order_service or build_order_service())


def build_checkout_service(**overrides) -> CheckoutService:
    coupon_store = overrides.get("coupon_store") or CouponStore()
    ledger = overrides.get("ledger") or InventoryLedger()

    return CheckoutService(
        cart_reader=overrides.get("cart_reader") or CartReader(),
        validator=overrides.get("validator") or CartValidator(catalog=overrides.get("catalog") or CatalogService()),
        pricing=overrides.get("pricing") or PricingEngine(coupon_store=coupon_store),
        partitioner=overrides.get("partitioner") or SellerPartitioner(
            fee_calculator=overrides.get("fee_calculator") or DeliveryFeeCalculator(),
            commission_schedule=overrides.get("commission_schedule") or CommissionSchedule(),
        ),
        order_transaction=overrides.get("order_transaction") or OrderTransaction(
            ledger=ledger,
            coupon_store=coupon_store,
        ),
        payment_gateway=build_payment_gateway(**overrides),
        notifier=overrides.get("notifier") or OrderNotifier(),
        max_attempts=overrides.get("max_attempts"),
    )
