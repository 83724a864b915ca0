"""
Plain data carried between the checkout stages.

Frozen so a stage can never mutate what an earlier stage computed; money is
always integer pesewas.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID


@dataclass(frozen=True)
class ProductSnapshot:
    id: UUID
    name: str
    sku: str
    image_url: str
    price_in_pesewas: int
    stock_quantity: int
    track_inventory: bool
    allow_backorder: bool
    is_active: bool
    seller_id: Optional[UUID] = None
    seller_region: str = ""
    seller_city: str = ""
    seller_commission_rate: Optional[Decimal] = None


@dataclass(frozen=True)
class CartLine:
    product: ProductSnapshot
    quantity: int

    @property
    def line_total(self) -> int:
        return self.product.price_in_pesewas * self.quantity


@dataclass(frozen=True)
class CartSnapshot:
    cart_id: UUID
    lines: Tuple[CartLine, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.lines


@dataclass(frozen=True)
class SellerGroup:
    seller_id: UUID
    lines: Tuple[CartLine, ...]
    subtotal_in_pesewas: int
    shipping_fee_in_pesewas: int
    commission_in_pesewas: int
    payout_in_pesewas: int

    @property
    def total_in_pesewas(self) -> int:
        return self.subtotal_in_pesewas + self.shipping_fee_in_pesewas


@dataclass(frozen=True)
class AppliedCoupon:
    id: UUID
    code: str


@dataclass(frozen=True)
class PricingResult:
    subtotal_in_pesewas: int
    discount_in_pesewas: int = 0
    shipping_fee_in_pesewas: int = 0
    tax_in_pesewas: int = 0
    coupon: Optional[AppliedCoupon] = None

    @property
    def total_in_pesewas(self) -> int:
        return (
            self.subtotal_in_pesewas
            - self.discount_in_pesewas
            + self.shipping_fee_in_pesewas
            + self.tax_in_pesewas
        )


@dataclass(frozen=True)
class ShippingDetails:
    full_name: str
    phone: str
    region: str
    city: str
    street_address: str
    area: str = ""
    gps_address: str = ""


@dataclass(frozen=True)
class CheckoutRequest:
    shipping: ShippingDetails
    customer_email: str
    customer_phone: str
    payment_method: str
    momo_phone_number: str = ""
    delivery_method: str = ""
    delivery_notes: str = ""
    coupon_code: str = ""

    @property
    def notes(self) -> str:
        parts = []
        if self.delivery_method:
            parts.append(f"Delivery method: {self.delivery_method}")
        if self.delivery_notes:
            parts.append(self.delivery_notes)
        return "\n".join(parts)


@dataclass(frozen=True)
class PaymentInitiation:
    initialized: bool
    reference: Optional[str] = None
    authorization_url: Optional[str] = None
    message: str = ""


@dataclass(frozen=True)
class CheckoutQuote:
    pricing: PricingResult
    groups: Tuple[SellerGroup, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CheckoutResult:
    order_id: UUID
    order_number: str
    payment: PaymentInitiation
