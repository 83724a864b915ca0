"""
Builders shared by the app test modules.
"""
import itertools

from django.contrib.auth import get_user_model

from apps.catalog.models import Product
from apps.orders.models import Cart, CartItem
from apps.sellers.models import SellerProfile

User = get_user_model()
_seq = itertools.count(1)

CHECKOUT_PAYLOAD = {
    "shipping_full_name": "Ama Mensah",
    "shipping_phone": "0241234567",
    "shipping_region": "Bono",
    "shipping_city": "Sunyani",
    "shipping_street_address": "12 Market Road",
    "customer_email": "ama@example.com",
    "customer_phone": "0241234567",
    "payment_method": "CASH_ON_DELIVERY",
}


def make_user(email=None, **extra):
    return User.objects.create_user(email=email or f"buyer{next(_seq)}@example.com", password="testpass123", **extra)


def make_seller(region="Bono", city="Sunyani", commission_rate=None, **extra):
    n = next(_seq)
    user = make_user(email=f"seller{n}@example.com", role="SELLER")
    return SellerProfile.objects.create(
        user=user,
        business_name=extra.pop("business_name", f"Shop {n}"),
        region=region,
        city=city,
        commission_rate=commission_rate,
        **extra,
    )


def make_product(seller=None, price=1000, stock=10, **extra):
    n = next(_seq)
    return Product.objects.create(
        seller=seller,
        name=extra.pop("name", f"Product {n}"),
        sku=extra.pop("sku", f"SKU-{n:05d}"),
        price_in_pesewas=price,
        stock_quantity=stock,
        **extra,
    )


def make_cart(user=None, session_key=None, items=()):
    """items: iterable of (product, quantity)"""
    if user is not None:
        cart, _ = Cart.objects.get_or_create(user=user)
    else:
        cart, _ = Cart.objects.get_or_create(session_key=session_key)
    for product, quantity in items:
        CartItem.objects.create(cart=cart, product=product, quantity=quantity)
    return cart
