"""
Top-level models import shim for the Orders app.

Models live in separate modules; this keeps
    from apps.orders.models import Order
working for the rest of the project.
"""

from .cart import *           # Cart, CartItem
from .coupon import *         # Coupon
from .order import *          # Order, SellerOrder, status enums
from .item import *           # OrderItem
from .timeline import *       # OrderTimeline
