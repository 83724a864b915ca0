# apps/notifications/signals.py
from django.dispatch import Signal

# Sent once an order has committed. Args: order
order_placed = Signal()
