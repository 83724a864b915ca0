from django.urls import path, include
from rest_framework.routers import SimpleRouter
from .views import CartViewSet, CheckoutQuoteView, CheckoutView, OrderViewSet

# cart/ must resolve before the order detail route swallows it
router = SimpleRouter()
router.register(r'cart', CartViewSet, basename='cart')
router.register(r'', OrderViewSet, basename='orders')

urlpatterns = [
    path('checkout/', CheckoutView.as_view(), name='checkout'),
    path('checkout/quote/', CheckoutQuoteView.as_view(), name='checkout-quote'),
    path('', include(router.urls)),
]
