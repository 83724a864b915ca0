from django.urls import path
from .views import InitializePaymentView, PaymentVerifyView, PaystackWebhookView

urlpatterns = [
    path('webhook/paystack/', PaystackWebhookView.as_view(), name='paystack-webhook'),
    path('verify/<str:reference>/', PaymentVerifyView.as_view(), name='payment-verify'),
    path('orders/<uuid:order_id>/initialize/', InitializePaymentView.as_view(), name='payment-initialize'),
]
