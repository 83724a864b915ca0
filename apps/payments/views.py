import logging

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.orders.container import build_payment_gateway, build_webhook_reconciler
from apps.orders.exceptions import InvalidStatusTransition
from apps.orders.models import Order
from apps.utils.throttle import CheckoutRateThrottle
from .exceptions import PaymentGatewayError
from .models import Payment, PaymentStatus
from .serializers import PaymentSerializer

logger = logging.getLogger(__name__)


class PaystackWebhookView(APIView):
    """
    Paystack callbacks. Signature is checked against the raw body;
    anything past that check is acknowledged with 200.
    """
    permission_classes = []  # Allow public access for webhook
    authentication_classes = []

    def get_reconciler(self):
        return build_webhook_reconciler()

    def post(self, request, *args, **kwargs):
        # Must use raw request body bytes for verification
        raw_body = request.body
        signature = request.headers.get('X-Paystack-Signature')

        # InvalidSignature -> 401 via the exception handler
        self.get_reconciler().handle(raw_body, signature)
        return Response({"status": "received"}, status=status.HTTP_200_OK)


class PaymentVerifyView(APIView):
    """
    Buyer comes back from the gateway and asks whether the payment went through.
    """
    permission_classes = [IsAuthenticated]

    def get_gateway(self):
        return build_payment_gateway()

    def get_reconciler(self):
        return build_webhook_reconciler()

    def get(self, request, reference):
        payment = get_object_or_404(
            Payment.objects.select_related('order'),
            external_reference=reference,
            order__user=request.user,
        )

        if payment.status == PaymentStatus.PENDING:
            data = self.get_gateway().verify(reference)
            if data.get("status") == "success":
                self.get_reconciler().apply_charge_success(data)
            else:
                logger.info(f"Verify {reference}: gateway reports {data.get('status')}")
            payment.refresh_from_db()
            payment.order.refresh_from_db()

        return Response({
            "status": "success",
            "data": PaymentSerializer(payment).data,
        })


class InitializePaymentView(APIView):
    """
    Retry payment for an order whose initialization failed or was abandoned.
    """
    permission_classes = [IsAuthenticated]
    throttle_classes = [CheckoutRateThrottle]

    def get_gateway(self):
        return build_payment_gateway()

    def post(self, request, order_id):
        order = get_object_or_404(
            Order.objects.select_related('payment'), id=order_id, user=request.user
        )
        payment = order.payment

        if order.status != Order.Status.PAYMENT_PENDING or payment.status != PaymentStatus.PENDING:
            raise InvalidStatusTransition(order.status, Order.Status.PROCESSING)
        if payment.is_cash:
            raise InvalidStatusTransition(order.status, Order.Status.PROCESSING)

        result = self.get_gateway().initiate(order, payment)
        if not result.initialized:
            raise PaymentGatewayError(result.message)

        return Response({
            "status": "success",
            "data": {
                "initialized": True,
                "authorization_url": result.authorization_url,
                "reference": result.reference,
            },
        })
