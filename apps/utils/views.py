# apps/utils/views.py
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny
from django.conf import settings


class ServerInfoView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        return Response({
            "app_name": settings.PROJECT_NAME,
            "version": "1.0.0",
            "debug": settings.DEBUG,
        })


class GlobalConfigView(APIView):
    """
    Public checkout settings for the storefront.
    """
    permission_classes = [AllowAny]

    def get(self, request):
        return Response({
            "currency": settings.PAYMENT_CURRENCY,
            "delivery_default_fee": settings.DELIVERY_DEFAULT_FEE,
            "delivery_fee_zones": settings.DELIVERY_FEE_ZONES,
        })
