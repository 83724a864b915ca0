import logging
import uuid

from django.conf import settings
from django.core.cache import cache
from django.db.models import Q
from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.catalog.models import Product
from apps.utils.throttle import CheckoutRateThrottle
from .container import build_checkout_service, build_order_service
from .exceptions import ProductUnavailable
from .models import Cart, CartItem, Order
from .serializers import (
    AddCartItemSerializer,
    CancelOrderSerializer,
    CartSerializer,
    CheckoutSerializer,
    OrderListSerializer,
    OrderSerializer,
    QuoteSerializer,
    serialize_quote,
)

logger = logging.getLogger(__name__)


class CheckoutServiceMixin:
    """
    Views get their service graph here; tests override it.
    """

    def get_checkout_service(self):
        return build_checkout_service()


class CheckoutView(CheckoutServiceMixin, APIView):
    permission_classes = [IsAuthenticated]
    throttle_classes = [CheckoutRateThrottle]

    def post(self, request):
        """
        SEQUENCE:
        1. Optional idempotency lock (X-Idempotency-Key)
        2. Validate body
        3. Checkout (atomic order creation, then payment initialization)
        """
        idempotency_key = request.headers.get('X-Idempotency-Key')
        cache_key = None
        if idempotency_key:
            cache_key = f"checkout_idempotency_{request.user.id}_{idempotency_key}"
            # add() is atomic: only the first request gets the lock
            if not cache.add(cache_key, "processing", timeout=settings.IDEMPOTENCY_KEY_TTL):
                return Response(
                    {"error": "Duplicate request detected", "code": "duplicate_request"},
                    status=status.HTTP_409_CONFLICT
                )

        serializer = CheckoutSerializer(data=request.data)
        try:
            serializer.is_valid(raise_exception=True)
            result = self.get_checkout_service().checkout(request.user, serializer.to_request())
        except Exception:
            if cache_key:
                cache.delete(cache_key)  # Release lock so the buyer can fix and retry
            raise

        order = (
            Order.objects.select_related("payment")
            .prefetch_related("items", "seller_orders__seller", "timeline")
            .get(id=result.order_id)
        )
        return Response({
            "status": "success",
            "message": "Order placed successfully",
            "data": {
                "order": OrderSerializer(order).data,
                "payment": {
                    "initialized": result.payment.initialized,
                    "authorization_url": result.payment.authorization_url,
                    "reference": result.payment.reference,
                    "message": result.payment.message,
                },
            },
        }, status=status.HTTP_201_CREATED)


class CheckoutQuoteView(CheckoutServiceMixin, APIView):
    """
    Prices the current cart without writing anything.
    Anonymous carts are identified by the X-Session-Id header.
    """
    permission_classes = [AllowAny]

    def post(self, request):
        serializer = QuoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        quote = self.get_checkout_service().quote(
            user=request.user if request.user.is_authenticated else None,
            session_key=request.headers.get('X-Session-Id'),
            region=data["shipping_region"],
            city=data["shipping_city"],
            coupon_code=data["coupon_code"],
        )
        return Response({"status": "success", "data": serialize_quote(quote)})


class CartViewSet(viewsets.ViewSet):
    """
    Minimal cart surface. Logged-in buyers own their cart; anonymous buyers
    send X-Session-Id.
    """
    permission_classes = [AllowAny]

    def _get_cart(self, create=False):
        request = self.request
        if request.user.is_authenticated:
            lookup = {"user": request.user}
        else:
            session_key = request.headers.get('X-Session-Id')
            if not session_key:
                return None
            lookup = {"session_key": session_key[:64]}

        if create:
            cart, _ = Cart.objects.get_or_create(**lookup)
            return cart
        return Cart.objects.filter(**lookup).first()

    def list(self, request):
        cart = self._get_cart()
        if cart is None:
            return Response({"id": None, "items": [], "total_in_pesewas": 0})
        cart = Cart.objects.prefetch_related("items__product__seller").get(pk=cart.pk)
        return Response(CartSerializer(cart).data)

    @action(detail=False, methods=['post'])
    def add_item(self, request):
        serializer = AddCartItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        product_id = serializer.validated_data["product_id"]
        qty = serializer.validated_data["quantity"]

        product = Product.objects.filter(id=product_id, is_active=True).first()
        if product is None:
            raise ProductUnavailable("Product is not available.", product_id=str(product_id))

        cart = self._get_cart(create=True)
        if cart is None:
            session_key = uuid.uuid4().hex
            cart = Cart.objects.create(session_key=session_key)
        item, created = CartItem.objects.get_or_create(
            cart=cart, product=product,
            defaults={"quantity": qty, "price_at_add_in_pesewas": product.price_in_pesewas},
        )
        if not created:
            item.quantity += qty
            item.save(update_fields=["quantity", "updated_at"])

        response = Response(CartSerializer(cart).data)
        if cart.session_key and not request.user.is_authenticated:
            response["X-Session-Id"] = cart.session_key
        return response

    @action(detail=False, methods=['post'])
    def clear(self, request):
        cart = self._get_cart()
        if cart is not None:
            cart.items.all().delete()
        return Response({"status": "cleared"})


class OrderViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Buyer order history. Lookup accepts the UUID or the order number.
    """
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status']
    lookup_value_regex = '[^/]+'

    def get_queryset(self):
        qs = Order.objects.filter(user=self.request.user)
        if self.action == 'list':
            return qs.prefetch_related('items')
        return qs.select_related('payment').prefetch_related(
            'items', 'seller_orders__seller', 'timeline'
        )

    def get_serializer_class(self):
        if self.action == 'list':
            return OrderListSerializer
        return OrderSerializer

    def get_object(self):
        lookup = self.kwargs[self.lookup_field]
        query = Q(order_number=lookup)
        try:
            query |= Q(id=uuid.UUID(str(lookup)))
        except ValueError:
            pass
        return get_object_or_404(self.get_queryset(), query)

    def get_order_service(self):
        return build_order_service()

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        order = self.get_object()
        serializer = CancelOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        self.get_order_service().cancel_order(
            order.id,
            actor=request.user,
            reason=serializer.validated_data["reason"] or "Cancelled by buyer.",
        )
        order = self.get_queryset().get(pk=order.pk)
        return Response({
            "status": "success",
            "message": "Order cancelled",
            "data": OrderSerializer(order).data,
        })
