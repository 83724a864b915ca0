from rest_framework import serializers

from apps.catalog.serializers import ProductSummarySerializer
from apps.payments.models import Payment, PaymentMethod
from apps.utils.validators import validate_gps_address, validate_phone

from .dto import CheckoutRequest, ShippingDetails
from .models import Cart, CartItem, Order, OrderItem, OrderTimeline, SellerOrder

MOMO_METHODS = {PaymentMethod.MOMO_MTN, PaymentMethod.MOMO_VODAFONE, PaymentMethod.MOMO_AIRTELTIGO}


class CartItemSerializer(serializers.ModelSerializer):
    product = ProductSummarySerializer(read_only=True)
    line_total_in_pesewas = serializers.SerializerMethodField()

    class Meta:
        model = CartItem
        fields = ['id', 'product', 'quantity', 'price_at_add_in_pesewas', 'line_total_in_pesewas']

    def get_line_total_in_pesewas(self, obj) -> int:
        return obj.product.price_in_pesewas * obj.quantity


class CartSerializer(serializers.ModelSerializer):
    items = CartItemSerializer(many=True, read_only=True)
    total_in_pesewas = serializers.IntegerField(read_only=True)

    class Meta:
        model = Cart
        fields = ['id', 'items', 'total_in_pesewas']


class AddCartItemSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1, max_value=100, default=1)


class CheckoutSerializer(serializers.Serializer):
    """
    Validates the checkout body and turns it into a CheckoutRequest.
    """
    shipping_full_name = serializers.CharField(max_length=255)
    shipping_phone = serializers.CharField(max_length=20, validators=[validate_phone])
    shipping_region = serializers.CharField(max_length=100)
    shipping_city = serializers.CharField(max_length=100)
    shipping_area = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    shipping_street_address = serializers.CharField(max_length=255)
    shipping_gps_address = serializers.CharField(
        max_length=20, required=False, allow_blank=True, default="", validators=[validate_gps_address]
    )
    customer_email = serializers.EmailField()
    customer_phone = serializers.CharField(max_length=20, validators=[validate_phone])
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices)
    momo_phone_number = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")
    delivery_method = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")
    delivery_notes = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")
    coupon_code = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if attrs["payment_method"] in MOMO_METHODS:
            momo = attrs.get("momo_phone_number") or ""
            if not momo:
                raise serializers.ValidationError(
                    {"momo_phone_number": "Mobile money number is required for this payment method."}
                )
            validate_phone(momo)
        return attrs

    def to_request(self) -> CheckoutRequest:
        data = self.validated_data
        return CheckoutRequest(
            shipping=ShippingDetails(
                full_name=data["shipping_full_name"].strip(),
                phone=data["shipping_phone"],
                region=data["shipping_region"].strip(),
                city=data["shipping_city"].strip(),
                street_address=data["shipping_street_address"].strip(),
                area=data["shipping_area"].strip(),
                gps_address=data["shipping_gps_address"].strip().upper(),
            ),
            customer_email=data["customer_email"],
            customer_phone=data["customer_phone"],
            payment_method=data["payment_method"],
            momo_phone_number=data["momo_phone_number"],
            delivery_method=data["delivery_method"],
            delivery_notes=data["delivery_notes"],
            coupon_code=data["coupon_code"].strip(),
        )


class QuoteSerializer(serializers.Serializer):
    shipping_region = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    shipping_city = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    coupon_code = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")


class OrderItemSerializer(serializers.ModelSerializer):
    product_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = OrderItem
        fields = [
            'id', 'product_id', 'product_name', 'product_sku', 'product_image',
            'quantity', 'unit_price_in_pesewas', 'total_price_in_pesewas',
        ]


class SellerOrderSerializer(serializers.ModelSerializer):
    seller_id = serializers.UUIDField(read_only=True)
    seller_name = serializers.CharField(source='seller.business_name', read_only=True)

    class Meta:
        model = SellerOrder
        fields = [
            'id', 'seller_id', 'seller_name', 'status',
            'subtotal_in_pesewas', 'shipping_fee_in_pesewas', 'total_in_pesewas',
        ]


class PaymentSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            'method', 'status', 'amount_in_pesewas', 'currency',
            'external_reference', 'authorization_url', 'confirmed_at',
        ]


class OrderTimelineSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderTimeline
        fields = ['status', 'note', 'timestamp']


class OrderListSerializer(serializers.ModelSerializer):
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    item_count = serializers.IntegerField(source='items.count', read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'status', 'status_display',
            'total_in_pesewas', 'item_count', 'created_at',
        ]


class OrderSerializer(serializers.ModelSerializer):
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    items = OrderItemSerializer(many=True, read_only=True)
    seller_orders = SellerOrderSerializer(many=True, read_only=True)
    payment = PaymentSummarySerializer(read_only=True)
    timeline = OrderTimelineSerializer(many=True, read_only=True)
    can_cancel = serializers.BooleanField(read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'status', 'status_display', 'can_cancel',
            'subtotal_in_pesewas', 'shipping_fee_in_pesewas', 'discount_in_pesewas',
            'tax_in_pesewas', 'total_in_pesewas', 'coupon_code',
            'shipping_full_name', 'shipping_phone', 'shipping_region', 'shipping_city',
            'shipping_area', 'shipping_street_address', 'shipping_gps_address',
            'customer_email', 'customer_phone', 'notes',
            'items', 'seller_orders', 'payment', 'timeline',
            'created_at', 'confirmed_at', 'cancelled_at', 'delivered_at',
        ]


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


def serialize_quote(quote) -> dict:
    pricing = quote.pricing
    return {
        "subtotal_in_pesewas": pricing.subtotal_in_pesewas,
        "shipping_fee_in_pesewas": pricing.shipping_fee_in_pesewas,
        "discount_in_pesewas": pricing.discount_in_pesewas,
        "tax_in_pesewas": pricing.tax_in_pesewas,
        "total_in_pesewas": pricing.total_in_pesewas,
        "coupon_code": pricing.coupon.code if pricing.coupon else None,
        "sellers": [
            {
                "seller_id": str(group.seller_id),
                "subtotal_in_pesewas": group.subtotal_in_pesewas,
                "shipping_fee_in_pesewas": group.shipping_fee_in_pesewas,
                "total_in_pesewas": group.total_in_pesewas,
                "items": [
                    {"product_id": str(line.product.id), "name": line.product.name, "quantity": line.quantity}
                    for line in group.lines
                ],
            }
            for group in quote.groups
        ],
    }
