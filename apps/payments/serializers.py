from rest_framework import serializers
from .models import Payment


class PaymentSerializer(serializers.ModelSerializer):
    order_id = serializers.UUIDField(read_only=True)
    order_number = serializers.CharField(source='order.order_number', read_only=True)
    order_status = serializers.CharField(source='order.status', read_only=True)

    class Meta:
        model = Payment
        fields = [
            'id', 'order_id', 'order_number', 'order_status',
            'method', 'status', 'amount_in_pesewas', 'currency',
            'external_reference', 'authorization_url',
            'initiated_at', 'confirmed_at', 'failed_at',
        ]
