from rest_framework import serializers
from .models import Product


class ProductSummarySerializer(serializers.ModelSerializer):
    seller_name = serializers.CharField(source="seller.business_name", default=None, read_only=True)

    class Meta:
        model = Product
        fields = [
            "id", "name", "sku", "image_url", "price_in_pesewas",
            "stock_quantity", "is_active", "seller_name",
        ]
