from django.contrib import admin
from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ('sku', 'name', 'seller', 'price_in_pesewas', 'stock_quantity', 'track_inventory', 'is_active')
    list_filter = ('is_active', 'track_inventory', 'allow_backorder')
    search_fields = ('sku', 'name', 'seller__business_name')
    # Stock moves through the inventory ledger only
    readonly_fields = ('stock_quantity',)
