# apps/inventory/admin.py
from django.contrib import admin
from .models import InventoryLog


@admin.register(InventoryLog)
class InventoryLogAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'action', 'product', 'quantity_change', 'new_quantity', 'reference')
    list_filter = ('action', 'created_at')
    search_fields = ('reference', 'product__sku', 'product__name')

    def has_add_permission(self, request):
        return False  # Logs are immutable/system-generated

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
