from django.contrib import admin
from .models import (
    Order, OrderItem, OrderTimeline, SellerOrder,
    Coupon, Cart, CartItem,
)


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = (
        'product', 'product_name', 'product_sku', 'quantity',
        'unit_price_in_pesewas', 'total_price_in_pesewas',
    )

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class SellerOrderInline(admin.TabularInline):
    model = SellerOrder
    extra = 0
    readonly_fields = (
        'seller', 'status', 'subtotal_in_pesewas', 'shipping_fee_in_pesewas',
        'commission_in_pesewas', 'payout_in_pesewas', 'total_in_pesewas',
    )

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class OrderTimelineInline(admin.TabularInline):
    model = OrderTimeline
    extra = 0
    readonly_fields = ('timestamp', 'status', 'note', 'created_by')

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Money and snapshot fields are read-only; status changes go through OrderService.
    """
    list_display = ('order_number', 'user', 'status', 'total_in_pesewas', 'created_at')
    list_filter = ('status', 'created_at')
    search_fields = ('order_number', 'id', 'customer_email', 'customer_phone')
    inlines = [SellerOrderInline, OrderItemInline, OrderTimelineInline]
    readonly_fields = (
        'order_number', 'user', 'status',
        'subtotal_in_pesewas', 'shipping_fee_in_pesewas', 'discount_in_pesewas',
        'tax_in_pesewas', 'total_in_pesewas', 'coupon', 'coupon_code',
        'created_at', 'updated_at', 'confirmed_at', 'cancelled_at', 'delivered_at',
    )

    fieldsets = (
        ('Order', {
            'fields': ('order_number', 'user', 'status', 'notes')
        }),
        ('Money (pesewas)', {
            'fields': (
                'subtotal_in_pesewas', 'shipping_fee_in_pesewas', 'discount_in_pesewas',
                'tax_in_pesewas', 'total_in_pesewas', 'coupon', 'coupon_code',
            )
        }),
        ('Delivery Info', {
            'fields': (
                'shipping_full_name', 'shipping_phone', 'shipping_region', 'shipping_city',
                'shipping_area', 'shipping_street_address', 'shipping_gps_address',
                'customer_email', 'customer_phone',
            )
        }),
        ('System Data', {
            'fields': ('created_at', 'updated_at', 'confirmed_at', 'delivered_at', 'cancelled_at'),
            'classes': ('collapse',)
        }),
    )

    def has_add_permission(self, request):
        return False


class CartItemInline(admin.TabularInline):
    model = CartItem
    extra = 0
    readonly_fields = ('product', 'quantity', 'price_at_add_in_pesewas', 'created_at')
    can_delete = False


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'session_key', 'updated_at')
    search_fields = ('user__email', 'session_key')
    readonly_fields = ('user', 'session_key', 'created_at', 'updated_at')
    inlines = [CartItemInline]

    def has_add_permission(self, request):
        return False


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    list_display = ('code', 'discount_type', 'discount_value', 'expires_at', 'is_active', 'usage_count')
    list_filter = ('is_active', 'discount_type')
    search_fields = ('code',)
    readonly_fields = ('usage_count',)
    fieldsets = (
        ('Coupon Details', {
            'fields': ('code', 'is_active')
        }),
        ('Value', {
            'fields': ('discount_type', 'discount_value', 'min_order_in_pesewas', 'max_discount_in_pesewas')
        }),
        ('Validity', {
            'fields': ('valid_from', 'expires_at')
        }),
        ('Stats', {
            'fields': ('usage_limit', 'usage_count'),
            'classes': ('collapse',)
        })
    )
