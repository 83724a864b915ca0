from django.contrib import admin
from .models import Payment, WebhookEvent


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('external_reference', 'order', 'method', 'status', 'amount_in_pesewas', 'created_at')
    list_filter = ('status', 'method', 'gateway_provider')
    search_fields = ('external_reference', 'order__order_number', 'momo_phone_number')
    readonly_fields = [f.name for f in Payment._meta.fields]

    def has_add_permission(self, request):
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ('event_key', 'provider', 'event_type', 'is_processed', 'created_at')
    list_filter = ('provider', 'is_processed', 'event_type')
    search_fields = ('event_key',)
    readonly_fields = ('event_key', 'provider', 'event_type', 'is_processed', 'payload', 'error', 'created_at')

    def has_add_permission(self, request):
        return False
