from django.contrib import admin
from .models import SellerProfile


@admin.register(SellerProfile)
class SellerProfileAdmin(admin.ModelAdmin):
    list_display = ('business_name', 'user', 'region', 'city', 'commission_rate', 'is_active')
    list_filter = ('region', 'is_active')
    search_fields = ('business_name', 'user__email')
