from django.contrib import admin
from .models import Order

@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "payment_status", "total", "currency", "user_id", "created_at", "updated_at")
    search_fields = ("order_number", "gateway_order_id", "gateway_payment_id", "user_id")
    list_filter = ("payment_status", "currency", "created_at")
    readonly_fields = ("order_number", "gateway_order_id", "gateway_payment_id", "gateway_signature",
                       "payment_status", "paid_at", "retry_of", "created_at", "updated_at")
