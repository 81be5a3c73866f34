"""
Django Admin configuration for order models.
"""
from django.contrib import admin
from .models import Order, OrderItem, OrderSequence


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['product', 'product_name', 'size_variant_name', 'custom_size',
                       'quantity', 'unit_price', 'subtotal']
    can_delete = False

    def subtotal(self, obj):
        return obj.subtotal
    subtotal.short_description = 'Subtotal'


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'user', 'payment_mode', 'payment_status',
                    'order_status', 'total_amount', 'created_at']
    list_filter = ['payment_mode', 'payment_status', 'order_status', 'has_custom_items', 'created_at']
    search_fields = ['order_number', 'gateway_order_id', 'gateway_payment_id', 'user__email']
    ordering = ['-created_at']
    readonly_fields = ['order_number', 'payment_status', 'total_amount', 'gateway_order_id',
                       'gateway_payment_id', 'payment_method', 'payment_details',
                       'failure_reason', 'created_at', 'updated_at']
    raw_id_fields = ['user']
    inlines = [OrderItemInline]


@admin.register(OrderSequence)
class OrderSequenceAdmin(admin.ModelAdmin):
    list_display = ['name', 'value']
    readonly_fields = ['value']
