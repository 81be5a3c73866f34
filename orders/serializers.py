"""
Serializers for order models.
"""
from rest_framework import serializers
from .models import Order, OrderItem


class OrderItemSerializer(serializers.ModelSerializer):
    """Serializer for OrderItem with its frozen price."""
    subtotal = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        read_only=True
    )

    class Meta:
        model = OrderItem
        fields = [
            'id', 'product', 'product_name', 'size_variant', 'size_variant_name',
            'custom_size', 'quantity', 'unit_price', 'subtotal'
        ]


class OrderSerializer(serializers.ModelSerializer):
    """
    Serializer for Order model with nested items.
    Uses prefetch_related for optimized queries.
    """
    items = OrderItemSerializer(many=True, read_only=True)
    shipping_address = serializers.DictField(read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'payment_mode', 'payment_status', 'order_status',
            'total_amount', 'shipping_address', 'gateway_order_id', 'gateway_payment_id',
            'payment_method', 'has_custom_items', 'failure_reason', 'items',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    """
    Optimized serializer for listing orders.
    """
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'payment_mode', 'payment_status',
            'order_status', 'total_amount', 'item_count', 'created_at'
        ]

    def get_item_count(self, obj):
        # Use prefetched items count if available
        if hasattr(obj, '_prefetched_objects_cache') and 'items' in obj._prefetched_objects_cache:
            return len(obj.items.all())
        return obj.items.count()


class ShippingAddressSerializer(serializers.Serializer):
    full_name = serializers.CharField(max_length=200)
    phone = serializers.CharField(max_length=32)
    street = serializers.CharField(max_length=300)
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(max_length=100)
    postal_code = serializers.CharField(max_length=20)
    country = serializers.CharField(max_length=100)


class OrderCreateSerializer(serializers.Serializer):
    """
    Serializer for placing orders via POST /orders/

    Request format:
    {
        "payment_mode": "ONLINE",
        "shipping_address": {
            "full_name": "Asha Rao",
            "phone": "+91 98450 00000",
            "street": "12 MG Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "postal_code": "560001",
            "country": "India"
        }
    }
    """
    payment_mode = serializers.ChoiceField(choices=Order.PaymentMode.choices)
    shipping_address = ShippingAddressSerializer()
