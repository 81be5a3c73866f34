"""
Serializers for cart models.
"""
from rest_framework import serializers
from .models import Cart, CartItem
from inventory.serializers import ProductMinimalSerializer


class CartItemSerializer(serializers.ModelSerializer):
    """Serializer for a cart line with product details."""
    product = ProductMinimalSerializer(read_only=True)
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = CartItem
        fields = [
            'id', 'product', 'size_variant', 'size_variant_name', 'quantity',
            'price_at_addition', 'custom_size', 'subtotal'
        ]


class CartSerializer(serializers.ModelSerializer):
    items = CartItemSerializer(many=True, read_only=True)
    total_price = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Cart
        fields = ['id', 'items', 'total_price', 'updated_at']


class CartItemCreateSerializer(serializers.Serializer):
    """
    Request format:
    {
        "product_id": 1,
        "quantity": 2,
        "size_variant_id": 4,          (optional)
        "custom_size": {               (optional)
            "measurements": {"length": 120, "width": 80, "unit": "cm"},
            "calculated_price": "1450.00",
            "notes": "Left-opening"
        }
    }
    """
    product_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1, default=1)
    size_variant_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    custom_size = serializers.JSONField(required=False, allow_null=True)

    def validate(self, attrs):
        if attrs.get('size_variant_id') and attrs.get('custom_size'):
            raise serializers.ValidationError(
                "A line can have a size variant or a custom size, not both"
            )
        return attrs


class CartItemUpdateSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)
