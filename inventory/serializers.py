"""
Serializers for catalog models.
"""
from rest_framework import serializers
from .models import Product, SizeVariant


class SizeVariantSerializer(serializers.ModelSerializer):
    """Serializer for a product's size variants."""
    class Meta:
        model = SizeVariant
        fields = [
            'id', 'name', 'length', 'width', 'height', 'unit',
            'price', 'stock_quantity', 'in_stock'
        ]


class ProductSerializer(serializers.ModelSerializer):
    """Serializer for Product with nested size variants."""
    size_variants = SizeVariantSerializer(many=True, read_only=True)

    class Meta:
        model = Product
        fields = [
            'id', 'name', 'description', 'price', 'category',
            'stock_quantity', 'in_stock', 'size_variants',
            'created_at', 'updated_at'
        ]


class ProductMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested representations."""
    class Meta:
        model = Product
        fields = ['id', 'name', 'price']
