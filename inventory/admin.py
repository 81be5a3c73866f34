"""
Django Admin configuration for catalog models.
"""
from django.contrib import admin
from .models import Product, SizeVariant


class SizeVariantInline(admin.TabularInline):
    model = SizeVariant
    extra = 0


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'price', 'category', 'stock_quantity', 'in_stock', 'is_active']
    list_filter = ['category', 'in_stock', 'is_active', 'created_at']
    search_fields = ['name', 'description']
    ordering = ['name']
    inlines = [SizeVariantInline]


@admin.register(SizeVariant)
class SizeVariantAdmin(admin.ModelAdmin):
    list_display = ['id', 'product', 'name', 'price', 'stock_quantity', 'in_stock']
    list_filter = ['in_stock']
    search_fields = ['product__name', 'name']
    raw_id_fields = ['product']
