"""
Inventory Models - Catalog entities carrying stock counters.

Models:
    - Product: Items available for sale, with a product-level stock counter
    - SizeVariant: Pre-defined sizes of a product, each with its own counter

Stock counters are only ever decremented through inventory.ledger.reserve().
"""
from decimal import Decimal

from django.db import models
from django.core.validators import MinValueValidator


class Product(models.Model):
    """
    Product entity representing items available for sale.
    """

    class Category(models.TextChoices):
        CURTAINS_FURNISHING = 'curtains-furnishing', 'Curtains & Furnishing'
        BLINDS = 'blinds', 'Blinds'
        BEAN_BAGS = 'bean-bags', 'Bean Bags'
        WALLPAPER = 'wallpaper', 'Wallpaper'
        CARPETS_RUGS = 'carpets-rugs', 'Carpets & Rugs'

    name = models.CharField(
        max_length=200,
        db_index=True,
        help_text="Product name for display and search"
    )
    description = models.TextField(
        blank=True,
        default='',
        help_text="Optional product description"
    )
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Current catalog price"
    )
    category = models.CharField(
        max_length=40,
        choices=Category.choices,
        db_index=True,
        help_text="Product category"
    )
    stock_quantity = models.PositiveIntegerField(
        default=0,
        help_text="Units available when the product has no size variants"
    )
    in_stock = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Cleared automatically when stock reaches zero"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether product is available for ordering"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        ordering = ['name']
        indexes = [
            models.Index(fields=['name', 'is_active'], name='inventory_p_name_3c1f2e_idx'),
            models.Index(fields=['category', 'is_active'], name='inventory_p_categor_8d2a41_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.price})"


class SizeVariant(models.Model):
    """
    A pre-defined size of a product with its own price and stock counter.
    """
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name='size_variants',
        help_text="Product this size belongs to"
    )
    name = models.CharField(max_length=100, help_text="Display name, e.g. '5x7 ft'")
    length = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    width = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    height = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    unit = models.CharField(max_length=10, default='cm')
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Price of this size"
    )
    stock_quantity = models.PositiveIntegerField(default=0)
    in_stock = models.BooleanField(default=True)

    class Meta:
        verbose_name = 'Size Variant'
        verbose_name_plural = 'Size Variants'
        ordering = ['product', 'id']

    def __str__(self):
        return f"{self.product.name} - {self.name}: {self.stock_quantity} units"
