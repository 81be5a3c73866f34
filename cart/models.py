"""
Cart Models - Per-user working set of products awaiting checkout.

Each line freezes the price at the moment it was added; orders are
priced from these lines, never from the live catalog.
"""
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.core.validators import MinValueValidator

from inventory.models import Product, SizeVariant


class Cart(models.Model):
    """One cart per user."""
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='cart'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Cart of {self.user}"

    @property
    def total_price(self) -> Decimal:
        return sum((item.subtotal for item in self.items.all()), Decimal('0.00'))


class CartItem(models.Model):
    """
    A product line in a cart.

    The product reference survives catalog deletion as NULL so checkout
    can drop the line instead of failing.
    """
    cart = models.ForeignKey(
        Cart,
        on_delete=models.CASCADE,
        related_name='items'
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.SET_NULL,
        null=True,
        related_name='cart_items'
    )
    size_variant = models.ForeignKey(
        SizeVariant,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='cart_items'
    )
    size_variant_name = models.CharField(
        max_length=100,
        blank=True,
        default='',
        help_text="Name of the chosen size; kept if the variant is deleted"
    )
    quantity = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)]
    )
    price_at_addition = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Unit price captured when the line was added"
    )
    custom_size = models.JSONField(
        null=True,
        blank=True,
        help_text="Custom measurements, calculated price and notes"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['id']

    def __str__(self):
        name = self.product.name if self.product else 'Removed product'
        return f"{self.quantity}x {name} @ {self.price_at_addition}"

    @property
    def subtotal(self) -> Decimal:
        return self.quantity * self.price_at_addition

    @property
    def is_custom(self) -> bool:
        return bool(self.custom_size)

    @property
    def variant_removed(self) -> bool:
        """True when the chosen size variant has since been deleted."""
        return bool(self.size_variant_name) and self.size_variant_id is None
