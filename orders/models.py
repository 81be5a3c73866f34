"""
Order Models - Order, OrderItem and the order number sequence.

Status Flow (order_status / payment_status):
    PLACED/PENDING -> CONFIRMED/PAID (payment confirmed, stock reserved)
    PLACED/PENDING -> PLACED/FAILED  (gateway reported failure, retryable)
    PLACED/FAILED  -> CONFIRMED/PAID (retry succeeded)
    CONFIRMED/PAID is never left by payment handling.

COD orders stay PLACED/PENDING; there is no online capture step.
"""
from decimal import Decimal
from django.conf import settings
from django.db import models
from django.core.validators import MinValueValidator

from inventory.models import Product, SizeVariant


class Order(models.Model):
    """
    Order entity created from a cart snapshot at checkout.
    """

    class PaymentMode(models.TextChoices):
        COD = 'CASH_ON_DELIVERY', 'Cash on Delivery'
        ONLINE = 'ONLINE', 'Online'

    class PaymentStatus(models.TextChoices):
        PENDING = 'PENDING', 'Pending'
        PAID = 'PAID', 'Paid'
        FAILED = 'FAILED', 'Failed'

    class Status(models.TextChoices):
        PLACED = 'PLACED', 'Placed'
        CONFIRMED = 'CONFIRMED', 'Confirmed'
        SHIPPED = 'SHIPPED', 'Shipped'
        DELIVERED = 'DELIVERED', 'Delivered'
        CANCELLED = 'CANCELLED', 'Cancelled'

    order_number = models.CharField(
        max_length=32,
        unique=True,
        help_text="Human-readable id, e.g. ORD-1001"
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='orders'
    )
    payment_mode = models.CharField(max_length=20, choices=PaymentMode.choices)
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        db_index=True
    )
    order_status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PLACED,
        db_index=True
    )
    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Sum of item quantity x unit price"
    )

    # Shipping address snapshot
    shipping_full_name = models.CharField(max_length=200)
    shipping_phone = models.CharField(max_length=32)
    shipping_street = models.CharField(max_length=300)
    shipping_city = models.CharField(max_length=100)
    shipping_state = models.CharField(max_length=100)
    shipping_postal_code = models.CharField(max_length=20)
    shipping_country = models.CharField(max_length=100)

    # Gateway mapping
    gateway_order_id = models.CharField(
        max_length=64,
        blank=True,
        default='',
        db_index=True,
        help_text="Gateway order (intent) id"
    )
    gateway_payment_id = models.CharField(max_length=64, blank=True, default='')
    payment_method = models.CharField(max_length=32, blank=True, default='')
    payment_details = models.JSONField(
        default=dict,
        blank=True,
        help_text="Non-sensitive details: bank, vpa, card last4"
    )

    has_custom_items = models.BooleanField(default=False, db_index=True)
    failure_reason = models.TextField(
        blank=True,
        default='',
        help_text="Why the last confirmation attempt failed"
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'created_at'], name='orders_orde_user_id_5b1e0c_idx'),
            models.Index(fields=['payment_status', 'created_at'], name='orders_orde_payment_a41f9d_idx'),
        ]

    def __str__(self):
        return f"{self.order_number} ({self.order_status}/{self.payment_status})"

    @property
    def is_paid(self) -> bool:
        return self.payment_status == self.PaymentStatus.PAID

    @property
    def is_online(self) -> bool:
        return self.payment_mode == self.PaymentMode.ONLINE

    @property
    def item_count(self) -> int:
        return self.items.count()

    @property
    def shipping_address(self) -> dict:
        return {
            'full_name': self.shipping_full_name,
            'phone': self.shipping_phone,
            'street': self.shipping_street,
            'city': self.shipping_city,
            'state': self.shipping_state,
            'postal_code': self.shipping_postal_code,
            'country': self.shipping_country,
        }


class OrderItem(models.Model):
    """
    OrderItem entity representing a product in an order.

    Stores the unit price at time of order to preserve historical pricing.
    """
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='items'
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.SET_NULL,
        null=True,
        related_name='order_items'
    )
    product_name = models.CharField(max_length=200)
    size_variant = models.ForeignKey(
        SizeVariant,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='order_items'
    )
    size_variant_name = models.CharField(max_length=100, blank=True, default='')
    custom_size = models.JSONField(null=True, blank=True)
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Price per unit at time of order"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Order Item'
        verbose_name_plural = 'Order Items'
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity}x {self.display_name} @ {self.unit_price}"

    @property
    def display_name(self) -> str:
        if self.size_variant_name:
            return f"{self.product_name} - {self.size_variant_name}"
        return self.product_name

    @property
    def subtotal(self) -> Decimal:
        """Calculate item subtotal."""
        return self.quantity * self.unit_price


class OrderSequence(models.Model):
    """Named monotonic counter backing human-readable order numbers."""
    name = models.CharField(max_length=50, unique=True)
    value = models.PositiveBigIntegerField(default=1000)

    def __str__(self):
        return f"{self.name}: {self.value}"
