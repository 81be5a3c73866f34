"""
Cart Service Layer.

The cart is the only place a unit price is read from the catalog: the
price is captured when a line is added and carried unchanged into the
order at checkout.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from django.db import transaction
from django.db.models import F

from inventory.models import Product, SizeVariant
from .models import Cart, CartItem

logger = logging.getLogger(__name__)


class CartError(Exception):
    """Raised when a cart operation is invalid."""
    pass


class CartItemNotFoundError(CartError):
    """Raised when a product or cart line does not exist."""
    pass


def get_or_create_cart(user) -> Cart:
    cart, _ = Cart.objects.get_or_create(user=user)
    return cart


def _custom_price(custom_size: Dict) -> Decimal:
    try:
        price = Decimal(str(custom_size['calculated_price']))
    except (KeyError, InvalidOperation):
        raise CartError("Custom size requires a valid 'calculated_price'")
    if price <= 0:
        raise CartError("Custom size price must be positive")
    return price


def add_to_cart(
    user,
    product_id: int,
    quantity: int = 1,
    size_variant_id: Optional[int] = None,
    custom_size: Optional[Dict] = None,
) -> CartItem:
    """
    Add a product to the user's cart, capturing its current price.

    Lines for the same product and size variant are merged; custom-size
    lines are always added separately since each carries its own
    measurements.

    Raises:
        CartError: Invalid quantity or custom size payload
        CartItemNotFoundError: Product or variant not found or inactive
    """
    if quantity < 1:
        raise CartError("Quantity must be at least 1")

    try:
        product = Product.objects.get(id=product_id, is_active=True)
    except Product.DoesNotExist:
        raise CartItemNotFoundError(f"Product {product_id} not found")

    variant = None
    if size_variant_id is not None:
        try:
            variant = SizeVariant.objects.get(id=size_variant_id, product=product)
        except SizeVariant.DoesNotExist:
            raise CartItemNotFoundError(
                f"Size variant {size_variant_id} not found for product {product_id}"
            )

    if variant is not None:
        price = variant.price
    elif custom_size:
        price = _custom_price(custom_size)
    else:
        price = product.price

    cart = get_or_create_cart(user)

    with transaction.atomic():
        if not custom_size:
            existing = cart.items.filter(
                product=product, size_variant=variant, custom_size__isnull=True
            ).first()
            if existing is not None:
                CartItem.objects.filter(pk=existing.pk).update(
                    quantity=F('quantity') + quantity
                )
                existing.refresh_from_db()
                return existing

        item = CartItem.objects.create(
            cart=cart,
            product=product,
            size_variant=variant,
            size_variant_name=variant.name if variant else '',
            quantity=quantity,
            price_at_addition=price,
            custom_size=custom_size or None,
        )

    logger.info(f"User {user.pk}: added {quantity}x {product.name} at {price} to cart")
    return item


def update_quantity(user, item_id: int, quantity: int) -> CartItem:
    if quantity < 1:
        raise CartError("Quantity must be at least 1")
    try:
        item = CartItem.objects.get(id=item_id, cart__user=user)
    except CartItem.DoesNotExist:
        raise CartItemNotFoundError(f"Cart item {item_id} not found")
    item.quantity = quantity
    item.save(update_fields=['quantity', 'updated_at'])
    return item


def remove_item(user, item_id: int) -> None:
    deleted, _ = CartItem.objects.filter(id=item_id, cart__user=user).delete()
    if not deleted:
        raise CartItemNotFoundError(f"Cart item {item_id} not found")


def get_cart_lines(user) -> List[CartItem]:
    """Return the user's cart lines with product and variant loaded."""
    return list(
        CartItem.objects.select_related('product', 'size_variant')
        .filter(cart__user=user)
        .order_by('id')
    )


def clear_cart(user) -> int:
    """Delete every line of the user's cart. Returns the number removed."""
    deleted, _ = CartItem.objects.filter(cart__user=user).delete()
    logger.info(f"User {user.pk}: cleared {deleted} cart line(s)")
    return deleted
