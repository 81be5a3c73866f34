"""
Tests for the cart service and API.
"""
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from cart.models import CartItem
from cart.services import (
    add_to_cart,
    clear_cart,
    get_cart_lines,
    remove_item,
    update_quantity,
    CartError,
    CartItemNotFoundError,
)
from inventory.models import Product, SizeVariant

User = get_user_model()

CUSTOM_SIZE = {
    'measurements': {'length': 120, 'width': 80, 'unit': 'cm'},
    'calculated_price': '1450.00',
    'notes': 'Left-opening',
}


class CartServiceTestCase(TestCase):
    """Test cases for cart operations."""

    def setUp(self):
        self.user = User.objects.create_user(username='asha', email='asha@example.com')
        self.curtain = Product.objects.create(
            name='Velvet Curtain',
            price=Decimal('100.00'),
            category=Product.Category.CURTAINS_FURNISHING,
            stock_quantity=5
        )
        self.curtain_long = SizeVariant.objects.create(
            product=self.curtain, name='9 ft', price=Decimal('140.00'), stock_quantity=2
        )

    def test_price_captured_at_add_time(self):
        """
        Test: The line keeps the price it was added at.

        Given: A curtain added at 100
        When: The catalog price changes to 150
        Then: The cart line still carries 100
        """
        item = add_to_cart(self.user, self.curtain.id, quantity=2)
        Product.objects.filter(pk=self.curtain.pk).update(price=Decimal('150.00'))

        item.refresh_from_db()
        self.assertEqual(item.price_at_addition, Decimal('100.00'))
        self.assertEqual(item.subtotal, Decimal('200.00'))

    def test_variant_price_used(self):
        item = add_to_cart(self.user, self.curtain.id, size_variant_id=self.curtain_long.id)

        self.assertEqual(item.price_at_addition, Decimal('140.00'))
        self.assertEqual(item.size_variant, self.curtain_long)
        self.assertEqual(item.size_variant_name, '9 ft')
        self.assertFalse(item.variant_removed)

    def test_deleted_variant_flags_line(self):
        item = add_to_cart(self.user, self.curtain.id, size_variant_id=self.curtain_long.id)
        plain = add_to_cart(self.user, self.curtain.id)

        self.curtain_long.delete()

        item.refresh_from_db()
        plain.refresh_from_db()
        self.assertIsNone(item.size_variant)
        self.assertTrue(item.variant_removed)
        self.assertFalse(plain.variant_removed)

    def test_same_line_merged(self):
        add_to_cart(self.user, self.curtain.id, quantity=1)
        item = add_to_cart(self.user, self.curtain.id, quantity=2)

        self.assertEqual(item.quantity, 3)
        self.assertEqual(len(get_cart_lines(self.user)), 1)

    def test_variant_lines_kept_apart(self):
        add_to_cart(self.user, self.curtain.id)
        add_to_cart(self.user, self.curtain.id, size_variant_id=self.curtain_long.id)

        self.assertEqual(len(get_cart_lines(self.user)), 2)

    def test_custom_size_lines_never_merged(self):
        first = add_to_cart(self.user, self.curtain.id, custom_size=CUSTOM_SIZE)
        second = add_to_cart(self.user, self.curtain.id, custom_size=CUSTOM_SIZE)

        self.assertNotEqual(first.id, second.id)
        self.assertTrue(first.is_custom)
        self.assertEqual(first.price_at_addition, Decimal('1450.00'))

    def test_custom_size_requires_price(self):
        with self.assertRaises(CartError):
            add_to_cart(self.user, self.curtain.id, custom_size={'measurements': {}})

    def test_invalid_quantity(self):
        with self.assertRaises(CartError):
            add_to_cart(self.user, self.curtain.id, quantity=0)

    def test_inactive_product_rejected(self):
        Product.objects.filter(pk=self.curtain.pk).update(is_active=False)

        with self.assertRaises(CartItemNotFoundError):
            add_to_cart(self.user, self.curtain.id)

    def test_variant_of_other_product_rejected(self):
        blind = Product.objects.create(
            name='Roller Blind', price=Decimal('80.00'), category=Product.Category.BLINDS
        )

        with self.assertRaises(CartItemNotFoundError):
            add_to_cart(self.user, blind.id, size_variant_id=self.curtain_long.id)

    def test_update_and_remove_only_own_lines(self):
        item = add_to_cart(self.user, self.curtain.id)
        other = User.objects.create_user(username='ravi')

        with self.assertRaises(CartItemNotFoundError):
            update_quantity(other, item.id, 4)
        with self.assertRaises(CartItemNotFoundError):
            remove_item(other, item.id)

        self.assertEqual(update_quantity(self.user, item.id, 4).quantity, 4)
        remove_item(self.user, item.id)
        self.assertFalse(CartItem.objects.filter(pk=item.pk).exists())

    def test_clear_cart(self):
        add_to_cart(self.user, self.curtain.id)
        add_to_cart(self.user, self.curtain.id, size_variant_id=self.curtain_long.id)

        self.assertEqual(clear_cart(self.user), 2)
        self.assertEqual(get_cart_lines(self.user), [])
        self.assertEqual(clear_cart(self.user), 0)


class CartViewTestCase(TestCase):
    """Test cases for the cart API."""

    def setUp(self):
        self.user = User.objects.create_user(username='asha')
        self.client = APIClient()
        self.client.force_authenticate(self.user)
        self.curtain = Product.objects.create(
            name='Velvet Curtain',
            price=Decimal('100.00'),
            category=Product.Category.CURTAINS_FURNISHING,
            stock_quantity=5
        )

    def test_add_and_view_cart(self):
        response = self.client.post(
            '/api/cart/items/', {'product_id': self.curtain.id, 'quantity': 2}, format='json'
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['price_at_addition'], '100.00')

        response = self.client.get('/api/cart/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data['items']), 1)
        self.assertEqual(response.data['total_price'], '200.00')

    def test_add_unknown_product(self):
        response = self.client.post('/api/cart/items/', {'product_id': 9999}, format='json')

        self.assertEqual(response.status_code, 404)

    def test_variant_and_custom_size_exclusive(self):
        variant = SizeVariant.objects.create(
            product=self.curtain, name='9 ft', price=Decimal('140.00')
        )
        response = self.client.post(
            '/api/cart/items/',
            {'product_id': self.curtain.id, 'size_variant_id': variant.id, 'custom_size': CUSTOM_SIZE},
            format='json'
        )

        self.assertEqual(response.status_code, 400)

    def test_update_remove_and_clear(self):
        item = add_to_cart(self.user, self.curtain.id)

        response = self.client.patch(f'/api/cart/items/{item.id}/', {'quantity': 3}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['quantity'], 3)

        response = self.client.delete(f'/api/cart/items/{item.id}/')
        self.assertEqual(response.status_code, 204)
        response = self.client.delete(f'/api/cart/items/{item.id}/')
        self.assertEqual(response.status_code, 404)

        add_to_cart(self.user, self.curtain.id)
        response = self.client.delete('/api/cart/')
        self.assertEqual(response.status_code, 204)
        self.assertEqual(get_cart_lines(self.user), [])
