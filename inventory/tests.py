"""
Tests for the stock ledger and catalog endpoints.

Test Cases:
1. Product-level and variant-level decrements
2. in_stock cleared at zero
3. All-or-nothing reservation
4. Deleted products and variants reported as shortfalls
"""
from decimal import Decimal
from types import SimpleNamespace

from django.test import TestCase
from rest_framework.test import APIClient

from inventory.ledger import reserve
from inventory.models import Product, SizeVariant


def line(product_id, quantity, size_variant_id=None, name='line', size_variant_name=''):
    return SimpleNamespace(
        product_id=product_id,
        size_variant_id=size_variant_id,
        size_variant_name=size_variant_name,
        quantity=quantity,
        display_name=name,
    )


class ReserveTestCase(TestCase):
    """Test cases for ledger.reserve()."""

    def setUp(self):
        self.curtain = Product.objects.create(
            name='Velvet Curtain',
            price=Decimal('100.00'),
            category=Product.Category.CURTAINS_FURNISHING,
            stock_quantity=5
        )
        self.rug = Product.objects.create(
            name='Jute Rug',
            price=Decimal('250.00'),
            category=Product.Category.CARPETS_RUGS,
            stock_quantity=7
        )
        self.rug_small = SizeVariant.objects.create(
            product=self.rug, name='3x5 ft', price=Decimal('250.00'), stock_quantity=2
        )

    def test_product_counter_decremented(self):
        shortfalls = reserve([line(self.curtain.id, 3)])

        self.assertEqual(shortfalls, [])
        self.curtain.refresh_from_db()
        self.assertEqual(self.curtain.stock_quantity, 2)
        self.assertTrue(self.curtain.in_stock)

    def test_variant_counter_decremented_not_product(self):
        """
        Test: A line with a size variant draws from the variant's counter.
        """
        shortfalls = reserve([line(self.rug.id, 1, size_variant_id=self.rug_small.id)])

        self.assertEqual(shortfalls, [])
        self.rug_small.refresh_from_db()
        self.rug.refresh_from_db()
        self.assertEqual(self.rug_small.stock_quantity, 1)
        self.assertEqual(self.rug.stock_quantity, 7)

    def test_in_stock_cleared_at_zero(self):
        reserve([
            line(self.curtain.id, 5),
            line(self.rug.id, 2, size_variant_id=self.rug_small.id),
        ])

        self.curtain.refresh_from_db()
        self.rug_small.refresh_from_db()
        self.assertEqual(self.curtain.stock_quantity, 0)
        self.assertFalse(self.curtain.in_stock)
        self.assertEqual(self.rug_small.stock_quantity, 0)
        self.assertFalse(self.rug_small.in_stock)

    def test_shortfall_rolls_back_every_line(self):
        """
        Test: Reservation is all-or-nothing.

        Given: Curtain stock 5, variant stock 2
        When: Reserving 3 curtains and 4 of the variant
        Then: One shortfall reported, no counter changed
        """
        shortfalls = reserve([
            line(self.curtain.id, 3, name='Velvet Curtain'),
            line(self.rug.id, 4, size_variant_id=self.rug_small.id, name='Jute Rug (3x5 ft)'),
        ])

        self.assertEqual(len(shortfalls), 1)
        shortfall = shortfalls[0]
        self.assertEqual(shortfall.size_variant_id, self.rug_small.id)
        self.assertEqual(shortfall.requested, 4)
        self.assertEqual(shortfall.available, 2)
        self.assertIn('Jute Rug (3x5 ft)', str(shortfall))

        self.curtain.refresh_from_db()
        self.rug_small.refresh_from_db()
        self.assertEqual(self.curtain.stock_quantity, 5)
        self.assertEqual(self.rug_small.stock_quantity, 2)

    def test_exact_stock_succeeds(self):
        self.assertEqual(reserve([line(self.curtain.id, 5)]), [])

    def test_deleted_product_is_shortfall(self):
        shortfalls = reserve([line(None, 1, name='Old Lamp'), line(self.curtain.id, 1)])

        self.assertEqual(len(shortfalls), 1)
        self.assertTrue(shortfalls[0].missing)
        self.assertIn('no longer available', str(shortfalls[0]))
        self.curtain.refresh_from_db()
        self.assertEqual(self.curtain.stock_quantity, 5)

    def test_variant_of_other_product_is_shortfall(self):
        shortfalls = reserve([line(self.curtain.id, 1, size_variant_id=self.rug_small.id)])

        self.assertEqual(len(shortfalls), 1)
        self.assertIsNone(shortfalls[0].available)
        self.rug_small.refresh_from_db()
        self.assertEqual(self.rug_small.stock_quantity, 2)

    def test_deleted_variant_never_draws_from_product(self):
        """
        Test: A sized line whose variant was deleted is a shortfall.

        Given: Rug stock 7, a line for 2 of the '3x5 ft' size
        When: The variant is deleted and the line is reserved
        Then: Shortfall reported as missing, rug counter untouched
        """
        self.rug_small.delete()

        shortfalls = reserve([
            line(self.rug.id, 2, name='Jute Rug - 3x5 ft', size_variant_name='3x5 ft'),
        ])

        self.assertEqual(len(shortfalls), 1)
        self.assertTrue(shortfalls[0].missing)
        self.assertEqual(shortfalls[0].product_id, self.rug.id)
        self.rug.refresh_from_db()
        self.assertEqual(self.rug.stock_quantity, 7)

    def test_shortfall_as_dict(self):
        shortfall = reserve([line(self.curtain.id, 9, name='Velvet Curtain')])[0]

        self.assertEqual(shortfall.as_dict(), {
            'product_id': self.curtain.id,
            'size_variant_id': None,
            'name': 'Velvet Curtain',
            'requested': 9,
            'available': 5,
        })


class CatalogViewTestCase(TestCase):
    """Test cases for the read-only catalog API."""

    def setUp(self):
        self.client = APIClient()
        self.curtain = Product.objects.create(
            name='Velvet Curtain',
            price=Decimal('100.00'),
            category=Product.Category.CURTAINS_FURNISHING,
            stock_quantity=5
        )
        self.blind = Product.objects.create(
            name='Roller Blind',
            price=Decimal('80.00'),
            category=Product.Category.BLINDS,
            stock_quantity=0,
            in_stock=False
        )
        Product.objects.create(
            name='Retired Wallpaper',
            price=Decimal('10.00'),
            category=Product.Category.WALLPAPER,
            is_active=False
        )

    def test_list_hides_inactive_products(self):
        response = self.client.get('/api/products/')

        self.assertEqual(response.status_code, 200)
        names = [p['name'] for p in response.data['results']]
        self.assertEqual(names, ['Roller Blind', 'Velvet Curtain'])

    def test_filters(self):
        response = self.client.get('/api/products/', {'category': 'blinds'})
        self.assertEqual([p['id'] for p in response.data['results']], [self.blind.id])

        response = self.client.get('/api/products/', {'in_stock': 'true'})
        self.assertEqual([p['id'] for p in response.data['results']], [self.curtain.id])

    def test_detail(self):
        SizeVariant.objects.create(
            product=self.curtain, name='7 ft', price=Decimal('120.00'), stock_quantity=2
        )

        response = self.client.get(f'/api/products/{self.curtain.id}/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data['size_variants']), 1)
