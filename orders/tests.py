"""
Tests for checkout and payment confirmation.

Test Cases:
1. Order placement (ONLINE intent, COD cart clear, validation, dropped lines)
2. Price freezing at cart-add time
3. Rollback when the gateway cannot create an intent
4. Payment confirmation (signature, idempotency, interleaved confirmers,
   stock exhaustion, deleted sizes, cancelled orders, retry)
5. Payment failure events
6. Concurrent confirmations (PostgreSQL only)
"""
import hashlib
import hmac
import threading
from datetime import timedelta
from decimal import Decimal
from unittest import skipUnless
from unittest.mock import patch, PropertyMock

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core import mail
from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework.test import APIClient

from cart.models import CartItem
from cart.services import add_to_cart, get_cart_lines
from inventory.ledger import reserve as ledger_reserve
from inventory.models import Product, SizeVariant
from orders.models import Order, OrderItem
from orders.services import (
    capture_payment,
    confirm_payment,
    ensure_payment_intent,
    handle_payment_failed_event,
    next_order_sequence,
    place_order,
    GatewayUnavailableError,
    InsufficientStockError,
    OrderCancelledError,
    OrderNotFoundError,
    OrderValidationError,
)
from orders.tasks import expire_abandoned_online_orders, send_order_confirmation
from payments.gateway import PaymentGatewayError, PaymentIntent, SignatureMismatchError

User = get_user_model()

ADDRESS = {
    'full_name': 'Asha Rao',
    'phone': '+91 98450 00000',
    'street': '12 MG Road',
    'city': 'Bengaluru',
    'state': 'Karnataka',
    'postal_code': '560001',
    'country': 'India',
}


def sign(gateway_order_id, gateway_payment_id):
    payload = f"{gateway_order_id}|{gateway_payment_id}".encode()
    return hmac.new(
        settings.RAZORPAY_KEY_SECRET.encode(), payload, hashlib.sha256
    ).hexdigest()


def fake_intent(gateway_order_id):
    def create_intent(amount, currency, receipt):
        return PaymentIntent(
            id=gateway_order_id,
            amount=int(amount * 100),
            currency=currency,
            receipt=receipt,
            key_id='rzp_test_key',
        )
    return create_intent


class CheckoutTestMixin:
    """Shared catalog, user and cart fixtures."""

    def setUp(self):
        self.user = User.objects.create_user(
            username='asha', email='asha@example.com', password='secret'
        )
        self.product = Product.objects.create(
            name='Velvet Curtain',
            price=Decimal('100.00'),
            category=Product.Category.CURTAINS_FURNISHING,
            stock_quantity=5
        )
        self.rug = Product.objects.create(
            name='Jute Rug',
            price=Decimal('250.00'),
            category=Product.Category.CARPETS_RUGS,
            stock_quantity=0
        )
        self.rug_small = SizeVariant.objects.create(
            product=self.rug, name='3x5 ft', price=Decimal('250.00'), stock_quantity=3
        )

    def place_online(self, user=None, gateway_order_id='order_TEST1'):
        with patch('orders.services.get_gateway') as get_gateway:
            get_gateway.return_value.create_intent.side_effect = fake_intent(gateway_order_id)
            return place_order(user or self.user, ADDRESS, 'ONLINE')


class PlaceOrderTestCase(CheckoutTestMixin, TestCase):
    """Test cases for order placement."""

    def test_online_order_gets_gateway_intent(self):
        """
        Test: ONLINE order is PLACED/PENDING with the intent attached.

        Given: Cart with 2 units at 100
        When: Placing an ONLINE order
        Then: Total is 200, intent is sized to 20000 paise, cart is kept
        """
        add_to_cart(self.user, self.product.id, quantity=2)

        with patch('orders.services.get_gateway') as get_gateway:
            get_gateway.return_value.create_intent.side_effect = fake_intent('order_TEST1')
            result = place_order(self.user, ADDRESS, 'ONLINE')
            get_gateway.return_value.create_intent.assert_called_once_with(
                Decimal('200.00'), 'INR', result.order.order_number
            )

        order = result.order
        self.assertEqual(order.order_number, 'ORD-1001')
        self.assertEqual(order.total_amount, Decimal('200.00'))
        self.assertEqual(order.payment_status, Order.PaymentStatus.PENDING)
        self.assertEqual(order.order_status, Order.Status.PLACED)
        self.assertEqual(order.gateway_order_id, 'order_TEST1')
        self.assertEqual(result.intent.amount, 20000)

        # Stock is only reserved on payment
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)
        self.assertEqual(len(get_cart_lines(self.user)), 1)

    def test_cod_order_clears_cart_without_payment_step(self):
        add_to_cart(self.user, self.product.id, quantity=1)

        with patch('orders.services.get_gateway') as get_gateway:
            result = place_order(self.user, ADDRESS, 'CASH_ON_DELIVERY')
            get_gateway.assert_not_called()

        order = result.order
        self.assertIsNone(result.intent)
        self.assertEqual(order.order_status, Order.Status.PLACED)
        self.assertEqual(order.payment_status, Order.PaymentStatus.PENDING)
        self.assertEqual(get_cart_lines(self.user), [])

        # COD skips reservation entirely
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)
        self.assertTrue(any(order.order_number in m.subject for m in mail.outbox))

    def test_price_frozen_at_cart_add_time(self):
        """
        Test: Catalog price changes after add-to-cart don't affect the order.
        """
        add_to_cart(self.user, self.product.id, quantity=2)
        Product.objects.filter(pk=self.product.pk).update(price=Decimal('150.00'))

        order = self.place_online().order

        item = order.items.get()
        self.assertEqual(item.unit_price, Decimal('100.00'))
        self.assertEqual(order.total_amount, Decimal('200.00'))

    def test_total_matches_sum_of_lines(self):
        add_to_cart(self.user, self.product.id, quantity=3)
        add_to_cart(self.user, self.rug.id, quantity=2, size_variant_id=self.rug_small.id)

        order = self.place_online().order

        self.assertEqual(order.items.count(), 2)
        self.assertEqual(
            order.total_amount,
            sum((item.subtotal for item in order.items.all()), Decimal('0.00'))
        )
        self.assertEqual(order.total_amount, Decimal('800.00'))
        self.assertTrue(order.has_custom_items)
        rug_line = order.items.get(size_variant=self.rug_small)
        self.assertEqual(rug_line.size_variant_name, '3x5 ft')

    def test_sequence_numbers_are_distinct(self):
        add_to_cart(self.user, self.product.id)
        first = self.place_online(gateway_order_id='order_A').order
        add_to_cart(self.user, self.product.id)
        second = self.place_online(gateway_order_id='order_B').order

        self.assertEqual(first.order_number, 'ORD-1001')
        self.assertEqual(second.order_number, 'ORD-1002')
        self.assertEqual(next_order_sequence(), 1003)

    def test_empty_cart_rejected(self):
        with self.assertRaises(OrderValidationError) as context:
            place_order(self.user, ADDRESS, 'CASH_ON_DELIVERY')

        self.assertIn('empty', str(context.exception).lower())
        self.assertEqual(Order.objects.count(), 0)

    def test_missing_address_field_rejected(self):
        add_to_cart(self.user, self.product.id)
        address = dict(ADDRESS, city='  ')
        del address['postal_code']

        with self.assertRaises(OrderValidationError) as context:
            place_order(self.user, address, 'CASH_ON_DELIVERY')

        self.assertIn('city', str(context.exception))
        self.assertIn('postal_code', str(context.exception))
        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(len(get_cart_lines(self.user)), 1)

    def test_invalid_payment_mode_rejected(self):
        add_to_cart(self.user, self.product.id)

        with self.assertRaises(OrderValidationError):
            place_order(self.user, ADDRESS, 'BARTER')

    def test_deleted_product_line_dropped(self):
        """
        Test: A cart line whose product was deleted is dropped, not fatal.
        """
        add_to_cart(self.user, self.product.id, quantity=1)
        add_to_cart(self.user, self.rug.id, quantity=1, size_variant_id=self.rug_small.id)
        self.rug.delete()

        order = self.place_online().order

        self.assertEqual(order.items.count(), 1)
        self.assertEqual(order.items.get().product, self.product)
        self.assertEqual(order.total_amount, Decimal('100.00'))

    def test_all_lines_deleted_rejected(self):
        add_to_cart(self.user, self.product.id)
        self.product.delete()

        with self.assertRaises(OrderValidationError) as context:
            place_order(self.user, ADDRESS, 'ONLINE')

        self.assertIn('no valid products', str(context.exception))
        self.assertEqual(Order.objects.count(), 0)

    def test_deleted_size_variant_line_dropped(self):
        """
        Test: A line whose chosen size was deleted is dropped, not sold as the base product.

        Given: Cart with a curtain and a '3x5 ft' rug
        When: The '3x5 ft' variant is deleted before checkout
        Then: Only the curtain is ordered
        """
        add_to_cart(self.user, self.product.id, quantity=1)
        add_to_cart(self.user, self.rug.id, quantity=1, size_variant_id=self.rug_small.id)
        self.rug_small.delete()

        order = place_order(self.user, ADDRESS, 'CASH_ON_DELIVERY').order

        self.assertEqual(order.items.count(), 1)
        self.assertEqual(order.items.get().product, self.product)
        self.assertEqual(order.total_amount, Decimal('100.00'))
        self.assertFalse(order.items.filter(product=self.rug).exists())

    def test_only_deleted_size_variant_lines_rejected(self):
        add_to_cart(self.user, self.rug.id, quantity=1, size_variant_id=self.rug_small.id)
        self.rug_small.delete()

        with self.assertRaises(OrderValidationError):
            place_order(self.user, ADDRESS, 'CASH_ON_DELIVERY')

        self.assertEqual(Order.objects.count(), 0)

    def test_order_expired_during_gateway_call(self):
        """
        Test: Order removed by the cleanup task while the intent was being created.

        Then: GatewayUnavailableError instead of a database error, cart kept
        """
        add_to_cart(self.user, self.product.id, quantity=1)

        def create_intent_after_expiry(amount, currency, receipt):
            Order.objects.filter(order_number=receipt).delete()
            return fake_intent('order_LATE')(amount, currency, receipt)

        with patch('orders.services.get_gateway') as get_gateway:
            get_gateway.return_value.create_intent.side_effect = create_intent_after_expiry
            with self.assertRaises(GatewayUnavailableError) as context:
                place_order(self.user, ADDRESS, 'ONLINE')

        self.assertIn('expired', str(context.exception))
        self.assertFalse(Order.objects.filter(gateway_order_id='order_LATE').exists())
        self.assertEqual(len(get_cart_lines(self.user)), 1)

    def test_gateway_failure_rolls_back_order(self):
        """
        Test: No PENDING order without intent survives a gateway failure.
        """
        add_to_cart(self.user, self.product.id, quantity=2)

        with patch('orders.services.get_gateway') as get_gateway:
            get_gateway.return_value.create_intent.side_effect = PaymentGatewayError('timed out')
            with self.assertRaises(GatewayUnavailableError):
                place_order(self.user, ADDRESS, 'ONLINE')

        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(OrderItem.objects.count(), 0)
        # Cart is kept so the customer can retry
        self.assertEqual(len(get_cart_lines(self.user)), 1)

    def test_unexpected_gateway_error_rolls_back_order(self):
        add_to_cart(self.user, self.product.id)

        with patch('orders.services.get_gateway') as get_gateway:
            get_gateway.return_value.create_intent.side_effect = RuntimeError('boom')
            with self.assertRaises(RuntimeError):
                place_order(self.user, ADDRESS, 'ONLINE')

        self.assertEqual(Order.objects.count(), 0)


class ConfirmPaymentTestCase(CheckoutTestMixin, TestCase):
    """Test cases for payment confirmation."""

    def setUp(self):
        super().setUp()
        add_to_cart(self.user, self.product.id, quantity=2)
        self.order = self.place_online().order

    def test_end_to_end_confirmation(self):
        """
        Test: A valid confirmation pays the order, reserves stock, clears cart.

        Given: ONLINE order for 2 units at 100, stock 5
        When: Confirming with a valid signature
        Then: PAID/CONFIRMED, stock 3, cart empty
        """
        result = confirm_payment('order_TEST1', 'pay_TEST1', sign('order_TEST1', 'pay_TEST1'))

        self.assertFalse(result.replayed)
        order = result.order
        self.assertEqual(order.payment_status, Order.PaymentStatus.PAID)
        self.assertEqual(order.order_status, Order.Status.CONFIRMED)
        self.assertEqual(order.gateway_payment_id, 'pay_TEST1')

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)
        self.assertEqual(get_cart_lines(self.user), [])

    def test_confirmation_is_idempotent(self):
        """
        Test: Repeating a confirmation decrements stock only once.
        """
        signature = sign('order_TEST1', 'pay_TEST1')
        confirm_payment('order_TEST1', 'pay_TEST1', signature)
        add_to_cart(self.user, self.product.id, quantity=1)

        result = confirm_payment('order_TEST1', 'pay_TEST1', signature)

        self.assertTrue(result.replayed)
        self.assertEqual(result.order.payment_status, Order.PaymentStatus.PAID)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)
        # Replays have no side effects: the new cart line survives
        self.assertEqual(len(get_cart_lines(self.user)), 1)

    def test_webhook_after_client_confirmation_is_replay(self):
        confirm_payment('order_TEST1', 'pay_TEST1', sign('order_TEST1', 'pay_TEST1'))

        result = capture_payment('order_TEST1', 'pay_TEST1', payment_method='upi')

        self.assertTrue(result.replayed)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)

    def test_lost_race_does_not_reserve_twice(self):
        """
        Test: A confirmer that read PENDING but loses the CAS claim is a replay.
        """
        Order.objects.filter(pk=self.order.pk).update(payment_status=Order.PaymentStatus.PAID)

        with patch.object(Order, 'is_paid', new_callable=PropertyMock, return_value=False):
            result = capture_payment('order_TEST1', 'pay_TEST1')

        self.assertTrue(result.replayed)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)

    def test_interleaved_confirmation_reserves_once(self):
        """
        Test: Webhook capture interleaved inside a client confirmation.

        Given: The client confirmation has claimed the order and is about to reserve
        When: The webhook capture for the same order runs at that moment,
            having read the order while it was still PENDING
        Then: The webhook loses the claim and replays; stock drops by 2 once
        """
        interleaved = []

        def reserve_with_webhook_interleaved(lines):
            if not interleaved:
                with patch.object(Order, 'is_paid', new_callable=PropertyMock, return_value=False):
                    interleaved.append(capture_payment('order_TEST1', 'pay_TEST1', 'upi'))
            return ledger_reserve(lines)

        with patch('orders.services.reserve', side_effect=reserve_with_webhook_interleaved) as reserve:
            result = confirm_payment('order_TEST1', 'pay_TEST1', sign('order_TEST1', 'pay_TEST1'))

        self.assertEqual(reserve.call_count, 1)
        self.assertFalse(result.replayed)
        self.assertEqual(len(interleaved), 1)
        self.assertTrue(interleaved[0].replayed)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)
        self.assertEqual(result.order.payment_status, Order.PaymentStatus.PAID)
        self.assertEqual(result.order.payment_method, '')

    def test_deleted_variant_after_placement_is_shortfall(self):
        """
        Test: A variant deleted after placement is never taken from the product counter.

        Given: Rug stock 10, an order for 2 of its '3x5 ft' size
        When: The variant is deleted and the payment is captured
        Then: InsufficientStockError, rug stock still 10, order unpaid
        """
        Product.objects.filter(pk=self.rug.pk).update(stock_quantity=10)
        other = User.objects.create_user(username='ravi', email='ravi@example.com')
        add_to_cart(other, self.rug.id, quantity=2, size_variant_id=self.rug_small.id)
        order = self.place_online(user=other, gateway_order_id='order_RUG').order
        self.rug_small.delete()

        with self.assertRaises(InsufficientStockError) as context:
            capture_payment('order_RUG', 'pay_RUG')

        self.assertTrue(context.exception.shortfalls[0].missing)
        self.rug.refresh_from_db()
        self.assertEqual(self.rug.stock_quantity, 10)
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PaymentStatus.PENDING)

    def test_cancelled_order_refuses_payment(self):
        """
        Test: A late payment for a cancelled order does not revive it.

        Then: OrderCancelledError, order stays CANCELLED and unpaid, no stock taken
        """
        Order.objects.filter(pk=self.order.pk).update(order_status=Order.Status.CANCELLED)

        with self.assertRaises(OrderCancelledError) as context:
            confirm_payment('order_TEST1', 'pay_TEST1', sign('order_TEST1', 'pay_TEST1'))

        self.assertEqual(context.exception.gateway_payment_id, 'pay_TEST1')
        self.order.refresh_from_db()
        self.assertEqual(self.order.order_status, Order.Status.CANCELLED)
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PENDING)
        self.assertIn('refunded', self.order.failure_reason)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)

    def test_cancelled_while_confirming_refuses_payment(self):
        """
        Test: Cancellation that lands between the read and the claim still wins.
        """
        real_get = Order.objects.get

        def get_then_cancel(*args, **kwargs):
            order = real_get(*args, **kwargs)
            Order.objects.filter(pk=order.pk).update(order_status=Order.Status.CANCELLED)
            return order

        with patch.object(Order.objects, 'get', side_effect=get_then_cancel):
            with self.assertRaises(OrderCancelledError):
                capture_payment('order_TEST1', 'pay_TEST1')

        self.order.refresh_from_db()
        self.assertEqual(self.order.order_status, Order.Status.CANCELLED)
        self.assertFalse(self.order.is_paid)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)

    def test_signature_for_other_payment_rejected(self):
        """
        Test: A signature computed for another payment id is rejected.
        """
        with self.assertRaises(SignatureMismatchError):
            confirm_payment('order_TEST1', 'pay_TEST1', sign('order_TEST1', 'pay_OTHER'))

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PENDING)
        self.assertEqual(self.order.order_status, Order.Status.PLACED)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)

    def test_unknown_gateway_order_not_found(self):
        with self.assertRaises(OrderNotFoundError):
            confirm_payment('order_NOPE', 'pay_TEST1', sign('order_NOPE', 'pay_TEST1'))

    def test_receipt_mismatch_not_found(self):
        with self.assertRaises(OrderNotFoundError):
            confirm_payment(
                'order_TEST1', 'pay_TEST1', sign('order_TEST1', 'pay_TEST1'), receipt='ORD-9999'
            )
        self.order.refresh_from_db()
        self.assertFalse(self.order.is_paid)

    def test_insufficient_stock_aborts_whole_confirmation(self):
        """
        Test: One short line rolls back every decrement and the PAID claim.
        """
        other = User.objects.create_user(username='ravi', email='ravi@example.com')
        add_to_cart(other, self.product.id, quantity=1)
        add_to_cart(other, self.rug.id, quantity=4, size_variant_id=self.rug_small.id)
        order = self.place_online(user=other, gateway_order_id='order_TEST2').order

        with self.assertRaises(InsufficientStockError) as context:
            confirm_payment('order_TEST2', 'pay_TEST2', sign('order_TEST2', 'pay_TEST2'))

        shortfalls = context.exception.shortfalls
        self.assertEqual(len(shortfalls), 1)
        self.assertEqual(shortfalls[0].size_variant_id, self.rug_small.id)
        self.assertEqual(shortfalls[0].requested, 4)
        self.assertEqual(shortfalls[0].available, 3)

        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PaymentStatus.PENDING)
        self.assertEqual(order.order_status, Order.Status.PLACED)
        self.assertIn('3x5 ft', order.failure_reason)

        self.product.refresh_from_db()
        self.rug_small.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)
        self.assertEqual(self.rug_small.stock_quantity, 3)
        # Cart is only cleared on success
        self.assertEqual(len(get_cart_lines(other)), 2)

    def test_stock_exhaustion_between_two_orders(self):
        """
        Test: Two orders for the whole stock: one confirms, one is short.

        Given: Stock 2 and two PENDING orders of 2 units each
        When: Both are confirmed
        Then: Exactly one succeeds; final stock is 0 and out of stock
        """
        Product.objects.filter(pk=self.product.pk).update(stock_quantity=2)
        other = User.objects.create_user(username='ravi', email='ravi@example.com')
        add_to_cart(other, self.product.id, quantity=2)
        self.place_online(user=other, gateway_order_id='order_TEST2')

        outcomes = []
        for gateway_order_id, payment_id in [('order_TEST1', 'pay_1'), ('order_TEST2', 'pay_2')]:
            try:
                confirm_payment(gateway_order_id, payment_id, sign(gateway_order_id, payment_id))
                outcomes.append('paid')
            except InsufficientStockError:
                outcomes.append('short')

        self.assertEqual(sorted(outcomes), ['paid', 'short'])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 0)
        self.assertFalse(self.product.in_stock)
        self.assertEqual(Order.objects.filter(payment_status=Order.PaymentStatus.PAID).count(), 1)

    def test_side_effect_failure_does_not_veto_payment(self):
        with patch('orders.services.clear_cart', side_effect=RuntimeError('cart store down')):
            result = confirm_payment('order_TEST1', 'pay_TEST1', sign('order_TEST1', 'pay_TEST1'))

        self.assertEqual(result.order.payment_status, Order.PaymentStatus.PAID)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)

    def test_notification_queue_failure_does_not_veto_payment(self):
        with patch('orders.tasks.send_order_confirmation.delay', side_effect=ConnectionError('broker down')):
            result = confirm_payment('order_TEST1', 'pay_TEST1', sign('order_TEST1', 'pay_TEST1'))

        self.assertTrue(result.order.is_paid)

    def test_confirmation_sends_notification(self):
        confirm_payment('order_TEST1', 'pay_TEST1', sign('order_TEST1', 'pay_TEST1'))

        recipients = [r for m in mail.outbox for r in m.to]
        self.assertIn('asha@example.com', recipients)
        self.assertIn(settings.ORDER_NOTIFICATION_EMAIL, recipients)


class PaymentFailedEventTestCase(CheckoutTestMixin, TestCase):
    """Test cases for gateway payment failure events."""

    def setUp(self):
        super().setUp()
        add_to_cart(self.user, self.product.id, quantity=2)
        self.order = self.place_online().order

    def test_failure_marks_order_retryable(self):
        self.assertTrue(handle_payment_failed_event('order_TEST1'))

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.FAILED)
        self.assertEqual(self.order.order_status, Order.Status.PLACED)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)

    def test_failed_order_can_be_confirmed_on_retry(self):
        handle_payment_failed_event('order_TEST1')

        result = confirm_payment('order_TEST1', 'pay_RETRY', sign('order_TEST1', 'pay_RETRY'))

        self.assertEqual(result.order.payment_status, Order.PaymentStatus.PAID)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)

    def test_failure_never_downgrades_paid_order(self):
        confirm_payment('order_TEST1', 'pay_TEST1', sign('order_TEST1', 'pay_TEST1'))

        self.assertFalse(handle_payment_failed_event('order_TEST1'))

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PAID)
        self.assertEqual(self.order.order_status, Order.Status.CONFIRMED)

    def test_failure_for_unknown_order(self):
        with self.assertRaises(OrderNotFoundError):
            handle_payment_failed_event('order_NOPE')


class EnsurePaymentIntentTestCase(CheckoutTestMixin, TestCase):
    """Test cases for retrieving or creating an order's gateway intent."""

    def setUp(self):
        super().setUp()
        add_to_cart(self.user, self.product.id, quantity=2)
        self.order = self.place_online().order

    def test_existing_intent_returned_without_gateway_call(self):
        with patch('orders.services.get_gateway') as get_gateway:
            intent = ensure_payment_intent(self.order)
            get_gateway.assert_not_called()

        self.assertEqual(intent.id, 'order_TEST1')
        self.assertEqual(intent.amount, 20000)
        self.assertEqual(intent.receipt, self.order.order_number)

    def test_missing_intent_created_and_attached(self):
        Order.objects.filter(pk=self.order.pk).update(gateway_order_id='')
        self.order.refresh_from_db()

        with patch('orders.services.get_gateway') as get_gateway:
            get_gateway.return_value.create_intent.side_effect = fake_intent('order_NEW')
            intent = ensure_payment_intent(self.order)

        self.assertEqual(intent.id, 'order_NEW')
        self.order.refresh_from_db()
        self.assertEqual(self.order.gateway_order_id, 'order_NEW')

    def test_paid_order_rejected(self):
        confirm_payment('order_TEST1', 'pay_TEST1', sign('order_TEST1', 'pay_TEST1'))
        self.order.refresh_from_db()

        with self.assertRaises(OrderValidationError):
            ensure_payment_intent(self.order)

    def test_cancelled_order_rejected(self):
        Order.objects.filter(pk=self.order.pk).update(order_status=Order.Status.CANCELLED)
        self.order.refresh_from_db()

        with patch('orders.services.get_gateway') as get_gateway:
            with self.assertRaises(OrderValidationError):
                ensure_payment_intent(self.order)
            get_gateway.assert_not_called()

    def test_gateway_failure_reported(self):
        Order.objects.filter(pk=self.order.pk).update(gateway_order_id='')
        self.order.refresh_from_db()

        with patch('orders.services.get_gateway') as get_gateway:
            get_gateway.return_value.create_intent.side_effect = PaymentGatewayError('502')
            with self.assertRaises(GatewayUnavailableError):
                ensure_payment_intent(self.order)

        # Order survives: it was written by an earlier, successful placement
        self.assertTrue(Order.objects.filter(pk=self.order.pk).exists())


class OrderTaskTestCase(CheckoutTestMixin, TestCase):
    """Test cases for background order tasks."""

    def _order(self, **kwargs):
        fields = dict(
            user=self.user,
            order_number=f"ORD-{next_order_sequence()}",
            payment_mode=Order.PaymentMode.ONLINE,
            shipping_full_name=ADDRESS['full_name'],
            shipping_phone=ADDRESS['phone'],
            shipping_street=ADDRESS['street'],
            shipping_city=ADDRESS['city'],
            shipping_state=ADDRESS['state'],
            shipping_postal_code=ADDRESS['postal_code'],
            shipping_country=ADDRESS['country'],
        )
        fields.update(kwargs)
        return Order.objects.create(**fields)

    def test_expire_abandoned_online_orders(self):
        stale = self._order()
        recent = self._order()
        with_intent = self._order(gateway_order_id='order_KEEP')
        Order.objects.filter(pk__in=[stale.pk, with_intent.pk]).update(
            created_at=timezone.now() - timedelta(hours=2)
        )

        result = expire_abandoned_online_orders()

        self.assertEqual(result, {'processed': 1})
        self.assertFalse(Order.objects.filter(pk=stale.pk).exists())
        self.assertTrue(Order.objects.filter(pk=recent.pk).exists())
        self.assertTrue(Order.objects.filter(pk=with_intent.pk).exists())

    def test_confirmation_skipped_for_unpaid_online_order(self):
        order = self._order(gateway_order_id='order_X')

        result = send_order_confirmation.apply(args=[order.id]).get()

        self.assertEqual(result['status'], 'skipped')
        self.assertEqual(len(mail.outbox), 0)

    def test_confirmation_for_missing_order(self):
        result = send_order_confirmation.apply(args=[987654]).get()

        self.assertEqual(result['status'], 'error')


class OrderViewTestCase(CheckoutTestMixin, TestCase):
    """Test cases for the order API."""

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def test_place_online_order(self):
        add_to_cart(self.user, self.product.id, quantity=2)

        with patch('orders.services.get_gateway') as get_gateway:
            get_gateway.return_value.create_intent.side_effect = fake_intent('order_API')
            response = self.client.post(
                '/api/orders/',
                {'payment_mode': 'ONLINE', 'shipping_address': ADDRESS},
                format='json'
            )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['order']['total_amount'], '200.00')
        self.assertEqual(response.data['payment']['gateway_order_id'], 'order_API')
        self.assertEqual(response.data['payment']['amount'], 20000)

    def test_place_order_empty_cart(self):
        response = self.client.post(
            '/api/orders/',
            {'payment_mode': 'CASH_ON_DELIVERY', 'shipping_address': ADDRESS},
            format='json'
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn('empty', response.data['detail'].lower())

    def test_place_order_missing_address_field(self):
        address = dict(ADDRESS)
        del address['country']
        response = self.client.post(
            '/api/orders/',
            {'payment_mode': 'CASH_ON_DELIVERY', 'shipping_address': address},
            format='json'
        )

        self.assertEqual(response.status_code, 400)

    def test_place_order_gateway_down(self):
        add_to_cart(self.user, self.product.id)

        with patch('orders.services.get_gateway') as get_gateway:
            get_gateway.return_value.create_intent.side_effect = PaymentGatewayError('down')
            response = self.client.post(
                '/api/orders/',
                {'payment_mode': 'ONLINE', 'shipping_address': ADDRESS},
                format='json'
            )

        self.assertEqual(response.status_code, 503)
        self.assertEqual(Order.objects.count(), 0)

    def test_list_and_detail_only_own_orders(self):
        add_to_cart(self.user, self.product.id)
        mine = place_order(self.user, ADDRESS, 'CASH_ON_DELIVERY').order
        other = User.objects.create_user(username='ravi')
        add_to_cart(other, self.product.id)
        theirs = place_order(other, ADDRESS, 'CASH_ON_DELIVERY').order

        response = self.client.get('/api/orders/')
        self.assertEqual(response.status_code, 200)
        numbers = [o['order_number'] for o in response.data['results']]
        self.assertEqual(numbers, [mine.order_number])

        response = self.client.get(f'/api/orders/{mine.order_number}/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['shipping_address']['city'], 'Bengaluru')

        response = self.client.get(f'/api/orders/{theirs.order_number}/')
        self.assertEqual(response.status_code, 404)

    def test_requires_authentication(self):
        response = APIClient().get('/api/orders/')

        self.assertIn(response.status_code, (401, 403))


@skipUnless(connection.vendor == 'postgresql', 'Row-level locking needs PostgreSQL')
class ConcurrentConfirmationTestCase(CheckoutTestMixin, TransactionTestCase):
    """
    Concurrent confirmations against a real database.
    Uses TransactionTestCase for proper multi-threading support.
    """

    def _run_concurrently(self, *calls):
        results = [None] * len(calls)

        def run(index, func, args):
            try:
                results[index] = func(*args)
            except Exception as e:
                results[index] = e
            finally:
                connection.close()

        threads = [
            threading.Thread(target=run, args=(i, func, args))
            for i, (func, args) in enumerate(calls)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return results

    def test_client_and_webhook_race_reserves_once(self):
        """
        Test: Client verification and webhook racing for one order.

        Then: Exactly one reservation; the other call is a replay.
        """
        add_to_cart(self.user, self.product.id, quantity=2)
        self.place_online()
        signature = sign('order_TEST1', 'pay_TEST1')

        results = self._run_concurrently(
            (confirm_payment, ('order_TEST1', 'pay_TEST1', signature)),
            (capture_payment, ('order_TEST1', 'pay_TEST1')),
        )

        self.assertEqual(sorted(r.replayed for r in results), [False, True])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)

    def test_concurrent_orders_no_overselling(self):
        """
        Test: Two orders for the whole stock confirming simultaneously.

        Given: Stock 2, two orders of 2 units each
        Then: One PAID, one InsufficientStockError, final stock 0
        """
        Product.objects.filter(pk=self.product.pk).update(stock_quantity=2)
        other = User.objects.create_user(username='ravi', email='ravi@example.com')
        add_to_cart(self.user, self.product.id, quantity=2)
        add_to_cart(other, self.product.id, quantity=2)
        self.place_online(gateway_order_id='order_A')
        self.place_online(user=other, gateway_order_id='order_B')

        results = self._run_concurrently(
            (confirm_payment, ('order_A', 'pay_A', sign('order_A', 'pay_A'))),
            (confirm_payment, ('order_B', 'pay_B', sign('order_B', 'pay_B'))),
        )

        errors = [r for r in results if isinstance(r, InsufficientStockError)]
        self.assertEqual(len(errors), 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 0)
        self.assertEqual(CartItem.objects.filter(cart__user__in=[self.user, other]).count(), 1)
