"""
Tests for the payment gateway adapter and payment endpoints.

Test Cases:
1. Signature verification (client callback and webhook raw body)
2. Webhook decoding
3. Intent creation against a mocked gateway API
4. Verify, webhook and create-order endpoints
"""
import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.conf import settings
from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from cart.services import add_to_cart, get_cart_lines
from inventory.models import Product
from orders.models import Order
from orders.services import place_order
from payments.gateway import (
    parse_webhook_event,
    to_minor_units,
    verify_payment_signature,
    verify_signature,
    PaymentGatewayError,
    PaymentIntent,
    RazorpayGateway,
    SignatureMismatchError,
    WebhookPayloadError,
)

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


def hex_hmac(secret, payload):
    if isinstance(payload, str):
        payload = payload.encode()
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def webhook_body(event, order_id='order_TEST1', payment_id='pay_TEST1', **entity):
    entity.update({'id': payment_id, 'order_id': order_id})
    return json.dumps({
        'event': event,
        'payload': {'payment': {'entity': entity}},
    }).encode()


class SignatureTestCase(TestCase):
    """Test cases for HMAC verification."""

    def test_valid_signature(self):
        self.assertTrue(verify_signature(b'payload', hex_hmac('s3cret', b'payload'), 's3cret'))
        self.assertTrue(verify_signature('payload', hex_hmac('s3cret', b'payload'), 's3cret'))

    def test_wrong_secret_or_payload(self):
        signature = hex_hmac('s3cret', 'payload')

        self.assertFalse(verify_signature('payload', signature, 'other'))
        self.assertFalse(verify_signature('payload!', signature, 's3cret'))

    def test_empty_secret_or_signature_never_verifies(self):
        self.assertFalse(verify_signature('payload', hex_hmac('', 'payload'), ''))
        self.assertFalse(verify_signature('payload', '', 's3cret'))

    def test_payment_signature_payload(self):
        signature = hex_hmac(settings.RAZORPAY_KEY_SECRET, 'order_A|pay_B')

        self.assertTrue(verify_payment_signature('order_A', 'pay_B', signature))
        self.assertFalse(verify_payment_signature('order_A', 'pay_C', signature))
        self.assertFalse(verify_payment_signature('order_B', 'pay_A', signature))

    def test_minor_units(self):
        self.assertEqual(to_minor_units(Decimal('200.00')), 20000)
        self.assertEqual(to_minor_units(Decimal('10.005')), 1001)


class ParseWebhookTestCase(TestCase):
    """Test cases for webhook authentication and decoding."""

    secret = 'whsec_test_secret'

    def test_capture_event_decoded(self):
        body = webhook_body(
            'payment.captured', method='card', card={'last4': '4242'}, bank=None
        )

        event = parse_webhook_event(body, hex_hmac(self.secret, body))

        self.assertTrue(event.is_capture)
        self.assertEqual(event.order_id, 'order_TEST1')
        self.assertEqual(event.payment_id, 'pay_TEST1')
        self.assertEqual(event.method, 'card')
        self.assertEqual(event.details, {'card_last4': '4242'})

    def test_signature_checked_on_raw_bytes(self):
        """
        Test: Re-serializing the body breaks the signature.

        The gateway signs its exact bytes; a semantically equal body with
        different whitespace must not verify.
        """
        body = webhook_body('payment.captured')
        signature = hex_hmac(self.secret, body)
        reserialized = json.dumps(json.loads(body), indent=2).encode()

        with self.assertRaises(SignatureMismatchError):
            parse_webhook_event(reserialized, signature)

    def test_missing_signature(self):
        with self.assertRaises(SignatureMismatchError):
            parse_webhook_event(webhook_body('payment.captured'), '')

    def test_malformed_json(self):
        body = b'{"event": "payment.captured"'

        with self.assertRaises(WebhookPayloadError):
            parse_webhook_event(body, hex_hmac(self.secret, body))

    def test_payment_event_without_entity(self):
        body = json.dumps({'event': 'payment.failed', 'payload': {'payment': None}}).encode()

        with self.assertRaises(WebhookPayloadError):
            parse_webhook_event(body, hex_hmac(self.secret, body))

    def test_unrelated_event(self):
        body = json.dumps({'event': 'refund.created', 'payload': {}}).encode()

        event = parse_webhook_event(body, hex_hmac(self.secret, body))

        self.assertFalse(event.is_capture)
        self.assertFalse(event.is_failure)
        self.assertIsNone(event.order_id)


class RazorpayGatewayTestCase(TestCase):
    """Test cases for intent creation."""

    def setUp(self):
        self.gateway = RazorpayGateway()

    @patch('payments.gateway.requests.post')
    def test_create_intent(self, mock_post):
        mock_post.return_value.json.return_value = {
            'id': 'order_N5xyz', 'amount': 20000, 'currency': 'INR', 'receipt': 'ORD-1001'
        }

        intent = self.gateway.create_intent(Decimal('200.00'), 'INR', 'ORD-1001')

        self.assertEqual(intent, PaymentIntent(
            id='order_N5xyz', amount=20000, currency='INR', receipt='ORD-1001',
            key_id='rzp_test_key'
        ))
        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], 'https://api.razorpay.test/v1/orders')
        self.assertEqual(kwargs['json'], {
            'amount': 20000, 'currency': 'INR', 'receipt': 'ORD-1001', 'payment_capture': 1
        })
        self.assertEqual(kwargs['auth'], ('rzp_test_key', 'rzp_test_secret'))
        self.assertEqual(kwargs['timeout'], settings.RAZORPAY_TIMEOUT_SECONDS)

    @patch('payments.gateway.requests.post')
    def test_timeout(self, mock_post):
        mock_post.side_effect = requests.Timeout('read timed out')

        with self.assertRaises(PaymentGatewayError):
            self.gateway.create_intent(Decimal('200.00'), 'INR', 'ORD-1001')

    @patch('payments.gateway.requests.post')
    def test_error_status(self, mock_post):
        mock_post.return_value.raise_for_status.side_effect = requests.HTTPError('401')

        with self.assertRaises(PaymentGatewayError):
            self.gateway.create_intent(Decimal('200.00'), 'INR', 'ORD-1001')

    @patch('payments.gateway.requests.post')
    def test_response_without_id(self, mock_post):
        mock_post.return_value.json.return_value = {'error': {'code': 'BAD_REQUEST_ERROR'}}

        with self.assertRaises(PaymentGatewayError):
            self.gateway.create_intent(Decimal('200.00'), 'INR', 'ORD-1001')


class PaymentEndpointTestCase(TestCase):
    """Test cases for the payment API."""

    def setUp(self):
        self.user = User.objects.create_user(username='asha', email='asha@example.com')
        self.client = APIClient()
        self.client.force_authenticate(self.user)
        self.product = Product.objects.create(
            name='Velvet Curtain',
            price=Decimal('100.00'),
            category=Product.Category.CURTAINS_FURNISHING,
            stock_quantity=5
        )
        add_to_cart(self.user, self.product.id, quantity=2)

        gateway = MagicMock()
        gateway.create_intent.return_value = PaymentIntent(
            'order_TEST1', 20000, 'INR', 'ORD-1001', 'rzp_test_key'
        )
        with patch('orders.services.get_gateway', return_value=gateway):
            self.order = place_order(self.user, ADDRESS, 'ONLINE').order

    def verify(self, payment_id='pay_TEST1', signature=None, **extra):
        if signature is None:
            signature = hex_hmac(settings.RAZORPAY_KEY_SECRET, f'order_TEST1|{payment_id}')
        data = {
            'gatewayOrderId': 'order_TEST1',
            'gatewayPaymentId': payment_id,
            'signature': signature,
        }
        data.update(extra)
        return self.client.post('/api/payments/razorpay/verify/', data, format='json')

    def post_webhook(self, body, signature=None):
        if signature is None:
            signature = hex_hmac(settings.RAZORPAY_WEBHOOK_SECRET, body)
        return APIClient().post(
            '/api/payments/razorpay/webhook/',
            data=body,
            content_type='application/json',
            HTTP_X_RAZORPAY_SIGNATURE=signature
        )

    def test_verify_confirms_payment(self):
        response = self.verify(receipt='ORD-1001')

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['success'])
        self.assertFalse(response.data['replayed'])
        self.assertEqual(response.data['order']['payment_status'], 'PAID')
        self.assertEqual(response.data['order']['order_status'], 'CONFIRMED')
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)

    def test_verify_twice_is_replay(self):
        self.verify()
        response = self.verify()

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['replayed'])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)

    def test_verify_bad_signature(self):
        response = self.verify(signature='0' * 64)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data, {'success': False, 'error': 'Invalid signature'})
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PENDING)

    def test_verify_missing_fields(self):
        response = self.client.post(
            '/api/payments/razorpay/verify/', {'gatewayOrderId': 'order_TEST1'}, format='json'
        )

        self.assertEqual(response.status_code, 400)

    def test_verify_insufficient_stock(self):
        Product.objects.filter(pk=self.product.pk).update(stock_quantity=1)

        response = self.verify()

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['shortfalls'][0]['available'], 1)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PENDING)

    def test_webhook_captures_payment(self):
        body = webhook_body('payment.captured', method='upi', vpa='asha@okbank')

        response = self.post_webhook(body)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, {'ok': True, 'result': 'confirmed'})
        self.order.refresh_from_db()
        self.assertTrue(self.order.is_paid)
        self.assertEqual(self.order.payment_method, 'upi')
        self.assertEqual(self.order.payment_details, {'vpa': 'asha@okbank'})
        self.assertEqual(get_cart_lines(self.user), [])

    def test_webhook_after_verify_already_processed(self):
        self.verify()

        response = self.post_webhook(webhook_body('payment.captured'))

        self.assertEqual(response.data['result'], 'already_processed')
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)

    def test_webhook_bad_signature(self):
        body = webhook_body('payment.captured')

        response = self.post_webhook(body, signature=hex_hmac('wrong', body))

        self.assertEqual(response.status_code, 400)
        self.order.refresh_from_db()
        self.assertFalse(self.order.is_paid)

    def test_webhook_payment_failed(self):
        response = self.post_webhook(webhook_body('payment.failed'))

        self.assertEqual(response.data['result'], 'failed')
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.FAILED)
        self.assertEqual(self.order.order_status, Order.Status.PLACED)

    def test_verify_cancelled_order(self):
        Order.objects.filter(pk=self.order.pk).update(order_status=Order.Status.CANCELLED)

        response = self.verify()

        self.assertEqual(response.status_code, 409)
        self.assertTrue(response.data['refund_required'])
        self.order.refresh_from_db()
        self.assertEqual(self.order.order_status, Order.Status.CANCELLED)

    def test_webhook_capture_for_cancelled_order_flags_refund(self):
        Order.objects.filter(pk=self.order.pk).update(order_status=Order.Status.CANCELLED)

        response = self.post_webhook(webhook_body('payment.captured'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, {'ok': True, 'result': 'refund_required'})
        self.order.refresh_from_db()
        self.assertFalse(self.order.is_paid)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)

    def test_webhook_unknown_order(self):
        response = self.post_webhook(webhook_body('payment.captured', order_id='order_NOPE'))

        self.assertEqual(response.status_code, 404)

    def test_webhook_other_event_ignored(self):
        body = json.dumps({'event': 'refund.created', 'payload': {}}).encode()

        response = self.post_webhook(body)

        self.assertEqual(response.data, {'ok': True, 'result': 'ignored'})

    def test_create_order_returns_stored_intent(self):
        response = self.client.post(
            '/api/payments/razorpay/create-order/',
            {'order_number': self.order.order_number},
            format='json'
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['gateway_order_id'], 'order_TEST1')
        self.assertEqual(response.data['amount'], 20000)

    def test_create_order_for_other_users_order(self):
        other = APIClient()
        other.force_authenticate(User.objects.create_user(username='ravi'))

        response = other.post(
            '/api/payments/razorpay/create-order/',
            {'order_number': self.order.order_number},
            format='json'
        )

        self.assertEqual(response.status_code, 404)
