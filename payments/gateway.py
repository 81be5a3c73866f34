"""
Payment Gateway Adapter - all interaction with Razorpay.

Exposes:
    - RazorpayGateway.create_intent(): create a remote order (payment intent)
    - verify_signature(): HMAC-SHA256 check over a canonical payload
    - verify_payment_signature(): check of the client checkout callback
    - parse_webhook_event(): authenticate and decode a webhook delivery

Webhook signatures are computed by the gateway over the exact bytes it
sent, so they are verified against the raw request body before any JSON
parsing takes place.
"""
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional, Union

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

CAPTURE_EVENTS = frozenset({'payment.captured', 'payment.authorized'})
FAILURE_EVENTS = frozenset({'payment.failed'})


class PaymentGatewayError(Exception):
    """Raised when the gateway cannot be reached or rejects a request."""
    pass


class SignatureMismatchError(Exception):
    """Raised when a callback or webhook signature does not verify."""
    pass


class WebhookPayloadError(Exception):
    """Raised when an authenticated webhook body cannot be decoded."""
    pass


@dataclass(frozen=True)
class PaymentIntent:
    """A gateway-side order awaiting payment."""
    id: str
    amount: int  # minor units (paise)
    currency: str
    receipt: str
    key_id: str = ''

    def as_dict(self) -> Dict:
        return {
            'gateway_order_id': self.id,
            'amount': self.amount,
            'currency': self.currency,
            'receipt': self.receipt,
            'key_id': self.key_id,
        }


@dataclass(frozen=True)
class WebhookEvent:
    """An authenticated, decoded webhook delivery."""
    event: str
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    method: str = ''
    details: Dict = field(default_factory=dict)

    @property
    def is_capture(self) -> bool:
        return self.event in CAPTURE_EVENTS

    @property
    def is_failure(self) -> bool:
        return self.event in FAILURE_EVENTS


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal currency amount to integer paise."""
    return int((Decimal(amount) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def verify_signature(payload: Union[bytes, str], signature: str, secret: str) -> bool:
    """
    Check a hex HMAC-SHA256 signature over payload.

    Comparison is constant-time. A missing secret or signature never
    verifies.
    """
    if not signature or not secret:
        return False
    if isinstance(payload, str):
        payload = payload.encode('utf-8')
    expected = hmac.new(secret.encode('utf-8'), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def verify_payment_signature(
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    secret: Optional[str] = None,
) -> bool:
    """Verify the signature returned to the client by the checkout widget."""
    if secret is None:
        secret = settings.RAZORPAY_KEY_SECRET
    return verify_signature(f"{gateway_order_id}|{gateway_payment_id}", signature, secret)


def parse_webhook_event(
    raw_body: bytes,
    header_signature: str,
    secret: Optional[str] = None,
) -> WebhookEvent:
    """
    Authenticate a webhook body and decode it into a WebhookEvent.

    Args:
        raw_body: The request body exactly as received
        header_signature: Value of the X-Razorpay-Signature header
        secret: Webhook secret (defaults to RAZORPAY_WEBHOOK_SECRET)

    Raises:
        SignatureMismatchError: Signature missing or wrong
        WebhookPayloadError: Body is not a JSON object with an event name,
            or a payment event without a payment entity
    """
    if secret is None:
        secret = settings.RAZORPAY_WEBHOOK_SECRET
    if not verify_signature(raw_body, header_signature, secret):
        raise SignatureMismatchError("Invalid webhook signature")

    try:
        body = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as e:
        raise WebhookPayloadError(f"Malformed webhook body: {e}")

    if not isinstance(body, dict) or not body.get('event'):
        raise WebhookPayloadError("Webhook body has no event name")

    event_name = body['event']
    entity = ((body.get('payload') or {}).get('payment') or {}).get('entity')

    if entity is None:
        if event_name in CAPTURE_EVENTS or event_name in FAILURE_EVENTS:
            raise WebhookPayloadError(f"{event_name} without a payment entity")
        return WebhookEvent(event=event_name)

    details = {
        'bank': entity.get('bank'),
        'vpa': entity.get('vpa'),
        'card_last4': (entity.get('card') or {}).get('last4'),
    }
    return WebhookEvent(
        event=event_name,
        order_id=entity.get('order_id'),
        payment_id=entity.get('id'),
        method=entity.get('method') or '',
        details={k: v for k, v in details.items() if v},
    )


class RazorpayGateway:
    """
    Thin client for the Razorpay Orders API.
    """

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        self.api_url = (api_url or settings.RAZORPAY_API_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else settings.RAZORPAY_TIMEOUT_SECONDS

    def create_intent(self, amount: Decimal, currency: str, receipt: str) -> PaymentIntent:
        """
        Create a remote order for amount (major units) with auto-capture.

        Raises:
            PaymentGatewayError: Network failure, timeout, non-2xx response
                or a response without an order id
        """
        payload = {
            'amount': to_minor_units(amount),
            'currency': currency,
            'receipt': receipt,
            'payment_capture': 1,
        }

        try:
            response = requests.post(
                f"{self.api_url}/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Gateway order creation failed for receipt {receipt}: {e}")
            raise PaymentGatewayError(f"Payment gateway unavailable: {e}") from e

        if not data.get('id'):
            logger.error(f"Gateway returned no order id for receipt {receipt}: {data}")
            raise PaymentGatewayError("Payment gateway returned no order id")

        logger.info(f"Created gateway order {data['id']} for receipt {receipt}")
        return PaymentIntent(
            id=data['id'],
            amount=data.get('amount', payload['amount']),
            currency=data.get('currency', currency),
            receipt=receipt,
            key_id=self.key_id,
        )


def get_gateway() -> RazorpayGateway:
    return RazorpayGateway()
