"""
Order Service Layer - checkout and payment confirmation.

Checkout (place_order):
1. Validate payment mode and shipping address
2. Snapshot cart lines (price captured at cart-add time) into a PLACED/PENDING order
3. ONLINE: create a gateway intent; delete the order if that fails
4. COD: clear the cart, nothing else follows

Confirmation (confirm_payment from the client, capture_payment from the webhook):
1. Authenticate (client signature, or webhook signature upstream)
2. Already PAID: idempotent replay, no side effects
3. In ONE transaction: claim the order with a compare-and-swap UPDATE
   (WHERE payment_status != 'PAID' AND order_status != 'CANCELLED'), then
   reserve stock with conditional decrements. Any shortfall rolls back both.
   A payment for a cancelled order is refused and flagged for refund.
4. After commit: clear the cart and queue the notification. These may
   fail without affecting the confirmed payment.

Both confirmation paths may run concurrently, on different servers, for the
same order; the CAS claim guarantees exactly one of them reserves stock.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from cart.services import clear_cart, get_cart_lines
from inventory.ledger import reserve, StockShortfall
from payments.gateway import (
    get_gateway,
    to_minor_units,
    verify_payment_signature,
    PaymentGatewayError,
    PaymentIntent,
    SignatureMismatchError,
    WebhookEvent,
)
from .models import Order, OrderItem, OrderSequence

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = ('full_name', 'phone', 'street', 'city', 'state', 'postal_code', 'country')


class OrderValidationError(Exception):
    """Raised when order validation fails."""
    pass


class OrderNotFoundError(Exception):
    """Raised when no order matches a gateway reference."""
    pass


class GatewayUnavailableError(Exception):
    """Raised when a payment intent could not be created; safe to retry."""
    pass


class OrderCancelledError(Exception):
    """Raised when a payment arrives for an order that was cancelled; needs a refund."""
    def __init__(self, order_number: str, gateway_payment_id: str):
        self.order_number = order_number
        self.gateway_payment_id = gateway_payment_id
        super().__init__(
            f"Order {order_number} is cancelled; payment {gateway_payment_id} must be refunded"
        )


class InsufficientStockError(Exception):
    """Raised when one or more order lines cannot be reserved."""
    def __init__(self, order_number: str, shortfalls: List[StockShortfall]):
        self.order_number = order_number
        self.shortfalls = list(shortfalls)
        details = "; ".join(str(s) for s in self.shortfalls)
        super().__init__(f"Insufficient stock for order {order_number}: {details}")


@dataclass
class PlacementResult:
    order: Order
    intent: Optional[PaymentIntent] = None


@dataclass
class ConfirmationResult:
    order: Order
    replayed: bool = False


def next_order_sequence(name: str = 'order') -> int:
    """
    Atomically increment and return the named counter.

    The increment is a single UPDATE, so concurrent callers each get a
    distinct value.
    """
    with transaction.atomic():
        OrderSequence.objects.get_or_create(name=name)
        OrderSequence.objects.filter(name=name).update(value=F('value') + 1)
        return OrderSequence.objects.values_list('value', flat=True).get(name=name)


def validate_shipping_address(address) -> Dict[str, str]:
    """
    Check every shipping field is present and non-blank.

    Raises:
        OrderValidationError: If the address is missing or incomplete
    """
    if not isinstance(address, dict):
        raise OrderValidationError("Shipping address is required")

    cleaned = {}
    missing = []
    for name in ADDRESS_FIELDS:
        value = address.get(name)
        value = str(value).strip() if value is not None else ''
        if not value:
            missing.append(name)
        cleaned[name] = value

    if missing:
        raise OrderValidationError(
            f"Shipping address is missing: {', '.join(missing)}"
        )
    return cleaned


def _stored_intent(order: Order) -> PaymentIntent:
    return PaymentIntent(
        id=order.gateway_order_id,
        amount=to_minor_units(order.total_amount),
        currency=settings.PAYMENT_CURRENCY,
        receipt=order.order_number,
        key_id=settings.RAZORPAY_KEY_ID,
    )


def place_order(user, shipping_address, payment_mode: str) -> PlacementResult:
    """
    Turn the user's cart into an order.

    Args:
        user: Order owner
        shipping_address: Dict with full_name, phone, street, city, state,
            postal_code and country
        payment_mode: 'CASH_ON_DELIVERY' or 'ONLINE'

    Returns:
        PlacementResult with the order, and the gateway intent for ONLINE orders

    Raises:
        OrderValidationError: Bad payment mode, incomplete address, empty cart
            or no cart line whose product (and chosen size) still exists
        GatewayUnavailableError: Intent creation failed (the order was deleted),
            or the order expired before the intent could be attached
    """
    if payment_mode not in Order.PaymentMode.values:
        raise OrderValidationError(f"Invalid payment mode: {payment_mode}")

    address = validate_shipping_address(shipping_address)

    lines = get_cart_lines(user)
    if not lines:
        raise OrderValidationError("Cart is empty")

    valid_lines = [
        line for line in lines
        if line.product is not None and line.product.is_active and not line.variant_removed
    ]
    if len(valid_lines) < len(lines):
        logger.warning(
            f"User {user.pk}: dropping {len(lines) - len(valid_lines)} cart line(s) "
            "for products or sizes that no longer exist"
        )
    if not valid_lines:
        raise OrderValidationError("Cart has no valid products")

    with transaction.atomic():
        order = Order.objects.create(
            user=user,
            order_number=f"ORD-{next_order_sequence()}",
            payment_mode=payment_mode,
            payment_status=Order.PaymentStatus.PENDING,
            order_status=Order.Status.PLACED,
            shipping_full_name=address['full_name'],
            shipping_phone=address['phone'],
            shipping_street=address['street'],
            shipping_city=address['city'],
            shipping_state=address['state'],
            shipping_postal_code=address['postal_code'],
            shipping_country=address['country'],
            has_custom_items=any(
                line.is_custom or line.size_variant_id for line in valid_lines
            ),
        )

        items = [
            OrderItem(
                order=order,
                product=line.product,
                product_name=line.product.name,
                size_variant=line.size_variant,
                size_variant_name=line.size_variant.name if line.size_variant else '',
                custom_size=line.custom_size,
                quantity=line.quantity,
                unit_price=line.price_at_addition,
            )
            for line in valid_lines
        ]
        OrderItem.objects.bulk_create(items)

        order.total_amount = sum((item.subtotal for item in items), Decimal('0.00'))
        order.save(update_fields=['total_amount', 'updated_at'])

    logger.info(
        f"Placed order {order.order_number} for user {user.pk}: "
        f"{len(items)} items, total {order.total_amount}, {payment_mode}"
    )

    if order.is_online:
        try:
            intent = get_gateway().create_intent(
                order.total_amount, settings.PAYMENT_CURRENCY, order.order_number
            )
        except PaymentGatewayError as e:
            order.delete()
            logger.error(f"Rolled back order {order.order_number}: {e}")
            raise GatewayUnavailableError(str(e)) from e
        except Exception:
            order.delete()
            logger.exception(f"Rolled back order {order.order_number}")
            raise

        attached = Order.objects.filter(pk=order.pk).update(
            gateway_order_id=intent.id, updated_at=timezone.now()
        )
        if not attached:
            # Expired by the cleanup task while the gateway call was running
            logger.error(
                f"Order {order.order_number} vanished before intent {intent.id} "
                "was attached; intent orphaned"
            )
            raise GatewayUnavailableError(
                f"Order {order.order_number} expired before payment was set up; please retry"
            )
        order.refresh_from_db(fields=['gateway_order_id', 'updated_at'])
        return PlacementResult(order=order, intent=intent)

    clear_cart(user)
    _queue_confirmation(order)
    return PlacementResult(order=order)


def ensure_payment_intent(order: Order) -> PaymentIntent:
    """
    Return the order's gateway intent, creating it only if none is stored.

    A concurrent caller may create a second remote intent; only the first
    one attached to the order is ever used.

    Raises:
        OrderValidationError: Order is COD, already paid or cancelled
        GatewayUnavailableError: Intent creation failed
    """
    if not order.is_online:
        raise OrderValidationError(f"Order {order.order_number} is cash on delivery")
    if order.is_paid:
        raise OrderValidationError(f"Order {order.order_number} is already paid")
    if order.order_status == Order.Status.CANCELLED:
        raise OrderValidationError(f"Order {order.order_number} is cancelled")

    if order.gateway_order_id:
        return _stored_intent(order)

    try:
        intent = get_gateway().create_intent(
            order.total_amount, settings.PAYMENT_CURRENCY, order.order_number
        )
    except PaymentGatewayError as e:
        raise GatewayUnavailableError(str(e)) from e

    attached = Order.objects.filter(pk=order.pk, gateway_order_id='').update(
        gateway_order_id=intent.id, updated_at=timezone.now()
    )
    order.refresh_from_db(fields=['gateway_order_id', 'updated_at'])
    if not attached:
        logger.warning(
            f"Order {order.order_number} already has intent {order.gateway_order_id}; "
            f"discarding {intent.id}"
        )
        return _stored_intent(order)
    return intent


def confirm_payment(
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    receipt: Optional[str] = None,
) -> ConfirmationResult:
    """
    Confirm a payment reported by the client after checkout.

    Safe to call any number of times, concurrently with itself and with
    the webhook.

    Raises:
        SignatureMismatchError: Signature does not match the references
        OrderNotFoundError: No order carries the gateway order id
        OrderCancelledError: The order was cancelled before payment arrived
        InsufficientStockError: Stock could not be reserved; order unchanged
    """
    if not verify_payment_signature(gateway_order_id, gateway_payment_id, signature):
        logger.warning(
            f"Payment signature mismatch: gateway order {gateway_order_id}, "
            f"payment {gateway_payment_id}"
        )
        raise SignatureMismatchError("Invalid payment signature")

    return capture_payment(gateway_order_id, gateway_payment_id, receipt=receipt)


def capture_payment(
    gateway_order_id: str,
    gateway_payment_id: str,
    payment_method: str = '',
    payment_details: Optional[Dict] = None,
    receipt: Optional[str] = None,
) -> ConfirmationResult:
    """
    Mark an authenticated payment as PAID and reserve its stock exactly once.

    Raises:
        OrderNotFoundError: No order carries the gateway order id, or the
            receipt does not match it
        OrderCancelledError: The order was cancelled before payment arrived
        InsufficientStockError: Stock could not be reserved; order unchanged
    """
    if not gateway_order_id:
        raise OrderNotFoundError("Gateway order id is required")
    try:
        order = Order.objects.get(gateway_order_id=gateway_order_id)
    except Order.DoesNotExist:
        raise OrderNotFoundError(f"No order for gateway order {gateway_order_id}")

    if receipt and receipt != order.order_number:
        raise OrderNotFoundError(
            f"Receipt {receipt} does not match gateway order {gateway_order_id}"
        )

    if order.is_paid:
        logger.info(f"Order {order.order_number} already paid; replay ignored")
        return ConfirmationResult(order=order, replayed=True)

    if order.order_status == Order.Status.CANCELLED:
        _reject_cancelled(order, gateway_payment_id)

    try:
        with transaction.atomic():
            claimed = Order.objects.filter(pk=order.pk).exclude(
                payment_status=Order.PaymentStatus.PAID
            ).exclude(
                order_status=Order.Status.CANCELLED
            ).update(
                payment_status=Order.PaymentStatus.PAID,
                order_status=Order.Status.CONFIRMED,
                gateway_payment_id=gateway_payment_id,
                payment_method=payment_method,
                payment_details=payment_details or {},
                failure_reason='',
                updated_at=timezone.now(),
            )
            if claimed:
                shortfalls = reserve(order.items.all())
                if shortfalls:
                    raise InsufficientStockError(order.order_number, shortfalls)
    except InsufficientStockError as e:
        Order.objects.filter(pk=order.pk).exclude(
            payment_status=Order.PaymentStatus.PAID
        ).update(failure_reason=str(e), updated_at=timezone.now())
        logger.warning(str(e))
        raise

    order.refresh_from_db()

    if not claimed:
        if not order.is_paid and order.order_status == Order.Status.CANCELLED:
            _reject_cancelled(order, gateway_payment_id)
        logger.info(f"Order {order.order_number} confirmed concurrently; replay ignored")
        return ConfirmationResult(order=order, replayed=True)

    logger.info(
        f"Order {order.order_number} paid with {gateway_payment_id}; stock reserved"
    )
    _after_payment_confirmed(order)
    return ConfirmationResult(order=order)


def handle_payment_failed_event(gateway_order_id: str) -> bool:
    """
    Record a failed payment so the customer can retry.

    Never touches inventory and never downgrades a paid or cancelled order.

    Returns:
        True if the order was marked FAILED, False if it was left as is

    Raises:
        OrderNotFoundError: No order carries the gateway order id
    """
    orders = Order.objects.filter(gateway_order_id=gateway_order_id)
    if not gateway_order_id or not orders.exists():
        raise OrderNotFoundError(f"No order for gateway order {gateway_order_id}")

    updated = orders.filter(
        payment_status__in=[Order.PaymentStatus.PENDING, Order.PaymentStatus.FAILED]
    ).exclude(
        order_status=Order.Status.CANCELLED
    ).update(
        payment_status=Order.PaymentStatus.FAILED,
        order_status=Order.Status.PLACED,
        updated_at=timezone.now(),
    )

    if updated:
        logger.info(f"Payment failed for gateway order {gateway_order_id}")
    else:
        logger.info(f"Ignored payment failure for settled gateway order {gateway_order_id}")
    return bool(updated)


def apply_webhook_event(event: WebhookEvent) -> str:
    """
    Route an authenticated webhook event to the matching handler.

    Returns:
        'confirmed', 'already_processed', 'refund_required', 'failed' or 'ignored'
    """
    if event.is_capture:
        try:
            result = capture_payment(
                event.order_id,
                event.payment_id,
                payment_method=event.method,
                payment_details=event.details,
            )
        except OrderCancelledError:
            return 'refund_required'
        return 'already_processed' if result.replayed else 'confirmed'

    if event.is_failure:
        handle_payment_failed_event(event.order_id)
        return 'failed'

    logger.info(f"Ignoring webhook event {event.event}")
    return 'ignored'


def _after_payment_confirmed(order: Order) -> None:
    """Post-commit side effects; failures are logged, never raised."""
    try:
        clear_cart(order.user)
    except Exception:
        logger.exception(f"Failed to clear cart after confirming {order.order_number}")

    _queue_confirmation(order)


def _queue_confirmation(order: Order) -> None:
    try:
        from .tasks import send_order_confirmation
        send_order_confirmation.delay(order.id)
        logger.info(f"Triggered confirmation task for order {order.order_number}")
    except Exception as e:
        # Don't fail the order if task queuing fails
        logger.error(f"Failed to queue confirmation task: {e}")


def _reject_cancelled(order: Order, gateway_payment_id: str) -> None:
    """Record a payment captured for a cancelled order and raise."""
    error = OrderCancelledError(order.order_number, gateway_payment_id)
    Order.objects.filter(pk=order.pk).exclude(
        payment_status=Order.PaymentStatus.PAID
    ).update(failure_reason=str(error), updated_at=timezone.now())
    logger.error(str(error))
    raise error
