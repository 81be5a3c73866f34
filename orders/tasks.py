"""
Celery tasks for order processing.

Tasks:
    - send_order_confirmation: Async notification after payment or COD placement
    - expire_abandoned_online_orders: Periodic cleanup of orders left without an intent
"""
import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail
from django.utils import timezone

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def send_order_confirmation(self, order_id: int):
    """
    Email the customer (and the shop owner, when configured) about an order.

    Only PAID orders and COD orders are announced.

    Args:
        order_id: Primary key of the order

    Returns:
        Dict with confirmation details
    """
    from orders.models import Order

    try:
        order = Order.objects.select_related('user').prefetch_related('items').get(id=order_id)
    except Order.DoesNotExist:
        logger.error(f"Order #{order_id} not found for confirmation")
        return {'status': 'error', 'message': f'Order {order_id} not found'}

    if not (order.is_paid or order.payment_mode == Order.PaymentMode.COD):
        logger.warning(
            f"Order {order.order_number} is not paid (status: {order.payment_status}), "
            "skipping confirmation"
        )
        return {
            'status': 'skipped',
            'message': f'Order {order.order_number} is not paid'
        }

    items_summary = [
        f"  - {item.quantity}x {item.display_name} @ {item.unit_price}"
        for item in order.items.all()
    ]
    custom_lines = [
        f"  - {item.display_name}: {item.custom_size}"
        for item in order.items.all()
        if item.custom_size
    ]

    body = "\n".join([
        f"Order {order.order_number}",
        f"Payment: {order.get_payment_mode_display()} ({order.payment_status})",
        f"Total: {order.total_amount}",
        "",
        "Items:",
        *items_summary,
        "",
        "Ship to:",
        f"  {order.shipping_full_name}, {order.shipping_phone}",
        f"  {order.shipping_street}, {order.shipping_city}, {order.shipping_state} "
        f"{order.shipping_postal_code}, {order.shipping_country}",
    ])

    recipients = [order.user.email] if order.user.email else []
    if recipients:
        send_mail(
            subject=f"Your order {order.order_number} is confirmed",
            message=body,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=recipients,
        )

    if settings.ORDER_NOTIFICATION_EMAIL:
        owner_body = body
        if custom_lines:
            owner_body += "\n\nCustom measurements:\n" + "\n".join(custom_lines)
        send_mail(
            subject=f"New order {order.order_number}",
            message=owner_body,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[settings.ORDER_NOTIFICATION_EMAIL],
        )

    logger.info(f"Confirmation sent for order {order.order_number}")

    return {
        'status': 'success',
        'order_id': order.id,
        'message': f'Confirmation sent for order {order.order_number}'
    }


@shared_task
def expire_abandoned_online_orders():
    """
    Periodic task deleting ONLINE orders that never got a gateway intent.

    Placement deletes the order itself when intent creation fails; this
    catches the orders left behind when the process died in between.
    """
    from orders.models import Order

    threshold = timezone.now() - timedelta(minutes=settings.PENDING_ORDER_TIMEOUT_MINUTES)
    stale_orders = Order.objects.filter(
        payment_mode=Order.PaymentMode.ONLINE,
        payment_status=Order.PaymentStatus.PENDING,
        gateway_order_id='',
        created_at__lt=threshold
    )

    count = stale_orders.count()
    if count > 0:
        logger.warning(f"Found {count} abandoned online orders without a gateway intent")
        stale_orders.delete()

    return {'processed': count}
