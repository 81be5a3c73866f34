"""
Payment API Views.

Implements:
- POST /payments/razorpay/create-order/ - Gateway intent for an existing order
- POST /payments/razorpay/verify/ - Client-side payment confirmation
- POST /payments/razorpay/webhook/ - Gateway webhook (raw body, signed)

The verify call and the webhook may both arrive for the same payment, in
any order and any number of times; both end in the same idempotent capture.
"""
import logging
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from core.rate_limiting import rate_limit
from orders.models import Order
from orders.serializers import OrderSerializer
from orders.services import (
    apply_webhook_event,
    confirm_payment,
    ensure_payment_intent,
    GatewayUnavailableError,
    InsufficientStockError,
    OrderCancelledError,
    OrderNotFoundError,
    OrderValidationError,
)
from .gateway import parse_webhook_event, SignatureMismatchError, WebhookPayloadError
from .serializers import CreatePaymentIntentSerializer, VerifyPaymentSerializer

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = 'HTTP_X_RAZORPAY_SIGNATURE'


def _stock_error_response(error: InsufficientStockError) -> Response:
    return Response(
        {
            'success': False,
            'error': 'Insufficient Stock',
            'detail': str(error),
            'shortfalls': [s.as_dict() for s in error.shortfalls],
        },
        status=status.HTTP_409_CONFLICT
    )


class CreatePaymentIntentView(APIView):
    """
    POST: Return the gateway intent for one of the user's ONLINE orders,
    creating it if the order has none yet.
    """

    def post(self, request):
        serializer = CreatePaymentIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = Order.objects.get(
                order_number=serializer.validated_data['order_number'],
                user=request.user
            )
        except Order.DoesNotExist:
            return Response(
                {'error': 'Not Found', 'detail': 'Order not found'},
                status=status.HTTP_404_NOT_FOUND
            )

        try:
            intent = ensure_payment_intent(order)
        except OrderValidationError as e:
            return Response(
                {'error': 'Validation Error', 'detail': str(e)},
                status=status.HTTP_400_BAD_REQUEST
            )
        except GatewayUnavailableError as e:
            return Response(
                {'error': 'Payment Gateway Unavailable', 'detail': str(e)},
                status=status.HTTP_503_SERVICE_UNAVAILABLE
            )

        return Response(intent.as_dict())


class VerifyPaymentView(APIView):
    """
    POST: Confirm a payment with the signature returned by the checkout widget.

    Returns:
        - 200: Confirmed, or already confirmed ("replayed": true)
        - 400: Signature mismatch
        - 404: Unknown gateway order
        - 409: Stock could not be reserved, or the order was cancelled
    """

    @rate_limit(max_requests=10, window_seconds=60)
    def post(self, request):
        serializer = VerifyPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = confirm_payment(
                data['gatewayOrderId'],
                data['gatewayPaymentId'],
                data['signature'],
                receipt=data.get('receipt') or None,
            )
        except SignatureMismatchError:
            return Response(
                {'success': False, 'error': 'Invalid signature'},
                status=status.HTTP_400_BAD_REQUEST
            )
        except OrderNotFoundError as e:
            return Response(
                {'success': False, 'error': 'Not Found', 'detail': str(e)},
                status=status.HTTP_404_NOT_FOUND
            )
        except OrderCancelledError as e:
            return Response(
                {'success': False, 'error': 'Order Cancelled', 'detail': str(e),
                 'refund_required': True},
                status=status.HTTP_409_CONFLICT
            )
        except InsufficientStockError as e:
            return _stock_error_response(e)

        return Response({
            'success': True,
            'replayed': result.replayed,
            'order': OrderSerializer(result.order).data,
        })


class RazorpayWebhookView(APIView):
    """
    POST: Gateway webhook delivery.

    The signature header is verified against request.body, the raw bytes,
    before the payload is parsed.
    """
    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        raw_body = request.body
        try:
            event = parse_webhook_event(raw_body, request.META.get(SIGNATURE_HEADER, ''))
        except SignatureMismatchError:
            logger.warning(
                f"Rejected webhook with invalid signature from {request.META.get('REMOTE_ADDR')}"
            )
            return Response({'ok': False, 'error': 'invalid signature'},
                            status=status.HTTP_400_BAD_REQUEST)
        except WebhookPayloadError as e:
            logger.warning(f"Rejected malformed webhook: {e}")
            return Response({'ok': False, 'error': str(e)},
                            status=status.HTTP_400_BAD_REQUEST)

        try:
            outcome = apply_webhook_event(event)
        except OrderNotFoundError as e:
            logger.warning(f"Webhook {event.event}: {e}")
            return Response({'ok': False, 'error': str(e)},
                            status=status.HTTP_404_NOT_FOUND)
        except InsufficientStockError as e:
            return _stock_error_response(e)

        return Response({'ok': True, 'result': outcome})
