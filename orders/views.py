"""
Order API Views.

Implements:
- GET /orders/ - List the current user's orders
- POST /orders/ - Place an order from the current user's cart
- GET /orders/{order_number}/ - Order detail with items
"""
import logging
from rest_framework import generics, status
from rest_framework.response import Response

from .models import Order
from .serializers import (
    OrderSerializer,
    OrderListSerializer,
    OrderCreateSerializer,
)
from .services import (
    place_order,
    GatewayUnavailableError,
    OrderValidationError,
)

logger = logging.getLogger(__name__)


class OrderListCreateView(generics.ListCreateAPIView):
    """
    GET: List the current user's orders
    POST: Place an order from the cart

    Query Parameters (GET):
        - payment_status: Filter by payment status (PENDING, PAID, FAILED)

    Response (POST, ONLINE):
    {
        "order": {...},
        "payment": {"gateway_order_id": "...", "amount": 20000, "currency": "INR",
                    "receipt": "ORD-1001", "key_id": "..."}
    }
    """

    def get_serializer_class(self):
        if self.request.method == 'POST':
            return OrderCreateSerializer
        return OrderListSerializer

    def get_queryset(self):
        queryset = Order.objects.filter(user=self.request.user).prefetch_related('items')

        payment_status = self.request.query_params.get('payment_status', '').upper()
        if payment_status in Order.PaymentStatus.values:
            queryset = queryset.filter(payment_status=payment_status)

        return queryset.order_by('-created_at')

    def create(self, request, *args, **kwargs):
        """
        Place an order.

        Returns:
            - 201: Order placed
            - 400: Validation error (address, payment mode, empty cart)
            - 503: Payment gateway unavailable; nothing was kept
        """
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = place_order(
                request.user,
                serializer.validated_data['shipping_address'],
                serializer.validated_data['payment_mode'],
            )
        except OrderValidationError as e:
            logger.warning(f"Order validation failed: {e}")
            return Response(
                {'error': 'Validation Error', 'detail': str(e)},
                status=status.HTTP_400_BAD_REQUEST
            )
        except GatewayUnavailableError as e:
            return Response(
                {'error': 'Payment Gateway Unavailable', 'detail': str(e)},
                status=status.HTTP_503_SERVICE_UNAVAILABLE
            )
        except Exception as e:
            logger.exception(f"Unexpected error placing order: {e}")
            return Response(
                {'error': 'Server Error', 'detail': 'An unexpected error occurred'},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        order = Order.objects.prefetch_related('items').get(id=result.order.id)
        data = {'order': OrderSerializer(order).data}
        if result.intent is not None:
            data['payment'] = result.intent.as_dict()

        return Response(data, status=status.HTTP_201_CREATED)


class OrderDetailView(generics.RetrieveAPIView):
    """
    GET: Retrieve one of the current user's orders by order number.
    """
    serializer_class = OrderSerializer
    lookup_field = 'order_number'

    def get_queryset(self):
        return Order.objects.filter(user=self.request.user).prefetch_related('items')
