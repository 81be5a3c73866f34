"""
Cart API Views.

Implements:
- GET /cart/ - Current user's cart with total
- DELETE /cart/ - Clear the cart
- POST /cart/items/ - Add a product (captures its current price)
- PATCH /cart/items/{id}/ - Change a line's quantity
- DELETE /cart/items/{id}/ - Remove a line
"""
import logging
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .serializers import (
    CartSerializer,
    CartItemSerializer,
    CartItemCreateSerializer,
    CartItemUpdateSerializer,
)
from .services import (
    add_to_cart,
    clear_cart,
    get_or_create_cart,
    remove_item,
    update_quantity,
    CartError,
    CartItemNotFoundError,
)

logger = logging.getLogger(__name__)


def _error_response(error: CartError) -> Response:
    if isinstance(error, CartItemNotFoundError):
        return Response(
            {'error': 'Not Found', 'detail': str(error)},
            status=status.HTTP_404_NOT_FOUND
        )
    return Response(
        {'error': 'Validation Error', 'detail': str(error)},
        status=status.HTTP_400_BAD_REQUEST
    )


class CartView(APIView):
    """
    GET: Retrieve the current user's cart
    DELETE: Remove every line from the cart
    """

    def get(self, request):
        cart = get_or_create_cart(request.user)
        return Response(CartSerializer(cart).data)

    def delete(self, request):
        clear_cart(request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


class CartItemCreateView(APIView):
    """
    POST: Add a product to the cart.
    """

    def post(self, request):
        serializer = CartItemCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            item = add_to_cart(
                request.user,
                data['product_id'],
                quantity=data['quantity'],
                size_variant_id=data.get('size_variant_id'),
                custom_size=data.get('custom_size'),
            )
        except CartError as e:
            logger.warning(f"Add to cart failed: {e}")
            return _error_response(e)

        return Response(CartItemSerializer(item).data, status=status.HTTP_201_CREATED)


class CartItemDetailView(APIView):
    """
    PATCH: Update a line's quantity
    DELETE: Remove a line
    """

    def patch(self, request, pk):
        serializer = CartItemUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            item = update_quantity(request.user, pk, serializer.validated_data['quantity'])
        except CartError as e:
            return _error_response(e)
        return Response(CartItemSerializer(item).data)

    def delete(self, request, pk):
        try:
            remove_item(request.user, pk)
        except CartError as e:
            return _error_response(e)
        return Response(status=status.HTTP_204_NO_CONTENT)
