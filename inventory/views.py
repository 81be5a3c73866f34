"""
Catalog API Views (read-only).

Catalog management happens through the Django admin.
"""
from rest_framework import generics
from rest_framework.permissions import AllowAny

from .models import Product
from .serializers import ProductSerializer


class ProductListView(generics.ListAPIView):
    """
    GET: List active products with their size variants.

    Query Parameters:
        - category: Filter by category slug
        - in_stock: Show only products in stock (true/false)
    """
    serializer_class = ProductSerializer
    permission_classes = [AllowAny]

    def get_queryset(self):
        queryset = Product.objects.prefetch_related('size_variants').filter(is_active=True)

        category = self.request.query_params.get('category')
        if category:
            queryset = queryset.filter(category=category)

        if self.request.query_params.get('in_stock', '').lower() == 'true':
            queryset = queryset.filter(in_stock=True)

        return queryset.order_by('name')


class ProductDetailView(generics.RetrieveAPIView):
    """
    GET: Retrieve an active product.
    """
    serializer_class = ProductSerializer
    permission_classes = [AllowAny]

    def get_queryset(self):
        return Product.objects.prefetch_related('size_variants').filter(is_active=True)
