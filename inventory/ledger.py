"""
Inventory Ledger - Conditional stock decrement for confirmed payments.

Every counter change is a single conditional UPDATE:

    UPDATE ... SET stock_quantity = stock_quantity - n
    WHERE id = ? AND stock_quantity >= n

so concurrent reservations can never drive a counter below zero, and no
application code reads a quantity before writing it.

Reservation is all-or-nothing per call: when any line comes up short,
every decrement made by the call is rolled back and the shortfalls are
returned to the caller.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .models import Product, SizeVariant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockShortfall:
    """A line that could not be reserved."""
    product_id: Optional[int]
    size_variant_id: Optional[int]
    name: str
    requested: int
    available: Optional[int]  # None when the product or variant no longer exists

    @property
    def missing(self) -> bool:
        return self.available is None

    def as_dict(self) -> dict:
        return {
            'product_id': self.product_id,
            'size_variant_id': self.size_variant_id,
            'name': self.name,
            'requested': self.requested,
            'available': self.available,
        }

    def __str__(self):
        if self.missing:
            return f"{self.name}: no longer available"
        return f"{self.name}: requested {self.requested}, available {self.available}"


def _line_key(line):
    # Fixed lock order prevents deadlocks between orders sharing products
    return (line.product_id or 0, line.size_variant_id or 0)


def _counter_queryset(line):
    if line.size_variant_id:
        return SizeVariant.objects.filter(
            pk=line.size_variant_id, product_id=line.product_id
        )
    return Product.objects.filter(pk=line.product_id)


def _decrement(line) -> Optional[StockShortfall]:
    """Test-and-decrement the counter behind one line."""
    quantity = line.quantity
    name = getattr(line, 'display_name', '') or f"Product {line.product_id}"

    if line.product_id is None:
        return StockShortfall(None, line.size_variant_id, name, quantity, None)

    # A sized line whose variant was deleted must not fall back to the product counter
    if getattr(line, 'size_variant_name', '') and not line.size_variant_id:
        return StockShortfall(line.product_id, None, name, quantity, None)

    counter = _counter_queryset(line)
    changes = {'stock_quantity': F('stock_quantity') - quantity}
    if not line.size_variant_id:
        changes['updated_at'] = timezone.now()

    if counter.filter(stock_quantity__gte=quantity).update(**changes):
        counter.filter(stock_quantity=0).update(in_stock=False)
        return None

    available = counter.values_list('stock_quantity', flat=True).first()
    return StockShortfall(line.product_id, line.size_variant_id, name, quantity, available)


def reserve(lines: Iterable) -> List[StockShortfall]:
    """
    Reserve stock for every line, or for none of them.

    Args:
        lines: Objects exposing product_id, size_variant_id and quantity
            (order items). Lines naming a size variant decrement the
            variant's counter, all others the product's counter. A line
            with a size_variant_name but no variant id lost its variant and
            is reported as a shortfall.

    Returns:
        An empty list on success, otherwise the lines that were short.
        On a non-empty result no counter has been changed.
    """
    shortfalls = []
    with transaction.atomic():
        for line in sorted(lines, key=_line_key):
            shortfall = _decrement(line)
            if shortfall is not None:
                shortfalls.append(shortfall)

        if shortfalls:
            transaction.set_rollback(True)

    if shortfalls:
        logger.warning(
            f"Stock reservation failed: {'; '.join(str(s) for s in shortfalls)}"
        )
    return shortfalls
