"""Cart engine for the cashier screen.

A :class:`Cart` lives only for one sale. Its operations never touch the
record store. Every add refreshes the line's product snapshot, so stock
ceilings follow the product most recently handed to the cart.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from . import log
from .core_logic import OutOfStockError
from .data_manager import ProductRow
from .constants import ProductType


@dataclass
class CartLine:
    """A product snapshot plus the requested quantity (always >= 1)."""

    product: ProductRow
    quantity: int = 1

    @property
    def product_id(self) -> str:
        return self.product.product_id

    @property
    def subtotal(self) -> Decimal:
        return self.product.price * self.quantity

    def fits_stock(self, quantity: int) -> bool:
        """Return whether ``quantity`` respects the READY stock ceiling."""

        if self.product.product_type is ProductType.PRE_ORDER:
            return True
        return quantity <= self.product.stock


@dataclass
class Cart:
    """Ordered collection of cart lines, one per product."""

    lines: List[CartLine] = field(default_factory=list)

    def find(self, product_id: str) -> Optional[CartLine]:
        return next((line for line in self.lines if line.product_id == product_id), None)

    def is_empty(self) -> bool:
        return not self.lines


def add_item(cart: Cart, product: ProductRow) -> CartLine:
    """Add one unit of ``product`` to ``cart``.

    A new product gets a line with quantity 1. An existing line grows by one
    unless that would exceed the stock of a READY product, in which case the
    cart is left as is. The line's snapshot is replaced by ``product`` first,
    so the ceiling is the stock passed in, not the stock seen at the first add.

    Raises:
        OutOfStockError: If ``product`` is READY and has no stock.
    """

    if product.product_type is ProductType.READY and product.stock <= 0:
        log.warning("Rejected add to cart: product '%s' is out of stock", product.product_id)
        raise OutOfStockError(product.product_id)

    line = cart.find(product.product_id)
    if line is None:
        line = CartLine(product=product)
        cart.lines.append(line)
        return line

    line.product = product
    if line.fits_stock(line.quantity + 1):
        line.quantity += 1
    return line


def change_quantity(cart: Cart, product_id: str, delta: int) -> bool:
    """Shift a line's quantity by ``delta``.

    The change is dropped when the result would fall below 1 (use
    :func:`remove_item` for that) or exceed READY stock. Unknown products are
    ignored.

    Returns:
        bool: ``True`` when the quantity changed.
    """

    line = cart.find(product_id)
    if line is None:
        return False

    requested = line.quantity + delta
    if requested < 1 or not line.fits_stock(requested):
        return False

    line.quantity = requested
    return True


def remove_item(cart: Cart, product_id: str) -> None:
    cart.lines = [line for line in cart.lines if line.product_id != product_id]


def clear(cart: Cart) -> None:
    cart.lines = []


def total(cart: Cart) -> Decimal:
    """Sum of price times quantity over all lines."""

    return sum((line.subtotal for line in cart.lines), Decimal("0"))


def has_pre_order(cart: Cart) -> bool:
    return any(line.product.product_type is ProductType.PRE_ORDER for line in cart.lines)


def item_count(cart: Cart) -> int:
    """Total number of units, as shown on the cart badge."""

    return sum(line.quantity for line in cart.lines)
