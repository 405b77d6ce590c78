"""Availability rules deciding which products the cashier may offer."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from .constants import CategoryFilter, ProductType
from .data_manager import ProductRow


def _local_now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now().astimezone()


def is_pre_order_expired(product: ProductRow, *, now: Optional[datetime] = None) -> bool:
    """Return whether ``product`` is a pre-order whose deadline day has ended.

    The deadline date is inclusive through the last instant of that day in
    local time, so only a strictly later calendar date counts as expired.
    READY products and pre-orders without a deadline never expire.
    """

    if product.product_type is not ProductType.PRE_ORDER or product.po_deadline is None:
        return False
    return _local_now(now).date() > product.po_deadline


def matches_search(product: ProductRow, search: str = "") -> bool:
    """Case-insensitive substring match on the product name."""

    needle = search.strip().lower()
    return not needle or needle in product.name.lower()


def matches_category(product: ProductRow, category: CategoryFilter = CategoryFilter.ALL) -> bool:
    if category is CategoryFilter.ALL:
        return True
    return product.product_type.value == category.value


def is_offerable(
    product: ProductRow,
    *,
    now: Optional[datetime] = None,
    search: str = "",
    category: CategoryFilter = CategoryFilter.ALL,
) -> bool:
    """Decide whether ``product`` appears on the cashier screen.

    READY products are offerable regardless of stock; the cart rejects adding
    sold-out items. Expired pre-orders are hidden entirely until an admin
    moves the deadline forward.
    """

    return (
        matches_search(product, search)
        and matches_category(product, category)
        and not is_pre_order_expired(product, now=now)
    )


def filter_offerable(
    products: Iterable[ProductRow],
    *,
    now: Optional[datetime] = None,
    search: str = "",
    category: CategoryFilter = CategoryFilter.ALL,
) -> List[ProductRow]:
    """Return the offerable subset of ``products`` in their original order."""

    moment = _local_now(now)
    return [
        product
        for product in products
        if is_offerable(product, now=moment, search=search, category=category)
    ]
