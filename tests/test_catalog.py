"""Unit tests for the availability rules of the cashier catalog."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from smart_pos import catalog
from smart_pos.constants import CategoryFilter

from conftest import JAKARTA, make_pre_order, make_product

DEADLINE = date(2026, 3, 31)


@pytest.mark.parametrize(
    "moment, expected",
    [
        (datetime(2026, 3, 30, 12, 0, tzinfo=JAKARTA), True),
        (datetime(2026, 3, 31, 23, 59, 59, 999999, tzinfo=JAKARTA), True),
        (datetime(2026, 4, 1, 0, 0, tzinfo=JAKARTA), False),
    ],
)
def test_pre_order_offerable_through_end_of_deadline_day(moment, expected):
    hampers = make_pre_order(po_deadline=DEADLINE)
    assert catalog.is_offerable(hampers, now=moment) is expected
    assert catalog.is_pre_order_expired(hampers, now=moment) is not expected


def test_ready_product_offerable_without_stock():
    """Sold-out READY items stay visible; the cart rejects adding them."""

    assert catalog.is_offerable(make_product(stock=0), now=datetime(2030, 1, 1, tzinfo=JAKARTA))


def test_pre_order_without_deadline_is_offerable():
    hampers = make_pre_order(po_deadline=None)
    assert catalog.is_offerable(hampers, now=datetime(2030, 1, 1, tzinfo=JAKARTA))


def test_search_is_case_insensitive_substring():
    coffee = make_product(name="Kopi Susu Gula Aren")
    assert catalog.matches_search(coffee, "susu")
    assert catalog.matches_search(coffee, "  GULA ")
    assert catalog.matches_search(coffee, "")
    assert not catalog.matches_search(coffee, "teh")


def test_category_filter():
    coffee = make_product()
    hampers = make_pre_order()
    assert catalog.matches_category(coffee, CategoryFilter.ALL)
    assert catalog.matches_category(coffee, CategoryFilter.READY)
    assert not catalog.matches_category(coffee, CategoryFilter.PRE_ORDER)
    assert catalog.matches_category(hampers, CategoryFilter.PRE_ORDER)
    assert not catalog.matches_category(hampers, CategoryFilter.READY)


def test_filter_offerable_combines_rules_and_keeps_order():
    now = datetime(2026, 3, 15, 9, 0, tzinfo=JAKARTA)
    products = [
        make_product(product_id="P1", name="Coffee"),
        make_pre_order(product_id="P2", name="Hampers Lebaran"),
        make_pre_order(product_id="P3", name="Hampers Natal", po_deadline=date(2026, 3, 1)),
        make_product(product_id="P4", name="Croissant", stock=0),
    ]

    assert [p.product_id for p in catalog.filter_offerable(products, now=now)] == ["P1", "P2", "P4"]
    assert [p.product_id for p in catalog.filter_offerable(products, now=now, search="hampers")] == ["P2"]
    assert [
        p.product_id for p in catalog.filter_offerable(products, now=now, category=CategoryFilter.READY)
    ] == ["P1", "P4"]
