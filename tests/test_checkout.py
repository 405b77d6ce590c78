"""Tests for the checkout state machine and the sale commit."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from smart_pos import cart as cart_engine
from smart_pos import checkout, constants, core_logic, data_manager

from conftest import FIXED_NOW, FIXED_TODAY, make_pre_order, make_product


@pytest.fixture
def coffee(runtime_context):
    return core_logic.add_product(
        runtime_context,
        product_id="P-COFFEE",
        name="Coffee",
        price=Decimal("18000"),
        cost=Decimal("10000"),
        stock=10,
    )


@pytest.fixture
def hampers(runtime_context):
    return core_logic.add_product(
        runtime_context,
        product_id="P-HAMPERS",
        name="Hampers",
        price=Decimal("150000"),
        cost=Decimal("100000"),
        stock=5,
        product_type=constants.ProductType.PRE_ORDER,
        po_deadline=FIXED_TODAY + timedelta(days=30),
    )


def _cart_with(*entries):
    cart = cart_engine.Cart()
    for product, quantity in entries:
        for _ in range(quantity):
            cart_engine.add_item(cart, product)
    return cart


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


def test_begin_checkout_rejects_empty_cart():
    with pytest.raises(core_logic.BusinessRuleViolation):
        checkout.begin_checkout(cart_engine.Cart())


def test_begin_checkout_ready_cart_goes_straight_to_committing():
    session = checkout.begin_checkout(_cart_with((make_product(), 1)))
    assert session.state is checkout.CheckoutState.COMMITTING
    assert session.customer is None


def test_begin_checkout_pre_order_cart_awaits_customer_info():
    session = checkout.begin_checkout(_cart_with((make_pre_order(), 1)))
    assert session.state is checkout.CheckoutState.AWAITING_CUSTOMER_INFO


def test_submit_customer_info_names_every_missing_field():
    session = checkout.begin_checkout(_cart_with((make_pre_order(), 1)))
    with pytest.raises(core_logic.ValidationError) as excinfo:
        checkout.submit_customer_info(session, name="Budi", phone="   ", address="")
    assert excinfo.value.missing_fields == ("phone", "address")
    assert session.state is checkout.CheckoutState.AWAITING_CUSTOMER_INFO
    assert session.customer is None


def test_submit_customer_info_only_when_awaiting():
    session = checkout.begin_checkout(_cart_with((make_product(), 1)))
    with pytest.raises(core_logic.BusinessRuleViolation):
        checkout.submit_customer_info(session, name="Budi", phone="0812", address="Jl. Mawar 1")


def test_cancel_checkout_returns_to_idle_and_keeps_cart():
    cart = _cart_with((make_pre_order(), 2))
    session = checkout.begin_checkout(cart)
    checkout.cancel_checkout(session)
    assert session.state is checkout.CheckoutState.IDLE
    assert cart.lines[0].quantity == 2


def test_commit_requires_committing_state(runtime_context):
    session = checkout.begin_checkout(_cart_with((make_pre_order(), 1)))
    with pytest.raises(core_logic.BusinessRuleViolation):
        checkout.commit_checkout(runtime_context, session, timestamp=FIXED_NOW)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def test_build_transaction_snapshots_totals_and_profit():
    cart = _cart_with((make_product(), 2), (make_pre_order(), 1))
    transaction = checkout.build_transaction(
        cart.lines,
        customer_name="Budi",
        customer_phone="0812",
        customer_address="Jl. Mawar 1",
        timestamp=FIXED_NOW,
    )
    assert transaction.total == Decimal("186000")
    assert transaction.profit == Decimal("66000")
    assert transaction.is_pre_order is True
    assert transaction.payment_method is constants.PaymentMethod.CASH
    assert transaction.timestamp_iso.startswith("2026-03-15T10:30:00")
    assert [item.cost for item in transaction.items] == [Decimal("10000"), Decimal("100000")]


def test_plan_stock_changes_skips_pre_orders_and_deleted_products():
    items = checkout.build_items(
        _cart_with(
            (make_product(), 3),
            (make_pre_order(), 2),
            (make_product(product_id="P-GONE", name="Gone"), 1),
        ).lines
    )
    changes = checkout.plan_stock_changes(items, {"P-COFFEE": make_product(stock=10), "P-HAMPERS": make_pre_order()})
    assert changes == [core_logic.StockChange(product_id="P-COFFEE", previous_stock=10, new_stock=7)]


def test_plan_stock_changes_clamps_at_zero(caplog):
    items = checkout.build_items(_cart_with((make_product(stock=10), 5)).lines)
    with caplog.at_level("WARNING", logger="smart_pos"):
        changes = checkout.plan_stock_changes(items, {"P-COFFEE": make_product(stock=2)})
    assert changes[0].new_stock == 0
    assert "clamping at zero" in caplog.text


# ---------------------------------------------------------------------------
# Commit against a real workbook
# ---------------------------------------------------------------------------


def test_coffee_sale_updates_stock_and_log(runtime_context, coffee):
    cart = _cart_with((coffee, 2))
    receipt = checkout.checkout(runtime_context, cart, timestamp=FIXED_NOW)

    assert receipt.total == Decimal("36000")
    assert receipt.profit == Decimal("16000")
    assert receipt.customer_name == constants.DEFAULT_CUSTOMER_NAME
    assert receipt.is_pre_order is False
    assert core_logic.get_product(runtime_context, "P-COFFEE").stock == 8
    assert core_logic.list_transactions(runtime_context) == [receipt]
    assert cart.is_empty()

    reloaded = core_logic.refresh_context(runtime_context)
    assert core_logic.get_product(reloaded, "P-COFFEE").stock == 8
    assert core_logic.get_transaction(reloaded, receipt.transaction_id).total == Decimal("36000")


def test_hampers_pre_order_requires_details_and_keeps_stock(runtime_context, hampers):
    cart = _cart_with((hampers, 1))
    session = checkout.begin_checkout(cart)
    with pytest.raises(core_logic.ValidationError):
        checkout.submit_customer_info(session, name="Budi", phone="", address="Jl. Mawar 1")
    assert session.state is checkout.CheckoutState.AWAITING_CUSTOMER_INFO
    assert core_logic.list_transactions(runtime_context) == []
    assert core_logic.get_product(runtime_context, "P-HAMPERS").stock == 5

    checkout.submit_customer_info(session, name="Budi", phone="0812", address="Jl. Mawar 1")
    receipt = checkout.commit_checkout(runtime_context, session, timestamp=FIXED_NOW)

    assert session.state is checkout.CheckoutState.COMPLETED
    assert session.receipt == receipt
    assert receipt.is_pre_order is True
    assert receipt.customer_phone == "0812"
    assert receipt.customer_address == "Jl. Mawar 1"
    assert core_logic.get_product(runtime_context, "P-HAMPERS").stock == 5
    customers = core_logic.list_customers(runtime_context)
    assert [(customer.name, customer.phone, customer.address) for customer in customers] == [
        ("Budi", "0812", "Jl. Mawar 1")
    ]


def test_pre_order_under_default_name_creates_no_customer(runtime_context, hampers):
    cart = _cart_with((hampers, 1))
    receipt = checkout.checkout(
        runtime_context,
        cart,
        customer=checkout.CustomerInfo(constants.DEFAULT_CUSTOMER_NAME, "0812", "Jl. Mawar 1"),
        timestamp=FIXED_NOW,
    )
    assert receipt.is_pre_order is True
    assert core_logic.list_customers(runtime_context) == []


def test_repeat_pre_order_buyers_are_not_merged(runtime_context, hampers):
    buyer = checkout.CustomerInfo("Budi", "0812", "Jl. Mawar 1")
    checkout.checkout(runtime_context, _cart_with((hampers, 1)), customer=buyer, timestamp=FIXED_NOW)
    checkout.checkout(
        runtime_context,
        _cart_with((hampers, 1)),
        customer=buyer,
        timestamp=FIXED_NOW + timedelta(minutes=5),
    )
    assert len(core_logic.list_customers(runtime_context)) == 2


def test_completed_session_refuses_second_commit(runtime_context, coffee):
    session = checkout.begin_checkout(_cart_with((coffee, 1)))
    checkout.commit_checkout(runtime_context, session, timestamp=FIXED_NOW)
    with pytest.raises(core_logic.BusinessRuleViolation):
        checkout.commit_checkout(runtime_context, session, timestamp=FIXED_NOW + timedelta(seconds=1))
    assert len(core_logic.list_transactions(runtime_context)) == 1


def test_stock_decreases_by_committed_quantities(runtime_context, coffee, hampers):
    checkout.checkout(
        runtime_context,
        _cart_with((coffee, 3), (hampers, 2)),
        customer=checkout.CustomerInfo("Sari", "0813", "Jl. Melati 2"),
        timestamp=FIXED_NOW,
    )
    fresh_coffee = core_logic.get_product(runtime_context, "P-COFFEE")
    checkout.checkout(runtime_context, _cart_with((fresh_coffee, 4)), timestamp=FIXED_NOW + timedelta(hours=1))

    assert core_logic.get_product(runtime_context, "P-COFFEE").stock == 3
    assert core_logic.get_product(runtime_context, "P-HAMPERS").stock == 5


def test_commit_clamps_stock_when_cart_outran_catalog(runtime_context, coffee):
    cart = _cart_with((coffee, 5))
    core_logic.update_product(runtime_context, "P-COFFEE", stock=2)

    checkout.checkout(runtime_context, cart, timestamp=FIXED_NOW)
    assert core_logic.get_product(runtime_context, "P-COFFEE").stock == 0


def test_transaction_is_immutable_after_catalog_edits(runtime_context, coffee):
    receipt = checkout.checkout(runtime_context, _cart_with((coffee, 2)), timestamp=FIXED_NOW)
    core_logic.update_product(runtime_context, "P-COFFEE", price=Decimal("99000"), cost=Decimal("1"))

    stored = core_logic.get_transaction(runtime_context, receipt.transaction_id)
    assert stored.total == Decimal("36000")
    assert stored.profit == Decimal("16000")
    assert stored.items[0].price == Decimal("18000")


def test_failed_write_applies_nothing_and_keeps_cart(runtime_context, coffee, hampers, monkeypatch):
    cart = _cart_with((coffee, 2), (hampers, 1))
    session = checkout.begin_checkout(cart)
    checkout.submit_customer_info(session, name="Budi", phone="0812", address="Jl. Mawar 1")

    def _disk_full(workbook, destination):
        raise OSError("disk full")

    monkeypatch.setattr(data_manager, "save_workbook", _disk_full)
    with pytest.raises(core_logic.PersistenceError):
        checkout.commit_checkout(runtime_context, session, timestamp=FIXED_NOW)

    assert session.state is checkout.CheckoutState.COMMITTING
    assert [(line.product_id, line.quantity) for line in cart.lines] == [("P-COFFEE", 2), ("P-HAMPERS", 1)]
    assert core_logic.get_product(runtime_context, "P-COFFEE").stock == 10
    assert core_logic.list_transactions(runtime_context) == []
    assert core_logic.list_customers(runtime_context) == []

    monkeypatch.undo()
    receipt = checkout.commit_checkout(runtime_context, session, timestamp=FIXED_NOW)
    assert session.state is checkout.CheckoutState.COMPLETED
    assert core_logic.get_product(runtime_context, "P-COFFEE").stock == 8
    assert core_logic.list_transactions(runtime_context) == [receipt]


def test_checkout_without_customer_for_pre_order_raises(runtime_context, hampers):
    cart = _cart_with((hampers, 1))
    with pytest.raises(core_logic.ValidationError):
        checkout.checkout(runtime_context, cart, timestamp=FIXED_NOW)
    assert not cart.is_empty()
