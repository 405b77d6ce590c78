"""Checkout and commit engine.

Turns a :class:`~smart_pos.cart.Cart` into an immutable transaction. Each
checkout attempt is a :class:`CheckoutSession` that moves through::

    IDLE -> AWAITING_CUSTOMER_INFO -> COMMITTING -> COMPLETED
         \\______________________________^

Carts holding pre-order lines must collect the buyer's name, phone and
address before they can commit. The commit itself is delegated to
:func:`smart_pos.core_logic.record_sale`, which writes the transaction, the
READY stock decrements and the optional new customer in one durable step.

The engine does not deduplicate double submissions. A completed session
refuses a second commit, but callers that build a fresh session for the same
goods must disable their pay action while a commit is in flight.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Sequence

from . import cart as cart_engine
from . import core_logic, data_manager, log
from .constants import PaymentMethod, ProductType


class CheckoutState(str, Enum):
    """Enumerate the states of one checkout attempt."""

    IDLE = "IDLE"
    AWAITING_CUSTOMER_INFO = "AWAITING_CUSTOMER_INFO"
    COMMITTING = "COMMITTING"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class CustomerInfo:
    """Buyer details collected for a pre-order."""

    name: str
    phone: str
    address: str


@dataclass
class CheckoutSession:
    """Mutable state of a single checkout attempt over ``cart``."""

    cart: cart_engine.Cart
    state: CheckoutState = CheckoutState.IDLE
    customer: Optional[CustomerInfo] = None
    receipt: Optional[data_manager.TransactionRow] = None

    @property
    def requires_customer_info(self) -> bool:
        return cart_engine.has_pre_order(self.cart)


def begin_checkout(cart: cart_engine.Cart) -> CheckoutSession:
    """Start a checkout for ``cart``.

    Raises:
        BusinessRuleViolation: If the cart is empty.
    """

    if cart.is_empty():
        raise core_logic.BusinessRuleViolation("Cannot check out an empty cart")

    session = CheckoutSession(cart=cart)
    if session.requires_customer_info:
        session.state = CheckoutState.AWAITING_CUSTOMER_INFO
    else:
        session.state = CheckoutState.COMMITTING
    log.debug("Checkout started in state %s", session.state.value)
    return session


def submit_customer_info(session: CheckoutSession, *, name: str, phone: str, address: str) -> CheckoutSession:
    """Attach pre-order buyer details and move to ``COMMITTING``.

    Raises:
        BusinessRuleViolation: If the session is not awaiting customer info.
        ValidationError: If any field is blank; the session is unchanged.
    """

    if session.state is not CheckoutState.AWAITING_CUSTOMER_INFO:
        raise core_logic.BusinessRuleViolation(
            f"Customer info is not expected in state {session.state.value}"
        )
    core_logic.require_fields(name=name, phone=phone, address=address)

    session.customer = CustomerInfo(name=name.strip(), phone=phone.strip(), address=address.strip())
    session.state = CheckoutState.COMMITTING
    return session


def cancel_checkout(session: CheckoutSession) -> CheckoutSession:
    """Abandon the attempt; the cart is left untouched."""

    if session.state is CheckoutState.COMPLETED:
        raise core_logic.BusinessRuleViolation("A completed checkout cannot be cancelled")
    session.state = CheckoutState.IDLE
    session.customer = None
    return session


def build_items(lines: Sequence[cart_engine.CartLine]) -> List[data_manager.TransactionItemRow]:
    """Snapshot cart lines into transaction items, keeping the cost basis."""

    return [
        data_manager.TransactionItemRow(
            product_id=line.product.product_id,
            name=line.product.name,
            price=line.product.price,
            cost=line.product.cost,
            quantity=line.quantity,
            subtotal=line.subtotal,
            product_type=line.product.product_type,
        )
        for line in lines
    ]


def calculate_profit(items: Sequence[data_manager.TransactionItemRow]) -> Decimal:
    return sum(((item.price - item.cost) * item.quantity for item in items), Decimal("0"))


def build_transaction(
    lines: Sequence[cart_engine.CartLine],
    *,
    customer_name: str,
    customer_phone: Optional[str] = None,
    customer_address: Optional[str] = None,
    timestamp: datetime,
    transaction_id: Optional[str] = None,
) -> data_manager.TransactionRow:
    """Materialize cart lines into a point-in-time transaction record.

    ``total`` and ``profit`` are computed here, once; later catalog edits never
    change them.
    """

    items = build_items(lines)
    return data_manager.TransactionRow(
        transaction_id=transaction_id or core_logic.generate_id("T", when=timestamp),
        timestamp_iso=timestamp.isoformat(),
        items=tuple(items),
        total=sum((item.subtotal for item in items), Decimal("0")),
        profit=calculate_profit(items),
        customer_name=customer_name,
        customer_phone=customer_phone,
        customer_address=customer_address,
        payment_method=PaymentMethod.CASH,
        is_pre_order=any(item.product_type is ProductType.PRE_ORDER for item in items),
    )


def plan_stock_changes(
    items: Sequence[data_manager.TransactionItemRow],
    products_by_id: Dict[str, data_manager.ProductRow],
) -> List[core_logic.StockChange]:
    """Compute the new stock level of every READY product in ``items``.

    Levels are clamped at zero; a clamp means the cart outran live stock and
    is logged. Products no longer in the catalog are skipped.
    """

    sold: Dict[str, int] = {}
    for item in items:
        if item.product_type is ProductType.READY:
            sold[item.product_id] = sold.get(item.product_id, 0) + item.quantity

    changes: List[core_logic.StockChange] = []
    for product_id, quantity in sold.items():
        product = products_by_id.get(product_id)
        if product is None:
            log.warning("Sold product '%s' is no longer in the catalog; stock not adjusted", product_id)
            continue
        if product.product_type is not ProductType.READY:
            continue
        new_stock = product.stock - quantity
        if new_stock < 0:
            log.warning(
                "Stock for '%s' would go negative (%s - %s); clamping at zero",
                product_id,
                product.stock,
                quantity,
            )
            new_stock = 0
        changes.append(core_logic.StockChange(product_id=product_id, previous_stock=product.stock, new_stock=new_stock))
    return changes


def commit_checkout(
    context: core_logic.RuntimeContext,
    session: CheckoutSession,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.TransactionRow:
    """Commit ``session`` and return the receipt.

    Builds the transaction, decrements READY stock, registers a new customer
    for pre-orders with real buyer details, clears the cart and completes the
    session. On :class:`~smart_pos.core_logic.PersistenceError` nothing is
    applied: the session stays in ``COMMITTING`` and the cart keeps its lines
    so the cashier can retry.

    Raises:
        BusinessRuleViolation: If the session is not in ``COMMITTING`` or the
            cart is empty.
        PersistenceError: If the durable write fails.
    """

    if session.state is not CheckoutState.COMMITTING:
        raise core_logic.BusinessRuleViolation(f"Cannot commit a checkout in state {session.state.value}")
    if session.cart.is_empty():
        raise core_logic.BusinessRuleViolation("Cannot check out an empty cart")

    moment = core_logic.resolve_timestamp(timestamp)
    default_name = context.settings.default_customer_name
    info = session.customer
    transaction = build_transaction(
        session.cart.lines,
        customer_name=info.name if info else default_name,
        customer_phone=info.phone if info else None,
        customer_address=info.address if info else None,
        timestamp=moment,
    )

    products_by_id = {product.product_id: product for product in core_logic.list_products(context)}
    stock_changes = plan_stock_changes(transaction.items, products_by_id)

    new_customer = None
    if transaction.is_pre_order and info is not None and info.name != default_name:
        new_customer = core_logic.build_customer(
            name=info.name,
            phone=info.phone,
            address=info.address,
            when=moment,
        )

    receipt = core_logic.record_sale(
        context,
        transaction,
        stock_changes=stock_changes,
        customer=new_customer,
    )

    cart_engine.clear(session.cart)
    session.receipt = receipt
    session.state = CheckoutState.COMPLETED
    return receipt


def checkout(
    context: core_logic.RuntimeContext,
    cart: cart_engine.Cart,
    *,
    customer: Optional[CustomerInfo] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.TransactionRow:
    """Run a whole checkout in one call, as the pay button does.

    ``customer`` is only consulted when the cart contains pre-order lines.

    Raises:
        ValidationError: If a pre-order cart lacks complete customer details.
    """

    session = begin_checkout(cart)
    if session.state is CheckoutState.AWAITING_CUSTOMER_INFO:
        submit_customer_info(
            session,
            name=customer.name if customer else "",
            phone=customer.phone if customer else "",
            address=customer.address if customer else "",
        )
    return commit_checkout(context, session, timestamp=timestamp)
