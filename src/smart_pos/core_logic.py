"""Business logic layer and store façade for Smart POS.

This module owns the single :class:`RuntimeContext` that every front-end
passes around. It consumes the data access layer for all I/O while ensuring
every mutation of products, customers, expenses, settings and the immutable
transaction log passes through the domain rules.

Mutations follow a two-phase update: the in-memory workbook and snapshots are
changed first, then the workbook is written to disk. A failed write leaves
the in-memory state authoritative and flags the context as dirty until
:func:`persist_context` succeeds. Sale commits are the exception: they are
undone in memory when their durable write fails (see :func:`record_sale`).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook

from . import data_manager, log, setup_excel
from .constants import (
    DEFAULT_EXPENSE_CATEGORY,
    EXPECTED_SCHEMA_VERSION,
    PIN_LENGTH,
    ProductType,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, customer, expense or transaction is unknown."""


class ValidationError(BusinessRuleViolation):
    """Raised when required input is missing or malformed."""

    def __init__(self, message: str, missing_fields: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.missing_fields = tuple(missing_fields)


class OutOfStockError(BusinessRuleViolation):
    """Raised when a READY product has no stock left to sell."""

    def __init__(self, product_id: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Product '{product_id}' is out of stock")
        self.product_id = product_id


class PersistenceError(Exception):
    """Raised when the workbook cannot be read or written."""


Listener = Callable[[str], None]


@dataclass
class RuntimeContext:
    """Process-wide state container handed to every store operation.

    ``settings`` is the parsed ``config.ini``; ``workbook`` is the live
    record store. Snapshots are cached per collection and rebuilt lazily after
    invalidation. ``is_dirty`` is raised when an optimistic write could not be
    persisted.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    is_dirty: bool = False
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)
    _listeners: List[Listener] = field(default_factory=list, repr=False, compare=False)


@dataclass(frozen=True)
class StockChange:
    """Planned stock level for one product inside a sale commit."""

    product_id: str
    previous_stock: int
    new_stock: int


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current local, timezone-aware time.

    Local time is used because reports bucket sales by the calendar date the
    cashier saw when the sale was rung up.
    """

    return candidate if candidate is not None else datetime.now().astimezone()


def generate_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier such as ``T20261018093015123456``.

    Microseconds are packed into the id to avoid collisions when several
    records are created within the same second.
    """

    when = when or resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


# ---------------------------------------------------------------------------
# Listeners and cache
# ---------------------------------------------------------------------------


def subscribe(context: RuntimeContext, listener: Listener) -> Callable[[], None]:
    """Register ``listener`` to be told which collection changed.

    Returns:
        Callable[[], None]: Function that removes the listener again.
    """

    context._listeners.append(listener)

    def _unsubscribe() -> None:
        if listener in context._listeners:
            context._listeners.remove(listener)

    return _unsubscribe


def _publish(context: RuntimeContext, *collections: str) -> None:
    for name in collections:
        for listener in list(context._listeners):
            listener(name)


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))
    for name in names:
        context._cache.pop(name, None)


def _load_bucket(context: RuntimeContext, name: str, loader: Callable[[], List[Any]]) -> List[Any]:
    try:
        return loader()
    except (KeyError, ValueError, TypeError, InvalidOperation) as exc:
        # Unreadable collections fall back to empty so the till still opens.
        log.error("Failed to read '%s' from workbook, using an empty set: %s", name, exc)
        return []


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = context._cache.setdefault("products", {})
    if "all" not in bucket:
        products = _load_bucket(
            context,
            "products",
            lambda: data_manager.list_records(context.workbook, data_manager.PRODUCTS),
        )
        bucket["all"] = products
        bucket["by_id"] = {product.product_id: product for product in products}
        log.debug("Populated products cache with %d entries", len(products))
    return bucket


def _ensure_transactions_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = context._cache.setdefault("transactions", {})
    if "all" not in bucket:
        transactions = _load_bucket(
            context,
            "transactions",
            lambda: data_manager.list_transactions_by_date_descending(context.workbook),
        )
        bucket["all"] = transactions
        bucket["by_id"] = {transaction.transaction_id: transaction for transaction in transactions}
        log.debug("Populated transactions cache with %d entries", len(transactions))
    return bucket


def _ensure_customers_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = context._cache.setdefault("customers", {})
    if "all" not in bucket:
        customers = _load_bucket(
            context,
            "customers",
            lambda: data_manager.list_records(context.workbook, data_manager.CUSTOMERS),
        )
        bucket["all"] = customers
        bucket["by_id"] = {customer.customer_id: customer for customer in customers}
    return bucket


def _ensure_expenses_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = context._cache.setdefault("expenses", {})
    if "all" not in bucket:
        expenses = _load_bucket(
            context,
            "expenses",
            lambda: data_manager.list_expenses_by_date_descending(context.workbook),
        )
        bucket["all"] = expenses
        bucket["by_id"] = {expense.expense_id: expense for expense in expenses}
    return bucket


def _ensure_settings_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = context._cache.setdefault("settings", {})
    if "current" not in bucket:
        try:
            stored = data_manager.read_settings(context.workbook)
        except (KeyError, ValueError, TypeError) as exc:
            log.error("Failed to read settings from workbook, using defaults: %s", exc)
            stored = None
        bucket["current"] = stored or setup_excel.default_store_settings(
            store_name=context.settings.store_name,
            currency_symbol=context.settings.currency_symbol,
        )
    return bucket


def warm_cache(context: RuntimeContext) -> None:
    """Load every collection into memory, as done once at start-up."""

    _ensure_products_cache(context)
    _ensure_transactions_cache(context)
    _ensure_customers_cache(context)
    _ensure_expenses_cache(context)
    _ensure_settings_cache(context)


# ---------------------------------------------------------------------------
# Context lifecycle
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None, *, seed: bool = True) -> RuntimeContext:
    """Load configuration settings and a live workbook for the store façade.

    Resolves ``config.ini``, opens the workbook, seeds the starter catalog and
    default settings on first run (when ``seed`` is set) and warms every
    snapshot.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.
        seed (bool): Whether first-run defaults should be written.

    Returns:
        RuntimeContext: Fully populated context ready for store operations.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)

    context = RuntimeContext(settings=settings, workbook=workbook)
    missing = data_manager.missing_sheets(workbook)
    if missing:
        log.error("Workbook is missing sheets: %s", ", ".join(missing))
    if seed:
        seed_defaults(context)
    warm_cache(context)
    return context


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def seed_defaults(context: RuntimeContext, *, today: Optional[date] = None) -> bool:
    """Write the starter catalog and default settings on first run.

    A workbook whose settings singleton was never written has not been
    initialized yet. Only then is an empty products collection seeded, and
    the settings row written afterwards marks the workbook as initialized.
    A catalog the admin emptied later stays empty.

    Returns:
        bool: ``True`` when anything was seeded.
    """
    seeded = False
    try:
        if data_manager.read_settings(context.workbook) is None:
            if not data_manager.list_records(context.workbook, data_manager.PRODUCTS):
                for product in setup_excel.starter_products(today):
                    data_manager.add_record(context.workbook, data_manager.PRODUCTS, product)
                log.info("Seeded starter catalog")
            data_manager.write_settings(
                context.workbook,
                setup_excel.default_store_settings(
                    store_name=context.settings.store_name,
                    currency_symbol=context.settings.currency_symbol,
                ),
            )
            log.info("Seeded default store settings")
            seeded = True
    except (KeyError, ValueError) as exc:
        log.error("Unable to seed defaults: %s", exc)
        return False

    if seeded:
        _invalidate_cache(context, "products", "settings")
        _write_through(context, "seed defaults")
    return seeded


def persist_context(context: RuntimeContext) -> None:
    """Persist in-memory workbook changes to disk and clear the dirty flag.

    Raises:
        PersistenceError: If the workbook cannot be written.
    """
    try:
        data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    except (OSError, KeyError, ValueError) as exc:
        context.is_dirty = True
        log.error("Failed to persist workbook '%s': %s", context.settings.data_file, exc)
        raise PersistenceError(str(exc)) from exc
    context.is_dirty = False
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Listeners are carried over to the new context; caches are not.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    fresh = RuntimeContext(settings=context.settings, workbook=workbook)
    fresh._listeners.extend(context._listeners)
    return fresh


def _write_through(context: RuntimeContext, action: str) -> bool:
    """Second phase of an optimistic update: try to persist, never roll back."""

    try:
        persist_context(context)
    except PersistenceError:
        log.error("Durable write failed after %s; in-memory state kept, context marked dirty", action)
        return False
    return True


def _stage(context: RuntimeContext, action: str, *collections: str) -> None:
    _invalidate_cache(context, *collections)
    _publish(context, *collections)
    _write_through(context, action)


def _wrap_store_error(action: str, exc: Exception) -> PersistenceError:
    log.error("Record store rejected %s: %s", action, exc)
    return PersistenceError(f"Unable to {action}: {exc}")


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def require_positive_money(amount: Decimal) -> None:
    """Validate that a monetary value is strictly positive.

    Raises:
        ValueError: If ``amount`` is zero or negative.
    """
    if amount <= Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be greater than zero")


def require_fields(**values: Optional[str]) -> None:
    """Raise :class:`ValidationError` naming every blank keyword argument."""

    missing = [name for name, value in values.items() if value is None or not str(value).strip()]
    if missing:
        log.warning("Validation failed, missing: %s", ", ".join(missing))
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}", missing)


def validate_product(product: data_manager.ProductRow) -> None:
    """Check the invariants every stored product must satisfy.

    Raises:
        ValidationError: If the name is blank or a PRE_ORDER product lacks a
            deadline.
        ValueError: If price or cost is negative or stock is negative.
    """
    require_fields(name=product.name)
    require_nonnegative_money(product.price)
    require_nonnegative_money(product.cost)
    if product.stock < 0:
        log.error("Stock validation failed for '%s': %s", product.product_id, product.stock)
        raise ValueError("Stock must be zero or positive")
    if product.product_type is ProductType.PRE_ORDER and product.po_deadline is None:
        raise ValidationError("Pre-order products require a deadline", ("po_deadline",))


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return the catalog snapshot in insertion order."""

    return list(_ensure_products_cache(context)["all"])


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is not in the catalog.
    """
    try:
        return _ensure_products_cache(context)["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def search_products(context: RuntimeContext, term: str = "") -> List[data_manager.ProductRow]:
    """Return products whose name contains ``term`` (case-insensitive)."""

    needle = term.strip().lower()
    return [product for product in list_products(context) if needle in product.name.lower()]


def add_product(
    context: RuntimeContext,
    *,
    name: str,
    price: Decimal,
    cost: Decimal,
    stock: int = 0,
    product_type: ProductType = ProductType.READY,
    description: str = "",
    po_deadline: Optional[date] = None,
    image: Optional[str] = None,
    product_id: Optional[str] = None,
) -> data_manager.ProductRow:
    """Validate and add a new catalog entry.

    Raises:
        ValidationError: If required attributes are missing.
        BusinessRuleViolation: If ``product_id`` is already taken.
        ValueError: If money or stock values are negative.
    """
    product = data_manager.ProductRow(
        product_id=product_id or generate_id("P"),
        name=name,
        description=description,
        price=price,
        cost=cost,
        stock=stock,
        product_type=product_type,
        po_deadline=po_deadline if product_type is ProductType.PRE_ORDER else None,
        image=image,
    )
    validate_product(product)
    if product.product_id in _ensure_products_cache(context)["by_id"]:
        raise BusinessRuleViolation(f"Product id already exists: {product.product_id}")

    try:
        data_manager.add_record(context.workbook, data_manager.PRODUCTS, product)
    except KeyError as exc:
        raise _wrap_store_error("add product", exc) from exc
    _stage(context, "add product", "products")
    log.info("Added product '%s' (%s, type=%s)", product.product_id, product.name, product.product_type.value)
    return product


def update_product(context: RuntimeContext, product_id: str, **changes: Any) -> data_manager.ProductRow:
    """Apply admin edits to an existing product.

    ``changes`` may name any :class:`~smart_pos.data_manager.ProductRow`
    attribute except ``product_id``. Historical transactions are unaffected
    because they carry their own snapshots.

    Raises:
        MissingReferenceError: If the product is unknown.
        ValidationError: If the edit breaks a product invariant.
    """
    if "product_id" in changes:
        raise BusinessRuleViolation("Product ids cannot be changed")

    current = get_product(context, product_id)
    updated = replace(current, **changes)
    if updated.product_type is not ProductType.PRE_ORDER and updated.po_deadline is not None:
        updated = replace(updated, po_deadline=None)
    validate_product(updated)

    try:
        data_manager.put_record(context.workbook, data_manager.PRODUCTS, updated)
    except KeyError as exc:
        raise _wrap_store_error("update product", exc) from exc
    _stage(context, "update product", "products")
    log.info("Updated product '%s' (%s)", product_id, ", ".join(sorted(changes)))
    return updated


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a catalog entry; past transactions keep their own snapshots.

    Raises:
        MissingReferenceError: If the product is unknown.
    """
    get_product(context, product_id)
    try:
        data_manager.delete_record(context.workbook, data_manager.PRODUCTS, product_id)
    except KeyError as exc:
        raise _wrap_store_error("delete product", exc) from exc
    _stage(context, "delete product", "products")
    log.info("Deleted product '%s'", product_id)


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


def list_customers(context: RuntimeContext) -> List[data_manager.CustomerRow]:
    return list(_ensure_customers_cache(context)["all"])


def search_customers(context: RuntimeContext, term: str = "") -> List[data_manager.CustomerRow]:
    needle = term.strip().lower()
    return [customer for customer in list_customers(context) if needle in customer.name.lower()]


def build_customer(
    *,
    name: str,
    phone: str = "",
    address: str = "",
    email: str = "",
    customer_id: Optional[str] = None,
    when: Optional[datetime] = None,
) -> data_manager.CustomerRow:
    """Create (but do not store) a validated customer record."""

    require_fields(name=name)
    return data_manager.CustomerRow(
        customer_id=customer_id or generate_id("C", when=when),
        name=name.strip(),
        phone=phone.strip(),
        address=address.strip(),
        email=email.strip(),
    )


def add_customer(context: RuntimeContext, **attributes: Any) -> data_manager.CustomerRow:
    """Add a customer record; no deduplication against existing contacts."""

    customer = build_customer(**attributes)
    try:
        data_manager.add_record(context.workbook, data_manager.CUSTOMERS, customer)
    except KeyError as exc:
        raise _wrap_store_error("add customer", exc) from exc
    _stage(context, "add customer", "customers")
    log.info("Added customer '%s' (%s)", customer.customer_id, customer.name)
    return customer


def delete_customer(context: RuntimeContext, customer_id: str) -> None:
    """Remove a customer record.

    Raises:
        MissingReferenceError: If the customer is unknown.
    """
    if customer_id not in _ensure_customers_cache(context)["by_id"]:
        log.warning("Customer lookup failed for id '%s'", customer_id)
        raise MissingReferenceError(f"Unknown customer id: {customer_id}")
    try:
        data_manager.delete_record(context.workbook, data_manager.CUSTOMERS, customer_id)
    except KeyError as exc:
        raise _wrap_store_error("delete customer", exc) from exc
    _stage(context, "delete customer", "customers")
    log.info("Deleted customer '%s'", customer_id)


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


def list_expenses(context: RuntimeContext) -> List[data_manager.ExpenseRow]:
    """Return the expense log, newest first."""

    return list(_ensure_expenses_cache(context)["all"])


def search_expenses(context: RuntimeContext, term: str = "") -> List[data_manager.ExpenseRow]:
    needle = term.strip().lower()
    return [expense for expense in list_expenses(context) if needle in expense.description.lower()]


def add_expense(
    context: RuntimeContext,
    *,
    description: str,
    amount: Decimal,
    category: str = DEFAULT_EXPENSE_CATEGORY,
    when: Optional[datetime] = None,
) -> data_manager.ExpenseRow:
    """Record a manual operating cost.

    Raises:
        ValidationError: If the description is blank.
        ValueError: If ``amount`` is not strictly positive.
    """
    require_fields(description=description)
    require_positive_money(amount)
    timestamp = resolve_timestamp(when)
    expense = data_manager.ExpenseRow(
        expense_id=generate_id("E", when=timestamp),
        date_iso=timestamp.isoformat(),
        description=description.strip(),
        amount=amount,
        category=category.strip() or DEFAULT_EXPENSE_CATEGORY,
    )
    try:
        data_manager.add_record(context.workbook, data_manager.EXPENSES, expense)
    except KeyError as exc:
        raise _wrap_store_error("add expense", exc) from exc
    _stage(context, "add expense", "expenses")
    log.info("Added expense '%s' (amount=%s, category=%s)", expense.expense_id, amount, expense.category)
    return expense


def delete_expense(context: RuntimeContext, expense_id: str) -> None:
    """Remove an expense entry.

    Raises:
        MissingReferenceError: If the expense is unknown.
    """
    if expense_id not in _ensure_expenses_cache(context)["by_id"]:
        log.warning("Expense lookup failed for id '%s'", expense_id)
        raise MissingReferenceError(f"Unknown expense id: {expense_id}")
    try:
        data_manager.delete_record(context.workbook, data_manager.EXPENSES, expense_id)
    except KeyError as exc:
        raise _wrap_store_error("delete expense", exc) from exc
    _stage(context, "delete expense", "expenses")
    log.info("Deleted expense '%s'", expense_id)


# ---------------------------------------------------------------------------
# Transaction log
# ---------------------------------------------------------------------------


def list_transactions(context: RuntimeContext) -> List[data_manager.TransactionRow]:
    """Return the immutable transaction log, most recent first."""

    return list(_ensure_transactions_cache(context)["all"])


def get_transaction(context: RuntimeContext, transaction_id: str) -> data_manager.TransactionRow:
    """Retrieve a transaction by its identifier.

    Raises:
        MissingReferenceError: If the log lacks the supplied identifier.
    """
    try:
        return _ensure_transactions_cache(context)["by_id"][transaction_id]
    except KeyError as exc:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise MissingReferenceError(f"Unknown transaction id: {transaction_id}") from exc


def _transaction_matches(transaction: data_manager.TransactionRow, needle: str) -> bool:
    return needle in transaction.transaction_id.lower() or needle in transaction.customer_name.lower()


def search_transactions(context: RuntimeContext, term: str = "") -> List[data_manager.TransactionRow]:
    """Filter the log by id substring or customer-name substring."""

    needle = term.strip().lower()
    return [transaction for transaction in list_transactions(context) if _transaction_matches(transaction, needle)]


def list_pre_order_transactions(context: RuntimeContext, term: str = "") -> List[data_manager.TransactionRow]:
    """Return transactions that contain pre-order lines, optionally filtered."""

    return [transaction for transaction in search_transactions(context, term) if transaction.is_pre_order]


def record_sale(
    context: RuntimeContext,
    transaction: data_manager.TransactionRow,
    *,
    stock_changes: Iterable[StockChange] = (),
    customer: Optional[data_manager.CustomerRow] = None,
) -> data_manager.TransactionRow:
    """Append a sale to the log together with its stock and customer effects.

    All effects are staged in the workbook and written in a single save. If
    staging or the save fails, every staged effect is undone in memory and
    :class:`PersistenceError` is raised, leaving the store exactly as it was.

    Args:
        context (RuntimeContext): Active store context.
        transaction (data_manager.TransactionRow): Fully built sale record.
        stock_changes (Iterable[StockChange]): New stock levels for READY
            products sold in this transaction.
        customer (data_manager.CustomerRow | None): Contact captured by a
            pre-order checkout.

    Returns:
        data_manager.TransactionRow: The committed transaction.

    Raises:
        PersistenceError: If the durable write fails.
    """
    changes = list(stock_changes)
    undo: List[Callable[[], None]] = []
    workbook = context.workbook
    try:
        data_manager.append_transaction(workbook, transaction)
        undo.append(lambda: data_manager.remove_transaction(workbook, transaction.transaction_id))

        for change in changes:
            data_manager.update_fields(
                workbook,
                data_manager.PRODUCTS_SHEET,
                data_manager.PRODUCTS.key_column,
                change.product_id,
                field_values={"Stock": change.new_stock},
            )
            undo.append(
                lambda change=change: data_manager.update_fields(
                    workbook,
                    data_manager.PRODUCTS_SHEET,
                    data_manager.PRODUCTS.key_column,
                    change.product_id,
                    field_values={"Stock": change.previous_stock},
                )
            )

        if customer is not None:
            data_manager.add_record(workbook, data_manager.CUSTOMERS, customer)
            undo.append(lambda: data_manager.delete_record(workbook, data_manager.CUSTOMERS, customer.customer_id))

        data_manager.save_workbook(workbook, destination=context.settings.data_file)
    except (OSError, KeyError, ValueError) as exc:
        for step in reversed(undo):
            step()
        log.error("Sale '%s' was not committed: %s", transaction.transaction_id, exc)
        raise PersistenceError(f"Unable to record sale {transaction.transaction_id}: {exc}") from exc

    context.is_dirty = False
    touched = ["transactions", "products"]
    if customer is not None:
        touched.append("customers")
    _invalidate_cache(context, *touched)
    _publish(context, *touched)
    log.info(
        "Recorded sale '%s' (lines=%d, total=%s, profit=%s, pre_order=%s)",
        transaction.transaction_id,
        len(transaction.items),
        transaction.total,
        transaction.profit,
        transaction.is_pre_order,
    )
    return transaction


# ---------------------------------------------------------------------------
# Settings and admin gate
# ---------------------------------------------------------------------------


def get_store_settings(context: RuntimeContext) -> data_manager.StoreSettingsRow:
    return _ensure_settings_cache(context)["current"]


def update_store_settings(context: RuntimeContext, **changes: Any) -> data_manager.StoreSettingsRow:
    """Update the settings singleton in place.

    Raises:
        ValidationError: If the PIN is not exactly six characters or the store
            name is blank.
    """
    updated = replace(get_store_settings(context), **changes)
    require_fields(name=updated.name)
    if len(updated.pin) != PIN_LENGTH:
        raise ValidationError(f"PIN must be exactly {PIN_LENGTH} characters", ("pin",))

    try:
        data_manager.write_settings(context.workbook, updated)
    except KeyError as exc:
        raise _wrap_store_error("update settings", exc) from exc
    _stage(context, "update settings", "settings")
    log.info("Updated store settings (%s)", ", ".join(sorted(changes)))
    return updated


def verify_admin_pin(settings: data_manager.StoreSettingsRow, entered: str) -> bool:
    """Compare an entered code with the stored PIN, character for character.

    This is a convenience gate for the back-office, not a security boundary.
    """
    if len(entered) != PIN_LENGTH:
        return False
    return entered == settings.pin


def snapshot(context: RuntimeContext) -> Mapping[str, Any]:
    """Return read-only copies of every collection for a presentation layer."""

    return {
        "products": tuple(list_products(context)),
        "transactions": tuple(list_transactions(context)),
        "customers": tuple(list_customers(context)),
        "expenses": tuple(list_expenses(context)),
        "settings": get_store_settings(context),
    }
