"""Data access layer for Smart POS.

This module provides low-level helpers that read from and write to the
``smart_pos_data.xlsx`` workbook. Business rules belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Record collections: listing, fetching, adding, upserting and deleting the
   products, transactions, customers, expenses and the settings singleton.

Sheet names and header titles are the persisted schema. They must stay stable
across releases so previously written workbooks remain readable.
"""


from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, Sequence, TypeVar

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_CUSTOMER_NAME,
    DEFAULT_EXPENSE_CATEGORY,
    SETTINGS_KEY,
    PaymentMethod,
    ProductType,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
DEFAULT_ADVISOR_MODEL = "gemini-2.5-flash"
DEFAULT_ADVISOR_LANGUAGE = "Indonesian"
DEFAULT_ADVISOR_TIMEOUT = 20.0
ADVISOR_KEY_ENV_VARS = ("GEMINI_API_KEY", "API_KEY")

PRODUCTS_SHEET = SheetName.PRODUCTS.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
TRANSACTION_ITEMS_SHEET = SheetName.TRANSACTION_ITEMS.value
CUSTOMERS_SHEET = SheetName.CUSTOMERS.value
EXPENSES_SHEET = SheetName.EXPENSES.value
SETTINGS_SHEET = SheetName.SETTINGS.value

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: [
        "ProductID",
        "Name",
        "Description",
        "Price",
        "Cost",
        "Stock",
        "ProductType",
        "PODeadline",
        "Image",
    ],
    TRANSACTIONS_SHEET: [
        "TransactionID",
        "Timestamp",
        "Total",
        "Profit",
        "CustomerName",
        "CustomerPhone",
        "CustomerAddress",
        "PaymentMethod",
        "IsPreOrder",
    ],
    TRANSACTION_ITEMS_SHEET: [
        "TransactionID",
        "LineNumber",
        "ProductID",
        "ProductName",
        "Price",
        "Cost",
        "Quantity",
        "Subtotal",
        "ProductType",
    ],
    CUSTOMERS_SHEET: [
        "CustomerID",
        "Name",
        "Phone",
        "Address",
        "Email",
    ],
    EXPENSES_SHEET: [
        "ExpenseID",
        "Date",
        "Description",
        "Amount",
        "Category",
    ],
    SETTINGS_SHEET: [
        "SettingsID",
        "StoreName",
        "Address",
        "Logo",
        "CurrencySymbol",
        "Pin",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    default_customer_name: str = DEFAULT_CUSTOMER_NAME
    currency_symbol: str = "Rp"
    advisor_api_key: str = ""
    advisor_model: str = DEFAULT_ADVISOR_MODEL
    advisor_language: str = DEFAULT_ADVISOR_LANGUAGE
    advisor_timeout: float = DEFAULT_ADVISOR_TIMEOUT


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    name: str
    description: str
    price: Decimal
    cost: Decimal
    stock: int
    product_type: ProductType
    po_deadline: Optional[date] = None
    image: Optional[str] = None

    @property
    def is_pre_order(self) -> bool:
        return self.product_type is ProductType.PRE_ORDER


@dataclass(frozen=True)
class TransactionItemRow:
    """Denormalised snapshot of one product line at the moment of sale."""

    product_id: str
    name: str
    price: Decimal
    cost: Decimal
    quantity: int
    subtotal: Decimal
    product_type: ProductType


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a ``Transactions`` row joined with its line items."""

    transaction_id: str
    timestamp_iso: str
    items: tuple[TransactionItemRow, ...]
    total: Decimal
    profit: Decimal
    customer_name: str
    customer_phone: Optional[str]
    customer_address: Optional[str]
    payment_method: PaymentMethod
    is_pre_order: bool


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: str
    name: str
    phone: str
    address: str
    email: str = ""


@dataclass(frozen=True)
class ExpenseRow:
    """In-memory view of a row from the ``Expenses`` sheet."""

    expense_id: str
    date_iso: str
    description: str
    amount: Decimal
    category: str = DEFAULT_EXPENSE_CATEGORY


@dataclass(frozen=True)
class StoreSettingsRow:
    """The store settings singleton stored under :data:`SETTINGS_KEY`."""

    name: str
    address: str
    logo: str
    currency_symbol: str
    pin: str


RecordT = TypeVar("RecordT")


@dataclass(frozen=True)
class Collection(Generic[RecordT]):
    """Describe how one keyed record type maps onto a worksheet."""

    sheet_name: str
    key_column: str
    key_of: Callable[[RecordT], str]
    serialize: Callable[[RecordT], list[object]]
    deserialize: Callable[[Sequence[object]], RecordT]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Defaults]`` and ``[Advisor]`` are
    optional and fall back to built-in values. The advisor API key falls back
    to the ``GEMINI_API_KEY`` and ``API_KEY`` environment variables when the
    file leaves it blank. Relative ``DataFile`` paths are anchored to
    ``base_path`` (or the working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor relative data paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required ``[System]`` options is missing.
        ValueError: If ``TimeoutSeconds`` is not a number.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    api_key = parser.get("Advisor", "ApiKey", fallback="").strip()
    if not api_key:
        api_key = next((os.environ[name] for name in ADVISOR_KEY_ENV_VARS if os.environ.get(name)), "")

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        default_customer_name=parser.get("Defaults", "DefaultCustomerName", fallback=DEFAULT_CUSTOMER_NAME),
        currency_symbol=parser.get("Defaults", "CurrencySymbol", fallback="Rp"),
        advisor_api_key=api_key,
        advisor_model=parser.get("Advisor", "Model", fallback=DEFAULT_ADVISOR_MODEL),
        advisor_language=parser.get("Advisor", "Language", fallback=DEFAULT_ADVISOR_LANGUAGE),
        advisor_timeout=parser.getfloat("Advisor", "TimeoutSeconds", fallback=DEFAULT_ADVISOR_TIMEOUT),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the Smart POS workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def missing_sheets(workbook: Workbook) -> List[str]:
    """Return the managed sheet names absent from ``workbook``."""

    present = set(workbook.sheetnames)
    return [name for name in SHEET_COLUMNS if name not in present]


# ---------------------------------------------------------------------------
# Generic row helpers
# ---------------------------------------------------------------------------


def _header_map(workbook: Workbook, sheet_name: str) -> Dict[Any, int]:
    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def iter_raw_rows(workbook: Workbook, sheet_name: str) -> Iterable[tuple[int, Sequence[object]]]:
    """Yield ``(row_index, values)`` for every non-empty data row of a sheet.

    The header row and fully empty rows are skipped. Row indices are the
    1-based Excel indices so callers can feed them back into
    :func:`write_row` or :func:`delete_row`.
    """

    sheet = workbook[sheet_name]
    for row_idx, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if any(cell is not None for cell in raw):
            yield row_idx, raw


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the lookup column.
        key_value (str): Value to match within the key column. Cells are
            compared as strings so numeric-looking identifiers that Excel
            stored as numbers still match.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    for row_idx, row in iter_raw_rows(workbook, sheet_name):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == str(key_value):
            return row_idx

    return None


def append_row(workbook: Workbook, sheet_name: str, values: Sequence[object]) -> int:
    """Append ``values`` to ``sheet_name`` and return the new row index."""

    sheet = workbook[sheet_name]
    sheet.append(list(values))
    return sheet.max_row


def write_row(workbook: Workbook, sheet_name: str, row_index: int, values: Sequence[object]) -> None:
    """Overwrite every column of an existing row with ``values``."""

    sheet = workbook[sheet_name]
    for column, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=column, value=value)


def delete_row(workbook: Workbook, sheet_name: str, row_index: int) -> None:
    """Remove a row, shifting the rows below it up by one."""

    workbook[sheet_name].delete_rows(row_index)


def update_fields(workbook: Workbook, sheet_name: str, key_column: str, key_value: str, *, field_values: Mapping[str, Any]) -> None:
    """Update selected columns of the row whose ``key_column`` equals ``key_value``.

    Only the specified fields are modified, leaving other columns untouched.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"Record not found in '{sheet_name}': {key_value}")

    header_map = _header_map(workbook, sheet_name)
    sheet = workbook[sheet_name]
    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown column in '{sheet_name}': {field}")
        sheet.cell(row=row_index, column=header_map[field], value=value)


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def _to_decimal(raw: object, default: str = "0") -> Decimal:
    if raw is None or raw == "":
        return Decimal(default)
    try:
        return Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid numeric cell value: {raw!r}") from exc


def _to_int(raw: object) -> int:
    if raw is None or raw == "":
        return 0
    return int(Decimal(str(raw)))


def _to_text(raw: object) -> str:
    return "" if raw is None else str(raw)


def _to_optional_text(raw: object) -> Optional[str]:
    return None if raw is None or raw == "" else str(raw)


def _to_bool(raw: object) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in {"true", "1", "yes"}
    return bool(raw)


def _to_date(raw: object) -> Optional[date]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw)[:10])


def _to_date_iso(raw: object) -> str:
    if isinstance(raw, datetime):
        return raw.isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    return _to_text(raw)


def _to_product_type(raw: object) -> ProductType:
    text = _to_text(raw).strip().upper()
    # "PO" is the short label used by early exports.
    if text == "PO":
        return ProductType.PRE_ORDER
    return ProductType(text or ProductType.READY.value)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the ``Products`` column ordering."""

    return [
        record.product_id,
        record.name,
        record.description,
        record.price,
        record.cost,
        record.stock,
        record.product_type.value,
        record.po_deadline.isoformat() if record.po_deadline else None,
        record.image,
    ]


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw ``Products`` row into a strongly typed product record.

    Numeric columns become :class:`~decimal.Decimal` (money) or ``int``
    (stock); identifiers are coerced to ``str`` because Excel happily turns
    ``"1"`` into ``1``.
    """

    product_id, name, description, price, cost, stock, product_type, po_deadline, image = raw_row[:9]
    return ProductRow(
        product_id=_to_text(product_id),
        name=_to_text(name),
        description=_to_text(description),
        price=_to_decimal(price),
        cost=_to_decimal(cost),
        stock=_to_int(stock),
        product_type=_to_product_type(product_type),
        po_deadline=_to_date(po_deadline),
        image=_to_optional_text(image),
    )


def serialize_transaction(record: TransactionRow) -> list[object]:
    """Convert a transaction header into the ``Transactions`` column order."""

    return [
        record.transaction_id,
        record.timestamp_iso,
        record.total,
        record.profit,
        record.customer_name,
        record.customer_phone,
        record.customer_address,
        record.payment_method.value,
        record.is_pre_order,
    ]


def serialize_transaction_item(transaction_id: str, line_number: int, item: TransactionItemRow) -> list[object]:
    """Convert one line item into the ``TransactionItems`` column order."""

    return [
        transaction_id,
        line_number,
        item.product_id,
        item.name,
        item.price,
        item.cost,
        item.quantity,
        item.subtotal,
        item.product_type.value,
    ]


def deserialize_transaction_item(raw_row: Sequence[object]) -> tuple[str, int, TransactionItemRow]:
    """Convert a raw ``TransactionItems`` row into ``(transaction_id, line, item)``."""

    transaction_id, line_number, product_id, name, price, cost, quantity, subtotal, product_type = raw_row[:9]
    item = TransactionItemRow(
        product_id=_to_text(product_id),
        name=_to_text(name),
        price=_to_decimal(price),
        cost=_to_decimal(cost),
        quantity=_to_int(quantity),
        subtotal=_to_decimal(subtotal),
        product_type=_to_product_type(product_type),
    )
    return _to_text(transaction_id), _to_int(line_number), item


def deserialize_transaction(raw_row: Sequence[object], items: Sequence[TransactionItemRow] = ()) -> TransactionRow:
    """Convert a raw ``Transactions`` row plus its items into a record.

    Optional contact columns stay ``None`` when blank; an unknown or blank
    payment method reads back as ``CASH``.
    """

    (
        transaction_id,
        timestamp_iso,
        total,
        profit,
        customer_name,
        customer_phone,
        customer_address,
        payment_method,
        is_pre_order,
    ) = raw_row[:9]

    method_text = _to_text(payment_method).strip().upper()
    method = PaymentMethod(method_text) if method_text in PaymentMethod.__members__ else PaymentMethod.CASH

    return TransactionRow(
        transaction_id=_to_text(transaction_id),
        timestamp_iso=_to_date_iso(timestamp_iso),
        items=tuple(items),
        total=_to_decimal(total),
        profit=_to_decimal(profit),
        customer_name=_to_text(customer_name) or DEFAULT_CUSTOMER_NAME,
        customer_phone=_to_optional_text(customer_phone),
        customer_address=_to_optional_text(customer_address),
        payment_method=method,
        is_pre_order=_to_bool(is_pre_order),
    )


def serialize_customer(record: CustomerRow) -> list[object]:
    return [record.customer_id, record.name, record.phone, record.address, record.email]


def deserialize_customer(raw_row: Sequence[object]) -> CustomerRow:
    customer_id, name, phone, address, email = raw_row[:5]
    return CustomerRow(
        customer_id=_to_text(customer_id),
        name=_to_text(name),
        phone=_to_text(phone),
        address=_to_text(address),
        email=_to_text(email),
    )


def serialize_expense(record: ExpenseRow) -> list[object]:
    return [record.expense_id, record.date_iso, record.description, record.amount, record.category]


def deserialize_expense(raw_row: Sequence[object]) -> ExpenseRow:
    expense_id, date_iso, description, amount, category = raw_row[:5]
    return ExpenseRow(
        expense_id=_to_text(expense_id),
        date_iso=_to_date_iso(date_iso),
        description=_to_text(description),
        amount=_to_decimal(amount),
        category=_to_text(category) or DEFAULT_EXPENSE_CATEGORY,
    )


def serialize_settings(record: StoreSettingsRow) -> list[object]:
    return [SETTINGS_KEY, record.name, record.address, record.logo, record.currency_symbol, record.pin]


def deserialize_settings(raw_row: Sequence[object]) -> StoreSettingsRow:
    _key, name, address, logo, currency_symbol, pin = raw_row[:6]
    return StoreSettingsRow(
        name=_to_text(name),
        address=_to_text(address),
        logo=_to_text(logo),
        currency_symbol=_to_text(currency_symbol),
        pin=_to_text(pin),
    )


PRODUCTS = Collection[ProductRow](
    sheet_name=PRODUCTS_SHEET,
    key_column="ProductID",
    key_of=lambda record: record.product_id,
    serialize=serialize_product,
    deserialize=deserialize_product,
)

CUSTOMERS = Collection[CustomerRow](
    sheet_name=CUSTOMERS_SHEET,
    key_column="CustomerID",
    key_of=lambda record: record.customer_id,
    serialize=serialize_customer,
    deserialize=deserialize_customer,
)

EXPENSES = Collection[ExpenseRow](
    sheet_name=EXPENSES_SHEET,
    key_column="ExpenseID",
    key_of=lambda record: record.expense_id,
    serialize=serialize_expense,
    deserialize=deserialize_expense,
)


# ---------------------------------------------------------------------------
# Keyed collections: products, customers, expenses
# ---------------------------------------------------------------------------


def list_records(workbook: Workbook, collection: Collection[RecordT]) -> List[RecordT]:
    """Return every record of ``collection`` in insertion (sheet) order."""

    return [collection.deserialize(raw) for _, raw in iter_raw_rows(workbook, collection.sheet_name)]


def get_record(workbook: Workbook, collection: Collection[RecordT], record_id: str) -> Optional[RecordT]:
    """Return the record keyed by ``record_id`` or ``None`` when absent."""

    row_index = locate_row(workbook, collection.sheet_name, collection.key_column, record_id)
    if row_index is None:
        return None
    raw = next(workbook[collection.sheet_name].iter_rows(min_row=row_index, max_row=row_index, values_only=True))
    return collection.deserialize(raw)


def add_record(workbook: Workbook, collection: Collection[RecordT], record: RecordT) -> None:
    """Append a new record.

    Raises:
        KeyError: If a record with the same identifier already exists.
    """

    key = collection.key_of(record)
    if locate_row(workbook, collection.sheet_name, collection.key_column, key) is not None:
        raise KeyError(f"Duplicate id in '{collection.sheet_name}': {key}")
    append_row(workbook, collection.sheet_name, collection.serialize(record))


def put_record(workbook: Workbook, collection: Collection[RecordT], record: RecordT) -> None:
    """Insert ``record`` or overwrite the existing row carrying its id."""

    key = collection.key_of(record)
    row_index = locate_row(workbook, collection.sheet_name, collection.key_column, key)
    values = collection.serialize(record)
    if row_index is None:
        append_row(workbook, collection.sheet_name, values)
    else:
        write_row(workbook, collection.sheet_name, row_index, values)


def delete_record(workbook: Workbook, collection: Collection[RecordT], record_id: str) -> bool:
    """Delete the record keyed by ``record_id``; return whether it existed."""

    row_index = locate_row(workbook, collection.sheet_name, collection.key_column, record_id)
    if row_index is None:
        return False
    delete_row(workbook, collection.sheet_name, row_index)
    return True


def iter_expenses(workbook: Workbook) -> Iterable[ExpenseRow]:
    """Iterate over expense records stored on the ``Expenses`` worksheet."""

    for _, raw in iter_raw_rows(workbook, EXPENSES_SHEET):
        yield deserialize_expense(raw)


def list_expenses_by_date_descending(workbook: Workbook) -> List[ExpenseRow]:
    """Return expenses newest first; equal dates keep the newest insertion first."""

    expenses = list(iter_expenses(workbook))
    expenses.reverse()
    return sorted(expenses, key=lambda expense: expense.date_iso, reverse=True)


# ---------------------------------------------------------------------------
# Transaction log
# ---------------------------------------------------------------------------


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRow]:
    """Stream transactions in log order, each joined with its line items.

    Line items are grouped by ``TransactionID`` and ordered by
    ``LineNumber`` so receipts reproduce the cart order.
    """

    grouped: Dict[str, List[tuple[int, TransactionItemRow]]] = {}
    for _, raw in iter_raw_rows(workbook, TRANSACTION_ITEMS_SHEET):
        transaction_id, line_number, item = deserialize_transaction_item(raw)
        grouped.setdefault(transaction_id, []).append((line_number, item))

    for _, raw in iter_raw_rows(workbook, TRANSACTIONS_SHEET):
        transaction_id = _to_text(raw[0])
        lines = sorted(grouped.get(transaction_id, []), key=lambda pair: pair[0])
        yield deserialize_transaction(raw, [item for _, item in lines])


def list_transactions_by_date_descending(workbook: Workbook) -> List[TransactionRow]:
    """Return the transaction log with the most recent entry first."""

    transactions = list(iter_transactions(workbook))
    transactions.reverse()
    return sorted(transactions, key=lambda transaction: transaction.timestamp_iso, reverse=True)


def append_transaction(workbook: Workbook, record: TransactionRow) -> None:
    """Append a transaction header and all of its line items.

    Raises:
        KeyError: If the transaction id is already present in the log.
    """

    if locate_row(workbook, TRANSACTIONS_SHEET, "TransactionID", record.transaction_id) is not None:
        raise KeyError(f"Duplicate transaction id: {record.transaction_id}")

    append_row(workbook, TRANSACTIONS_SHEET, serialize_transaction(record))
    for line_number, item in enumerate(record.items, start=1):
        append_row(workbook, TRANSACTION_ITEMS_SHEET, serialize_transaction_item(record.transaction_id, line_number, item))


def remove_transaction(workbook: Workbook, transaction_id: str) -> None:
    """Strip a transaction and its items from the in-memory workbook.

    Only used to undo an append whose durable write failed; committed
    transactions are never removed.
    """

    header_row = locate_row(workbook, TRANSACTIONS_SHEET, "TransactionID", transaction_id)
    if header_row is not None:
        delete_row(workbook, TRANSACTIONS_SHEET, header_row)

    item_rows = [
        row_idx
        for row_idx, raw in iter_raw_rows(workbook, TRANSACTION_ITEMS_SHEET)
        if _to_text(raw[0]) == transaction_id
    ]
    for row_idx in reversed(item_rows):
        delete_row(workbook, TRANSACTION_ITEMS_SHEET, row_idx)


# ---------------------------------------------------------------------------
# Settings singleton
# ---------------------------------------------------------------------------


def read_settings(workbook: Workbook) -> Optional[StoreSettingsRow]:
    """Return the settings singleton, or ``None`` when it was never written."""

    row_index = locate_row(workbook, SETTINGS_SHEET, "SettingsID", SETTINGS_KEY)
    if row_index is None:
        return None
    raw = next(workbook[SETTINGS_SHEET].iter_rows(min_row=row_index, max_row=row_index, values_only=True))
    return deserialize_settings(raw)


def write_settings(workbook: Workbook, record: StoreSettingsRow) -> None:
    """Create or overwrite the settings singleton in place."""

    row_index = locate_row(workbook, SETTINGS_SHEET, "SettingsID", SETTINGS_KEY)
    values = serialize_settings(record)
    if row_index is None:
        append_row(workbook, SETTINGS_SHEET, values)
    else:
        write_row(workbook, SETTINGS_SHEET, row_index, values)
    log.debug("Settings row staged for store '%s'", record.name)
