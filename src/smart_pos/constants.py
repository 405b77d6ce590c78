"""Enumerations shared across Smart POS modules.

Centralises domain constants so that the workbook layer, the cart and
checkout engines, reporting, and the command-line front-end all rely on a
single source of truth for identifiers that end up persisted on disk.
"""

from __future__ import annotations

from enum import Enum


# Workbook schema version expected by every layer when opening the data file.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_CUSTOMER_NAME = "General Customer"
DEFAULT_EXPENSE_CATEGORY = "General"
SETTINGS_KEY = "store"
PIN_LENGTH = 6


class ProductType(str, Enum):
    """Enumerate how a product is fulfilled."""

    READY = "READY"
    PRE_ORDER = "PRE_ORDER"


class PaymentMethod(str, Enum):
    """Enumerate payment methods recorded on transactions.

    Checkout only produces ``CASH``; the other members are reserved so that
    persisted data stays readable once they are offered.
    """

    CASH = "CASH"
    QRIS = "QRIS"
    TRANSFER = "TRANSFER"


class CategoryFilter(str, Enum):
    """Enumerate the cashier screen's product category tabs."""

    ALL = "ALL"
    READY = "READY"
    PRE_ORDER = "PRE_ORDER"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    PRODUCTS = "Products"
    TRANSACTIONS = "Transactions"
    TRANSACTION_ITEMS = "TransactionItems"
    CUSTOMERS = "Customers"
    EXPENSES = "Expenses"
    SETTINGS = "Settings"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_CUSTOMER_NAME",
    "DEFAULT_EXPENSE_CATEGORY",
    "SETTINGS_KEY",
    "PIN_LENGTH",
    "ProductType",
    "PaymentMethod",
    "CategoryFilter",
    "SheetName",
]
