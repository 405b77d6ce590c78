"""Command-line entry points for the Smart POS toolkit.

The CLI is a thin front-end over the store façade: it wires argparse
sub-commands, translates arguments into façade calls and prints the results.
Cashier commands (``catalog`` and ``sell``) are open; every back-office
command requires the admin ``--pin``.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import advisor, cart as cart_engine, catalog, checkout, core_logic, data_manager, log, reporting
from .constants import CategoryFilter, ProductType


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    requires_admin: bool = True


def money_arg(raw: str) -> Decimal:
    """argparse ``type`` for monetary amounts."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid amount: {raw!r}") from exc


def date_arg(raw: str) -> date:
    """argparse ``type`` for ISO dates (``YYYY-MM-DD``)."""
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date: {raw!r}, expected YYYY-MM-DD") from exc


def period_arg(raw: str) -> reporting.ReportingPeriod:
    """argparse ``type`` for reporting months (``YYYY-MM``)."""
    try:
        return reporting.ReportingPeriod.from_string(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def item_arg(raw: str) -> Tuple[str, int]:
    """argparse ``type`` for ``PRODUCT_ID[:QTY]`` cart entries."""
    product_id, _, quantity_text = raw.partition(":")
    try:
        quantity = int(quantity_text) if quantity_text else 1
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid quantity in {raw!r}") from exc
    if not product_id or quantity < 1:
        raise argparse.ArgumentTypeError(f"invalid item {raw!r}, expected PRODUCT_ID[:QTY]")
    return product_id, quantity


def _add_pin_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--pin", required=True, help="Six-character admin PIN.")


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="smart-pos",
        description="Command-line tools for the Smart POS workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and catalog edits."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "add-customer": register_add_customer_command(subparsers),
        "delete-customer": register_delete_customer_command(subparsers),
        "add-expense": register_add_expense_command(subparsers),
        "delete-expense": register_delete_expense_command(subparsers),
        "settings": register_settings_command(subparsers),
        "sell": register_sell_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "catalog": register_catalog_command(subparsers),
        "log": register_log_command(subparsers),
        "preorders": register_preorders_command(subparsers),
        "customers": register_customers_command(subparsers),
        "report": register_report_command(subparsers),
        "describe": register_describe_command(subparsers),
        "analyze": register_analyze_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_product_fields(parser: argparse.ArgumentParser, *, creating: bool) -> None:
    parser.add_argument("--name", required=creating)
    parser.add_argument("--price", type=money_arg, required=creating)
    parser.add_argument("--cost", type=money_arg, required=creating)
    parser.add_argument("--stock", type=int, default=0 if creating else None)
    parser.add_argument(
        "--type",
        dest="product_type",
        choices=[member.value for member in ProductType],
        default=ProductType.READY.value if creating else None,
    )
    parser.add_argument("--description", default="" if creating else None)
    parser.add_argument("--deadline", type=date_arg, default=None, help="Pre-order deadline (YYYY-MM-DD).")
    parser.add_argument("--image", default=None)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a product to the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", default=None, help="Explicit id (generated when omitted).")
        _add_product_fields(parser, creating=True)
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Edit an existing product; only the given fields change."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        _add_product_fields(parser, creating=False)
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Remove a product from the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""
    name = "add-customer"
    help_text = "Add a customer record."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default="")
        parser.add_argument("--address", default="")
        parser.add_argument("--email", default="")
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_customer)


def register_delete_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-customer``."""
    name = "delete-customer"
    help_text = "Remove a customer record."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_customer)


def register_add_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-expense``."""
    name = "add-expense"
    help_text = "Record an operating expense."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--description", required=True)
        parser.add_argument("--amount", type=money_arg, required=True)
        parser.add_argument("--category", default="General")
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_expense)


def register_delete_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-expense``."""
    name = "delete-expense"
    help_text = "Remove an expense entry."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--expense-id", required=True)
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_expense)


def register_settings_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``settings``."""
    name = "settings"
    help_text = "Show or change the store settings."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--store-name", default=None)
        parser.add_argument("--address", default=None)
        parser.add_argument("--logo", default=None)
        parser.add_argument("--currency", default=None)
        parser.add_argument("--new-pin", default=None)
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_settings)


def register_sell_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sell``."""
    name = "sell"
    help_text = "Ring up a sale and print the receipt."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=item_arg,
            required=True,
            metavar="PRODUCT_ID[:QTY]",
        )
        parser.add_argument("--customer-name", default=None)
        parser.add_argument("--customer-phone", default=None)
        parser.add_argument("--customer-address", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sell, requires_admin=False)


def register_catalog_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``catalog``."""
    name = "catalog"
    help_text = "List the products currently offered at the till."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.add_argument(
            "--category",
            choices=[member.value for member in CategoryFilter],
            default=CategoryFilter.ALL.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_catalog, requires_admin=False)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the transaction log."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="", help="Match transaction id or customer name.")
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report)


def register_preorders_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``preorders``."""
    name = "preorders"
    help_text = "Display transactions that contain pre-order items."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_preorders_report)


def register_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``customers``."""
    name = "customers"
    help_text = "Display customer records."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_customers_report)


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Display revenue, profit and expenses for a month."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--month", type=period_arg, default=None, help="Reporting month (YYYY-MM).")
        parser.add_argument("--daily", action="store_true", help="Also print the daily revenue series.")
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_period_report)


def register_describe_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``describe``."""
    name = "describe"
    help_text = "Ask the AI advisor for a product description."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument(
            "--type",
            dest="product_type",
            choices=[member.value for member in ProductType],
            default=ProductType.READY.value,
        )
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_describe)


def register_analyze_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``analyze``."""
    name = "analyze"
    help_text = "Ask the AI advisor to comment on a month of sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--month", type=period_arg, default=None, help="Reporting month (YYYY-MM).")
        _add_pin_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_analyze)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def require_admin(context: core_logic.RuntimeContext, args: argparse.Namespace) -> None:
    """Check the admin PIN for back-office commands.

    Raises:
        BusinessRuleViolation: If the PIN does not match the store settings.
    """
    if not core_logic.verify_admin_pin(core_logic.get_store_settings(context), getattr(args, "pin", "") or ""):
        log.warning("Rejected '%s': invalid admin PIN", args.command)
        raise core_logic.BusinessRuleViolation("Invalid admin PIN")


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    if spec.requires_admin:
        require_admin(context, args)
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def format_money(amount: Decimal, symbol: str) -> str:
    return f"{symbol} {amount:,.0f}"


def _currency(context: core_logic.RuntimeContext) -> str:
    return core_logic.get_store_settings(context).currency_symbol


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "product_id": args.product_id,
        "name": args.name,
        "price": args.price,
        "cost": args.cost,
        "stock": args.stock,
        "product_type": ProductType(args.product_type),
        "description": args.description,
        "po_deadline": args.deadline,
        "image": args.image,
    }


def translate_update_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into the subset of product fields being changed."""
    candidates = {
        "name": args.name,
        "price": args.price,
        "cost": args.cost,
        "stock": args.stock,
        "product_type": ProductType(args.product_type) if args.product_type else None,
        "description": args.description,
        "po_deadline": args.deadline,
        "image": args.image,
    }
    return {key: value for key, value in candidates.items() if value is not None}


def translate_settings(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into the subset of settings being changed."""
    candidates = {
        "name": args.store_name,
        "address": args.address,
        "logo": args.logo,
        "currency_symbol": args.currency,
        "pin": args.new_pin,
    }
    return {key: value for key, value in candidates.items() if value is not None}


def translate_customer(args: argparse.Namespace) -> Optional[checkout.CustomerInfo]:
    """Translate optional buyer flags into checkout customer details."""
    values = (args.customer_name, args.customer_phone, args.customer_address)
    if all(value is None for value in values):
        return None
    return checkout.CustomerInfo(*(value or "" for value in values))


def build_cart(context: core_logic.RuntimeContext, items: Sequence[Tuple[str, int]]) -> cart_engine.Cart:
    """Fill a cart the way the cashier screen does, one tap at a time.

    Raises:
        MissingReferenceError: If a product id is unknown.
        BusinessRuleViolation: If a product is not offered or the requested
            quantity exceeds READY stock.
    """
    cart = cart_engine.Cart()
    for product_id, quantity in items:
        product = core_logic.get_product(context, product_id)
        if not catalog.is_offerable(product):
            raise core_logic.BusinessRuleViolation(f"Product '{product_id}' is not currently offered")
        existing = cart.find(product_id)
        wanted = (existing.quantity if existing else 0) + quantity
        line = cart_engine.add_item(cart, product)
        if line.quantity != wanted and not cart_engine.change_quantity(cart, product_id, wanted - line.quantity):
            raise core_logic.BusinessRuleViolation(
                f"Only {product.stock} unit(s) of '{product_id}' available, requested {wanted}"
            )
    return cart


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the store façade."""
    payload = translate_add_product(args)
    product = core_logic.add_product(context, **payload)
    print(f"Added product {product.product_id}: {product.name}")
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow in the store façade."""
    changes = translate_update_product(args)
    if not changes:
        raise core_logic.BusinessRuleViolation("No product fields to update")
    product = core_logic.update_product(context, args.product_id, **changes)
    print(f"Updated product {product.product_id}: {', '.join(sorted(changes))}")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_product(context, args.product_id)
    print(f"Deleted product {args.product_id}")
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customer = core_logic.add_customer(
        context,
        name=args.name,
        phone=args.phone,
        address=args.address,
        email=args.email,
    )
    print(f"Added customer {customer.customer_id}: {customer.name}")
    return 0


def run_delete_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_customer(context, args.customer_id)
    print(f"Deleted customer {args.customer_id}")
    return 0


def run_add_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    expense = core_logic.add_expense(
        context,
        description=args.description,
        amount=args.amount,
        category=args.category,
    )
    print(f"Recorded expense {expense.expense_id}: {format_money(expense.amount, _currency(context))}")
    return 0


def run_delete_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_expense(context, args.expense_id)
    print(f"Deleted expense {args.expense_id}")
    return 0


def run_settings(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Apply settings changes when given, then print the current settings."""
    changes = translate_settings(args)
    settings = core_logic.update_store_settings(context, **changes) if changes else core_logic.get_store_settings(context)
    print(f"Store:    {settings.name}")
    print(f"Address:  {settings.address}")
    print(f"Logo:     {settings.logo}")
    print(f"Currency: {settings.currency_symbol}")
    return 0


def run_sell(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the cashier flow: fill the cart, check out, print the receipt."""
    cart = build_cart(context, args.items)
    receipt = checkout.checkout(context, cart, customer=translate_customer(args))
    print_receipt(receipt, core_logic.get_store_settings(context))
    return 0


def print_receipt(receipt: data_manager.TransactionRow, settings: data_manager.StoreSettingsRow) -> None:
    symbol = settings.currency_symbol
    print(settings.name)
    print(settings.address)
    print(f"{receipt.transaction_id}  {receipt.timestamp_iso}")
    print(f"Customer: {receipt.customer_name}")
    for item in receipt.items:
        marker = " (PO)" if item.product_type is ProductType.PRE_ORDER else ""
        print(f"  {item.quantity} x {item.name}{marker}  {format_money(item.subtotal, symbol)}")
    print(f"TOTAL {format_money(receipt.total, symbol)}  [{receipt.payment_method.value}]")


def run_catalog(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List offerable products for the cashier."""
    symbol = _currency(context)
    products = catalog.filter_offerable(
        core_logic.list_products(context),
        search=args.search,
        category=CategoryFilter(args.category),
    )
    for product in products:
        if product.is_pre_order:
            availability = f"PO until {product.po_deadline.isoformat()}" if product.po_deadline else "PO"
        else:
            availability = f"stock {product.stock}" if product.stock > 0 else "sold out"
        print(f"{product.product_id:<24} {product.name:<28} {format_money(product.price, symbol):>14}  {availability}")
    return 0


def _print_transactions(transactions: Sequence[data_manager.TransactionRow], symbol: str) -> None:
    for transaction in transactions:
        flag = " PO" if transaction.is_pre_order else ""
        print(
            f"{transaction.transaction_id:<24} {transaction.timestamp_iso[:16]:<17} "
            f"{transaction.customer_name:<20} {format_money(transaction.total, symbol):>14}{flag}"
        )


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction log reporting workflow."""
    _print_transactions(core_logic.search_transactions(context, args.search), _currency(context))
    return 0


def run_preorders_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List pre-order transactions with the buyer's contact details."""
    for transaction in core_logic.list_pre_order_transactions(context, args.search):
        print(
            f"{transaction.transaction_id:<24} {transaction.customer_name} | "
            f"{transaction.customer_phone or '-'} | {transaction.customer_address or '-'}"
        )
        for item in transaction.items:
            print(f"    {item.quantity} x {item.name}")
    return 0


def run_customers_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for customer in core_logic.search_customers(context, args.search):
        print(f"{customer.customer_id:<24} {customer.name:<24} {customer.phone:<16} {customer.address}")
    return 0


def run_period_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the monthly profit reporting workflow."""
    report = reporting.report_for_context(context, args.month)
    symbol = _currency(context)
    print(f"Period:       {report.period}")
    print(f"Transactions: {report.transaction_count}")
    print(f"Revenue:      {format_money(report.revenue, symbol)}")
    print(f"Gross profit: {format_money(report.gross_profit, symbol)}")
    print(f"Expenses:     {format_money(report.expense_total, symbol)}")
    print(f"Net profit:   {format_money(report.net_profit, symbol)}")
    print(f"Best seller:  {report.best_seller or '-'}")
    if args.daily:
        for entry in report.daily_series:
            print(f"  {entry.day.isoformat()}  {format_money(entry.revenue, symbol)}")
    return 0


def _advisor_worker(context: core_logic.RuntimeContext) -> advisor.AdvisorWorker:
    settings = advisor.AdvisorSettings.from_config(context.settings)
    return advisor.AdvisorWorker(advisor.AdvisorClient(settings))


def run_describe(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    worker = _advisor_worker(context)
    try:
        suggestion = worker.request_description(args.name, ProductType(args.product_type)).result()
    finally:
        worker.shutdown()
    print(suggestion or "No suggestion available.")
    return 0


def run_analyze(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    period = args.month or reporting.ReportingPeriod.containing(date.today())
    transactions: List[data_manager.TransactionRow] = reporting.transactions_in(
        period, core_logic.list_transactions(context)
    )
    worker = _advisor_worker(context)
    try:
        analysis = worker.request_sales_summary(transactions, str(period)).result()
    finally:
        worker.shutdown()
    print(analysis or "No analysis available.")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, core_logic.PersistenceError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Retry a durable write that an optimistic update left pending."""
    if context.is_dirty:
        core_logic.persist_context(context)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
