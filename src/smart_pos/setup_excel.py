"""Utility for initializing the Smart POS workbook.

The module doubles as a script (``smart-pos-setup``) and as a library used by
the store façade and tests. Shared helpers keep the bootstrap data (sheet
headers, starter catalog, default settings) identical regardless of whether
the workbook is created up front or repaired at first start.
"""

from __future__ import annotations

import argparse
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path
from typing import List, Mapping, Optional, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import data_manager
from .constants import ProductType

CONFIG_FILE = data_manager.CONFIG_FILE_NAME
STARTER_PRE_ORDER_WINDOW = timedelta(days=60)

DEFAULT_STORE_SETTINGS = data_manager.StoreSettingsRow(
    name="Toko Suka Maju",
    address="Jl. Merdeka No. 45, Jakarta",
    logo="https://picsum.photos/100/100",
    currency_symbol="Rp",
    pin="123456",
)


def starter_products(today: Optional[date] = None) -> List[data_manager.ProductRow]:
    """Return the starter catalog: two READY items and one PRE_ORDER item.

    The pre-order deadline is placed ``STARTER_PRE_ORDER_WINDOW`` after
    ``today`` so a fresh install always shows an orderable pre-order.
    """

    today = today or date.today()
    return [
        data_manager.ProductRow(
            product_id="P001",
            name="Kopi Susu Gula Aren",
            description="Kopi kekinian",
            price=Decimal("18000"),
            cost=Decimal("10000"),
            stock=50,
            product_type=ProductType.READY,
        ),
        data_manager.ProductRow(
            product_id="P002",
            name="Croissant Butter",
            description="Renyah dan wangi",
            price=Decimal("25000"),
            cost=Decimal("15000"),
            stock=20,
            product_type=ProductType.READY,
        ),
        data_manager.ProductRow(
            product_id="P003",
            name="Hampers Lebaran",
            description="Paket kue kering",
            price=Decimal("150000"),
            cost=Decimal("100000"),
            stock=10,
            product_type=ProductType.PRE_ORDER,
            po_deadline=today + STARTER_PRE_ORDER_WINDOW,
        ),
    ]


def default_store_settings(
    *,
    store_name: Optional[str] = None,
    currency_symbol: Optional[str] = None,
) -> data_manager.StoreSettingsRow:
    """Return the default settings, optionally renamed from ``config.ini``."""

    defaults = DEFAULT_STORE_SETTINGS
    return data_manager.StoreSettingsRow(
        name=store_name or defaults.name,
        address=defaults.address,
        logo=defaults.logo,
        currency_symbol=currency_symbol or defaults.currency_symbol,
        pin=defaults.pin,
    )


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = data_manager.SHEET_COLUMNS,
    store_settings: Optional[data_manager.StoreSettingsRow] = None,
    seed_products: bool = True,
    today: Optional[date] = None,
    overwrite: bool = False,
) -> Path:
    """Create the Smart POS workbook at ``destination``.

    Every managed sheet receives a bold header row. The settings singleton is
    always written; the starter catalog only when ``seed_products`` is set.
    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    data_manager.write_settings(workbook, store_settings or DEFAULT_STORE_SETTINGS)
    if seed_products:
        for product in starter_products(today):
            data_manager.add_record(workbook, data_manager.PRODUCTS, product)

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``config.ini``."""

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    return create_master_workbook(
        settings.data_file,
        store_settings=default_store_settings(
            store_name=settings.store_name,
            currency_symbol=settings.currency_symbol,
        ),
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the Smart POS data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Smart POS Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
