"""Shared pytest fixtures and utilities for Smart POS tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from smart_pos import cli, constants, core_logic, data_manager, setup_excel  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
ADMIN_PIN = "123456"
JAKARTA = timezone(timedelta(hours=7))
FIXED_NOW = datetime(2026, 3, 15, 10, 30, tzinfo=JAKARTA)
FIXED_TODAY = FIXED_NOW.date()

_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "DefaultCustomerName = {default_customer_name}\n"
    "CurrencySymbol = Rp\n\n"
    "[Advisor]\n"
    "Model = gemini-2.5-flash\n"
    "Language = Indonesian\n"
    "TimeoutSeconds = 5\n"
    "ApiKey =\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    store_name: str
    schema_version: str
    default_customer_name: str


def make_product(**overrides) -> data_manager.ProductRow:
    """Build a READY coffee product, overriding any attribute."""

    product = data_manager.ProductRow(
        product_id="P-COFFEE",
        name="Coffee",
        description="House blend",
        price=Decimal("18000"),
        cost=Decimal("10000"),
        stock=10,
        product_type=constants.ProductType.READY,
    )
    return replace(product, **overrides)


def make_pre_order(**overrides) -> data_manager.ProductRow:
    """Build a PRE_ORDER hampers product with a future deadline."""

    defaults = dict(
        product_id="P-HAMPERS",
        name="Hampers",
        description="Holiday cookie box",
        price=Decimal("150000"),
        cost=Decimal("100000"),
        stock=0,
        product_type=constants.ProductType.PRE_ORDER,
        po_deadline=FIXED_TODAY + timedelta(days=30),
    )
    defaults.update(overrides)
    return make_product(**defaults)


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(autouse=True)
def _isolate_advisor_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep real API keys from the environment out of every test."""

    for name in data_manager.ADVISOR_KEY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "smart_pos_data.xlsx",
        seed_products: bool = True,
        today: date = FIXED_TODAY,
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        setup_excel.create_master_workbook(
            workbook_path,
            seed_products=seed_products,
            today=today,
            overwrite=True,
        )
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh seeded workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        default_customer_name: str = constants.DEFAULT_CUSTOMER_NAME,
        seed_products: bool = True,
        today: date = FIXED_TODAY,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=bundle_dir_name, seed_products=seed_products, today=today)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                default_customer_name=default_customer_name,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            store_name=store_name,
            schema_version=schema_version,
            default_customer_name=default_customer_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load a store context over a real workbook seeded at ``FIXED_TODAY``."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="smart-pos", description="Smart POS CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "smart_pos_data.xlsx",
        store_name="Test Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW
