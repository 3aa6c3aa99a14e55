"""Shared pytest fixtures and utilities for bakery ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from bakery_ledger import cli, constants, core_logic, data_manager  # noqa: E402
from bakery_ledger.models import LedgerState, Product, Sale, Sheet  # noqa: E402
from setup_ledger import create_data_file  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
FIXED_MOMENT = datetime(2025, 3, 14, 9, 30, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Export]\n"
    "WorkbookFile = {export_file}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    data_file: Path
    export_file: Path
    schema_version: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


def make_product(
    name: str = "Bread",
    *,
    unit_cost: float = 100.0,
    unit_price: float = 150.0,
    opening_stock: int = 20,
    stock_out: int = 0,
) -> Product:
    return Product(
        name=name,
        unit_cost=unit_cost,
        unit_price=unit_price,
        opening_stock=opening_stock,
        stock_out=stock_out,
    )


def make_sale(
    item_name: str = "Bread",
    *,
    qty_sold: int = 1,
    revenue: float = 150.0,
    production_cost: float = 100.0,
    gross_profit: Optional[float] = None,
    sale_date: date = date(2025, 3, 14),
    sale_id: Optional[str] = None,
) -> Sale:
    return Sale(
        sale_id=sale_id or uuid.uuid4().hex,
        sale_date=sale_date,
        item_name=item_name,
        qty_sold=qty_sold,
        revenue=revenue,
        production_cost=production_cost,
        gross_profit=revenue - production_cost if gross_profit is None else gross_profit,
    )


def make_sheet(
    products: Iterable[Product] = (),
    sales: Iterable[Sale] = (),
    *,
    name: str = "Test Sheet",
    sheet_id: Optional[str] = None,
) -> Sheet:
    return Sheet(
        sheet_id=sheet_id or uuid.uuid4().hex,
        name=name,
        created_at=FIXED_MOMENT,
        updated_at=FIXED_MOMENT,
        products=tuple(products),
        sales=tuple(sales),
    )


@pytest.fixture
def bread_sheet() -> Sheet:
    """Sheet holding one untouched Bread product and no sales."""

    return make_sheet([make_product()])


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/data-file bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        create_data: bool = True,
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        data_file = bundle_dir / "ledger.json"
        export_file = bundle_dir / "export.xlsx"
        if create_data:
            create_data_file(data_file)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file.name if make_relative else str(data_file),
                export_file=export_file.name if make_relative else str(export_file),
                schema_version=schema_version,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            data_file=data_file,
            export_file=export_file,
            schema_version=schema_version,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    return config_factory()


@pytest.fixture
def config_file(config_bundle: ConfigBundle) -> Path:
    """Convenience fixture returning only the config path."""

    return config_bundle.config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for in-memory contexts."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.json",
        export_file=tmp_path / "export.xlsx",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def context_factory(settings: data_manager.ConfigSettings) -> Callable[..., core_logic.RuntimeContext]:
    """Build an in-memory runtime context around the given sheets."""

    def _create(*sheets: Sheet) -> core_logic.RuntimeContext:
        if not sheets:
            sheets = (make_sheet(),)
        state = LedgerState(sheets=list(sheets), active_sheet_id=sheets[0].sheet_id)
        return core_logic.RuntimeContext(settings=settings, state=state)

    return _create


@pytest.fixture
def context(context_factory: Callable[..., core_logic.RuntimeContext]) -> core_logic.RuntimeContext:
    """Runtime context whose active sheet holds a single Bread product."""

    return context_factory(make_sheet([make_product()]))


@pytest.fixture
def fixed_now(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.utc_now`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        monkeypatch.setattr(core_logic, "utc_now", lambda: moment)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="ledger-cli", description="Ledger CLI")


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
