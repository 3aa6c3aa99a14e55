"""Data access layer for the bakery ledger.

This module owns every byte that touches disk; the ledger rules live
elsewhere. Its public API covers three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. State lifecycle: loading the JSON ledger document (tolerating anything a
   hand edit or a crash may have left behind) and saving it atomically.
3. Export: writing a computed ledger to an ``.xlsx`` workbook for people who
   would rather read the numbers in a spreadsheet.
"""


from __future__ import annotations

import configparser
import json
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log
from .aggregator import is_low_stock, sales_for_display
from .constants import STORAGE_KEY, ExportSheet
from .models import ComputedLedger, LedgerState, Product, Sale, Sheet
from .normalizer import default_state, normalize_state


CONFIG_FILE_NAME = "config.ini"
DEFAULT_EXPORT_FILE = "ledger_export.xlsx"

EXPORT_COLUMNS: Dict[ExportSheet, Sequence[str]] = {
    ExportSheet.DASHBOARD: ["Metric", "Value"],
    ExportSheet.INVENTORY: [
        "Name",
        "UnitCost",
        "UnitPrice",
        "OpeningStock",
        "StockOut",
        "StockAvailable",
        "StockValueCost",
        "LowStock",
    ],
    ExportSheet.SALES: [
        "SaleID",
        "Date",
        "ItemName",
        "QtySold",
        "Revenue",
        "ProductionCost",
        "GrossProfit",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    export_file: Path
    schema_version: str


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate ``config.ini``.

    An explicit path is returned as-is without checking that it exists. Without
    one, the search walks from the current working directory up to the
    filesystem root and returns the first ``CONFIG_FILE_NAME`` it finds.

    Raises:
        FileNotFoundError: If no directory on the way up holds the file.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` into a ``ConfigParser``.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute; ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser holding the raw entries. Required
            entries are checked later by :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _resolve_path(raw: str, base_path: Path) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = base_path / path
    return path.resolve()


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into :class:`ConfigSettings`.

    ``[System] DataFile`` and ``[System] SchemaVersion`` are required.
    ``[Export] WorkbookFile`` is optional and defaults to
    ``DEFAULT_EXPORT_FILE``. Relative paths are anchored at ``base_path``
    (the current working directory when omitted).

    Raises:
        KeyError: If a required section or option is missing.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    export_raw = parser.get("Export", "WorkbookFile", fallback=DEFAULT_EXPORT_FILE)
    anchor = base_path if base_path is not None else Path.cwd()

    return ConfigSettings(
        data_file=_resolve_path(data_file_raw, anchor),
        export_file=_resolve_path(export_raw, anchor),
        schema_version=schema_version,
    )


def load_state(data_file: Path) -> LedgerState:
    """Read the ledger document at ``data_file`` into a :class:`LedgerState`.

    A missing file yields a fresh default state (first run). Unreadable or
    non-JSON content is logged and also replaced by a default state; record
    level damage is repaired by the normalizer.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        log.info("Ledger file '%s' does not exist yet; starting a new ledger", data_file)
        return default_state()

    try:
        document = json.loads(data_file.read_text(encoding="utf-8"))
    except (ValueError, RecursionError) as exc:
        log.warning("Ledger file '%s' cannot be decoded (%s); starting a new ledger", data_file, exc)
        return default_state()

    body = document.get(STORAGE_KEY) if isinstance(document, dict) else None
    state = normalize_state(body)
    log.debug("Loaded %d sheet(s) from '%s'", len(state.sheets), data_file)
    return state


def save_state(state: LedgerState, destination: Path) -> None:
    """Write ``state`` to ``destination`` as JSON.

    The document is written to a sibling temporary file first and then moved
    into place, so a failed write never truncates the existing ledger.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps({STORAGE_KEY: serialize_state(state)}, indent=2, ensure_ascii=False)

    temporary = dest.with_name(dest.name + ".tmp")
    temporary.write_text(payload + "\n", encoding="utf-8")
    os.replace(temporary, dest)


def _format_timestamp(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def serialize_product(record: Product) -> Dict[str, Any]:
    return {
        "name": record.name,
        "unitCost": record.unit_cost,
        "unitPrice": record.unit_price,
        "openingStock": record.opening_stock,
        "stockOut": record.stock_out,
    }


def serialize_sale(record: Sale) -> Dict[str, Any]:
    return {
        "id": record.sale_id,
        "dateISO": record.sale_date.isoformat(),
        "itemName": record.item_name,
        "qtySold": record.qty_sold,
        "revenue": record.revenue,
        "productionCost": record.production_cost,
        "grossProfit": record.gross_profit,
    }


def serialize_sheet(record: Sheet) -> Dict[str, Any]:
    return {
        "id": record.sheet_id,
        "name": record.name,
        "createdAtISO": _format_timestamp(record.created_at),
        "updatedAtISO": _format_timestamp(record.updated_at),
        "products": [serialize_product(product) for product in record.products],
        "sales": [serialize_sale(sale) for sale in record.sales],
    }


def serialize_state(state: LedgerState) -> Dict[str, Any]:
    """Convert the state into the camelCase document stored under ``STORAGE_KEY``."""

    return {
        "activeSheetId": state.active_sheet_id,
        "sheets": [serialize_sheet(sheet) for sheet in state.sheets],
    }


def _write_header(worksheet, columns: Sequence[str]) -> None:
    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(columns, start=1):
        cell = worksheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font


def build_export_workbook(ledger: ComputedLedger) -> Workbook:
    """Lay out a computed ledger as an ``openpyxl`` workbook.

    The workbook holds a ``Dashboard`` sheet (sheet metadata, the six totals
    and every validation message), an ``Inventory`` sheet with one row per
    derived product, and a ``Sales`` sheet ordered newest first.
    """

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    worksheets = {}
    for sheet_name, columns in EXPORT_COLUMNS.items():
        worksheet = workbook.create_sheet(title=sheet_name.value)
        _write_header(worksheet, columns)
        worksheets[sheet_name] = worksheet

    dashboard = worksheets[ExportSheet.DASHBOARD]
    if ledger.sheet is not None:
        dashboard.append(["SheetName", ledger.sheet.name])
        dashboard.append(["CreatedAt", _format_timestamp(ledger.sheet.created_at)])
        dashboard.append(["UpdatedAt", _format_timestamp(ledger.sheet.updated_at)])
    for key, value in ledger.totals.items():
        dashboard.append([key.value, value])
    dashboard.append(["Valid", ledger.validation.is_valid])
    for violation in ledger.validation.violations:
        dashboard.append(["Violation", violation])

    inventory = worksheets[ExportSheet.INVENTORY]
    for product in ledger.products:
        inventory.append(
            [
                product.name,
                product.unit_cost,
                product.unit_price,
                product.opening_stock,
                product.stock_out,
                product.stock_available,
                product.stock_value_cost,
                is_low_stock(product),
            ]
        )

    sales = worksheets[ExportSheet.SALES]
    for sale in sales_for_display(ledger):
        sales.append(
            [
                sale.sale_id,
                sale.sale_date,
                sale.item_name,
                sale.qty_sold,
                sale.revenue,
                sale.production_cost,
                sale.gross_profit,
            ]
        )

    return workbook


def export_workbook(ledger: ComputedLedger, destination: Path) -> Path:
    """Write :func:`build_export_workbook` output to ``destination``.

    Returns:
        Path: The resolved path of the written workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    build_export_workbook(ledger).save(dest)
    sheet_name = ledger.sheet.name if ledger.sheet is not None else "<no sheet>"
    log.info("Exported ledger for sheet '%s' to '%s'", sheet_name, dest)
    return dest
