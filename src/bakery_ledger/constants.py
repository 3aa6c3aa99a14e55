"""Constants shared across the bakery ledger modules.

Keeps storage keys, sentinel messages and the field vocabulary in one place so
that the normalizer, the engine and the command-line layer agree on them.
"""

from __future__ import annotations

from enum import Enum


# Schema version the config file must declare before the data file is touched.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Top-level key of the persisted JSON document holding the application state.
STORAGE_KEY = "bakeryApp"

DEFAULT_SHEET_NAME = "Main Stock Sheet"
SHEET_NAME_TEMPLATE = "Stock Sheet {number}"

NO_ACTIVE_SHEET_MESSAGE = "No active stock sheet."
ALL_CLEAR_MESSAGE = "All totals and invariants are valid."

# Absolute tolerance used when reconciling monetary totals.
CURRENCY_TOLERANCE = 0.01

# Products at or below this many units are flagged as low stock in reports.
LOW_STOCK_THRESHOLD = 3

CURRENCY_SYMBOL = "₦"


class TotalKey(str, Enum):
    """Enumerate the aggregate totals carried by a computed ledger."""

    TOTAL_ITEMS_AVAILABLE = "total_items_available"
    TOTAL_ITEMS_SOLD = "total_items_sold"
    TOTAL_REVENUE = "total_revenue"
    TOTAL_PRODUCTION_COST = "total_production_cost"
    GROSS_PROFIT_TOTAL = "gross_profit_total"
    TOTAL_STOCK_VALUE_COST = "total_stock_value_cost"


CURRENCY_KEYS: frozenset[TotalKey] = frozenset(
    {
        TotalKey.TOTAL_REVENUE,
        TotalKey.TOTAL_PRODUCTION_COST,
        TotalKey.GROSS_PROFIT_TOTAL,
        TotalKey.TOTAL_STOCK_VALUE_COST,
    }
)


class ProductField(str, Enum):
    """Enumerate the product fields that can be edited in place."""

    NAME = "name"
    UNIT_COST = "unit_cost"
    UNIT_PRICE = "unit_price"
    OPENING_STOCK = "opening_stock"


class ExportSheet(str, Enum):
    """Enumerate the worksheet names written by the workbook export."""

    DASHBOARD = "Dashboard"
    INVENTORY = "Inventory"
    SALES = "Sales"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "STORAGE_KEY",
    "DEFAULT_SHEET_NAME",
    "SHEET_NAME_TEMPLATE",
    "NO_ACTIVE_SHEET_MESSAGE",
    "ALL_CLEAR_MESSAGE",
    "CURRENCY_TOLERANCE",
    "LOW_STOCK_THRESHOLD",
    "CURRENCY_SYMBOL",
    "TotalKey",
    "CURRENCY_KEYS",
    "ProductField",
    "ExportSheet",
]
