"""Immutable records exchanged between the ledger engine and its callers."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from typing import Iterator, List, Optional, Tuple

from .constants import TotalKey


@dataclass(frozen=True)
class Product:
    """Sellable item definition; identified by its case-insensitive name."""

    name: str
    unit_cost: float
    unit_price: float
    opening_stock: int
    stock_out: int


@dataclass(frozen=True)
class Sale:
    """One recorded sale, referencing its product by name."""

    sale_id: str
    sale_date: date
    item_name: str
    qty_sold: int
    revenue: float
    production_cost: float
    gross_profit: float


@dataclass(frozen=True)
class Sheet:
    """A named ledger holding products and sales in insertion order."""

    sheet_id: str
    name: str
    created_at: datetime
    updated_at: datetime
    products: Tuple[Product, ...] = ()
    sales: Tuple[Sale, ...] = ()


@dataclass
class LedgerState:
    """Collection of sheets plus the pointer to the active one.

    This is the only mutable record in the package. It is owned by the
    runtime context; the engine itself only ever reads a :class:`Sheet`.
    """

    sheets: List[Sheet] = field(default_factory=list)
    active_sheet_id: str = ""

    def find_sheet(self, sheet_id: str) -> Optional[Sheet]:
        for sheet in self.sheets:
            if sheet.sheet_id == sheet_id:
                return sheet
        return None

    @property
    def active_sheet(self) -> Optional[Sheet]:
        return self.find_sheet(self.active_sheet_id)


@dataclass(frozen=True)
class DerivedProduct:
    """Product row enriched with the stock figures derived by the aggregator."""

    name: str
    unit_cost: float
    unit_price: float
    opening_stock: int
    stock_out: int
    stock_available: int
    stock_value_cost: float


@dataclass(frozen=True)
class LedgerTotals:
    """Aggregate figures for a sheet."""

    total_items_available: int = 0
    total_items_sold: int = 0
    total_revenue: float = 0.0
    total_production_cost: float = 0.0
    gross_profit_total: float = 0.0
    total_stock_value_cost: float = 0.0

    def items(self) -> Iterator[Tuple[TotalKey, float]]:
        """Yield ``(key, value)`` pairs in declaration order."""

        for item in fields(self):
            yield TotalKey(item.name), getattr(self, item.name)

    def get(self, key: TotalKey) -> float:
        return getattr(self, TotalKey(key).value)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of the invariant checks run alongside aggregation."""

    is_valid: bool
    violations: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ComputedLedger:
    """Read-only view model derived from a single sheet snapshot."""

    sheet: Optional[Sheet]
    products: Tuple[DerivedProduct, ...]
    sales: Tuple[Sale, ...]
    totals: LedgerTotals
    validation: ValidationResult


@dataclass(frozen=True)
class ReconciliationReport:
    """Pass/fail status and ordered messages from a reconciliation run."""

    passed: bool
    messages: Tuple[str, ...]


__all__ = [
    "Product",
    "Sale",
    "Sheet",
    "LedgerState",
    "DerivedProduct",
    "LedgerTotals",
    "ValidationResult",
    "ComputedLedger",
    "ReconciliationReport",
]
