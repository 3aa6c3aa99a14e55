"""Derive the computed ledger (stock, totals, violations) from one sheet.

:func:`compute_ledger` is a pure function. It reads a normalized
:class:`~bakery_ledger.models.Sheet` and returns a fresh
:class:`~bakery_ledger.models.ComputedLedger` on every call, so the view model
can never drift from its inputs. Totals are summed left to right in the
sheet's insertion order, which keeps floating-point results reproducible.
"""

from __future__ import annotations

import math
import sys
from typing import Dict, List, Optional

from . import log
from .constants import LOW_STOCK_THRESHOLD, NO_ACTIVE_SHEET_MESSAGE
from .models import (
    ComputedLedger,
    DerivedProduct,
    LedgerTotals,
    Sale,
    Sheet,
    ValidationResult,
)
from .normalizer import normalize_name
from .validator import LedgerValidator


def round_currency(value: float) -> float:
    """Round a monetary amount to 2 decimal places, halves away from zero.

    Machine epsilon is added before scaling so that values such as ``1.005``,
    stored as ``1.00499999...``, still round up. Non-finite values are
    returned unchanged.
    """

    if not math.isfinite(value):
        return value
    scaled = (value + sys.float_info.epsilon) * 100
    if not math.isfinite(scaled):
        return scaled
    rounded = math.floor(abs(scaled) + 0.5)
    if rounded == 0:
        return 0.0
    return math.copysign(rounded, scaled) / 100


def round_count(value: float) -> float:
    """Round a count to the nearest integer; non-finite values pass through.

    Integer counts too large for a float become signed infinity, so the
    totals check flags them.
    """

    if isinstance(value, int):
        as_float = _as_float(value)
        return value if math.isfinite(as_float) else as_float
    if not math.isfinite(value):
        return value
    return math.floor(value + 0.5)


def _as_float(count: int) -> float:
    try:
        return float(count)
    except OverflowError:
        return math.inf if count > 0 else -math.inf


def tally_sold_quantities(sales: tuple[Sale, ...]) -> Dict[str, int]:
    """Map each normalized item name to the total quantity sold under it."""

    sold_qty_by_name: Dict[str, int] = {}
    for sale in sales:
        key = normalize_name(sale.item_name)
        if key:
            sold_qty_by_name[key] = sold_qty_by_name.get(key, 0) + sale.qty_sold
    return sold_qty_by_name


def compute_ledger(sheet: Optional[Sheet]) -> ComputedLedger:
    """Join a sheet's products and sales into derived rows, totals and violations.

    The derivation runs in fixed passes, with the invariant validator fed from
    inside each one:

    1. Tally the quantity sold per normalized product name.
    2. Walk the sales in order, emitting each row and summing items sold,
       revenue, production cost and gross profit.
    3. Walk the products in order, deriving ``stock_available`` and
       ``stock_value_cost`` and summing them.
    4. Cross-reference every sale against the known product names.

    Monetary totals are then passed through :func:`round_currency` and counts
    through :func:`round_count`, and the finished totals are checked for
    non-finite values.

    Args:
        sheet (Sheet | None): Normalized sheet snapshot, or ``None`` when the
            caller has no active sheet.

    Returns:
        ComputedLedger: Fully populated view model. Violations are reported in
            ``validation`` and never prevent the totals from being computed.
    """

    if sheet is None:
        return ComputedLedger(
            sheet=None,
            products=(),
            sales=(),
            totals=LedgerTotals(),
            validation=ValidationResult(is_valid=False, violations=(NO_ACTIVE_SHEET_MESSAGE,)),
        )

    validator = LedgerValidator()
    sold_qty_by_name = tally_sold_quantities(sheet.sales)

    total_items_sold = 0
    total_revenue = 0.0
    total_production_cost = 0.0
    gross_profit_total = 0.0
    derived_sales: List[Sale] = []
    for index, sale in enumerate(sheet.sales):
        validator.check_sale(index, sale)
        total_items_sold += sale.qty_sold
        total_revenue += sale.revenue
        total_production_cost += sale.production_cost
        gross_profit_total += sale.gross_profit
        derived_sales.append(sale)

    total_items_available = 0
    total_stock_value_cost = 0.0
    derived_products: List[DerivedProduct] = []
    for index, product in enumerate(sheet.products):
        stock_available = product.opening_stock - product.stock_out
        stock_value_cost = _as_float(stock_available) * product.unit_cost
        validator.check_product(
            index,
            product,
            stock_available=stock_available,
            sold_qty=sold_qty_by_name.get(normalize_name(product.name), 0),
        )
        total_items_available += stock_available
        total_stock_value_cost += stock_value_cost
        derived_products.append(
            DerivedProduct(
                name=product.name,
                unit_cost=product.unit_cost,
                unit_price=product.unit_price,
                opening_stock=product.opening_stock,
                stock_out=product.stock_out,
                stock_available=stock_available,
                stock_value_cost=stock_value_cost,
            )
        )

    for index, sale in enumerate(derived_sales):
        validator.check_sale_reference(index, sale)

    totals = LedgerTotals(
        total_items_available=round_count(total_items_available),
        total_items_sold=round_count(total_items_sold),
        total_revenue=round_currency(total_revenue),
        total_production_cost=round_currency(total_production_cost),
        gross_profit_total=round_currency(gross_profit_total),
        total_stock_value_cost=round_currency(total_stock_value_cost),
    )
    validator.check_totals(totals)
    validation = validator.result()

    log.debug(
        "Computed ledger for sheet '%s': %d products, %d sales, %d violations",
        sheet.name,
        len(derived_products),
        len(derived_sales),
        len(validation.violations),
    )
    return ComputedLedger(
        sheet=sheet,
        products=tuple(derived_products),
        sales=tuple(derived_sales),
        totals=totals,
        validation=validation,
    )


def find_derived_product(ledger: ComputedLedger, name: str) -> Optional[DerivedProduct]:
    """Return the first derived product whose name matches ``name`` case-insensitively."""

    key = normalize_name(name)
    for product in ledger.products:
        if normalize_name(product.name) == key:
            return product
    return None


def sales_for_display(ledger: ComputedLedger) -> List[Sale]:
    """Sales ordered by date, newest first; same-day sales keep insertion order."""

    return sorted(ledger.sales, key=lambda sale: sale.sale_date, reverse=True)


def is_low_stock(product: DerivedProduct) -> bool:
    return product.stock_available <= LOW_STOCK_THRESHOLD


__all__ = [
    "round_currency",
    "round_count",
    "tally_sold_quantities",
    "compute_ledger",
    "find_derived_product",
    "sales_for_display",
    "is_low_stock",
]
