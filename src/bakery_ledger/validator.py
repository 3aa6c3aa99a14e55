"""Invariant checks collected while the aggregator walks a sheet.

The validator never raises and never stops the aggregation. It only records
human-readable violation messages, in the order the aggregator discovers them:
the sales pass, then the products pass, then the sale-to-product
cross-reference pass, then the totals check.
"""

from __future__ import annotations

import math
from numbers import Real
from typing import Any, Dict, List

from . import log
from .models import LedgerTotals, Product, Sale, ValidationResult
from .normalizer import normalize_name


def _is_finite(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, Real) and math.isfinite(value)


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def _product_label(product: Product, index: int) -> str:
    return product.name or f"#{index + 1}"


class LedgerValidator:
    """Accumulates violations for one aggregation run.

    Instances are single-use: create one per sheet, feed it from the
    aggregator's loops, then read :meth:`result`.
    """

    def __init__(self) -> None:
        self._violations: List[str] = []
        # normalized product name -> zero-based index of its first occurrence
        self._first_index_by_name: Dict[str, int] = {}

    def _report(self, message: str) -> None:
        log.debug("Ledger violation: %s", message)
        self._violations.append(message)

    def knows_product(self, name: str) -> bool:
        return normalize_name(name) in self._first_index_by_name

    def check_sale(self, index: int, sale: Sale) -> None:
        """Validate a single sale row during the sales pass."""

        row = index + 1
        if not sale.item_name:
            self._report(f"Sale #{row}: item name is required.")

        if not _is_integer(sale.qty_sold) or sale.qty_sold < 1:
            self._report(f"Sale #{row}: qty sold must be an integer >= 1.")

        if (
            not _is_finite(sale.revenue)
            or not _is_finite(sale.production_cost)
            or not _is_finite(sale.gross_profit)
            or sale.revenue < 0
            or sale.production_cost < 0
        ):
            self._report(f"Sale #{row}: monetary values must be valid non-negative numbers.")

    def check_product(self, index: int, product: Product, *, stock_available: int, sold_qty: int) -> None:
        """Validate a product row during the products pass.

        Args:
            index (int): Zero-based position of the product in the sheet.
            product (Product): Normalized product record.
            stock_available (int): Derived ``opening_stock - stock_out``.
            sold_qty (int): Cumulative quantity sold under this product's
                normalized name, as tallied by the sales pass.
        """

        key = normalize_name(product.name)
        label = _product_label(product, index)

        if not key:
            self._report(f"Product #{index + 1}: name is required.")
        elif key in self._first_index_by_name:
            first = self._first_index_by_name[key] + 1
            self._report(
                f'Product #{index + 1}: duplicate product name "{product.name}" '
                f"(first used by product #{first})."
            )
        else:
            self._first_index_by_name[key] = index

        if not _is_finite(product.unit_cost) or product.unit_cost < 0:
            self._report(f'Product "{label}": unit cost must be >= 0.')

        if not _is_finite(product.unit_price) or product.unit_price < 0:
            self._report(f'Product "{label}": unit price must be >= 0.')

        if not _is_integer(product.opening_stock) or product.opening_stock < 0:
            self._report(f'Product "{label}": opening stock must be an integer >= 0.')

        if not _is_integer(product.stock_out) or product.stock_out < 0:
            self._report(f'Product "{label}": stock out must be an integer >= 0.')

        if stock_available < 0:
            self._report(f'Product "{label}": stock available cannot be negative.')

        if product.stock_out < sold_qty:
            self._report(f'Product "{label}": stock out is lower than logged sales.')

    def check_sale_reference(self, index: int, sale: Sale) -> None:
        """Flag a sale whose item name matches no product seen in the products pass."""

        if not self.knows_product(sale.item_name):
            self._report(f'Sale #{index + 1}: "{sale.item_name}" does not match any product.')

    def check_totals(self, totals: LedgerTotals) -> None:
        for key, value in totals.items():
            if not _is_finite(value):
                self._report(f'Total "{key.value}" is invalid (NaN or infinite).')

    def result(self) -> ValidationResult:
        violations = tuple(self._violations)
        return ValidationResult(is_valid=not violations, violations=violations)


__all__ = ["LedgerValidator"]
