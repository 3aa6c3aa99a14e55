"""Self-check that re-derives ledger totals from the already-derived rows.

The reconciliation pass is a canary for aggregation bugs: it sums the per-row
fields of a :class:`~bakery_ledger.models.ComputedLedger` along a second code
path and compares the result with the aggregator's stored totals. It proves
the two paths agree, not that the numbers are right.
"""

from __future__ import annotations

import math
from typing import Iterable, List

from . import log
from .aggregator import round_count, round_currency
from .constants import ALL_CLEAR_MESSAGE, CURRENCY_KEYS, CURRENCY_TOLERANCE, TotalKey
from .models import ComputedLedger, LedgerTotals, ReconciliationReport

_CHECK_ORDER = (
    TotalKey.TOTAL_REVENUE,
    TotalKey.TOTAL_PRODUCTION_COST,
    TotalKey.GROSS_PROFIT_TOTAL,
    TotalKey.TOTAL_ITEMS_SOLD,
    TotalKey.TOTAL_ITEMS_AVAILABLE,
    TotalKey.TOTAL_STOCK_VALUE_COST,
)


def sum_by(items: Iterable[object], attribute: str) -> float:
    """Sum ``attribute`` across ``items``, skipping non-finite values."""

    total = 0
    for item in items:
        value = getattr(item, attribute)
        if isinstance(value, float) and not math.isfinite(value):
            continue
        total += value
    return total


def recompute_totals(ledger: ComputedLedger) -> LedgerTotals:
    """Rebuild the six totals from the ledger's derived product and sale rows."""

    return LedgerTotals(
        total_items_available=round_count(sum_by(ledger.products, "stock_available")),
        total_items_sold=round_count(sum_by(ledger.sales, "qty_sold")),
        total_revenue=round_currency(sum_by(ledger.sales, "revenue")),
        total_production_cost=round_currency(sum_by(ledger.sales, "production_cost")),
        gross_profit_total=round_currency(sum_by(ledger.sales, "gross_profit")),
        total_stock_value_cost=round_currency(sum_by(ledger.products, "stock_value_cost")),
    )


def _totals_mismatch(key: TotalKey, expected: float, actual: float) -> bool:
    if key in CURRENCY_KEYS:
        return abs(expected - actual) > CURRENCY_TOLERANCE
    return expected != actual


def reconcile(ledger: ComputedLedger) -> ReconciliationReport:
    """Compare a ledger's totals against an independent recomputation.

    Monetary totals may differ by at most ``CURRENCY_TOLERANCE``; counts must
    match exactly. The negative-stock invariant is checked again and every
    validator violation is echoed as a message.

    Args:
        ledger (ComputedLedger): Output of
            :func:`~bakery_ledger.aggregator.compute_ledger`.

    Returns:
        ReconciliationReport: ``passed`` is ``True`` only when the single
            message is ``ALL_CLEAR_MESSAGE``. Any other message, even a purely
            informational one, fails the run.
    """

    messages: List[str] = []
    expected_totals = recompute_totals(ledger)

    for key in _CHECK_ORDER:
        expected = expected_totals.get(key)
        actual = ledger.totals.get(key)
        if _totals_mismatch(key, expected, actual):
            messages.append(f"{key.value} mismatch. Expected {expected}, got {actual}.")

    if any(product.stock_available < 0 for product in ledger.products):
        messages.append("Negative stock available detected.")

    if not ledger.validation.is_valid:
        messages.extend(ledger.validation.violations)

    if not messages:
        messages.append(ALL_CLEAR_MESSAGE)

    passed = len(messages) == 1 and messages[0] == ALL_CLEAR_MESSAGE
    if passed:
        log.info("Reconciliation passed")
    else:
        log.warning("Reconciliation failed with %d message(s)", len(messages))
    return ReconciliationReport(passed=passed, messages=tuple(messages))


__all__ = ["sum_by", "recompute_totals", "reconcile"]
