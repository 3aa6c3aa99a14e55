"""Unit tests for the reconciliation self-check."""

from __future__ import annotations

import math
from dataclasses import replace
from types import SimpleNamespace

import pytest

from bakery_ledger import reconciliation
from bakery_ledger.aggregator import compute_ledger
from bakery_ledger.constants import ALL_CLEAR_MESSAGE, NO_ACTIVE_SHEET_MESSAGE
from conftest import make_product, make_sale, make_sheet


@pytest.fixture
def sold_ledger():
    """Ledger for a Bread product with one recorded sale of five units."""

    sheet = make_sheet(
        [make_product(stock_out=5)],
        [make_sale(qty_sold=5, revenue=750.0, production_cost=500.0)],
    )
    return compute_ledger(sheet)


def _tamper(ledger, **totals):
    return replace(ledger, totals=replace(ledger.totals, **totals))


def test_sum_by_skips_non_finite_values():
    items = [SimpleNamespace(value=1.5), SimpleNamespace(value=math.nan), SimpleNamespace(value=2)]
    assert reconciliation.sum_by(items, "value") == 3.5


def test_recompute_totals_matches_aggregator(sold_ledger):
    assert reconciliation.recompute_totals(sold_ledger) == sold_ledger.totals


def test_reconcile_passes_for_consistent_ledger(sold_ledger):
    report = reconciliation.reconcile(sold_ledger)

    assert report.passed
    assert report.messages == (ALL_CLEAR_MESSAGE,)


def test_reconcile_reports_monetary_mismatch(sold_ledger):
    report = reconciliation.reconcile(_tamper(sold_ledger, total_revenue=760.0))

    assert not report.passed
    assert report.messages == ("total_revenue mismatch. Expected 750.0, got 760.0.",)


def test_reconcile_tolerates_sub_cent_drift(sold_ledger):
    report = reconciliation.reconcile(_tamper(sold_ledger, total_production_cost=500.005))
    assert report.passed


def test_reconcile_requires_exact_counts(sold_ledger):
    report = reconciliation.reconcile(_tamper(sold_ledger, total_items_sold=6))

    assert report.messages == ("total_items_sold mismatch. Expected 5, got 6.",)


def test_reconcile_lists_monetary_mismatches_before_counts(sold_ledger):
    report = reconciliation.reconcile(_tamper(sold_ledger, total_items_available=99, total_revenue=1.0))

    assert report.messages == (
        "total_revenue mismatch. Expected 750.0, got 1.0.",
        "total_items_available mismatch. Expected 15, got 99.",
    )


def test_reconcile_lists_negative_stock_then_violations():
    ledger = compute_ledger(make_sheet([make_product(opening_stock=1, stock_out=2)]))

    report = reconciliation.reconcile(ledger)

    assert not report.passed
    assert report.messages == (
        "Negative stock available detected.",
        'Product "Bread": stock available cannot be negative.',
    )


def test_reconcile_echoes_orphan_sale_violation():
    ledger = compute_ledger(make_sheet([make_product(stock_out=1)], [make_sale("Croissant")]))

    report = reconciliation.reconcile(ledger)

    assert not report.passed
    assert report.messages == ('Sale #1: "Croissant" does not match any product.',)


def test_reconcile_fails_without_active_sheet():
    report = reconciliation.reconcile(compute_ledger(None))

    assert not report.passed
    assert report.messages == (NO_ACTIVE_SHEET_MESSAGE,)


def test_reconcile_is_strict_about_the_sentinel(sold_ledger):
    """A violation that happens to read like the sentinel still fails the run."""

    validation = replace(sold_ledger.validation, is_valid=False, violations=(ALL_CLEAR_MESSAGE, "extra"))
    report = reconciliation.reconcile(replace(sold_ledger, validation=validation))

    assert not report.passed
    assert report.messages == (ALL_CLEAR_MESSAGE, "extra")
