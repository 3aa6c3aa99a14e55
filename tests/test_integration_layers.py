"""Integration tests describing the end-to-end bakery ledger workflows.

These scenarios exercise the data access layer, the business logic layer and
the CLI together, persisting to a real data file between steps the way the
command-line application does.
"""

from __future__ import annotations

import json
import threading

import openpyxl
import pytest

from bakery_ledger import cli, constants, core_logic, data_manager


def _register_bread(context: core_logic.RuntimeContext) -> None:
    core_logic.add_product(context, name="Bread", unit_cost="100", unit_price="150", opening_stock="20")


def _reload(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    core_logic.persist_context(context)
    return core_logic.refresh_context(context)


def test_sale_lifecycle_flow(runtime_context):
    """Walk through product setup, a sale, a reversal and the system check."""

    context = runtime_context
    _register_bread(context)
    context = _reload(context)

    sale = core_logic.add_sale(context, item_name="bread", qty_sold=5, sale_date="2025-03-14")
    context = _reload(context)

    ledger = core_logic.compute_active_ledger(context)
    assert ledger.products[0].stock_out == 5
    assert ledger.products[0].stock_available == 15
    assert ledger.totals.total_revenue == 750.0
    assert ledger.totals.total_production_cost == 500.0
    assert ledger.totals.gross_profit_total == 250.0
    assert ledger.totals.total_stock_value_cost == 1500.0
    assert core_logic.run_system_check(context).passed

    core_logic.delete_sale(context, sale.sale_id)
    context = _reload(context)

    ledger = core_logic.compute_active_ledger(context)
    assert ledger.sales == ()
    assert ledger.totals.total_items_available == 20
    assert ledger.totals.total_stock_value_cost == 2000.0


def test_rejected_sale_leaves_persisted_state_untouched(runtime_context):
    context = runtime_context
    _register_bread(context)
    context = _reload(context)
    before = context.settings.data_file.read_text(encoding="utf-8")

    with pytest.raises(core_logic.InsufficientStockError):
        core_logic.add_sale(context, item_name="Bread", qty_sold=999)
    core_logic.persist_context(context)

    assert context.settings.data_file.read_text(encoding="utf-8") == before


def test_rename_cascade_survives_reload(runtime_context):
    context = runtime_context
    _register_bread(context)
    core_logic.add_sale(context, item_name="Bread", qty_sold=2)
    core_logic.add_sale(context, item_name="Bread", qty_sold=1)

    core_logic.edit_product_field(context, "Bread", "name", "Sourdough")
    context = _reload(context)

    sheet = context.state.active_sheet
    assert [sale.item_name for sale in sheet.sales] == ["Sourdough", "Sourdough"]
    assert core_logic.run_system_check(context).passed


def test_sheets_are_isolated_flow(runtime_context):
    """Products and totals belong to a single sheet; switching is persisted."""

    context = runtime_context
    original = core_logic.get_active_sheet(context)
    _register_bread(context)

    created = core_logic.create_sheet(context, "Weekend")
    core_logic.add_product(context, name="Cake", unit_cost=500, unit_price=800, opening_stock=4)
    context = _reload(context)

    assert context.state.active_sheet_id == created.sheet_id
    assert [p.name for p in core_logic.compute_active_ledger(context).products] == ["Cake"]

    core_logic.switch_sheet(context, original.name)
    context = _reload(context)
    assert [p.name for p in core_logic.compute_active_ledger(context).products] == ["Bread"]
    assert core_logic.compute_active_ledger(context).totals.total_stock_value_cost == 2000.0


def test_hand_edited_document_is_normalized_flow(config_factory):
    """Damaged records are coerced on load and reported by the system check."""

    bundle = config_factory()
    document = {
        constants.STORAGE_KEY: {
            "activeSheetId": "ghost",
            "sheets": [
                {
                    "id": "s1",
                    "name": "Imported",
                    "products": [
                        {"name": "Bread", "unitCost": "100", "unitPrice": "150", "openingStock": "20", "stockOut": 2},
                        "garbage",
                    ],
                    "sales": [
                        {"itemName": "Bread", "qtySold": 2, "revenue": 300, "productionCost": 200, "grossProfit": 100},
                        {"itemName": "Croissant", "qtySold": 1, "revenue": 50, "productionCost": 20, "grossProfit": 30},
                    ],
                }
            ],
        }
    }
    bundle.data_file.write_text(json.dumps(document), encoding="utf-8")

    context = core_logic.load_runtime_context(bundle.config_path)

    assert context.state.active_sheet_id == "s1"
    sheet = context.state.active_sheet
    assert len(sheet.products) == 1
    assert all(sale.sale_id for sale in sheet.sales)

    report = core_logic.run_system_check(context)
    assert not report.passed
    assert report.messages == ('Sale #2: "Croissant" does not match any product.',)


def test_concurrent_sales_never_oversell(runtime_context):
    """Parallel sale requests are serialised by the context lock."""

    context = runtime_context
    _register_bread(context)
    outcomes = []
    outcome_lock = threading.Lock()

    def _sell() -> None:
        try:
            core_logic.add_sale(context, item_name="Bread", qty_sold=3)
            result = "ok"
        except core_logic.InsufficientStockError:
            result = "refused"
        with outcome_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_sell) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("ok") == 6
    assert outcomes.count("refused") == 4
    ledger = core_logic.compute_active_ledger(context)
    assert ledger.products[0].stock_out == 18
    assert ledger.totals.total_items_sold == 18
    assert core_logic.run_system_check(context).passed


def test_cli_sale_delete_and_export_flow(config_bundle, capsys):
    base = ["--config", str(config_bundle.config_path)]

    assert cli.main(base + ["add-product", "--name", "Bread", "--unit-cost", "100", "--unit-price", "150", "--opening-stock", "20"]) == 0
    assert cli.main(base + ["sale", "--item", "Bread", "--quantity", "4"]) == 0
    assert cli.main(base + ["delete-product", "--name", "Bread"]) == 2

    state = data_manager.load_state(config_bundle.data_file)
    sale_id = state.active_sheet.sales[0].sale_id
    assert cli.main(base + ["delete-sale", "--sale-id", sale_id]) == 0
    assert cli.main(base + ["edit-product", "--name", "Bread", "--field", "unit-price", "--value", "175"]) == 0
    capsys.readouterr()

    assert cli.main(base + ["export"]) == 0
    workbook = openpyxl.load_workbook(config_bundle.export_file)
    inventory = list(workbook["Inventory"].iter_rows(min_row=2, values_only=True))
    assert inventory[0][:5] == ("Bread", 100, 175, 20, 0)
    assert list(workbook["Sales"].iter_rows(min_row=2, values_only=True)) == []


def test_cli_sheet_management_flow(config_bundle, capsys):
    base = ["--config", str(config_bundle.config_path)]

    assert cli.main(base + ["new-sheet", "--name", "Weekend"]) == 0
    assert cli.main(base + ["rename-sheet", "--name", "Saturday"]) == 0
    assert cli.main(base + ["use-sheet", "--sheet", constants.DEFAULT_SHEET_NAME]) == 0
    assert cli.main(base + ["use-sheet", "--sheet", "Nowhere"]) == 2
    capsys.readouterr()

    assert cli.main(base + ["sheets"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert any(line.startswith(f"* {constants.DEFAULT_SHEET_NAME}") for line in lines)
    assert any("Saturday" in line for line in lines)

    assert cli.main(base + ["delete-sheet"]) == 0
    state = data_manager.load_state(config_bundle.data_file)
    assert [sheet.name for sheet in state.sheets] == ["Saturday"]
    assert state.active_sheet.name == "Saturday"
