"""Command-line entry points for the bakery ledger.

This module only wires argparse to the business layer and prints the
computed view model. Keeping it thin means the same parser configuration can
be reused by tests, scripts, or any other front-end.
"""

from __future__ import annotations

import argparse
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, TextIO
import sys

from . import core_logic, data_manager, log
from .aggregator import is_low_stock, sales_for_display
from .constants import CURRENCY_KEYS, CURRENCY_SYMBOL, ProductField
from .models import ComputedLedger


CHECK_FAILED_EXIT_CODE = 4


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-cli",
        description="Command-line tools for the Bakery stock ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _simple_spec(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    *,
    mutates: bool,
    arguments: Sequence[tuple[Sequence[str], Dict[str, Any]]] = (),
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        for flags, options in arguments:
            parser.add_argument(*flags, **options)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=mutates)


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and product edits."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "edit-product": register_edit_product_command(subparsers),
        "delete-product": _simple_spec(
            "delete-product",
            "Delete a product that no sale references.",
            run_delete_product,
            mutates=True,
            arguments=[(("--name",), {"required": True})],
        ),
        "sale": register_sale_command(subparsers),
        "delete-sale": _simple_spec(
            "delete-sale",
            "Delete a sale and roll back its stock out.",
            run_delete_sale,
            mutates=True,
            arguments=[(("--sale-id",), {"required": True})],
        ),
        "new-sheet": _simple_spec(
            "new-sheet",
            "Create a new stock sheet and make it active.",
            run_new_sheet,
            mutates=True,
            arguments=[(("--name",), {"default": None})],
        ),
        "rename-sheet": _simple_spec(
            "rename-sheet",
            "Rename the active stock sheet.",
            run_rename_sheet,
            mutates=True,
            arguments=[(("--name",), {"required": True})],
        ),
        "delete-sheet": _simple_spec(
            "delete-sheet",
            "Delete the active stock sheet.",
            run_delete_sheet,
            mutates=True,
        ),
        "use-sheet": _simple_spec(
            "use-sheet",
            "Switch the active stock sheet by id or name.",
            run_use_sheet,
            mutates=True,
            arguments=[(("--sheet",), {"required": True})],
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports and the system check."""
    specs = {
        "sheets": _simple_spec("sheets", "List stock sheets.", run_sheets_report, mutates=False),
        "dashboard": _simple_spec("dashboard", "Display aggregate totals.", run_dashboard_report, mutates=False),
        "stock": _simple_spec("stock", "Display the inventory table.", run_stock_report, mutates=False),
        "sales": _simple_spec("sales", "Display sales, newest first.", run_sales_report, mutates=False),
        "check": _simple_spec(
            "check",
            "Reconcile totals and report every invariant violation.",
            run_system_check,
            mutates=False,
        ),
        "export": _simple_spec(
            "export",
            "Export the active sheet to an Excel workbook.",
            run_export,
            mutates=False,
            arguments=[(("--output",), {"type": Path, "default": None})],
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a product to the active stock sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--unit-cost", required=True)
        parser.add_argument("--unit-price", required=True)
        parser.add_argument("--opening-stock", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product, mutates=True)


def register_edit_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-product``."""
    name = "edit-product"
    help_text = "Change a product's name, unit cost, unit price or opening stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True, help="Current product name.")
        parser.add_argument(
            "--field",
            required=True,
            choices=[member.value.replace("_", "-") for member in ProductField],
        )
        parser.add_argument("--value", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_product, mutates=True)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale against a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item", required=True)
        parser.add_argument("--quantity", required=True)
        parser.add_argument("--date", default=None, help="Sale date as YYYY-MM-DD (defaults to today).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale, mutates=True)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else None
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def format_currency(value: float) -> str:
    """Render a monetary amount as ``₦1,234.50`` (``-₦...`` when negative)."""
    sign = "-" if value < 0 else ""
    return f"{sign}{CURRENCY_SYMBOL}{abs(value):,.2f}"


def format_integer(value: float) -> str:
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    return f"{round(value):,}"


def format_total(key: Any, value: float) -> str:
    return format_currency(value) if key in CURRENCY_KEYS else format_integer(value)


def _emit(lines: Iterable[str], stream: Optional[TextIO] = None) -> None:
    target = stream if stream is not None else sys.stdout
    for line in lines:
        print(line, file=target)


def render_dashboard(ledger: ComputedLedger) -> list[str]:
    lines = []
    if ledger.sheet is not None:
        lines.append(f"Sheet: {ledger.sheet.name}")
    for key, value in ledger.totals.items():
        lines.append(f"{key.value:<24}{format_total(key, value):>20}")
    if not ledger.validation.is_valid:
        lines.append(f"{len(ledger.validation.violations)} violation(s); run 'check' for details.")
    return lines


def render_stock(ledger: ComputedLedger) -> list[str]:
    if not ledger.products:
        return ["No products yet."]
    lines = [
        f"{'Name':<24}{'Cost':>12}{'Price':>12}{'Opening':>9}{'Out':>7}{'Avail':>7}{'Value':>16}"
    ]
    for product in ledger.products:
        marker = "  LOW" if is_low_stock(product) else ""
        lines.append(
            f"{product.name:<24}{format_currency(product.unit_cost):>12}{format_currency(product.unit_price):>12}"
            f"{product.opening_stock:>9}{product.stock_out:>7}{product.stock_available:>7}"
            f"{format_currency(product.stock_value_cost):>16}{marker}"
        )
    return lines


def render_sales(ledger: ComputedLedger) -> list[str]:
    if not ledger.sales:
        return ["No sales logged yet."]
    lines = [f"{'Date':<12}{'Item':<24}{'Qty':>5}{'Revenue':>14}{'Cost':>14}{'Profit':>14}  Sale ID"]
    for sale in sales_for_display(ledger):
        lines.append(
            f"{sale.sale_date.isoformat():<12}{sale.item_name:<24}{sale.qty_sold:>5}"
            f"{format_currency(sale.revenue):>14}{format_currency(sale.production_cost):>14}"
            f"{format_currency(sale.gross_profit):>14}  {sale.sale_id}"
        )
    return lines


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "name": args.name,
        "unit_cost": args.unit_cost,
        "unit_price": args.unit_price,
        "opening_stock": args.opening_stock,
    }


def translate_edit_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an edit-product request."""
    return {
        "product_name": args.name,
        "field_name": ProductField(args.field.replace("-", "_")),
        "value": args.value,
    }


def translate_sale(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-sale request."""
    return {
        "item_name": args.item,
        "qty_sold": args.quantity,
        "sale_date": args.date,
    }


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.add_product(context, **translate_add_product(args))
    _emit([f'Product "{product.name}" added.'])
    return 0


def run_edit_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.edit_product_field(context, **translate_edit_product(args))
    _emit([f'Product "{product.name}" updated.'])
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.delete_product(context, args.name)
    _emit([f'Product "{product.name}" deleted.'])
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sale = core_logic.add_sale(context, **translate_sale(args))
    _emit([f"Sale logged for {sale.qty_sold} x {sale.item_name} ({sale.sale_id})."])
    return 0


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_sale(context, args.sale_id)
    _emit(["Sale deleted and stock rolled back."])
    return 0


def run_new_sheet(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sheet = core_logic.create_sheet(context, args.name)
    _emit([f'Created "{sheet.name}".'])
    return 0


def run_rename_sheet(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.rename_sheet(context, args.name)
    _emit(["Stock sheet renamed."])
    return 0


def run_delete_sheet(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sheet = core_logic.delete_sheet(context)
    _emit([f'Deleted "{sheet.name}".'])
    return 0


def run_use_sheet(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    sheet = core_logic.switch_sheet(context, args.sheet)
    _emit([f'Active sheet is now "{sheet.name}".'])
    return 0


def run_sheets_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    active_id = core_logic.get_active_sheet(context).sheet_id
    lines = []
    for sheet in core_logic.list_sheets(context):
        marker = "*" if sheet.sheet_id == active_id else " "
        lines.append(f"{marker} {sheet.name}  (created {sheet.created_at.date().isoformat()}, id {sheet.sheet_id})")
    _emit(lines)
    return 0


def run_dashboard_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _emit(render_dashboard(core_logic.compute_active_ledger(context)))
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _emit(render_stock(core_logic.compute_active_ledger(context)))
    return 0


def run_sales_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _emit(render_sales(core_logic.compute_active_ledger(context)))
    return 0


def run_system_check(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print PASS/FAIL and every reconciliation message."""
    report = core_logic.run_system_check(context)
    _emit(["PASS" if report.passed else "FAIL", *(f"- {message}" for message in report.messages)])
    return 0 if report.passed else CHECK_FAILED_EXIT_CODE


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    destination = args.output if getattr(args, "output", None) is not None else context.settings.export_file
    written = data_manager.export_workbook(core_logic.compute_active_ledger(context), destination)
    _emit([f"Exported to {written}"])
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_state(context: core_logic.RuntimeContext) -> None:
    """Persist ledger changes after a successful write command."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_state(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
