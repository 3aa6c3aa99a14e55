"""Business logic layer for the bakery ledger.

This module owns the mutable application state (the collection of stock
sheets and the active-sheet pointer) and exposes the only operations allowed
to change it. Every mutation validates its preconditions first and refuses
the write entirely when one fails, so a rejected request never leaves a half
applied change behind. Sheets are immutable records; a mutation builds a
replacement sheet and swaps it into the state in a single assignment.

Reading the ledger always goes through
:func:`~bakery_ledger.aggregator.compute_ledger`, which recomputes the view
model from the current sheet, so there is no cache to invalidate.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, List, Optional, Tuple, Type, Union

from . import data_manager, log
from .aggregator import compute_ledger, find_derived_product, round_currency
from .constants import (
    DEFAULT_SHEET_NAME,
    EXPECTED_SCHEMA_VERSION,
    SHEET_NAME_TEMPLATE,
    ProductField,
)
from .models import ComputedLedger, LedgerState, Product, ReconciliationReport, Sale, Sheet
from .normalizer import build_sheet, generate_id, normalize_name, parse_iso_date, today_local, utc_now
from .reconciliation import reconcile


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, sale, or sheet is unknown."""


class DuplicateNameError(BusinessRuleViolation):
    """Raised when a product name collides with another product in the sheet."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a sale asks for more units than the product has available."""


class InvalidValueError(BusinessRuleViolation, ValueError):
    """Raised when a supplied field value is malformed or out of range."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the live ledger state used by the BLL.

    ``lock`` serialises read-modify-write cycles so that a computed ledger
    never reflects a torn intermediate state.
    """

    settings: data_manager.ConfigSettings
    state: LedgerState
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)


def _reject(error_type: Type[BusinessRuleViolation], message: str) -> BusinessRuleViolation:
    log.warning("Rejected request: %s", message)
    return error_type(message)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and the persisted ledger state.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file. When omitted the data layer searches upward
            from the current working directory.

    Returns:
        RuntimeContext: Context ready for the ledger operations.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    state = data_manager.load_state(settings.data_file)
    log.info("Loaded runtime context for ledger '%s'", settings.data_file)
    return RuntimeContext(settings=settings, state=state)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to work with a data file declared for another schema version.

    Raises:
        RuntimeError: If ``config.ini`` declares a version other than
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Ledger schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Ledger schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Save the in-memory state to the configured data file."""

    with context.lock:
        data_manager.save_state(context.state, context.settings.data_file)
    log.info("Persisted ledger '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the ledger from disk, discarding unsaved modifications.

    Returns:
        RuntimeContext: New context sharing the settings of ``context`` and
            holding freshly loaded state.
    """

    state = data_manager.load_state(context.settings.data_file)
    log.info("Reloaded ledger '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, state=state)


# ---------------------------------------------------------------------------
# Value parsing
# ---------------------------------------------------------------------------


def _coerce_number(value: Any, label: str) -> float:
    """Parse user input into a finite float or reject it."""

    if isinstance(value, bool) or value is None:
        raise _reject(InvalidValueError, f"{label} must be a number.")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise _reject(InvalidValueError, f"{label} must be a number.")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise _reject(InvalidValueError, f"{label} must be a number.") from None
    if not math.isfinite(number):
        raise _reject(InvalidValueError, f"{label} must be a finite number.")
    return number


def require_nonnegative_money(value: Union[str, float, Decimal], label: str) -> float:
    """Parse a monetary amount and require it to be zero or positive.

    Raises:
        InvalidValueError: If the value is not numeric or is negative.
    """

    amount = _coerce_number(value, label)
    if amount < 0:
        raise _reject(InvalidValueError, f"{label} must be a number >= 0.")
    return amount


def require_nonnegative_count(value: Union[str, int, float], label: str) -> int:
    """Parse a stock count and require an integer >= 0."""

    number = _coerce_number(value, label)
    if not number.is_integer() or number < 0:
        raise _reject(InvalidValueError, f"{label} must be an integer >= 0.")
    return int(number)


def require_positive_quantity(value: Union[str, int, float], label: str = "Quantity sold") -> int:
    """Parse a sale quantity and require an integer >= 1."""

    number = _coerce_number(value, label)
    if not number.is_integer() or number < 1:
        raise _reject(InvalidValueError, f"{label} must be an integer >= 1.")
    return int(number)


def _resolve_sale_date(value: Union[None, str, date]) -> date:
    if value is None or value == "":
        return today_local()
    if isinstance(value, date):
        return value
    parsed = parse_iso_date(value)
    if parsed is None:
        raise _reject(InvalidValueError, "Please choose a valid sale date (YYYY-MM-DD).")
    return parsed


# ---------------------------------------------------------------------------
# Sheet management
# ---------------------------------------------------------------------------


def _touch(sheet: Sheet) -> Sheet:
    return replace(sheet, updated_at=utc_now())


def _store_sheet(context: RuntimeContext, updated: Sheet) -> Sheet:
    """Swap ``updated`` into the state in place of the sheet with the same id."""

    touched = _touch(updated)
    for position, existing in enumerate(context.state.sheets):
        if existing.sheet_id == touched.sheet_id:
            context.state.sheets[position] = touched
            return touched
    raise _reject(MissingReferenceError, f"Unknown stock sheet: {updated.sheet_id}")


def ensure_active_sheet(context: RuntimeContext) -> Sheet:
    """Return the active sheet, repairing the state when it has none.

    An empty sheet collection gains a fresh ``DEFAULT_SHEET_NAME`` sheet, and
    a dangling active pointer falls back to the first sheet.
    """

    with context.lock:
        state = context.state
        if not state.sheets:
            replacement = build_sheet(DEFAULT_SHEET_NAME)
            state.sheets.append(replacement)
            state.active_sheet_id = replacement.sheet_id
            log.info("Created replacement sheet '%s'", replacement.name)
            return replacement

        active = state.active_sheet
        if active is None:
            active = state.sheets[0]
            state.active_sheet_id = active.sheet_id
            log.info("Active sheet reset to '%s'", active.name)
        return active


def get_active_sheet(context: RuntimeContext) -> Sheet:
    return ensure_active_sheet(context)


def list_sheets(context: RuntimeContext) -> List[Sheet]:
    """All sheets, most recently updated first."""

    return sorted(context.state.sheets, key=lambda sheet: sheet.updated_at, reverse=True)


def resolve_sheet(context: RuntimeContext, key: str) -> Sheet:
    """Find a sheet by id, or failing that by case-insensitive name.

    Raises:
        MissingReferenceError: If nothing matches ``key``.
    """

    sheet = context.state.find_sheet(key)
    if sheet is not None:
        return sheet
    wanted = normalize_name(key)
    for candidate in context.state.sheets:
        if normalize_name(candidate.name) == wanted:
            return candidate
    raise _reject(MissingReferenceError, f"Unknown stock sheet: {key}")


def create_sheet(context: RuntimeContext, name: Optional[str] = None) -> Sheet:
    """Create a new empty sheet, place it first and make it active."""

    with context.lock:
        fallback = SHEET_NAME_TEMPLATE.format(number=len(context.state.sheets) + 1)
        sheet_name = (name or "").strip() or fallback
        sheet = build_sheet(sheet_name)
        context.state.sheets.insert(0, sheet)
        context.state.active_sheet_id = sheet.sheet_id
    log.info("Created stock sheet '%s' (%s)", sheet.name, sheet.sheet_id)
    return sheet


def rename_sheet(context: RuntimeContext, name: str) -> Sheet:
    """Rename the active sheet.

    Raises:
        InvalidValueError: If ``name`` is blank after trimming.
    """

    next_name = (name or "").strip()
    if not next_name:
        raise _reject(InvalidValueError, "Stock sheet name cannot be empty.")

    with context.lock:
        sheet = ensure_active_sheet(context)
        renamed = _store_sheet(context, replace(sheet, name=next_name))
    log.info("Renamed stock sheet '%s' to '%s'", sheet.name, next_name)
    return renamed


def delete_sheet(context: RuntimeContext) -> Sheet:
    """Delete the active sheet and activate the first remaining one.

    When the last sheet is deleted a fresh default sheet takes its place.

    Returns:
        Sheet: The sheet that was removed.
    """

    with context.lock:
        sheet = ensure_active_sheet(context)
        context.state.sheets = [item for item in context.state.sheets if item.sheet_id != sheet.sheet_id]
        context.state.active_sheet_id = ""
        active = ensure_active_sheet(context)
    log.info("Deleted stock sheet '%s'; '%s' is now active", sheet.name, active.name)
    return sheet


def switch_sheet(context: RuntimeContext, key: str) -> Sheet:
    """Make the sheet identified by ``key`` (id or name) the active one."""

    with context.lock:
        sheet = resolve_sheet(context, key)
        context.state.active_sheet_id = sheet.sheet_id
    log.info("Switched to stock sheet '%s'", sheet.name)
    return sheet


# ---------------------------------------------------------------------------
# Ledger reads
# ---------------------------------------------------------------------------


def compute_active_ledger(context: RuntimeContext) -> ComputedLedger:
    """Recompute the view model for the active sheet."""

    with context.lock:
        sheet = ensure_active_sheet(context)
        return compute_ledger(sheet)


def run_system_check(context: RuntimeContext) -> ReconciliationReport:
    """Reconcile the active sheet's totals against their per-row sources."""

    return reconcile(compute_active_ledger(context))


# ---------------------------------------------------------------------------
# Product operations
# ---------------------------------------------------------------------------


def _find_product(sheet: Sheet, name: str) -> Tuple[int, Product]:
    key = normalize_name(name)
    for position, product in enumerate(sheet.products):
        if normalize_name(product.name) == key:
            return position, product
    raise _reject(MissingReferenceError, f'Unknown product: "{name}".')


def add_product(
    context: RuntimeContext,
    *,
    name: str,
    unit_cost: Union[str, float],
    unit_price: Union[str, float],
    opening_stock: Union[str, int],
) -> Product:
    """Append a new product to the active sheet.

    Monetary values are stored rounded to two decimals and ``stock_out``
    starts at zero.

    Raises:
        InvalidValueError: If the name is blank, a price is not a number
            >= 0, or the opening stock is not an integer >= 0.
        DuplicateNameError: If the name collides case-insensitively with an
            existing product.
    """

    product_name = (name or "").strip()
    if not product_name:
        raise _reject(InvalidValueError, "Product name is required.")

    with context.lock:
        sheet = ensure_active_sheet(context)
        key = normalize_name(product_name)
        if any(normalize_name(product.name) == key for product in sheet.products):
            raise _reject(DuplicateNameError, "Product names must be unique within a sheet.")

        cost = require_nonnegative_money(unit_cost, "Unit cost")
        price = require_nonnegative_money(unit_price, "Unit price")
        opening = require_nonnegative_count(opening_stock, "Opening stock")

        product = Product(
            name=product_name,
            unit_cost=round_currency(cost),
            unit_price=round_currency(price),
            opening_stock=opening,
            stock_out=0,
        )
        _store_sheet(context, replace(sheet, products=sheet.products + (product,)))

    log.info(
        "Added product '%s' (cost=%s, price=%s, opening=%d)",
        product.name,
        product.unit_cost,
        product.unit_price,
        product.opening_stock,
    )
    return product


def edit_product_field(
    context: RuntimeContext,
    product_name: str,
    field_name: Union[str, ProductField],
    value: Any,
) -> Product:
    """Change one field of a product in the active sheet.

    Renaming rewrites the item name of every sale that referenced the old
    name, in the same swap as the product change. Opening stock may not drop
    below the units already recorded as stock out.

    Args:
        context (RuntimeContext): Runtime context holding the state.
        product_name (str): Current name of the product (case-insensitive).
        field_name (str | ProductField): One of ``name``, ``unit_cost``,
            ``unit_price`` or ``opening_stock``.
        value (Any): New value; strings are parsed for numeric fields.

    Returns:
        Product: The updated product record.

    Raises:
        MissingReferenceError: If the product does not exist.
        DuplicateNameError: If a rename collides with another product.
        InvalidValueError: If the field is unknown or the value is invalid.
        BusinessRuleViolation: If opening stock would fall below stock out.
    """

    try:
        target = ProductField(field_name)
    except ValueError:
        raise _reject(InvalidValueError, f"Unknown product field: {field_name}") from None

    with context.lock:
        sheet = ensure_active_sheet(context)
        position, product = _find_product(sheet, product_name)
        sales = sheet.sales

        if target is ProductField.NAME:
            next_name = value.strip() if isinstance(value, str) else ""
            if not next_name:
                raise _reject(InvalidValueError, "Product name cannot be empty.")
            next_key = normalize_name(next_name)
            duplicate = any(
                index != position and normalize_name(item.name) == next_key
                for index, item in enumerate(sheet.products)
            )
            if duplicate:
                raise _reject(DuplicateNameError, "Duplicate product name is not allowed.")

            old_key = normalize_name(product.name)
            updated = replace(product, name=next_name)
            if old_key != next_key:
                sales = tuple(
                    replace(sale, item_name=next_name) if normalize_name(sale.item_name) == old_key else sale
                    for sale in sheet.sales
                )
        elif target is ProductField.OPENING_STOCK:
            opening = require_nonnegative_count(value, "Opening stock")
            if opening < product.stock_out:
                raise _reject(BusinessRuleViolation, "Opening stock cannot be lower than stock out.")
            updated = replace(product, opening_stock=opening)
        else:
            label = "Unit cost" if target is ProductField.UNIT_COST else "Unit price"
            amount = round_currency(require_nonnegative_money(value, label))
            updated = replace(product, **{target.value: amount})

        products = sheet.products[:position] + (updated,) + sheet.products[position + 1:]
        _store_sheet(context, replace(sheet, products=products, sales=sales))

    log.info("Updated %s of product '%s'", target.value, product.name)
    return updated


def delete_product(context: RuntimeContext, product_name: str) -> Product:
    """Remove a product that no sale references.

    Raises:
        MissingReferenceError: If the product does not exist.
        BusinessRuleViolation: If any sale still references the product.
    """

    with context.lock:
        sheet = ensure_active_sheet(context)
        position, product = _find_product(sheet, product_name)
        key = normalize_name(product.name)
        if any(normalize_name(sale.item_name) == key for sale in sheet.sales):
            raise _reject(BusinessRuleViolation, "Delete related sales first before deleting this product.")

        products = sheet.products[:position] + sheet.products[position + 1:]
        _store_sheet(context, replace(sheet, products=products))

    log.info("Deleted product '%s'", product.name)
    return product


# ---------------------------------------------------------------------------
# Sale operations
# ---------------------------------------------------------------------------


def add_sale(
    context: RuntimeContext,
    *,
    item_name: str,
    qty_sold: Union[str, int],
    sale_date: Union[None, str, date] = None,
) -> Sale:
    """Record a sale against a product of the active sheet.

    Stock is checked against the ledger recomputed from the current sheet,
    immediately before the write. Revenue and production cost are the
    quantity times the product's unit price and unit cost, rounded to two
    decimals; gross profit is their rounded difference. The product's
    ``stock_out`` grows by the quantity and the sale is stored under the
    product's own spelling of its name.

    Raises:
        InvalidValueError: If the date, item name or quantity is invalid.
        MissingReferenceError: If no product matches ``item_name``.
        InsufficientStockError: If ``qty_sold`` exceeds the stock available.
    """

    when = _resolve_sale_date(sale_date)
    wanted = (item_name or "").strip()
    if not wanted:
        raise _reject(InvalidValueError, "Please select an item.")
    quantity = require_positive_quantity(qty_sold)

    with context.lock:
        sheet = ensure_active_sheet(context)
        derived = find_derived_product(compute_ledger(sheet), wanted)
        if derived is None:
            raise _reject(MissingReferenceError, f'Product "{wanted}" does not exist.')
        if quantity > derived.stock_available:
            raise _reject(
                InsufficientStockError,
                f"Cannot add sale. {derived.name} has only {derived.stock_available} in stock.",
            )

        position, product = _find_product(sheet, wanted)
        revenue = round_currency(quantity * product.unit_price)
        production_cost = round_currency(quantity * product.unit_cost)
        sale = Sale(
            sale_id=generate_id(),
            sale_date=when,
            item_name=product.name,
            qty_sold=quantity,
            revenue=revenue,
            production_cost=production_cost,
            gross_profit=round_currency(revenue - production_cost),
        )
        updated = replace(product, stock_out=product.stock_out + quantity)
        products = sheet.products[:position] + (updated,) + sheet.products[position + 1:]
        _store_sheet(context, replace(sheet, products=products, sales=sheet.sales + (sale,)))

    log.info(
        "Recorded sale '%s': %d x %s (revenue=%s, cost=%s)",
        sale.sale_id,
        sale.qty_sold,
        sale.item_name,
        sale.revenue,
        sale.production_cost,
    )
    return sale


def delete_sale(context: RuntimeContext, sale_id: str) -> Sale:
    """Delete a sale and roll its quantity back out of the product's stock out.

    Raises:
        MissingReferenceError: If the sale, or the product it references, is
            unknown.
        BusinessRuleViolation: If the rollback would make stock out negative.
    """

    with context.lock:
        sheet = ensure_active_sheet(context)
        index = next((i for i, sale in enumerate(sheet.sales) if sale.sale_id == sale_id), None)
        if index is None:
            raise _reject(MissingReferenceError, f"Unknown sale: {sale_id}")
        sale = sheet.sales[index]

        key = normalize_name(sale.item_name)
        position = next((i for i, item in enumerate(sheet.products) if normalize_name(item.name) == key), None)
        if position is None:
            raise _reject(
                MissingReferenceError,
                "Sale cannot be deleted because the related product is missing.",
            )
        product = sheet.products[position]
        if product.stock_out - sale.qty_sold < 0:
            raise _reject(BusinessRuleViolation, "Sale cannot be deleted due to invalid stock rollback.")

        updated = replace(product, stock_out=product.stock_out - sale.qty_sold)
        products = sheet.products[:position] + (updated,) + sheet.products[position + 1:]
        sales = sheet.sales[:index] + sheet.sales[index + 1:]
        _store_sheet(context, replace(sheet, products=products, sales=sales))

    log.info("Deleted sale '%s' and rolled back %d x %s", sale.sale_id, sale.qty_sold, sale.item_name)
    return sale
