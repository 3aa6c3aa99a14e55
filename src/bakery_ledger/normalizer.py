"""Sanitise raw, possibly malformed records into typed ledger records.

Everything in this module is a total function: any JSON-like input produces a
value and nothing raises. Bad data is coerced into well-typed records and left
for the invariant validator to flag; rejecting it is not this module's job.

Raw records use the camelCase keys of the persisted document (``unitCost``,
``qtySold``, ``dateISO`` ...). Unknown keys are ignored.
"""

from __future__ import annotations

import math
import random
import re
import time
import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional

from . import log
from .constants import DEFAULT_SHEET_NAME, SHEET_NAME_TEMPLATE
from .models import LedgerState, Product, Sale, Sheet


_ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def generate_id() -> str:
    """Return a new opaque identifier.

    A random UUID is used when the platform can supply secure randomness;
    otherwise the identifier falls back to a nanosecond clock reading plus a
    pseudo-random suffix.
    """

    try:
        return str(uuid.uuid4())
    except (NotImplementedError, OSError):
        return f"id_{time.time_ns()}_{random.getrandbits(48):x}"


def utc_now() -> datetime:
    return datetime.now(UTC)


def today_local() -> date:
    """Today's date in the local calendar."""

    return date.today()


def to_number_or_zero(value: Any) -> float:
    """Coerce ``value`` into a finite float, falling back to ``0.0``.

    Booleans count as ``0``/``1``, ``None`` and blank strings as ``0``, and
    numeric strings are parsed. Anything else, including values that overflow
    or parse to ``inf``/``nan``, becomes ``0.0``.
    """

    if isinstance(value, bool):
        return float(value)
    if value is None:
        return 0.0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0.0
    elif not isinstance(value, (int, float, Decimal)):
        return 0.0

    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def to_integer_or_zero(value: Any) -> int:
    """Coerce ``value`` into an int by truncating toward zero (never rounding)."""

    return math.trunc(to_number_or_zero(value))


def normalize_name(name: Any) -> str:
    """Return the comparison key used to match product names."""

    if not isinstance(name, str):
        return ""
    return name.strip().lower()


def parse_iso_date(value: Any) -> Optional[date]:
    """Parse a strict ``YYYY-MM-DD`` string, returning ``None`` when invalid."""

    if not isinstance(value, str) or not _ISO_DATE_PATTERN.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def parse_iso_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values are read as local time. Timestamps that cannot be expressed
    in UTC (for example year 1 with a positive offset) yield ``None``.
    """

    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
        parsed = parsed.astimezone(UTC)
    except (ValueError, OverflowError, OSError):
        return None
    return parsed


def _text_or_blank(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _identifier_or_new(value: Any) -> str:
    if isinstance(value, str) and value.strip():
        return value
    return generate_id()


def normalize_product(raw: Any) -> Optional[Product]:
    """Build a :class:`Product` from a raw mapping; non-mappings yield ``None``."""

    if not isinstance(raw, Mapping):
        return None

    return Product(
        name=_text_or_blank(raw.get("name")),
        unit_cost=to_number_or_zero(raw.get("unitCost")),
        unit_price=to_number_or_zero(raw.get("unitPrice")),
        opening_stock=to_integer_or_zero(raw.get("openingStock")),
        stock_out=to_integer_or_zero(raw.get("stockOut")),
    )


def normalize_sale(raw: Any) -> Optional[Sale]:
    """Build a :class:`Sale` from a raw mapping; non-mappings yield ``None``.

    Missing identifiers are regenerated and missing or invalid dates default
    to today's local date.
    """

    if not isinstance(raw, Mapping):
        return None

    sale_date = parse_iso_date(raw.get("dateISO"))
    return Sale(
        sale_id=_identifier_or_new(raw.get("id")),
        sale_date=sale_date if sale_date is not None else today_local(),
        item_name=_text_or_blank(raw.get("itemName")),
        qty_sold=to_integer_or_zero(raw.get("qtySold")),
        revenue=to_number_or_zero(raw.get("revenue")),
        production_cost=to_number_or_zero(raw.get("productionCost")),
        gross_profit=to_number_or_zero(raw.get("grossProfit")),
    )


def build_sheet(name: str) -> Sheet:
    """Create an empty sheet stamped with the current time."""

    now = utc_now()
    return Sheet(sheet_id=generate_id(), name=name, created_at=now, updated_at=now)


def default_state() -> LedgerState:
    """Fresh state holding a single empty, active sheet."""

    sheet = build_sheet(DEFAULT_SHEET_NAME)
    return LedgerState(sheets=[sheet], active_sheet_id=sheet.sheet_id)


def normalize_sheet(raw: Any, index: int) -> Optional[Sheet]:
    """Build a :class:`Sheet` from a raw mapping.

    Args:
        raw (Any): Candidate sheet record.
        index (int): Zero-based position of the record, used to name sheets
            whose stored name is blank.

    Returns:
        Sheet | None: Normalised sheet, or ``None`` when ``raw`` is not a
            mapping. Unusable product and sale entries are dropped.
    """

    if not isinstance(raw, Mapping):
        return None

    now = utc_now()
    raw_products = raw.get("products")
    raw_sales = raw.get("sales")
    products = [normalize_product(item) for item in raw_products] if isinstance(raw_products, list) else []
    sales = [normalize_sale(item) for item in raw_sales] if isinstance(raw_sales, list) else []

    name = _text_or_blank(raw.get("name")) or SHEET_NAME_TEMPLATE.format(number=index + 1)
    created_at = parse_iso_datetime(raw.get("createdAtISO"))
    updated_at = parse_iso_datetime(raw.get("updatedAtISO"))

    return Sheet(
        sheet_id=_identifier_or_new(raw.get("id")),
        name=name,
        created_at=created_at or now,
        updated_at=updated_at or now,
        products=tuple(product for product in products if product is not None),
        sales=tuple(sale for sale in sales if sale is not None),
    )


def normalize_state(raw: Any) -> LedgerState:
    """Build the full :class:`LedgerState` from the persisted document body.

    Falls back to :func:`default_state` when ``raw`` is unusable or holds no
    sheets. An active-sheet pointer that names no known sheet is reset to the
    first sheet.
    """

    if not isinstance(raw, Mapping):
        log.warning("Stored ledger state is not an object; starting from a default sheet")
        return default_state()

    raw_sheets = raw.get("sheets")
    candidates = raw_sheets if isinstance(raw_sheets, list) else []
    sheets: List[Sheet] = []
    for index, candidate in enumerate(candidates):
        sheet = normalize_sheet(candidate, index)
        if sheet is None:
            log.debug("Dropped unusable sheet record at position %d", index)
            continue
        sheets.append(sheet)

    if not sheets:
        log.info("No usable sheets found in stored state; starting from a default sheet")
        return default_state()

    active_id = raw.get("activeSheetId")
    if not isinstance(active_id, str) or not any(sheet.sheet_id == active_id for sheet in sheets):
        active_id = sheets[0].sheet_id

    return LedgerState(sheets=sheets, active_sheet_id=active_id)


__all__ = [
    "generate_id",
    "utc_now",
    "today_local",
    "to_number_or_zero",
    "to_integer_or_zero",
    "normalize_name",
    "parse_iso_date",
    "parse_iso_datetime",
    "normalize_product",
    "normalize_sale",
    "build_sheet",
    "default_state",
    "normalize_sheet",
    "normalize_state",
]
