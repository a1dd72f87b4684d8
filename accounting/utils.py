"""
Utility functions shared across the app. This includes:
- format_eur / format_number_hr: Croatian money display ("€1.234,56").
- format_date_hr: dd.MM.yyyy display.
- parse_masked_date / format_masked_date: the DD/MM/YYYY masked date field.
- parse_decimal / parse_date / parse_optional_int: form value parsing.
- get_active_categories: invoice category dropdown values.
- request_payload / *_field / page_args: JSON request parsing for the blueprints.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from flask import current_app, request

from .errors import ValidationError
from .extensions import db
from .models import InvoiceCategory

_NON_DIGITS = re.compile(r"\D")


# ---------------------------------------------------------------------
# Display formatting (hr-HR)
# ---------------------------------------------------------------------
def format_number_hr(value) -> str:
    """1234567.891 -> '1.234.567,89' (two decimals, half-up)."""
    if value is None:
        value = Decimal("0")
    amount = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    integer_part, fraction_part = f"{abs(amount):.2f}".split(".")
    integer_part = f"{int(integer_part):,}".replace(",", ".")
    return f"{sign}{integer_part},{fraction_part}"


def format_eur(value) -> str:
    return f"€{format_number_hr(value)}"


def format_date_hr(value: date | datetime | str | None) -> str:
    """ISO date/datetime -> 'dd.MM.yyyy'; empty string for missing values."""
    if not value:
        return ""
    if isinstance(value, str):
        value = date.fromisoformat(value[:10])
    return value.strftime("%d.%m.%Y")


# ---------------------------------------------------------------------
# Masked date input (DD/MM/YYYY)
# ---------------------------------------------------------------------
def parse_masked_date(raw: str | None) -> str:
    """
    Convert masked 'DD/MM/YYYY' (or bare 'DDMMYYYY') input to ISO 'YYYY-MM-DD'.

    Only exactly 8 digits are accepted. Day must be 1..31, month 1..12 and year 1900..2100,
    otherwise the value is rejected and an empty string is returned.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if len(digits) != 8:
        return ""

    day, month, year = digits[0:2], digits[2:4], digits[4:8]
    if not (1 <= int(day) <= 31 and 1 <= int(month) <= 12 and 1900 <= int(year) <= 2100):
        return ""

    return f"{year}-{month}-{day}"


def format_masked_date(iso_value: str | None) -> str:
    """'2024-12-25' -> '25/12/2024'."""
    if not iso_value:
        return ""
    year, month, day = iso_value[:10].split("-")
    return f"{day}/{month}/{year}"


# ---------------------------------------------------------------------
# Form parsing
# ---------------------------------------------------------------------
def parse_decimal(value) -> Decimal | None:
    """
    Parse a decimal from user input.

    Accepts numbers, '1234.56', '1234,56' and Croatian formatted '1.234,56'.
    Returns None for empty, invalid or non-finite input (NaN, Infinity).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        parsed = Decimal(str(value))
        return parsed if parsed.is_finite() else None

    raw = str(value).strip().replace("€", "").replace(" ", "")
    if raw == "":
        return None
    if "," in raw:
        raw = raw.replace(".", "").replace(",", ".")
    try:
        parsed = Decimal(raw)
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def parse_date(value) -> date | None:
    """
    Parse a date from JSON input: ISO 'YYYY-MM-DD' or the masked 'DD/MM/YYYY' form.

    Returns None for empty input. Raises ValueError for input that is present but not a date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value

    raw = str(value).strip()
    if re.match(r"^\d{4}-\d{2}-\d{2}", raw):
        return date.fromisoformat(raw[:10])

    iso = parse_masked_date(raw)
    if not iso:
        raise ValueError(f"Invalid date: {raw}")
    return date.fromisoformat(iso)


def parse_optional_int(value) -> int | None:
    """Parse optional int from form/query."""
    if value is None or isinstance(value, bool):
        return None
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def get_active_categories() -> list[str]:
    """Active invoice category names for dropdowns, in configured order."""
    categories = (
        InvoiceCategory.query
        .filter_by(is_active=True)
        .order_by(InvoiceCategory.sort_order.asc(), InvoiceCategory.name.asc())
        .all()
    )
    return [c.name for c in categories]


# ---------------------------------------------------------------------
# JSON payload helpers (raise ValidationError with the offending field)
# ---------------------------------------------------------------------
def request_payload() -> dict:
    """JSON body of the request, or the submitted form when no JSON was sent."""
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    if not isinstance(data, dict):
        raise ValidationError("Neispravan format zahtjeva.")
    return data


def text_field(data: dict, field: str, *, required: bool = False, label: str | None = None) -> str | None:
    value = data.get(field)
    value = str(value).strip() if value is not None else ""
    if not value:
        if required:
            raise ValidationError(f"{label or field} je obavezno polje.", field)
        return None
    return value


def decimal_field(
    data: dict,
    field: str,
    *,
    required: bool = False,
    positive: bool = False,
    label: str | None = None,
) -> Decimal | None:
    """Decimal from payload. Negative values are always rejected; positive=True also rejects zero."""
    raw = data.get(field)
    if raw is None or (isinstance(raw, str) and raw.strip() == ""):
        if required:
            raise ValidationError(f"{label or field} je obavezno polje.", field)
        return None

    value = parse_decimal(raw)
    if value is None:
        raise ValidationError(f"{label or field}: neispravan iznos.", field)
    if value < 0 or (positive and value == 0):
        raise ValidationError(f"{label or field} mora biti veći od nule.", field)
    return value


def date_field(data: dict, field: str, *, required: bool = False, label: str | None = None) -> date | None:
    try:
        value = parse_date(data.get(field))
    except ValueError:
        raise ValidationError(f"{label or field}: neispravan datum (DD/MM/YYYY).", field)
    if value is None and required:
        raise ValidationError(f"{label or field} je obavezno polje.", field)
    return value


def int_field(data: dict, field: str, *, required: bool = False, label: str | None = None) -> int | None:
    value = parse_optional_int(data.get(field))
    if value is None and required:
        raise ValidationError(f"{label or field} je obavezno polje.", field)
    return value


def bool_field(data: dict, field: str, default: bool = False) -> bool:
    value = data.get(field)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "on", "yes", "da")


def choice_field(data: dict, field: str, choices, *, default: str | None = None) -> str:
    value = (str(data.get(field) or "").strip()) or default
    if value not in choices:
        raise ValidationError(f"Neispravna vrijednost polja {field}.", field)
    return value


def reference_field(data: dict, field: str, model, *, required: bool = False, label: str | None = None):
    """Load the row referenced by an id field (None when empty and optional)."""
    row_id = int_field(data, field, required=required, label=label)
    if row_id is None:
        return None
    row = db.session.get(model, row_id)
    if row is None:
        raise ValidationError(f"{label or field}: zapis ne postoji.", field)
    return row


def page_args() -> tuple[int, int]:
    """(page, per_page) from the query string, capped at MAX_PAGE_SIZE."""
    page = parse_optional_int(request.args.get("page")) or 1
    per_page = parse_optional_int(request.args.get("per_page")) or current_app.config["PAGE_SIZE"]
    per_page = min(max(per_page, 1), current_app.config["MAX_PAGE_SIZE"])
    return max(page, 1), per_page
