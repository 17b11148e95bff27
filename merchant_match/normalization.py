from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Any

from merchant_match.fields import CanonicalField, FieldKind
from merchant_match.keys import safe_trim, stringify
from merchant_match.models import Scalar

EXCEL_EPOCH = datetime(1899, 12, 30)
# Serial days are read at noon so timezone drift stays inside the same day.
SERIAL_ROUNDING_OFFSET = timedelta(hours=12)
SERIAL_MIN = 30000
SERIAL_MAX = 60000

ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[ T]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)?$")
MONTH_NAME_DATE_RE = re.compile(r"^[A-Za-z]{3}/\d{1,2}/\d{4}$")
NUMBER_PREFIX_RE = re.compile(r"^[-+]?(?:\d+(?:\.\d*)?|\.\d+)")
NON_NUMERIC_RE = re.compile(r"[^0-9.\-]+")


def _display(value: date) -> str:
    return f"{value.month:02d}/{value.day:02d}/{value.year:04d}"


def serial_to_date(serial: float) -> date:
    return (EXCEL_EPOCH + timedelta(days=serial) + SERIAL_ROUNDING_OFFSET).date()


def format_date(value: Any) -> str:
    """Render a date-ish cell as ``MM/DD/YYYY``; unrecognized text is returned as-is.

    Accepts native dates, Excel serial day numbers (30000-60000), ISO
    ``YYYY-MM-DD`` strings and ``Mon/D/YYYY`` strings.
    """
    if isinstance(value, datetime):
        return _display(value.date())
    if isinstance(value, date):
        return _display(value)

    text = safe_trim(value)
    if not text:
        return ""

    try:
        number = float(text)
    except ValueError:
        number = None
    if number is not None and SERIAL_MIN < number < SERIAL_MAX:
        try:
            return _display(serial_to_date(number))
        except OverflowError:
            return text

    match = ISO_DATE_RE.match(text)
    if match:
        year, month, day = match.groups()
        return f"{month}/{day}/{year}"

    if MONTH_NAME_DATE_RE.match(text):
        try:
            return _display(datetime.strptime(text, "%b/%d/%Y").date())
        except ValueError:
            return text
    return text


def parse_amount(value: Any) -> float | None:
    """Numeric prefix of a currency string after dropping symbols and separators."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = NON_NUMERIC_RE.sub("", stringify(value))
    match = NUMBER_PREFIX_RE.match(cleaned)
    if not match:
        return None
    return float(match.group(0))


def format_currency(value: Any) -> str:
    """Two-decimal, comma-grouped amount text; unparseable input is returned verbatim."""
    if value is None or value == "":
        return ""
    text = stringify(value)
    if "," in text and "." in text and len(text.split(".")[1]) == 2:
        return text
    amount = parse_amount(value)
    if amount is None:
        return text
    return f"{amount:,.2f}"


def normalize_field_value(canonical: CanonicalField, value: Scalar) -> Scalar:
    """Apply the field kind's display normalization to one reconciled value."""
    if canonical.kind is FieldKind.DATE:
        return format_date(value)
    if canonical.kind is FieldKind.CURRENCY:
        return format_currency(value)
    return value
