"""Normalisation helpers turning raw spreadsheet cells into comparable values.

Identifiers exported from different procurement tools rarely agree on their
formatting: one file carries ``PO-6903033`` while another stores the same
order as ``6903033.0`` after the spreadsheet coerced it to a number, and line
numbers show up zero padded (``0010``) or as plain integers.  No single
normalisation is reliable, so three join keys are derived and callers match on
any of them:

``alnum_key``
    upper-cased text with everything but ``[0-9A-Z]`` removed.
``numeric_key``
    digits only with leading zeros stripped.
``integer_key``
    the first contiguous run of digits parsed as an ``int``.

Every helper returns ``None`` rather than an empty value so that "no key" can
never accidentally compare equal to another "no key".
"""
from __future__ import annotations

import math
import re
import unicodedata
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import pandas as pd

SPREADSHEET_EPOCH = date(1899, 12, 30)

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y")
_NON_ALNUM = re.compile(r"[^0-9A-Z]+")
_NON_DIGIT = re.compile(r"[^0-9]+")
_DIGIT_RUN = re.compile(r"[0-9]+")
_NON_AMOUNT = re.compile(r"[^0-9,.\-]+")
_NON_SLUG = re.compile(r"[^a-z0-9]+")


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def as_text(value: Any) -> Optional[str]:
    """Render ``value`` as stripped text, ``None`` when empty.

    Integral floats lose their ``.0`` suffix so that ``6903033.0`` and
    ``"6903033"`` share the same textual form.
    """

    if _is_missing(value):
        return None
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return str(int(value))
        return str(value)
    text = str(value).strip()
    return text or None


def alnum_key(value: Any) -> Optional[str]:
    text = as_text(value)
    if text is None:
        return None
    key = _NON_ALNUM.sub("", text.upper())
    return key or None


def numeric_key(value: Any) -> Optional[str]:
    text = as_text(value)
    if text is None:
        return None
    key = _NON_DIGIT.sub("", text).lstrip("0")
    return key or None


def integer_key(value: Any) -> Optional[int]:
    text = as_text(value)
    if text is None:
        return None
    match = _DIGIT_RUN.search(text)
    if not match:
        return None
    return int(match.group(0))


def _serial_to_date(value: Any) -> Optional[date]:
    try:
        serial = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(serial) or math.isinf(serial):
        return None
    try:
        return SPREADSHEET_EPOCH + timedelta(days=int(round(serial)))
    except OverflowError:
        return None


def normalize_date(value: Any) -> Optional[date]:
    """Return a calendar date for ``value`` or ``None``.

    Attempts, first success wins: native date types, ISO date, ISO timestamp
    truncated to its date, ``%Y-%m-%d``, ``%d/%m/%Y``, ``%d-%m-%Y`` and
    finally a spreadsheet serial number counted from 1899-12-30.
    """

    if _is_missing(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return _serial_to_date(value)

    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return _serial_to_date(text)


def parse_amount(value: Any) -> Optional[float]:
    """Parse a payment amount, tolerating separators and decimal commas."""

    if _is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            amount = float(value)
        except (InvalidOperation, ValueError):
            return None
        return None if math.isnan(amount) or math.isinf(amount) else amount
    cleaned = _NON_AMOUNT.sub("", str(value)).replace(",", ".")
    if not cleaned:
        return None
    try:
        amount = float(cleaned)
    except ValueError:
        return None
    return None if math.isnan(amount) or math.isinf(amount) else amount


def fold_label(value: Any) -> str:
    """Accent-free, lower-cased form of a header label used for matching."""

    text = "" if value is None else str(value)
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower().strip()


def slugify_header(value: Any) -> str:
    """Return a snake_case physical column name for a spreadsheet header."""

    slug = _NON_SLUG.sub("_", fold_label(value)).strip("_")
    if not slug:
        return "column"
    if slug[0].isdigit():
        slug = f"c_{slug}"
    return slug


__all__ = [
    "SPREADSHEET_EPOCH",
    "alnum_key",
    "as_text",
    "fold_label",
    "integer_key",
    "normalize_date",
    "numeric_key",
    "parse_amount",
    "slugify_header",
]
