"""Normalization helpers for amounts, dates and rates coming from documents or forms."""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional


TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

DECIMAL_RE = re.compile(r"[^0-9,\.-]+")

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%d/%m/%Y",
    "%d.%m.%Y",
    "%d-%m-%Y",
)


def parse_decimal(value: object) -> Optional[Decimal]:
    """Parse a number written with either European or US separators."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    text = str(value).strip()
    if not text:
        return None
    text = DECIMAL_RE.sub("", text)
    if "," in text and "." in text:
        # Decide decimal separator by last occurrence.
        if text.rfind(",") > text.rfind("."):
            # European format: 1.234,56 -> 1234.56
            text = text.replace(".", "").replace(",", ".")
        else:
            # US format: 1,234.56 -> 1234.56
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".")
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def quantize_amount(value: Decimal) -> Decimal:
    """Round half-up to cents."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def parse_amount(value: object) -> Optional[Decimal]:
    parsed = parse_decimal(value)
    if parsed is None or not parsed.is_finite():
        return None
    return quantize_amount(parsed)


def format_amount(value: Optional[Decimal]) -> Optional[str]:
    """Render an amount the way the movement API expects it ("1220.00")."""
    if value is None:
        return None
    return format(quantize_amount(value), "f")


def parse_rate(value: object) -> Optional[Decimal]:
    """
    Parse a VAT rate into a fraction.

    Accepts "22%", "22", 22, "22,00" and 0.22; anything above 1 is read as a
    percentage.
    """
    parsed = parse_decimal(value)
    if parsed is None or not parsed.is_finite() or parsed < 0:
        return None
    if parsed > 1:
        parsed = parsed / Decimal(100)
    return parsed


def parse_date(value: object) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    # Drop timezone suffixes such as "Z" or "+01:00"
    text = re.sub(r"(Z|[+-]\d{2}:\d{2})$", "", text)
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def clean_text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_vat(value: object) -> Optional[str]:
    """VAT numbers compare case-insensitively with all whitespace removed."""
    if value is None:
        return None
    text = re.sub(r"\s+", "", str(value)).upper()
    return text or None


def normalize_name(value: object) -> str:
    """Casefold and collapse whitespace for name comparisons."""
    if value is None:
        return ""
    return " ".join(str(value).split()).casefold()


COUNTRY_PREFIX_RE = re.compile(r"^[A-Z]{2}(?=\d)")


def vat_key(value: object) -> Optional[str]:
    """
    Comparison key for VAT numbers.

    Normalized like normalize_vat, with a leading two-letter country code
    dropped when digits follow it ("IT01234567890" -> "01234567890").
    """
    text = normalize_vat(value)
    if text is None:
        return None
    return COUNTRY_PREFIX_RE.sub("", text) or None
