"""
Lenient value parsers shared by both export formats.
Unparseable input falls back to a default; nothing here raises.
"""
import re
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from openpyxl.utils.datetime import from_excel

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

_BAD_DATES = {"0000-00-00", "1900-01-01", "n/a", "null", "nan", "none", ""}

_DATE_FORMATS = [
    '%Y-%m-%d %H:%M:%S %z', '%Y-%m-%d %H:%M:%S%z',
    '%Y-%m-%dT%H:%M:%S.%fZ', '%Y-%m-%dT%H:%M:%SZ', '%Y-%m-%dT%H:%M:%S.%f%z', '%Y-%m-%dT%H:%M:%S%z',
    '%Y-%m-%dT%H:%M:%S.%f', '%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M', '%Y-%m-%d %H:%M:%S.%f',
    '%Y-%m-%d %H:%M:%S', '%Y-%m-%d %H:%M', '%Y-%m-%d',
]
_MONTH_FIRST = ['%m/%d/%Y %H:%M:%S', '%m/%d/%Y %H:%M', '%m/%d/%Y']
_DAY_FIRST = ['%d/%m/%Y %H:%M:%S', '%d/%m/%Y %H:%M', '%d/%m/%Y', '%d.%m.%Y', '%d-%m-%Y']

# Excel serials for 1950..2100; anything else numeric is not a date
_EXCEL_SERIAL_RANGE = (18264, 73051)

_AMOUNT_NOISE_RE = re.compile(r"[^\d.\-]")


def parse_order_date(value: Any, day_first: bool = False) -> Optional[date]:
    """
    Best-effort date from a datetime, an Excel serial number or text.
    Returns None when nothing usable is found; callers choose the fallback.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if _EXCEL_SERIAL_RANGE[0] <= value <= _EXCEL_SERIAL_RANGE[1]:
            converted = from_excel(value)
            return converted.date() if isinstance(converted, datetime) else converted
        return None

    ds = str(value).strip()
    if ds.lower() in _BAD_DATES:
        return None

    fmts = _DATE_FORMATS + (_DAY_FIRST + _MONTH_FIRST if day_first else _MONTH_FIRST + _DAY_FIRST)
    for f in fmts:
        try:
            return datetime.strptime(ds, f).date()
        except ValueError:
            pass

    if '+' in ds or ds.endswith('Z'):
        clean = re.sub(r'\s*(?:[+-]\d{2}:?\d{2}|Z)$', '', ds)
        if clean != ds:
            return parse_order_date(clean, day_first=day_first)

    logger.debug(f"Could not parse date: {ds}")
    return None


def parse_quantity(value: Any) -> int:
    """Non-negative integer quantity; 0 when unparseable."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        qty = int(float(str(value).strip().replace(",", "")))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(qty, 0)


def parse_amount(value: Any) -> Optional[Decimal]:
    """
    Decimal money amount, or None. Input is read dot-decimal: currency
    symbols and commas are dropped, so "1.234,56" parses as 1.23.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        raw = str(value)
        if "," in raw and raw.rfind(",") > raw.rfind(".") >= 0:
            logger.debug(f"Amount {raw!r} looks comma-decimal; reading it dot-decimal")
        text = _AMOUNT_NOISE_RE.sub("", raw)
        if not text:
            return None
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None
    if not amount.is_finite():
        return None
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(unit_price: Any, quantity: int) -> Decimal:
    """unit price x quantity, 0.00 when the price is unparseable."""
    price = parse_amount(unit_price)
    if price is None:
        return Decimal("0.00")
    return (price * quantity).quantize(CENT, rounding=ROUND_HALF_UP)
