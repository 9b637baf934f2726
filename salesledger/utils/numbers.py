import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .. import config

ZERO = Decimal('0')


def parse_numeric(val):
    """Lenient number parse for spreadsheet cells.

    Currency symbols, thousands separators and stray text are stripped.
    Returns None for blanks and anything that still is not a number.
    """
    if val is None or val == '':
        return None
    if isinstance(val, bool):
        return None
    if isinstance(val, (int, Decimal)):
        return Decimal(val)
    if isinstance(val, float):
        return Decimal(str(val))
    try:
        cleaned = re.sub(r"[^0-9.\-]", "", str(val))
        if cleaned in ('', '-', '.', '-.'):
            return None
        return Decimal(cleaned)
    except (InvalidOperation, ValueError):
        return None


def subunit():
    return Decimal(1).scaleb(-config.CURRENCY_DECIMALS)


def money(val):
    """Quantize to the smallest currency subunit."""
    if val is None:
        return ZERO.quantize(subunit())
    if not isinstance(val, Decimal):
        val = Decimal(str(val))
    return val.quantize(subunit(), rounding=ROUND_HALF_UP)


def as_float(val):
    if val is None:
        return None
    return float(val)
