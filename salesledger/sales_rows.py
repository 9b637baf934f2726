"""Map normalized-header upload rows onto a canonical SalesRow per channel.

Nothing downstream of ``normalize_rows`` sees the raw dict rows.
"""
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from .errors import ParseError, ValidationError
from .utils.item_parser import parse_items
from .utils.numbers import ZERO, parse_numeric
from .utils.upload_reader import normalize_header

logger = logging.getLogger(__name__)

CHANNEL_TABSENSE = 'TABSENSE'
CHANNEL_TALABAT = 'TALABAT'
CHANNELS = (CHANNEL_TABSENSE, CHANNEL_TALABAT)

REQUIRED_COLUMNS = {
    CHANNEL_TABSENSE: 'items_breakdown',
    CHANNEL_TALABAT: 'order_items',
}

REFERENCE_FIELDS = {
    CHANNEL_TABSENSE: ('receipt', 'receipt_id', 'receipt_number', 'order_id'),
    CHANNEL_TALABAT: ('order_id', 'order_number', 'receipt', 'order_reference'),
}

TIMESTAMP_FIELDS = {
    CHANNEL_TABSENSE: ('created_at', 'date', 'business_date', 'time'),
    CHANNEL_TALABAT: ('order_received_at', 'created_at', 'date'),
}

TOTAL_FIELDS = {
    CHANNEL_TABSENSE: ('total',),
    CHANNEL_TALABAT: ('subtotal', 'order_value', 'total'),
}

TAX_FIELDS = ('taxes', 'tax', 'vat')
TIP_FIELDS = ('tips', 'tip', 'tip_amount')

DATETIME_FORMATS = (
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d %H:%M',
    '%Y-%m-%d',
    '%d/%m/%Y %H:%M:%S',
    '%d/%m/%Y %H:%M',
    '%d/%m/%Y',
    '%m/%d/%Y %I:%M %p',
)


@dataclass
class SalesRow:
    row_number: int
    channel: str
    reference: str
    items_text: str
    items: list
    occurred_at: Optional[datetime] = None
    total: Optional[object] = None
    gross_sales: Optional[object] = None
    tax: object = ZERO
    tips: object = ZERO
    payments: dict = field(default_factory=dict)


@dataclass
class NormalizedBatch:
    channel: str
    headers: list
    rows: list
    failed_rows: list = field(default_factory=list)
    sample_first_row: Optional[dict] = None


def parse_timestamp(value):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        pass
    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def detect_channel(headers, requested=None):
    if requested:
        channel = str(requested).strip().upper()
        if channel not in CHANNELS:
            raise ValidationError(f'Unknown channel: {requested}')
        return channel
    header_set = set(headers)
    if 'items_breakdown' in header_set:
        return CHANNEL_TABSENSE
    if 'order_items' in header_set:
        return CHANNEL_TALABAT
    raise ParseError('Could not detect sales channel from headers', headers=headers)


def _first(row, names):
    for name in names:
        value = row.get(name)
        if value is not None and value != '':
            return value
    return None


def _first_number(row, names):
    for name in names:
        value = parse_numeric(row.get(name))
        if value is not None:
            return value
    return None


def synthesize_reference(channel, row_number, row, items_text, total):
    """Deterministic reference for exports without a receipt/order id."""
    stamp = _first(row, TIMESTAMP_FIELDS[channel]) or ''
    hash_input = f"{channel}|{stamp}|{items_text}|{total}|{row_number}"
    return 'ROW-' + hashlib.sha256(hash_input.encode('utf-8')).hexdigest()[:20]


def _payments(row, channel, payment_methods, collected):
    payments = {}
    for method in payment_methods:
        amount = parse_numeric(row.get(normalize_header(method)))
        if amount is not None and amount != 0:
            payments[method] = amount
    # Talabat exports carry no tender split; the platform collected all of it
    if not payments and channel == CHANNEL_TALABAT and collected:
        payments['talabat'] = collected
    return payments


def normalize_row(row, row_number, channel, payment_methods):
    items_text = str(row.get(REQUIRED_COLUMNS[channel]) or '').strip()
    total = _first_number(row, TOTAL_FIELDS[channel])
    gross = _first_number(row, ('gross_sales',))
    tax = _first_number(row, TAX_FIELDS) or ZERO
    tips = _first_number(row, TIP_FIELDS) or ZERO

    reference = _first(row, REFERENCE_FIELDS[channel])
    if reference is None:
        reference = synthesize_reference(channel, row_number, row, items_text, total)
    reference = str(reference).strip()
    # Excel turns long receipt numbers into floats
    if reference.endswith('.0') and reference[:-2].isdigit():
        reference = reference[:-2]

    collected = total if total is not None else (gross + tax if gross is not None else None)
    return SalesRow(
        row_number=row_number,
        channel=channel,
        reference=reference,
        items_text=items_text,
        items=parse_items(items_text, channel=channel),
        occurred_at=parse_timestamp(_first(row, TIMESTAMP_FIELDS[channel])),
        total=total,
        gross_sales=gross,
        tax=tax,
        tips=tips,
        payments=_payments(row, channel, payment_methods, collected),
    )


def normalize_rows(sheet, channel=None, payment_methods=()):
    """Turn an UploadedSheet into a NormalizedBatch of SalesRows.

    Rows with a blank items cell are dropped. If none survive, ParseError
    carries the discovered headers so the operator can see what was read.
    """
    channel = detect_channel(sheet.headers, channel)
    required = REQUIRED_COLUMNS[channel]
    candidates = [r for r in sheet.rows if str(r.get(required) or '').strip()]
    if not candidates:
        raise ParseError(f'No valid sales data found in file (missing {required})', headers=sheet.headers)

    rows = []
    failed = []
    for row_number, raw in enumerate(candidates, start=1):
        try:
            rows.append(normalize_row(raw, row_number, channel, payment_methods))
        except (ValueError, TypeError, ArithmeticError) as e:
            logger.warning("row %d could not be normalized: %s", row_number, e)
            failed.append({'row': row_number, 'error': str(e)})

    sample = {k: (v if isinstance(v, (str, int, float)) or v is None else str(v)) for k, v in candidates[0].items()}
    return NormalizedBatch(channel=channel, headers=list(sheet.headers), rows=rows,
                           failed_rows=failed, sample_first_row=sample)
