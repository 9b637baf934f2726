import csv
import io
import logging
import re
from collections import namedtuple

from openpyxl import load_workbook

from ..errors import ParseError

logger = logging.getLogger(__name__)

UploadedSheet = namedtuple('UploadedSheet', ['headers', 'rows'])

EXCEL_EXTENSIONS = ('.xlsx', '.xlsm')


def normalize_header(header):
    """'Items Breakdown' -> 'items_breakdown', 'Tip (JOD)' -> 'tip_jod'."""
    if header is None:
        return ''
    text = str(header).strip().lower()
    text = re.sub(r"[\s\W]+", "_", text)
    return text.strip('_')


def decode_text(raw):
    for encoding in ('utf-8-sig', 'latin-1'):
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise ParseError('Could not decode uploaded file')


def _normalize_row(raw_row, headers):
    row = {}
    for key, value in zip(headers, raw_row):
        if not key:
            continue
        if isinstance(value, str):
            value = value.strip()
        # Repeated headers keep the first non-empty value
        if key in row and row[key] not in (None, ''):
            continue
        row[key] = value
    return row


def _is_blank(values):
    return all(v is None or (isinstance(v, str) and v.strip() == '') for v in values)


def read_csv(text):
    reader = csv.reader(io.StringIO(text))
    try:
        raw_headers = next(reader)
    except StopIteration:
        raise ParseError('Uploaded file is empty')
    headers = [normalize_header(h) for h in raw_headers]
    rows = []
    for raw_row in reader:
        if _is_blank(raw_row):
            continue
        rows.append(_normalize_row(raw_row, headers))
    return UploadedSheet([h for h in headers if h], rows)


def read_xlsx(raw):
    try:
        wb = load_workbook(io.BytesIO(raw), read_only=True, data_only=True)
    except Exception as e:
        raise ParseError(f'Failed to parse workbook: {e}')
    try:
        if not wb.sheetnames:
            raise ParseError('Workbook is empty')
        sheet = wb[wb.sheetnames[0]]
        headers = None
        rows = []
        for values in sheet.iter_rows(values_only=True):
            if _is_blank(values):
                continue
            if headers is None:
                headers = [normalize_header(v) for v in values]
                continue
            rows.append(_normalize_row(values, headers))
        if headers is None:
            raise ParseError('Sheet is empty')
        return UploadedSheet([h for h in headers if h], rows)
    finally:
        wb.close()


def read_upload(filename, raw):
    """Read a CSV or XLSX upload into normalized-header dict rows."""
    if not raw:
        raise ParseError('Uploaded file is empty')
    name = (filename or '').lower()
    if name.endswith(EXCEL_EXTENSIONS):
        sheet = read_xlsx(raw)
    else:
        sheet = read_csv(decode_text(raw))
    logger.debug("read %s: %d rows, headers=%s", filename, len(sheet.rows), sheet.headers)
    return sheet
