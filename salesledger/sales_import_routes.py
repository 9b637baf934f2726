from flask import Blueprint, request, jsonify
import hashlib
import logging
from decimal import Decimal

from . import config
from .errors import SalesLedgerError, ValidationError
from .posting_engine import ACTIONS, ANALYZE, post_batch
from .sales_import import analyze_batch, build_batch
from .utils.auth_decorator import branch_scope, is_unrestricted, token_required
from .utils.ledger_store import get_ledger_store
from .utils.numbers import as_float
from .utils.upload_reader import read_upload

logger = logging.getLogger(__name__)

sales_import_bp = Blueprint('sales_import', __name__, url_prefix='/api')

MAX_HISTORY_LIMIT = 200


def read_import_payload():
    """Return (raw bytes, filename, options) from multipart or JSON bodies."""
    if 'file' in request.files:
        file = request.files.get('file')
        form = request.form or {}
        options = {
            'action': form.get('action'),
            'branchId': form.get('branchId') or form.get('branch_id'),
            'channel': form.get('channel'),
        }
        return file.read(), file.filename, options

    payload = request.get_json(silent=True) or {}
    csv_text = payload.get('csv')
    options = {
        'action': payload.get('action'),
        'branchId': payload.get('branchId') or payload.get('branch_id'),
        'channel': payload.get('channel'),
    }
    if not csv_text:
        return None, None, options
    return csv_text.encode('utf-8'), payload.get('filename', 'upload.csv'), options


def parse_branch_id(value):
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'branchId must be an integer, got {value!r}')


def posting_branch(user, requested):
    if is_unrestricted(user):
        return requested if requested is not None else user.get('branch_id')
    own = user.get('branch_id')
    if requested is not None and requested != own:
        return None
    return own


def _serialize(row):
    out = {}
    for k, v in row.items():
        if hasattr(v, 'isoformat'):
            out[k] = v.isoformat()
        elif isinstance(v, Decimal):
            out[k] = as_float(v)
        else:
            out[k] = v
    return out


@sales_import_bp.route('/sales-import', methods=['POST'])
@token_required
def sales_import():
    raw, filename, options = read_import_payload()
    if not raw:
        return jsonify({'error': 'No file uploaded'}), 400
    if len(raw) > config.MAX_UPLOAD_BYTES:
        return jsonify({'error': 'Uploaded file is too large'}), 413

    action = str(options.get('action') or ANALYZE).strip().upper()
    if action not in ACTIONS:
        return jsonify({'error': f'Unknown action: {action}', 'allowed': list(ACTIONS)}), 400

    store = get_ledger_store()
    try:
        sheet = read_upload(filename, raw)
        normalized, figures = build_batch(store, sheet, options.get('channel'))
        if action == ANALYZE:
            return jsonify(analyze_batch(store, normalized, figures))

        branch_id = posting_branch(request.user, parse_branch_id(options.get('branchId')))
        if branch_id is None and not is_unrestricted(request.user):
            return jsonify({'error': 'You may only post sales for your own branch'}), 403

        result = post_batch(
            store,
            figures,
            action,
            branch_id,
            filename,
            file_sha256=hashlib.sha256(raw).hexdigest(),
            created_by=request.user.get('employee_id'),
        )
        response = result.to_dict()
        response.update({
            'channel': figures.channel,
            'receiptCount': figures.receipt_count,
            'zeroCostCount': figures.gaps.total,
            'failedRows': figures.failed_rows,
        })
        return jsonify(response)
    except SalesLedgerError as e:
        logger.warning("sales import %s failed: %s", action, e.message)
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        logger.exception("sales import %s crashed", action)
        return jsonify({'error': str(e)}), 500


@sales_import_bp.route('/sales-import/history', methods=['GET'])
@token_required
def list_history():
    try:
        limit = min(int(request.args.get('limit', 50)), MAX_HISTORY_LIMIT)
    except ValueError:
        return jsonify({'error': 'limit must be an integer'}), 400

    scope = branch_scope(request.user)
    if scope is not None and not scope:
        return jsonify({'reports': []})
    branch_id = scope[0] if scope else None
    rows = get_ledger_store().list_sales_reports(branch_id=branch_id, limit=max(limit, 1))
    return jsonify({'reports': [_serialize(r) for r in rows]})


@sales_import_bp.route('/sales-import/history/<int:report_id>', methods=['GET'])
@token_required
def get_history(report_id):
    store = get_ledger_store()
    report = store.get_sales_report(report_id)
    scope = branch_scope(request.user)
    if not report or (scope is not None and report.get('branch_id') not in scope):
        return jsonify({'error': 'Report not found'}), 404
    items = store.fetch_item_logs(report_id)
    return jsonify({'report': _serialize(report), 'items': [_serialize(i) for i in items]})
