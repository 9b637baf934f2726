from flask import Blueprint, request, jsonify
import logging

from . import config
from .utils.auth_decorator import is_unrestricted, token_required
from .utils.ledger_store import get_ledger_store
from .utils.numbers import as_float, parse_numeric

logger = logging.getLogger(__name__)

fees_bp = Blueprint('fees', __name__, url_prefix='/api')


def _method_json(row):
    return {'id': row.get('id'), 'name': row.get('name'), 'feeRate': as_float(row.get('fee_rate'))}


@fees_bp.route('/settings/fees', methods=['GET'])
@token_required
def list_fees():
    store = get_ledger_store()
    rows = store.fetch_payment_methods()
    if not rows:
        logger.info("payment_methods empty, seeding %d defaults", len(config.DEFAULT_FEE_RATES))
        store.seed_payment_methods(config.DEFAULT_FEE_RATES)
        rows = store.fetch_payment_methods()
    return jsonify({'methods': [_method_json(r) for r in rows]})


@fees_bp.route('/settings/fees', methods=['POST'])
@token_required
def upsert_fee():
    if not is_unrestricted(request.user):
        return jsonify({'error': 'Not allowed to change fee settings'}), 403
    payload = request.get_json(silent=True) or {}
    name = str(payload.get('name') or '').strip()
    if not name:
        return jsonify({'error': 'name is required'}), 400
    rate = parse_numeric(payload.get('feeRate', payload.get('fee_rate')))
    if rate is None or rate < 0 or rate > 1:
        return jsonify({'error': 'feeRate must be a number between 0 and 1'}), 400

    row = get_ledger_store().upsert_payment_method(name, rate)
    return jsonify({'success': True, 'method': _method_json(row)})
