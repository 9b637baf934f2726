from flask import Blueprint, request, jsonify
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
import logging

from . import config
from .utils.auth_decorator import branch_scope, token_required
from .utils.ledger_store import get_ledger_store
from .utils.numbers import ZERO, money, parse_numeric

logger = logging.getLogger(__name__)

reports_bp = Blueprint('reports', __name__, url_prefix='/api')


def parse_date_arg(value, fallback=None):
    if not value:
        return fallback
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        return fallback


def parse_branch_ids(value):
    if not value:
        return None
    ids = []
    for part in str(value).split(','):
        part = part.strip()
        if part:
            ids.append(int(part))
    return ids or None


def margin_pct(profit, revenue):
    if revenue <= 0:
        return 0.0
    return float((profit / revenue * 100).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def is_operating_row(row, hq_types=None):
    hq_types = config.HQ_BRANCH_TYPES if hq_types is None else hq_types
    if not row.get('has_branch'):
        return False
    return str(row.get('branch_type') or '').upper() not in hq_types


def build_profit_and_loss(rows, start_date=None, end_date=None, hq_types=None):
    """Fold per-account debit/credit sums into the P&L response.

    Each account's total is credit minus debit, so revenue comes out positive
    and expenses negative; expenses are reported as a positive figure.
    """
    accounts = {}
    operating = {'REVENUE': ZERO, 'EXPENSE': ZERO}
    for r in rows:
        acct_type = str(r.get('account_type') or '').upper()
        if acct_type not in operating:
            continue
        amount = (parse_numeric(r.get('credit')) or ZERO) - (parse_numeric(r.get('debit')) or ZERO)
        key = str(r.get('account_code'))
        entry = accounts.setdefault(key, {
            'code': key,
            'name': r.get('account_name'),
            'type': acct_type,
            'total': ZERO,
        })
        entry['total'] += amount
        if is_operating_row(r, hq_types):
            operating[acct_type] += amount

    revenue_accounts = sorted((a for a in accounts.values() if a['type'] == 'REVENUE'), key=lambda a: a['code'])
    expense_accounts = sorted((a for a in accounts.values() if a['type'] == 'EXPENSE'), key=lambda a: a['code'])

    revenue = money(sum((a['total'] for a in revenue_accounts), ZERO))
    expenses = money(ZERO - sum((a['total'] for a in expense_accounts), ZERO))
    net_profit = revenue - expenses
    op_revenue = money(operating['REVENUE'])
    op_expenses = money(ZERO - operating['EXPENSE'])
    op_profit = op_revenue - op_expenses

    def account_json(a):
        return {'code': a['code'], 'name': a['name'], 'total': float(money(a['total']))}

    return {
        'period': {
            'start': start_date.isoformat() if start_date else None,
            'end': end_date.isoformat() if end_date else None,
        },
        'summary': {
            'revenue': float(revenue),
            'expenses': float(expenses),
            'netProfit': float(net_profit),
            'margin': margin_pct(net_profit, revenue),
            'operatingRevenue': float(op_revenue),
            'operatingExpenses': float(op_expenses),
            'operatingProfit': float(op_profit),
            'operatingMargin': margin_pct(op_profit, op_revenue),
        },
        'revenueAccounts': [account_json(a) for a in revenue_accounts],
        'expenseAccounts': [account_json(a) for a in expense_accounts],
    }


@reports_bp.route('/reports/pl', methods=['GET'])
@token_required
def profit_and_loss():
    start_date = parse_date_arg(request.args.get('startDate'))
    end_date = parse_date_arg(request.args.get('endDate'))
    if request.args.get('startDate') and not start_date:
        return jsonify({'error': 'startDate must be YYYY-MM-DD'}), 400
    if request.args.get('endDate') and not end_date:
        return jsonify({'error': 'endDate must be YYYY-MM-DD'}), 400
    try:
        requested = parse_branch_ids(request.args.get('branchIds'))
    except ValueError:
        return jsonify({'error': 'branchIds must be a comma separated list of integers'}), 400

    scope = branch_scope(request.user, requested)
    try:
        rows = get_ledger_store().fetch_ledger_totals(start_date, end_date, scope)
    except Exception as e:
        logger.exception("P&L query failed")
        return jsonify({'error': str(e)}), 500
    return jsonify(build_profit_and_loss(rows, start_date, end_date))
