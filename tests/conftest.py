import copy
import itertools
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import jwt
import pytest

from salesledger import config
from salesledger.errors import ConcurrentPostingError

ACCOUNTS = [
    {'id': 1, 'code': '4001', 'name': 'Food Sales', 'type': 'REVENUE'},
    {'id': 2, 'code': '2100', 'name': 'VAT Payable', 'type': 'LIABILITY'},
    {'id': 3, 'code': '6100', 'name': 'Merchant Fees', 'type': 'EXPENSE'},
    {'id': 4, 'code': '5001', 'name': 'COGS', 'type': 'EXPENSE'},
    {'id': 5, 'code': '1100', 'name': 'Inventory Asset', 'type': 'ASSET'},
    {'id': 6, 'code': '1005', 'name': 'Cash Clearing', 'type': 'ASSET'},
    {'id': 7, 'code': '2101', 'name': 'Tips Payable', 'type': 'LIABILITY'},
    {'id': 8, 'code': '6200', 'name': 'Rent', 'type': 'EXPENSE'},
]

BRANCHES = {
    1: {'id': 1, 'name': 'Abdoun', 'type': 'OPERATING'},
    2: {'id': 2, 'name': 'Sweifieh', 'type': 'OPERATING'},
    99: {'id': 99, 'name': 'Head Office', 'type': 'HQ'},
}

# Burger 2.000, Cheese 0.250, Fries via recipe (0.5 x 0.800), Water mapped at zero cost
MAPPINGS = [
    {'pos_string': 'Burger', 'product_id': 10, 'recipe_id': None, 'quantity': Decimal('1'), 'product_cost': Decimal('2.000')},
    {'pos_string': 'cheese', 'product_id': 11, 'recipe_id': None, 'quantity': Decimal('1'), 'product_cost': Decimal('0.250')},
    {'pos_string': 'Fries', 'product_id': None, 'recipe_id': 1, 'quantity': Decimal('1'), 'product_cost': None},
    {'pos_string': 'Water', 'product_id': 12, 'recipe_id': None, 'quantity': Decimal('1'), 'product_cost': Decimal('0')},
]

INGREDIENTS = [
    {'recipe_id': 1, 'quantity': Decimal('0.5'), 'product_cost': Decimal('0.800')},
]

TABSENSE_CSV = (
    "Receipt,Created At,Items Breakdown,Gross Sales,Taxes,Total,Tips,Visa,Cash\n"
    'R-1001,2024-05-01 12:30:00,"2 Burger [1 Cheese], 1 Fries",10.000,1.600,11.600,0.500,12.100,0\n'
    "R-1002,2024-05-01 13:00:00,1 Water,1.000,0.160,1.160,0,0,1.160\n"
)

# every item costed, so a full post leaves nothing PARTIAL
TABSENSE_COSTED_CSV = (
    "Receipt,Created At,Items Breakdown,Gross Sales,Taxes,Total,Tips,Visa,Cash\n"
    'R-2001,2024-05-03 12:00:00,"1 Burger [1 Cheese]",5.000,0.800,5.800,0,5.800,0\n'
    "R-2002,2024-05-03 12:10:00,2 Fries,3.000,0.480,3.480,0,0,3.480\n"
)

TALABAT_CSV = (
    "Order ID,Order received at,Order Items,Subtotal,Tax\n"
    "T-1,2024-05-02 19:00:00,1x Burger (Cheese),5.000,0.800\n"
)


class FakeLedgerStore:
    """In-memory stand-in for LedgerStore with the same method surface.

    ``transaction()`` snapshots state and restores it on any exception, and
    the (reference, leg) claim set behaves like the primary key it mirrors.
    """

    def __init__(self):
        self.accounts = copy.deepcopy(ACCOUNTS)
        self.branches = copy.deepcopy(BRANCHES)
        self.payment_methods = []
        self.mappings = copy.deepcopy(MAPPINGS)
        self.ingredients = copy.deepcopy(INGREDIENTS)
        self.entries = []
        self.lines = []
        self.legs = {}
        self.reports = {}
        self.item_logs = []
        self.before_claim = None
        self._ids = itertools.count(1)

    # state that a rollback must restore
    def _snapshot(self):
        return copy.deepcopy((self.entries, self.lines, self.legs, self.reports, self.item_logs))

    @contextmanager
    def transaction(self):
        saved = self._snapshot()
        try:
            yield object()
        except Exception:
            self.entries, self.lines, self.legs, self.reports, self.item_logs = saved
            raise

    def fetch_accounts(self, codes):
        return [a for a in self.accounts if a['code'] in set(codes)]

    def fetch_branch(self, branch_id):
        return self.branches.get(branch_id)

    def fetch_payment_methods(self):
        return sorted(self.payment_methods, key=lambda m: m['name'])

    def seed_payment_methods(self, rates):
        for name, rate in rates.items():
            if not any(m['name'].lower() == name.lower() for m in self.payment_methods):
                self.payment_methods.append({'id': next(self._ids), 'name': name, 'fee_rate': Decimal(rate)})

    def upsert_payment_method(self, name, fee_rate):
        for m in self.payment_methods:
            if m['name'].lower() == name.lower():
                m['fee_rate'] = fee_rate
                return dict(m)
        row = {'id': next(self._ids), 'name': name, 'fee_rate': fee_rate}
        self.payment_methods.append(row)
        return dict(row)

    def fetch_product_mappings(self, keys):
        keys = set(keys)
        return [m for m in self.mappings if ' '.join(m['pos_string'].split()).lower() in keys]

    def fetch_recipe_ingredients(self, recipe_ids):
        return [i for i in self.ingredients if i['recipe_id'] in set(recipe_ids)]

    def _account(self, account_id):
        return next(a for a in self.accounts if a['id'] == account_id)

    def fetch_entries_for_references(self, references, cursor=None):
        refs = set(references)
        out = []
        for e in self.entries:
            if e['reference'] not in refs:
                continue
            for l in self.lines:
                if l['entry_id'] == e['id']:
                    acct = self._account(l['account_id'])
                    out.append({'entry_id': e['id'], 'reference': e['reference'],
                                'account_code': acct['code'], 'account_type': acct['type']})
        return out

    def insert_sales_report(self, cursor, report):
        report_id = next(self._ids)
        self.reports[report_id] = dict(report, id=report_id, status='PENDING', posted_count=0,
                                       created_at=datetime(2024, 5, 4, 9, 0))
        return report_id

    def insert_journal_entry(self, cursor, entry, lines):
        entry_id = next(self._ids)
        self.entries.append(dict(entry, id=entry_id))
        for l in lines:
            self.lines.append({'entry_id': entry_id, 'account_id': l['account_id'],
                               'debit': l['debit'], 'credit': l['credit'], 'description': l['description']})
        return entry_id

    def claim_posting_legs(self, cursor, claims):
        if self.before_claim:
            self.before_claim(self)
        for c in claims:
            key = (c['reference'], c['leg'])
            if key in self.legs:
                raise ConcurrentPostingError('leg already claimed')
            self.legs[key] = dict(c)

    def insert_item_logs(self, cursor, logs):
        for l in logs:
            self.item_logs.append(dict(l, id=next(self._ids)))

    def finalize_sales_report(self, cursor, report_id, status, posted_count):
        self.reports[report_id].update(status=status, posted_count=posted_count)

    def fetch_ledger_totals(self, start_date=None, end_date=None, branch_ids=None):
        groups = {}
        for e in self.entries:
            if start_date and e['entry_date'] < start_date:
                continue
            if end_date and e['entry_date'] > end_date:
                continue
            if branch_ids is not None and e['branch_id'] not in branch_ids:
                continue
            branch = self.branches.get(e['branch_id'])
            for l in self.lines:
                if l['entry_id'] != e['id']:
                    continue
                acct = self._account(l['account_id'])
                if acct['type'] not in ('REVENUE', 'EXPENSE'):
                    continue
                key = (acct['code'], e['branch_id'] is not None, branch['type'] if branch else None)
                g = groups.setdefault(key, {
                    'account_code': acct['code'], 'account_name': acct['name'], 'account_type': acct['type'],
                    'has_branch': key[1], 'branch_type': key[2],
                    'debit': Decimal('0'), 'credit': Decimal('0'),
                })
                g['debit'] += l['debit']
                g['credit'] += l['credit']
        return sorted(groups.values(), key=lambda g: g['account_code'])

    def list_sales_reports(self, branch_id=None, limit=50):
        rows = [r for r in self.reports.values() if branch_id is None or r['branch_id'] == branch_id]
        return sorted(rows, key=lambda r: r['id'], reverse=True)[:limit]

    def get_sales_report(self, report_id):
        return self.reports.get(report_id)

    def fetch_item_logs(self, report_id):
        return [l for l in self.item_logs if l['report_id'] == report_id]

    # test helpers
    def add_entry(self, reference, lines, branch_id=1, entry_date=None):
        entry_id = next(self._ids)
        self.entries.append({'id': entry_id, 'reference': reference, 'branch_id': branch_id,
                             'entry_date': entry_date or datetime(2024, 5, 1).date(),
                             'description': 'manual', 'source': 'MANUAL'})
        by_code = {a['code']: a for a in self.accounts}
        for code, debit, credit in lines:
            self.lines.append({'entry_id': entry_id, 'account_id': by_code[code]['id'],
                               'debit': Decimal(debit), 'credit': Decimal(credit), 'description': None})
        return entry_id

    def entry_lines(self, entry_id):
        return [l for l in self.lines if l['entry_id'] == entry_id]


@pytest.fixture
def store():
    return FakeLedgerStore()


def make_token(role='admin', branch_id=1, employee_id=7, expires_in=3600):
    payload = {
        'employee_id': employee_id,
        'role': role,
        'branch_id': branch_id,
        'exp': datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm='HS256')


def auth_header(**kwargs):
    return {'Authorization': f'Bearer {make_token(**kwargs)}'}


@pytest.fixture
def client(store, monkeypatch):
    from salesledger import fees_routes, reports_routes, sales_import_routes
    from salesledger.main import app

    for module in (sales_import_routes, reports_routes, fees_routes):
        monkeypatch.setattr(module, 'get_ledger_store', lambda: store)
    app.config['TESTING'] = True
    with app.test_client() as c:
        yield c
