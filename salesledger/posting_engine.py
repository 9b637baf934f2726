"""Turn a computed batch into balanced journal entries.

Staging (account lookup, line building, balance checks) happens before any
transaction is opened. The audit read and every write then run inside one
SERIALIZABLE transaction, with ``sales_posting_legs`` guaranteeing that a
receipt's revenue and COGS legs are each posted at most once.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import date

from . import config
from .errors import ConfigurationError, ValidationError
from .ledger_audit import NEW, PARTIAL, audit_references
from .utils.numbers import ZERO, money, subunit

logger = logging.getLogger(__name__)

ANALYZE = 'ANALYZE'
POST_ALL = 'POST_ALL'
POST_REVENUE_ONLY = 'POST_REVENUE_ONLY'
POST_MISSING_COGS = 'POST_MISSING_COGS'
POSTING_MODES = (POST_ALL, POST_REVENUE_ONLY, POST_MISSING_COGS)
ACTIONS = (ANALYZE,) + POSTING_MODES

LEG_REVENUE = 'REVENUE'
LEG_COGS = 'COGS'

REPORT_PENDING = 'PENDING'
REPORT_SUCCESS = 'SUCCESS'
REPORT_DUPLICATE_SKIPPED = 'DUPLICATE_SKIPPED'

ENTRY_SOURCE = 'SALES_IMPORT'

# which legs each mode posts, keyed by the receipt's audit classification
MODE_LEGS = {
    POST_ALL: {NEW: (LEG_REVENUE, LEG_COGS)},
    POST_REVENUE_ONLY: {NEW: (LEG_REVENUE,)},
    POST_MISSING_COGS: {PARTIAL: (LEG_COGS,)},
}


@dataclass
class PostingResult:
    posted_count: int
    status: str
    report_id: int = None
    audit_status: str = None
    audit_counts: dict = field(default_factory=dict)
    skipped_count: int = 0

    @property
    def message(self):
        if self.posted_count:
            return f"Posted {self.posted_count} receipts ({self.skipped_count} skipped)"
        return 'Nothing to post: every receipt is already in the ledger or not eligible for this mode'

    def to_dict(self):
        return {
            'success': True,
            'message': self.message,
            'postedCount': self.posted_count,
            'status': self.status,
            'reportId': self.report_id,
            'auditStatus': self.audit_status,
            'auditCounts': self.audit_counts,
            'skippedCount': self.skipped_count,
        }


def require_accounts(store, account_codes=None):
    """Map account role -> account row, or raise ConfigurationError."""
    account_codes = account_codes or config.SALES_ACCOUNT_CODES
    rows = store.fetch_accounts(sorted(set(account_codes.values())))
    by_code = {str(r['code']): r for r in rows}
    missing = [code for role, code in account_codes.items() if str(code) not in by_code]
    if missing:
        logger.error("sales posting accounts missing from chart of accounts: %s", missing)
        raise ConfigurationError('Required ledger accounts are missing', missing_accounts=sorted(missing))
    return {role: by_code[str(code)] for role, code in account_codes.items()}


def merge_receipts(receipts):
    """Fold rows sharing a reference into one receipt, in first-seen order."""
    merged = {}
    for r in receipts:
        prev = merged.get(r.reference)
        if prev is None:
            merged[r.reference] = replace(r, cost_lines=list(r.cost_lines))
            continue
        merged[r.reference] = replace(
            prev,
            row_total=prev.row_total + r.row_total,
            net_revenue=prev.net_revenue + r.net_revenue,
            tax=prev.tax + r.tax,
            tips=prev.tips + r.tips,
            fees=prev.fees + r.fees,
            cogs=prev.cogs + r.cogs,
            occurred_at=prev.occurred_at or r.occurred_at,
            cost_lines=prev.cost_lines + list(r.cost_lines),
        )
    return list(merged.values())


def _line(account, amount, side, description):
    """One journal line; negative amounts flip side, zero yields None."""
    amount = money(amount)
    if amount == 0:
        return None
    if amount < 0:
        side = 'credit' if side == 'debit' else 'debit'
        amount = -amount
    return {
        'account_id': account['id'],
        'account_code': str(account['code']),
        'debit': amount if side == 'debit' else money(ZERO),
        'credit': amount if side == 'credit' else money(ZERO),
        'description': description,
    }


def revenue_leg_lines(receipt, accounts):
    ref = receipt.reference
    lines = [
        _line(accounts['revenue'], receipt.net_revenue, 'credit', f'Sales {ref}'),
        _line(accounts['vat'], receipt.tax, 'credit', f'VAT {ref}'),
        _line(accounts['tips'], receipt.tips, 'credit', f'Tips {ref}'),
        _line(accounts['merchant_fees'], receipt.fees, 'debit', f'Merchant fees {ref}'),
        _line(accounts['cash_clearing'], receipt.cash_clearing, 'debit', f'Cash clearing {ref}'),
    ]
    return [l for l in lines if l]


def cogs_leg_lines(receipt, accounts):
    if receipt.cogs <= 0:
        return []
    ref = receipt.reference
    return [
        _line(accounts['cogs'], receipt.cogs, 'debit', f'COGS {ref}'),
        _line(accounts['inventory'], receipt.cogs, 'credit', f'Inventory relief {ref}'),
    ]


def check_balanced(reference, lines):
    debit = sum((l['debit'] for l in lines), ZERO)
    credit = sum((l['credit'] for l in lines), ZERO)
    if abs(debit - credit) >= subunit():
        raise ValidationError(
            f'Entry for {reference} does not balance',
            reference=reference, debit=float(debit), credit=float(credit)
        )
    for l in lines:
        if (l['debit'] > 0) == (l['credit'] > 0):
            raise ValidationError(f'Entry for {reference} has a line with both or neither side set', reference=reference)


def stage_legs(receipts, accounts):
    """Build and balance-check both legs for every receipt, up front."""
    staged = {}
    for receipt in receipts:
        legs = {
            LEG_REVENUE: revenue_leg_lines(receipt, accounts),
            LEG_COGS: cogs_leg_lines(receipt, accounts),
        }
        for lines in legs.values():
            if lines:
                check_balanced(receipt.reference, lines)
        staged[receipt.reference] = legs
    return staged


def _item_logs(receipt, report_id, channel, branch_id, import_date):
    return [
        dict(line, report_id=report_id, reference=receipt.reference, channel=channel,
             branch_id=branch_id, import_date=import_date)
        for line in receipt.cost_lines
    ]


def post_batch(store, batch, mode, branch_id, file_name, file_sha256=None,
               import_date=None, created_by=None):
    """Post a computed BatchFigures in one of the three posting modes."""
    if mode not in POSTING_MODES:
        raise ValidationError(f'Unknown posting mode: {mode}')
    if branch_id in (None, ''):
        raise ValidationError('branchId is required to post')
    if not store.fetch_branch(branch_id):
        raise ValidationError(f'Branch {branch_id} does not exist')

    accounts = require_accounts(store)
    receipts = merge_receipts(batch.receipts)
    staged = stage_legs(receipts, accounts)
    import_date = import_date or date.today()
    totals = batch.totals

    logger.info("posting %s: %d receipts from %s (branch %s)", mode, len(receipts), file_name, branch_id)
    with store.transaction() as cursor:
        audit_status, classes, counts = audit_references(
            store, [r.reference for r in receipts], cursor=cursor
        )
        report_id = store.insert_sales_report(cursor, {
            'file_name': file_name,
            'file_sha256': file_sha256,
            'branch_id': branch_id,
            'channel': batch.channel,
            'action': mode,
            'report_date': import_date,
            'total_collected': totals['totalCollected'],
            'total_net_revenue': totals['totalNetRevenue'],
            'total_tax': totals['totalTaxLiability'],
            'total_tips': totals['totalTips'],
            'total_fees': totals['totalTransactionFees'],
            'total_cogs': totals['totalCOGS'],
            'receipt_count': len(receipts),
            'zero_cost_count': batch.gaps.total,
            'created_by': created_by,
        })

        posted = 0
        skipped = 0
        claims = []
        logs = []
        for receipt in receipts:
            classification = classes[receipt.reference]
            legs = [leg for leg in MODE_LEGS[mode].get(classification, ()) if staged[receipt.reference][leg]]
            if not legs:
                skipped += 1
                continue
            lines = [l for leg in legs for l in staged[receipt.reference][leg]]
            entry_id = store.insert_journal_entry(cursor, {
                'entry_date': receipt.occurred_at.date() if receipt.occurred_at else import_date,
                'description': f"{batch.channel} {'COGS' if legs == [LEG_COGS] else 'sale'} {receipt.reference}",
                'reference': receipt.reference,
                'branch_id': branch_id,
                'source': ENTRY_SOURCE,
            }, lines)
            claims.extend({'reference': receipt.reference, 'leg': leg, 'entry_id': entry_id, 'report_id': report_id}
                          for leg in legs)
            if classification == NEW:
                logs.extend(_item_logs(receipt, report_id, batch.channel, branch_id, import_date))
            posted += 1

        if claims:
            store.claim_posting_legs(cursor, claims)
        store.insert_item_logs(cursor, logs)
        status = REPORT_SUCCESS if posted else REPORT_DUPLICATE_SKIPPED
        store.finalize_sales_report(cursor, report_id, status, posted)

    logger.info("report %s %s: posted %d, skipped %d (audit %s)", report_id, status, posted, skipped, audit_status)
    return PostingResult(
        posted_count=posted,
        status=status,
        report_id=report_id,
        audit_status=audit_status,
        audit_counts=counts,
        skipped_count=skipped,
    )
