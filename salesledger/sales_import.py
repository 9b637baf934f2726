"""Upload -> normalized rows -> costed waterfall, shared by ANALYZE and posting."""
import logging

from .ledger_audit import audit_references
from .sales_rows import normalize_rows
from .utils.cost_resolver import load_cost_table
from .waterfall import FeeSchedule, collect_names, compute_batch, totals_as_json

logger = logging.getLogger(__name__)


def load_fee_schedule(store):
    return FeeSchedule.from_rows(store.fetch_payment_methods())


def build_batch(store, sheet, channel=None):
    """Return (NormalizedBatch, BatchFigures) for an uploaded sheet."""
    fee_schedule = load_fee_schedule(store)
    normalized = normalize_rows(sheet, channel, payment_methods=fee_schedule.methods)
    cost_table = load_cost_table(store, collect_names(normalized.rows))
    figures = compute_batch(normalized, cost_table, fee_schedule)
    return normalized, figures


def analyze_batch(store, normalized, figures):
    status, _, counts = audit_references(store, figures.references)
    return {
        'success': True,
        'status': status,
        'channel': figures.channel,
        'flashReport': figures.flash_report(),
        'totals': totals_as_json(figures.totals),
        'receiptCount': figures.receipt_count,
        'zeroCostCount': figures.gaps.total,
        'unmappedCount': figures.gaps.unmapped_count,
        'zeroCostMappedCount': figures.gaps.zero_cost_count,
        'auditCounts': counts,
        'failedRows': figures.failed_rows,
        'debug': {
            'sampleHeaders': normalized.headers,
            'sampleFirstRow': normalized.sample_first_row,
            'zeroCostCulprits': figures.gaps.culprits,
        },
    }
