"""Per-receipt and batch financial waterfall (the "Flash P&L").

Pure computation over SalesRows, a cost table and a fee schedule. Nothing
here touches the database, so ANALYZE can run it as often as it likes.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from . import config
from .utils.cost_resolver import CostGapTally, STATUS_UNMAPPED
from .utils.numbers import ZERO, money, parse_numeric

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeeSchedule:
    """Fee rate per payment method, resolved once per batch."""
    rates: tuple = ()

    @classmethod
    def from_rows(cls, rows, defaults=None):
        merged = {k.lower(): Decimal(v) for k, v in (config.DEFAULT_FEE_RATES if defaults is None else defaults).items()}
        for r in rows or []:
            name = str(r.get('name') or '').strip().lower()
            rate = parse_numeric(r.get('fee_rate'))
            if name and rate is not None:
                merged[name] = rate
        return cls(tuple(sorted(merged.items())))

    @property
    def methods(self):
        return [name for name, _ in self.rates]

    def rate_for(self, method):
        key = str(method or '').lower()
        for name, rate in self.rates:
            if name == key:
                return rate
        return ZERO

    def fees_for(self, payments):
        return sum((amount * self.rate_for(method) for method, amount in payments.items()), ZERO)


@dataclass
class ReceiptFigures:
    row_number: int
    reference: str
    occurred_at: Optional[datetime]
    row_total: Decimal
    net_revenue: Decimal
    tax: Decimal
    tips: Decimal
    fees: Decimal
    cogs: Decimal
    cost_lines: list = field(default_factory=list)

    @property
    def cash_clearing(self):
        return self.net_revenue + self.tax + self.tips - self.fees


@dataclass
class BatchFigures:
    channel: str
    receipts: list
    totals: dict
    gaps: CostGapTally
    failed_rows: list = field(default_factory=list)

    @property
    def references(self):
        seen = []
        for r in self.receipts:
            if r.reference not in seen:
                seen.append(r.reference)
        return seen

    @property
    def receipt_count(self):
        return len(self.references)

    def flash_report(self):
        return build_flash_report(self.totals)


def collect_names(rows):
    names = set()
    for row in rows:
        for item in row.items:
            names.add(item.name)
            for mod in item.modifiers:
                names.add(mod.name)
    return names


def row_total_for(row):
    """Explicit total, else gross + tax, else zero."""
    if row.total is not None:
        return money(row.total)
    if row.gross_sales is not None:
        return money(row.gross_sales + (row.tax or ZERO))
    return money(ZERO)


def _cost_line(name, parent, quantity, resolution):
    return {
        'pos_string': name,
        'parent_pos_string': parent,
        'is_modifier': parent is not None,
        'quantity': quantity,
        'unit_cost': resolution.get('unit_cost', ZERO),
        'cost_status': resolution.get('status', STATUS_UNMAPPED),
    }


def compute_row(row, cost_table, fee_schedule, gaps):
    row_total = row_total_for(row)
    tax = money(row.tax)
    tips = money(row.tips)
    fees = money(fee_schedule.fees_for(row.payments))

    cogs = ZERO
    cost_lines = []
    unmapped = {'status': STATUS_UNMAPPED, 'unit_cost': ZERO}
    for item in row.items:
        resolution = cost_table.get(item.name, unmapped)
        gaps.record(item.name, resolution)
        cogs += resolution.get('unit_cost', ZERO) * item.qty
        cost_lines.append(_cost_line(item.name, None, item.qty, resolution))
        for mod in item.modifiers:
            sale_qty = item.qty * mod.qty
            mod_resolution = cost_table.get(mod.name, unmapped)
            gaps.record(mod.name, mod_resolution)
            cogs += mod_resolution.get('unit_cost', ZERO) * sale_qty
            cost_lines.append(_cost_line(mod.name, item.name, sale_qty, mod_resolution))

    return ReceiptFigures(
        row_number=row.row_number,
        reference=row.reference,
        occurred_at=row.occurred_at,
        row_total=row_total,
        net_revenue=row_total - tax,
        tax=tax,
        tips=tips,
        fees=fees,
        cogs=money(cogs),
        cost_lines=cost_lines,
    )


def aggregate(receipts):
    totals = {
        'totalCollected': money(ZERO),
        'totalNetRevenue': money(ZERO),
        'totalTaxLiability': money(ZERO),
        'totalTips': money(ZERO),
        'totalTransactionFees': money(ZERO),
        'totalCOGS': money(ZERO),
    }
    for r in receipts:
        totals['totalCollected'] += r.row_total + r.tips
        totals['totalNetRevenue'] += r.net_revenue
        totals['totalTaxLiability'] += r.tax
        totals['totalTips'] += r.tips
        totals['totalTransactionFees'] += r.fees
        totals['totalCOGS'] += r.cogs
    totals['netOperatingProfit'] = (
        totals['totalNetRevenue'] - totals['totalTransactionFees'] - totals['totalCOGS']
    )
    return totals


def compute_batch(normalized, cost_table, fee_schedule, sample_limit=None):
    gaps = CostGapTally(sample_limit)
    receipts = []
    failed = list(normalized.failed_rows)
    for row in normalized.rows:
        try:
            receipts.append(compute_row(row, cost_table, fee_schedule, gaps))
        except (ValueError, TypeError, ArithmeticError) as e:
            logger.warning("row %d skipped in waterfall: %s", row.row_number, e)
            failed.append({'row': row.row_number, 'error': str(e)})
    totals = aggregate(receipts)
    if gaps.total:
        logger.info("%d item instances without cost (%d unmapped, %d zero cost)",
                    gaps.total, gaps.unmapped_count, gaps.zero_cost_count)
    return BatchFigures(normalized.channel, receipts, totals, gaps, failed)


def build_flash_report(totals):
    def row(metric, key, logic, negative=False, subtotal=False):
        return {
            'metric': metric,
            'amount': float(totals[key]),
            'logic': logic,
            'isNegative': negative,
            'isSubtotal': subtotal,
        }

    return [
        row('Total Collected', 'totalCollected', 'Sum of receipt totals plus tips'),
        row('Tips Payable', 'totalTips', 'Tips owed to staff', negative=True),
        row('VAT / Tax Liability', 'totalTaxLiability', 'Tax collected on behalf of the authority', negative=True),
        row('Net Revenue', 'totalNetRevenue', 'Receipt totals less tax', subtotal=True),
        row('Transaction Fees', 'totalTransactionFees', 'Payment amount x method fee rate', negative=True),
        row('Cost of Goods Sold', 'totalCOGS', 'Resolved unit cost x quantity sold', negative=True),
        row('Net Operating Profit', 'netOperatingProfit', 'Net revenue less fees and COGS', subtotal=True),
    ]


def totals_as_json(totals):
    return {k: float(v) for k, v in totals.items()}
