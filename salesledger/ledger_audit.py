"""Classify a batch of receipt references against what the ledger already holds."""
import logging
from collections import defaultdict

from . import config

logger = logging.getLogger(__name__)

NEW = 'NEW'
PARTIAL = 'PARTIAL'
DUPLICATE = 'DUPLICATE'
UNKNOWN = 'UNKNOWN'
MIXED = 'MIXED'


def classify_reference(lines, cogs_code=None):
    """Classify one reference from every prior journal line carrying it.

    Lines from all entries are pooled, so a revenue-only entry followed by a
    separate COGS entry counts as fully posted.
    """
    if not lines:
        return NEW
    cogs_code = str(cogs_code or config.SALES_ACCOUNT_CODES['cogs'])
    has_revenue = any(str(l.get('account_type') or '').upper() == 'REVENUE' for l in lines)
    has_cogs = any(
        str(l.get('account_code')) == cogs_code and str(l.get('account_type') or '').upper() == 'EXPENSE'
        for l in lines
    )
    if has_revenue and has_cogs:
        return DUPLICATE
    if has_revenue:
        return PARTIAL
    return UNKNOWN


def classify_lines(references, line_rows, cogs_code=None):
    by_ref = defaultdict(list)
    for r in line_rows:
        by_ref[str(r.get('reference'))].append(r)
    return {ref: classify_reference(by_ref.get(ref), cogs_code) for ref in references}


def batch_status(classifications):
    values = list(classifications.values())
    if not values or all(v == NEW for v in values):
        return NEW
    if all(v == DUPLICATE for v in values):
        return DUPLICATE
    if all(v == PARTIAL for v in values):
        return PARTIAL
    return MIXED


def count_classes(classifications):
    counts = {NEW: 0, PARTIAL: 0, DUPLICATE: 0, UNKNOWN: 0}
    for v in classifications.values():
        counts[v] += 1
    return counts


def audit_references(store, references, cursor=None):
    """Return (status, per-reference classification, counts).

    Pass ``cursor`` to read inside an open posting transaction.
    """
    references = [str(r) for r in dict.fromkeys(references)]
    if not references:
        return NEW, {}, count_classes({})
    line_rows = store.fetch_entries_for_references(references, cursor=cursor)
    classifications = classify_lines(references, line_rows)
    status = batch_status(classifications)
    counts = count_classes(classifications)
    logger.debug("audit of %d references: %s %s", len(references), status, counts)
    return status, classifications, counts
