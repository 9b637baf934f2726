"""All SQL used by the import, posting, P&L and settings paths.

Read methods open their own autocommit cursor. Write methods take the
cursor yielded by ``transaction()`` as their first argument so that a
whole posting batch commits or rolls back together.
"""
import logging
from contextlib import contextmanager

from psycopg2 import errors as pg_errors
from psycopg2.extras import execute_values

from ..errors import ConcurrentPostingError
from .db import close_cursor, get_db_cursor, serializable_cursor

logger = logging.getLogger(__name__)

REPORT_COLUMNS = """
    id, file_name, file_sha256, branch_id, channel, action, report_date,
    total_collected, total_net_revenue, total_tax, total_tips, total_fees,
    total_cogs, receipt_count, zero_cost_count, posted_count, status,
    created_by, created_at
"""


class LedgerStore:

    def _fetchall(self, sql, params=(), cursor=None):
        if cursor is not None:
            cursor.execute(sql, params)
            return cursor.fetchall() or []
        cursor = get_db_cursor()
        try:
            cursor.execute(sql, params)
            return cursor.fetchall() or []
        finally:
            close_cursor(cursor)

    def _fetchone(self, sql, params=()):
        rows = self._fetchall(sql, params)
        return rows[0] if rows else None

    @contextmanager
    def transaction(self):
        """SERIALIZABLE unit of work; losing a race surfaces as ConcurrentPostingError."""
        try:
            with serializable_cursor() as cursor:
                yield cursor
        except (pg_errors.UniqueViolation, pg_errors.SerializationFailure) as e:
            logger.warning("posting transaction rolled back: %s", e)
            raise ConcurrentPostingError(
                'Another import posted some of these receipts at the same time; nothing was written. Re-run the import.'
            ) from e

    # --- reference data -------------------------------------------------

    def fetch_accounts(self, codes):
        return self._fetchall(
            "SELECT id, code, name, type FROM accounts WHERE code = ANY(%s)",
            (list(codes),)
        )

    def fetch_branch(self, branch_id):
        return self._fetchone("SELECT id, name, type FROM branches WHERE id = %s", (branch_id,))

    def fetch_payment_methods(self):
        return self._fetchall("SELECT id, name, fee_rate FROM payment_methods ORDER BY name")

    def seed_payment_methods(self, rates):
        cursor = get_db_cursor()
        try:
            execute_values(
                cursor,
                """
                INSERT INTO payment_methods (name, fee_rate) VALUES %s
                ON CONFLICT (lower(name)) DO NOTHING
                """,
                [(name, rate) for name, rate in rates.items()]
            )
        finally:
            close_cursor(cursor)

    def upsert_payment_method(self, name, fee_rate):
        cursor = get_db_cursor()
        try:
            cursor.execute(
                """
                INSERT INTO payment_methods (name, fee_rate) VALUES (%s, %s)
                ON CONFLICT (lower(name)) DO UPDATE SET fee_rate = EXCLUDED.fee_rate, updated_at = now()
                RETURNING id, name, fee_rate
                """,
                (name, fee_rate)
            )
            return cursor.fetchone()
        finally:
            close_cursor(cursor)

    def fetch_product_mappings(self, keys):
        return self._fetchall(
            """
            SELECT pm.pos_string, pm.product_id, pm.recipe_id, pm.quantity,
                   p.cost AS product_cost
            FROM product_mappings pm
            LEFT JOIN products p ON p.id = pm.product_id
            WHERE lower(regexp_replace(trim(pm.pos_string), '\\s+', ' ', 'g')) = ANY(%s)
            """,
            (list(keys),)
        )

    def fetch_recipe_ingredients(self, recipe_ids):
        return self._fetchall(
            """
            SELECT ri.recipe_id, ri.quantity, p.cost AS product_cost
            FROM recipe_ingredients ri
            JOIN products p ON p.id = ri.product_id
            WHERE ri.recipe_id = ANY(%s)
            """,
            (list(recipe_ids),)
        )

    # --- ledger ---------------------------------------------------------

    def fetch_entries_for_references(self, references, cursor=None):
        return self._fetchall(
            """
            SELECT je.id AS entry_id, je.reference, a.code AS account_code, a.type AS account_type
            FROM journal_entries je
            JOIN journal_lines jl ON jl.entry_id = je.id
            JOIN accounts a ON a.id = jl.account_id
            WHERE je.reference = ANY(%s)
            """,
            (list(references),),
            cursor=cursor
        )

    def insert_sales_report(self, cursor, report):
        cursor.execute(
            """
            INSERT INTO sales_reports (
                file_name, file_sha256, branch_id, channel, action, report_date,
                total_collected, total_net_revenue, total_tax, total_tips, total_fees,
                total_cogs, receipt_count, zero_cost_count, posted_count, status, created_by
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, 0, 'PENDING', %s)
            RETURNING id
            """,
            (
                report['file_name'], report.get('file_sha256'), report['branch_id'],
                report['channel'], report['action'], report['report_date'],
                report['total_collected'], report['total_net_revenue'], report['total_tax'],
                report['total_tips'], report['total_fees'], report['total_cogs'],
                report['receipt_count'], report['zero_cost_count'], report.get('created_by')
            )
        )
        return cursor.fetchone()['id']

    def insert_journal_entry(self, cursor, entry, lines):
        cursor.execute(
            """
            INSERT INTO journal_entries (entry_date, description, reference, branch_id, source)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING id
            """,
            (entry['entry_date'], entry['description'], entry['reference'], entry['branch_id'], entry['source'])
        )
        entry_id = cursor.fetchone()['id']
        execute_values(
            cursor,
            "INSERT INTO journal_lines (entry_id, account_id, debit, credit, description) VALUES %s",
            [(entry_id, l['account_id'], l['debit'], l['credit'], l['description']) for l in lines]
        )
        return entry_id

    def claim_posting_legs(self, cursor, claims):
        """Insert (reference, leg) claims; a clash raises UniqueViolation."""
        execute_values(
            cursor,
            "INSERT INTO sales_posting_legs (reference, leg, entry_id, report_id) VALUES %s",
            [(c['reference'], c['leg'], c['entry_id'], c['report_id']) for c in claims]
        )

    def insert_item_logs(self, cursor, logs):
        if not logs:
            return
        execute_values(
            cursor,
            """
            INSERT INTO sales_item_logs (
                report_id, reference, pos_string, parent_pos_string, is_modifier,
                quantity, unit_cost, cost_status, channel, import_date, branch_id
            ) VALUES %s
            """,
            [
                (l['report_id'], l['reference'], l['pos_string'], l['parent_pos_string'],
                 l['is_modifier'], l['quantity'], l['unit_cost'], l['cost_status'],
                 l['channel'], l['import_date'], l['branch_id'])
                for l in logs
            ]
        )

    def finalize_sales_report(self, cursor, report_id, status, posted_count):
        cursor.execute(
            "UPDATE sales_reports SET status = %s, posted_count = %s WHERE id = %s",
            (status, posted_count, report_id)
        )

    def fetch_ledger_totals(self, start_date=None, end_date=None, branch_ids=None):
        """Debit/credit sums for revenue and expense accounts, split by branch type."""
        where = ["a.type IN ('REVENUE', 'EXPENSE')"]
        params = []
        if start_date:
            where.append("je.entry_date >= %s")
            params.append(start_date)
        if end_date:
            where.append("je.entry_date <= %s")
            params.append(end_date)
        if branch_ids is not None:
            where.append("je.branch_id = ANY(%s)")
            params.append(list(branch_ids))
        return self._fetchall(
            f"""
            SELECT a.code AS account_code, a.name AS account_name, a.type AS account_type,
                   je.branch_id IS NOT NULL AS has_branch, b.type AS branch_type,
                   COALESCE(SUM(jl.debit), 0) AS debit, COALESCE(SUM(jl.credit), 0) AS credit
            FROM journal_lines jl
            JOIN journal_entries je ON je.id = jl.entry_id
            JOIN accounts a ON a.id = jl.account_id
            LEFT JOIN branches b ON b.id = je.branch_id
            WHERE {' AND '.join(where)}
            GROUP BY a.code, a.name, a.type, je.branch_id IS NOT NULL, b.type
            ORDER BY a.code
            """,
            tuple(params)
        )

    # --- history --------------------------------------------------------

    def list_sales_reports(self, branch_id=None, limit=50):
        if branch_id is not None:
            return self._fetchall(
                f"SELECT {REPORT_COLUMNS} FROM sales_reports WHERE branch_id = %s ORDER BY created_at DESC, id DESC LIMIT %s",
                (branch_id, limit)
            )
        return self._fetchall(
            f"SELECT {REPORT_COLUMNS} FROM sales_reports ORDER BY created_at DESC, id DESC LIMIT %s",
            (limit,)
        )

    def get_sales_report(self, report_id):
        return self._fetchone(f"SELECT {REPORT_COLUMNS} FROM sales_reports WHERE id = %s", (report_id,))

    def fetch_item_logs(self, report_id):
        return self._fetchall(
            """
            SELECT id, reference, pos_string, parent_pos_string, is_modifier, quantity,
                   unit_cost, cost_status, channel, import_date, branch_id
            FROM sales_item_logs
            WHERE report_id = %s
            ORDER BY id
            """,
            (report_id,)
        )


_store = LedgerStore()


def get_ledger_store():
    return _store
