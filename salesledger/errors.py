"""Typed errors raised by the import/posting core.

Routes catch these and turn them into ``{'error': ...}`` JSON responses
with the attached HTTP status.
"""


class SalesLedgerError(Exception):
    status_code = 500
    code = 'sales_ledger_error'

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {'error': self.message, 'code': self.code}
        payload.update(self.details)
        return payload


class ParseError(SalesLedgerError):
    """Upload unreadable, or no row carries the minimum required columns."""
    status_code = 400
    code = 'parse_error'

    def __init__(self, message, headers=None):
        super().__init__(message, headers=list(headers or []))


class ValidationError(SalesLedgerError):
    """Request rejected before any transaction opens."""
    status_code = 400
    code = 'validation_error'


class ConfigurationError(SalesLedgerError):
    """Chart of accounts is missing entries the posting engine needs."""
    status_code = 500
    code = 'configuration_error'

    def __init__(self, message, missing_accounts=None):
        super().__init__(message, missingAccounts=list(missing_accounts or []))


class ConcurrentPostingError(SalesLedgerError):
    """Another import claimed the same receipts first; the batch was rolled back."""
    status_code = 409
    code = 'concurrent_posting'
