import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


def _env_list(name, default):
    raw = os.getenv(name)
    if not raw:
        return default
    return [v.strip() for v in raw.split(',') if v.strip()]


# Database (see utils/db.py); DATABASE_URL wins over the individual settings
DATABASE_URL = os.getenv("DATABASE_URL")
DB_NAME = os.getenv("DB_NAME")
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_HOST = os.getenv("DB_HOST")
DB_PORT = os.getenv("DB_PORT", "5432")

# Auth / HTTP
JWT_SECRET = os.getenv('JWT_SECRET', 'dev-only-secret-change-me-before-deploying')
CORS_ORIGINS = _env_list('CORS_ORIGINS', ['http://localhost:3000'])
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
MAX_UPLOAD_BYTES = int(os.getenv('MAX_UPLOAD_BYTES', str(10 * 1024 * 1024)))

# Roles that may see every branch; all other roles are pinned to their own branch
UNRESTRICTED_ROLES = {r.lower() for r in _env_list('UNRESTRICTED_ROLES', ['admin', 'owner', 'accountant'])}
HQ_BRANCH_TYPES = {t.upper() for t in _env_list('HQ_BRANCH_TYPES', ['HQ', 'HEAD_OFFICE'])}

# Money: single currency, amounts quantized to the smallest subunit (3 places = fils)
CURRENCY_DECIMALS = int(os.getenv('CURRENCY_DECIMALS', '3'))

# Diagnostics
ZERO_COST_SAMPLE_LIMIT = int(os.getenv('ZERO_COST_SAMPLE_LIMIT', '10'))

# Chart-of-accounts codes the posting engine writes to. Each one can be
# overridden with SALES_ACCOUNT_<ROLE>, e.g. SALES_ACCOUNT_REVENUE=4000.
_DEFAULT_SALES_ACCOUNT_CODES = {
    'revenue': '4001',          # Food Sales
    'vat': '2100',              # VAT Payable
    'merchant_fees': '6100',    # Merchant Fees
    'cogs': '5001',             # COGS
    'inventory': '1100',        # Inventory Asset
    'cash_clearing': '1005',    # Cash Clearing
    'tips': '2101',             # Tips Payable
}
SALES_ACCOUNT_CODES = {
    role: os.getenv(f'SALES_ACCOUNT_{role.upper()}', code)
    for role, code in _DEFAULT_SALES_ACCOUNT_CODES.items()
}

# Fallback fee rates, used for any payment method without a payment_methods row
DEFAULT_FEE_RATES = {
    'visa': Decimal('0.007'),
    'talabat': Decimal('0.25'),
    'careem': Decimal('0.25'),
    'cash': Decimal('0'),
}
