import os

from dotenv import load_dotenv


load_dotenv()


def _flag(name: str, default: str = '0') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite+aiosqlite:///./trade_ledger.db')
DB_ECHO = _flag('DB_ECHO')
AUTO_CREATE_TABLES = _flag('AUTO_CREATE_TABLES', '1')

# disabled | sql | supabase
MIRROR_BACKEND = os.getenv('MIRROR_BACKEND', 'disabled').strip().lower()
MIRROR_DATABASE_URL = os.getenv('MIRROR_DATABASE_URL', 'sqlite+aiosqlite:///./trade_ledger_mirror.db')
SUPABASE_URL = os.getenv('SUPABASE_URL', '')
SUPABASE_SERVICE_ROLE_KEY = os.getenv('SUPABASE_SERVICE_ROLE_KEY', '')

WEBHOOK_SECRET = os.getenv('WEBHOOK_SECRET', '')

SYNC_TIMEOUT_SECONDS = float(os.getenv('SYNC_TIMEOUT_SECONDS', '2'))
SYNC_MAX_ATTEMPTS = int(os.getenv('SYNC_MAX_ATTEMPTS', '5'))
SYNC_POLL_INTERVAL = float(os.getenv('SYNC_POLL_INTERVAL', '5'))
SYNC_WORKER_ENABLED = _flag('SYNC_WORKER_ENABLED')
SYNC_LEASE_SECONDS = float(os.getenv('SYNC_LEASE_SECONDS', '30'))

MARKET_DATA_URL = os.getenv('MARKET_DATA_URL', '')
PRICE_CACHE_TTL = float(os.getenv('PRICE_CACHE_TTL', '10'))

SESSION_TTL_HOURS = int(os.getenv('SESSION_TTL_HOURS', '24'))
SESSION_REMEMBER_DAYS = int(os.getenv('SESSION_REMEMBER_DAYS', '30'))

LOG_DIR = os.getenv('LOG_DIR', os.path.join(os.path.dirname(__file__), 'logs'))
