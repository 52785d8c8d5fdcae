from decimal import Decimal
from pathlib import Path
from dotenv import load_dotenv
import os

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# MongoDB connection (replica set required when transactions are enabled)
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017/?replicaSet=rs0')
DB_NAME = os.environ.get('DB_NAME', 'santiye')
MONGO_TRANSACTIONS = _env_flag('MONGO_TRANSACTIONS', 'true')

# JWT Configuration
JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', 'santiye-dev-secret-change-in-production')
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get('ACCESS_TOKEN_EXPIRE_MINUTES', '30'))

# KDV rate applied to invoices generated from a transaction
DEFAULT_INVOICE_TAX_RATE = Decimal(os.environ.get('DEFAULT_INVOICE_TAX_RATE', '20'))

CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()]
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
