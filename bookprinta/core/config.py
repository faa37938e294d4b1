# bookprinta/core/config.py
import os
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv

# ================== ENV ==================

ROOT_DIR = Path(__file__).resolve().parents[2]
load_dotenv(ROOT_DIR / ".env", override=False)

def env(*names: str, default: Optional[str] = None) -> str:
    for n in names:
        v = os.environ.get(n)
        if v is not None and str(v).strip() != "":
            return v
    if default is not None:
        return default
    raise KeyError(f"Missing required env var. Tried: {', '.join(names)}")


def env_list(name: str) -> List[str]:
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]

# ================== JWT ==================

JWT_SECRET = os.environ.get("JWT_SECRET", "default_secret_key")
JWT_ALGORITHM = "HS256"
JWT_EXPIRATION_HOURS = int(os.environ.get("JWT_EXPIRATION_HOURS", "24"))

# ================== CHECKOUT ==================

# All charges are in Nigerian Naira unless a request says otherwise.
DEFAULT_CURRENCY = "NGN"
EXTRA_PAGE_COST = 300
SIGNUP_TOKEN_TTL_HOURS = 24
ORDER_NUMBER_MAX_ATTEMPTS = 6

FRONTEND_URL = env("FRONTEND_URL", default="https://bookprinta.com").rstrip("/")
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")

LOG_DIR = os.environ.get("LOG_DIR", "logs")

# ================== PROVIDERS ==================

PAYSTACK_SECRET_KEY = os.environ.get("PAYSTACK_SECRET_KEY", "").strip()
PAYSTACK_BASE_URL = env("PAYSTACK_BASE_URL", default="https://api.paystack.co").rstrip("/")

STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "").strip()
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "").strip()

PAYPAL_CLIENT_ID = os.environ.get("PAYPAL_CLIENT_ID", "").strip()
PAYPAL_CLIENT_SECRET = os.environ.get("PAYPAL_CLIENT_SECRET", "").strip()
PAYPAL_BASE_URL = env("PAYPAL_BASE_URL", default="https://api-m.sandbox.paypal.com").rstrip("/")

PROVIDER_TIMEOUT_SECONDS = float(os.environ.get("PROVIDER_TIMEOUT_SECONDS", "30"))

# ================== NOTIFICATIONS ==================

RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "").strip()
PAYMENTS_FROM_EMAIL = env("PAYMENTS_FROM_EMAIL", "AUTH_FROM_EMAIL", default="BookPrinta <onboarding@resend.dev>")
ADMIN_NOTIFICATION_EMAILS = env_list("ADMIN_NOTIFICATION_EMAILS")

INFOBIP_BASE_URL = os.environ.get("INFOBIP_BASE_URL", "").strip()
INFOBIP_API_KEY = os.environ.get("INFOBIP_API_KEY", "").strip()
INFOBIP_WHATSAPP_FROM = os.environ.get("INFOBIP_WHATSAPP_FROM", "").strip()
ADMIN_WHATSAPP_NUMBERS = env_list("ADMIN_WHATSAPP_NUMBERS")

# ================== UPLOADS ==================

CLOUDINARY_CLOUD_NAME = os.environ.get("CLOUDINARY_CLOUD_NAME", "").strip()
CLOUDINARY_API_KEY = os.environ.get("CLOUDINARY_API_KEY", "").strip()
CLOUDINARY_API_SECRET = os.environ.get("CLOUDINARY_API_SECRET", "").strip()
RECEIPT_UPLOAD_FOLDER = env("RECEIPT_UPLOAD_FOLDER", default="bookprinta/receipts")

SCANNER_PROVIDER = env("SCANNER_PROVIDER", default="clamav").lower()
CLAMAV_HOST = env("CLAMAV_HOST", default="localhost")
CLAMAV_PORT = int(env("CLAMAV_PORT", default="3310"))
VIRUSTOTAL_API_KEY = os.environ.get("VIRUSTOTAL_API_KEY", "").strip()

HEALTH_CHECK_TIMEOUT_SECONDS = float(os.environ.get("HEALTH_CHECK_TIMEOUT_SECONDS", "3"))

# ================== DATABASE ==================

DATABASE_URL = os.environ.get("DATABASE_URL", "")

def get_database_url() -> str:
    """Get database URL - supports SQLite or MySQL."""
    if DATABASE_URL:
        return DATABASE_URL

    # Check if MySQL is configured
    mysql_host = os.environ.get("MYSQL_HOST")
    if mysql_host:
        mysql_port = int(os.environ.get("MYSQL_PORT", "3306"))
        mysql_user = os.environ.get("MYSQL_USER", "root")
        mysql_password = os.environ.get("MYSQL_PASSWORD", "")
        mysql_db = os.environ.get("MYSQL_DB", "bookprinta")
        return f"mysql+aiomysql://{mysql_user}:{mysql_password}@{mysql_host}:{mysql_port}/{mysql_db}?charset=utf8mb4"

    # Default to SQLite
    db_path = ROOT_DIR / "bookprinta.db"
    return f"sqlite+aiosqlite:///{db_path}"
