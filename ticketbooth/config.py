import os

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./ticketbooth.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://127.0.0.1:6379")
REDIS_MAX_CONN = int(os.environ.get("REDIS_MAX_CONN", "64"))

HOLD_BACKEND = os.environ.get("HOLD_BACKEND", "sql").lower()  # 'sql' | 'redis'
HOLD_TTL_SECONDS = int(os.environ.get("HOLD_TTL_SECONDS", str(10 * 60)))

# abandoned checkouts older than this are marked failed by the reaper
PENDING_TTL_SECONDS = int(os.environ.get("PENDING_TTL_SECONDS", str(60 * 60)))
REAPER_INTERVAL_SECONDS = int(os.environ.get("REAPER_INTERVAL_SECONDS", "300"))

GATEWAY = os.environ.get("GATEWAY", "paystack").lower()  # 'paystack' | 'mock'
PAYSTACK_API_BASE = os.environ.get(
    "PAYSTACK_API_BASE", "https://api.paystack.co"
)
# only used while no keys were saved through the admin console
PAYSTACK_PUBLIC_KEY = os.environ.get("PAYSTACK_PUBLIC_KEY", "")
PAYSTACK_SECRET_KEY = os.environ.get("PAYSTACK_SECRET_KEY", "")
MOCK_SECRET = os.environ.get("MOCK_SECRET", "supersecret")

VERIFICATION_SECRET = os.environ.get(
    "VERIFICATION_SECRET", "dev-verify-change-me"
)
PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:8000")
CURRENCY = os.environ.get("CURRENCY", "NGN")

SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "supasecret")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
