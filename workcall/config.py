import os

DATABASE_URL = os.getenv("BOOKING_DB")
if not DATABASE_URL:
    raise RuntimeError("BOOKING_DB environment variable is not set")

REDIS_URL = os.getenv("REDIS_URL")
if not REDIS_URL:
    raise RuntimeError("REDIS_URL environment variable is not set")

RABBIT_URL = os.getenv("RABBIT_URL")  # optional in dev, required if you want events
EXCHANGE_NAME = "domain_events"

JWT_SECRET = os.getenv("JWT_SECRET")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM") or "HS256"
if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET environment variable is not set")

WORKER_SERVICE_URL = os.getenv("WORKER_SERVICE_URL") or "http://worker-service:8000"
PAYMENT_CALLBACK_BASE_URL = os.getenv("PAYMENT_CALLBACK_BASE_URL") or "http://localhost:8000"

# ---- Gateways ----
BKASH_BASE_URL = os.getenv("BKASH_BASE_URL") or "https://tokenized.sandbox.bka.sh/v1.2.0-beta/tokenized"
BKASH_APP_KEY = os.getenv("BKASH_APP_KEY") or ""
BKASH_APP_SECRET = os.getenv("BKASH_APP_SECRET") or ""
BKASH_USERNAME = os.getenv("BKASH_USERNAME") or ""
BKASH_PASSWORD = os.getenv("BKASH_PASSWORD") or ""

SSLCOMMERZ_BASE_URL = os.getenv("SSLCOMMERZ_BASE_URL") or "https://sandbox.sslcommerz.com"
SSLCOMMERZ_STORE_ID = os.getenv("SSLCOMMERZ_STORE_ID") or ""
SSLCOMMERZ_STORE_PASS = os.getenv("SSLCOMMERZ_STORE_PASS") or ""

GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS") or "15")
DIRECTORY_TIMEOUT_SECONDS = float(os.getenv("DIRECTORY_TIMEOUT_SECONDS") or "2")

# ---- Pricing (BDT) ----
MIN_PRICE = 150
MAX_PRICE = 10000
SLOT_DURATION_HOURS = 2

# ---- Loyalty ----
LOYALTY_POINTS_PER_STEP = 10
LOYALTY_STEP_VALUE = int(os.getenv("LOYALTY_STEP_VALUE") or "5")
LOYALTY_MAX_DISCOUNT_RATIO = 0.20
LOYALTY_EARN_UNIT = 100  # 1 point per 100 BDT paid

# ---- Ops ----
RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE") or "120")
RELAY_INTERVAL_SECONDS = float(os.getenv("RELAY_INTERVAL_SECONDS") or "2")
PROCESSED_CALLBACK_TTL = 86400
