import os
from decimal import Decimal

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
users_ms_url = os.environ.get("USERS_MS_URL", "http://localhost:8000")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Escrow
PLATFORM_FEE_RATE = Decimal(os.environ.get("PLATFORM_FEE_RATE", "0.15"))
# "threshold:rate,threshold:rate" e.g. "0:0.15,200:0.12,1000:0.10"; empty = flat rate
PLATFORM_FEE_TIERS = os.environ.get("PLATFORM_FEE_TIERS", "")
PAYMENT_HOLD_HOURS = int(os.environ.get("PAYMENT_HOLD_HOURS", "24"))
RELEASE_SWEEP_INTERVAL_SECONDS = float(
    os.environ.get("RELEASE_SWEEP_INTERVAL_SECONDS", "60")
)
RELEASE_SWEEP_BATCH_SIZE = int(os.environ.get("RELEASE_SWEEP_BATCH_SIZE", "100"))

# Disputes
DISPUTE_WINDOW_HOURS = int(os.environ.get("DISPUTE_WINDOW_HOURS", "48"))

BOOKING_EVENTS_CHANNEL = os.environ.get("BOOKING_EVENTS_CHANNEL", "booking-events")
