import os
from decimal import Decimal

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
spots_ms_url = os.environ.get("SPOTS_MS_URL", "http://localhost:8001")
payments_ms_url = os.environ.get("PAYMENTS_MS_URL", "http://localhost:8003")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
SLOTS_CACHE_TTL = int(os.environ.get("SLOTS_CACHE_TTL", "60"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Booking rules
MAX_GUESTS = int(os.environ.get("MAX_GUESTS", "20"))
MAX_BOOKING_NIGHTS = int(os.environ.get("MAX_BOOKING_NIGHTS", "30"))
SERVICE_FEE_RATE = Decimal(os.environ.get("SERVICE_FEE_RATE", "0.10"))

# Rate limiting
RATE_LIMIT_WINDOW_MS = int(os.environ.get("RATE_LIMIT_WINDOW_MS", str(15 * 60 * 1000)))
RATE_LIMIT_MAX_REQUESTS = int(os.environ.get("RATE_LIMIT_MAX_REQUESTS", "100"))
RATE_LIMIT_BACKEND = os.environ.get("RATE_LIMIT_BACKEND", "memory")

ALLOWED_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.environ.get("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
