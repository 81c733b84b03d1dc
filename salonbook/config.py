import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./salonbook.db")

# Storage timeouts - every storage call runs inside the request budget
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "20"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "30"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "5000"))
DB_LOG_SLOW_QUERIES = os.getenv("DB_LOG_SLOW_QUERIES", "true").lower() == "true"
DB_SLOW_QUERY_THRESHOLD = float(os.getenv("DB_SLOW_QUERY_THRESHOLD", "1.0"))

# Redis Configuration (cache + change notifications + ARQ)
REDIS_URL = os.getenv("REDIS_URL")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
REDIS_SSL = os.getenv("REDIS_SSL", "false").lower() == "true"

# Hold lifecycle
HOLD_TTL_MINUTES = int(os.getenv("HOLD_TTL_MINUTES", "5"))
# Size of one exclusion cell in slot_claims; hold start times and durations must align to it
CLAIM_GRANULARITY_MINUTES = int(os.getenv("CLAIM_GRANULARITY_MINUTES", "5"))

# Availability reads
AVAILABILITY_CACHE_TTL_SECONDS = int(os.getenv("AVAILABILITY_CACHE_TTL_SECONDS", "30"))
AVAILABILITY_CHANNEL_PREFIX = os.getenv("AVAILABILITY_CHANNEL_PREFIX", "availability")
MAX_CALENDAR_RANGE_DAYS = int(os.getenv("MAX_CALENDAR_RANGE_DAYS", "62"))
READ_RETRY_ATTEMPTS = int(os.getenv("READ_RETRY_ATTEMPTS", "3"))
READ_RETRY_BASE_DELAY = float(os.getenv("READ_RETRY_BASE_DELAY", "0.1"))

# Calendar rendering
LAYOUT_MAX_COLUMNS = int(os.getenv("LAYOUT_MAX_COLUMNS", "4"))

# Frontend base URL (booking widget)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", FRONTEND_URL).split(",")
    if origin.strip()
]
