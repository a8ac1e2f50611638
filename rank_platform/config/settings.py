"""
Configuration settings for the Geo-Grid Rank Tracking Platform.

Values here are defaults. Sampling limits and the provider client are passed
explicitly into the sampler and tracker at run start.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
LOGS_DIR = BASE_DIR / "logs"

# Create directories if they don't exist
for d in [DATA_DIR, LOGS_DIR]:
    d.mkdir(parents=True, exist_ok=True)

# Database
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite:///{DATA_DIR / 'rank_platform.db'}"
)

# Redis / Celery
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", REDIS_URL)

# Ranking provider
RANK_PROVIDER = os.getenv("RANK_PROVIDER", "simulated")
RANK_PROVIDER_API_KEY = os.getenv("RANK_PROVIDER_API_KEY", "")

# Geo grid defaults
DEFAULT_GRID_SIZE = int(os.getenv("DEFAULT_GRID_SIZE", "5"))
DEFAULT_RADIUS_MILES = float(os.getenv("DEFAULT_RADIUS_MILES", "1.0"))
DEFAULT_GRID_SHAPE = os.getenv("DEFAULT_GRID_SHAPE", "square")

# Rank conventions
MAX_TRACKED_RANK = 100      # anything deeper is "unranked"
UNRANKED_RANK = 101         # canonical sentinel stored for unranked cells
UNRANKED_LABEL = "100+"

# Sampler limits -- bounded by the provider, not by CPU count
SAMPLER = {
    "max_concurrency": int(os.getenv("SAMPLER_MAX_CONCURRENCY", "8")),
    "call_timeout_seconds": float(os.getenv("SAMPLER_CALL_TIMEOUT", "20")),
    "retry_attempts": int(os.getenv("SAMPLER_RETRY_ATTEMPTS", "3")),
    "retry_wait_min": 1.0,
    "retry_wait_max": 8.0,
}

# Scheduling Configuration
SCHEDULE = {
    "geogrid_scan_hour": int(os.getenv("GEOGRID_SCAN_HOUR", "6")),  # daily, local time
    "geogrid_scan_minute": 0,
}

# Alert Thresholds
ALERTS = {
    "ranking_drop_threshold": 5,       # Alert if best grid rank drops by 5+
}

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = LOGS_DIR / "rank_platform.log"
