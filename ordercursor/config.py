"""
Configuration module for the order cursor recovery job.
Contains API defaults, search budgets, bookmark settings and storage credentials.
"""

import os
from pathlib import Path
from dotenv import load_dotenv
from typing import List, Optional

# Load environment variables
load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _float_list_env(name: str, default: List[float]) -> List[float]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [float(part) for part in value.split(",") if part.strip()]


def _int_list_env(name: str, default: List[int]) -> List[int]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [int(part) for part in value.split(",") if part.strip()]


# Remote order API Configuration
ORDER_API_BASE_URL = os.getenv("ORDER_API_BASE_URL", "https://natureldz.ecomanager.dz/api/shop/v2")
ORDER_API_TIMEOUT = _int_env("ORDER_API_TIMEOUT", 30)  # Seconds per request
PAGE_SIZE = _int_env("ORDER_API_PAGE_SIZE", 20)  # per_page sent to /orders
MIN_REQUEST_INTERVAL = float(os.getenv("ORDER_API_MIN_REQUEST_INTERVAL", "0"))  # Pacing between calls
CONNECT_RETRIES = _int_env("ORDER_API_CONNECT_RETRIES", 0)  # urllib3 retries for connection setup only

# Rate limit (HTTP 429) policy
RATE_LIMIT_MAX_ATTEMPTS = _int_env("RATE_LIMIT_MAX_ATTEMPTS", 3)
RATE_LIMIT_DELAYS = _float_list_env("RATE_LIMIT_DELAYS", [60.0, 90.0, 120.0])  # 1min, 1.5min, 2min
RATE_LIMIT_MAX_DELAY = float(os.getenv("RATE_LIMIT_MAX_DELAY", "300"))

# Search budgets
SAMPLE_CHECKPOINTS = _int_list_env("SAMPLE_CHECKPOINTS", [0, 100, 500, 1000, 2000, 5000])
SAMPLE_MAX_CALLS = _int_env("SAMPLE_MAX_CALLS", 50)
WALK_MAX_CALLS = _int_env("WALK_MAX_CALLS", 250)  # Per advance of the cursor walker
BINARY_MAX_ITERATIONS = _int_env("BINARY_MAX_ITERATIONS", 15)
BINARY_EXTRAPOLATION_SPAN = _int_env("BINARY_EXTRAPOLATION_SPAN", 2000)  # Positions past the last sample
WINDOW_RADIUS = _int_env("WINDOW_RADIUS", 100)  # Search ±100 positions
WINDOW_MAX_CALLS = _int_env("WINDOW_MAX_CALLS", 10)
SWEEP_MAX_CALLS = _int_env("SWEEP_MAX_CALLS", 100)
EXHAUSTIVE_MAX_CALLS = _int_env("EXHAUSTIVE_MAX_CALLS", 2000)
NEWER_THAN_FIRST_MARGIN = _int_env("NEWER_THAN_FIRST_MARGIN", 100)

# Bookmark settings
BOOKMARK_TTL_SECONDS = _int_env("BOOKMARK_TTL_SECONDS", 86400 * 7)  # 7 days
BOOKMARK_KEY_PREFIX = os.getenv("BOOKMARK_KEY_PREFIX", "ecomanager:pageinfo:")
REDIS_URL = os.getenv("REDIS_URL")
REDIS_HOST = os.getenv("REDIS_HOST", "redis")
REDIS_PORT = _int_env("REDIS_PORT", 6379)
REDIS_PASSWORD: Optional[str] = os.getenv("REDIS_PASSWORD") or None

# Supabase Configuration
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")

# Table names on the local order store
STORE_CONFIG_TABLE = os.getenv("STORE_CONFIG_TABLE", "api_configurations")
ORDERS_TABLE = os.getenv("ORDERS_TABLE", "orders")
ORDER_SOURCE = "ECOMANAGER"

# Project directories
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("RECOVERY_DATA_DIR", str(PROJECT_ROOT / "data")))
BOOKMARK_BACKUP_FILE = DATA_DIR / "sync-positions.json"
REPORT_FILE = DATA_DIR / "sync-pages-backup.json"

# Create directories if they don't exist
DATA_DIR.mkdir(parents=True, exist_ok=True)

# Validation configuration
REQUIRED_ENV_VARS = ["SUPABASE_URL", "SUPABASE_SERVICE_KEY"]


def missing_env_vars() -> List[str]:
    """
    Names of required environment variables that are not set.

    Returns:
        List of missing variable names (empty when configuration is complete)
    """
    return [name for name in REQUIRED_ENV_VARS if not os.getenv(name)]
