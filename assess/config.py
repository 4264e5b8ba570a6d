"""Application configuration and constants."""
import os
from pathlib import Path


def _parse_int_env(name: str, default: int) -> int:
    """Parse integer from environment variable."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _parse_float_env(name: str, default: float) -> float:
    """Parse float from environment variable."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# Database
DB_DIR = Path(os.environ.get("DB_DIR", Path.cwd() / "data"))
DB_DIR.mkdir(parents=True, exist_ok=True)
DATABASE_URL = os.environ.get(
    "DATABASE_URL", f"sqlite:///{DB_DIR / 'assessments.db'}"
)

# Client durable cache
CACHE_DIR = Path(os.environ.get("CACHE_DIR", Path.cwd() / "data" / "cache"))

# Server the engine talks to when running against the HTTP store
API_BASE_URL = os.environ.get("API_BASE_URL", "http://127.0.0.1:8000")
API_TIMEOUT_SECONDS = _parse_float_env("API_TIMEOUT_SECONDS", 10.0)

# Judge service (Judge0 compatible)
JUDGE_API_URL = os.environ.get(
    "JUDGE_API_URL", "http://127.0.0.1:2358/submissions"
)
JUDGE_TIMEOUT_SECONDS = _parse_float_env("JUDGE_TIMEOUT_SECONDS", 30.0)
JUDGE_MAX_POLLS = _parse_int_env("JUDGE_MAX_POLLS", 10)
JUDGE_POLL_INTERVAL_SECONDS = _parse_float_env("JUDGE_POLL_INTERVAL_SECONDS", 1.0)
JUDGE_MAX_WORKERS = _parse_int_env("JUDGE_MAX_WORKERS", 8)
# How long submit and finalize wait for a test run to finish
RUN_WAIT_TIMEOUT_SECONDS = _parse_float_env("RUN_WAIT_TIMEOUT_SECONDS", 60.0)

# Session timing
TICK_INTERVAL_SECONDS = _parse_float_env("TICK_INTERVAL_SECONDS", 1.0)
EXPIRING_THRESHOLD_SECONDS = _parse_int_env("EXPIRING_THRESHOLD_SECONDS", 60)
AUTOSAVE_INTERVAL_SECONDS = _parse_float_env("AUTOSAVE_INTERVAL_SECONDS", 30.0)
DEFAULT_DURATION_MINUTES = _parse_int_env("DEFAULT_DURATION_MINUTES", 120)

# Retries
RETRY_ATTEMPTS = _parse_int_env("RETRY_ATTEMPTS", 3)
RETRY_BASE_DELAY_SECONDS = _parse_float_env("RETRY_BASE_DELAY_SECONDS", 0.5)
RETRY_MAX_DELAY_SECONDS = _parse_float_env("RETRY_MAX_DELAY_SECONDS", 8.0)
FINALIZE_MAX_ATTEMPTS = _parse_int_env("FINALIZE_MAX_ATTEMPTS", 3)
ATTEMPT_STRATEGY_TIMEOUT_SECONDS = _parse_float_env(
    "ATTEMPT_STRATEGY_TIMEOUT_SECONDS", 5.0
)

# Scoring
CODING_SCORE_POLICY = os.environ.get("CODING_SCORE_POLICY", "strict").strip().lower()

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
