"""
Application Settings

Runtime configuration loaded from the environment (and a local .env file).
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("WATCHDOG_DATA_DIR", BASE_DIR / "data"))


def _get_bool(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Storage
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'page_watchdog.db'}")

# Scheduler / watchdog timing (seconds)
MIN_INTERVAL_SECONDS = 3
MAX_INTERVAL_SECONDS = 300
DEFAULT_INTERVAL_SECONDS = int(os.getenv("DEFAULT_INTERVAL_SECONDS", "15"))
WATCHDOG_INTERVAL_SECONDS = float(os.getenv("WATCHDOG_INTERVAL_SECONDS", "10"))
STUCK_THRESHOLD_SECONDS = float(os.getenv("STUCK_THRESHOLD_SECONDS", "30"))
STUCK_BUFFER_SECONDS = float(os.getenv("STUCK_BUFFER_SECONDS", "5"))

# Error recovery
ERROR_COOLDOWN_SECONDS = float(os.getenv("ERROR_COOLDOWN_SECONDS", "10"))
QUIESCENCE_DELAY_SECONDS = float(os.getenv("QUIESCENCE_DELAY_SECONDS", "1.5"))
BACKOFF_BASE_SECONDS = float(os.getenv("BACKOFF_BASE_SECONDS", "5"))
BACKOFF_MAX_SECONDS = float(os.getenv("BACKOFF_MAX_SECONDS", "120"))
EPHEMERAL_RESET_BACKOFF = _get_bool("EPHEMERAL_RESET_BACKOFF", True)

# Bounded stores
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "50"))
SAVED_CONFIG_LIMIT = int(os.getenv("SAVED_CONFIG_LIMIT", "20"))
LOG_BUFFER_SIZE = int(os.getenv("LOG_BUFFER_SIZE", "500"))

# Browser
HEADLESS = _get_bool("HEADLESS", False)
PAGE_LOAD_TIMEOUT = int(os.getenv("PAGE_LOAD_TIMEOUT", "30"))

# E-mail notifications (optional)
SMTP_SERVER = os.getenv("SMTP_SERVER", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SENDER_EMAIL = os.getenv("SENDER_EMAIL")
SENDER_PASSWORD = os.getenv("SENDER_PASSWORD")
NOTIFY_EMAIL = os.getenv("NOTIFY_EMAIL")

# Logging
LOG_FILE = os.getenv("LOG_FILE", "page_watchdog.log")
