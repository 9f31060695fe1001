"""
config.py
---------
Central configuration module. Loads all environment variables
from the .env file and exposes them as typed constants.
"""

import os
from dotenv import load_dotenv

load_dotenv()


# ── Telegram ──────────────────────────────────────────────
TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

# ── PostgreSQL ────────────────────────────────────────────
DB_HOST: str = os.getenv("DB_HOST", "localhost")
DB_PORT: int = int(os.getenv("DB_PORT", "5432"))
DB_NAME: str = os.getenv("DB_NAME", "recurring_reminders")
DB_USER: str = os.getenv("DB_USER", "reminders_user")
DB_PASS: str = os.getenv("DB_PASS", "")

DATABASE_URL: str = (
    f"postgresql://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
)

# ── Owners ────────────────────────────────────────────────
# One notification session is started per listed user.
_raw_ids = os.getenv("ALLOWED_USER_IDS", "")
ALLOWED_USER_IDS: list[int] = (
    [int(uid.strip()) for uid in _raw_ids.split(",") if uid.strip()]
    if _raw_ids
    else []
)

# ── Notification window ───────────────────────────────────
DAILY_LOOKAHEAD_HOURS: int = int(os.getenv("DAILY_LOOKAHEAD_HOURS", "5"))
DEFAULT_LOOKAHEAD_DAYS: int = int(os.getenv("DEFAULT_LOOKAHEAD_DAYS", "5"))
REFRESH_INTERVAL_MS: int = int(os.getenv("REFRESH_INTERVAL_MS", "60000"))
MAX_CATCH_UP_ITERATIONS: int = int(os.getenv("MAX_CATCH_UP_ITERATIONS", "1000"))

# ── Store I/O ─────────────────────────────────────────────
STORE_TIMEOUT_SECONDS: float = float(os.getenv("STORE_TIMEOUT_SECONDS", "10"))
STORE_READ_RETRIES: int = int(os.getenv("STORE_READ_RETRIES", "3"))
STORE_RETRY_BACKOFF_SECONDS: float = float(os.getenv("STORE_RETRY_BACKOFF_SECONDS", "0.5"))

# ── Currency ──────────────────────────────────────────────
DEFAULT_CURRENCY: str = "EUR"
