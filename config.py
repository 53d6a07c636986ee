# config.py
import os
import logging

from dotenv import load_dotenv

# --- Load environment variables ---
load_dotenv()


def _flag(name, default):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

DB_URL = os.getenv("DB_URL", "sqlite:///reminders.db")
TIMEZONE = os.getenv("TIMEZONE", "UTC")

# Exact alarms can be revoked by the operator; the inexact path is the fallback.
EXACT_ALARMS_ALLOWED = _flag("EXACT_ALARMS_ALLOWED", True)
INEXACT_FALLBACK_ENABLED = _flag("INEXACT_FALLBACK_ENABLED", True)
MISFIRE_GRACE_SECONDS = int(os.getenv("MISFIRE_GRACE_SECONDS", "60"))

# Text-to-speech engine factory as "module:callable"; unset means reminders are not spoken.
TTS_ENGINE_FACTORY = os.getenv("TTS_ENGINE_FACTORY") or None

# 0 disables the periodic reconciliation job.
RECONCILE_INTERVAL_MINUTES = int(os.getenv("RECONCILE_INTERVAL_MINUTES", "0"))

ADMIN_USER_IDS = {
    int(part) for part in os.getenv("ADMIN_USER_IDS", "").split(",") if part.strip()
}

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


# --- Logging ---
def setup_logging(level=None):
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=getattr(logging, level or LOG_LEVEL, logging.INFO)
    )
    # httpx logs every Telegram poll at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
