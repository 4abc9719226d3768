import os

from dotenv import load_dotenv

load_dotenv()


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis (Celery broker + result backend) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- WhatsApp Cloud API ---
    WHATSAPP_TOKEN = os.environ.get("WHATSAPP_TOKEN")
    WHATSAPP_PHONE_ID = os.environ.get("WHATSAPP_PHONE_ID")
    WHATSAPP_API_VERSION = os.environ.get("WHATSAPP_API_VERSION", "v19.0")
    NOTIFIER_TIMEOUT_SECONDS = float(os.environ.get("NOTIFIER_TIMEOUT_SECONDS", "15"))

    # --- Inbound webhook ---
    PINPOINT_WEBHOOK_SECRET = os.environ.get("PINPOINT_WEBHOOK_SECRET", "")

    # --- Reminder dispatch ---
    REMINDER_DEFAULT_CHANNEL = os.environ.get("REMINDER_DEFAULT_CHANNEL", "whatsapp")
    REMINDER_BATCH_LIMIT = int(os.environ.get("REMINDER_BATCH_LIMIT", "100"))
    REMINDER_BATCH_BUDGET_SECONDS = float(os.environ.get("REMINDER_BATCH_BUDGET_SECONDS", "240"))
    REMINDER_CLAIM_TTL_SECONDS = int(os.environ.get("REMINDER_CLAIM_TTL_SECONDS", "900"))
    REMINDER_SCAN_INTERVAL_SECONDS = float(os.environ.get("REMINDER_SCAN_INTERVAL_SECONDS", "60"))
    REMINDER_LOG_LIMIT = int(os.environ.get("REMINDER_LOG_LIMIT", "50"))


settings = Settings()
