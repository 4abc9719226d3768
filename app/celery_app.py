"""Celery application instance shared across the backend.

Start a worker (and the beat scheduler) with:
    celery -A app.celery_app worker -Q reminder -l info --concurrency=2
    celery -A app.celery_app beat -l info
"""

from celery import Celery

from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("task_reminders", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.task_default_retry_delay = 30  # seconds

celery_app.conf.task_routes = {
    "app.workers.reminder.process_due": {"queue": "reminder"},
    "app.workers.reminder.release_stale_claims": {"queue": "reminder"},
}

# Beat schedule: scan for due WhatsApp reminders, and unstick crashed claims
celery_app.conf.beat_schedule = {
    "dispatch-due-reminders": {
        "task": "app.workers.reminder.process_due",
        "schedule": settings.REMINDER_SCAN_INTERVAL_SECONDS,
        "kwargs": {"channel": "whatsapp", "limit": settings.REMINDER_BATCH_LIMIT},
    },
    "release-stale-reminder-claims": {
        "task": "app.workers.reminder.release_stale_claims",
        "schedule": 300.0,
    },
}

# --- Ensure tasks are registered ---
import app.workers.reminder  # noqa: E402,F401
