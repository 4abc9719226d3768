"""Celery tasks for due-reminder batches."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from app import metrics
from app.celery_app import celery_app
from app.errors import ValidationError
from app.services.notifier import build_default_notifier
from app.services.reminder_dispatcher import ReminderDispatcher
from app.utils.clock import SystemClock
from config import settings
import db

_LOGGER = logging.getLogger(__name__)


async def _with_engine(coro):
    """Each asyncio.run gets a fresh loop, so the pooled engine must not outlive it."""
    try:
        return await coro
    finally:
        await db.dispose_engine()


async def run_due_batch(channel: str, limit: int) -> dict:
    dispatcher = ReminderDispatcher(
        build_default_notifier(),
        clock=SystemClock(),
        send_timeout=settings.NOTIFIER_TIMEOUT_SECONDS,
        batch_budget=settings.REMINDER_BATCH_BUDGET_SECONDS,
    )
    result = await dispatcher.process_due(channel, limit)
    return result.model_dump()


async def release_claims() -> int:
    now = SystemClock().now()
    cutoff = now - timedelta(seconds=settings.REMINDER_CLAIM_TTL_SECONDS)
    released = await db.release_stale_claims(cutoff, now)
    if released:
        metrics.stale_claims_released_total.inc(released)
        _LOGGER.warning("Released %d stale reminder claims", released)
    return released


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(name="app.workers.reminder.process_due", bind=True, max_retries=3)
def process_due(self, channel: str = "whatsapp", limit: int = 100):  # noqa: D401
    """Send every due reminder on *channel*; the job id is the Celery task id."""
    try:
        result = asyncio.run(_with_engine(run_due_batch(channel, limit)))
    except ValidationError:
        _LOGGER.exception("Rejected reminder batch %s", self.request.id)
        raise
    except Exception as exc:  # noqa: BLE001
        # Only the due-query itself can fail here; per-task errors are isolated
        raise self.retry(exc=exc)
    _LOGGER.info("Reminder batch %s done: %s", self.request.id, result)
    return result


@celery_app.task(name="app.workers.reminder.release_stale_claims", bind=True)
def release_stale_claims(self):  # noqa: D401
    """Return claims held longer than the TTL to pending."""
    return asyncio.run(_with_engine(release_claims()))
