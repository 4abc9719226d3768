"""Turns free-text replies to a reminder into task status changes."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import db
from app import metrics
from app.errors import NotFoundError
from app.types.task_contract import ReminderLogCreate, ReplyResult
from app.utils.clock import Clock, SystemClock

_LOGGER = logging.getLogger(__name__)

# Checked in order; the first keyword found wins.
_KEYWORDS = (
    (("done", "complete"), "completed"),
    (("progress", "working"), "in_progress"),
    (("blocked",), "blocked"),
)


def classify_reply(message: Optional[str]) -> Optional[str]:
    text = (message or "").strip().lower()
    if not text:
        return None
    for keywords, status in _KEYWORDS:
        if any(k in text for k in keywords):
            return status
    return None


async def record_reply(
    task_id: int,
    message: Optional[str],
    from_: Optional[str] = None,
    provider_payload: Optional[Dict[str, Any]] = None,
    clock: Optional[Clock] = None,
) -> ReplyResult:
    """Log an inbound reply and apply its status, if it maps to one.

    Reminder scheduling fields are never touched here.
    """
    task = await db.fetch_task(task_id)
    if task is None:
        raise NotFoundError(f"Task {task_id} not found")

    now = (clock or SystemClock()).now()
    classified = classify_reply(message)
    new_status = classified if classified is not None and classified != task.status else None

    entry = ReminderLogCreate(
        task_id=task.id,
        channel=task.reminder_channel,
        status="pending",
        message_body=message or "",
        metadata={
            "quote_id": task.quote_id,
            "company_id": task.company_id,
            "assigned_to": task.assigned_to,
            "assigned_phone": task.assigned_phone,
            "provider_payload": provider_payload,
        },
        direction="inbound",
        reply_from=from_,
        sent_at=now,
    )
    log_id = await db.record_reply(task.id, entry, new_status, now)

    metrics.reminder_replies_total.labels(classified=classified or "none").inc()
    if new_status:
        _LOGGER.info("Task %s moved to %s by reply from %s", task.id, new_status, from_)

    return ReplyResult(
        task_id=task.id,
        log_id=log_id,
        classified_status=classified,
        status_changed=new_status is not None,
    )
