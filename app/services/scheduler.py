"""Reminder fire-time arithmetic.

Pure functions: the caller passes the single ``now`` used for every
comparison in one operation. Datetimes are UTC-aware; no timezone
conversion happens here.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from app.types.task_contract import ReminderFields, ReminderOptions

REMINDER_LEAD = timedelta(hours=24)

_CADENCE = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
}


def _lead_time(due_at: datetime, now: datetime) -> datetime:
    candidate = due_at - REMINDER_LEAD
    return candidate if candidate > now else now


def compute_next_fire_time(task, now: datetime) -> Optional[datetime]:
    """Next instant a reminder should fire for *task* (a ``Task`` or
    ``ReminderOptions``), or ``None`` when reminders are disabled.

    ``daily``/``weekly`` are measured from *now*, not from the previous fire.
    A ``once`` reminder that already has a fire time keeps it unchanged.
    """
    if not task.reminder_enabled:
        return None

    frequency = task.reminder_frequency or "once"
    due = task.due_at

    if frequency == "before_due" and due is not None:
        return _lead_time(due, now)

    if frequency in _CADENCE:
        return now + _CADENCE[frequency]

    # "once" and any fallback
    if task.next_reminder_at is not None:
        return task.next_reminder_at
    if due is not None and due > now:
        return _lead_time(due, now)
    return now


def compute_next_after_delivery(task, now: datetime) -> Optional[datetime]:
    """Fire time after a successful send, or ``None`` when the reminder is done.

    Recurring cadences roll forward from *now*; a ``before_due`` reminder only
    fires again if its lead time is still ahead; ``once`` is finished.
    Unlike the re-enable path (:func:`compute_next_fire_time`), this never
    falls back to *now*, so a finished reminder goes to terminal ``sent``.
    """
    if not task.reminder_enabled:
        return None

    frequency = task.reminder_frequency or "once"
    if frequency in _CADENCE:
        return now + _CADENCE[frequency]
    if frequency == "before_due" and task.due_at is not None:
        candidate = task.due_at - REMINDER_LEAD
        return candidate if candidate > now else None
    return None


def prepare_reminder_fields(options: ReminderOptions, now: datetime) -> ReminderFields:
    """Reminder column values for a create/update.

    Disabled reminders get the cleared defaults. Enabled reminders are reset to
    ``pending`` with no error and always carry a fire time.
    """
    if not options.reminder_enabled:
        return ReminderFields(
            reminder_enabled=False,
            reminder_status="pending",
            reminder_error=None,
            next_reminder_at=None,
        )

    frequency = options.reminder_frequency or "once"
    effective = options.model_copy(update={"reminder_frequency": frequency})
    return ReminderFields(
        reminder_enabled=True,
        reminder_status="pending",
        reminder_error=None,
        reminder_frequency=frequency,
        next_reminder_at=compute_next_fire_time(effective, now) or now,
    )
