"""Task CRUD for quotes, with reminder fields kept consistent on every write."""

from __future__ import annotations

import logging
from typing import List, Optional

import db
from app.errors import NotFoundError, ReminderInFlightError, ValidationError
from app.services import reminder_state
from app.services.scheduler import prepare_reminder_fields
from app.types.task_contract import (
    ProgressSummary,
    ReminderLog,
    ReminderOptions,
    Task,
    TaskCreate,
    TaskFilters,
    TaskUpdate,
)
from app.utils.clock import Clock, SystemClock

_LOGGER = logging.getLogger(__name__)

# Changing any of these recomputes the reminder schedule.
_SCHEDULE_FIELDS = {"reminder_enabled", "reminder_frequency", "due_at", "next_reminder_at"}
# An explicit null on these is ignored rather than written.
_NOT_NULL = {
    "title", "status", "priority", "reminder_enabled", "reminder_channel", "reminder_frequency",
}


def _require_id(value: int, what: str) -> None:
    if not value or value <= 0:
        raise ValidationError(f"Valid {what} ID is required")


class TaskService:
    def __init__(self, clock: Optional[Clock] = None, log_limit: int = 50):
        self.clock = clock or SystemClock()
        self.log_limit = log_limit

    async def create_task(self, quote_id: int, company_id: int, payload: TaskCreate) -> Task:
        _require_id(quote_id, "quote")
        _require_id(company_id, "company")
        if not payload.title or not payload.title.strip():
            raise ValidationError("Task title is required")

        now = self.clock.now()
        reminder = prepare_reminder_fields(
            ReminderOptions(
                reminder_enabled=payload.reminder_enabled,
                reminder_frequency=payload.reminder_frequency,
                due_at=payload.due_at,
                next_reminder_at=payload.next_reminder_at,
            ),
            now,
        )
        values = payload.model_dump(exclude={"next_reminder_at"})
        if values["reminder_frequency"] is None:
            values.pop("reminder_frequency")
        values.update(reminder.as_update())
        values.update(quote_id=quote_id, company_id=company_id)

        task_id = await db.insert_task(values, now)
        created = await db.fetch_task(task_id)
        if created is None:
            raise NotFoundError("Failed to retrieve created task")
        _LOGGER.info("Created task %s for quote %s", task_id, quote_id)
        return created

    async def update_task(self, task_id: int, payload: TaskUpdate) -> Task:
        _require_id(task_id, "task")
        existing = await db.fetch_task(task_id)
        if existing is None:
            raise NotFoundError(f"Task {task_id} not found")

        changes = {
            k: v for k, v in payload.model_dump(exclude_unset=True).items()
            if v is not None or k not in _NOT_NULL
        }
        if _SCHEDULE_FIELDS & changes.keys():
            if existing.reminder_status == reminder_state.PROCESSING:
                raise ReminderInFlightError(
                    f"Reminder for task {task_id} is being sent; retry shortly"
                )

            def _pick(field):
                value = changes.get(field)
                return value if value is not None else getattr(existing, field)

            reminder = prepare_reminder_fields(
                ReminderOptions(
                    reminder_enabled=_pick("reminder_enabled"),
                    reminder_frequency=_pick("reminder_frequency"),
                    due_at=_pick("due_at"),
                    next_reminder_at=_pick("next_reminder_at"),
                ),
                self.clock.now(),
            )
            changes.pop("next_reminder_at", None)
        else:
            reminder = None

        if "title" in changes and not (changes["title"] or "").strip():
            raise ValidationError("Task title is required")

        await db.update_task(task_id, changes, self.clock.now(), reminder=reminder)
        updated = await db.fetch_task(task_id)
        if updated is None:
            raise NotFoundError(f"Task {task_id} not found")
        return updated

    async def get_task(self, task_id: int) -> Task:
        _require_id(task_id, "task")
        task = await db.fetch_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    async def list_tasks(self, quote_id: int, filters: Optional[TaskFilters] = None) -> List[Task]:
        _require_id(quote_id, "quote")
        return await db.list_tasks_by_quote(quote_id, filters or TaskFilters(), self.clock.now())

    async def delete_task(self, task_id: int) -> None:
        _require_id(task_id, "task")
        if not await db.delete_task(task_id):
            raise NotFoundError(f"Task {task_id} not found")
        _LOGGER.info("Deleted task %s", task_id)

    async def get_reminder_logs(self, task_id: int, limit: Optional[int] = None) -> List[ReminderLog]:
        _require_id(task_id, "task")
        limit = limit or self.log_limit
        if limit < 1:
            raise ValidationError("limit must be positive")
        return await db.fetch_reminder_logs(task_id, limit)

    async def get_progress_summary(self, quote_id: int) -> ProgressSummary:
        _require_id(quote_id, "quote")
        return await db.progress_summary(quote_id, self.clock.now())
