"""Due-reminder batch runs and manual single-task triggers.

Each task goes through the same steps: claim it, build the message, send it
under a timeout, then write the task's new reminder state together with the
audit log row. Failures of one task never stop the rest of the batch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import db
from app import metrics
from app.errors import (
    DeliveryError,
    NotFoundError,
    ReminderInFlightError,
    ValidationError,
)
from app.services import reminder_state
from app.services.notifier import Notifier
from app.services.scheduler import compute_next_after_delivery
from app.types.task_contract import (
    REMINDER_CHANNELS,
    DeliveryReceipt,
    DispatchResult,
    ReminderLogCreate,
    Task,
)
from app.utils.clock import Clock, SystemClock

_LOGGER = logging.getLogger(__name__)

MAX_BATCH_LIMIT = 1000


def build_message(task: Task) -> str:
    if task.due_at is not None:
        due_text = f"Due: {task.due_at.strftime('%Y-%m-%d %H:%M UTC')}"
    else:
        due_text = "Due date not set"
    return f'Task "{task.title}" for Quote #{task.quote_id}. {due_text}. Status: {task.status}'


def _log_metadata(task: Task, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "quote_id": task.quote_id,
        "company_id": task.company_id,
        "assigned_to": task.assigned_to,
        "assigned_phone": task.assigned_phone,
        "provider_payload": payload,
    }


class ReminderDispatcher:
    def __init__(
        self,
        notifier: Notifier,
        clock: Optional[Clock] = None,
        send_timeout: float = 15.0,
        batch_budget: Optional[float] = None,
    ):
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.send_timeout = send_timeout
        self.batch_budget = batch_budget

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------
    async def process_due(self, channel: str = "whatsapp", limit: int = 100) -> DispatchResult:
        if channel not in REMINDER_CHANNELS:
            raise ValidationError(f"Unknown reminder channel '{channel}'")
        if limit < 1 or limit > MAX_BATCH_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_BATCH_LIMIT}")
        if channel == "none":
            return DispatchResult(channel=channel, processed=0)

        metrics.reminder_batches_total.labels(channel=channel).inc()
        started = time.monotonic()
        due = await db.fetch_due_reminders(channel, limit, self.clock.now())
        _LOGGER.info("Found %d due %s reminders", len(due), channel)

        processed = 0
        for index, candidate in enumerate(due):
            if self.batch_budget is not None and time.monotonic() - started >= self.batch_budget:
                _LOGGER.warning(
                    "Batch budget of %.0fs spent; %d due reminders left for the next run",
                    self.batch_budget, len(due) - index,
                )
                break
            try:
                task = await db.claim_task(
                    candidate.id, reminder_state.DUE_STATUSES, self.clock.now()
                )
                if task is None:
                    metrics.reminders_claim_skipped_total.inc()
                    _LOGGER.info("Task %s already claimed by another run", candidate.id)
                    continue
                processed += 1
                await self._deliver(task)
            except DeliveryError:
                # already persisted as a failed attempt
                continue
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Reminder for task %s could not be processed", candidate.id)

        return DispatchResult(channel=channel, processed=processed)

    # ------------------------------------------------------------------
    # Single task
    # ------------------------------------------------------------------
    async def trigger_one(self, task_id: int) -> Task:
        """Send one task's reminder now, whatever its schedule says.

        Raises ``DeliveryError`` after the failure has been recorded.
        """
        task = await db.fetch_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        if not task.reminder_enabled:
            raise ValidationError("Reminders are disabled for this task")
        if task.reminder_channel == "none":
            raise ValidationError("Task reminder channel is 'none'")
        if task.reminder_status == reminder_state.PROCESSING:
            raise ReminderInFlightError(f"Reminder for task {task_id} is already being sent")

        claimed = await db.claim_task(
            task_id, reminder_state.TRIGGERABLE_STATUSES, self.clock.now()
        )
        if claimed is None:
            raise ReminderInFlightError(f"Reminder for task {task_id} is already being sent")

        await self._deliver(claimed)
        return await db.fetch_task(task_id)

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------
    async def _send(self, task: Task, message: str) -> DeliveryReceipt:
        try:
            return await asyncio.wait_for(
                self.notifier.send(task.reminder_channel, task.assigned_phone, message),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise DeliveryError(
                f"Notifier timed out after {self.send_timeout:g}s"
            ) from exc
        except DeliveryError:
            raise
        except Exception as exc:  # noqa: BLE001
            # CancelledError is a BaseException and still propagates
            raise DeliveryError(f"{exc!r}") from exc

    async def _deliver(self, task: Task) -> None:
        message = build_message(task)
        try:
            receipt = await self._send(task, message)
        except DeliveryError as exc:
            await self._record_failure(task, message, exc)
            raise
        await self._record_success(task, message, receipt)

    async def _record_success(self, task: Task, message: str, receipt: DeliveryReceipt) -> None:
        now = self.clock.now()
        next_fire = compute_next_after_delivery(task, now)
        fields = {
            "reminder_status": reminder_state.outcome_status(next_fire),
            "reminder_error": None,
            "next_reminder_at": next_fire,
        }
        entry = ReminderLogCreate(
            task_id=task.id,
            channel=task.reminder_channel,
            status="sent",
            message_body=message,
            provider_message_id=receipt.provider_message_id,
            metadata=_log_metadata(task, receipt.payload),
            sent_at=now,
        )
        _, updated = await db.record_reminder_outcome(task.id, fields, entry, now)
        if not updated:
            _LOGGER.warning("Claim on task %s was released before its outcome was saved", task.id)
        metrics.reminders_sent_total.labels(channel=task.reminder_channel).inc()
        _LOGGER.info("Reminder sent for task %s (next: %s)", task.id, next_fire)

    async def _record_failure(self, task: Task, message: str, exc: DeliveryError) -> None:
        now = self.clock.now()
        error = str(exc) or exc.__class__.__name__
        fields = {
            "reminder_status": reminder_state.transition(
                reminder_state.PROCESSING, reminder_state.FAILED
            ),
            "reminder_error": error,
        }
        entry = ReminderLogCreate(
            task_id=task.id,
            channel=task.reminder_channel,
            status="failed",
            message_body=message,
            error_message=error,
            metadata=_log_metadata(task),
            sent_at=now,
        )
        await db.record_reminder_outcome(task.id, fields, entry, now)
        metrics.reminders_failed_total.labels(channel=task.reminder_channel).inc()
        _LOGGER.warning("Reminder for task %s failed: %s", task.id, error)
