"""Pydantic models shared by the reminder core, the workers and the HTTP layer.

These classes stay framework-agnostic so the scheduler, dispatcher and tests
can use them without pulling in FastAPI or the database session.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.utils.clock import to_utc_aware

TaskStatus = Literal["pending", "in_progress", "completed", "blocked"]
TaskPriority = Literal["low", "medium", "high"]
ReminderChannel = Literal["whatsapp", "email", "none"]
ReminderFrequency = Literal["once", "daily", "weekly", "before_due"]
# "processing" is the claim state held while a dispatcher owns the task.
ReminderStatus = Literal["pending", "sent", "failed", "snoozed", "processing"]
LogStatus = Literal["pending", "sent", "failed", "snoozed"]
Direction = Literal["outbound", "inbound"]

REMINDER_CHANNELS: tuple[str, ...] = ("whatsapp", "email", "none")


def _aware(v: Optional[datetime]) -> Optional[datetime]:
    return to_utc_aware(v) if v is not None else None


# ──────────────────────────────
# Tasks
# ──────────────────────────────


class Task(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quote_id: int
    company_id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus = "pending"
    priority: TaskPriority = "medium"
    due_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    assigned_phone: Optional[str] = None
    reminder_enabled: bool = False
    reminder_channel: ReminderChannel = "whatsapp"
    reminder_frequency: ReminderFrequency = "once"
    next_reminder_at: Optional[datetime] = None
    reminder_status: ReminderStatus = "pending"
    reminder_error: Optional[str] = None
    reminder_claimed_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator(
        "due_at", "next_reminder_at", "reminder_claimed_at", "created_at", "updated_at"
    )
    def _utc(cls, v):  # noqa: N805
        return _aware(v)


class TaskCreate(BaseModel):
    """Fields a caller may set when creating a task under a quote."""

    model_config = ConfigDict(extra="forbid")

    title: str = ""
    description: Optional[str] = None
    status: TaskStatus = "pending"
    priority: TaskPriority = "medium"
    due_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    assigned_phone: Optional[str] = None
    reminder_enabled: bool = False
    reminder_channel: ReminderChannel = "whatsapp"
    reminder_frequency: Optional[ReminderFrequency] = None
    next_reminder_at: Optional[datetime] = None
    created_by: Optional[str] = None

    @field_validator("due_at", "next_reminder_at")
    def _utc(cls, v):  # noqa: N805
        return _aware(v)


class TaskCreateRequest(TaskCreate):
    company_id: int


class TaskUpdate(BaseModel):
    """Partial update. Reminder state fields are deliberately absent: they are
    only written by the scheduler, the dispatcher and the reply interpreter."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    assigned_phone: Optional[str] = None
    reminder_enabled: Optional[bool] = None
    reminder_channel: Optional[ReminderChannel] = None
    reminder_frequency: Optional[ReminderFrequency] = None
    next_reminder_at: Optional[datetime] = None

    @field_validator("due_at", "next_reminder_at")
    def _utc(cls, v):  # noqa: N805
        return _aware(v)


class TaskFilters(BaseModel):
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    search: Optional[str] = None
    overdue_only: bool = False

    @field_validator("search")
    def _strip_search(cls, v):  # noqa: N805
        if v is None:
            return None
        return v.strip() or None


class ProgressSummary(BaseModel):
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    overdue: int = 0
    percent_complete: int = 0


# ──────────────────────────────
# Reminder scheduling
# ──────────────────────────────


class ReminderOptions(BaseModel):
    """Inputs the scheduler needs; a subset of ``Task``."""

    reminder_enabled: bool = False
    reminder_frequency: Optional[ReminderFrequency] = None
    due_at: Optional[datetime] = None
    next_reminder_at: Optional[datetime] = None

    @field_validator("due_at", "next_reminder_at")
    def _utc(cls, v):  # noqa: N805
        return _aware(v)


class ReminderFields(BaseModel):
    reminder_enabled: bool
    reminder_status: ReminderStatus = "pending"
    reminder_error: Optional[str] = None
    reminder_frequency: Optional[ReminderFrequency] = None
    next_reminder_at: Optional[datetime] = None

    def as_update(self) -> Dict[str, Any]:
        """Column values to persist; frequency is left alone when unset."""
        values = self.model_dump()
        if values["reminder_frequency"] is None:
            values.pop("reminder_frequency")
        return values


# ──────────────────────────────
# Audit log
# ──────────────────────────────


class ReminderLogCreate(BaseModel):
    task_id: int
    channel: ReminderChannel = "whatsapp"
    status: LogStatus
    message_body: Optional[str] = None
    provider_message_id: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    direction: Direction = "outbound"
    reply_from: Optional[str] = None
    sent_at: datetime

    @field_validator("sent_at")
    def _utc(cls, v):  # noqa: N805
        return _aware(v)


class ReminderLog(ReminderLogCreate):
    id: int
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    def _utc_created(cls, v):  # noqa: N805
        return _aware(v)


# ──────────────────────────────
# Delivery + dispatch results
# ──────────────────────────────


class DeliveryReceipt(BaseModel):
    provider_message_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class DispatchResult(BaseModel):
    channel: str
    processed: int = 0


class ReminderJob(BaseModel):
    job_id: str
    channel: ReminderChannel
    limit: int


class InboundReply(BaseModel):
    """A reply extracted from a provider webhook event."""

    task_id: int
    message: str = ""
    reply_from: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class ReplyResult(BaseModel):
    task_id: int
    log_id: int
    classified_status: Optional[TaskStatus] = None
    status_changed: bool = False
