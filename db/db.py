"""
Async DB helpers for tasks and their reminder audit log.
Uses SQLAlchemy 2.0 + asyncpg driver – no raw SQL strings in app code.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Iterable, Optional

from sqlalchemy import (
    Boolean, DateTime, Index, Integer, JSON, String, Text, TypeDecorator,
    and_, case, delete, func, or_, select, update,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.ext.asyncio import (
    create_async_engine, async_sessionmaker, AsyncSession
)

from app.services import reminder_state
from app.types.task_contract import (
    ProgressSummary, ReminderFields, ReminderLog, ReminderLogCreate, Task, TaskFilters,
)

# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass


class UTCDateTime(TypeDecorator):
    """TIMESTAMPTZ that always hands back UTC-aware datetimes.

    SQLite drops the offset on write, so naive values read back are UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith(("postgres://", "postgresql://")):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url

def get_engine():
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("sqlite"):
            _engine = create_async_engine(url)
        else:
            _engine = create_async_engine(url, pool_size=5, max_overflow=5)
    return _engine

def get_session() -> AsyncGenerator[AsyncSession, None]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async def _session_scope():
        async with _session_maker() as session:
            yield session
    return _session_scope()

# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────

class TaskRow(Base):
    __tablename__ = "tasks"

    id:                  Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quote_id:            Mapped[int] = mapped_column(Integer, index=True)
    company_id:          Mapped[int] = mapped_column(Integer, index=True)
    title:               Mapped[str] = mapped_column(String(255))
    description:         Mapped[str | None] = mapped_column(Text)
    status:              Mapped[str] = mapped_column(String(20), default="pending")
    priority:            Mapped[str] = mapped_column(String(10), default="medium")
    due_at:              Mapped[datetime | None] = mapped_column(UTCDateTime())
    assigned_to:         Mapped[str | None] = mapped_column(String(255))
    assigned_phone:      Mapped[str | None] = mapped_column(String(32))
    reminder_enabled:    Mapped[bool] = mapped_column(Boolean, default=False)
    reminder_channel:    Mapped[str] = mapped_column(String(16), default="whatsapp")
    reminder_frequency:  Mapped[str] = mapped_column(String(16), default="once")
    next_reminder_at:    Mapped[datetime | None] = mapped_column(UTCDateTime())
    reminder_status:     Mapped[str] = mapped_column(String(16), default="pending")
    reminder_error:      Mapped[str | None] = mapped_column(Text)
    reminder_claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    created_by:          Mapped[str | None] = mapped_column(String(255))
    created_at:          Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now())
    updated_at:          Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now())

    __table_args__ = (
        Index(
            "ix_tasks_due_reminders",
            "reminder_enabled", "reminder_channel", "reminder_status", "next_reminder_at",
        ),
    )


class ReminderLogRow(Base):
    """Append-only. ``task_id`` has no FK so logs outlive deleted tasks."""

    __tablename__ = "task_reminder_logs"

    id:                  Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id:             Mapped[int] = mapped_column(Integer, index=True)
    channel:             Mapped[str] = mapped_column(String(16), default="whatsapp")
    status:              Mapped[str] = mapped_column(String(16))
    message_body:        Mapped[str | None] = mapped_column(Text)
    provider_message_id: Mapped[str | None] = mapped_column(String(255))
    error_message:       Mapped[str | None] = mapped_column(Text)
    # "metadata" is reserved on declarative classes
    log_metadata:        Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)
    direction:           Mapped[str] = mapped_column(String(10), default="outbound")
    reply_from:          Mapped[str | None] = mapped_column(String(64))
    sent_at:             Mapped[datetime] = mapped_column(UTCDateTime())
    created_at:          Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now())


# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (tests / local dev; production uses Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 5. Task helpers
# ──────────────────────────────────────────────────────────────────────

# Columns a caller may change through update_task. reminder_status and
# reminder_error are only written via ReminderFields or the dispatch helpers.
UPDATABLE_FIELDS = frozenset({
    "title", "description", "status", "priority", "due_at", "assigned_to",
    "assigned_phone", "reminder_enabled", "reminder_channel", "reminder_frequency",
    "next_reminder_at",
})

# 5.1 Create / read ---------------------------------------------------
async def insert_task(values: dict, now: datetime) -> int:
    row = TaskRow(**values, created_at=now, updated_at=now)
    async for s in get_session():
        s.add(row)
        await s.commit()
    return row.id


async def fetch_task(task_id: int) -> Task | None:
    async for s in get_session():
        row = await s.get(TaskRow, task_id)
        return Task.model_validate(row) if row else None


async def list_tasks_by_quote(quote_id: int, filters: TaskFilters, now: datetime) -> list[Task]:
    async for s in get_session():
        stmt = select(TaskRow).where(TaskRow.quote_id == quote_id)

        if filters.status:
            stmt = stmt.where(TaskRow.status == filters.status)
        if filters.priority:
            stmt = stmt.where(TaskRow.priority == filters.priority)
        if filters.search:
            term = f"%{filters.search.lower()}%"
            stmt = stmt.where(or_(
                func.lower(TaskRow.title).like(term),
                func.lower(func.coalesce(TaskRow.description, "")).like(term),
                func.lower(func.coalesce(TaskRow.assigned_to, "")).like(term),
            ))
        if filters.overdue_only:
            stmt = stmt.where(
                TaskRow.due_at.is_not(None),
                TaskRow.due_at < now,
                TaskRow.status != "completed",
            )

        stmt = stmt.order_by(
            TaskRow.due_at.is_(None), TaskRow.due_at.asc(), TaskRow.created_at.desc()
        )
        res = await s.execute(stmt)
        return [Task.model_validate(r) for r in res.scalars()]


# 5.2 Update / delete -------------------------------------------------
async def update_task(
    task_id: int, fields: dict, now: datetime, reminder: Optional[ReminderFields] = None
) -> bool:
    """Apply whitelisted *fields*; a recomputed *reminder* schedule wins over them."""
    values = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
    if reminder is not None:
        values.update(reminder.as_update())
    if not values:
        return True
    async for s in get_session():
        res = await s.execute(
            update(TaskRow)
            .where(TaskRow.id == task_id)
            .values(**values, updated_at=now)
        )
        await s.commit()
        return res.rowcount > 0


async def delete_task(task_id: int) -> bool:
    async for s in get_session():
        res = await s.execute(delete(TaskRow).where(TaskRow.id == task_id))
        await s.commit()
        return res.rowcount > 0


# 5.3 Progress summary ------------------------------------------------
async def progress_summary(quote_id: int, now: datetime) -> ProgressSummary:
    def _count_when(*conditions):
        return func.coalesce(func.sum(case((and_(*conditions), 1), else_=0)), 0)

    async for s in get_session():
        stmt = select(
            func.count(TaskRow.id),
            _count_when(TaskRow.status == "completed"),
            _count_when(TaskRow.status == "in_progress"),
            _count_when(TaskRow.status == "pending"),
            _count_when(
                TaskRow.due_at.is_not(None), TaskRow.due_at < now, TaskRow.status != "completed"
            ),
        ).where(TaskRow.quote_id == quote_id)
        total, completed, in_progress, pending, overdue = (await s.execute(stmt)).one()

    total = int(total or 0)
    completed = int(completed or 0)
    # round-half-up, not banker's rounding
    percent = 0 if total == 0 else int(completed * 100 / total + 0.5)
    return ProgressSummary(
        total=total,
        completed=completed,
        in_progress=int(in_progress or 0),
        pending=int(pending or 0),
        overdue=int(overdue or 0),
        percent_complete=percent,
    )


# ──────────────────────────────────────────────────────────────────────
# 6. Reminder dispatch helpers
# ──────────────────────────────────────────────────────────────────────

# 6.1 Due query -------------------------------------------------------
async def fetch_due_reminders(channel: str, limit: int, now: datetime) -> list[Task]:
    async for s in get_session():
        stmt = (
            select(TaskRow)
            .where(
                TaskRow.reminder_enabled.is_(True),
                TaskRow.reminder_channel == channel,
                TaskRow.reminder_status.in_(sorted(reminder_state.DUE_STATUSES)),
                TaskRow.next_reminder_at.is_not(None),
                TaskRow.next_reminder_at <= now,
            )
            .order_by(TaskRow.next_reminder_at.asc())
            .limit(limit)
        )
        res = await s.execute(stmt)
        return [Task.model_validate(r) for r in res.scalars()]


# 6.2 Claim -----------------------------------------------------------
async def claim_task(task_id: int, from_statuses: Iterable[str], now: datetime) -> Task | None:
    """Compare-and-set the task into ``processing``.

    Only succeeds while the row is still in one of *from_statuses*; concurrent
    dispatchers racing for the same row get ``None``.
    """
    async for s in get_session():
        res = await s.execute(
            update(TaskRow)
            .where(
                TaskRow.id == task_id,
                TaskRow.reminder_enabled.is_(True),
                TaskRow.reminder_status.in_(sorted(from_statuses)),
            )
            .values(
                reminder_status=reminder_state.PROCESSING,
                reminder_claimed_at=now,
                updated_at=now,
            )
        )
        await s.commit()
        if res.rowcount != 1:
            return None
        row = await s.get(TaskRow, task_id, populate_existing=True)
        return Task.model_validate(row) if row else None


async def release_stale_claims(cutoff: datetime, now: datetime) -> int:
    """Return claims older than *cutoff* to ``pending`` (crashed workers)."""
    async for s in get_session():
        res = await s.execute(
            update(TaskRow)
            .where(
                TaskRow.reminder_status == reminder_state.PROCESSING,
                or_(TaskRow.reminder_claimed_at.is_(None), TaskRow.reminder_claimed_at < cutoff),
            )
            .values(
                reminder_status=reminder_state.transition(
                    reminder_state.PROCESSING, reminder_state.PENDING
                ),
                reminder_claimed_at=None,
                updated_at=now,
            )
        )
        await s.commit()
        return res.rowcount


# 6.3 Outcome ---------------------------------------------------------
def _log_row(entry: ReminderLogCreate) -> ReminderLogRow:
    return ReminderLogRow(
        task_id=entry.task_id,
        channel=entry.channel,
        status=entry.status,
        message_body=entry.message_body,
        provider_message_id=entry.provider_message_id,
        error_message=entry.error_message,
        log_metadata=entry.metadata,
        direction=entry.direction,
        reply_from=entry.reply_from,
        sent_at=entry.sent_at,
    )


async def record_reminder_outcome(
    task_id: int, fields: dict, entry: ReminderLogCreate, now: datetime
) -> tuple[int, bool]:
    """Persist the post-send task state and its log row in one transaction.

    The state update only applies while this dispatcher still holds the claim.
    Returns ``(log_id, state_updated)``.
    """
    log = _log_row(entry)
    async for s in get_session():
        async with s.begin():
            res = await s.execute(
                update(TaskRow)
                .where(
                    TaskRow.id == task_id,
                    TaskRow.reminder_status == reminder_state.PROCESSING,
                )
                .values(**fields, reminder_claimed_at=None, updated_at=now)
            )
            s.add(log)
        return log.id, res.rowcount > 0


async def record_reply(
    task_id: int, entry: ReminderLogCreate, new_status: Optional[str], now: datetime
) -> int:
    """Append an inbound log row and, if given, set the task's work status."""
    log = _log_row(entry)
    async for s in get_session():
        async with s.begin():
            s.add(log)
            if new_status is not None:
                await s.execute(
                    update(TaskRow)
                    .where(TaskRow.id == task_id)
                    .values(status=new_status, updated_at=now)
                )
        return log.id


# ──────────────────────────────────────────────────────────────────────
# 7. Reminder log helpers (append-only)
# ──────────────────────────────────────────────────────────────────────
def _log_from_row(row: ReminderLogRow) -> ReminderLog:
    return ReminderLog(
        id=row.id,
        task_id=row.task_id,
        channel=row.channel,
        status=row.status,
        message_body=row.message_body,
        provider_message_id=row.provider_message_id,
        error_message=row.error_message,
        metadata=row.log_metadata or {},
        direction=row.direction,
        reply_from=row.reply_from,
        sent_at=row.sent_at,
        created_at=row.created_at,
    )


async def insert_reminder_log(entry: ReminderLogCreate) -> int:
    log = _log_row(entry)
    async for s in get_session():
        s.add(log)
        await s.commit()
    return log.id


async def fetch_reminder_logs(task_id: int, limit: int = 50) -> list[ReminderLog]:
    async for s in get_session():
        stmt = (
            select(ReminderLogRow)
            .where(ReminderLogRow.task_id == task_id)
            .order_by(ReminderLogRow.sent_at.desc(), ReminderLogRow.id.desc())
            .limit(limit)
        )
        res = await s.execute(stmt)
        return [_log_from_row(r) for r in res.scalars()]


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
    _session_maker = None
