import pytest
from datetime import datetime, timedelta, timezone
from pydantic import ValidationError

from app.types.task_contract import Task, TaskFilters, TaskUpdate, ReminderLogCreate


def test_update_rejects_reminder_state_fields():
    with pytest.raises(ValidationError):
        TaskUpdate(reminder_status="sent")
    with pytest.raises(ValidationError):
        TaskUpdate(reminder_error="boom")


def test_naive_datetimes_are_treated_as_utc():
    task = Task(id=1, quote_id=2, company_id=3, title="x", due_at=datetime(2026, 1, 1, 12, 0))
    assert task.due_at.tzinfo == timezone.utc
    assert task.due_at.hour == 12


def test_offset_datetimes_are_normalised_to_utc():
    plus_two = timezone(timedelta(hours=2))
    upd = TaskUpdate(due_at=datetime(2026, 1, 1, 12, 0, tzinfo=plus_two))
    assert upd.due_at == datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert upd.due_at.utcoffset() == timedelta(0)


def test_blank_search_is_dropped():
    assert TaskFilters(search="   ").search is None
    assert TaskFilters(search=" tile ").search == "tile"


def test_log_status_excludes_processing():
    with pytest.raises(ValidationError):
        ReminderLogCreate(task_id=1, status="processing", sent_at=datetime.now(timezone.utc))
