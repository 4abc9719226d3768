import asyncio
from datetime import datetime, timedelta, timezone

import db
from app.services.notifier import Notifier
from app.workers import reminder as reminder_worker
from tests.conftest import RecordingSender


def _use_sqlite(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/worker.db")

    async def _setup():
        await db.dispose_engine()
        await db.create_all()
        await db.dispose_engine()

    asyncio.run(_setup())


def _insert(**values):
    async def _go():
        task_id = await db.insert_task(values, datetime.now(timezone.utc))
        await db.dispose_engine()
        return task_id

    return asyncio.run(_go())


def _fetch(task_id):
    async def _go():
        task = await db.fetch_task(task_id)
        await db.dispose_engine()
        return task

    return asyncio.run(_go())


def test_process_due_task_runs_a_batch(tmp_path, monkeypatch):
    _use_sqlite(tmp_path, monkeypatch)
    sender = RecordingSender()
    monkeypatch.setattr(reminder_worker, "build_default_notifier", lambda: Notifier({"whatsapp": sender}))

    task_id = _insert(
        quote_id=5, company_id=1, title="Send invoice", assigned_phone="+15550009",
        reminder_enabled=True, reminder_frequency="weekly",
        next_reminder_at=datetime.now(timezone.utc) - timedelta(minutes=2),
    )

    result = reminder_worker.process_due.apply(kwargs={"channel": "whatsapp", "limit": 10}).get()
    assert result == {"channel": "whatsapp", "processed": 1}
    assert sender.sent[0][0] == "+15550009"
    assert _fetch(task_id).reminder_status == "pending"


def test_release_stale_claims_task(tmp_path, monkeypatch):
    _use_sqlite(tmp_path, monkeypatch)
    long_ago = datetime.now(timezone.utc) - timedelta(hours=2)
    task_id = _insert(
        quote_id=5, company_id=1, title="Stuck", reminder_enabled=True,
        reminder_status="processing", reminder_claimed_at=long_ago,
    )

    assert reminder_worker.release_stale_claims.apply().get() == 1
    assert _fetch(task_id).reminder_status == "pending"
