import asyncio
import pytest
from datetime import timedelta

import db
from app.errors import DeliveryError, NotFoundError, ReminderInFlightError, ValidationError
from app.services.notifier import Notifier
from app.services.reminder_dispatcher import ReminderDispatcher, build_message
from app.services.task_service import TaskService
from app.types.task_contract import Task, TaskCreate
from tests.conftest import RecordingSender


def _due(clock, **kw):
    values = {
        "reminder_enabled": True,
        "reminder_frequency": "daily",
        "next_reminder_at": clock.now() - timedelta(minutes=1),
    }
    values.update(kw)
    return values


@pytest.fixture
def dispatcher(notifier, clock):
    return ReminderDispatcher(notifier, clock=clock, send_timeout=1.0)


def test_build_message_formats_due_date(clock):
    task = Task(id=1, quote_id=77, company_id=1, title="Order tiles", due_at=clock.now(), status="in_progress")
    assert build_message(task) == 'Task "Order tiles" for Quote #77. Due: 2026-03-02 09:00 UTC. Status: in_progress'
    undated = task.model_copy(update={"due_at": None})
    assert "Due date not set" in build_message(undated)


@pytest.mark.asyncio
async def test_daily_reminder_end_to_end(database, clock, sender, dispatcher):
    service = TaskService(clock=clock)
    task = await service.create_task(
        10, 1, TaskCreate(title="Call supplier", reminder_enabled=True,
                          reminder_frequency="daily", assigned_phone="+15550001")
    )
    clock.advance(timedelta(days=1, minutes=1))

    result = await dispatcher.process_due("whatsapp", 100)
    assert result.processed == 1
    assert sender.sent[0][0] == "+15550001"

    after = await db.fetch_task(task.id)
    assert after.reminder_status == "pending"
    assert after.reminder_error is None
    assert after.next_reminder_at == clock.now() + timedelta(days=1)
    assert after.reminder_claimed_at is None

    logs = await db.fetch_reminder_logs(task.id)
    assert len(logs) == 1
    assert logs[0].status == "sent"
    assert logs[0].direction == "outbound"
    assert logs[0].provider_message_id == "wamid.1"
    assert logs[0].metadata["quote_id"] == 10


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_the_batch(make_task, clock):
    sender = RecordingSender(fail_for={"+1bad"})
    dispatcher = ReminderDispatcher(Notifier({"whatsapp": sender}), clock=clock)
    tasks = [
        await make_task(**_due(clock, assigned_phone="+1a")),
        await make_task(**_due(clock, assigned_phone="+1bad")),
        await make_task(**_due(clock, assigned_phone="+1c")),
    ]

    result = await dispatcher.process_due("whatsapp", 10)
    assert result.processed == 3
    assert len(sender.sent) == 2

    failed = await db.fetch_task(tasks[1].id)
    assert failed.reminder_status == "failed"
    assert "+1bad" in failed.reminder_error
    assert failed.next_reminder_at == tasks[1].next_reminder_at
    [log] = await db.fetch_reminder_logs(failed.id)
    assert log.status == "failed" and log.error_message

    for t in (tasks[0], tasks[2]):
        ok = await db.fetch_task(t.id)
        assert ok.reminder_status == "pending"
        assert ok.next_reminder_at > clock.now()

    # failed reminders are not retried by the scan
    assert (await dispatcher.process_due("whatsapp", 10)).processed == 0


@pytest.mark.asyncio
async def test_once_reminder_becomes_sent_and_stops(make_task, clock, sender, dispatcher):
    task = await make_task(**_due(clock, reminder_frequency="once"))
    assert (await dispatcher.process_due()).processed == 1

    after = await db.fetch_task(task.id)
    assert after.reminder_status == "sent"
    assert after.next_reminder_at is None
    assert (await dispatcher.process_due()).processed == 0
    assert len(sender.sent) == 1


@pytest.mark.asyncio
async def test_only_due_tasks_on_channel_are_picked(make_task, clock, sender, dispatcher):
    await make_task(**_due(clock, next_reminder_at=clock.now() + timedelta(hours=1)))
    await make_task(**_due(clock, reminder_enabled=False))
    await make_task(**_due(clock, reminder_channel="email"))
    snoozed = await make_task(**_due(clock, reminder_status="snoozed"))

    result = await dispatcher.process_due("whatsapp", 10)
    assert result.processed == 1
    assert (await db.fetch_task(snoozed.id)).reminder_status == "pending"


@pytest.mark.asyncio
async def test_limit_takes_oldest_first(make_task, clock, sender, dispatcher):
    newer = await make_task(**_due(clock, assigned_phone="+1new", next_reminder_at=clock.now() - timedelta(minutes=1)))
    older = await make_task(**_due(clock, assigned_phone="+1old", next_reminder_at=clock.now() - timedelta(hours=2)))

    assert (await dispatcher.process_due("whatsapp", 1)).processed == 1
    assert sender.sent[0][0] == "+1old"
    assert (await db.fetch_task(newer.id)).reminder_status == "pending"
    assert (await db.fetch_task(older.id)).next_reminder_at > clock.now()


@pytest.mark.asyncio
async def test_claim_is_won_only_once(make_task, clock):
    task = await make_task(**_due(clock))
    first = await db.claim_task(task.id, {"pending", "snoozed"}, clock.now())
    second = await db.claim_task(task.id, {"pending", "snoozed"}, clock.now())
    assert first is not None and first.reminder_status == "processing"
    assert second is None


@pytest.mark.asyncio
async def test_task_claimed_by_another_run_is_skipped(make_task, clock, sender, dispatcher, monkeypatch):
    task = await make_task(**_due(clock))
    snapshot = await db.fetch_due_reminders("whatsapp", 10, clock.now())
    await db.claim_task(task.id, {"pending"}, clock.now())

    async def stale_fetch(channel, limit, now):
        return snapshot

    monkeypatch.setattr(db, "fetch_due_reminders", stale_fetch)

    assert (await dispatcher.process_due()).processed == 0
    assert sender.sent == []


@pytest.mark.asyncio
async def test_channel_none_and_bad_arguments(database, dispatcher):
    assert (await dispatcher.process_due("none", 10)).processed == 0
    with pytest.raises(ValidationError):
        await dispatcher.process_due("pigeon", 10)
    with pytest.raises(ValidationError):
        await dispatcher.process_due("whatsapp", 0)


@pytest.mark.asyncio
async def test_email_has_no_sender_and_is_recorded_failed(make_task, clock, dispatcher):
    task = await make_task(**_due(clock, reminder_channel="email"))
    assert (await dispatcher.process_due("email", 10)).processed == 1

    after = await db.fetch_task(task.id)
    assert after.reminder_status == "failed"
    assert "email" in after.reminder_error


@pytest.mark.asyncio
async def test_missing_phone_is_a_delivery_failure(make_task, clock, dispatcher):
    task = await make_task(**_due(clock, assigned_phone=None))
    await dispatcher.process_due()
    assert (await db.fetch_task(task.id)).reminder_status == "failed"


@pytest.mark.asyncio
async def test_slow_notifier_times_out(make_task, clock):
    async def hang(to, body):
        await asyncio.sleep(5)

    dispatcher = ReminderDispatcher(Notifier({"whatsapp": hang}), clock=clock, send_timeout=0.05)
    task = await make_task(**_due(clock))
    await dispatcher.process_due()

    after = await db.fetch_task(task.id)
    assert after.reminder_status == "failed"
    assert "timed out" in after.reminder_error


@pytest.mark.asyncio
async def test_spent_budget_stops_before_next_task(make_task, clock, sender, notifier):
    await make_task(**_due(clock))
    dispatcher = ReminderDispatcher(notifier, clock=clock, batch_budget=0)
    assert (await dispatcher.process_due()).processed == 0
    assert sender.sent == []


@pytest.mark.asyncio
async def test_trigger_one_sends_regardless_of_schedule(make_task, clock, sender, dispatcher):
    task = await make_task(**_due(clock, reminder_status="failed", reminder_error="old",
                                  next_reminder_at=clock.now() + timedelta(days=3)))
    after = await dispatcher.trigger_one(task.id)
    assert after.reminder_status == "pending"
    assert after.reminder_error is None
    assert len(sender.sent) == 1


@pytest.mark.asyncio
async def test_trigger_one_errors(make_task, clock, dispatcher):
    with pytest.raises(NotFoundError):
        await dispatcher.trigger_one(12345)

    disabled = await make_task(reminder_enabled=False)
    with pytest.raises(ValidationError):
        await dispatcher.trigger_one(disabled.id)

    silent = await make_task(**_due(clock, reminder_channel="none"))
    with pytest.raises(ValidationError):
        await dispatcher.trigger_one(silent.id)

    busy = await make_task(**_due(clock))
    await db.claim_task(busy.id, {"pending"}, clock.now())
    with pytest.raises(ReminderInFlightError):
        await dispatcher.trigger_one(busy.id)


@pytest.mark.asyncio
async def test_trigger_one_persists_then_raises_delivery_error(make_task, clock):
    dispatcher = ReminderDispatcher(Notifier({"whatsapp": RecordingSender(fail_for={"+1bad"})}), clock=clock)
    task = await make_task(**_due(clock, assigned_phone="+1bad"))
    with pytest.raises(DeliveryError):
        await dispatcher.trigger_one(task.id)

    assert (await db.fetch_task(task.id)).reminder_status == "failed"
    [log] = await db.fetch_reminder_logs(task.id)
    assert log.status == "failed"


@pytest.mark.asyncio
async def test_stale_claims_are_released(make_task, clock):
    task = await make_task(**_due(clock))
    await db.claim_task(task.id, {"pending"}, clock.now())
    clock.advance(timedelta(minutes=20))

    released = await db.release_stale_claims(clock.now() - timedelta(minutes=15), clock.now())
    assert released == 1
    after = await db.fetch_task(task.id)
    assert after.reminder_status == "pending"
    assert after.reminder_claimed_at is None


@pytest.mark.asyncio
async def test_unexpected_sender_error_is_recorded_as_failure(make_task, clock):
    async def broken(to, body):
        raise RuntimeError("sdk blew up")

    dispatcher = ReminderDispatcher(Notifier({"whatsapp": broken}), clock=clock)
    task = await make_task(**_due(clock))

    assert (await dispatcher.process_due()).processed == 1

    after = await db.fetch_task(task.id)
    assert after.reminder_status == "failed"
    assert "sdk blew up" in after.reminder_error
    assert after.reminder_claimed_at is None
    [log] = await db.fetch_reminder_logs(task.id)
    assert log.status == "failed"
    assert "RuntimeError" in log.error_message


@pytest.mark.asyncio
async def test_trigger_one_wraps_unexpected_sender_error(make_task, clock):
    async def broken(to, body):
        raise KeyError("messages")

    dispatcher = ReminderDispatcher(Notifier({"whatsapp": broken}), clock=clock)
    task = await make_task(**_due(clock))

    with pytest.raises(DeliveryError):
        await dispatcher.trigger_one(task.id)
    assert (await db.fetch_task(task.id)).reminder_status == "failed"
