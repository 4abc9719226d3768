import pytest
import pytest_asyncio
from datetime import datetime, timezone

import db
from app.errors import DeliveryError
from app.services.notifier import Notifier
from app.types.task_contract import DeliveryReceipt
from app.utils.clock import FixedClock

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class RecordingSender:
    """In-memory WhatsApp stand-in; fails for numbers listed in ``fail_for``."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def __call__(self, to, body):
        if to in self.fail_for:
            raise DeliveryError(f"provider rejected {to}")
        self.sent.append((to, body))
        return DeliveryReceipt(provider_message_id=f"wamid.{len(self.sent)}", payload={"to": to})


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def notifier(sender):
    return Notifier({"whatsapp": sender})


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/reminders.db")
    await db.dispose_engine()
    await db.create_all()
    yield
    await db.dispose_engine()


@pytest.fixture
def make_task(database, clock):
    """Insert a task row directly, bypassing the service's reminder preparation."""

    async def _make(**overrides):
        values = {
            "quote_id": 10,
            "company_id": 1,
            "title": "Order tiles",
            "assigned_phone": "+15550001",
        }
        values.update(overrides)
        task_id = await db.insert_task(values, clock.now())
        return await db.fetch_task(task_id)

    return _make
