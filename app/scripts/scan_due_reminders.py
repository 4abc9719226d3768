from __future__ import annotations

"""Periodic scanner to send due reminders without a Celery worker.
Run via Railway schedule every minute:
    python -m app.scripts.scan_due_reminders [channel] [limit]
"""

import asyncio
import sys

from app.workers.reminder import release_claims, run_due_batch
from config import settings
import db


async def main(channel: str, limit: int) -> None:
    try:
        released = await release_claims()
        if released:
            print(f"[CRON] scan_due_reminders: released {released} stale claims")
        result = await run_due_batch(channel, limit)
        print(f"[CRON] scan_due_reminders: processed {result['processed']} {channel} reminders")
    finally:
        await db.dispose_engine()


if __name__ == "__main__":  # pragma: no cover
    channel = sys.argv[1] if len(sys.argv) > 1 else settings.REMINDER_DEFAULT_CHANNEL
    limit = int(sys.argv[2]) if len(sys.argv) > 2 else settings.REMINDER_BATCH_LIMIT
    print("[CRON] scan_due_reminders: job started")
    try:
        asyncio.run(main(channel, limit))
        print("[CRON] scan_due_reminders: job completed successfully")
    except Exception as e:
        print(f"[CRON] scan_due_reminders: job failed: {e}")
        sys.exit(1)
