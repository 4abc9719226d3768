from .db import (
    Base,
    TaskRow,
    ReminderLogRow,
    get_engine,
    get_session,
    create_all,
    dispose_engine,
    insert_task,
    fetch_task,
    list_tasks_by_quote,
    update_task,
    delete_task,
    progress_summary,
    fetch_due_reminders,
    claim_task,
    release_stale_claims,
    record_reminder_outcome,
    record_reply,
    insert_reminder_log,
    fetch_reminder_logs,
)  # noqa: F401
