from prometheus_client import Counter


reminders_sent_total = Counter(
    "task_reminders_sent_total",
    "Total reminders delivered",
    ["channel"],
)

reminders_failed_total = Counter(
    "task_reminders_failed_total",
    "Total reminder deliveries that failed",
    ["channel"],
)

reminders_claim_skipped_total = Counter(
    "task_reminders_claim_skipped_total",
    "Due reminders skipped because another run claimed them first",
)

reminder_batches_total = Counter(
    "task_reminder_batches_total",
    "Total due-reminder batch runs",
    ["channel"],
)

reminder_replies_total = Counter(
    "task_reminder_replies_total",
    "Total inbound replies recorded",
    ["classified"],
)

stale_claims_released_total = Counter(
    "task_reminder_stale_claims_released_total",
    "Total stuck claims returned to pending",
)
