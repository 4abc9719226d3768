"""Legal ``reminder_status`` transitions.

Every writer of ``reminder_status`` goes through :func:`transition`, so an
edge that is not listed here (``sent -> sent``, ``pending -> sent`` without a
claim, a second claim on a task already in flight) cannot be persisted.
"""

from __future__ import annotations

from typing import Dict, FrozenSet

from app.errors import InvalidReminderTransition

PENDING = "pending"
SENT = "sent"
FAILED = "failed"
SNOOZED = "snoozed"
PROCESSING = "processing"

_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({PROCESSING, PENDING}),
    SNOOZED: frozenset({PROCESSING, PENDING}),
    PROCESSING: frozenset({PENDING, SENT, FAILED}),
    SENT: frozenset({PROCESSING, PENDING}),
    FAILED: frozenset({PROCESSING, PENDING}),
}

# Picked up by the periodic due-reminder scan.
DUE_STATUSES: FrozenSet[str] = frozenset({PENDING, SNOOZED})
# A manual trigger may claim anything that is not already in flight.
TRIGGERABLE_STATUSES: FrozenSet[str] = frozenset(
    s for s, targets in _TRANSITIONS.items() if PROCESSING in targets
)


def can_transition(current: str, target: str) -> bool:
    return target in _TRANSITIONS.get(current, frozenset())


def transition(current: str, target: str) -> str:
    if not can_transition(current, target):
        raise InvalidReminderTransition(current, target)
    return target


def outcome_status(next_fire_at) -> str:
    """Status after a successful delivery: back to pending while another
    fire time exists, otherwise the terminal ``sent``."""
    return transition(PROCESSING, PENDING if next_fire_at is not None else SENT)
