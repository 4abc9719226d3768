"""Exceptions raised by the reminder core.

Single-task operations let these propagate to the caller; the batch
dispatcher catches ``DeliveryError`` per task and records it instead.
"""


class ReminderError(Exception):
    pass


class ValidationError(ReminderError):
    """Bad input or an operation that is not allowed for the task's state."""


class ReminderInFlightError(ValidationError):
    """Another dispatcher currently holds the claim on this task."""


class NotFoundError(ReminderError):
    pass


class DeliveryError(ReminderError):
    """The notifier could not deliver a message."""


class UnsupportedChannelError(DeliveryError):
    pass


class InvalidReminderTransition(ReminderError):
    def __init__(self, current: str, target: str):
        super().__init__(f"reminder_status cannot move from '{current}' to '{target}'")
        self.current = current
        self.target = target
