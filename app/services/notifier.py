"""Channel router for outbound reminder messages."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional

from app.errors import DeliveryError, UnsupportedChannelError
from app.types.task_contract import DeliveryReceipt

_LOGGER = logging.getLogger(__name__)

# (destination, message) -> receipt; raises DeliveryError on failure.
Sender = Callable[[str, str], Awaitable[DeliveryReceipt]]


class Notifier:
    def __init__(self, senders: Optional[Dict[str, Sender]] = None):
        self._senders: Dict[str, Sender] = dict(senders or {})

    def register(self, channel: str, sender: Sender) -> None:
        self._senders[channel] = sender

    def supports(self, channel: str) -> bool:
        return channel in self._senders

    async def send(self, channel: str, destination: Optional[str], message: str) -> DeliveryReceipt:
        sender = self._senders.get(channel)
        if sender is None:
            raise UnsupportedChannelError(f"No sender configured for channel '{channel}'")
        if not destination:
            raise DeliveryError("Task has no assigned phone number")

        _LOGGER.debug("Sending %s reminder to %s", channel, destination)
        return await sender(destination, message)


def build_default_notifier() -> Notifier:
    """WhatsApp only; email delivery has no sender yet."""
    from app.utils.whatsapp import WhatsAppSender
    from config import settings

    return Notifier({"whatsapp": WhatsAppSender(timeout=settings.NOTIFIER_TIMEOUT_SECONDS)})
