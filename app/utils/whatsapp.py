"""WhatsApp Cloud API text sender used by the reminder notifier."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_random_exponential,
    retry_if_exception_type,
)

from app.errors import DeliveryError
from app.types.task_contract import DeliveryReceipt
from config import settings

_LOGGER = logging.getLogger(__name__)

GRAPH_BASE = "https://graph.facebook.com"

# Only connection setup failures are retried; a request that reached the
# provider is never re-posted, so a reminder is not delivered twice.
RETRY_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


class WhatsAppSender:
    def __init__(
        self,
        token: Optional[str] = None,
        phone_id: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token if token is not None else settings.WHATSAPP_TOKEN
        self.phone_id = phone_id if phone_id is not None else settings.WHATSAPP_PHONE_ID
        self.api_version = api_version or settings.WHATSAPP_API_VERSION
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.token and self.phone_id)

    def _url(self) -> str:
        return f"{GRAPH_BASE}/{self.api_version}/{self.phone_id}/messages"

    @retry(
        wait=wait_random_exponential(multiplier=0.5, max=5),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(RETRY_ERRORS),
        reraise=True,
    )
    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.token}"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.post(self._url(), json=payload, headers=headers)

    async def __call__(self, to: str, body: str) -> DeliveryReceipt:
        if not self.configured:
            _LOGGER.info("[WA] DEV mode: would send to %s: %s", to, body)
            return DeliveryReceipt(payload={"dev_mode": True, "to": to})

        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }
        try:
            resp = await self._post(payload)
        except httpx.HTTPError as exc:
            raise DeliveryError(f"WhatsApp request failed: {exc!r}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = {"text": resp.text}
        if resp.status_code >= 300:
            raise DeliveryError(f"WhatsApp error {resp.status_code}: {data}")

        if not isinstance(data, dict):
            raise DeliveryError(f"WhatsApp returned an unexpected body: {data!r}")
        messages = data.get("messages") or [{}]
        first = messages[0] if isinstance(messages[0], dict) else {}
        return DeliveryReceipt(provider_message_id=first.get("id"), payload=data)
