"""Helpers for the Amazon Pinpoint two-way SMS webhook."""

from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, List, Optional

from app.types.task_contract import InboundReply

_LOGGER = logging.getLogger(__name__)

MESSAGE_RECEIVED = "MESSAGE_RECEIVED"


def verify_secret(expected: Optional[str], provided: Optional[str]) -> bool:
    """Open when no secret is configured; constant-time compare otherwise."""
    if not expected:
        return True
    if not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


def _first(*values):
    for v in values:
        if v:
            return v
    return None


def _task_id(event: Dict[str, Any], attributes: Dict[str, Any]) -> Optional[int]:
    raw = _first(
        attributes.get("taskId"),
        attributes.get("task_id"),
        event.get("taskId"),
        event.get("task_id"),
    )
    try:
        task_id = int(raw)
    except (TypeError, ValueError):
        return None
    return task_id if task_id > 0 else None


def parse_event(event: Any) -> Optional[InboundReply]:
    """One webhook event -> reply, or ``None`` when it is not a usable reply."""
    if not isinstance(event, dict):
        return None
    if _first(event.get("eventType"), event.get("event-type")) != MESSAGE_RECEIVED:
        return None

    attributes = event.get("attributes")
    if not isinstance(attributes, dict):
        attributes = {}

    task_id = _task_id(event, attributes)
    if task_id is None:
        _LOGGER.warning("Pinpoint event missing taskId metadata, skipping")
        return None

    message = _first(
        event.get("messageBody"),
        event.get("message_body"),
        event.get("rawContent"),
        attributes.get("messageBody"),
    ) or ""
    sender = _first(event.get("originationNumber"), event.get("from"), attributes.get("from"))

    return InboundReply(task_id=task_id, message=str(message), reply_from=str(sender) if sender else None,
                        payload=event)


def extract_replies(payload: Any) -> List[InboundReply]:
    """Accepts a single event or an ``{"events": [...]}`` envelope."""
    if isinstance(payload, dict) and isinstance(payload.get("events"), list):
        events = payload["events"]
    else:
        events = [payload]

    replies = []
    for event in events:
        reply = parse_event(event)
        if reply is not None:
            replies.append(reply)
    return replies
