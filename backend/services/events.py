"""Status event publisher.

Two event kinds, each a full snapshot of the persisted record:

- ``status.updated`` on ``queries.<query_id>``
- ``message.received`` on ``conversations.<conversation_id>``

Publishing is best-effort: a Redis outage is logged and never fails the job
that triggered the event.
"""

from __future__ import annotations

import logging
from typing import Callable

from schemas.events import MessageReceived, MessageSnapshot, QueryStatusSnapshot, QueryStatusUpdated

logger = logging.getLogger(__name__)

STATUS_UPDATED = "status.updated"
MESSAGE_RECEIVED = "message.received"

QUERY_CHANNEL_PREFIX = "queries."
CONVERSATION_CHANNEL_PREFIX = "conversations."


def query_channel(query_id: int) -> str:
    return f"{QUERY_CHANNEL_PREFIX}{query_id}"


def conversation_channel(conversation_id: int) -> str:
    return f"{CONVERSATION_CHANNEL_PREFIX}{conversation_id}"


def query_status_payload(query) -> dict:
    return QueryStatusUpdated(
        query_id=query.id,
        status=query.status,
        response=query.response,
        reasoning_content=query.reasoning_content,
        usage_stats=query.usage_stats,
        error=query.error,
        duration_ms=query.duration_ms,
        finish_reason=query.finish_reason,
    ).model_dump(mode="json")


def message_received_payload(message, query) -> dict:
    return MessageReceived(
        conversation_id=message.conversation_id,
        message=MessageSnapshot(
            id=message.id,
            role=message.role,
            content=message.content,
            created_at=message.created_at,
        ),
        query_status=QueryStatusSnapshot(
            id=query.id,
            status=query.status,
            response=query.response,
            reasoning_content=query.reasoning_content,
            error=query.error,
            duration_ms=query.duration_ms,
        ),
    ).model_dump(mode="json")


class EventPublisher:
    """Turns query/message rows into broadcast events.

    *send* has the signature of ``ws.broadcast.broadcast`` and defaults to it;
    tests pass a recorder instead.
    """

    def __init__(self, send: Callable[[str, str, dict], object] | None = None):
        self._send = send

    def query_status_updated(self, query) -> None:
        self._publish(query_channel(query.id), STATUS_UPDATED, query_status_payload(query))

    def message_received(self, message, query) -> None:
        self._publish(
            conversation_channel(message.conversation_id),
            MESSAGE_RECEIVED,
            message_received_payload(message, query),
        )

    def _publish(self, channel: str, event_type: str, data: dict) -> None:
        send = self._send
        if send is None:
            from ws.broadcast import broadcast as send
        try:
            send(channel, event_type, data)
        except Exception:
            logger.warning("Failed to publish %s on %s (non-fatal)", event_type, channel, exc_info=True)
