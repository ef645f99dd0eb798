"""Payloads for the ``status.updated`` and ``message.received`` broadcasts.

Each is a full snapshot of the record so subscribers never have to re-read it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class QueryStatusUpdated(BaseModel):
    query_id: int
    status: str
    response: str | None = None
    reasoning_content: str | None = None
    usage_stats: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: int | None = None
    finish_reason: str | None = None


class MessageSnapshot(BaseModel):
    id: int
    role: str
    content: str
    created_at: datetime | None = None


class QueryStatusSnapshot(BaseModel):
    id: int
    status: str
    response: str | None = None
    reasoning_content: str | None = None
    error: str | None = None
    duration_ms: int | None = None


class MessageReceived(BaseModel):
    conversation_id: int
    message: MessageSnapshot
    query_status: QueryStatusSnapshot
