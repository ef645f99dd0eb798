"""Conversation and message schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from models.query import Provider
from schemas.query import MAX_PROMPT_CHARS, QueryOptions, QueryOut


class ConversationCreate(BaseModel):
    user_id: int
    team_id: int | None = None
    title: str | None = Field(default=None, min_length=1, max_length=255)
    provider: Provider
    model: str | None = Field(default=None, max_length=255)


class ConversationOut(BaseModel):
    id: int
    user_id: int
    team_id: int | None = None
    title: str
    provider: str
    model: str | None = None
    last_message_at: datetime | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class MessageOut(BaseModel):
    id: int
    conversation_id: int
    llm_query_id: int | None = None
    role: str
    content: str
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="metadata_")
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ConversationDetailOut(ConversationOut):
    messages: list[MessageOut] = []


class MessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=MAX_PROMPT_CHARS)
    options: QueryOptions = Field(default_factory=QueryOptions)


class MessageSentOut(BaseModel):
    message: MessageOut
    query: QueryOut


class ConversationStatisticsOut(BaseModel):
    total_messages: int
    total_queries: int
    completed_queries: int
    failed_queries: int
    total_duration_ms: int
    total_tokens: int
