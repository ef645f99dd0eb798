"""LLMQuery Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.query import Provider

MAX_PROMPT_CHARS = 100_000


class QueryOptions(BaseModel):
    """Recognized provider options. Anything else is kept and passed through."""

    model_config = ConfigDict(extra="allow")

    max_tokens: int | None = None
    temperature: float | None = None
    stream: bool | None = None

    @field_validator("max_tokens")
    @classmethod
    def max_tokens_positive(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("max_tokens must be >= 1")
        return v

    @field_validator("temperature")
    @classmethod
    def temperature_in_range(cls, v: float | None) -> float | None:
        if v is not None and not 0 <= v <= 2:
            raise ValueError("temperature must be between 0 and 2")
        return v


class QueryCreate(BaseModel):
    provider: Provider
    prompt: str = Field(min_length=1, max_length=MAX_PROMPT_CHARS)
    model: str | None = Field(default=None, max_length=255)
    conversation_id: int | None = None
    user_id: int | None = None
    options: QueryOptions = Field(default_factory=QueryOptions)

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("prompt must not be blank")
        return v


class QueryOut(BaseModel):
    id: int
    user_id: int | None = None
    conversation_id: int | None = None
    provider: str
    model: str | None = None
    prompt: str
    response: str | None = None
    reasoning_content: str | None = None
    status: str
    finish_reason: str | None = None
    error: str | None = None
    duration_ms: int | None = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="metadata_")
    usage_stats: dict[str, Any] | None = None
    cost_usd: Decimal | None = None
    input_cost_usd: Decimal | None = None
    output_cost_usd: Decimal | None = None
    pricing_tier: str | None = None
    over_budget: bool = False
    job_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)
