"""Provider adapter contract shared by every LLM backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

# Recognized options and their defaults; anything else passes through untouched.
DEFAULT_OPTIONS: dict[str, Any] = {
    "max_tokens": 1024,
    "temperature": 1.0,
    "stream": False,
}


def resolve_options(options: dict | None) -> dict:
    """Overlay caller options on the defaults, ignoring explicit ``None`` values."""
    resolved = dict(DEFAULT_OPTIONS)
    for key, value in (options or {}).items():
        if value is not None:
            resolved[key] = value
    return resolved


def build_chat_messages(prompt: str, options: dict) -> list[dict]:
    """Prior conversation turns (if any) followed by the prompt as a user turn."""
    messages: list[dict] = []
    for turn in options.get("conversation_context") or []:
        role = turn.get("role")
        content = turn.get("content")
        if role in ("user", "assistant", "system") and content:
            messages.append({"role": role, "content": content})
    # The dispatcher stores the prompt as the latest user turn already
    if not messages or messages[-1] != {"role": "user", "content": prompt}:
        messages.append({"role": "user", "content": prompt})
    return messages


@dataclass
class ProviderResult:
    text: str
    usage_stats: dict | None = None
    finish_reason: str | None = None
    reasoning_content: str | None = None


class BaseProvider(ABC):
    """One adapter per provider, looked up by name in the registry."""

    name: str = ""
    queue: str = "llm-default"
    label: str = ""
    description: str = ""
    suggested_models: tuple[str, ...] = ()

    @property
    def timeout(self) -> int:
        from config import settings
        return settings.DEFAULT_JOB_TIMEOUT

    @property
    def default_model(self) -> str | None:
        return None

    def resolve_model(self, model: str | None) -> str | None:
        return model or self.default_model

    def validate(self, prompt: str, model: str | None, options: dict) -> None:
        """Reject options that can never succeed. Raises QueryValidationError."""

    @abstractmethod
    def execute(self, prompt: str, model: str | None, options: dict) -> ProviderResult:
        """Run the prompt and return normalized text + metadata. Raises ProviderError."""

    @abstractmethod
    def healthcheck(self) -> dict:
        """Return ``{"status": healthy|degraded|unhealthy, "message": str, "details": dict}``."""

    def describe(self) -> dict:
        return {
            "name": self.name,
            "label": self.label,
            "description": self.description,
            "queue": self.queue,
            "models": list(self.suggested_models),
            "timeout": self.timeout,
            "default_model": self.default_model,
        }


def health(status: str, message: str, **details: Any) -> dict:
    return {"status": status, "message": message, "details": details}
