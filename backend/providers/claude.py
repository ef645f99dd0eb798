"""Claude adapter: Anthropic Messages API through LangChain's ChatAnthropic."""

from __future__ import annotations

import logging

import anthropic
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from errors import (
    ApiError,
    AuthenticationError,
    InvalidRequestError,
    NetworkError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
    ServiceUnavailableError,
)
from providers import register
from providers.base import BaseProvider, ProviderResult, build_chat_messages, health

logger = logging.getLogger(__name__)

_DEFAULT_RETRY_AFTER = 60

_MESSAGE_CLASSES = {"user": HumanMessage, "assistant": AIMessage, "system": SystemMessage}


def _to_langchain(messages: list[dict]) -> list[BaseMessage]:
    return [_MESSAGE_CLASSES[m["role"]](content=m["content"]) for m in messages]


def extract_text(message) -> tuple[str | None, str | None]:
    """Return (first text block, joined thinking blocks) from an AIMessage."""
    content = message.content
    if isinstance(content, str):
        return content, None

    text = None
    thinking: list[str] = []
    for block in content or []:
        if isinstance(block, str):
            text = block if text is None else text
        elif block.get("type") == "text" and text is None:
            text = block.get("text")
        elif block.get("type") == "thinking" and block.get("thinking"):
            thinking.append(block["thinking"])
    return text, ("\n".join(thinking) or None)


def extract_usage(message) -> dict | None:
    usage = getattr(message, "usage_metadata", None)
    if not usage:
        return None
    input_t = usage.get("input_tokens", 0) or 0
    output_t = usage.get("output_tokens", 0) or 0
    return {
        "input_tokens": input_t,
        "output_tokens": output_t,
        "total_tokens": input_t + output_t,
    }


def _retry_after(exc: anthropic.APIStatusError) -> int:
    try:
        return int(exc.response.headers.get("retry-after", _DEFAULT_RETRY_AFTER))
    except (TypeError, ValueError):
        return _DEFAULT_RETRY_AFTER


@register("claude")
class ClaudeProvider(BaseProvider):
    queue = "llm-claude"
    label = "Claude API"
    description = "Anthropic Claude API (requires API key)"
    suggested_models = ("claude-3-5-sonnet-20241022", "claude-3-5-haiku-20241022", "claude-3-opus-20240229")

    @property
    def default_model(self) -> str:
        from config import settings
        return settings.CLAUDE_DEFAULT_MODEL

    def _make_client(self, model: str, options: dict) -> ChatAnthropic:
        from config import settings
        return ChatAnthropic(
            api_key=settings.ANTHROPIC_API_KEY,
            model=model,
            max_tokens=options["max_tokens"],
            temperature=options["temperature"],
            timeout=options.get("timeout", self.timeout),
            max_retries=0,
        )

    def execute(self, prompt: str, model: str | None, options: dict) -> ProviderResult:
        model = self.resolve_model(model)
        messages = _to_langchain(build_chat_messages(prompt, options))

        try:
            result = self._make_client(model, options).invoke(messages)
        except anthropic.APITimeoutError as exc:
            raise ProviderTimeoutError(
                "Connection to Claude API timed out", "claude", model,
                {"timeout": options.get("timeout", self.timeout)},
            ) from exc
        except anthropic.APIConnectionError as exc:
            raise NetworkError(f"Failed to connect to Claude API: {exc}", "claude", model) from exc
        except anthropic.APIStatusError as exc:
            raise self._map_status_error(exc, model) from exc
        except Exception as exc:
            raise ApiError(
                f"Unexpected error calling Claude API: {exc}", "claude", model,
                {"original_exception": type(exc).__name__},
            ) from exc

        text, thinking = extract_text(result)
        if text is None:
            raise InvalidRequestError("Invalid response structure from Claude API", "claude", model)

        return ProviderResult(
            text=text,
            usage_stats=extract_usage(result),
            finish_reason=(result.response_metadata or {}).get("stop_reason"),
            reasoning_content=thinking,
        )

    @staticmethod
    def _map_status_error(exc: anthropic.APIStatusError, model: str) -> ProviderError:
        status_code = exc.status_code
        context = {"status_code": status_code, "original_exception": type(exc).__name__}
        message = getattr(exc, "message", None) or str(exc)

        if status_code in (401, 403):
            return AuthenticationError(message, "claude", model, context)
        if status_code == 429:
            context["retry_after"] = _retry_after(exc)
            return RateLimitError(message, "claude", model, context)
        if status_code in (400, 404, 422):
            return InvalidRequestError(message, "claude", model, context)
        if status_code in (502, 503, 529):
            return ServiceUnavailableError(message, "claude", model, context)
        return ApiError(message, "claude", model, context)

    def healthcheck(self) -> dict:
        from config import settings
        if not settings.ANTHROPIC_API_KEY:
            return health("degraded", "API key not configured", hint="Set ANTHROPIC_API_KEY in .env")
        return health("healthy", "API key configured", default_model=self.default_model)
