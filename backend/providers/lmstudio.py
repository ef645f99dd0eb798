"""LM Studio adapter: OpenAI-compatible /chat/completions endpoint."""

from __future__ import annotations

import logging

import httpx

from errors import (
    ApiError,
    AuthenticationError,
    InvalidRequestError,
    RateLimitError,
    ServiceUnavailableError,
)
from providers import register
from providers.base import BaseProvider, ProviderResult, build_chat_messages, health
from providers.http import create_http_client, error_message, map_transport_error, parse_json

logger = logging.getLogger(__name__)

_HEALTH_TIMEOUT = 5


def parse_completion(data, model: str) -> ProviderResult:
    """Normalize an OpenAI-style completion payload.

    Empty content is an error; the message says whether the model ran out of
    tokens or was filtered.
    """
    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices:
        raise InvalidRequestError(
            "Invalid response structure from LM Studio: missing or empty choices array",
            "lmstudio", model, {"response": data},
        )

    choice = choices[0] or {}
    message = choice.get("message")
    if not message:
        raise InvalidRequestError(
            "Invalid response structure from LM Studio: no message in choice",
            "lmstudio", model, {"response": data},
        )

    finish_reason = choice.get("finish_reason")
    content = message.get("content")
    if not content:
        if finish_reason == "length":
            raise InvalidRequestError(
                "LM Studio response was cut off due to max_tokens limit. Try increasing max_tokens.",
                "lmstudio", model, {"finish_reason": finish_reason, "usage": data.get("usage")},
            )
        if finish_reason == "content_filter":
            raise InvalidRequestError(
                "LM Studio response was filtered due to content policy.",
                "lmstudio", model, {"finish_reason": finish_reason},
            )
        raise InvalidRequestError(
            "Empty response content from LM Studio.",
            "lmstudio", model, {"finish_reason": finish_reason or "unknown"},
        )

    return ProviderResult(
        text=content,
        usage_stats=data.get("usage"),
        finish_reason=finish_reason,
        reasoning_content=message.get("reasoning_content"),
    )


@register("lmstudio")
class LMStudioProvider(BaseProvider):
    queue = "llm-local"
    label = "LM Studio"
    description = "Local LM Studio server (OpenAI-compatible API)"
    suggested_models = ("local-model",)

    def __init__(self, transport: httpx.BaseTransport | None = None):
        self._transport = transport

    @property
    def timeout(self) -> int:
        from config import settings
        return settings.LOCAL_JOB_TIMEOUT

    @property
    def default_model(self) -> str:
        from config import settings
        return settings.LMSTUDIO_DEFAULT_MODEL

    def _base_url(self, options: dict) -> str:
        from config import settings
        return options.get("base_url") or settings.LMSTUDIO_BASE_URL

    def execute(self, prompt: str, model: str | None, options: dict) -> ProviderResult:
        model = self.resolve_model(model)
        base_url = self._base_url(options)
        timeout = float(options.get("http_timeout") or options.get("timeout") or self.timeout)
        payload = {
            "model": model,
            "messages": build_chat_messages(prompt, options),
            "max_tokens": options["max_tokens"],
            "temperature": options["temperature"],
        }

        try:
            with create_http_client(base_url, timeout, self._transport) as client:
                response = client.post("/chat/completions", json=payload)
        except httpx.TransportError as exc:
            raise map_transport_error(exc, "lmstudio", model, timeout, base_url) from exc

        if response.status_code >= 400:
            self._raise_http_error(response, model, base_url)
        return parse_completion(parse_json(response, "lmstudio", model), model)

    @staticmethod
    def _raise_http_error(response: httpx.Response, model: str, base_url: str) -> None:
        status_code = response.status_code
        message = error_message(response)
        context = {"status_code": status_code, "base_url": base_url}

        if status_code == 400:
            raise InvalidRequestError(f"Invalid request to LM Studio: {message}", "lmstudio", model, context)
        if status_code in (401, 403):
            raise AuthenticationError(f"Authentication failed for LM Studio: {message}", "lmstudio", model, context)
        if status_code == 404:
            raise InvalidRequestError(
                f"Model '{model}' not found in LM Studio. Please load the model first.",
                "lmstudio", model, context,
            )
        if status_code == 429:
            raise RateLimitError(f"Rate limit exceeded for LM Studio: {message}", "lmstudio", model, context)
        if status_code in (500, 502, 503, 504):
            raise ServiceUnavailableError(f"LM Studio server error: {message}", "lmstudio", model, context)
        raise ApiError(f"LM Studio API error: {message}", "lmstudio", model, context)

    def healthcheck(self) -> dict:
        base_url = self._base_url({})
        try:
            with create_http_client(base_url, _HEALTH_TIMEOUT, self._transport) as client:
                response = client.get("/models")
        except httpx.HTTPError as exc:
            return health("unhealthy", "LM Studio server is not reachable", error=str(exc))

        if response.status_code >= 400:
            return health("unhealthy", f"LM Studio returned HTTP {response.status_code}")
        try:
            models = [m.get("id") for m in response.json().get("data", [])]
        except (ValueError, AttributeError):
            return health("degraded", "LM Studio returned an unexpected models payload")
        if not models:
            return health("degraded", "LM Studio is running but no model is loaded")
        return health("healthy", "LM Studio is running", models=models, model_count=len(models))
