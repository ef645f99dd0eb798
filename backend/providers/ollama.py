"""Ollama adapter: native HTTP API, one-shot or streamed (NDJSON)."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

import httpx

from errors import ApiError, InvalidRequestError, ServiceUnavailableError
from providers import register
from providers.base import BaseProvider, ProviderResult, build_chat_messages, health
from providers.http import create_http_client, error_message, map_transport_error, parse_json

logger = logging.getLogger(__name__)

_HEALTH_TIMEOUT = 5


def chunk_text(chunk: dict) -> str:
    """Text carried by one response object: ``response`` or ``message.content``."""
    if chunk.get("response") is not None:
        return chunk["response"]
    message = chunk.get("message")
    if isinstance(message, dict) and message.get("content") is not None:
        return message["content"]
    return ""


def _chunk_thinking(chunk: dict) -> str:
    if chunk.get("thinking"):
        return chunk["thinking"]
    message = chunk.get("message")
    if isinstance(message, dict) and message.get("thinking"):
        return message["thinking"]
    return ""


def _usage(data: dict | None) -> dict | None:
    if not data or ("prompt_eval_count" not in data and "eval_count" not in data):
        return None
    input_t = data.get("prompt_eval_count") or 0
    output_t = data.get("eval_count") or 0
    return {"input_tokens": input_t, "output_tokens": output_t, "total_tokens": input_t + output_t}


def _finish_reason(data: dict | None) -> str | None:
    if not data:
        return None
    return data.get("done_reason") or ("stop" if data.get("done") else None)


@dataclass
class StreamAggregate:
    text: str
    thinking: str | None
    final_chunk: dict | None
    received: bool


def aggregate_stream(chunks: Iterable[dict]) -> StreamAggregate:
    """Concatenate chunk texts in arrival order; keep the ``done`` chunk for stats."""
    parts: list[str] = []
    thinking: list[str] = []
    final_chunk = None
    received = False
    for chunk in chunks:
        received = True
        parts.append(chunk_text(chunk))
        piece = _chunk_thinking(chunk)
        if piece:
            thinking.append(piece)
        if chunk.get("done"):
            final_chunk = chunk
    return StreamAggregate("".join(parts), "".join(thinking) or None, final_chunk, received)


@register("ollama")
class OllamaProvider(BaseProvider):
    queue = "llm-ollama"
    label = "Ollama"
    description = "Local Ollama instance"
    suggested_models = ("llama3.2", "llama3.1", "mistral", "codellama")

    def __init__(self, transport: httpx.BaseTransport | None = None):
        self._transport = transport

    @property
    def timeout(self) -> int:
        from config import settings
        return settings.OLLAMA_JOB_TIMEOUT

    @property
    def default_model(self) -> str:
        from config import settings
        return settings.OLLAMA_DEFAULT_MODEL

    @property
    def base_url(self) -> str:
        from config import settings
        return settings.OLLAMA_BASE_URL

    def _build_request(self, prompt: str, model: str, options: dict) -> tuple[str, dict]:
        payload: dict = {
            "model": model,
            "stream": bool(options.get("stream")),
            "options": {
                "temperature": options["temperature"],
                "num_predict": options["max_tokens"],
                **(options.get("ollama_options") or {}),
            },
        }
        if options.get("conversation_context"):
            payload["messages"] = build_chat_messages(prompt, options)
            return "/api/chat", payload
        payload["prompt"] = prompt
        return "/api/generate", payload

    def execute(self, prompt: str, model: str | None, options: dict) -> ProviderResult:
        model = self.resolve_model(model)
        timeout = float(options.get("http_timeout") or options.get("timeout") or self.timeout)
        endpoint, payload = self._build_request(prompt, model, options)

        try:
            with create_http_client(self.base_url, timeout, self._transport) as client:
                if payload["stream"]:
                    return self._execute_streaming(client, endpoint, payload, model)
                return self._execute_once(client, endpoint, payload, model)
        except httpx.TransportError as exc:
            raise map_transport_error(exc, "ollama", model, timeout, self.base_url) from exc

    def _execute_once(self, client: httpx.Client, endpoint: str, payload: dict, model: str) -> ProviderResult:
        response = client.post(endpoint, json=payload)
        self._raise_for_status(response, model)
        data = parse_json(response, "ollama", model)
        if not isinstance(data, dict):
            raise InvalidRequestError(
                "Unable to parse Ollama response. Unexpected response format.", "ollama", model,
            )
        if data.get("error"):
            raise ApiError(str(data["error"]), "ollama", model)

        return ProviderResult(
            text=chunk_text(data),
            usage_stats=_usage(data),
            finish_reason=_finish_reason(data),
            reasoning_content=_chunk_thinking(data) or None,
        )

    def _execute_streaming(self, client: httpx.Client, endpoint: str, payload: dict, model: str) -> ProviderResult:
        with client.stream("POST", endpoint, json=payload) as response:
            self._raise_for_status(response, model)
            aggregate = aggregate_stream(self._iter_chunks(response, model))

        if not aggregate.received:
            raise ServiceUnavailableError(
                "No data received from Ollama streaming response", "ollama", model, {"stream": True},
            )
        if not aggregate.text:
            raise InvalidRequestError(
                "Empty response from Ollama. The model may have failed to generate content.",
                "ollama", model, {"stream": True},
            )

        return ProviderResult(
            text=aggregate.text,
            usage_stats=_usage(aggregate.final_chunk),
            finish_reason=_finish_reason(aggregate.final_chunk),
            reasoning_content=aggregate.thinking,
        )

    @staticmethod
    def _iter_chunks(response: httpx.Response, model: str) -> Iterator[dict]:
        for line in response.iter_lines():
            if not line.strip():
                continue
            try:
                chunk = json.loads(line)
            except json.JSONDecodeError as exc:
                raise InvalidRequestError(
                    "Malformed chunk in Ollama stream", "ollama", model, {"line": line[:200]},
                ) from exc
            if chunk.get("error"):
                raise ApiError(str(chunk["error"]), "ollama", model, {"stream": True})
            yield chunk

    @staticmethod
    def _raise_for_status(response: httpx.Response, model: str) -> None:
        status_code = response.status_code
        if status_code < 400:
            return
        response.read()
        message = error_message(response)
        context = {"status_code": status_code}

        if status_code == 404:
            raise InvalidRequestError(
                f"Model '{model}' not found. Please pull the model first using 'ollama pull {model}'.",
                "ollama", model, context,
            )
        if status_code == 503:
            raise ServiceUnavailableError(
                "Ollama service is unavailable. It may be starting up or overloaded.",
                "ollama", model, context,
            )
        raise ApiError(f"HTTP request to Ollama failed: {message}", "ollama", model, context)

    def healthcheck(self) -> dict:
        try:
            with create_http_client(self.base_url, _HEALTH_TIMEOUT, self._transport) as client:
                response = client.get("/api/tags")
        except httpx.HTTPError as exc:
            return health("unhealthy", "Ollama service is not reachable", error=str(exc))

        if response.status_code >= 400:
            return health("unhealthy", f"Ollama returned HTTP {response.status_code}")

        try:
            models = [m.get("name") for m in response.json().get("models", [])]
        except (ValueError, AttributeError):
            return health("degraded", "Ollama returned an unexpected tags payload")
        if not models:
            return health("degraded", "Ollama is running but no models are pulled")
        return health("healthy", "Ollama is running", models=models, model_count=len(models))
