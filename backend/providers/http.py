"""Shared httpx helpers for the HTTP-backed adapters (Ollama, LM Studio)."""

from __future__ import annotations

import json
from typing import Any

import httpx

from errors import InvalidRequestError, NetworkError, ProviderTimeoutError


def create_http_client(
    base_url: str,
    timeout_seconds: float,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """Build a Client with one timeout for connect/read/write.

    *transport* is for tests (``httpx.MockTransport``).
    """
    return httpx.Client(
        base_url=base_url.rstrip("/"),
        timeout=httpx.Timeout(timeout_seconds),
        transport=transport,
    )


def map_transport_error(
    exc: httpx.TransportError, provider: str, model: str | None, timeout: float, base_url: str
):
    """Translate an httpx transport failure into the provider error taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        return ProviderTimeoutError(
            f"{type(exc).__name__} after {timeout}s", provider, model,
            {"timeout": timeout, "base_url": base_url},
        )
    return NetworkError(
        f"Failed to connect to {base_url}: {exc}. Please ensure the server is running.",
        provider, model, {"base_url": base_url, "original_exception": type(exc).__name__},
    )


def error_message(response: httpx.Response) -> str:
    """Best-effort error text from a failed response body."""
    try:
        data = response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text[:500]
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict):
            return err.get("message") or json.dumps(err)[:500]
        if isinstance(err, str):
            return err
        if data.get("message"):
            return data["message"]
    return response.text[:500]


def parse_json(response: httpx.Response, provider: str, model: str | None) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError) as exc:
        raise InvalidRequestError(
            f"Unable to parse JSON response: {exc}", provider, model,
            {"response_body": response.text[:500]},
        ) from exc
