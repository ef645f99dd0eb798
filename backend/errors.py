"""Error taxonomy for query dispatch and provider execution.

``QueryValidationError`` is raised synchronously to whoever enqueues a query.
Everything under ``ProviderError`` happens inside a worker: it is recorded on
the query row (``status='failed'``) and in the status event, never re-raised.
"""

from __future__ import annotations

import re

MAX_ERROR_CHARS = 2000

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_error(message: str, limit: int = MAX_ERROR_CHARS) -> str:
    """Strip control characters and truncate an error message for storage."""
    cleaned = _CONTROL_CHARS.sub("", message or "").strip()
    if len(cleaned) > limit:
        cleaned = cleaned[: limit - 3] + "..."
    return cleaned


class RelayError(Exception):
    """Base class for all relay errors."""


class QueryValidationError(RelayError):
    """Bad input to enqueue. Not retried; surfaced to the caller."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ProviderUnavailableError(RelayError):
    """Dispatch refused because the provider health check reports it unhealthy."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"Provider '{provider}' is currently unavailable: {message}")
        self.provider = provider


class ProviderError(RelayError):
    """Network, auth, or malformed-response failure talking to a provider."""

    retryable = False

    def __init__(
        self,
        message: str = "",
        provider: str = "unknown",
        model: str | None = None,
        context: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.model = model
        self.context = context or {}

    @property
    def user_message(self) -> str:
        return self.message

    def __repr__(self):
        return f"<{type(self).__name__} {self.provider}: {self.message[:80]!r}>"


class AuthenticationError(ProviderError):
    @property
    def user_message(self) -> str:
        return f"Authentication failed for {self.provider}. Please check your API key or credentials."


class RateLimitError(ProviderError):
    retryable = True

    @property
    def user_message(self) -> str:
        retry_after = self.context.get("retry_after")
        msg = f"Rate limit exceeded for {self.provider}."
        if retry_after:
            return f"{msg} Please try again after {retry_after} seconds."
        return f"{msg} Please try again later."


class InvalidRequestError(ProviderError):
    @property
    def user_message(self) -> str:
        return f"Invalid request to {self.provider}: {self.message}"


class NetworkError(ProviderError):
    retryable = True

    @property
    def user_message(self) -> str:
        return f"Network error connecting to {self.provider}: {self.message}"


class ServiceUnavailableError(ProviderError):
    retryable = True

    @property
    def user_message(self) -> str:
        return f"{self.provider} is currently unavailable: {self.message}"


class ApiError(ProviderError):
    @property
    def retryable(self) -> bool:  # type: ignore[override]
        status_code = self.context.get("status_code") or 0
        return 500 <= status_code < 600

    @property
    def user_message(self) -> str:
        status_code = self.context.get("status_code")
        prefix = f"API error from {self.provider}"
        if status_code:
            prefix += f" (HTTP {status_code})"
        return f"{prefix}: {self.message}"


class ProviderTimeoutError(ProviderError):
    retryable = True

    @property
    def user_message(self) -> str:
        timeout = self.context.get("timeout", "unknown")
        return f"Request to {self.provider} timed out after {timeout} seconds: {self.message}"


class CrashError(ProviderError):
    """The worker died or the job was killed before it reached a terminal write."""

    @property
    def user_message(self) -> str:
        return f"Query job crashed: {self.message}"
