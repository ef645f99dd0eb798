"""Tests for providers/claude.py: ChatAnthropic wrapper and error mapping."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import anthropic
import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from errors import (
    ApiError,
    AuthenticationError,
    InvalidRequestError,
    NetworkError,
    ProviderTimeoutError,
    RateLimitError,
    ServiceUnavailableError,
)
from providers.base import resolve_options
from providers.claude import ClaudeProvider, extract_text, extract_usage

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _status_error(status_code: int, headers: dict | None = None) -> anthropic.APIStatusError:
    response = httpx.Response(status_code, request=_REQUEST, headers=headers or {})
    return anthropic.APIStatusError("boom", response=response, body=None)


def _ai_message(content="Hello from Claude", stop_reason="end_turn"):
    return AIMessage(
        content=content,
        usage_metadata={"input_tokens": 10, "output_tokens": 5, "total_tokens": 15},
        response_metadata={"stop_reason": stop_reason},
    )


@pytest.fixture
def mock_chat():
    with patch("providers.claude.ChatAnthropic") as mock_cls:
        yield mock_cls


class TestExtract:
    def test_string_content(self):
        assert extract_text(_ai_message("hi")) == ("hi", None)

    def test_first_text_block_and_thinking(self):
        msg = _ai_message([
            {"type": "thinking", "thinking": "Let me think"},
            {"type": "text", "text": "first"},
            {"type": "text", "text": "second"},
        ])
        assert extract_text(msg) == ("first", "Let me think")

    def test_no_text_block(self):
        assert extract_text(_ai_message([{"type": "tool_use", "id": "t1", "name": "x", "input": {}}]))[0] is None

    def test_usage(self):
        assert extract_usage(_ai_message()) == {"input_tokens": 10, "output_tokens": 5, "total_tokens": 15}

    def test_usage_missing(self):
        assert extract_usage(AIMessage(content="x")) is None


class TestExecute:
    def test_success(self, mock_chat):
        mock_chat.return_value.invoke.return_value = _ai_message()

        result = ClaudeProvider().execute("Hi", None, resolve_options({}))

        assert result.text == "Hello from Claude"
        assert result.finish_reason == "end_turn"
        assert result.usage_stats["total_tokens"] == 15
        kwargs = mock_chat.call_args[1]
        assert kwargs["model"] == "claude-3-5-sonnet-20241022"
        assert kwargs["max_tokens"] == 1024
        assert kwargs["temperature"] == 1.0
        assert kwargs["max_retries"] == 0

    def test_conversation_context_becomes_messages(self, mock_chat):
        mock_chat.return_value.invoke.return_value = _ai_message()
        options = resolve_options({
            "conversation_context": [
                {"role": "system", "content": "Be brief"},
                {"role": "user", "content": "Hi"},
                {"role": "assistant", "content": "Hello"},
                {"role": "user", "content": "How are you?"},
            ],
        })

        ClaudeProvider().execute("How are you?", "claude-3-5-haiku-20241022", options)

        messages = mock_chat.return_value.invoke.call_args[0][0]
        assert [type(m) for m in messages] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
        assert messages[-1].content == "How are you?"

    def test_no_text_is_invalid_request(self, mock_chat):
        mock_chat.return_value.invoke.return_value = _ai_message([])
        with pytest.raises(InvalidRequestError):
            ClaudeProvider().execute("Hi", None, resolve_options({}))

    @pytest.mark.parametrize("status_code,exc_type", [
        (401, AuthenticationError),
        (403, AuthenticationError),
        (400, InvalidRequestError),
        (404, InvalidRequestError),
        (422, InvalidRequestError),
        (503, ServiceUnavailableError),
        (529, ServiceUnavailableError),
        (500, ApiError),
    ])
    def test_status_errors(self, mock_chat, status_code, exc_type):
        mock_chat.return_value.invoke.side_effect = _status_error(status_code)
        with pytest.raises(exc_type) as exc_info:
            ClaudeProvider().execute("Hi", None, resolve_options({}))
        assert exc_info.value.provider == "claude"
        assert exc_info.value.context["status_code"] == status_code

    def test_rate_limit_retry_after(self, mock_chat):
        mock_chat.return_value.invoke.side_effect = _status_error(429, {"retry-after": "12"})
        with pytest.raises(RateLimitError) as exc_info:
            ClaudeProvider().execute("Hi", None, resolve_options({}))
        assert "12 seconds" in exc_info.value.user_message

    def test_timeout(self, mock_chat):
        mock_chat.return_value.invoke.side_effect = anthropic.APITimeoutError(request=_REQUEST)
        with pytest.raises(ProviderTimeoutError):
            ClaudeProvider().execute("Hi", None, resolve_options({}))

    def test_connection_error(self, mock_chat):
        mock_chat.return_value.invoke.side_effect = anthropic.APIConnectionError(request=_REQUEST)
        with pytest.raises(NetworkError):
            ClaudeProvider().execute("Hi", None, resolve_options({}))

    def test_unexpected_error_wrapped(self, mock_chat):
        mock_chat.return_value.invoke.side_effect = ValueError("weird")
        with pytest.raises(ApiError, match="weird"):
            ClaudeProvider().execute("Hi", None, resolve_options({}))


class TestClaudeHealth:
    def test_degraded_without_key(self):
        with patch("config.settings") as mock_settings:
            mock_settings.ANTHROPIC_API_KEY = ""
            assert ClaudeProvider().healthcheck()["status"] == "degraded"

    def test_healthy_with_key(self):
        with patch("config.settings", MagicMock(ANTHROPIC_API_KEY="sk-ant", CLAUDE_DEFAULT_MODEL="claude-x")):
            result = ClaudeProvider().healthcheck()
        assert result["status"] == "healthy"
        assert result["details"]["default_model"] == "claude-x"
