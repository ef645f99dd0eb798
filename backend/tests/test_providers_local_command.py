"""Tests for providers/local_command.py: validation, argv building, exit codes."""

from __future__ import annotations

import subprocess
from unittest.mock import patch

import pytest

from errors import ApiError, InvalidRequestError, ProviderTimeoutError, QueryValidationError
from providers.base import resolve_options
from providers.local_command import (
    LocalCommandProvider,
    build_argv,
    child_environment,
    sanitize_prompt,
    validate_command,
    validate_working_directory,
)


def _options(tmp_path, **extra):
    return resolve_options({"command": "echo", "working_directory": str(tmp_path), **extra})


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=["echo"], returncode=returncode, stdout=stdout, stderr=stderr)


class TestValidation:
    def test_whitelisted_command(self):
        assert validate_command("claude -p {prompt}") == "claude -p {prompt}"

    def test_rejects_unlisted_command(self):
        with pytest.raises(QueryValidationError, match="not allowed"):
            validate_command("rm -rf {prompt}")

    @pytest.mark.parametrize("command", ["echo hi; rm x", "echo $(whoami)", "echo `id`", "echo a | cat", "echo > f"])
    def test_rejects_shell_metacharacters(self, command):
        with pytest.raises(QueryValidationError, match="metacharacters"):
            validate_command(command)

    def test_rejects_empty(self):
        with pytest.raises(QueryValidationError, match="empty"):
            validate_command("  ")

    def test_working_directory_must_exist(self, tmp_path):
        with pytest.raises(QueryValidationError, match="does not exist"):
            validate_working_directory(str(tmp_path / "missing"))

    def test_working_directory_not_system(self):
        with pytest.raises(QueryValidationError, match="system directory"):
            validate_working_directory("/etc")

    def test_prompt_null_bytes_stripped(self):
        assert sanitize_prompt("a\0b") == "ab"

    def test_prompt_too_long(self):
        with pytest.raises(QueryValidationError, match="maximum length"):
            sanitize_prompt("x" * 100_001)

    def test_provider_validate_rejects_bad_model(self, tmp_path):
        with pytest.raises(QueryValidationError, match="Model name"):
            LocalCommandProvider().validate("hi", "m;x", _options(tmp_path))


class TestBuildArgv:
    def test_prompt_appended_without_placeholder(self):
        assert build_argv("claude -p", "what's up?", None) == ["claude", "-p", "what's up?"]

    def test_placeholders_substituted(self):
        argv = build_argv("llm -m {model} {prompt}", "hi; rm -rf /", "gpt-4o")
        assert argv == ["llm", "-m", "gpt-4o", "hi; rm -rf /"]

    def test_model_placeholder_dropped_without_model(self):
        assert build_argv("llm {model} {prompt}", "hi", None) == ["llm", "hi"]

    def test_placeholders_in_prompt_left_alone(self):
        argv = build_argv("llm -m {model} {prompt}", "explain {model} and {prompt}", "gpt-4o")
        assert argv == ["llm", "-m", "gpt-4o", "explain {model} and {prompt}"]


class TestChildEnvironment:
    def test_only_whitelisted_vars(self, monkeypatch):
        monkeypatch.setenv("LD_PRELOAD", "/tmp/evil.so")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        env = child_environment()
        assert "LD_PRELOAD" not in env
        assert env["ANTHROPIC_API_KEY"] == "sk-ant"

    def test_skips_oversized_values(self, monkeypatch):
        monkeypatch.setenv("TMPDIR", "x" * 10_001)
        assert "TMPDIR" not in child_environment()


class TestExecute:
    def test_runs_echo(self, tmp_path):
        result = LocalCommandProvider().execute("hello world", None, _options(tmp_path))
        assert result.text.strip() == "hello world"
        assert result.finish_reason == "stop"

    def test_prompt_with_quotes_is_one_argument(self, tmp_path):
        result = LocalCommandProvider().execute("it's \"quoted\" & fine", None, _options(tmp_path))
        assert result.text.strip() == "it's \"quoted\" & fine"

    def test_invalid_command_at_runtime(self, tmp_path):
        with pytest.raises(InvalidRequestError, match="not allowed"):
            LocalCommandProvider().execute("hi", None, _options(tmp_path, command="bash"))

    @pytest.mark.parametrize("returncode,exc_type,match", [
        (127, InvalidRequestError, "Command not found"),
        (126, InvalidRequestError, "cannot execute"),
        (130, ApiError, "interrupted"),
        (137, ProviderTimeoutError, "killed"),
        (143, ProviderTimeoutError, "terminated"),
        (-9, ProviderTimeoutError, "killed"),
        (1, ApiError, "exit code 1"),
    ])
    def test_exit_codes(self, tmp_path, returncode, exc_type, match):
        with patch("providers.local_command.subprocess.run", return_value=_completed(returncode, "", "oops")):
            with pytest.raises(exc_type, match=match):
                LocalCommandProvider().execute("hi", None, _options(tmp_path))

    def test_generic_failure_includes_stderr(self, tmp_path):
        with patch("providers.local_command.subprocess.run", return_value=_completed(2, "partial", "bad flag")):
            with pytest.raises(ApiError) as exc_info:
                LocalCommandProvider().execute("hi", None, _options(tmp_path))
        assert "bad flag" in exc_info.value.message
        assert "partial" in exc_info.value.message

    def test_empty_output(self, tmp_path):
        with patch("providers.local_command.subprocess.run", return_value=_completed(0, "  \n")):
            with pytest.raises(InvalidRequestError, match="empty output"):
                LocalCommandProvider().execute("hi", None, _options(tmp_path))

    def test_timeout(self, tmp_path):
        with patch(
            "providers.local_command.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="echo", timeout=5),
        ):
            with pytest.raises(ProviderTimeoutError, match="timed out"):
                LocalCommandProvider().execute("hi", None, _options(tmp_path, timeout=5))

    def test_missing_executable(self, tmp_path):
        with patch("providers.local_command.subprocess.run", side_effect=FileNotFoundError("aider")):
            with pytest.raises(InvalidRequestError, match="Command not found"):
                LocalCommandProvider().execute("hi", None, _options(tmp_path, command="aider"))


class TestLocalCommandHealth:
    def test_command_on_path(self):
        with patch("providers.local_command.shutil.which", return_value="/usr/local/bin/claude"):
            result = LocalCommandProvider().healthcheck()
        assert result["status"] == "healthy"
        assert result["details"]["path"] == "/usr/local/bin/claude"

    def test_command_missing(self):
        with patch("providers.local_command.shutil.which", return_value=None):
            assert LocalCommandProvider().healthcheck()["status"] == "unhealthy"
