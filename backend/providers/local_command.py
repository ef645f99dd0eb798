"""Local command adapter: run a whitelisted CLI (``claude -p``, ``llm``...) and return stdout.

The command template is split into an argv list and run without a shell, so
the prompt is always a single argument regardless of its contents.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
import subprocess

from errors import ApiError, InvalidRequestError, ProviderTimeoutError, QueryValidationError
from providers import register
from providers.base import BaseProvider, ProviderResult, health

logger = logging.getLogger(__name__)

ALLOWED_COMMANDS = ("claude", "ollama", "llm", "aider", "echo", "openclaw")

SYSTEM_DIRS = ("/bin", "/sbin", "/usr/bin", "/usr/sbin", "/etc", "/var", "/boot", "/sys", "/proc")

ENV_WHITELIST = (
    "PATH",
    "HOME",
    "USER",
    "SHELL",
    "LANG",
    "LC_ALL",
    "TMPDIR",
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_BASE_URL",
    "CLAUDE_CONFIG_PATH",
    "CLAUDE_CODE_ENTRYPOINT",
    "XDG_CONFIG_HOME",
    "ASDF_DIR",
    "ASDF_DATA_DIR",
)

MAX_PROMPT_CHARS = 100_000
MAX_ENV_VALUE_CHARS = 10_000

_SHELL_META = re.compile(r"[;&|`$()<>]")
_PLACEHOLDER = re.compile(r"\{(prompt|model)\}")


def validate_command(command: str | None) -> str:
    command = (command or "").strip()
    base = command.split(" ")[0].replace("{prompt}", "").replace("{model}", "").strip() if command else ""
    if not base:
        raise QueryValidationError("Command cannot be empty", field="command")
    if base not in ALLOWED_COMMANDS:
        raise QueryValidationError(
            f"Command '{base}' is not allowed. Allowed commands: {', '.join(ALLOWED_COMMANDS)}",
            field="command",
        )
    if _SHELL_META.search(command):
        raise QueryValidationError(
            "Command contains invalid characters. Shell metacharacters are not allowed.",
            field="command",
        )
    return command


def validate_working_directory(directory: str) -> str:
    real = os.path.realpath(directory)
    if not os.path.isdir(real):
        raise QueryValidationError(f"Working directory does not exist: {directory}", field="working_directory")
    for sys_dir in SYSTEM_DIRS:
        if real == sys_dir or real.startswith(sys_dir + "/"):
            raise QueryValidationError(
                f"Working directory cannot be a system directory: {real}", field="working_directory",
            )
    return real


def sanitize_prompt(prompt: str) -> str:
    prompt = prompt.replace("\0", "")
    if len(prompt) > MAX_PROMPT_CHARS:
        raise QueryValidationError("Prompt exceeds maximum length of 100,000 characters", field="prompt")
    return prompt


def build_argv(command: str, prompt: str, model: str | None) -> list[str]:
    """Expand ``{prompt}``/``{model}`` placeholders; append the prompt when absent."""
    values = {"prompt": prompt, "model": model or ""}
    argv = []
    for token in shlex.split(command):
        if token == "{model}" and not model:
            continue
        argv.append(_PLACEHOLDER.sub(lambda m: values[m.group(1)], token))
    if "{prompt}" not in command:
        argv.append(prompt)
    return argv


def child_environment() -> dict[str, str]:
    return {
        key: value
        for key in ENV_WHITELIST
        if (value := os.environ.get(key)) is not None and len(value) <= MAX_ENV_VALUE_CHARS
    }


@register("local-command")
class LocalCommandProvider(BaseProvider):
    queue = "llm-local"
    label = "Local Command"
    description = "Run a whitelisted local CLI such as the claude CLI, llm or aider"

    @property
    def timeout(self) -> int:
        from config import settings
        return settings.LOCAL_JOB_TIMEOUT

    def _command(self, options: dict) -> str:
        from config import settings
        return options.get("command") or settings.LOCAL_COMMAND

    def _working_directory(self, options: dict) -> str:
        from config import settings
        return options.get("working_directory") or settings.LOCAL_COMMAND_WORKING_DIR or os.getcwd()

    def validate(self, prompt: str, model: str | None, options: dict) -> None:
        validate_command(self._command(options))
        validate_working_directory(self._working_directory(options))
        sanitize_prompt(prompt)
        if model and _SHELL_META.search(model):
            raise QueryValidationError("Model name contains invalid characters", field="model")

    def execute(self, prompt: str, model: str | None, options: dict) -> ProviderResult:
        provider = options.get("provider_name") or self.name
        try:
            command = validate_command(self._command(options))
            cwd = validate_working_directory(self._working_directory(options))
            argv = build_argv(command, sanitize_prompt(prompt), model)
        except QueryValidationError as exc:
            raise InvalidRequestError(str(exc), provider, model) from exc

        timeout = options.get("timeout") or self.timeout
        logger.debug("Running local command %s in %s", argv[0], cwd)
        try:
            completed = subprocess.run(
                argv,
                cwd=cwd,
                env=child_environment(),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise ProviderTimeoutError(
                f"Command execution timed out after {timeout} seconds", provider, model,
                {"timeout": timeout, "command": command},
            ) from exc
        except FileNotFoundError as exc:
            raise InvalidRequestError(
                f"Command not found: {command}. Please ensure the command is installed and in your PATH.",
                provider, model, {"command": command},
            ) from exc
        except PermissionError as exc:
            raise InvalidRequestError(
                f"Command cannot execute: {command}. Permission denied or not executable.",
                provider, model, {"command": command},
            ) from exc
        except OSError as exc:
            raise ApiError(f"Unexpected error executing local command: {exc}", provider, model) from exc

        if completed.returncode != 0:
            raise self._command_failure(completed, command, cwd, provider, model)

        if not completed.stdout.strip():
            raise InvalidRequestError(
                "Command executed successfully but returned empty output", provider, model,
                {"command": command, "exit_code": 0, "stderr": completed.stderr},
            )
        return ProviderResult(text=completed.stdout, finish_reason="stop")

    @staticmethod
    def _command_failure(completed, command, cwd, provider, model):
        exit_code = completed.returncode
        # Killed by signal N: report it the way a shell would (128 + N)
        if exit_code < 0:
            exit_code = 128 - exit_code
        context = {
            "command": command,
            "exit_code": exit_code,
            "stdout": completed.stdout,
            "stderr": completed.stderr,
            "working_directory": cwd,
        }

        if exit_code == 127:
            return InvalidRequestError(
                f"Command not found: {command}. Please ensure the command is installed and in your PATH.",
                provider, model, context,
            )
        if exit_code == 126:
            return InvalidRequestError(
                f"Command cannot execute: {command}. Permission denied or not executable.",
                provider, model, context,
            )
        if exit_code == 130:
            return ApiError("Command was interrupted (Ctrl+C)", provider, model, context)
        if exit_code == 137:
            return ProviderTimeoutError(
                "Command was killed (out of memory or forcefully terminated)",
                provider, model, {**context, "signal": "SIGKILL"},
            )
        if exit_code == 143:
            return ProviderTimeoutError(
                "Command was terminated gracefully", provider, model, {**context, "signal": "SIGTERM"},
            )

        message = f"Command failed with exit code {exit_code}"
        if completed.stderr:
            message += f"\nError: {completed.stderr}"
        if completed.stdout:
            message += f"\nOutput: {completed.stdout}"
        return ApiError(message, provider, model, context)

    def healthcheck(self) -> dict:
        try:
            command = validate_command(self._command({}))
        except QueryValidationError as exc:
            return health("unhealthy", str(exc))
        executable = shlex.split(command)[0]
        path = shutil.which(executable)
        if not path:
            return health("unhealthy", f"Command '{executable}' not found in PATH")
        return health("healthy", f"Command '{executable}' is available", path=path)
