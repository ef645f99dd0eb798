"""Logging setup shared by the API server and the RQ workers.

Every line carries the process role and, inside a job, the query it belongs to::

    2026-02-17 14:30:00 [Server][INFO] services.dispatcher:88 - Enqueued query 42 on llm-ollama
    2026-02-17 14:30:01 [Worker-9821][Query 42][ollama][INFO] services.query_jobs:71 - Calling ollama

Call ``setup_logging(role)`` once per process. Job code wraps its work in
``query_context(query_id, provider)``; ordinary ``logging.getLogger(__name__)``
calls pick the context up without changes.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

query_id_var: ContextVar[str] = ContextVar("query_id_var", default="")
provider_var: ContextVar[str] = ContextVar("provider_var", default="")

STREAM_HANDLER_NAME = "_relay_stream"
FILE_HANDLER_NAME = "_relay_file"

LOG_FORMAT = "%(asctime)s %(context)s %(name)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "websockets", "rq.worker")


@contextmanager
def query_context(query_id: int | str | None = None, provider: str | None = None):
    """Tag log records emitted inside the block with a query id and/or provider."""
    tokens = []
    if query_id is not None:
        tokens.append((query_id_var, query_id_var.set(str(query_id))))
    if provider is not None:
        tokens.append((provider_var, provider_var.set(provider)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def context_prefix(role: str, query_id: str, provider: str, level: str) -> str:
    prefix = f"[{role}]" if role else ""
    if query_id:
        prefix += f"[Query {query_id}]"
    if provider:
        prefix += f"[{provider}]"
    return f"{prefix}[{level}]"


class ContextFilter(logging.Filter):
    """Stamps ``role``, ``query_id``, ``provider`` and the rendered ``context`` prefix."""

    def __init__(self, role: str) -> None:
        super().__init__()
        self.role = role

    def filter(self, record: logging.LogRecord) -> bool:
        record.role = self.role  # type: ignore[attr-defined]
        record.query_id = query_id_var.get()  # type: ignore[attr-defined]
        record.provider = provider_var.get()  # type: ignore[attr-defined]
        return True


class ContextFormatter(logging.Formatter):
    """``LOG_FORMAT`` with ``%(context)s`` built from the filter's attributes."""

    def __init__(self, fmt: str = LOG_FORMAT, datefmt: str = DATE_FORMAT) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)

    def format(self, record: logging.LogRecord) -> str:
        record.context = context_prefix(  # type: ignore[attr-defined]
            getattr(record, "role", ""),
            getattr(record, "query_id", ""),
            getattr(record, "provider", ""),
            record.levelname,
        )
        return super().format(record)


def _attach(root: logging.Logger, handler: logging.Handler, name: str, role: str) -> None:
    handler.name = name
    handler.addFilter(ContextFilter(role))
    handler.setFormatter(ContextFormatter())
    root.addHandler(handler)


def setup_logging(role: str) -> None:
    """Configure the root logger for *role* (``"Server"`` or ``"Worker-<pid>"``).

    Logs go to stderr, and also to a rotating file when ``LOG_FILE`` is set.
    A second call in the same process is a no-op.
    """
    from config import settings

    root = logging.getLogger()
    if any(h.name == STREAM_HANDLER_NAME for h in root.handlers):
        return

    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    _attach(root, logging.StreamHandler(sys.stderr), STREAM_HANDLER_NAME, role)

    if settings.LOG_FILE:
        log_path = Path(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            str(log_path),
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        _attach(root, rotating, FILE_HANDLER_NAME, role)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Route uvicorn through root so its lines get the same prefix
    if role.lower().startswith("server"):
        for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
            uv_logger = logging.getLogger(name)
            uv_logger.handlers.clear()
            uv_logger.propagate = True
