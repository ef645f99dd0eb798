"""Query execution job: run one LLMQuery through its provider adapter.

State machine: pending -> running -> completed | failed. Every transition is a
CAS write (``services.query_state``); events go out only when the write took
effect, so duplicate deliveries and the RQ failure hook never produce a second
terminal event.
"""

from __future__ import annotations

import contextvars
import logging
import threading
from typing import Any, Callable

from sqlalchemy.orm import Session

from errors import ProviderError, ProviderTimeoutError
from logging_config import query_context
from models.query import LLMQuery
from providers import get_provider
from providers.base import BaseProvider, ProviderResult, resolve_options
from services.conversations import ConversationService
from services.costs import cost_fields
from services.events import EventPublisher
from services.query_state import complete_query, fail_query, mark_running

logger = logging.getLogger(__name__)


def call_with_deadline(fn: Callable[[], Any], timeout: float, *, provider: str, model: str | None) -> Any:
    """Run *fn* in a daemon thread and give up after *timeout* seconds.

    Backs up the HTTP/subprocess timeouts so a provider that hangs somewhere
    they don't cover still ends in a failure transition. An abandoned thread
    keeps running until the worker process exits.
    """
    outcome: dict[str, Any] = {}

    def _target():
        try:
            outcome["result"] = fn()
        except BaseException as exc:
            outcome["error"] = exc

    ctx = contextvars.copy_context()
    thread = threading.Thread(target=ctx.run, args=(_target,), name=f"{provider}-call", daemon=True)
    thread.start()
    thread.join(timeout)

    if thread.is_alive():
        raise ProviderTimeoutError(
            f"No response within {timeout} seconds", provider, model, {"timeout": timeout},
        )
    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


def execute_query(
    query_id: int,
    *,
    db: Session | None = None,
    publisher: EventPublisher | None = None,
    provider: BaseProvider | None = None,
) -> str | None:
    """Execute one query to a terminal state and return that state.

    Returns None when the query does not exist. A query that is already
    terminal is not re-run; a completed one only gets its missing assistant
    reply restored.
    """
    own_session = db is None
    if own_session:
        from database import SessionLocal
        db = SessionLocal()
    publisher = publisher or EventPublisher()

    try:
        query = db.get(LLMQuery, query_id)
        if query is None:
            logger.warning("Query %s not found, nothing to execute", query_id)
            return None

        with query_context(provider=query.provider):
            return _run(db, query, publisher, provider)
    finally:
        if own_session:
            db.close()


def _run(db: Session, query: LLMQuery, publisher: EventPublisher, adapter: BaseProvider | None) -> str:
    if query.is_terminal:
        logger.info("Query %s already %s, skipping duplicate delivery", query.id, query.status)
        if query.status == "completed" and query.conversation_id:
            _repair_reply(db, query, publisher)
        return query.status

    if not mark_running(db, query.id):
        db.refresh(query)
        return query.status
    db.refresh(query)
    publisher.query_status_updated(query)

    options = resolve_options((query.metadata_ or {}).get("options"))
    try:
        adapter = adapter or get_provider(query.provider)
        model = adapter.resolve_model(query.model)
        timeout = options.get("timeout") or adapter.timeout
        logger.info("Calling %s (model=%s, timeout=%ss)", query.provider, model, timeout)
        result: ProviderResult = call_with_deadline(
            lambda: adapter.execute(query.prompt, model, options),
            timeout,
            provider=query.provider,
            model=model,
        )
    except ProviderError as exc:
        logger.warning("Query %s failed: %r", query.id, exc)
        return _finish_failed(db, query, publisher, exc.user_message)
    except Exception as exc:
        logger.exception("Query %s raised an unexpected error", query.id)
        return _finish_failed(db, query, publisher, f"Unexpected error: {type(exc).__name__}: {exc}")

    return _finish_completed(db, query, publisher, result, model)


def _finish_completed(
    db: Session, query: LLMQuery, publisher: EventPublisher, result: ProviderResult, model: str | None,
) -> str:
    written = complete_query(
        db,
        query.id,
        response=result.text,
        started_at=query.started_at,
        model=model,
        reasoning_content=result.reasoning_content,
        usage_stats=result.usage_stats,
        finish_reason=result.finish_reason,
        extra=cost_fields(query.provider, model, result.usage_stats),
    )
    db.refresh(query)
    if not written:
        logger.info("Query %s reached %s elsewhere, dropping late completion", query.id, query.status)
        return query.status

    logger.info("Query %s completed in %sms", query.id, query.duration_ms)
    publisher.query_status_updated(query)

    if query.conversation_id:
        message = ConversationService(db).upsert_assistant_message(query)
        if message is not None:
            publisher.message_received(message, query)
    return query.status


def _repair_reply(db: Session, query: LLMQuery, publisher: EventPublisher) -> None:
    """Upsert the assistant reply a crashed delivery committed the completion for but never wrote."""
    service = ConversationService(db)
    existing = service.assistant_message_for(query.id)
    if existing is not None and existing.content == query.response:
        return
    message = service.upsert_assistant_message(query)
    if message is not None:
        logger.info("Query %s: restored missing assistant reply", query.id)
        publisher.message_received(message, query)


def _finish_failed(db: Session, query: LLMQuery, publisher: EventPublisher, error: str) -> str:
    written = fail_query(db, query.id, error, started_at=query.started_at)
    db.refresh(query)
    if written:
        publisher.query_status_updated(query)
    return query.status
