"""Create LLMQuery rows and enqueue them on per-provider RQ queues.

Each provider's adapter names its queue (``llm-claude``, ``llm-ollama``,
``llm-local``) so a slow local model never holds up Claude jobs. The job id is
derived from the query id, which makes enqueueing the same query twice a
replacement rather than a duplicate.
"""

from __future__ import annotations

import logging
from typing import Callable

import redis as redis_lib
from rq import Queue
from sqlalchemy.orm import Session

from config import settings
from errors import ProviderUnavailableError, QueryValidationError
from models.query import LLMQuery, QueryStatus
from providers import get_provider
from providers.base import BaseProvider, resolve_options
from schemas.query import MAX_PROMPT_CHARS
from services.query_state import fail_query

logger = logging.getLogger(__name__)

# Results are only read from the DB; keep RQ's copy briefly
RESULT_TTL = 3600
FAILURE_TTL = 7 * 24 * 3600


def job_id_for(query_id: int) -> str:
    return f"llm-query-{query_id}"


def default_queue_factory(name: str) -> Queue:
    conn = redis_lib.from_url(settings.REDIS_URL)
    return Queue(name, connection=conn)


class QueryDispatcher:
    """Validates, persists and enqueues queries.

    *on_success* / *on_failure* are RQ job callbacks. They default to the
    hooks in ``services.query_recovery``; they must be importable module-level
    functions because RQ stores them by dotted name.
    """

    def __init__(
        self,
        db: Session,
        queue_factory: Callable[[str], Queue] | None = None,
        on_success: Callable | None = None,
        on_failure: Callable | None = None,
        health_check=None,
    ):
        from services.query_recovery import on_query_job_failure, on_query_job_success

        self.db = db
        self._queue_factory = queue_factory or default_queue_factory
        self._on_success = on_success or on_query_job_success
        self._on_failure = on_failure or on_query_job_failure
        self._health_check = health_check

    def validate(self, provider: str, prompt: str, model: str | None = None, options: dict | None = None) -> BaseProvider:
        """Reject input that can never succeed. Raises QueryValidationError."""
        try:
            adapter = get_provider(provider)
        except KeyError:
            raise QueryValidationError(f"Unsupported provider: {provider}", field="provider") from None

        if not prompt or not prompt.strip():
            raise QueryValidationError("Prompt cannot be empty", field="prompt")
        if len(prompt) > MAX_PROMPT_CHARS:
            raise QueryValidationError(
                f"Prompt exceeds maximum length of {MAX_PROMPT_CHARS:,} characters", field="prompt",
            )
        adapter.validate(prompt, model, resolve_options(options))
        return adapter

    def dispatch(
        self,
        provider: str,
        prompt: str,
        model: str | None = None,
        options: dict | None = None,
        *,
        user_id: int | None = None,
        conversation_id: int | None = None,
        skip_health_check: bool = False,
        allow_unhealthy: bool = False,
    ) -> LLMQuery:
        options = dict(options or {})
        adapter = self.validate(provider, prompt, model, options)
        if not skip_health_check:
            self._check_health(provider, allow_unhealthy)

        query = LLMQuery(
            user_id=user_id,
            conversation_id=conversation_id,
            provider=provider,
            model=model,
            prompt=prompt,
            status=QueryStatus.PENDING.value,
            metadata_={"options": options},
        )
        self.db.add(query)
        self.db.flush()
        query.job_id = job_id_for(query.id)
        self.db.commit()
        self.db.refresh(query)

        try:
            self._enqueue(adapter, query, options)
        except Exception as exc:
            logger.exception("Failed to enqueue query %s on %s", query.id, adapter.queue)
            fail_query(self.db, query.id, f"Failed to enqueue job: {exc}")
            self.db.refresh(query)
            raise

        logger.info("Enqueued query %s on %s (job %s)", query.id, adapter.queue, query.job_id)
        return query

    def _enqueue(self, adapter: BaseProvider, query: LLMQuery, options: dict) -> None:
        from tasks import execute_query_job

        timeout = int(options.get("timeout") or adapter.timeout)
        queue = self._queue_factory(adapter.queue)
        queue.enqueue(
            execute_query_job,
            query.id,
            job_id=query.job_id,
            job_timeout=timeout + settings.JOB_TIMEOUT_OVERHEAD,
            result_ttl=RESULT_TTL,
            failure_ttl=FAILURE_TTL,
            description=f"{query.provider} query {query.id}",
            on_success=self._on_success,
            on_failure=self._on_failure,
        )

    def _check_health(self, provider: str, allow_unhealthy: bool) -> None:
        checker = self._health_check
        if checker is None:
            if not settings.PROVIDER_HEALTH_CHECK_ENABLED:
                return
            from services.provider_health import health_service
            checker = health_service

        result = checker.check_cached(provider)
        status = result.get("status")
        if status == "degraded":
            logger.warning("Provider %s is degraded but allowing dispatch: %s", provider, result.get("message"))
        elif status == "unhealthy":
            if allow_unhealthy:
                logger.warning("Provider %s is unhealthy but dispatch allowed by option", provider)
                return
            raise ProviderUnavailableError(provider, result.get("message", "health check failed"))
