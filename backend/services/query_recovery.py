"""Recover queries whose worker died before writing a terminal status.

Two paths lead here:

- ``on_query_job_failure()``: RQ ``on_failure`` callback, fired when the job
  raises, hits its ``job_timeout``, or the work horse is killed.
- ``recover_zombie_queries()``: sweep for ``running`` rows older than the
  zombie threshold whose hook never fired (host reboot, SIGKILL of the worker
  itself). Called on server startup and by ``tasks.recover_zombie_queries_job``.

Both use the same CAS write as the job, so a query that completed in the
meantime is left alone.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from config import settings
from errors import CrashError
from models.query import LLMQuery, QueryStatus
from services.events import EventPublisher
from services.query_state import fail_query, utcnow

logger = logging.getLogger(__name__)


def _query_id_from_job(job) -> int | None:
    try:
        return int(job.args[0])
    except (AttributeError, IndexError, TypeError, ValueError):
        return None


def on_query_job_success(job, connection, result, *args, **kwargs) -> None:
    """RQ ``on_success`` callback: the job returned (the query may still have failed)."""
    logger.info("Job %s finished: query %s is %s", getattr(job, "id", "?"), _query_id_from_job(job), result)


def on_query_job_failure(job, connection, type, value, traceback) -> None:
    """RQ ``on_failure`` callback. Marks the query failed with a crash error.

    Never raises: an exception here would only be logged by RQ anyway.
    """
    query_id = _query_id_from_job(job)
    if query_id is None:
        logger.error("on_query_job_failure: cannot determine query id from job %s", getattr(job, "id", "?"))
        return

    exc_name = type.__name__ if type is not None else "UnknownError"
    from database import SessionLocal

    db: Session = SessionLocal()
    try:
        query = db.get(LLMQuery, query_id)
        if query is None:
            logger.warning("on_query_job_failure: query %s not found", query_id)
            return
        error = CrashError(f"{exc_name}: {value}", query.provider, query.model)
        if not _fail_and_publish(db, query, error.user_message):
            logger.info("on_query_job_failure: query %s already %s, leaving it", query_id, query.status)
            return
        logger.warning("Query %s marked failed after job crash (%s)", query_id, exc_name)
    except Exception:
        logger.exception("on_query_job_failure: error recovering query %s", query_id)
    finally:
        db.close()


def recover_zombie_queries(threshold_seconds: int | None = None) -> int:
    """Fail every ``running`` query started more than *threshold_seconds* ago.

    Returns the number of queries recovered.
    """
    from database import SessionLocal

    if threshold_seconds is None:
        threshold_seconds = settings.ZOMBIE_QUERY_THRESHOLD_SECONDS

    db: Session = SessionLocal()
    try:
        cutoff = utcnow() - timedelta(seconds=threshold_seconds)
        zombies = (
            db.query(LLMQuery)
            .filter(
                LLMQuery.status == QueryStatus.RUNNING.value,
                LLMQuery.started_at < cutoff,
            )
            .all()
        )
        recovered = 0
        for query in zombies:
            try:
                if _recover_one(query, db):
                    recovered += 1
            except Exception:
                logger.exception("Failed to recover zombie query %s", query.id)
        if recovered:
            logger.warning("Recovered %d zombie quer%s", recovered, "y" if recovered == 1 else "ies")
        return recovered
    except Exception:
        logger.exception("Error in recover_zombie_queries")
        return 0
    finally:
        db.close()


def _recover_one(query: LLMQuery, db: Session) -> bool:
    logger.warning("Recovering zombie query %s (started %s)", query.id, query.started_at)
    error = CrashError(
        "worker presumed crashed (exceeded zombie threshold)", query.provider, query.model,
    )
    return _fail_and_publish(db, query, error.user_message)


def _fail_and_publish(db: Session, query: LLMQuery, message: str) -> bool:
    written = fail_query(db, query.id, message, started_at=query.started_at)
    db.refresh(query)
    if written:
        EventPublisher().query_status_updated(query)
    return written
