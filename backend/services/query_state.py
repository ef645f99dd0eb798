"""Compare-and-set status writes for LLMQuery rows.

Every transition is a conditional ``UPDATE ... WHERE status IN (pending, running)``
so the job, the RQ failure hook and zombie recovery can race without a late
writer overwriting a terminal state. Each function returns True only when its
write took effect; callers emit events only in that case.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from errors import sanitize_error
from models.query import ACTIVE_STATUSES, LLMQuery, QueryStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def elapsed_ms(started_at: datetime | None, finished_at: datetime) -> int:
    if started_at is None:
        return 0
    return max(0, int((finished_at - started_at).total_seconds() * 1000))


def _cas(db: Session, query_id: int, values: dict) -> bool:
    updated = (
        db.query(LLMQuery)
        .filter(LLMQuery.id == query_id, LLMQuery.status.in_(ACTIVE_STATUSES))
        .update(values, synchronize_session=False)
    )
    db.commit()
    return updated == 1


def mark_running(db: Session, query_id: int) -> bool:
    """pending|running -> running. A redelivered job restarts the clock."""
    return _cas(db, query_id, {"status": QueryStatus.RUNNING.value, "started_at": utcnow()})


def complete_query(
    db: Session,
    query_id: int,
    *,
    response: str,
    started_at: datetime | None,
    model: str | None = None,
    reasoning_content: str | None = None,
    usage_stats: dict | None = None,
    finish_reason: str | None = None,
    extra: dict | None = None,
) -> bool:
    now = utcnow()
    values = {
        "status": QueryStatus.COMPLETED.value,
        "response": response,
        "reasoning_content": reasoning_content,
        "usage_stats": usage_stats,
        "finish_reason": finish_reason,
        "error": None,
        "completed_at": now,
        "duration_ms": elapsed_ms(started_at, now),
    }
    if model:
        values["model"] = model
    values.update(extra or {})
    return _cas(db, query_id, values)


def fail_query(db: Session, query_id: int, error: str, started_at: datetime | None = None) -> bool:
    now = utcnow()
    return _cas(db, query_id, {
        "status": QueryStatus.FAILED.value,
        "error": sanitize_error(error),
        "completed_at": now,
        "duration_ms": elapsed_ms(started_at, now),
    })
