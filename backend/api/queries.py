"""Query submit/list/detail endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api._helpers import get_dispatcher, get_query_or_404
from database import get_db
from models.query import LLMQuery
from schemas.query import QueryCreate, QueryOut
from services.dispatcher import QueryDispatcher

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/", response_model=QueryOut, status_code=202)
def create_query(
    payload: QueryCreate,
    skip_health_check: bool = False,
    allow_unhealthy: bool = False,
    dispatcher: QueryDispatcher = Depends(get_dispatcher),
):
    return dispatcher.dispatch(
        payload.provider.value,
        payload.prompt,
        payload.model,
        payload.options.model_dump(exclude_none=True),
        user_id=payload.user_id,
        conversation_id=payload.conversation_id,
        skip_health_check=skip_health_check,
        allow_unhealthy=allow_unhealthy,
    )


@router.get("/")
def list_queries(
    provider: str | None = None,
    status: str | None = None,
    user_id: int | None = None,
    conversation_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    q = db.query(LLMQuery)
    if provider:
        q = q.filter(LLMQuery.provider == provider)
    if status:
        q = q.filter(LLMQuery.status == status)
    if user_id is not None:
        q = q.filter(LLMQuery.user_id == user_id)
    if conversation_id is not None:
        q = q.filter(LLMQuery.conversation_id == conversation_id)
    total = q.count()
    queries = q.order_by(LLMQuery.id.desc()).offset(offset).limit(limit).all()
    return {
        "items": [QueryOut.model_validate(query).model_dump(mode="json") for query in queries],
        "total": total,
    }


@router.get("/{query_id}/", response_model=QueryOut)
def get_query(query_id: int, db: Session = Depends(get_db)):
    return get_query_or_404(query_id, db)
