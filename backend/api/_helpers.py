"""Shared helpers for API routers."""

from __future__ import annotations

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from models.conversation import Conversation
from models.query import LLMQuery
from services.dispatcher import QueryDispatcher


def get_dispatcher(db: Session = Depends(get_db)) -> QueryDispatcher:
    """FastAPI dependency; tests override it to capture enqueued jobs."""
    return QueryDispatcher(db)


def get_query_or_404(query_id: int, db: Session) -> LLMQuery:
    query = db.get(LLMQuery, query_id)
    if not query:
        raise HTTPException(status_code=404, detail="Query not found.")
    return query


def get_conversation_or_404(conversation_id: int, db: Session) -> Conversation:
    conversation = db.get(Conversation, conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found.")
    return conversation
