"""Conversation endpoints: create, read, send a message, statistics."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api._helpers import get_conversation_or_404, get_dispatcher
from database import get_db
from models.conversation import ConversationMessage
from schemas.conversation import (
    ConversationCreate,
    ConversationDetailOut,
    ConversationOut,
    ConversationStatisticsOut,
    MessageCreate,
    MessageOut,
    MessageSentOut,
)
from services.conversations import ConversationService
from services.dispatcher import QueryDispatcher

router = APIRouter()


@router.post("/", response_model=ConversationOut, status_code=201)
def create_conversation(payload: ConversationCreate, db: Session = Depends(get_db)):
    return ConversationService(db).create_conversation(
        user_id=payload.user_id,
        provider=payload.provider.value,
        model=payload.model,
        title=payload.title,
        team_id=payload.team_id,
    )


@router.get("/{conversation_id}/", response_model=ConversationDetailOut)
def get_conversation(conversation_id: int, db: Session = Depends(get_db)):
    return get_conversation_or_404(conversation_id, db)


@router.get("/{conversation_id}/messages/", response_model=list[MessageOut])
def list_messages(
    conversation_id: int,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    get_conversation_or_404(conversation_id, db)
    return (
        db.query(ConversationMessage)
        .filter(ConversationMessage.conversation_id == conversation_id)
        .order_by(ConversationMessage.id)
        .offset(offset)
        .limit(limit)
        .all()
    )


@router.post("/{conversation_id}/messages/", response_model=MessageSentOut, status_code=202)
def send_message(
    conversation_id: int,
    payload: MessageCreate,
    db: Session = Depends(get_db),
    dispatcher: QueryDispatcher = Depends(get_dispatcher),
):
    conversation = get_conversation_or_404(conversation_id, db)
    message, query = ConversationService(db).send_message(
        conversation, payload.content, dispatcher, payload.options.model_dump(exclude_none=True),
    )
    return {"message": message, "query": query}


@router.get("/{conversation_id}/statistics/", response_model=ConversationStatisticsOut)
def conversation_statistics(conversation_id: int, db: Session = Depends(get_db)):
    conversation = get_conversation_or_404(conversation_id, db)
    return ConversationService(db).statistics(conversation)
