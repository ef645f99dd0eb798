"""Conversation bookkeeping: messages, context windows, statistics."""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.conversation import Conversation, ConversationMessage, MessageRole
from models.query import LLMQuery, QueryStatus
from services.query_state import utcnow

logger = logging.getLogger(__name__)

CONTEXT_MESSAGE_LIMIT = 20


def _query_metadata(query: LLMQuery) -> dict:
    return {
        "query_id": query.id,
        "provider": query.provider,
        "model": query.model,
        "duration_ms": query.duration_ms,
        "finish_reason": query.finish_reason,
    }


class ConversationService:
    def __init__(self, db: Session):
        self.db = db

    def create_conversation(
        self,
        user_id: int,
        provider: str,
        model: str | None = None,
        title: str | None = None,
        team_id: int | None = None,
    ) -> Conversation:
        now = utcnow()
        conversation = Conversation(
            user_id=user_id,
            team_id=team_id,
            title=title or f"Conversation {now:%Y-%m-%d %H:%M:%S}",
            provider=provider,
            model=model,
            last_message_at=now,
        )
        self.db.add(conversation)
        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    def add_message(
        self,
        conversation: Conversation,
        role: str,
        content: str,
        query: LLMQuery | None = None,
    ) -> ConversationMessage:
        message = ConversationMessage(
            conversation_id=conversation.id,
            llm_query_id=query.id if query else None,
            role=role,
            content=content,
            metadata_=_query_metadata(query) if query else None,
        )
        self.db.add(message)
        conversation.last_message_at = utcnow()
        self.db.commit()
        self.db.refresh(message)
        return message

    def assistant_message_for(self, query_id: int) -> ConversationMessage | None:
        return (
            self.db.query(ConversationMessage)
            .filter(
                ConversationMessage.llm_query_id == query_id,
                ConversationMessage.role == MessageRole.ASSISTANT.value,
            )
            .first()
        )

    def upsert_assistant_message(self, query: LLMQuery) -> ConversationMessage | None:
        """Create or refresh the assistant reply for a completed query.

        Keyed by ``(llm_query_id, role)``; a redelivered job updates the
        existing row instead of appending a second reply.
        """
        if not query.conversation_id or query.response is None:
            return None
        conversation = self.db.get(Conversation, query.conversation_id)
        if conversation is None:
            logger.warning("Conversation %s for query %s no longer exists", query.conversation_id, query.id)
            return None

        message = self.assistant_message_for(query.id)
        if message is None:
            message = ConversationMessage(
                conversation_id=conversation.id,
                llm_query_id=query.id,
                role=MessageRole.ASSISTANT.value,
                content=query.response,
                metadata_=_query_metadata(query),
            )
            self.db.add(message)
            try:
                self.db.flush()
            except IntegrityError:
                # Another delivery of the same job inserted it first
                self.db.rollback()
                message = self.assistant_message_for(query.id)
                if message is None:
                    raise

        message.content = query.response
        message.metadata_ = _query_metadata(query)
        conversation.last_message_at = utcnow()
        self.db.commit()
        self.db.refresh(message)
        return message

    def get_context(self, conversation: Conversation, limit: int = CONTEXT_MESSAGE_LIMIT) -> list[dict]:
        """The most recent *limit* messages, oldest first, as ``{role, content}``."""
        recent = (
            self.db.query(ConversationMessage)
            .filter(ConversationMessage.conversation_id == conversation.id)
            .order_by(ConversationMessage.id.desc())
            .limit(limit)
            .all()
        )
        return [{"role": m.role, "content": m.content} for m in reversed(recent)]

    def send_message(self, conversation: Conversation, content: str, dispatcher, options: dict | None = None):
        """Store a user turn and dispatch a query carrying the conversation so far.

        Validation runs before anything is written so a rejected prompt leaves
        no orphan user message.
        """
        options = dict(options or {})
        dispatcher.validate(conversation.provider, content, conversation.model, options)

        user_message = self.add_message(conversation, MessageRole.USER.value, content)
        options["conversation_context"] = self.get_context(conversation)
        query = dispatcher.dispatch(
            conversation.provider,
            content,
            conversation.model,
            options,
            user_id=conversation.user_id,
            conversation_id=conversation.id,
        )
        return user_message, query

    def statistics(self, conversation: Conversation) -> dict:
        queries = self.db.query(LLMQuery).filter(LLMQuery.conversation_id == conversation.id).all()
        completed = [q for q in queries if q.status == QueryStatus.COMPLETED.value]
        return {
            "total_messages": (
                self.db.query(ConversationMessage)
                .filter(ConversationMessage.conversation_id == conversation.id)
                .count()
            ),
            "total_queries": len(queries),
            "completed_queries": len(completed),
            "failed_queries": sum(1 for q in queries if q.status == QueryStatus.FAILED.value),
            "total_duration_ms": sum(q.duration_ms or 0 for q in completed),
            "total_tokens": sum((q.usage_stats or {}).get("total_tokens", 0) or 0 for q in completed),
        }
