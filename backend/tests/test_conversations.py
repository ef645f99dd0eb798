"""Tests for services/conversations.py."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from errors import QueryValidationError
from models.conversation import ConversationMessage
from services.conversations import ConversationService


@pytest.fixture
def service(db):
    return ConversationService(db)


class TestCreateAndAdd:
    def test_default_title(self, service):
        conv = service.create_conversation(user_id=3, provider="claude")
        assert conv.title.startswith("Conversation ")
        assert conv.last_message_at is not None

    def test_add_message_links_query(self, service, conversation, make_query):
        query = make_query(conversation_id=conversation.id)
        msg = service.add_message(conversation, "user", "hello", query=query)
        assert msg.llm_query_id == query.id
        assert msg.metadata_["provider"] == "ollama"


class TestUpsertAssistantMessage:
    def test_creates_then_updates(self, db, service, conversation, make_query):
        query = make_query(conversation_id=conversation.id, status="completed", response="first")

        first = service.upsert_assistant_message(query)
        query.response = "second"
        db.commit()
        second = service.upsert_assistant_message(query)

        assert first.id == second.id
        assert second.content == "second"
        assert db.query(ConversationMessage).filter_by(role="assistant").count() == 1

    def test_skips_without_conversation(self, service, make_query):
        assert service.upsert_assistant_message(make_query(response="x")) is None

    def test_skips_without_response(self, service, conversation, make_query):
        assert service.upsert_assistant_message(make_query(conversation_id=conversation.id)) is None

    def test_user_and_assistant_rows_coexist(self, db, service, conversation, make_query):
        query = make_query(conversation_id=conversation.id, response="reply")
        service.add_message(conversation, "user", "question", query=query)
        service.upsert_assistant_message(query)
        assert db.query(ConversationMessage).filter_by(llm_query_id=query.id).count() == 2


class TestContext:
    def test_oldest_first(self, service, conversation):
        service.add_message(conversation, "user", "one")
        service.add_message(conversation, "assistant", "two")
        assert service.get_context(conversation) == [
            {"role": "user", "content": "one"},
            {"role": "assistant", "content": "two"},
        ]

    def test_window_keeps_most_recent(self, service, conversation):
        for i in range(25):
            service.add_message(conversation, "user", f"m{i}")
        context = service.get_context(conversation)
        assert len(context) == 20
        assert context[0]["content"] == "m5"
        assert context[-1]["content"] == "m24"


class TestSendMessage:
    def test_stores_user_turn_and_dispatches_with_context(self, db, service, conversation):
        service.add_message(conversation, "assistant", "earlier reply")
        dispatcher = MagicMock()
        dispatcher.dispatch.return_value = MagicMock(id=1)

        message, query = service.send_message(conversation, "next question", dispatcher, {"temperature": 0.1})

        assert message.role == "user"
        assert message.content == "next question"
        args, kwargs = dispatcher.dispatch.call_args
        assert args[:3] == ("ollama", "next question", "llama3.2")
        assert args[3]["temperature"] == 0.1
        assert args[3]["conversation_context"][-1] == {"role": "user", "content": "next question"}
        assert kwargs == {"user_id": 1, "conversation_id": conversation.id}

    def test_validation_failure_stores_nothing(self, db, service, conversation):
        dispatcher = MagicMock()
        dispatcher.validate.side_effect = QueryValidationError("Prompt cannot be empty", field="prompt")

        with pytest.raises(QueryValidationError):
            service.send_message(conversation, "  ", dispatcher)

        assert db.query(ConversationMessage).count() == 0
        dispatcher.dispatch.assert_not_called()


def test_statistics(service, conversation, make_query):
    make_query(conversation_id=conversation.id, status="completed", duration_ms=100, usage_stats={"total_tokens": 30})
    make_query(conversation_id=conversation.id, status="completed", duration_ms=50, usage_stats={"total_tokens": 12})
    make_query(conversation_id=conversation.id, status="failed")
    make_query(conversation_id=conversation.id, status="pending")
    service.add_message(conversation, "user", "hi")

    stats = service.statistics(conversation)

    assert stats == {
        "total_messages": 1,
        "total_queries": 4,
        "completed_queries": 2,
        "failed_queries": 1,
        "total_duration_ms": 150,
        "total_tokens": 42,
    }
