"""SQLAlchemy models: re-export all."""

from models.conversation import Conversation, ConversationMessage, MessageRole  # noqa: F401
from models.query import (  # noqa: F401
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    LLMQuery,
    Provider,
    QueryStatus,
)
