"""Conversation memory manager for the knowledge base.

Handles conversation creation, turn persistence, and bounded history for
multi-turn question answering.
"""
import uuid
from typing import List, Dict, Any, Optional
import structlog

from knowledge_base import config, db
from knowledge_base.errors import NotFoundError
from knowledge_base.models import ROLES, ConversationTurn

logger = structlog.get_logger()

TITLE_MAX_CHARS = 50


def title_from_question(question: str) -> str:
    """Conversation title: the question, cut to 50 chars with '...'."""
    if len(question) > TITLE_MAX_CHARS:
        return question[:TITLE_MAX_CHARS] + "..."
    return question


class ConversationManager:
    """Manages conversations and their ordered turns."""

    def __init__(self, history_window: int = None):
        """Initialize the conversation manager.

        Args:
            history_window: Number of recent turns handed to the composer
        """
        self.history_window = history_window or config.HISTORY_WINDOW

    def create_conversation(self, title: Optional[str] = None) -> Dict[str, Any]:
        """Create a new conversation.

        Args:
            title: Optional title for the conversation

        Returns:
            The created conversation record
        """
        conversation = db.create_conversation(str(uuid.uuid4()), title)
        logger.info("conversation_created", conversation_id=conversation["id"])
        return conversation

    def get_conversation(self, conversation_id: str) -> Dict[str, Any]:
        """Get conversation details.

        Raises:
            NotFoundError: If the conversation doesn't exist
        """
        conversation = db.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def list_conversations(self, limit: int = 50) -> List[Dict[str, Any]]:
        """List conversations, most recent first."""
        return db.list_conversations(limit)

    def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation and all its turns.

        Raises:
            NotFoundError: If the conversation doesn't exist
        """
        if not db.delete_conversation(conversation_id):
            raise NotFoundError(f"Conversation {conversation_id} not found")
        logger.info("conversation_deleted", conversation_id=conversation_id)

    def add_turn(
        self,
        conversation_id: str,
        role: str,
        text: str,
        sources: Optional[List[Dict[str, Any]]] = None,
    ) -> int:
        """Append a turn to a conversation.

        Args:
            conversation_id: The conversation to append to
            role: 'user' or 'assistant'
            text: The message content
            sources: Passages the answer was grounded on

        Returns:
            ID of the inserted message
        """
        if role not in ROLES:
            raise ValueError(f"Invalid role '{role}', expected one of {ROLES}")

        message_id = db.add_message(conversation_id, role, text, sources)
        logger.info(
            "conversation_turn_added",
            conversation_id=conversation_id,
            role=role,
            message_id=message_id,
        )
        return message_id

    def get_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        """All stored messages of a conversation in chronological order.

        Raises:
            NotFoundError: If the conversation doesn't exist
        """
        self.get_conversation(conversation_id)
        return db.get_messages(conversation_id)

    def get_turns(self, conversation_id: str) -> List[ConversationTurn]:
        return [_to_turn(m) for m in self.get_messages(conversation_id)]

    def get_recent_turns(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> List[ConversationTurn]:
        """The last ``limit`` turns (default history_window), oldest first."""
        limit = limit or self.history_window
        messages = db.get_recent_messages(conversation_id, limit)
        logger.debug(
            "conversation_history_loaded",
            conversation_id=conversation_id,
            count=len(messages),
        )
        return [_to_turn(m) for m in messages]


def _to_turn(message: Dict[str, Any]) -> ConversationTurn:
    return ConversationTurn(
        role=message["role"],
        text=message["content"],
        sources=message.get("sources") or [],
    )
