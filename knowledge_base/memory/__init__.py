"""Conversation memory."""
from knowledge_base.memory.manager import ConversationManager

__all__ = ["ConversationManager"]
