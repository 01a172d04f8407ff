"""Conversation memory: chat sessions and message history."""
from docchat.memory.manager import ConversationManager, derive_title, format_history

__all__ = ["ConversationManager", "derive_title", "format_history"]
