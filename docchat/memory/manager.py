"""Conversation memory manager for docchat.

Handles session creation, message persistence, and conversation history
for multi-turn chat interactions.
"""
from typing import List, Dict, Any, Optional
import structlog

from docchat import config, locale
from docchat.db import Database
from docchat.errors import ValidationError

logger = structlog.get_logger()

ROLES = ("user", "assistant", "system")


def format_history(messages: List[Dict[str, Any]]) -> str:
    """Render messages as "<Label>: <content>" blocks for a prompt.

    An empty history renders an explicit marker instead of an empty string.
    """
    if not messages:
        return locale.text("no_history")

    return "\n\n".join(
        f"{locale.role_label(msg['role'])}: {msg['content']}" for msg in messages
    )


def derive_title(first_message: str, max_chars: int = None) -> str:
    """Create a brief session title from the first user message."""
    max_chars = max_chars or config.SESSION_TITLE_MAX_CHARS
    message = " ".join(first_message.split())
    if len(message) <= max_chars:
        return message
    title = message[:max_chars].rsplit(" ", 1)[0]
    return title + "..."


class ConversationManager:
    """Manages chat sessions and conversation history."""

    def __init__(self, database: Database, context_window_size: int = None):
        """Initialize the conversation manager.

        Args:
            database: Store for sessions and messages
            context_window_size: Number of recent messages to include in context
        """
        self.database = database
        self.context_window_size = context_window_size or config.CHAT_HISTORY_WINDOW

    async def create_session(
        self,
        document_id: Optional[str] = None,
        user_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> str:
        """Create a new chat session.

        Args:
            document_id: Document the conversation is about (None for none)
            user_id: Owning user, if known
            title: Optional title for the session

        Returns:
            The created session ID
        """
        session_id = await self.database.create_session(document_id, user_id, title)
        logger.info(
            "conversation_session_created",
            session_id=session_id,
            document_id=document_id,
        )
        return session_id

    async def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Add a message to a session.

        Args:
            session_id: The session to add the message to
            role: 'user', 'assistant' or 'system'
            content: The message content
            metadata: Optional structured data (e.g. source chunk ids)

        Returns:
            ID of the inserted message

        Raises:
            ValidationError: If the role is unknown
            NotFoundError: If the session doesn't exist
        """
        if role not in ROLES:
            raise ValidationError(f"Invalid role '{role}', expected one of {ROLES}")

        message_id = await self.database.add_message(session_id, role, content, metadata)
        logger.info(
            "conversation_message_added",
            session_id=session_id,
            role=role,
            message_id=message_id,
        )
        return message_id

    async def get_history(
        self, session_id: str, limit: int = None
    ) -> List[Dict[str, Any]]:
        """Get a session's messages in chronological order.

        Args:
            session_id: The session ID to get messages for
            limit: Maximum number of messages (default HISTORY_LIMIT)

        Returns:
            Up to `limit` message dicts, oldest first. A deleted or unknown
            session has no messages.
        """
        limit = config.HISTORY_LIMIT if limit is None else limit
        messages = await self.database.get_messages(session_id, limit)
        logger.info(
            "conversation_messages_retrieved",
            session_id=session_id,
            count=len(messages),
        )
        return messages

    async def get_recent_messages(
        self, session_id: str, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Get the sliding window of most recent messages, oldest first.

        Args:
            session_id: The session ID to get messages for
            limit: Window size (defaults to context_window_size)
        """
        limit = self.context_window_size if limit is None else limit
        return await self.database.get_recent_messages(session_id, limit)

    async def format_conversation_history(self, session_id: str) -> str:
        """Format the recent conversation window for the generation prompt."""
        messages = await self.get_recent_messages(session_id)
        history = format_history(messages)

        logger.info(
            "conversation_history_formatted",
            session_id=session_id,
            message_count=len(messages),
        )
        return history

    async def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Get session details.

        Returns:
            Session dictionary or None if not found
        """
        return await self.database.get_session(session_id)

    async def list_sessions(
        self, user_id: Optional[str] = None, limit: int = 50
    ) -> List[Dict[str, Any]]:
        """List sessions, most recently updated first."""
        return await self.database.list_sessions(user_id=user_id, limit=limit)

    async def list_document_sessions(
        self, document_id: str, limit: int = 50
    ) -> List[Dict[str, Any]]:
        """List the sessions attached to one document, most recent first."""
        return await self.database.list_sessions(document_id=document_id, limit=limit)

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and all its messages.

        Returns:
            True if deleted, False if not found
        """
        deleted = await self.database.delete_session(session_id)
        if deleted:
            logger.info("conversation_session_deleted", session_id=session_id)
        return deleted

    async def update_session_title(self, session_id: str, title: str) -> bool:
        """Rename a session.

        Returns:
            True if updated, False if the session doesn't exist
        """
        updated = await self.database.update_session_title(session_id, title)
        if updated:
            logger.info("session_title_updated", session_id=session_id, title=title)
        return updated
