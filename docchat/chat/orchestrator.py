"""Chat orchestration: session, retrieval, history, generation, persistence.

Each chat turn runs the same steps in both blocking and streaming mode:

1. Resolve the session (create one if none was given)
2. Retrieve relevant chunks from the document (hybrid search)
3. Format them as context
4. Load and format the recent history window
5. Persist the user message, before generation starts
6. Generate the answer
7. Persist the complete assistant answer
"""
import inspect
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import structlog

from docchat import config
from docchat.chat.generation import ResponseGenerator
from docchat.errors import NotFoundError, ValidationError
from docchat.memory import ConversationManager, derive_title
from docchat.rag.retriever import (
    RetrievalConfig,
    RetrievedChunk,
    Retriever,
    format_chunks_as_context,
)

logger = structlog.get_logger()

SessionCallback = Callable[[str], Any]
SourcesCallback = Callable[[List[RetrievedChunk]], Any]


@dataclass
class ChatConfig:
    """Per-call options for a chat turn."""

    user_id: Optional[str] = None
    title: Optional[str] = None
    temperature: Optional[float] = None


@dataclass
class ChatResult:
    """Result of a blocking chat turn."""

    response: str
    session_id: str
    sources: List[RetrievedChunk] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "sessionId": self.session_id,
            "sources": [source.to_dict() for source in self.sources],
        }


async def _notify(callback: Optional[Callable], value: Any) -> None:
    if callback is None:
        return
    result = callback(value)
    if inspect.isawaitable(result):
        await result


class ChatOrchestrator:
    """Coordinates retrieval, conversation memory and generation."""

    def __init__(
        self,
        retriever: Retriever,
        memory: ConversationManager,
        generator: ResponseGenerator,
        retrieval_config: Optional[RetrievalConfig] = None,
        history_window: int = None,
    ):
        """Initialize the orchestrator.

        Args:
            retriever: Semantic retriever over document chunks
            memory: Conversation manager for sessions and messages
            generator: Response generator
            retrieval_config: Limits used for chat retrieval (recall-leaning defaults)
            history_window: Number of previous messages given to the generator
        """
        self.retriever = retriever
        self.memory = memory
        self.generator = generator
        self.retrieval_config = retrieval_config or RetrievalConfig(
            top_k=config.CHAT_RETRIEVAL_TOP_K,
            threshold=config.CHAT_RETRIEVAL_THRESHOLD,
        )
        self.history_window = history_window or config.CHAT_HISTORY_WINDOW

    @staticmethod
    def _validate(message: str, document_id: str) -> str:
        message = (message or "").strip()
        if not message:
            raise ValidationError("message is required")
        if not document_id:
            raise ValidationError("documentId is required")
        return message

    async def _resolve_session(
        self,
        message: str,
        document_id: str,
        session_id: Optional[str],
        chat_config: ChatConfig,
    ) -> Tuple[str, bool]:
        """Return (session_id, created)."""
        if session_id:
            session = await self.memory.get_session(session_id)
            if session is None:
                raise NotFoundError(f"Session not found: {session_id}")
            if session["document_id"] and session["document_id"] != document_id:
                raise ValidationError(
                    "Session belongs to a different document"
                )
            return session_id, False

        session_id = await self.memory.create_session(
            document_id=document_id,
            user_id=chat_config.user_id,
            title=chat_config.title or derive_title(message),
        )
        return session_id, True

    async def _build_context(
        self, message: str, document_id: str, session_id: str
    ) -> Tuple[List[RetrievedChunk], str, str]:
        sources = await self.retriever.hybrid_search(
            message, document_id, self.retrieval_config
        )
        context = format_chunks_as_context(sources)
        history = await self.memory.format_conversation_history(session_id)
        return sources, context, history

    @staticmethod
    def _assistant_metadata(sources: List[RetrievedChunk]) -> Dict[str, Any]:
        return {
            "sources": [
                {"id": source.id, "similarity": source.similarity} for source in sources
            ]
        }

    async def process_chat(
        self,
        message: str,
        document_id: str,
        session_id: Optional[str] = None,
        chat_config: Optional[ChatConfig] = None,
    ) -> ChatResult:
        """Answer a message and return the full response.

        Raises:
            ValidationError: On empty message or missing document id
            NotFoundError: If a given session doesn't exist
            RetrievalError: If retrieval fails (nothing is generated)
            GenerationError: If generation fails (the user message stays stored)
        """
        message = self._validate(message, document_id)
        chat_config = chat_config or ChatConfig()

        session_id, created = await self._resolve_session(
            message, document_id, session_id, chat_config
        )
        logger.info(
            "chat_request_received",
            session_id=session_id,
            session_created=created,
            message_length=len(message),
            stream=False,
        )

        sources, context, history = await self._build_context(
            message, document_id, session_id
        )

        await self.memory.append_message(session_id, "user", message)

        response = await self.generator.generate(
            context, history, message, temperature=chat_config.temperature
        )

        await self.memory.append_message(
            session_id, "assistant", response, self._assistant_metadata(sources)
        )

        logger.info(
            "chat_response_sent",
            session_id=session_id,
            response_length=len(response),
            num_sources=len(sources),
        )
        return ChatResult(response=response, session_id=session_id, sources=sources)

    async def process_chat_stream(
        self,
        message: str,
        document_id: str,
        session_id: Optional[str] = None,
        chat_config: Optional[ChatConfig] = None,
        on_session_created: Optional[SessionCallback] = None,
        on_sources_retrieved: Optional[SourcesCallback] = None,
    ) -> AsyncIterator[str]:
        """Answer a message, yielding text fragments as they are generated.

        on_session_created fires once, only when a session was created, before
        any fragment. on_sources_retrieved fires once after retrieval and
        before generation. The assistant message is stored only if the
        stream completes; a failed or abandoned stream stores nothing for it.
        """
        message = self._validate(message, document_id)
        chat_config = chat_config or ChatConfig()

        session_id, created = await self._resolve_session(
            message, document_id, session_id, chat_config
        )
        if created:
            await _notify(on_session_created, session_id)

        logger.info(
            "chat_request_received",
            session_id=session_id,
            session_created=created,
            message_length=len(message),
            stream=True,
        )

        sources, context, history = await self._build_context(
            message, document_id, session_id
        )
        await _notify(on_sources_retrieved, sources)

        await self.memory.append_message(session_id, "user", message)

        fragments: List[str] = []
        completed = False
        stream = self.generator.generate_stream(
            context, history, message, temperature=chat_config.temperature
        )
        try:
            async for fragment in stream:
                fragments.append(fragment)
                yield fragment
            completed = True
        finally:
            await stream.aclose()
            if not completed:
                logger.warning(
                    "chat_stream_incomplete",
                    session_id=session_id,
                    partial_length=sum(len(f) for f in fragments),
                )

        response = "".join(fragments)
        await self.memory.append_message(
            session_id, "assistant", response, self._assistant_metadata(sources)
        )

        logger.info(
            "chat_stream_completed",
            session_id=session_id,
            response_length=len(response),
            num_sources=len(sources),
        )
