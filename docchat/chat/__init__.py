"""Chat orchestration and response generation."""
from docchat.chat.generation import ResponseGenerator
from docchat.chat.orchestrator import ChatConfig, ChatOrchestrator, ChatResult

__all__ = ["ChatConfig", "ChatOrchestrator", "ChatResult", "ResponseGenerator"]
