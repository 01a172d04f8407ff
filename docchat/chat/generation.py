"""Response generation grounded in retrieved document context."""
from typing import AsyncIterator, Dict, Optional

import structlog

from docchat.errors import GenerationError
from docchat.llm_client import ProviderClient, get_provider

logger = structlog.get_logger()

ASSISTANT_PROMPT = """\
You are a medical assistant specialised in analysing medical records.
Your role is to help interpret and answer questions about the provided document.

## Guidelines:
1. Base ALL of your answers on the document context provided
2. If the information is not in the document, say clearly that it is not available
3. Use appropriate medical terminology but explain complex terms
4. Do NOT invent medical information
5. Always recommend consulting a health professional for medical decisions

## Document Context:
{context}

## Conversation History:
{chat_history}

## User Question:
{question}

## Your Answer:
"""


def build_prompt(context: str, chat_history: str, question: str) -> str:
    """Fill the assistant prompt template."""
    return (
        ASSISTANT_PROMPT
        .replace("{context}", context)
        .replace("{chat_history}", chat_history)
        .replace("{question}", question)
    )


class ResponseGenerator:
    """Generates answers from context, history and question."""

    def __init__(self, provider: Optional[ProviderClient] = None):
        self.provider = provider or get_provider()

    @staticmethod
    def _options(temperature: Optional[float]) -> Dict:
        return {"temperature": temperature} if temperature is not None else {}

    async def generate(
        self,
        context: str,
        chat_history: str,
        question: str,
        temperature: Optional[float] = None,
    ) -> str:
        """Generate a complete answer.

        Raises:
            GenerationError: If the provider fails
        """
        prompt = build_prompt(context, chat_history, question)
        try:
            return await self.provider.generate(prompt, self._options(temperature))
        except Exception as e:
            logger.error("generation_failed", error=str(e), error_type=type(e).__name__)
            raise GenerationError(f"Generation failed: {e}") from e

    async def generate_stream(
        self,
        context: str,
        chat_history: str,
        question: str,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """Yield answer fragments as the provider produces them.

        Closing this generator closes the provider stream.

        Raises:
            GenerationError: If the provider fails before or during streaming
        """
        prompt = build_prompt(context, chat_history, question)
        stream = self.provider.generate_stream(prompt, self._options(temperature))
        try:
            async for fragment in stream:
                yield fragment
        except Exception as e:
            logger.error(
                "generation_stream_failed", error=str(e), error_type=type(e).__name__
            )
            raise GenerationError(f"Generation failed: {e}") from e
        finally:
            await stream.aclose()
