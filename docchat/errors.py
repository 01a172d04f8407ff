"""Exception hierarchy shared by the RAG pipeline and the web layer."""


class DocChatError(Exception):
    """Base class for all application errors."""


class ValidationError(DocChatError):
    """Missing or malformed input. The message is safe to show to clients."""


class NotFoundError(DocChatError):
    """A session or document does not exist."""


class ContentExtractionError(DocChatError):
    """A document yielded no usable text (empty, scanned without OCR, corrupt)."""


class ProviderError(DocChatError):
    """The embedding or generation provider failed."""


class EmbeddingError(ProviderError):
    """The embedding provider failed, so retrieval is unavailable."""


class DimensionMismatchError(EmbeddingError):
    """A vector does not have the configured embedding dimensionality."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class GenerationError(ProviderError):
    """The generation provider failed."""


class RetrievalError(DocChatError):
    """Semantic search could not be completed."""


class StoreError(DocChatError):
    """A read or write against the persistent store failed."""
