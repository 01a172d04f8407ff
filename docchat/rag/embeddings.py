"""Embedding adapter separating document-indexing from query vectorization."""
from typing import List, Optional, Sequence

import numpy as np
import structlog

from docchat import config
from docchat.errors import DimensionMismatchError, EmbeddingError
from docchat.llm_client import ProviderClient, TaskType, get_provider

logger = structlog.get_logger()

__all__ = ["Embedder", "TaskType", "cosine_similarity"]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity between two vectors.

    Raises:
        ValueError: If the vectors differ in length
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors must have the same dimension: {va.shape} vs {vb.shape}")
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class Embedder:
    """Wraps a provider and enforces intent, ordering and dimensionality."""

    def __init__(self, provider: Optional[ProviderClient] = None, dimension: int = None):
        """Initialize the embedder.

        Args:
            provider: Provider client (defaults to the configured provider)
            dimension: Required vector length (default from config)
        """
        self.provider = provider or get_provider()
        self.dimension = dimension or config.EMBEDDING_DIMENSION

    async def _embed(self, texts: List[str], task_type: TaskType) -> List[List[float]]:
        try:
            items = await self.provider.embed(texts, task_type)
        except Exception as e:
            logger.error(
                "embedding_provider_failed",
                error=str(e),
                error_type=type(e).__name__,
                task_type=task_type.value,
                batch_size=len(texts),
            )
            raise EmbeddingError(f"Embedding provider failed: {e}") from e

        if len(items) != len(texts):
            raise EmbeddingError(
                f"Embedding provider returned {len(items)} vectors for {len(texts)} inputs"
            )

        # Re-align by input position; providers may answer out of order
        ordered = sorted(items, key=lambda item: item["index"])
        if [item["index"] for item in ordered] != list(range(len(texts))):
            raise EmbeddingError("Embedding provider returned inconsistent indexes")

        vectors = []
        for item in ordered:
            vector = [float(v) for v in item["embedding"]]
            if len(vector) != self.dimension:
                logger.error(
                    "embedding_dimension_mismatch",
                    expected=self.dimension,
                    actual=len(vector),
                )
                raise DimensionMismatchError(self.dimension, len(vector))
            vectors.append(vector)
        return vectors

    async def embed_for_indexing(self, texts: List[str]) -> List[List[float]]:
        """Embed document chunks for storage; result i belongs to texts[i]."""
        if not texts:
            return []
        vectors = await self._embed(list(texts), TaskType.RETRIEVAL_DOCUMENT)
        logger.info("documents_embedded", count=len(vectors), dimension=self.dimension)
        return vectors

    async def embed_for_query(self, text: str) -> List[float]:
        """Embed a user query for similarity search."""
        vectors = await self._embed([text], TaskType.RETRIEVAL_QUERY)
        logger.debug("query_embedded", dimension=self.dimension)
        return vectors[0]
