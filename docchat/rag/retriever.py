"""Retriever for semantic search over indexed document chunks.

Handles:
- Query embedding generation (query intent)
- Cosine-similarity matching, optionally restricted to one document
- Threshold filtering and top-k truncation
- Context formatting for the generation prompt
"""
from dataclasses import dataclass, replace
from typing import List, Dict, Any, Optional

import structlog

from docchat import config, locale
from docchat.db import Database
from docchat.errors import RetrievalError
from docchat.rag.embeddings import Embedder

logger = structlog.get_logger()


@dataclass(frozen=True)
class RetrievalConfig:
    """Search limits for one retrieval call."""

    top_k: int = config.RETRIEVAL_TOP_K
    threshold: float = config.RETRIEVAL_THRESHOLD

    def clamped(self) -> "RetrievalConfig":
        """Bound top_k to [1, RETRIEVAL_MAX_TOP_K] and threshold to [0, 1]."""
        return RetrievalConfig(
            top_k=max(1, min(int(self.top_k), config.RETRIEVAL_MAX_TOP_K)),
            threshold=max(0.0, min(float(self.threshold), 1.0)),
        )


@dataclass
class RetrievedChunk:
    """A single retrieved chunk with its similarity to the query."""

    id: str
    content: str
    similarity: float
    metadata: Optional[Dict[str, Any]]

    @property
    def similarity_percent(self) -> str:
        """Similarity formatted for display, e.g. '87.5%'."""
        return f"{self.similarity * 100:.1f}%"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "similarity": self.similarity,
            "metadata": self.metadata,
        }


def format_chunks_as_context(
    chunks: List[RetrievedChunk], separator: str = "\n\n---\n\n"
) -> str:
    """Format retrieved chunks as numbered, similarity-annotated context.

    An empty list renders the canonical "no relevant information" text so
    the prompt never contains an empty context section.
    """
    if not chunks:
        return locale.text("no_context")

    header = locale.text("fragment_header")
    return separator.join(
        f"{header.format(number=i, similarity=chunk.similarity * 100)}\n{chunk.content}"
        for i, chunk in enumerate(chunks, 1)
    )


class Retriever:
    """Semantic retriever for RAG pipeline."""

    def __init__(self, database: Database, embedder: Embedder):
        """Initialize the retriever.

        Args:
            database: Store holding chunk vectors
            embedder: Embedding adapter used for query vectors
        """
        self.database = database
        self.embedder = embedder

    async def search(
        self,
        query: str,
        document_id: Optional[str] = None,
        retrieval_config: Optional[RetrievalConfig] = None,
    ) -> List[RetrievedChunk]:
        """Retrieve chunks similar to a query.

        Args:
            query: User query text
            document_id: Only search this document's chunks (all documents if None)
            retrieval_config: top_k and threshold (clamped before use)

        Returns:
            At most top_k chunks with similarity >= threshold, best first

        Raises:
            RetrievalError: If embedding or matching fails
        """
        cfg = (retrieval_config or RetrievalConfig()).clamped()
        return await self._search(query, document_id, cfg)

    async def _search(
        self, query: str, document_id: Optional[str], cfg: RetrievalConfig
    ) -> List[RetrievedChunk]:
        logger.info(
            "retrieval_started",
            query_length=len(query),
            document_id=document_id,
            top_k=cfg.top_k,
            threshold=cfg.threshold,
        )

        try:
            query_embedding = await self.embedder.embed_for_query(query)
            rows = await self.database.match_chunks(
                query_embedding,
                threshold=cfg.threshold,
                count=cfg.top_k,
                document_id=document_id,
            )
        except Exception as e:
            logger.error(
                "retrieval_failed",
                error=str(e),
                error_type=type(e).__name__,
                query_preview=query[:100],
            )
            raise RetrievalError(f"Retrieval failed: {e}") from e

        results = [
            RetrievedChunk(
                id=row["id"],
                content=row["content"],
                similarity=row["similarity"],
                metadata=row.get("metadata"),
            )
            for row in rows
        ]

        logger.info(
            "retrieval_completed",
            results_returned=len(results),
            top_similarity=results[0].similarity if results else None,
        )
        return results

    async def hybrid_search(
        self,
        query: str,
        document_id: Optional[str] = None,
        retrieval_config: Optional[RetrievalConfig] = None,
    ) -> List[RetrievedChunk]:
        """Over-fetch with a looser threshold, then refilter locally.

        The store has no keyword index, so "hybrid" means a first pass with
        twice the top_k and a lower threshold, followed by filtering on the
        caller's real threshold and truncating to the caller's real top_k.
        """
        cfg = (retrieval_config or RetrievalConfig()).clamped()
        candidate_cfg = replace(
            cfg,
            top_k=cfg.top_k * 2,
            threshold=min(cfg.threshold, config.HYBRID_CANDIDATE_THRESHOLD),
        )

        candidates = await self._search(query, document_id, candidate_cfg)
        results = [c for c in candidates if c.similarity >= cfg.threshold][: cfg.top_k]

        logger.debug(
            "hybrid_search_refiltered",
            candidates=len(candidates),
            kept=len(results),
        )
        return results
