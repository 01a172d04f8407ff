"""Ingest pipeline for indexing uploaded documents.

Orchestrates:
- PDF text extraction
- Text chunking
- Embedding generation (document intent)
- Document, file and chunk storage
"""
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from docchat import config
from docchat.db import Database
from docchat.rag.chunker import ProcessedChunk, TextChunker, get_chunk_stats
from docchat.rag.embeddings import Embedder
from docchat.rag.pdf import extract_pdf

logger = structlog.get_logger()

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


@dataclass
class IngestResult:
    """Outcome of ingesting one document."""

    document_id: str
    filename: str
    total_pages: int
    total_chunks: int
    saved_chunks: int
    metadata: Dict[str, Any] = field(default_factory=dict)
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "filename": self.filename,
            "totalPages": self.total_pages,
            "totalChunks": self.total_chunks,
            "savedChunks": self.saved_chunks,
            "metadata": self.metadata,
            "stats": self.stats,
        }


class IngestPipeline:
    """Pipeline for turning uploaded documents into searchable chunks."""

    def __init__(
        self,
        database: Database,
        embedder: Embedder,
        chunker: Optional[TextChunker] = None,
        upload_dir: Path = None,
        batch_size: int = 64,
    ):
        """Initialize the ingest pipeline.

        Args:
            database: Store for documents and chunks
            embedder: Embedding adapter
            chunker: Text chunker (default config if not provided)
            upload_dir: Where original files are kept (default from config)
            batch_size: Number of chunks sent to the provider per request
        """
        self.database = database
        self.embedder = embedder
        self.chunker = chunker or TextChunker()
        self.upload_dir = Path(upload_dir or config.UPLOAD_DIR)
        self.batch_size = batch_size

        logger.info(
            "ingest_pipeline_initialized",
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            upload_dir=str(self.upload_dir),
        )

    async def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed chunk texts in provider-sized batches, preserving order."""
        embeddings: List[List[float]] = []

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]
            embeddings.extend(await self.embedder.embed_for_indexing(batch))

            logger.debug(
                "embeddings_batch_generated",
                batch_size=len(batch),
                total_so_far=len(embeddings),
            )

        return embeddings

    def store_file(self, data: bytes, filename: str) -> str:
        """Keep a copy of the uploaded file and return its storage path."""
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        safe_name = _UNSAFE_FILENAME_CHARS.sub("_", filename)
        path = self.upload_dir / f"{int(time.time() * 1000)}_{safe_name}"
        path.write_bytes(data)
        logger.info("file_stored", path=str(path), size=len(data))
        return str(path)

    async def ingest_pdf(
        self, data: bytes, filename: str, user_id: Optional[str] = None
    ) -> IngestResult:
        """Ingest an uploaded PDF.

        Raises:
            ContentExtractionError: If the PDF has no extractable text
            EmbeddingError: If the embedding provider fails
            StoreError: If the document or chunks can't be saved
        """
        logger.info("ingesting_pdf", filename=filename, size=len(data))

        extracted = extract_pdf(data)
        storage_path = self.store_file(data, filename)

        try:
            return await self.ingest_text(
                extracted.text,
                filename,
                total_pages=extracted.total_pages,
                user_id=user_id,
                metadata={**extracted.metadata, "storage_path": storage_path},
            )
        except Exception:
            # No document row points at the file
            Path(storage_path).unlink(missing_ok=True)
            logger.warning("stored_file_removed", path=storage_path, filename=filename)
            raise

    async def ingest_text(
        self,
        text: str,
        filename: str,
        total_pages: int = 1,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IngestResult:
        """Chunk, embed and store already-extracted document text.

        The document and its chunks are written in one transaction once every
        chunk has a vector, so a failed call leaves nothing behind.
        """
        chunks: List[ProcessedChunk] = self.chunker.process(text, total_pages)
        embeddings = await self.generate_embeddings_batch([c.content for c in chunks])

        document_metadata = {
            **(metadata or {}),
            "total_pages": total_pages,
            "total_chunks": len(chunks),
        }
        document_id, saved = await self.database.insert_document_with_chunks(
            filename,
            [
                {
                    "content": chunk.content,
                    "embedding": embedding,
                    "page_number": chunk.page_number,
                    "chunk_index": chunk.chunk_index,
                    "metadata": chunk.metadata,
                }
                for chunk, embedding in zip(chunks, embeddings)
            ],
            user_id=user_id,
            metadata=document_metadata,
        )

        stats = get_chunk_stats(chunks)
        stats["embedding_dimension"] = self.embedder.dimension

        logger.info(
            "document_ingested",
            document_id=document_id,
            filename=filename,
            chunks_created=saved,
        )

        return IngestResult(
            document_id=document_id,
            filename=filename,
            total_pages=total_pages,
            total_chunks=len(chunks),
            saved_chunks=saved,
            metadata=document_metadata,
            stats=stats,
        )

    async def delete_document(self, document_id: str) -> bool:
        """Delete a document, its chunks and its stored file.

        Returns:
            True if deleted, False if not found
        """
        document = await self.database.get_document(document_id)
        if document is None:
            return False

        deleted = await self.database.delete_document(document_id)

        storage_path = (document.get("metadata") or {}).get("storage_path")
        if deleted and storage_path:
            try:
                Path(storage_path).unlink(missing_ok=True)
            except OSError as e:
                # The rows are gone; an orphaned file is only logged
                logger.error("stored_file_delete_failed", path=storage_path, error=str(e))

        return deleted
