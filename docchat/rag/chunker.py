"""Text chunking with overlap for the RAG pipeline.

Paragraph-first, character-bounded chunking to avoid tokenizer dependencies.
Paragraphs that are too long on their own fall back to sentence splitting.
"""
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

import structlog

from docchat import config
from docchat.errors import ContentExtractionError

logger = structlog.get_logger()

# Rough average word length used to turn a character overlap into words
CHARS_PER_WORD = 5

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_HORIZONTAL_SPACE = re.compile(r"[ \t]+")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_PARAGRAPH_BREAK = re.compile(r"\n\n+")
_SENTENCE = re.compile(r"[^.!?]+[.!?]+")


@dataclass
class ProcessedChunk:
    """A chunk ready to be embedded and stored."""

    content: str
    page_number: int
    chunk_index: int
    metadata: Dict[str, Any] = field(default_factory=dict)


def clean_text(text: str) -> str:
    """Normalize extracted text before chunking.

    Unifies line endings, collapses horizontal whitespace and blank lines,
    strips control characters and trims every line.
    """
    text = text.replace("\r\n", "\n")
    text = _HORIZONTAL_SPACE.sub(" ", text)
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    text = _CONTROL_CHARS.sub("", text)
    return "\n".join(line.strip() for line in text.split("\n")).strip()


def estimate_page_number(chunk_index: int, total_chunks: int, total_pages: int) -> int:
    """Estimate the source page of a chunk by proportional position."""
    if total_chunks == 0 or total_pages == 0:
        return 1
    estimate = math.floor(chunk_index / total_chunks * total_pages) + 1
    return min(estimate, total_pages)


class TextChunker:
    """Paragraph-aware text chunker with word overlap between chunks."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
        min_chunk_length: int = None,
        document_type: str = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Maximum chunk size in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)
            min_chunk_length: Chunks shorter than this are dropped (default from config)
            document_type: Tag stored in each chunk's metadata
        """
        self.chunk_size = chunk_size or config.CHUNK_SIZE
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        self.min_chunk_length = (
            config.MIN_CHUNK_LENGTH if min_chunk_length is None else min_chunk_length
        )
        self.document_type = document_type or config.DOCUMENT_TYPE

        # Validate parameters
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        logger.info(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    @property
    def overlap_words(self) -> int:
        return math.ceil(self.chunk_overlap / CHARS_PER_WORD)

    def _overlap_tail(self, chunk: str) -> str:
        if self.overlap_words == 0:
            return ""
        return " ".join(chunk.split()[-self.overlap_words:])

    def split(self, text: str) -> List[str]:
        """Split text into overlapping chunks.

        Args:
            text: Raw extracted text

        Returns:
            Ordered list of chunk strings, none shorter than min_chunk_length
        """
        chunks: List[str] = []
        current = ""

        for paragraph in _PARAGRAPH_BREAK.split(clean_text(text)):
            paragraph = paragraph.strip()
            if not paragraph:
                continue

            if len(current + "\n\n" + paragraph) <= self.chunk_size:
                current = f"{current}\n\n{paragraph}" if current else paragraph
                continue

            if current:
                # The next paragraph is seeded whole, even when it alone exceeds chunk_size
                chunks.append(current.strip())
                tail = self._overlap_tail(current)
                current = f"{tail}\n\n{paragraph}" if tail else paragraph
                continue

            # A single paragraph too long for one chunk: go sentence by sentence
            for sentence in _SENTENCE.findall(paragraph) or [paragraph]:
                if len(current + " " + sentence) > self.chunk_size:
                    if current:
                        chunks.append(current.strip())
                    current = sentence
                else:
                    current = f"{current} {sentence}" if current else sentence

        if current.strip():
            chunks.append(current.strip())

        kept = [chunk for chunk in chunks if len(chunk) >= self.min_chunk_length]

        logger.info(
            "text_chunked",
            text_length=len(text),
            chunk_count=len(kept),
            discarded=len(chunks) - len(kept),
        )
        return kept

    def process(self, text: str, total_pages: int = 0) -> List[ProcessedChunk]:
        """Chunk a document's text and attach index, page estimate and metadata.

        Args:
            text: Raw extracted text
            total_pages: Page count of the source document

        Returns:
            List of ProcessedChunk objects with dense indexes 0..n-1

        Raises:
            ContentExtractionError: If the text is empty or yields no chunks
        """
        if not text or not text.strip():
            raise ContentExtractionError(
                "The document contains no extractable text. "
                "It may be a scanned document without OCR."
            )

        contents = self.split(text)
        if not contents:
            raise ContentExtractionError(
                "The document text is too short to produce any searchable chunk."
            )

        processed_at = datetime.now(timezone.utc).isoformat()
        return [
            ProcessedChunk(
                content=content,
                page_number=estimate_page_number(index, len(contents), total_pages),
                chunk_index=index,
                metadata={
                    "document_type": self.document_type,
                    "processed_at": processed_at,
                },
            )
            for index, content in enumerate(contents)
        ]


def get_chunk_stats(chunks: List[ProcessedChunk]) -> dict:
    """Get statistics about a set of chunks.

    Args:
        chunks: List of ProcessedChunk objects

    Returns:
        Dictionary with chunk statistics
    """
    if not chunks:
        return {
            "chunk_count": 0,
            "total_chars": 0,
            "avg_chunk_size": 0,
            "min_chunk_size": 0,
            "max_chunk_size": 0,
        }

    chunk_sizes = [len(c.content) for c in chunks]

    return {
        "chunk_count": len(chunks),
        "total_chars": sum(chunk_sizes),
        "avg_chunk_size": round(sum(chunk_sizes) / len(chunks)),
        "min_chunk_size": min(chunk_sizes),
        "max_chunk_size": max(chunk_sizes),
    }
