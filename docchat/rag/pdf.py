"""PDF text extraction.

Produces the raw text and page count of an uploaded PDF plus whatever
document information (title, author, creation date) the file carries.
"""
import io
from dataclasses import dataclass, field
from typing import Any, Dict

import structlog
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from docchat.errors import ContentExtractionError

logger = structlog.get_logger()


@dataclass
class ExtractedDocument:
    """Text and metadata pulled out of a PDF."""

    text: str
    total_pages: int
    metadata: Dict[str, Any] = field(default_factory=dict)


def _document_info(reader: PdfReader) -> Dict[str, Any]:
    info = reader.metadata
    if not info:
        return {}

    metadata = {
        "title": info.title,
        "author": info.author,
        "creation_date": info.get("/CreationDate"),
    }
    return {key: str(value) for key, value in metadata.items() if value}


def extract_pdf(data: bytes) -> ExtractedDocument:
    """Extract text from a PDF held in memory.

    Args:
        data: Raw PDF bytes

    Returns:
        ExtractedDocument with page texts joined by blank lines

    Raises:
        ContentExtractionError: If the file can't be parsed or has no text
    """
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
        metadata = _document_info(reader)
    except (PdfReadError, ValueError, OSError) as e:
        logger.error("pdf_parse_failed", error=str(e), error_type=type(e).__name__)
        raise ContentExtractionError(f"Could not read PDF: {e}") from e

    text = "\n\n".join(pages)
    logger.info(
        "pdf_extracted",
        total_pages=len(pages),
        text_length=len(text),
    )

    if not text.strip():
        raise ContentExtractionError(
            "The PDF contains no extractable text. "
            "It may be a scanned document without OCR."
        )

    return ExtractedDocument(text=text, total_pages=len(pages), metadata=metadata)
