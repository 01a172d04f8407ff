"""Tests for text cleaning and chunking."""
import pytest

from docchat.errors import ContentExtractionError
from docchat.rag.chunker import (
    TextChunker,
    clean_text,
    estimate_page_number,
    get_chunk_stats,
)


def test_clean_text_normalizes_whitespace():
    """Line endings, runs of spaces, blank lines and control chars are normalized."""
    assert clean_text("  a \t b\r\n\n\n\nc\x00d  ") == "a b\n\ncd"


def test_paragraphs_are_packed_with_word_overlap():
    """A new chunk starts with the tail words of the previous one."""
    chunker = TextChunker(chunk_size=20, chunk_overlap=5, min_chunk_length=0)
    text = "A. B. C.\n\nA. B. C.\n\nA. B. C."

    chunks = chunker.split(text)

    assert chunks == ["A. B. C.\n\nA. B. C.", "C.\n\nA. B. C."]
    assert all(len(chunk) <= 20 for chunk in chunks)


def test_long_paragraph_falls_back_to_sentences():
    """A paragraph longer than a chunk is split on sentence boundaries."""
    chunker = TextChunker(chunk_size=20, chunk_overlap=0, min_chunk_length=0)

    chunks = chunker.split("One two three. Four five six. Seven eight nine.")

    assert chunks == ["One two three.", "Four five six.", "Seven eight nine."]


def test_short_chunks_are_discarded():
    chunker = TextChunker(chunk_size=20, chunk_overlap=0, min_chunk_length=15)

    chunks = chunker.split("One two three. Four five six. Seven eight nine.")

    assert chunks == ["Seven eight nine."]


def numbered_paragraph(start: int, sentences: int, words: int = 10) -> str:
    """Sentences of distinct four-character words w000, w001, ..."""
    return " ".join(
        " ".join(f"w{start + s * words + i:03d}" for i in range(words)) + "."
        for s in range(sentences)
    )


# Long opening paragraph, short ones, and a long one after buffered text
MIXED_TEXT = "\n\n".join([
    numbered_paragraph(0, 6),
    numbered_paragraph(60, 1, words=8),
    numbered_paragraph(68, 1, words=8),
    numbered_paragraph(76, 5),
    numbered_paragraph(126, 1, words=8),
    numbered_paragraph(134, 1, words=8),
])


def test_chunks_reproduce_every_word_in_order():
    """Joined in order without their overlap, chunks give back the cleaned text."""
    chunker = TextChunker(chunk_size=200, chunk_overlap=20, min_chunk_length=50)
    overlap = chunker.overlap_words

    chunks = chunker.split(MIXED_TEXT)

    words = []
    previous = []
    for chunk in chunks:
        tokens = chunk.split()
        if previous and tokens[:overlap] == previous[-overlap:]:
            tokens = tokens[overlap:]
        words.extend(tokens)
        previous = chunk.split()

    assert len(chunks) == 5
    assert words == clean_text(MIXED_TEXT).split()
    assert all(len(chunk) >= 50 for chunk in chunks)


def test_oversized_paragraph_after_buffer_is_kept_whole():
    chunker = TextChunker(chunk_size=200, chunk_overlap=20, min_chunk_length=50)

    chunks = chunker.split(MIXED_TEXT)

    assert chunks[3] == "w072 w073 w074 w075.\n\n" + numbered_paragraph(76, 5)
    assert len(chunks[3]) > 200


def test_overlap_must_be_smaller_than_chunk_size():
    with pytest.raises(ValueError):
        TextChunker(chunk_size=100, chunk_overlap=100)


def test_estimate_page_number():
    """Pages are estimated by proportional position and never exceed the total."""
    assert estimate_page_number(0, 4, 2) == 1
    assert estimate_page_number(1, 4, 2) == 1
    assert estimate_page_number(2, 4, 2) == 2
    assert estimate_page_number(3, 4, 2) == 2
    assert estimate_page_number(0, 0, 5) == 1
    assert estimate_page_number(3, 4, 0) == 1


def test_process_assigns_dense_indexes_and_metadata():
    chunker = TextChunker(
        chunk_size=20, chunk_overlap=0, min_chunk_length=0, document_type="lab_report"
    )

    chunks = chunker.process("One two three. Four five six. Seven eight nine.", total_pages=3)

    assert [c.chunk_index for c in chunks] == [0, 1, 2]
    assert [c.page_number for c in chunks] == [1, 2, 3]
    assert all(c.metadata["document_type"] == "lab_report" for c in chunks)
    assert all("processed_at" in c.metadata for c in chunks)


def test_process_rejects_empty_text():
    with pytest.raises(ContentExtractionError):
        TextChunker().process("   \n\n  ")


def test_process_rejects_text_too_short_for_a_chunk():
    with pytest.raises(ContentExtractionError):
        TextChunker(min_chunk_length=50).process("Too short.")


def test_chunk_stats():
    chunker = TextChunker(chunk_size=20, chunk_overlap=0, min_chunk_length=0)
    chunks = chunker.process("One two three. Four five six. Seven eight nine.")

    stats = get_chunk_stats(chunks)

    assert stats["chunk_count"] == 3
    assert stats["min_chunk_size"] == 14
    assert stats["max_chunk_size"] == 17
    assert get_chunk_stats([])["chunk_count"] == 0
