"""Tests for semantic and hybrid retrieval."""
import pytest

from conftest import run, seed_document
from docchat import locale
from docchat.errors import RetrievalError
from docchat.rag.retriever import (
    RetrievalConfig,
    RetrievedChunk,
    format_chunks_as_context,
)


def test_search_filters_on_threshold_and_orders_by_similarity(services):
    document_id = run(seed_document(services.database, [0.5, 0.9, 0.75]))

    results = run(services.retriever.search(
        "blood pressure", document_id, RetrievalConfig(top_k=5, threshold=0.7)
    ))

    assert [r.similarity for r in results] == pytest.approx([0.9, 0.75], abs=1e-5)
    assert results[0].content == "chunk with similarity 0.9"
    assert results[0].metadata == {"document_type": "medical_record"}


def test_search_truncates_to_top_k(services):
    document_id = run(seed_document(services.database, [0.9, 0.8, 0.75, 0.72]))

    results = run(services.retriever.search(
        "query", document_id, RetrievalConfig(top_k=2, threshold=0.0)
    ))

    assert [r.similarity for r in results] == pytest.approx([0.9, 0.8], abs=1e-5)


def test_search_is_restricted_to_one_document(services):
    first = run(seed_document(services.database, [0.9], "first.pdf"))
    second = run(seed_document(services.database, [0.95], "second.pdf"))

    scoped = run(services.retriever.search("query", first, RetrievalConfig(threshold=0.5)))
    everywhere = run(services.retriever.search("query", None, RetrievalConfig(threshold=0.5)))

    assert [r.similarity for r in scoped] == pytest.approx([0.9], abs=1e-5)
    assert [r.similarity for r in everywhere] == pytest.approx([0.95, 0.9], abs=1e-5)
    assert second


def test_no_match_is_an_empty_list(services):
    document_id = run(seed_document(services.database, [0.3, 0.2]))

    assert run(services.retriever.search("query", document_id)) == []


def test_config_is_clamped():
    cfg = RetrievalConfig(top_k=100, threshold=1.5).clamped()
    assert (cfg.top_k, cfg.threshold) == (20, 1.0)

    cfg = RetrievalConfig(top_k=0, threshold=-0.2).clamped()
    assert (cfg.top_k, cfg.threshold) == (1, 0.0)


def test_hybrid_search_respects_caller_limits(services):
    """Over-fetched candidates never leak past the caller's threshold or top_k."""
    document_id = run(seed_document(services.database, [0.95, 0.9, 0.85, 0.65, 0.55]))

    results = run(services.retriever.hybrid_search(
        "query", document_id, RetrievalConfig(top_k=2, threshold=0.6)
    ))

    assert [r.similarity for r in results] == pytest.approx([0.95, 0.9], abs=1e-5)

    results = run(services.retriever.hybrid_search(
        "query", document_id, RetrievalConfig(top_k=10, threshold=0.6)
    ))

    assert [r.similarity for r in results] == pytest.approx([0.95, 0.9, 0.85, 0.65], abs=1e-5)


def test_embedding_failure_becomes_retrieval_error(services, provider):
    document_id = run(seed_document(services.database, [0.9]))
    provider.embed_error = TimeoutError("provider timed out")

    with pytest.raises(RetrievalError):
        run(services.retriever.search("query", document_id))


def test_context_formatting():
    chunks = [
        RetrievedChunk(id="a", content="First fragment.", similarity=0.9, metadata=None),
        RetrievedChunk(id="b", content="Second fragment.", similarity=0.756, metadata=None),
    ]

    context = format_chunks_as_context(chunks)

    assert context == (
        "[Fragment 1 - Similarity: 90.0%]\nFirst fragment."
        "\n\n---\n\n"
        "[Fragment 2 - Similarity: 75.6%]\nSecond fragment."
    )
    assert chunks[1].similarity_percent == "75.6%"


def test_empty_context_uses_placeholder():
    assert format_chunks_as_context([]) == locale.text("no_context")
    assert format_chunks_as_context([]) != ""
