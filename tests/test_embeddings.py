"""Tests for the embedding adapter."""
import pytest

from conftest import DIMENSION, FakeProvider, run
from docchat.errors import DimensionMismatchError, EmbeddingError
from docchat.llm_client import TaskType
from docchat.rag.embeddings import Embedder, cosine_similarity


class ReversedProvider(FakeProvider):
    """Answers with the vectors in reverse order."""

    async def embed(self, texts, task_type):
        items = await super().embed(texts, task_type)
        return list(reversed(items))


def test_indexing_and_query_use_distinct_intents():
    provider = FakeProvider()
    embedder = Embedder(provider, dimension=DIMENSION)

    run(embedder.embed_for_indexing(["first chunk", "second"]))
    run(embedder.embed_for_query("what is this?"))

    assert [call[1] for call in provider.embed_calls] == [
        TaskType.RETRIEVAL_DOCUMENT,
        TaskType.RETRIEVAL_QUERY,
    ]


def test_vectors_follow_input_order():
    """Vector i belongs to text i even if the provider answers out of order."""
    provider = ReversedProvider()
    embedder = Embedder(provider, dimension=DIMENSION)
    texts = ["a", "bb", "ccc"]

    vectors = run(embedder.embed_for_indexing(texts))

    assert vectors == [provider.document_vector(t) for t in texts]


def test_empty_batch_skips_the_provider():
    provider = FakeProvider()

    assert run(Embedder(provider, dimension=DIMENSION).embed_for_indexing([])) == []
    assert provider.embed_calls == []


def test_dimension_mismatch_is_rejected():
    embedder = Embedder(FakeProvider(dimension=4), dimension=DIMENSION)

    with pytest.raises(DimensionMismatchError) as exc_info:
        run(embedder.embed_for_query("query"))

    assert exc_info.value.expected == DIMENSION
    assert exc_info.value.actual == 4


def test_provider_failure_becomes_embedding_error():
    provider = FakeProvider()
    provider.embed_error = ConnectionError("connection refused")

    with pytest.raises(EmbeddingError):
        run(Embedder(provider, dimension=DIMENSION).embed_for_indexing(["text"]))


def test_cosine_similarity():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 1], [-1, -1]) == pytest.approx(-1.0)
    assert cosine_similarity([0, 0], [1, 0]) == 0.0

    with pytest.raises(ValueError):
        cosine_similarity([1, 0], [1, 0, 0])
