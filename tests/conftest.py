"""Pytest configuration and fixtures.

Everything runs against a temporary SQLite file and an in-process fake
provider, so no model server is needed.
"""
import asyncio
import math
from typing import Dict, List, Optional

import pytest

from docchat.db import Database
from docchat.llm_client import ProviderClient, TaskType
from docchat.services import build_services

DIMENSION = 8


def unit_vector(similarity: float, dimension: int = DIMENSION) -> List[float]:
    """Vector whose cosine similarity with the first axis is `similarity`."""
    return [similarity, math.sqrt(1 - similarity ** 2)] + [0.0] * (dimension - 2)


class FakeProvider(ProviderClient):
    """Deterministic provider recording every call it receives."""

    name = "fake"

    def __init__(self, dimension: int = DIMENSION, fragments: Optional[List[str]] = None):
        self.dimension = dimension
        self.fragments = fragments if fragments is not None else ["The answer ", "is 42."]
        self.embed_calls: List[tuple] = []
        self.prompts: List[str] = []
        self.options: List[Dict] = []
        self.embed_error: Optional[Exception] = None
        self.generate_error: Optional[Exception] = None
        # Raise after this many fragments have been streamed
        self.fail_after: Optional[int] = None
        self.stream_closed = False
        self.on_generate = None

    def document_vector(self, text: str) -> List[float]:
        vector = [0.1] * self.dimension
        vector[len(text) % self.dimension] = 1.0
        return vector

    async def embed(self, texts: List[str], task_type: TaskType) -> List[Dict]:
        self.embed_calls.append((list(texts), task_type))
        if self.embed_error is not None:
            raise self.embed_error
        if task_type == TaskType.RETRIEVAL_QUERY:
            vectors = [[1.0] + [0.0] * (self.dimension - 1) for _ in texts]
        else:
            vectors = [self.document_vector(text) for text in texts]
        return [{"index": i, "embedding": v} for i, v in enumerate(vectors)]

    async def generate(self, prompt: str, options: Optional[Dict] = None) -> str:
        self.prompts.append(prompt)
        self.options.append(options or {})
        if self.on_generate is not None:
            await self.on_generate()
        if self.generate_error is not None:
            raise self.generate_error
        return "".join(self.fragments)

    async def generate_stream(self, prompt: str, options: Optional[Dict] = None):
        self.prompts.append(prompt)
        self.options.append(options or {})
        if self.on_generate is not None:
            await self.on_generate()
        try:
            if self.generate_error is not None and self.fail_after is None:
                raise self.generate_error
            for i, fragment in enumerate(self.fragments):
                if self.fail_after is not None and i == self.fail_after:
                    raise self.generate_error or RuntimeError("stream broke")
                yield fragment
        finally:
            self.stream_closed = True

    async def list_models(self) -> List[str]:
        return ["fake-chat", "fake-embed"]


def run(coro):
    """Run a coroutine to completion."""
    return asyncio.run(coro)


@pytest.fixture
def database(tmp_path):
    db = Database(tmp_path / "test.sqlite", dimension=DIMENSION)
    run(db.init())
    return db


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def services(database, provider, tmp_path):
    built = build_services(database, provider)
    built.ingest.upload_dir = tmp_path / "uploads"
    return built


async def seed_document(
    database: Database, similarities: List[float], filename: str = "report.pdf"
) -> str:
    """Store a document whose chunk i has cosine similarity similarities[i] to every query."""
    document_id = await database.insert_document(filename, metadata={"total_pages": 1})
    await database.insert_chunks(
        document_id,
        [
            {
                "content": f"chunk with similarity {s}",
                "embedding": unit_vector(s),
                "page_number": 1,
                "chunk_index": i,
                "metadata": {"document_type": "medical_record"},
            }
            for i, s in enumerate(similarities)
        ],
    )
    return document_id
