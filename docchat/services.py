"""Wiring of the pipeline components.

Shared handles (store, provider) are created once and passed to each
component explicitly, so any of them can be replaced in tests.
"""
from dataclasses import dataclass
from typing import Optional

from docchat.chat import ChatOrchestrator, ResponseGenerator
from docchat.db import Database, get_database
from docchat.llm_client import ProviderClient, get_provider
from docchat.memory import ConversationManager
from docchat.rag.embeddings import Embedder
from docchat.rag.ingest import IngestPipeline
from docchat.rag.retriever import Retriever


@dataclass
class Services:
    """Everything the web layer needs to serve requests."""

    database: Database
    provider: ProviderClient
    embedder: Embedder
    retriever: Retriever
    memory: ConversationManager
    generator: ResponseGenerator
    orchestrator: ChatOrchestrator
    ingest: IngestPipeline


def build_services(database: Database, provider: ProviderClient) -> Services:
    """Assemble the components around a store and a provider."""
    embedder = Embedder(provider, dimension=database.dimension)
    retriever = Retriever(database, embedder)
    memory = ConversationManager(database)
    generator = ResponseGenerator(provider)
    return Services(
        database=database,
        provider=provider,
        embedder=embedder,
        retriever=retriever,
        memory=memory,
        generator=generator,
        orchestrator=ChatOrchestrator(retriever, memory, generator),
        ingest=IngestPipeline(database, embedder),
    )


async def get_services(
    database: Optional[Database] = None, provider: Optional[ProviderClient] = None
) -> Services:
    """Build services from the process-wide store and provider by default."""
    return build_services(database or await get_database(), provider or get_provider())
