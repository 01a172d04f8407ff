"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- PDF text extraction
- Document chunking with overlap
- Embedding generation (document vs query intent)
- Semantic retrieval with per-document filtering
- Document ingestion
"""
