"""Database layer for docchat.

SQLite database (accessed through aiosqlite) storing:
- Uploaded documents and their metadata
- Text chunks with their embedding vectors
- Chat sessions and their messages

Vector matching is exact: candidate embeddings are loaded from SQLite and
ranked with a FAISS inner-product index over L2-normalised vectors, which
is cosine similarity.
"""
import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any, Sequence, Tuple

import aiosqlite
import faiss
import numpy as np
import structlog

from docchat import config
from docchat.errors import DimensionMismatchError, NotFoundError, StoreError

logger = structlog.get_logger()

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY,
        filename TEXT NOT NULL,
        uploaded_at TEXT NOT NULL,
        user_id TEXT,
        metadata_json TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chunks (
        id TEXT PRIMARY KEY,
        document_id TEXT NOT NULL
            REFERENCES documents(id) ON DELETE CASCADE,
        chunk_index INTEGER NOT NULL,
        page_number INTEGER NOT NULL,
        content TEXT NOT NULL,
        embedding BLOB NOT NULL,
        metadata_json TEXT,
        created_at TEXT NOT NULL,
        UNIQUE(document_id, chunk_index)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_chunks_document_id
    ON chunks(document_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_sessions (
        id TEXT PRIMARY KEY,
        document_id TEXT,
        user_id TEXT,
        title TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_messages (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL
            REFERENCES chat_sessions(id) ON DELETE CASCADE,
        role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
        content TEXT NOT NULL,
        metadata_json TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_chat_messages_session
    ON chat_messages(session_id, created_at)
    """,
)


INSERT_DOCUMENT = """
    INSERT INTO documents (id, filename, uploaded_at, user_id, metadata_json)
    VALUES (?, ?, ?, ?, ?)
"""

INSERT_CHUNK = """
    INSERT INTO chunks (
        id, document_id, chunk_index, page_number, content,
        embedding, metadata_json, created_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_dict(row: aiosqlite.Row) -> Dict[str, Any]:
    """Convert a row to a dict, replacing metadata_json with parsed metadata."""
    data = dict(row)
    raw = data.pop("metadata_json", None)
    data["metadata"] = json.loads(raw) if raw else None
    data.pop("embedding", None)
    return data


class Database:
    """Async access to the SQLite store."""

    def __init__(self, db_path: Path = None, dimension: int = None):
        """Initialize the database handle.

        Args:
            db_path: Path to the SQLite file (default from config)
            dimension: Embedding dimensionality enforced on every vector
        """
        self.db_path = Path(db_path or config.DB_PATH)
        self.dimension = dimension or config.EMBEDDING_DIMENSION

    @asynccontextmanager
    async def connect(self):
        """Open a connection with foreign keys enforced."""
        conn = await aiosqlite.connect(self.db_path)
        conn.row_factory = aiosqlite.Row
        try:
            await conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        finally:
            await conn.close()

    async def init(self) -> None:
        """Create tables and indexes if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self.connect() as conn:
            try:
                for statement in SCHEMA:
                    await conn.execute(statement)
                await conn.commit()
                logger.info("database_initialized", db_path=str(self.db_path))
            except aiosqlite.Error as e:
                await conn.rollback()
                logger.error("database_init_failed", error=str(e))
                raise StoreError(f"Failed to initialize database: {e}") from e

    # ------------------------------------------------------------------
    # Documents and chunks
    # ------------------------------------------------------------------

    async def insert_document(
        self,
        filename: str,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Insert a document row and return its ID."""
        document_id = str(uuid.uuid4())
        async with self.connect() as conn:
            try:
                await conn.execute(
                    INSERT_DOCUMENT,
                    (
                        document_id,
                        filename,
                        _now(),
                        user_id,
                        json.dumps(metadata) if metadata else None,
                    ),
                )
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                logger.error("document_insert_failed", error=str(e), filename=filename)
                raise StoreError(f"Failed to save document: {e}") from e

        logger.info("document_inserted", document_id=document_id, filename=filename)
        return document_id

    async def update_document_metadata(
        self, document_id: str, metadata: Dict[str, Any]
    ) -> None:
        """Merge new keys into a document's metadata."""
        async with self.connect() as conn:
            try:
                cursor = await conn.execute(
                    "SELECT metadata_json FROM documents WHERE id = ?", (document_id,)
                )
                row = await cursor.fetchone()
                if row is None:
                    raise NotFoundError(f"Document not found: {document_id}")

                merged = json.loads(row["metadata_json"]) if row["metadata_json"] else {}
                merged.update(metadata)
                await conn.execute(
                    "UPDATE documents SET metadata_json = ? WHERE id = ?",
                    (json.dumps(merged), document_id),
                )
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                logger.error("document_metadata_update_failed", error=str(e))
                raise StoreError(f"Failed to update document metadata: {e}") from e

    def _chunk_rows(
        self, document_id: str, chunks: Sequence[Dict[str, Any]]
    ) -> List[tuple]:
        """Build chunk rows, rejecting vectors of the wrong dimension."""
        rows = []
        created_at = _now()
        for chunk in chunks:
            vector = np.asarray(chunk["embedding"], dtype=np.float32)
            if vector.shape != (self.dimension,):
                raise DimensionMismatchError(self.dimension, int(vector.size))
            rows.append((
                str(uuid.uuid4()),
                document_id,
                chunk["chunk_index"],
                chunk["page_number"],
                chunk["content"],
                vector.tobytes(),
                json.dumps(chunk.get("metadata")) if chunk.get("metadata") else None,
                created_at,
            ))
        return rows

    async def insert_chunks(
        self, document_id: str, chunks: Sequence[Dict[str, Any]]
    ) -> int:
        """Insert all chunks of a document in a single transaction.

        Each chunk dict needs content, embedding, page_number, chunk_index
        and may carry metadata.

        Returns:
            Number of chunks saved
        """
        rows = self._chunk_rows(document_id, chunks)

        async with self.connect() as conn:
            try:
                await conn.executemany(INSERT_CHUNK, rows)
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                logger.error(
                    "chunks_insert_failed", error=str(e), document_id=document_id
                )
                raise StoreError(f"Failed to save chunks: {e}") from e

        logger.info("chunks_inserted", document_id=document_id, count=len(rows))
        return len(rows)

    async def insert_document_with_chunks(
        self,
        filename: str,
        chunks: Sequence[Dict[str, Any]],
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[str, int]:
        """Insert a document and all of its chunks in one transaction.

        Either both the document row and every chunk are committed, or
        nothing is.

        Returns:
            (document_id, number of chunks saved)
        """
        document_id = str(uuid.uuid4())
        rows = self._chunk_rows(document_id, chunks)

        async with self.connect() as conn:
            try:
                await conn.execute(
                    INSERT_DOCUMENT,
                    (
                        document_id,
                        filename,
                        _now(),
                        user_id,
                        json.dumps(metadata) if metadata else None,
                    ),
                )
                await conn.executemany(INSERT_CHUNK, rows)
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                logger.error("document_insert_failed", error=str(e), filename=filename)
                raise StoreError(f"Failed to save document: {e}") from e

        logger.info(
            "document_inserted",
            document_id=document_id,
            filename=filename,
            chunks=len(rows),
        )
        return document_id, len(rows)

    async def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        """Get a document by ID, or None if it doesn't exist."""
        async with self.connect() as conn:
            try:
                cursor = await conn.execute(
                    "SELECT * FROM documents WHERE id = ?", (document_id,)
                )
                row = await cursor.fetchone()
                return _row_to_dict(row) if row else None
            except aiosqlite.Error as e:
                logger.error("document_retrieval_failed", error=str(e))
                raise StoreError(f"Failed to get document: {e}") from e

    async def list_documents(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """List documents, newest first, optionally for one user."""
        query = "SELECT * FROM documents"
        params: tuple = ()
        if user_id:
            query += " WHERE user_id = ?"
            params = (user_id,)
        query += " ORDER BY uploaded_at DESC"

        async with self.connect() as conn:
            try:
                rows = await conn.execute_fetchall(query, params)
                return [_row_to_dict(row) for row in rows]
            except aiosqlite.Error as e:
                logger.error("documents_list_failed", error=str(e))
                raise StoreError(f"Failed to list documents: {e}") from e

    async def get_document_chunks(self, document_id: str) -> List[Dict[str, Any]]:
        """Get all chunks of a document ordered by chunk index (without vectors)."""
        async with self.connect() as conn:
            try:
                rows = await conn.execute_fetchall(
                    """
                    SELECT id, document_id, chunk_index, page_number, content,
                           metadata_json, created_at
                    FROM chunks
                    WHERE document_id = ?
                    ORDER BY chunk_index ASC
                    """,
                    (document_id,),
                )
                return [_row_to_dict(row) for row in rows]
            except aiosqlite.Error as e:
                logger.error("chunks_retrieval_failed", error=str(e))
                raise StoreError(f"Failed to get chunks: {e}") from e

    async def delete_document(self, document_id: str) -> bool:
        """Delete a document; its chunks go with it (ON DELETE CASCADE).

        Returns:
            True if deleted, False if not found
        """
        async with self.connect() as conn:
            try:
                cursor = await conn.execute(
                    "DELETE FROM documents WHERE id = ?", (document_id,)
                )
                await conn.commit()
                deleted = cursor.rowcount > 0
            except aiosqlite.Error as e:
                await conn.rollback()
                logger.error("document_delete_failed", error=str(e))
                raise StoreError(f"Failed to delete document: {e}") from e

        if deleted:
            logger.info("document_deleted", document_id=document_id)
        return deleted

    async def get_chunk_count(self, document_id: Optional[str] = None) -> int:
        """Count stored chunks, optionally for one document."""
        query = "SELECT COUNT(*) FROM chunks"
        params: tuple = ()
        if document_id:
            query += " WHERE document_id = ?"
            params = (document_id,)

        async with self.connect() as conn:
            try:
                cursor = await conn.execute(query, params)
                row = await cursor.fetchone()
                return row[0]
            except aiosqlite.Error as e:
                logger.error("chunk_count_failed", error=str(e))
                raise StoreError(f"Failed to count chunks: {e}") from e

    async def match_chunks(
        self,
        query_embedding: Sequence[float],
        threshold: float,
        count: int,
        document_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Rank stored chunks by cosine similarity to a query vector.

        Args:
            query_embedding: Query vector of the configured dimension
            threshold: Minimum similarity for a chunk to be returned
            count: Maximum number of results
            document_id: Restrict candidates to one document (all if None)

        Returns:
            Dicts with id, content, similarity, metadata, document_id,
            chunk_index and page_number, best first. Equal similarities keep
            storage order.
        """
        query = np.asarray([query_embedding], dtype=np.float32)
        if query.shape[1] != self.dimension:
            raise DimensionMismatchError(self.dimension, query.shape[1])

        sql = """
            SELECT id, document_id, chunk_index, page_number, content,
                   embedding, metadata_json
            FROM chunks
        """
        params: tuple = ()
        if document_id:
            sql += " WHERE document_id = ?"
            params = (document_id,)
        sql += " ORDER BY rowid ASC"

        async with self.connect() as conn:
            try:
                rows = await conn.execute_fetchall(sql, params)
            except aiosqlite.Error as e:
                logger.error("match_chunks_failed", error=str(e))
                raise StoreError(f"Failed to load candidate chunks: {e}") from e

        if not rows or count <= 0:
            return []

        vectors = np.vstack(
            [np.frombuffer(row["embedding"], dtype=np.float32) for row in rows]
        )
        ranked = await asyncio.to_thread(self._rank, vectors, query)

        results = []
        for position, score in ranked:
            similarity = round(min(max(score, -1.0), 1.0), 6)
            if similarity < threshold:
                continue
            result = _row_to_dict(rows[position])
            result["similarity"] = similarity
            results.append(result)
            if len(results) >= count:
                break

        logger.debug(
            "match_chunks_completed",
            candidates=len(rows),
            matched=len(results),
            document_id=document_id,
        )
        return results

    def _rank(self, vectors: np.ndarray, query: np.ndarray) -> List[tuple]:
        """Score every candidate; return (position, score) best first."""
        faiss.normalize_L2(vectors)
        faiss.normalize_L2(query)

        index = faiss.IndexFlatIP(self.dimension)
        index.add(vectors)
        scores, indices = index.search(query, len(vectors))

        pairs = [
            (int(i), float(s))
            for i, s in zip(indices[0].tolist(), scores[0].tolist())
            if i != -1
        ]
        # FAISS does not guarantee an order among equal scores
        pairs.sort(key=lambda p: (-p[1], p[0]))
        return pairs

    # ------------------------------------------------------------------
    # Chat sessions and messages
    # ------------------------------------------------------------------

    async def create_session(
        self,
        document_id: Optional[str] = None,
        user_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> str:
        """Create a chat session and return its ID."""
        session_id = str(uuid.uuid4())
        now = _now()
        async with self.connect() as conn:
            try:
                await conn.execute(
                    """
                    INSERT INTO chat_sessions (id, document_id, user_id, title, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (session_id, document_id, user_id, title, now, now),
                )
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                logger.error("session_create_failed", error=str(e))
                raise StoreError(f"Failed to create session: {e}") from e
        return session_id

    async def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Get a session by ID, or None if it doesn't exist."""
        async with self.connect() as conn:
            try:
                cursor = await conn.execute(
                    "SELECT * FROM chat_sessions WHERE id = ?", (session_id,)
                )
                row = await cursor.fetchone()
                return dict(row) if row else None
            except aiosqlite.Error as e:
                logger.error("session_retrieval_failed", error=str(e))
                raise StoreError(f"Failed to get session: {e}") from e

    async def list_sessions(
        self,
        user_id: Optional[str] = None,
        document_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """List sessions, most recently updated first."""
        clauses = []
        params: list = []
        if user_id:
            clauses.append("user_id = ?")
            params.append(user_id)
        if document_id:
            clauses.append("document_id = ?")
            params.append(document_id)

        query = "SELECT * FROM chat_sessions"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY updated_at DESC LIMIT ?"
        params.append(limit)

        async with self.connect() as conn:
            try:
                rows = await conn.execute_fetchall(query, params)
                return [dict(row) for row in rows]
            except aiosqlite.Error as e:
                logger.error("sessions_list_failed", error=str(e))
                raise StoreError(f"Failed to list sessions: {e}") from e

    async def update_session_title(self, session_id: str, title: str) -> bool:
        """Set a session's title and advance its updated_at."""
        async with self.connect() as conn:
            try:
                cursor = await conn.execute(
                    "UPDATE chat_sessions SET title = ?, updated_at = ? WHERE id = ?",
                    (title, _now(), session_id),
                )
                await conn.commit()
                return cursor.rowcount > 0
            except aiosqlite.Error as e:
                await conn.rollback()
                logger.error("session_title_update_failed", error=str(e))
                raise StoreError(f"Failed to update session title: {e}") from e

    async def add_message(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Append a message to a session and advance the session's updated_at.

        Raises:
            NotFoundError: If the session doesn't exist
        """
        message_id = str(uuid.uuid4())
        now = _now()
        async with self.connect() as conn:
            try:
                cursor = await conn.execute(
                    "UPDATE chat_sessions SET updated_at = ? WHERE id = ?",
                    (now, session_id),
                )
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Session not found: {session_id}")

                await conn.execute(
                    """
                    INSERT INTO chat_messages (id, session_id, role, content, metadata_json, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        message_id,
                        session_id,
                        role,
                        content,
                        json.dumps(metadata) if metadata else None,
                        now,
                    ),
                )
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                logger.error("message_insert_failed", error=str(e), session_id=session_id)
                raise StoreError(f"Failed to save message: {e}") from e
        return message_id

    async def get_messages(self, session_id: str, limit: int) -> List[Dict[str, Any]]:
        """Get the first `limit` messages of a session, oldest first."""
        async with self.connect() as conn:
            try:
                rows = await conn.execute_fetchall(
                    """
                    SELECT id, session_id, role, content, metadata_json, created_at
                    FROM chat_messages
                    WHERE session_id = ?
                    ORDER BY created_at ASC, rowid ASC
                    LIMIT ?
                    """,
                    (session_id, limit),
                )
                return [_row_to_dict(row) for row in rows]
            except aiosqlite.Error as e:
                logger.error("messages_retrieval_failed", error=str(e))
                raise StoreError(f"Failed to get messages: {e}") from e

    async def get_recent_messages(self, session_id: str, limit: int) -> List[Dict[str, Any]]:
        """Get the newest `limit` messages of a session, oldest first."""
        async with self.connect() as conn:
            try:
                rows = await conn.execute_fetchall(
                    """
                    SELECT id, session_id, role, content, metadata_json, created_at
                    FROM (
                        SELECT rowid AS seq, * FROM chat_messages
                        WHERE session_id = ?
                        ORDER BY created_at DESC, rowid DESC
                        LIMIT ?
                    )
                    ORDER BY created_at ASC, seq ASC
                    """,
                    (session_id, limit),
                )
                return [_row_to_dict(row) for row in rows]
            except aiosqlite.Error as e:
                logger.error("recent_messages_retrieval_failed", error=str(e))
                raise StoreError(f"Failed to get recent messages: {e}") from e

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and all of its messages in one transaction.

        Returns:
            True if deleted, False if not found
        """
        async with self.connect() as conn:
            try:
                await conn.execute(
                    "DELETE FROM chat_messages WHERE session_id = ?", (session_id,)
                )
                cursor = await conn.execute(
                    "DELETE FROM chat_sessions WHERE id = ?", (session_id,)
                )
                await conn.commit()
                return cursor.rowcount > 0
            except aiosqlite.Error as e:
                await conn.rollback()
                logger.error("session_delete_failed", error=str(e), session_id=session_id)
                raise StoreError(f"Failed to delete session: {e}") from e


# Process-wide instance, created on first use
_database_instance: Optional[Database] = None


async def get_database() -> Database:
    """Get or create the shared database handle (schema created on first use).

    Returns:
        Database instance
    """
    global _database_instance
    if _database_instance is None:
        database = Database()
        await database.init()
        _database_instance = database
    return _database_instance
