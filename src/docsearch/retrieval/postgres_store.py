"""PostgreSQL + pgvector implementation of the document-store abstraction.

Connection management
- A ``ThreadedConnectionPool`` is shared by the ingestion workers and the
  request handlers; every connection carries a ``statement_timeout``.
- The pgvector adapter is registered on each pooled connection the first
  time it is handed out.
- All statements go through :meth:`PostgresDocumentStore._cursor`, which
  commits on success, rolls back on failure and wraps driver errors in
  :class:`~docsearch.exceptions.StorageError`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import numpy as np
import psycopg2
from pgvector.psycopg2 import register_vector
from psycopg2.extras import Json, RealDictCursor, execute_values
from psycopg2.pool import ThreadedConnectionPool

from docsearch.exceptions import DocumentNotFoundError, StorageError
from docsearch.retrieval.base import DocumentStore
from docsearch.retrieval.models import (
    Document,
    DocumentMetadata,
    NewDocument,
    ProcessingStatus,
    SearchResultRow,
    StoredPassage,
)

logger = logging.getLogger(__name__)

TS_CONFIG = "english"
# ts_rank normalisation 32: rank / (rank + 1), keeps ranks in [0, 1).
TS_RANK_NORMALIZATION = 32

_SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS vector;

CREATE TABLE IF NOT EXISTS documents (
    id           SERIAL PRIMARY KEY,
    title        TEXT NOT NULL,
    metadata     JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    text_content TEXT NOT NULL DEFAULT '',
    created_at   TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS passages (
    id             BIGSERIAL PRIMARY KEY,
    document_id    INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    text           TEXT NOT NULL,
    position       INTEGER NOT NULL,
    section        TEXT,
    token_estimate INTEGER NOT NULL DEFAULT 0,
    embedding      vector({dimension}),
    UNIQUE (document_id, position)
);

CREATE INDEX IF NOT EXISTS passages_text_fts_idx
    ON passages USING GIN (to_tsvector('{ts_config}', text));
CREATE INDEX IF NOT EXISTS passages_embedding_hnsw_idx
    ON passages USING hnsw (embedding vector_cosine_ops);
CREATE INDEX IF NOT EXISTS documents_status_idx
    ON documents ((metadata->>'processingStatus'));
"""

_DOCUMENT_COLUMNS = "d.id, d.title, d.metadata, d.text_content, d.created_at"

_ROW_COLUMNS = """
    p.id AS passage_id, p.document_id, p.text, p.position, p.section,
    d.title AS document_title, d.metadata AS document_metadata,
    d.created_at AS document_created_at
"""

_KEYWORD_SQL = f"""
WITH q AS (SELECT plainto_tsquery('{TS_CONFIG}', %(query)s) AS tsq)
SELECT {_ROW_COLUMNS},
       ts_rank(to_tsvector('{TS_CONFIG}', p.text), q.tsq, {TS_RANK_NORMALIZATION}) AS text_rank,
       CASE
           WHEN d.title ILIKE %(pattern)s THEN 5
           WHEN COALESCE(d.metadata->>'publishers', '') ILIKE %(pattern)s THEN 4
           WHEN COALESCE(d.metadata->>'description', '') ILIKE %(pattern)s THEN 3
           WHEN COALESCE(d.metadata->>'tags', '') ILIKE %(pattern)s THEN 2
           ELSE 1
       END AS tier
FROM passages p
JOIN documents d ON d.id = p.document_id
CROSS JOIN q
WHERE to_tsvector('{TS_CONFIG}', p.text) @@ q.tsq
   OR p.text ILIKE %(pattern)s
   OR d.title ILIKE %(pattern)s
   OR COALESCE(d.metadata->>'description', '') ILIKE %(pattern)s
   OR COALESCE(d.metadata->>'publishers', '') ILIKE %(pattern)s
   OR COALESCE(d.metadata->>'tags', '') ILIKE %(pattern)s
ORDER BY tier DESC, text_rank DESC, p.document_id, p.position
LIMIT %(limit)s
"""

_VECTOR_SQL = f"""
SELECT {_ROW_COLUMNS},
       1 - (p.embedding <=> %(vector)s) AS similarity,
       ts_rank(to_tsvector('{TS_CONFIG}', p.text),
               plainto_tsquery('{TS_CONFIG}', %(query)s), {TS_RANK_NORMALIZATION}) AS text_rank
FROM passages p
JOIN documents d ON d.id = p.document_id
WHERE p.embedding IS NOT NULL
  AND 1 - (p.embedding <=> %(vector)s) > %(threshold)s
  {{filters}}
ORDER BY p.embedding <=> %(vector)s
LIMIT %(limit)s
"""


def _like_pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _to_document(row: dict[str, Any]) -> Document:
    return Document(
        id=row["id"],
        title=row["title"],
        metadata=DocumentMetadata.model_validate(row["metadata"] or {}),
        text_content=row["text_content"] or "",
        created_at=row["created_at"],
    )


def _to_result_row(row: dict[str, Any]) -> SearchResultRow:
    similarity = row.get("similarity")
    return SearchResultRow(
        document_id=row["document_id"],
        passage_id=row["passage_id"],
        text=row["text"],
        position=row["position"],
        section=row["section"],
        document_title=row["document_title"],
        document_metadata=DocumentMetadata.model_validate(row["document_metadata"] or {}),
        document_created_at=row["document_created_at"],
        text_rank=float(row.get("text_rank") or 0.0),
        similarity=float(similarity) if similarity is not None else None,
    )


class PostgresDocumentStore(DocumentStore):
    """Document store backed by PostgreSQL with the pgvector extension.

    Parameters
    ----------
    dsn:
        libpq connection string.
    min_connections, max_connections:
        Pool bounds.
    statement_timeout_ms:
        Server-side timeout applied to every statement.
    dimension:
        Embedding dimension used by :meth:`ensure_schema`.
    """

    def __init__(
        self,
        dsn: str,
        *,
        min_connections: int = 1,
        max_connections: int = 5,
        statement_timeout_ms: int = 15000,
        dimension: int = 1536,
    ) -> None:
        if min_connections < 1 or max_connections < min_connections:
            raise ValueError("Invalid connection pool configuration")
        self.dimension = dimension
        self.statement_timeout_ms = statement_timeout_ms
        try:
            self._pool = ThreadedConnectionPool(
                min_connections,
                max_connections,
                dsn,
                options=f"-c statement_timeout={int(statement_timeout_ms)}",
            )
        except psycopg2.Error as exc:
            raise StorageError("Failed to create connection pool", cause=exc) from exc
        self._registered: set[int] = set()
        self._register_lock = threading.Lock()
        logger.info(
            "Created PostgreSQL pool (%d-%d connections, timeout %dms)",
            min_connections,
            max_connections,
            statement_timeout_ms,
        )

    # -- connection handling --------------------------------------------------

    @contextmanager
    def _cursor(self, *, vectors: bool = True) -> Iterator[RealDictCursor]:
        conn = self._pool.getconn()
        try:
            if vectors:
                self._register_vector(conn)
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
            conn.commit()
        except psycopg2.Error as exc:
            conn.rollback()
            logger.error("Query failed: %s", exc)
            raise StorageError(str(exc).strip() or type(exc).__name__, cause=exc) from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn, close=bool(conn.closed))

    def _register_vector(self, conn: Any) -> None:
        key = id(conn)
        if key in self._registered:
            return
        with self._register_lock:
            if key not in self._registered:
                register_vector(conn)
                self._registered.add(key)

    def ensure_schema(self) -> None:
        """Create the extension, tables and indexes if they do not exist."""
        ddl = _SCHEMA_SQL.format(dimension=int(self.dimension), ts_config=TS_CONFIG)
        with self._cursor(vectors=False) as cur:
            cur.execute(ddl)
        logger.info("Schema ready (embedding dimension %d)", self.dimension)

    def close(self) -> None:
        """Close all pooled connections."""
        self._pool.closeall()

    # -- documents ------------------------------------------------------------

    def create_document(self, new_document: NewDocument) -> Document:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO documents (title, metadata, text_content) VALUES (%s, %s, %s) "
                "RETURNING id, title, metadata, text_content, created_at",
                (new_document.title, Json(new_document.metadata.to_json_dict()), new_document.text),
            )
            row = cur.fetchone()
        document = _to_document(row)
        logger.info("Created document %d (%r)", document.id, document.title)
        return document

    def get_document(self, document_id: int) -> Document | None:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_DOCUMENT_COLUMNS} FROM documents d WHERE d.id = %s", (document_id,))
            row = cur.fetchone()
        return _to_document(row) if row else None

    def delete_document(self, document_id: int) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM documents WHERE id = %s", (document_id,))
            return cur.rowcount > 0

    def list_documents(self, limit: int = 50, offset: int = 0) -> list[Document]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents d ORDER BY d.id LIMIT %s OFFSET %s",
                (limit, offset),
            )
            rows = cur.fetchall()
        return [_to_document(r) for r in rows]

    def list_documents_by_status(
        self, statuses: Sequence[ProcessingStatus | None]
    ) -> list[Document]:
        values = [s.value for s in statuses if s is not None]
        include_unset = any(s is None for s in statuses)
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents d "
                "WHERE d.metadata->>'processingStatus' = ANY(%s::text[]) "
                "   OR (%s AND d.metadata->>'processingStatus' IS NULL) "
                "ORDER BY d.id",
                (values, include_unset),
            )
            rows = cur.fetchall()
        return [_to_document(r) for r in rows]

    def set_processing_status(self, document_id: int, status: ProcessingStatus) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE documents "
                "SET metadata = COALESCE(metadata, '{}'::jsonb) "
                "    || jsonb_build_object('processingStatus', %s::text) "
                "WHERE id = %s",
                (status.value, document_id),
            )
            if cur.rowcount == 0:
                raise DocumentNotFoundError(
                    f"Document {document_id} not found", context={"document_id": document_id}
                )

    # -- passages -------------------------------------------------------------

    def replace_passages(
        self,
        document_id: int,
        passages: Sequence[StoredPassage],
        *,
        text_content: str | None = None,
    ) -> None:
        rows = [
            (
                document_id,
                p.text,
                p.position,
                p.section,
                p.token_estimate,
                np.asarray(p.embedding, dtype=np.float32) if p.embedding else None,
            )
            for p in passages
        ]
        with self._cursor() as cur:
            if text_content is not None:
                cur.execute(
                    "UPDATE documents SET text_content = %s WHERE id = %s",
                    (text_content, document_id),
                )
            cur.execute("DELETE FROM passages WHERE document_id = %s", (document_id,))
            if rows:
                execute_values(
                    cur,
                    "INSERT INTO passages "
                    "(document_id, text, position, section, token_estimate, embedding) VALUES %s",
                    rows,
                )
        logger.info("Stored %d passages for document %d", len(rows), document_id)

    def delete_passages(self, document_id: int) -> int:
        with self._cursor() as cur:
            cur.execute("DELETE FROM passages WHERE document_id = %s", (document_id,))
            return cur.rowcount

    def list_passages(self, document_id: int) -> list[StoredPassage]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT id, document_id, text, position, section, token_estimate, embedding "
                "FROM passages WHERE document_id = %s ORDER BY position",
                (document_id,),
            )
            rows = cur.fetchall()
        return [
            StoredPassage(
                id=r["id"],
                document_id=r["document_id"],
                text=r["text"],
                position=r["position"],
                section=r["section"],
                token_estimate=r["token_estimate"],
                embedding=r["embedding"].tolist() if r["embedding"] is not None else [],
            )
            for r in rows
        ]

    def count_passages(self, document_id: int) -> int:
        with self._cursor() as cur:
            cur.execute(
                "SELECT count(*) AS n FROM passages WHERE document_id = %s", (document_id,)
            )
            return int(cur.fetchone()["n"])

    # -- candidate queries ----------------------------------------------------

    def keyword_candidates(self, query: str, limit: int) -> list[SearchResultRow]:
        with self._cursor() as cur:
            cur.execute(
                _KEYWORD_SQL, {"query": query, "pattern": _like_pattern(query), "limit": limit}
            )
            rows = cur.fetchall()
        return [_to_result_row(r) for r in rows]

    def vector_candidates(
        self,
        query_vector: Sequence[float],
        query: str,
        *,
        limit: int,
        similarity_threshold: float,
        document_ids: Sequence[int] | None = None,
        file_types: Sequence[str] | None = None,
    ) -> list[SearchResultRow]:
        params: dict[str, Any] = {
            "vector": np.asarray(query_vector, dtype=np.float32),
            "query": query,
            "threshold": similarity_threshold,
            "limit": limit,
        }
        filters: list[str] = []
        if document_ids:
            filters.append("AND p.document_id = ANY(%(document_ids)s)")
            params["document_ids"] = list(document_ids)
        if file_types:
            filters.append("AND d.metadata->>'fileType' = ANY(%(file_types)s)")
            params["file_types"] = list(file_types)

        with self._cursor() as cur:
            cur.execute(_VECTOR_SQL.format(filters="\n  ".join(filters)), params)
            rows = cur.fetchall()
        return [_to_result_row(r) for r in rows]

    def health_check(self) -> bool:
        try:
            with self._cursor(vectors=False) as cur:
                cur.execute("SELECT 1")
            return True
        except StorageError:
            logger.warning("PostgreSQL health-check failed", exc_info=True)
            return False
