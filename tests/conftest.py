"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import itertools
import threading
import zlib
from collections.abc import Sequence

import numpy as np
import pytest

from docsearch.exceptions import DocumentNotFoundError
from docsearch.ingestion.embedder import EmbeddingClient
from docsearch.ingestion.pipeline import IngestionPipeline
from docsearch.retrieval.base import DocumentStore
from docsearch.retrieval.models import (
    Document,
    NewDocument,
    ProcessingStatus,
    SearchResultRow,
    StoredPassage,
)
from docsearch.retrieval.scoring import FieldTier

EMBEDDING_DIM = 8


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fake embedding generator ────────────────────────────────────────────


def fake_embed(text: str) -> list[float]:
    """Deterministic bag-of-words vector; shared words mean higher cosine."""
    vector = np.zeros(EMBEDDING_DIM)
    for word in text.lower().split():
        vector[zlib.crc32(word.strip(".,:;!?*").encode()) % (EMBEDDING_DIM - 1)] += 1.0
    vector[-1] = 0.5
    return vector.tolist()


# ── In-memory document store ────────────────────────────────────────────


def _rank(text: str, query: str) -> float:
    """Crude full-text rank: 0.1 when every query word occurs in *text*."""
    words = set(text.lower().replace(",", " ").replace(".", " ").split())
    terms = query.lower().split()
    return 0.1 if terms and all(t in words for t in terms) else 0.0


class FakeDocumentStore(DocumentStore):
    """Dict-backed store with the same candidate semantics as PostgreSQL."""

    def __init__(self) -> None:
        self.documents: dict[int, Document] = {}
        self.passages: dict[int, list[StoredPassage]] = {}
        self.replace_calls = 0
        self.healthy = True
        self._doc_ids = itertools.count(1)
        self._passage_ids = itertools.count(1)
        self._lock = threading.Lock()

    # -- documents

    def create_document(self, new_document: NewDocument) -> Document:
        with self._lock:
            document = Document(
                id=next(self._doc_ids),
                title=new_document.title,
                metadata=new_document.metadata.model_copy(deep=True),
                text_content=new_document.text,
            )
            self.documents[document.id] = document
        return document.model_copy(deep=True)

    def get_document(self, document_id: int) -> Document | None:
        document = self.documents.get(document_id)
        return document.model_copy(deep=True) if document else None

    def delete_document(self, document_id: int) -> bool:
        with self._lock:
            self.passages.pop(document_id, None)
            return self.documents.pop(document_id, None) is not None

    def list_documents(self, limit: int = 50, offset: int = 0) -> list[Document]:
        ordered = sorted(self.documents.values(), key=lambda d: d.id)
        return [d.model_copy(deep=True) for d in ordered[offset : offset + limit]]

    def list_documents_by_status(
        self, statuses: Sequence[ProcessingStatus | None]
    ) -> list[Document]:
        return [
            d.model_copy(deep=True)
            for d in self.documents.values()
            if d.metadata.processing_status in statuses
        ]

    def set_processing_status(self, document_id: int, status: ProcessingStatus) -> None:
        with self._lock:
            document = self.documents.get(document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            document.metadata.processing_status = status

    # -- passages

    def replace_passages(
        self,
        document_id: int,
        passages: Sequence[StoredPassage],
        *,
        text_content: str | None = None,
    ) -> None:
        with self._lock:
            self.replace_calls += 1
            if text_content is not None:
                self.documents[document_id].text_content = text_content
            self.passages[document_id] = [
                p.model_copy(update={"id": next(self._passage_ids)}) for p in passages
            ]

    def delete_passages(self, document_id: int) -> int:
        with self._lock:
            return len(self.passages.pop(document_id, []))

    def list_passages(self, document_id: int) -> list[StoredPassage]:
        return sorted(self.passages.get(document_id, []), key=lambda p: p.position)

    def count_passages(self, document_id: int) -> int:
        return len(self.passages.get(document_id, []))

    # -- candidate queries

    def _row(self, document: Document, passage: StoredPassage, **extra: object) -> SearchResultRow:
        return SearchResultRow(
            document_id=document.id,
            passage_id=passage.id,
            text=passage.text,
            position=passage.position,
            section=passage.section,
            document_title=document.title,
            document_metadata=document.metadata,
            document_created_at=document.created_at,
            **extra,
        )

    def keyword_candidates(self, query: str, limit: int) -> list[SearchResultRow]:
        needle = query.lower()
        scored: list[tuple[FieldTier, float, SearchResultRow]] = []
        for document in self.documents.values():
            meta = document.metadata
            if needle in document.title.lower():
                tier = FieldTier.TITLE
            elif needle in " ".join(meta.publishers).lower():
                tier = FieldTier.PUBLISHER
            elif needle in meta.description.lower():
                tier = FieldTier.DESCRIPTION
            elif needle in " ".join(meta.tags).lower():
                tier = FieldTier.TAG
            else:
                tier = FieldTier.BODY
            for passage in self.passages.get(document.id, []):
                rank = _rank(passage.text, query)
                if tier is FieldTier.BODY and not (rank or needle in passage.text.lower()):
                    continue
                scored.append((tier, rank, self._row(document, passage, text_rank=rank)))
        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [row for _, _, row in scored[:limit]]

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
        q = np.asarray(query_vector, dtype=float)
        hits: list[SearchResultRow] = []
        for document in self.documents.values():
            if document_ids and document.id not in document_ids:
                continue
            if file_types and document.metadata.file_type not in file_types:
                continue
            for passage in self.passages.get(document.id, []):
                v = np.asarray(passage.embedding, dtype=float)
                similarity = float(q @ v / (np.linalg.norm(q) * np.linalg.norm(v)))
                if similarity > similarity_threshold:
                    hits.append(
                        self._row(
                            document,
                            passage,
                            similarity=similarity,
                            text_rank=_rank(passage.text, query),
                        )
                    )
        hits.sort(key=lambda r: r.similarity or 0.0, reverse=True)
        return hits[:limit]

    def health_check(self) -> bool:
        return self.healthy


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture()
def embedder() -> EmbeddingClient:
    return EmbeddingClient(fake_embed, dimension=EMBEDDING_DIM, base_delay=0.0, batch_pause=0.0)


@pytest.fixture()
def pipeline(store: FakeDocumentStore, embedder: EmbeddingClient) -> IngestionPipeline:
    return IngestionPipeline(store, embedder, chunk_size=1000, chunk_overlap=200)
