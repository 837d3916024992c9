"""Abstract base class for document-store backends.

The ingestion pipeline and the retrievers only talk to
:class:`DocumentStore`.  A backend owns persistence of documents and
passages and exposes the two candidate queries the retrievers rank:
a lexical one (full-text rank plus substring matching) and a vector one
(cosine similarity).  Scoring above the raw candidate rows happens in
the retrievers, so every backend ranks identically.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from docsearch.retrieval.models import (
    Document,
    NewDocument,
    ProcessingStatus,
    SearchResultRow,
    StoredPassage,
)


class DocumentStore(ABC):
    """Backend-agnostic document and passage store."""

    # -- documents ------------------------------------------------------------

    @abstractmethod
    def create_document(self, new_document: NewDocument) -> Document:
        """Persist *new_document* and return it with its assigned id."""
        ...

    @abstractmethod
    def get_document(self, document_id: int) -> Document | None:
        """Return the document, or ``None`` when it does not exist."""
        ...

    @abstractmethod
    def delete_document(self, document_id: int) -> bool:
        """Delete a document and its passages.  Returns ``False`` if absent."""
        ...

    @abstractmethod
    def list_documents(self, limit: int = 50, offset: int = 0) -> list[Document]:
        """Return up to *limit* documents ordered by id, skipping *offset*."""
        ...

    @abstractmethod
    def list_documents_by_status(
        self, statuses: Sequence[ProcessingStatus | None]
    ) -> list[Document]:
        """Return documents whose processing status is in *statuses*.

        ``None`` in *statuses* selects documents that have no status yet.
        """
        ...

    @abstractmethod
    def set_processing_status(self, document_id: int, status: ProcessingStatus) -> None:
        """Record *status* in the document's metadata, keeping other keys."""
        ...

    # -- passages -------------------------------------------------------------

    @abstractmethod
    def replace_passages(
        self,
        document_id: int,
        passages: Sequence[StoredPassage],
        *,
        text_content: str | None = None,
    ) -> None:
        """Atomically swap the document's passages for *passages*.

        When *text_content* is given the document text is updated in the
        same transaction.  On failure nothing changes.
        """
        ...

    @abstractmethod
    def delete_passages(self, document_id: int) -> int:
        """Delete every passage of a document, returning how many went."""
        ...

    @abstractmethod
    def list_passages(self, document_id: int) -> list[StoredPassage]:
        """Return the document's passages ordered by position."""
        ...

    @abstractmethod
    def count_passages(self, document_id: int) -> int:
        ...

    # -- candidate queries ----------------------------------------------------

    @abstractmethod
    def keyword_candidates(self, query: str, limit: int) -> list[SearchResultRow]:
        """Return passages matching *query* lexically.

        A passage qualifies when its text matches the full-text query or
        contains the query as a case-insensitive substring, or when its
        document's title, description, publishers or tags contain it.
        ``text_rank`` carries the backend's full-text rank (0 when only a
        substring matched).  Rows come back ordered by field tier then rank.
        """
        ...

    @abstractmethod
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
        """Return passages whose cosine similarity exceeds the threshold.

        ``similarity`` is set on every row, and ``text_rank`` carries the
        full-text rank of *query* against the passage.  Rows come back
        ordered by distance.
        """
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

