"""Query surface: the read-only operations exposed to callers.

Input is validated here, before any I/O, so that "bad input" surfaces as
:class:`~docsearch.exceptions.ValidationError` and everything else as an
internal failure.
"""

from __future__ import annotations

import logging

from docsearch.exceptions import DocumentNotFoundError, ValidationError
from docsearch.retrieval.base import DocumentStore
from docsearch.retrieval.hybrid import HybridSearchEngine
from docsearch.retrieval.models import GroupedSearchResponse, SearchResultRow, VectorSearchOptions
from docsearch.retrieval.vector import VectorRetriever

logger = logging.getLogger(__name__)


def _require_query(query: str | None) -> str:
    query = (query or "").strip()
    if not query:
        raise ValidationError("Query is required")
    return query


class SearchService:
    """Search within one document, across all documents, or grouped.

    Parameters
    ----------
    store:
        Document store, used for content fetches.
    vector_retriever:
        Backs the flat searches.
    engine:
        Backs :meth:`grouped_search`.
    similarity_threshold:
        Minimum cosine similarity for flat searches.
    default_limit:
        Row count when a caller does not pass one.
    """

    def __init__(
        self,
        store: DocumentStore,
        vector_retriever: VectorRetriever,
        engine: HybridSearchEngine,
        *,
        similarity_threshold: float = 0.2,
        default_limit: int = 10,
    ) -> None:
        self._store = store
        self._vector = vector_retriever
        self._engine = engine
        self.similarity_threshold = similarity_threshold
        self.default_limit = default_limit

    def search_document(
        self, query: str, document_id: int | None, limit: int | None = None
    ) -> list[SearchResultRow]:
        """Vector search restricted to one document."""
        query = _require_query(query)
        if document_id is None:
            raise ValidationError("Query and document id are required")
        options = VectorSearchOptions(
            limit=limit or self.default_limit,
            similarity_threshold=self.similarity_threshold,
            document_ids=[document_id],
        )
        return self._vector.search(query, options)

    def search_all(
        self, query: str, limit: int | None = None, *, file_types: list[str] | None = None
    ) -> list[SearchResultRow]:
        """Flat vector search across every document."""
        query = _require_query(query)
        options = VectorSearchOptions(
            limit=limit or self.default_limit,
            similarity_threshold=self.similarity_threshold,
            file_types=file_types,
        )
        return self._vector.search(query, options)

    def grouped_search(self, query: str) -> GroupedSearchResponse:
        return self._engine.grouped_search(_require_query(query))

    def document_content(self, document_id: int) -> str:
        """The document's passages in position order, separated by blank lines."""
        if self._store.get_document(document_id) is None:
            raise DocumentNotFoundError(
                f"Document {document_id} not found", context={"document_id": document_id}
            )
        passages = self._store.list_passages(document_id)
        return "\n\n".join(p.text for p in passages)
