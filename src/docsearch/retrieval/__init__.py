"""
Retrieval — keyword, vector and hybrid search over stored passages.

The retrievers and the grouping engine only talk to
:class:`DocumentStore`, so the ranking logic is independent of the
backing database.

Public surface
--------------
- :class:`HybridSearchEngine` — grouped search combining both retrievers.
- :class:`KeywordRetriever`, :class:`VectorRetriever` — the two retrievers.
- :class:`SearchService` — validated query operations for callers.
- :class:`DocumentStore` — abstract backend (subclass for other databases).
- :class:`PostgresDocumentStore` — default PostgreSQL + pgvector backend.
"""

from docsearch.retrieval.base import DocumentStore
from docsearch.retrieval.hybrid import DocumentGroupBuilder, HybridSearchEngine, merge_results
from docsearch.retrieval.keyword import KeywordRetriever
from docsearch.retrieval.service import SearchService
from docsearch.retrieval.vector import VectorRetriever

__all__ = [
    "DocumentGroupBuilder",
    "DocumentStore",
    "HybridSearchEngine",
    "KeywordRetriever",
    "PostgresDocumentStore",
    "SearchService",
    "VectorRetriever",
    "merge_results",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import PostgresDocumentStore to avoid pulling in psycopg2 at import time."""
    if name == "PostgresDocumentStore":
        from docsearch.retrieval.postgres_store import PostgresDocumentStore

        return PostgresDocumentStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
