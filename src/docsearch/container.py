"""Composition root wiring the store, embedder and services together.

Only this module reads the global ``settings``; everything it builds
receives its collaborators explicitly.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from docsearch.config import settings
from docsearch.ingestion.embedder import EmbeddingClient, build_embedding_client
from docsearch.ingestion.pipeline import IngestionPipeline, IngestionQueue
from docsearch.retrieval.base import DocumentStore
from docsearch.retrieval.hybrid import HybridSearchEngine
from docsearch.retrieval.keyword import KeywordRetriever
from docsearch.retrieval.postgres_store import PostgresDocumentStore
from docsearch.retrieval.service import SearchService
from docsearch.retrieval.vector import VectorRetriever

logger = logging.getLogger(__name__)


@lru_cache
def get_store() -> DocumentStore:
    logger.info("Initializing PostgresDocumentStore (composition root)...")
    store = PostgresDocumentStore(
        settings.database_url,
        min_connections=settings.db_pool_min_size,
        max_connections=settings.db_pool_max_size,
        statement_timeout_ms=settings.db_statement_timeout_ms,
        dimension=settings.embedding_dimension,
    )
    store.ensure_schema()
    return store


@lru_cache
def get_embedding_client() -> EmbeddingClient:
    logger.info("Initializing EmbeddingClient (%s)...", settings.embedding_provider)
    return build_embedding_client(settings)


@lru_cache
def get_pipeline() -> IngestionPipeline:
    return IngestionPipeline(
        get_store(),
        get_embedding_client(),
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
    )


@lru_cache
def get_ingestion_queue() -> IngestionQueue:
    logger.info("Initializing IngestionQueue (%d workers)...", settings.ingestion_workers)
    return IngestionQueue(get_pipeline(), get_store(), max_workers=settings.ingestion_workers)


@lru_cache
def get_search_service() -> SearchService:
    store = get_store()
    vector = VectorRetriever(store, get_embedding_client())
    engine = HybridSearchEngine(
        KeywordRetriever(store, default_limit=settings.search_candidate_limit),
        vector,
        candidate_limit=settings.search_candidate_limit,
        similarity_threshold=settings.vector_similarity_threshold,
    )
    return SearchService(
        store, vector, engine, similarity_threshold=settings.vector_similarity_threshold
    )
