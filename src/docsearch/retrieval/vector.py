"""Vector retriever: cosine candidates re-scored with lexical evidence."""

from __future__ import annotations

import logging

from docsearch.ingestion.embedder import EmbeddingClient
from docsearch.retrieval.base import DocumentStore
from docsearch.retrieval.models import MatchType, SearchResultRow, VectorSearchOptions

logger = logging.getLogger(__name__)

SIMILARITY_WEIGHT = 0.5
TEXT_RANK_WEIGHT = 0.5
EXACT_PHRASE_BONUS = 0.3
OVERFETCH_FACTOR = 2


class VectorRetriever:
    """Semantic search over stored passage embeddings.

    Parameters
    ----------
    store:
        Backend providing :meth:`DocumentStore.vector_candidates`.
    embedder:
        Client used to embed the query (once per search).
    """

    def __init__(self, store: DocumentStore, embedder: EmbeddingClient) -> None:
        self._store = store
        self._embedder = embedder

    def search(
        self, query: str, options: VectorSearchOptions | None = None
    ) -> list[SearchResultRow]:
        """Return up to ``options.limit`` rows ordered by blended score.

        The score is ``0.5 * similarity + 0.5 * text_rank``; passages that
        contain the query verbatim (case-insensitive) get a 0.3 bonus,
        capped at 1.0.  Twice the limit is fetched before re-scoring so the
        re-ranking can promote rows the distance order put further down.
        """
        options = options or VectorSearchOptions()
        query = query.strip()
        if not query:
            return []

        query_vector = self._embedder.embed_query(query)
        candidates = self._store.vector_candidates(
            query_vector,
            query,
            limit=options.limit * OVERFETCH_FACTOR,
            similarity_threshold=options.similarity_threshold,
            document_ids=options.document_ids,
            file_types=options.file_types,
        )

        needle = query.lower()
        rows = [
            row.model_copy(
                update={"score": _blend(row, needle), "match_type": MatchType.VECTOR}
            )
            for row in candidates
        ]
        rows.sort(key=lambda r: r.score, reverse=True)

        logger.debug("Vector search %r: %d candidates", query, len(rows))
        return rows[: options.limit]


def _blend(row: SearchResultRow, needle: str) -> float:
    score = SIMILARITY_WEIGHT * (row.similarity or 0.0) + TEXT_RANK_WEIGHT * row.text_rank
    if needle in row.text.lower():
        score += EXACT_PHRASE_BONUS
    return min(1.0, score)
