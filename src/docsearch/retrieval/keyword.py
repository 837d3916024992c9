"""Keyword retriever: lexical candidates ranked by field tier."""

from __future__ import annotations

import logging

from docsearch.retrieval.base import DocumentStore
from docsearch.retrieval.models import MatchType, SearchResultRow
from docsearch.retrieval.scoring import field_tier, keyword_score

logger = logging.getLogger(__name__)


class KeywordRetriever:
    """Rank lexical matches so metadata hits always beat body-only hits.

    Parameters
    ----------
    store:
        Backend providing :meth:`DocumentStore.keyword_candidates`.
    default_limit:
        Number of rows returned when :meth:`search` gets no *limit*.
    """

    def __init__(self, store: DocumentStore, *, default_limit: int = 50) -> None:
        self._store = store
        self.default_limit = default_limit

    def search(self, query: str, limit: int | None = None) -> list[SearchResultRow]:
        """Return up to *limit* rows ordered by field tier, then lexical rank.

        Each row's ``score`` is the highest field score it earned (title
        0.95, publisher 0.85, description 0.75, tag 0.70, body at most 0.65).
        """
        limit = limit or self.default_limit
        query = query.strip()
        if not query:
            return []

        candidates = self._store.keyword_candidates(query, limit)
        scored = [
            (
                field_tier(row, query),
                row.model_copy(
                    update={"score": keyword_score(row, query), "match_type": MatchType.KEYWORD}
                ),
            )
            for row in candidates
        ]
        scored.sort(key=lambda pair: (pair[0], pair[1].text_rank), reverse=True)

        logger.debug("Keyword search %r: %d candidates", query, len(scored))
        return [row for _, row in scored[:limit]]
