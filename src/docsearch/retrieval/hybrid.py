"""Hybrid merge and per-document grouping of search results.

Usage::

    engine = HybridSearchEngine(KeywordRetriever(store), VectorRetriever(store, embedder))
    response = engine.grouped_search("annual report")
    for group in response.documents:
        print(group.title, round(group.max_score, 2), len(group.excerpts))
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Iterable

from docsearch.exceptions import ValidationError
from docsearch.retrieval.highlight import excerpt_similarity, has_body_content, highlight_match
from docsearch.retrieval.keyword import KeywordRetriever
from docsearch.retrieval.models import (
    DocumentResultGroup,
    Excerpt,
    GroupedSearchResponse,
    MatchType,
    SearchResultRow,
    VectorSearchOptions,
)
from docsearch.retrieval.scoring import metadata_score
from docsearch.retrieval.vector import VectorRetriever

logger = logging.getLogger(__name__)

KEYWORD_WEIGHT = 0.6
VECTOR_WEIGHT = 0.4
METADATA_WEIGHT = 0.3
PASSAGE_WEIGHT = 0.7
DUPLICATE_THRESHOLD = 0.85
SCORE_TIE_TOLERANCE = 0.01


def merge_results(
    keyword_rows: Iterable[SearchResultRow], vector_rows: Iterable[SearchResultRow]
) -> list[SearchResultRow]:
    """Merge keyword and vector rows on ``(document_id, passage_id)``.

    A row found by both retrievers scores ``kw * 0.6 + vec * 0.4`` (capped
    at 1.0) and is tagged ``hybrid``; other rows keep their own score and
    provenance.  Keyword rows come first, in their original order.
    """
    merged: dict[tuple[int, int], SearchResultRow] = {}
    for row in keyword_rows:
        merged.setdefault(row.key, row)

    for row in vector_rows:
        existing = merged.get(row.key)
        if existing is None:
            merged[row.key] = row
            continue
        combined = min(1.0, existing.score * KEYWORD_WEIGHT + row.score * VECTOR_WEIGHT)
        merged[row.key] = row.model_copy(
            update={
                "score": combined,
                "match_type": MatchType.HYBRID,
                "text_rank": max(existing.text_rank, row.text_rank),
            }
        )
    return list(merged.values())


def _compare_excerpts(a: Excerpt, b: Excerpt) -> int:
    if abs(a.score - b.score) > SCORE_TIE_TOLERANCE:
        return -1 if a.score > b.score else 1
    return a.position - b.position


def _compare_groups(a: DocumentResultGroup, b: DocumentResultGroup) -> int:
    if abs(a.max_score - b.max_score) > SCORE_TIE_TOLERANCE:
        return -1 if a.max_score > b.max_score else 1
    return b.passage_count - a.passage_count


class DocumentGroupBuilder:
    """Accumulates the result group for a single document.

    The group starts from the document's metadata score.  Every candidate
    row offered through :meth:`add_candidate` raises the running maximum,
    whether or not its excerpt is kept.

    Parameters
    ----------
    first_row:
        Any row of the document; supplies title, metadata and created-at.
    query:
        The (trimmed) search query.
    """

    def __init__(self, first_row: SearchResultRow, query: str) -> None:
        self.query = query
        self.document_id = first_row.document_id
        self.metadata_score = metadata_score(
            first_row.document_title, first_row.document_metadata, query
        )
        self.max_score = self.metadata_score
        self._title = first_row.document_title
        self._metadata = first_row.document_metadata
        self._created_at = first_row.document_created_at
        self._excerpts: list[Excerpt] = []
        self._seen_passages: set[int] = set()

    @property
    def excerpts(self) -> list[Excerpt]:
        return list(self._excerpts)

    def add_candidate(self, row: SearchResultRow) -> bool:
        """Offer *row* to the group.  Returns ``True`` if its excerpt was kept.

        A row is rejected when its passage was already offered, when it
        holds nothing but metadata header lines, or when its preview is a
        near-duplicate of a kept excerpt.  The first excerpt of a group is
        always kept.
        """
        if row.document_id != self.document_id:
            raise ValueError(
                f"Row for document {row.document_id} offered to group {self.document_id}"
            )

        accepted = False
        if row.passage_id not in self._seen_passages:
            self._seen_passages.add(row.passage_id)
            accepted = self._accept(row)

        self._raise_score(row.score)
        return accepted

    def build(self) -> DocumentResultGroup:
        excerpts = sorted(self._excerpts, key=functools.cmp_to_key(_compare_excerpts))
        return DocumentResultGroup(
            document_id=self.document_id,
            title=self._title,
            created_at=self._created_at,
            metadata=self._metadata,
            metadata_score=self.metadata_score,
            max_score=self.max_score,
            passage_count=len(excerpts),
            excerpts=excerpts,
        )

    # -- internals ------------------------------------------------------------

    def _accept(self, row: SearchResultRow) -> bool:
        preview = highlight_match(row.text, self.query)
        if self._excerpts:
            if not has_body_content(row.text):
                return False
            if any(
                excerpt_similarity(kept.preview, preview) > DUPLICATE_THRESHOLD
                for kept in self._excerpts
            ):
                return False

        self._excerpts.append(
            Excerpt(
                passage_id=row.passage_id,
                text=row.text,
                preview=preview,
                score=row.score,
                match_type=row.match_type,
                position=row.position,
            )
        )
        return True

    def _raise_score(self, passage_score: float) -> None:
        if self.metadata_score > 0:
            combined = min(
                1.0, self.metadata_score * METADATA_WEIGHT + passage_score * PASSAGE_WEIGHT
            )
        else:
            combined = passage_score
        # Order-dependent: the maximum is taken over rows as they arrive.
        self.max_score = max(self.max_score, combined)


class HybridSearchEngine:
    """Grouped search combining keyword and vector retrieval.

    Parameters
    ----------
    keyword_retriever, vector_retriever:
        The two independent retrievers.
    candidate_limit:
        Rows requested from each retriever.
    similarity_threshold:
        Minimum cosine similarity for vector candidates.
    """

    def __init__(
        self,
        keyword_retriever: KeywordRetriever,
        vector_retriever: VectorRetriever,
        *,
        candidate_limit: int = 50,
        similarity_threshold: float = 0.2,
    ) -> None:
        self._keyword = keyword_retriever
        self._vector = vector_retriever
        self.candidate_limit = candidate_limit
        self.similarity_threshold = similarity_threshold

    def grouped_search(self, query: str) -> GroupedSearchResponse:
        """Search all documents and return ranked per-document groups.

        Raises
        ------
        ValidationError
            If *query* is empty or whitespace only.
        """
        query = (query or "").strip()
        if not query:
            raise ValidationError("Query cannot be empty")

        keyword_rows = self._keyword.search(query, self.candidate_limit)
        vector_rows = self._vector.search(
            query,
            VectorSearchOptions(
                limit=self.candidate_limit, similarity_threshold=self.similarity_threshold
            ),
        )
        merged = merge_results(keyword_rows, vector_rows)

        builders: dict[int, DocumentGroupBuilder] = {}
        for row in merged:
            builder = builders.get(row.document_id)
            if builder is None:
                builder = builders[row.document_id] = DocumentGroupBuilder(row, query)
            builder.add_candidate(row)

        documents = sorted(
            (b.build() for b in builders.values()), key=functools.cmp_to_key(_compare_groups)
        )
        logger.info(
            "Grouped search %r: %d keyword + %d vector rows -> %d unique across %d documents",
            query,
            len(keyword_rows),
            len(vector_rows),
            len(merged),
            len(documents),
        )
        return GroupedSearchResponse(
            query=query,
            documents=documents,
            total_passages=len(merged),
            total_documents=len(documents),
        )
