"""Field-weighted relevance tiers shared by keyword retrieval and grouping.

A match in a document's title always outranks a match in its publishers,
which outranks description, tags and finally passage body text.  Body
matches are capped below every metadata tier and scaled by lexical rank.
"""

from __future__ import annotations

from enum import IntEnum

from docsearch.retrieval.models import DocumentMetadata, SearchResultRow

TITLE_SCORE = 0.95
PUBLISHER_SCORE = 0.85
DESCRIPTION_SCORE = 0.75
TAG_SCORE = 0.70
BODY_SCORE_CAP = 0.65
# Literal substring hit with no full-text rank; kept below any real rank.
BODY_DEFAULT_RANK = 0.01


class FieldTier(IntEnum):
    """Ordering priority of the strongest field a row matched."""

    NONE = 0
    BODY = 1
    TAG = 2
    DESCRIPTION = 3
    PUBLISHER = 4
    TITLE = 5


def _contains(haystack: str, needle: str) -> bool:
    return bool(needle) and needle in haystack.lower()


def _metadata_tier(title: str, metadata: DocumentMetadata, needle: str) -> FieldTier:
    if _contains(title, needle):
        return FieldTier.TITLE
    if _contains(" ".join(metadata.publishers), needle):
        return FieldTier.PUBLISHER
    if _contains(metadata.description, needle):
        return FieldTier.DESCRIPTION
    if _contains(" ".join(metadata.tags), needle):
        return FieldTier.TAG
    return FieldTier.NONE


_TIER_SCORES = {
    FieldTier.TITLE: TITLE_SCORE,
    FieldTier.PUBLISHER: PUBLISHER_SCORE,
    FieldTier.DESCRIPTION: DESCRIPTION_SCORE,
    FieldTier.TAG: TAG_SCORE,
}


def metadata_score(title: str, metadata: DocumentMetadata, query: str) -> float:
    """Score a document on its metadata alone: the strongest matching tier, else 0."""
    tier = _metadata_tier(title, metadata, query.strip().lower())
    return _TIER_SCORES.get(tier, 0.0)


def body_matches(row: SearchResultRow, query: str) -> bool:
    """Whether the passage text matched, literally or by full-text rank."""
    return _contains(row.text, query.strip().lower()) or row.text_rank > 0


def body_score(row: SearchResultRow) -> float:
    return min(BODY_SCORE_CAP, row.text_rank or BODY_DEFAULT_RANK)


def keyword_score(row: SearchResultRow, query: str) -> float:
    """Maximum field score across every field of *row* that contains *query*."""
    score = metadata_score(row.document_title, row.document_metadata, query)
    if body_matches(row, query):
        score = max(score, body_score(row))
    return score


def field_tier(row: SearchResultRow, query: str) -> FieldTier:
    """The strongest field of *row* matching *query*, for ordering."""
    tier = _metadata_tier(row.document_title, row.document_metadata, query.strip().lower())
    if tier is FieldTier.NONE and body_matches(row, query):
        return FieldTier.BODY
    return tier
