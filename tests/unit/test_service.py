"""Unit tests for the query surface."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from docsearch.exceptions import DocumentNotFoundError, ValidationError
from docsearch.retrieval.hybrid import HybridSearchEngine
from docsearch.retrieval.keyword import KeywordRetriever
from docsearch.retrieval.models import NewDocument, ProcessingStatus
from docsearch.retrieval.service import SearchService
from docsearch.retrieval.vector import VectorRetriever


@pytest.fixture()
def service(store, embedder) -> SearchService:  # noqa: ANN001
    vector = VectorRetriever(store, embedder)
    engine = HybridSearchEngine(KeywordRetriever(store), vector)
    return SearchService(store, vector, engine, similarity_threshold=0.0, default_limit=5)


@pytest.fixture()
def ingested(store, pipeline) -> list[int]:  # noqa: ANN001
    ids = []
    for title, body in [
        ("Wind Energy", "Wind turbines convert moving air into power.\n\nOffshore farms are large."),
        ("Solar Energy", "Solar panels convert sunlight into power."),
    ]:
        doc = store.create_document(NewDocument(title=title, text=body))
        assert pipeline.process(doc.id) is ProcessingStatus.COMPLETED
        ids.append(doc.id)
    return ids


# ── Validation ──────────────────────────────────────────────────────────


class TestValidation:
    @pytest.mark.parametrize("query", ["", "  ", None])
    def test_blank_query_rejected_everywhere(self, query: str | None) -> None:
        """Every search rejects a blank query before retrieval."""
        vector = MagicMock()
        engine = MagicMock()
        svc = SearchService(MagicMock(), vector, engine)

        with pytest.raises(ValidationError):
            svc.search_all(query)  # type: ignore[arg-type]
        with pytest.raises(ValidationError):
            svc.search_document(query, 1)  # type: ignore[arg-type]
        with pytest.raises(ValidationError):
            svc.grouped_search(query)  # type: ignore[arg-type]

        vector.search.assert_not_called()
        engine.grouped_search.assert_not_called()

    def test_document_search_requires_id(self) -> None:
        """Document search without an id is rejected."""
        vector = MagicMock()
        with pytest.raises(ValidationError):
            SearchService(MagicMock(), vector, MagicMock()).search_document("wind", None)
        vector.search.assert_not_called()


# ── Searches ────────────────────────────────────────────────────────────


class TestSearches:
    def test_search_document_stays_in_document(self, service, ingested) -> None:  # noqa: ANN001
        """Document search only returns passages of that document."""
        wind, _ = ingested
        rows = service.search_document("power", wind)
        assert rows
        assert {r.document_id for r in rows} == {wind}

    def test_search_all_spans_documents(self, service, ingested) -> None:  # noqa: ANN001
        """Flat search returns passages from every matching document."""
        rows = service.search_all("power")
        assert {r.document_id for r in rows} == set(ingested)

    def test_search_all_respects_limit(self, service, ingested) -> None:  # noqa: ANN001
        """Flat search honours the limit."""
        assert len(service.search_all("power", limit=1)) == 1

    def test_limit_defaults_to_service_default(self) -> None:
        """A missing limit falls back to the service default."""
        vector = MagicMock()
        vector.search.return_value = []
        SearchService(MagicMock(), vector, MagicMock(), default_limit=7).search_all("x")
        options = vector.search.call_args.args[1]
        assert options.limit == 7

    def test_grouped_search_ranks_title_match_first(self, service, ingested) -> None:  # noqa: ANN001
        """The document whose title matches is ranked first."""
        wind, _ = ingested
        response = service.grouped_search("wind")
        assert response.documents[0].document_id == wind
        assert response.documents[0].max_score >= 0.95


# ── Content ─────────────────────────────────────────────────────────────


class TestDocumentContent:
    def test_passages_joined_in_order(self, service, store, ingested) -> None:  # noqa: ANN001
        """Content is the passages joined by blank lines in position order."""
        wind, _ = ingested
        content = service.document_content(wind)
        parts = content.split("\n\n")
        assert len(parts) == store.count_passages(wind) == 2
        assert parts[1] == "Offshore farms are large."

    def test_missing_document(self, service) -> None:  # noqa: ANN001
        """Content of a missing document raises DocumentNotFoundError."""
        with pytest.raises(DocumentNotFoundError):
            service.document_content(404)

    def test_document_without_passages_is_empty(self, service, store) -> None:  # noqa: ANN001
        """A document with no passages has empty content."""
        doc = store.create_document(NewDocument(title="Empty"))
        assert service.document_content(doc.id) == ""
