"""Domain models for documents, passages and search results."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


class ProcessingStatus(str, Enum):
    """Ingestion state of a document."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class MatchType(str, Enum):
    """Which retriever produced a search row."""

    KEYWORD = "keyword"
    VECTOR = "vector"
    HYBRID = "hybrid"


class DocumentMetadata(BaseModel):
    """Typed view over the JSON metadata blob stored with each document.

    Known keys are exposed as attributes; anything else is kept verbatim
    and available through :attr:`extras`, so a load/dump cycle never drops
    data written by other clients.

    Attributes
    ----------
    description:
        Free-text description of the document.
    publishers:
        Publisher labels.
    tags:
        Arbitrary tag list.
    processing_status:
        Ingestion state (JSON key ``processingStatus``).
    raw_data:
        Original upload as a ``data:<mime>;base64,<payload>`` URL
        (JSON key ``rawData``).
    file_type:
        Source file type used by vector-search filters (JSON key ``fileType``).
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    description: str = ""
    publishers: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    processing_status: ProcessingStatus | None = Field(default=None, alias="processingStatus")
    raw_data: str | None = Field(default=None, alias="rawData")
    file_type: str | None = Field(default=None, alias="fileType")

    @property
    def extras(self) -> dict[str, Any]:
        """Unrecognised keys carried through from the stored blob."""
        return dict(self.model_extra or {})

    def to_json_dict(self) -> dict[str, Any]:
        """Serialise using the stored (camelCase) key names."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Document(BaseModel):
    """A unit of ingested content."""

    id: int
    title: str
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    text_content: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def description(self) -> str:
        return self.metadata.description

    @property
    def publishers(self) -> list[str]:
        return self.metadata.publishers

    @property
    def tags(self) -> list[str]:
        return self.metadata.tags

    @property
    def status(self) -> ProcessingStatus:
        return self.metadata.processing_status or ProcessingStatus.PENDING


class NewDocument(BaseModel):
    """Input for creating a document."""

    title: str
    text: str = ""
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)


class Passage(BaseModel):
    """A contiguous excerpt of a document's text, as produced by the chunker."""

    text: str
    position: int
    section: str | None = None
    token_estimate: int = 0


class StoredPassage(Passage):
    """A persisted passage with its owning document and embedding."""

    id: int | None = None
    document_id: int
    embedding: list[float] = Field(default_factory=list)


class SearchResultRow(BaseModel):
    """One passage hit plus denormalised document fields.

    ``text_rank`` is the lexical rank reported by the store, ``similarity``
    the vector similarity (vector rows only) and ``score`` the retriever's
    final score.
    """

    document_id: int
    passage_id: int
    text: str
    position: int = 0
    section: str | None = None
    document_title: str = ""
    document_metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    document_created_at: datetime | None = None
    text_rank: float = 0.0
    similarity: float | None = None
    score: float = 0.0
    match_type: MatchType = MatchType.KEYWORD

    @property
    def key(self) -> tuple[int, int]:
        return (self.document_id, self.passage_id)


class VectorSearchOptions(BaseModel):
    """Options for :class:`~docsearch.retrieval.vector.VectorRetriever`."""

    limit: int = 10
    similarity_threshold: float = 0.2
    document_ids: list[int] | None = None
    file_types: list[str] | None = None


class Excerpt(BaseModel):
    """A passage accepted into a document result group."""

    passage_id: int
    text: str
    preview: str
    score: float
    match_type: MatchType
    position: int = 0


class DocumentResultGroup(BaseModel):
    """All accepted passages for one document, with a document-level score."""

    document_id: int
    title: str
    created_at: datetime | None = None
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    metadata_score: float = 0.0
    max_score: float = 0.0
    passage_count: int = 0
    excerpts: list[Excerpt] = Field(default_factory=list)

    @property
    def publishers(self) -> list[str]:
        return self.metadata.publishers

    @property
    def description(self) -> str:
        return self.metadata.description


class GroupedSearchResponse(BaseModel):
    """Result of a grouped search across all documents."""

    query: str
    documents: list[DocumentResultGroup] = Field(default_factory=list)
    total_passages: int = 0
    total_documents: int = 0


class ProcessingReport(BaseModel):
    """Ingestion status summary for one document."""

    document_id: int
    title: str
    status: ProcessingStatus
    passage_count: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ready(self) -> bool:
        return self.status is ProcessingStatus.COMPLETED and self.passage_count > 0
