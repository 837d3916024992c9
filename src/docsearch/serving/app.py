"""FastAPI application exposing search and ingestion as a REST API.

The routes only translate HTTP to service calls; collaborators come from
the composition root through FastAPI dependencies, so tests can swap them
with ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from docsearch import __version__, container
from docsearch.config import configure_logging
from docsearch.exceptions import DocSearchError, DocumentNotFoundError, ValidationError
from docsearch.ingestion.pipeline import IngestionPipeline, IngestionQueue
from docsearch.retrieval.base import DocumentStore
from docsearch.retrieval.models import DocumentMetadata, NewDocument, ProcessingStatus
from docsearch.retrieval.service import SearchService

logger = logging.getLogger(__name__)

# Raw uploads can be megabytes of base64; responses never echo them.
_HIDDEN_METADATA = {"raw_data"}


# ── Request schemas ───────────────────────────────────────────────────
class SearchRequest(BaseModel):
    """Flat search; ``document_id`` is required by ``/search/document`` only."""

    query: str = ""
    document_id: int | None = None
    limit: int | None = Field(default=None, ge=1, le=100)
    file_types: list[str] | None = None


class GroupedSearchRequest(BaseModel):
    query: str = ""


class CreateDocumentRequest(BaseModel):
    """A new document; processing starts in the background."""

    title: str = ""
    text: str = ""
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)


# ── Serialisation helpers ─────────────────────────────────────────────
def _dump(model: BaseModel, metadata_field: str) -> dict[str, Any]:
    return model.model_dump(mode="json", exclude={metadata_field: _HIDDEN_METADATA})


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message})


# ── Application factory ───────────────────────────────────────────────
@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    yield
    if container.get_ingestion_queue.cache_info().currsize:
        container.get_ingestion_queue().shutdown(wait=False)


def create_app() -> FastAPI:
    """Build the FastAPI app with routes and error mapping."""
    app = FastAPI(
        title="docsearch API",
        version=__version__,
        description="Hybrid keyword and vector search over ingested documents.",
        lifespan=_lifespan,
    )

    @app.exception_handler(ValidationError)
    async def _bad_request(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(400, exc.message)

    @app.exception_handler(DocumentNotFoundError)
    async def _not_found(request: Request, exc: DocumentNotFoundError) -> JSONResponse:
        return _error(404, exc.message)

    @app.exception_handler(DocSearchError)
    async def _internal(request: Request, exc: DocSearchError) -> JSONResponse:
        logger.error("Request %s %s failed: %s", request.method, request.url.path, exc.to_dict())
        return _error(500, exc.message)

    # ── Routes ────────────────────────────────────────────────────────
    @app.get("/health")
    def health(
        response: Response, store: DocumentStore = Depends(container.get_store)
    ) -> dict[str, str]:
        """Readiness check: 503 when the document store is unreachable."""
        if not store.health_check():
            logger.warning("Health check failed: document store unavailable")
            response.status_code = 503
            return {"status": "unhealthy"}
        return {"status": "ok"}

    @app.post("/search/document")
    def search_document(
        request: SearchRequest, service: SearchService = Depends(container.get_search_service)
    ) -> dict[str, Any]:
        """Vector search within one document."""
        results = service.search_document(request.query, request.document_id, request.limit)
        return {
            "status": "success",
            "query": request.query.strip(),
            "results": [_dump(r, "document_metadata") for r in results],
        }

    @app.post("/search/all")
    def search_all(
        request: SearchRequest, service: SearchService = Depends(container.get_search_service)
    ) -> dict[str, Any]:
        """Flat vector search across all documents."""
        results = service.search_all(request.query, request.limit, file_types=request.file_types)
        return {
            "status": "success",
            "query": request.query.strip(),
            "results": [_dump(r, "document_metadata") for r in results],
        }

    @app.post("/search/grouped")
    def search_grouped(
        request: GroupedSearchRequest,
        service: SearchService = Depends(container.get_search_service),
    ) -> dict[str, Any]:
        """Hybrid search grouped by document."""
        response = service.grouped_search(request.query)
        return {
            "status": "success",
            "query": response.query,
            "documents": [_dump(d, "metadata") for d in response.documents],
            "total_passages": response.total_passages,
            "total_documents": response.total_documents,
        }

    @app.get("/documents")
    def list_documents(
        limit: int = Query(default=50, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        store: DocumentStore = Depends(container.get_store),
    ) -> dict[str, Any]:
        """Page through stored documents without their text."""
        documents = store.list_documents(limit=limit, offset=offset)
        return {
            "status": "success",
            "documents": [
                d.model_dump(
                    mode="json", exclude={"text_content": True, "metadata": _HIDDEN_METADATA}
                )
                for d in documents
            ],
            "limit": limit,
            "offset": offset,
        }

    @app.get("/documents/{document_id}")
    def get_document(
        document_id: int, store: DocumentStore = Depends(container.get_store)
    ) -> dict[str, Any]:
        document = store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return {"status": "success", "document": _dump(document, "metadata")}

    @app.delete("/documents/{document_id}")
    def delete_document(
        document_id: int, store: DocumentStore = Depends(container.get_store)
    ) -> dict[str, Any]:
        """Delete a document together with its passages."""
        if not store.delete_document(document_id):
            raise DocumentNotFoundError(f"Document {document_id} not found")
        logger.info("Deleted document %d", document_id)
        return {"status": "success", "document_id": document_id}

    @app.delete("/documents/{document_id}/passages")
    def clear_passages(
        document_id: int, store: DocumentStore = Depends(container.get_store)
    ) -> dict[str, Any]:
        """Drop a document's passages and mark it pending for re-ingestion."""
        if store.get_document(document_id) is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        deleted = store.delete_passages(document_id)
        store.set_processing_status(document_id, ProcessingStatus.PENDING)
        logger.info("Cleared %d passages of document %d", deleted, document_id)
        return {
            "status": "success",
            "document_id": document_id,
            "deleted_passages": deleted,
            "processing_status": ProcessingStatus.PENDING.value,
        }

    @app.get("/documents/{document_id}/content")
    def document_content(
        document_id: int, service: SearchService = Depends(container.get_search_service)
    ) -> dict[str, Any]:
        return {"status": "success", "content": service.document_content(document_id)}

    @app.post("/documents", status_code=201)
    def create_document(
        request: CreateDocumentRequest,
        queue: IngestionQueue = Depends(container.get_ingestion_queue),
    ) -> dict[str, Any]:
        """Store a document and start ingesting it in the background."""
        document, ticket = queue.create_and_ingest(
            NewDocument(title=request.title.strip(), text=request.text, metadata=request.metadata)
        )
        return {
            "status": "success",
            "document": _dump(document, "metadata"),
            "processing_status": ticket.status.value,
        }

    @app.post("/documents/process-pending")
    def process_pending(
        queue: IngestionQueue = Depends(container.get_ingestion_queue),
    ) -> dict[str, Any]:
        tickets = queue.submit_pending()
        scheduled = [t.document_id for t in tickets if t.scheduled]
        return {
            "status": "success",
            "message": f"Processing started for {len(scheduled)} documents",
            "document_ids": scheduled,
        }

    @app.post("/documents/{document_id}/process")
    def process_document(
        document_id: int,
        reingest: bool = False,
        queue: IngestionQueue = Depends(container.get_ingestion_queue),
    ) -> dict[str, Any]:
        """Trigger (re)ingestion of one document."""
        ticket = queue.submit(document_id, reingest=reingest)
        if ticket.scheduled:
            message = "Processing started"
        elif ticket.status is ProcessingStatus.PROCESSING:
            message = "Already processing"
        else:
            message = "Already processed"
        return {
            "status": "success",
            "message": message,
            "document_id": document_id,
            "processing_status": ticket.status.value,
        }

    @app.get("/documents/{document_id}/status")
    def document_status(
        document_id: int, pipeline: IngestionPipeline = Depends(container.get_pipeline)
    ) -> dict[str, Any]:
        payload = pipeline.processing_report(document_id).model_dump(mode="json")
        payload["processing_status"] = payload.pop("status")
        return {"status": "success", **payload}

    return app


app = create_app()
