"""Document ingestion: extract → normalise → enrich → chunk → embed → store.

:class:`IngestionPipeline` runs one document through the state machine
``pending → processing → completed | failed``.  :class:`IngestionQueue`
runs pipelines on a thread pool so that callers can trigger ingestion
and return immediately, while every outcome still lands in the
document's status and in an optional callback.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_for_futures
from dataclasses import dataclass, field

from docsearch.exceptions import DocumentNotFoundError, IngestionError, ValidationError
from docsearch.ingestion.chunker import chunk_text
from docsearch.ingestion.embedder import EmbeddingClient
from docsearch.ingestion.loader import extract_from_data_url
from docsearch.ingestion.normalizer import normalize_text
from docsearch.retrieval.base import DocumentStore
from docsearch.retrieval.models import (
    Document,
    NewDocument,
    ProcessingReport,
    ProcessingStatus,
    StoredPassage,
)

logger = logging.getLogger(__name__)

Extractor = Callable[[str], str | None]
StatusCallback = Callable[[int, ProcessingStatus], None]

RETRIGGERABLE = (ProcessingStatus.PENDING, ProcessingStatus.FAILED, None)


def enrich_content(document: Document, text: str) -> str:
    """Prefix *text* with the document's metadata header.

    The header lines sit directly above the first paragraph (no blank
    line), so they always travel with body content inside one passage.
    """
    lines = [f"Title: {document.title}"]
    if document.description:
        lines.append(f"Description: {document.description}")
    if document.publishers:
        lines.append(f"Publishers: {', '.join(document.publishers)}")
    if document.tags:
        lines.append(f"Tags: {', '.join(document.tags)}")
    lines.append("---")
    return "\n".join(lines) + "\n" + text


class IngestionPipeline:
    """Turns a stored document into embedded passages.

    Parameters
    ----------
    store:
        Persistence backend for documents and passages.
    embedder:
        Client used to embed passage texts.
    chunk_size, chunk_overlap:
        Forwarded to :func:`~docsearch.ingestion.chunker.chunk_text`.
    extractor:
        ``raw data URL -> text | None``; defaults to
        :func:`~docsearch.ingestion.loader.extract_from_data_url`.
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingClient,
        *,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        extractor: Extractor | None = None,
    ) -> None:
        if chunk_size <= 0 or chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError(
                f"Invalid chunking parameters: size={chunk_size}, overlap={chunk_overlap}"
            )
        self._store = store
        self._embedder = embedder
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._extract = extractor or extract_from_data_url

    # -- state transitions ----------------------------------------------------

    def trigger(self, document_id: int, *, reingest: bool = False) -> ProcessingStatus:
        """Move the document to ``processing`` if it may be (re)ingested.

        Returns the status after the call.  A document already
        ``processing`` is left alone; a ``completed`` one too unless
        *reingest* is set.  The check is best-effort, not a lock.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist.
        """
        document = self._get(document_id)
        current = document.metadata.processing_status
        if current is ProcessingStatus.PROCESSING:
            logger.info("Document %d is already processing", document_id)
            return current
        if current is ProcessingStatus.COMPLETED and not reingest:
            logger.info("Document %d is already processed", document_id)
            return current

        self._store.set_processing_status(document_id, ProcessingStatus.PROCESSING)
        return ProcessingStatus.PROCESSING

    def run(self, document_id: int) -> ProcessingStatus:
        """Ingest a document that :meth:`trigger` moved to ``processing``.

        Never raises: any failure marks the document ``failed`` and is
        logged with its traceback.
        """
        try:
            count = self._ingest(document_id)
        except Exception:
            logger.exception("Ingestion failed for document %d", document_id)
            self._mark_failed(document_id)
            return ProcessingStatus.FAILED

        self._store.set_processing_status(document_id, ProcessingStatus.COMPLETED)
        logger.info("Document %d completed with %d passages", document_id, count)
        return ProcessingStatus.COMPLETED

    def process(self, document_id: int, *, reingest: bool = False) -> ProcessingStatus:
        """Trigger and run synchronously."""
        status = self.trigger(document_id, reingest=reingest)
        if status is not ProcessingStatus.PROCESSING:
            return status
        return self.run(document_id)

    def processing_report(self, document_id: int) -> ProcessingReport:
        document = self._get(document_id)
        return ProcessingReport(
            document_id=document.id,
            title=document.title,
            status=document.status,
            passage_count=self._store.count_passages(document_id),
        )

    # -- internals ------------------------------------------------------------

    def _get(self, document_id: int) -> Document:
        document = self._store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(
                f"Document {document_id} not found", context={"document_id": document_id}
            )
        return document

    def _mark_failed(self, document_id: int) -> None:
        try:
            self._store.set_processing_status(document_id, ProcessingStatus.FAILED)
        except Exception:
            logger.exception("Could not record failure for document %d", document_id)

    def _resolve_content(self, document: Document) -> tuple[str, bool]:
        """Return the text to ingest and whether it came from raw data."""
        raw_data = document.metadata.raw_data
        if raw_data:
            extracted = self._extract(raw_data)
            if extracted and extracted.strip():
                return extracted, True
            logger.warning(
                "Extraction produced no text for document %d; falling back to supplied text",
                document.id,
            )
        if document.text_content and document.text_content.strip():
            return document.text_content, False
        raise IngestionError(
            "No content to process: neither raw data nor text is available",
            context={"document_id": document.id},
        )

    def _ingest(self, document_id: int) -> int:
        document = self._get(document_id)
        content, extracted = self._resolve_content(document)

        text = normalize_text(content)
        if not text:
            raise IngestionError(
                "Content is empty after normalisation", context={"document_id": document_id}
            )
        passages = chunk_text(enrich_content(document, text), self.chunk_size, self.chunk_overlap)
        if not passages:
            raise IngestionError(
                "Chunking produced zero passages", context={"document_id": document_id}
            )

        vectors = self._embedder.embed([p.text for p in passages])
        stored = [
            StoredPassage(document_id=document_id, embedding=vector, **p.model_dump())
            for p, vector in zip(passages, vectors, strict=True)
        ]

        updated_text = text if extracted and text != document.text_content else None
        self._store.replace_passages(document_id, stored, text_content=updated_text)
        return len(stored)


@dataclass
class IngestionTicket:
    """Handle for one queued ingestion."""

    document_id: int
    status: ProcessingStatus
    future: Future[ProcessingStatus] | None = field(default=None, repr=False)

    @property
    def scheduled(self) -> bool:
        return self.future is not None

    def result(self, timeout: float | None = None) -> ProcessingStatus:
        """Block until the run finishes and return its final status."""
        if self.future is None:
            return self.status
        return self.future.result(timeout=timeout)


class IngestionQueue:
    """Runs ingestions in the background on a thread pool.

    Parameters
    ----------
    pipeline:
        The pipeline each task runs.
    store:
        Used to create documents and find pending ones.
    max_workers:
        Documents ingested concurrently.
    on_status:
        Called with ``(document_id, final_status)`` after every run.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        store: DocumentStore,
        *,
        max_workers: int = 4,
        on_status: StatusCallback | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._store = store
        self._on_status = on_status
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ingest")
        self._futures: set[Future[ProcessingStatus]] = set()
        self._lock = threading.Lock()

    def submit(self, document_id: int, *, reingest: bool = False) -> IngestionTicket:
        """Trigger ingestion of a document and schedule the run.

        When the document is already processing (or processed, without
        *reingest*) nothing is scheduled and the ticket carries the
        current status.
        """
        status = self._pipeline.trigger(document_id, reingest=reingest)
        if status is not ProcessingStatus.PROCESSING:
            return IngestionTicket(document_id=document_id, status=status)

        future = self._executor.submit(self._run, document_id)
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return IngestionTicket(document_id=document_id, status=status, future=future)

    def submit_pending(self) -> list[IngestionTicket]:
        """Schedule every document that is pending, failed or has no status."""
        documents = self._store.list_documents_by_status(RETRIGGERABLE)
        logger.info("Scheduling %d pending documents", len(documents))
        return [self.submit(d.id) for d in documents]

    def create_and_ingest(self, new_document: NewDocument) -> tuple[Document, IngestionTicket]:
        """Persist *new_document* as ``pending`` and schedule its ingestion.

        Raises
        ------
        ValidationError
            If the title is empty.
        """
        if not new_document.title or not new_document.title.strip():
            raise ValidationError("Document title is required")
        metadata = new_document.metadata.model_copy(
            update={"processing_status": ProcessingStatus.PENDING}
        )
        document = self._store.create_document(new_document.model_copy(update={"metadata": metadata}))
        return document, self.submit(document.id)

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for every scheduled run.  Returns ``False`` on timeout."""
        with self._lock:
            pending = set(self._futures)
        _, not_done = wait_for_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # -- internals ------------------------------------------------------------

    def _run(self, document_id: int) -> ProcessingStatus:
        status = self._pipeline.run(document_id)
        if self._on_status is not None:
            try:
                self._on_status(document_id, status)
            except Exception:
                logger.exception("Status callback failed for document %d", document_id)
        return status

    def _forget(self, future: Future[ProcessingStatus]) -> None:
        with self._lock:
            self._futures.discard(future)
