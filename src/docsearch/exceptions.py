"""Exception hierarchy for docsearch.

Every error carries a stable ``error_code`` so that callers (the serving
layer, logs) can tell "bad input" apart from "internal failure" without
string matching.
"""

from __future__ import annotations

from typing import Any


class DocSearchError(Exception):
    """Base exception for all docsearch errors.

    Parameters
    ----------
    message:
        Human-readable error message.
    cause:
        The underlying exception, if any.
    context:
        Extra key/value pairs for debugging (document id, attempt, …).
    """

    error_code: str = "DS_ERR_001"

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable description of the error."""
        result: dict[str, Any] = {
            "type": type(self).__name__,
            "code": self.error_code,
            "message": self.message,
        }
        if self.context:
            result["context"] = self.context
        if self.cause is not None:
            result["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}
        return result


class ValidationError(DocSearchError):
    """Missing or malformed input, rejected before any I/O."""

    error_code = "DS_VAL_001"


class DocumentNotFoundError(DocSearchError):
    """The referenced document does not exist."""

    error_code = "DS_DOC_001"


class ExtractionError(DocSearchError):
    """Raw source bytes could not be turned into text."""

    error_code = "DS_EXT_001"


class IngestionError(DocSearchError):
    """A document could not be ingested (no content, zero passages)."""

    error_code = "DS_ING_001"


class EmbeddingError(DocSearchError):
    """Failed to generate embeddings."""

    error_code = "DS_EMB_001"


class EmbeddingTransportError(EmbeddingError):
    """Network, quota or timeout failure talking to the embedding generator."""

    error_code = "DS_EMB_002"


class EmbeddingValidationError(EmbeddingError):
    """The generator returned a malformed vector. Never retried."""

    error_code = "DS_EMB_003"


class StorageError(DocSearchError):
    """The datastore rejected or failed a query."""

    error_code = "DS_STO_001"
