"""Raw-data extraction: thin wrappers around LangChain document loaders.

Uploads arrive as ``data:<mime>;base64,<payload>`` URLs.  The decoded
bytes are routed by MIME type to a LangChain loader (PDF, Word) or decoded
directly (plain text), and the result is normalised.  Extraction is
best-effort: corrupt input is logged and yields ``None``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import tempfile
from collections.abc import Callable
from typing import TYPE_CHECKING

from langchain_community.document_loaders import Docx2txtLoader, PyPDFLoader

from docsearch.exceptions import ExtractionError
from docsearch.ingestion.normalizer import normalize_text

if TYPE_CHECKING:
    from langchain_core.document_loaders import BaseLoader

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:(?P<mime>[^;,]+)?(?:;[^,]*)?,(?P<payload>.*)$", re.DOTALL)

PDF_TYPES = frozenset({"application/pdf"})
WORD_TYPES = frozenset(
    {
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/docx",
        "application/msword",
        "application/doc",
    }
)
TEXT_TYPES = frozenset({"text/plain", "text/markdown", "text/csv"})


def extract_from_data_url(raw: str | None) -> str | None:
    """Decode a base64 data URL and extract its text.

    Returns ``None`` when the URL is malformed or nothing could be extracted.
    """
    if not raw or "base64," not in raw:
        logger.warning("Raw data is not a base64 data URL")
        return None

    match = _DATA_URL.match(raw.strip())
    if match is None:
        logger.warning("Raw data is not a base64 data URL")
        return None

    mime_type = (match.group("mime") or "unknown").strip().lower()
    try:
        data = base64.b64decode(match.group("payload"), validate=False)
    except (binascii.Error, ValueError):
        logger.warning("Raw data payload is not valid base64 (mime=%s)", mime_type)
        return None

    logger.debug("Decoded %d bytes of %s", len(data), mime_type)
    return extract_text(mime_type, data)


def extract_text(mime_type: str, data: bytes) -> str | None:
    """Extract normalised text from *data* of the given MIME type.

    Parameters
    ----------
    mime_type:
        MIME type from the data URL header.
    data:
        Decoded file bytes.

    Returns
    -------
    str | None
        Normalised text, or ``None`` when the bytes yield no usable text.
    """
    try:
        if mime_type in PDF_TYPES:
            extracted = _extract_pdf(data)
        elif mime_type in WORD_TYPES:
            extracted = _extract_with_loader(data, ".docx", Docx2txtLoader)
        elif mime_type in TEXT_TYPES:
            extracted = data.decode("utf-8", errors="replace")
        else:
            extracted = _decode_unknown(mime_type, data)
    except ExtractionError as exc:
        logger.warning("Extraction failed for %s: %s", mime_type, exc)
        return None

    if not extracted or not extracted.strip():
        logger.warning("No text extracted from %s payload (%d bytes)", mime_type, len(data))
        return None

    text = normalize_text(extracted)
    logger.info("Extracted %d characters from %s", len(text), mime_type)
    return text or None


# -- internals ----------------------------------------------------------------


def _extract_pdf(data: bytes) -> str:
    if not data.startswith(b"%PDF"):
        raise ExtractionError("Missing %PDF header")
    return _extract_with_loader(data, ".pdf", PyPDFLoader)


def _extract_with_loader(
    data: bytes, suffix: str, loader_cls: Callable[[str], BaseLoader]
) -> str:
    """Write *data* to a temporary file and run a LangChain file loader on it."""
    fd, path = tempfile.mkstemp(suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        pages = loader_cls(path).load()
    except Exception as exc:
        name = getattr(loader_cls, "__name__", "loader")
        raise ExtractionError(f"{name} could not read the file", cause=exc) from exc
    finally:
        os.unlink(path)
    return "\n\n".join(page.page_content for page in pages)


def _decode_unknown(mime_type: str, data: bytes) -> str:
    text = data.decode("utf-8", errors="replace")
    if "\ufffd" in text:
        logger.info("Unsupported MIME type %s is not valid UTF-8 text", mime_type)
        return ""
    return text
