"""Batched, retried embedding generation.

:class:`EmbeddingClient` wraps any ``text -> vector`` callable.  Inputs are
sent in small batches; items inside a batch run concurrently on a thread
pool, every item is retried with exponential backoff, and a short pause
separates consecutive batches to stay under provider rate limits.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

import numpy as np

from docsearch.exceptions import (
    EmbeddingError,
    EmbeddingTransportError,
    EmbeddingValidationError,
)

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

    from docsearch.config import Settings

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], Sequence[float]]


class EmbeddingClient:
    """Turn texts into validated vectors through an injected generator.

    Parameters
    ----------
    embed_fn:
        The generator, ``text -> vector``.  Any exception it raises is
        treated as a transient transport failure and retried.
    dimension:
        Expected vector length.
    batch_size:
        Number of texts sent per batch.
    concurrency:
        Maximum number of in-flight requests inside a batch.
    max_attempts:
        Attempts per item before the whole call fails.
    base_delay:
        Backoff base in seconds; attempt *n* waits ``base_delay * 2**(n-1)``.
    batch_pause:
        Seconds to sleep between batches.
    """

    def __init__(
        self,
        embed_fn: EmbedFn,
        *,
        dimension: int = 1536,
        batch_size: int = 3,
        concurrency: int = 3,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        batch_pause: float = 0.2,
    ) -> None:
        if batch_size < 1 or concurrency < 1 or max_attempts < 1:
            raise ValueError("batch_size, concurrency and max_attempts must be >= 1")
        self._embed_fn = embed_fn
        self.dimension = dimension
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.batch_pause = batch_pause

    # -- public API -----------------------------------------------------------

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*, returning vectors in input order.

        Raises
        ------
        EmbeddingTransportError
            An item still failed after ``max_attempts`` attempts.
        EmbeddingValidationError
            The generator returned a malformed vector.
        """
        texts = list(texts)
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            if start:
                time.sleep(self.batch_pause)
            batch = texts[start : start + self.batch_size]
            vectors.extend(self._embed_batch(batch))
            logger.debug(
                "Embedded batch %d-%d of %d", start, start + len(batch) - 1, len(texts)
            )
        return vectors

    def embed_query(self, text: str) -> list[float]:
        """Embed a single query string."""
        return self._embed_one(text)

    # -- internals ------------------------------------------------------------

    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        workers = min(self.concurrency, len(batch))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self._embed_one, text) for text in batch]
            # result() re-raises the first failure; the pool still drains.
            return [f.result() for f in futures]

    def _embed_one(self, text: str) -> list[float]:
        last_exc: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                raw = self._embed_fn(text)
            except EmbeddingError:
                raise
            except Exception as exc:
                last_exc = exc
                if attempt < self.max_attempts:
                    delay = self.base_delay * 2 ** (attempt - 1)
                    logger.warning(
                        "Embedding attempt %d/%d failed (%s); retrying in %.1fs",
                        attempt,
                        self.max_attempts,
                        exc,
                        delay,
                    )
                    time.sleep(delay)
                continue
            return self._validate(raw)

        raise EmbeddingTransportError(
            f"Embedding failed after {self.max_attempts} attempts",
            cause=last_exc,
            context={"attempts": self.max_attempts, "text_length": len(text)},
        )

    def _validate(self, raw: Sequence[float]) -> list[float]:
        try:
            vector = np.asarray(raw, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise EmbeddingValidationError(
                "Embedding contains non-numeric values", cause=exc
            ) from exc
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise EmbeddingValidationError(
                f"Expected {self.dimension} dimensions, got shape {vector.shape}",
                context={"expected": self.dimension, "shape": list(vector.shape)},
            )
        if not np.isfinite(vector).all():
            raise EmbeddingValidationError("Embedding contains non-finite values")
        return vector.tolist()


# ---------------------------------------------------------------------------
# Generator factories
# ---------------------------------------------------------------------------


def get_embedding_model(settings: Settings) -> Embeddings:
    """Return the LangChain embedding model selected by *settings*."""
    provider = settings.embedding_provider.lower()
    if provider == "openai":
        from langchain_openai import OpenAIEmbeddings

        # Retries are owned by EmbeddingClient, so the SDK's own are disabled.
        return OpenAIEmbeddings(
            model=settings.embedding_model,
            dimensions=settings.embedding_dimension,
            api_key=settings.openai_api_key or None,
            timeout=settings.embedding_timeout,
            max_retries=0,
        )
    if provider == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        return HuggingFaceEmbeddings(model_name=settings.embedding_model)
    raise ValueError(f"Unknown embedding provider: {settings.embedding_provider!r}")


def build_embedding_function(settings: Settings) -> EmbedFn:
    """Adapt the configured LangChain model to a ``text -> vector`` callable."""
    model = get_embedding_model(settings)
    return model.embed_query


def build_embedding_client(settings: Settings, embed_fn: EmbedFn | None = None) -> EmbeddingClient:
    """Create an :class:`EmbeddingClient` from *settings*."""
    return EmbeddingClient(
        embed_fn or build_embedding_function(settings),
        dimension=settings.embedding_dimension,
        batch_size=settings.embedding_batch_size,
        concurrency=settings.embedding_concurrency,
        max_attempts=settings.embedding_max_attempts,
        base_delay=settings.embedding_retry_base_delay,
        batch_pause=settings.embedding_batch_pause,
    )
