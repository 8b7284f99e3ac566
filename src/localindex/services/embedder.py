"""Embedding services.

``ChromaEmbedder`` adapts a chromadb ``EmbeddingFunction`` (by default the
bundled ONNX all-MiniLM-L6-v2 model) to the ``Embedder`` protocol.
``BatchEmbedder`` batches chunk texts for throughput and degrades failures to
``None`` so the pipeline can keep those chunks as keyword-only.

Inference is CPU/GPU bound and synchronous, so callers run it through
asyncio.to_thread().
"""

import asyncio
import threading
from collections.abc import Callable, Sequence
from typing import Protocol, runtime_checkable

import structlog
from chromadb.api.types import EmbeddingFunction

from localindex.errors import (
    DimensionMismatchError,
    EmbedderUnavailableError,
    EmbedError,
    UnsupportedEmbeddingModelError,
)

Vector = list[float]

BUNDLED_MODEL_NAME = "all-MiniLM-L6-v2"
BUNDLED_MODEL_DIMENSION = 384


@runtime_checkable
class Embedder(Protocol):
    """Text in, fixed-length vectors out."""

    @property
    def model_name(self) -> str: ...

    @property
    def dimension(self) -> int: ...

    def embed_batch(self, texts: Sequence[str]) -> list[Vector]:
        """Embed texts in one model invocation.

        Raises:
            EmbedderUnavailableError: If the model cannot be loaded.
            EmbedError: If inference fails.
        """
        ...


def _default_embedding_function() -> EmbeddingFunction:
    from chromadb.utils.embedding_functions import DefaultEmbeddingFunction

    return DefaultEmbeddingFunction()


class ChromaEmbedder:
    """Embedder backed by a chromadb embedding function, loaded lazily.

    Without an ``embedding_function_factory`` only the bundled model is
    available, so any other name or dimension is rejected up front instead of
    being recorded as the index identity.
    """

    def __init__(
        self,
        model_name: str = BUNDLED_MODEL_NAME,
        dimension: int = BUNDLED_MODEL_DIMENSION,
        embedding_function_factory: Callable[[], EmbeddingFunction] | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if embedding_function_factory is None:
            if model_name != BUNDLED_MODEL_NAME:
                raise UnsupportedEmbeddingModelError(model_name, BUNDLED_MODEL_NAME)
            if dimension != BUNDLED_MODEL_DIMENSION:
                raise DimensionMismatchError(BUNDLED_MODEL_DIMENSION, dimension)
        self._model_name = model_name
        self._dimension = dimension
        self._factory = embedding_function_factory or _default_embedding_function
        self._function: EmbeddingFunction | None = None
        self._load_error: Exception | None = None
        self._lock = threading.Lock()
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed_batch(self, texts: Sequence[str]) -> list[Vector]:
        if not texts:
            return []
        function = self._load()
        try:
            raw = function(list(texts))
        except Exception as e:
            raise EmbedError(f"Embedding inference failed: {e}") from e
        return [[float(value) for value in vector] for vector in raw]

    def _load(self) -> EmbeddingFunction:
        with self._lock:
            if self._function is not None:
                return self._function
            if self._load_error is not None:
                raise EmbedderUnavailableError(f"Embedding model unavailable: {self._load_error}")
            try:
                self._function = self._factory()
            except Exception as e:
                self._load_error = e
                self._logger.warning("embedding_model_unavailable", model=self._model_name, error=str(e))
                raise EmbedderUnavailableError(f"Embedding model unavailable: {e}") from e
            self._logger.info("embedding_model_loaded", model=self._model_name)
            return self._function


class BatchEmbedder:
    """Batches texts through an Embedder and degrades failures to None.

    A failed batch is retried one item at a time so a single bad input only
    costs its own embedding. Once the model reports itself unavailable, the
    remaining items are returned as None without further calls.
    """

    def __init__(
        self,
        embedder: Embedder,
        batch_size: int = 32,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._embedder = embedder
        self._batch_size = batch_size
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def embedder(self) -> Embedder:
        return self._embedder

    @property
    def dimension(self) -> int:
        return self._embedder.dimension

    async def embed(self, texts: Sequence[str]) -> list[Vector | None]:
        """Embed texts in batches; failed items come back as None.

        Raises:
            DimensionMismatchError: If the model returns vectors of the wrong size.
        """
        results: list[Vector | None] = []
        unavailable = False

        for offset in range(0, len(texts), self._batch_size):
            batch = list(texts[offset : offset + self._batch_size])
            if unavailable:
                results.extend([None] * len(batch))
                continue
            try:
                vectors = await asyncio.to_thread(self._embedder.embed_batch, batch)
                self._check_vectors(vectors, len(batch))
                results.extend(vectors)
            except EmbedderUnavailableError:
                unavailable = True
                results.extend([None] * len(batch))
            except EmbedError as e:
                self._logger.warning("embedding_batch_failed", batch_size=len(batch), error=str(e))
                item_results = await self._embed_individually(batch)
                unavailable = item_results is None
                results.extend(item_results if item_results is not None else [None] * len(batch))

        return results

    async def embed_query(self, text: str) -> Vector | None:
        """Embed a single query string, or None if the model cannot."""
        vectors = await self.embed([text])
        return vectors[0] if vectors else None

    async def _embed_individually(self, batch: list[str]) -> list[Vector | None] | None:
        results: list[Vector | None] = []
        for text in batch:
            try:
                vectors = await asyncio.to_thread(self._embedder.embed_batch, [text])
                self._check_vectors(vectors, 1)
                results.append(vectors[0])
            except EmbedderUnavailableError:
                return None
            except EmbedError as e:
                self._logger.warning("embedding_item_failed", text_length=len(text), error=str(e))
                results.append(None)
        return results

    def _check_vectors(self, vectors: list[Vector], expected_count: int) -> None:
        if len(vectors) != expected_count:
            raise EmbedError(f"Embedder returned {len(vectors)} vectors for {expected_count} inputs")
        for vector in vectors:
            if len(vector) != self._embedder.dimension:
                raise DimensionMismatchError(self._embedder.dimension, len(vector))
