"""Shared fakes for the test suite."""

import hashlib
import math
from collections.abc import Sequence

import pytest


class FakeEmbedder:
    """Deterministic bag-of-words embedder.

    Each lowercase word is hashed into one of ``dimension`` buckets and the
    vector is L2-normalized, so texts sharing words land close together.
    """

    def __init__(self, dimension: int = 8, model_name: str = "fake-embedder") -> None:
        self._dimension = dimension
        self._model_name = model_name
        self.calls: list[list[str]] = []

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self.vector(text) for text in texts]

    @property
    def embedded_texts(self) -> list[str]:
        return [text for call in self.calls for text in call]

    def vector(self, text: str) -> list[float]:
        values = [0.0] * self._dimension
        for word in text.lower().split():
            bucket = int(hashlib.sha256(word.encode()).hexdigest(), 16) % self._dimension
            values[bucket] += 1.0
        if not any(values):
            values[0] = 1.0
        norm = math.sqrt(sum(value * value for value in values))
        return [value / norm for value in values]


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()
