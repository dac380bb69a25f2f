"""
Placeholder Embedders
----------------------
The service only needs *some* fixed-dimension vector per text.  Two stand-ins
are provided behind the same interface a real embedding client would expose:

  RandomEmbedder -- uniform values in [-1, 1], a fresh vector per call.
                    Retrieval quality is meaningless but the pipeline is
                    fully exercised.
  HashEmbedder   -- uniform values in [-1, 1] drawn from a generator seeded
                    by the SHA-256 of the normalised text, so identical texts
                    always map to identical vectors (reproducible demos/tests).

Any real model can be substituted by implementing `Embedder`.  The retriever
also accepts an `embed_query` that returns an awaitable.
"""
from __future__ import annotations

import hashlib
from typing import Protocol, runtime_checkable

import numpy as np
from langsmith import traceable
from loguru import logger

from ragchat.errors import ConfigurationError

DIMENSIONS = 1536          # Matches OpenAI text-embedding-3-small / ada-002


@runtime_checkable
class Embedder(Protocol):
    """Anything that turns text into fixed-length float vectors."""

    name: str
    dimensions: int

    def embed_texts(self, texts: list[str]) -> np.ndarray: ...

    def embed_query(self, text: str) -> np.ndarray: ...


class _BaseEmbedder:
    name = "base"

    def __init__(self, dimensions: int = DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.total_texts_embedded: int = 0
        self.total_calls: int = 0

    def _vector(self, text: str) -> np.ndarray:
        raise NotImplementedError

    @traceable(name="embed_texts", run_type="embedding")
    def embed_texts(self, texts: list[str]) -> np.ndarray:
        """Embed a list of strings and return an (N, dimensions) float32 array."""
        if not texts:
            return np.empty((0, self.dimensions), dtype=np.float32)

        matrix = np.stack([self._vector(t) for t in texts]).astype(np.float32)
        self.total_texts_embedded += len(texts)
        self.total_calls += 1
        logger.debug(f"[{type(self).__name__}] Embedded {len(texts)} texts")
        return matrix

    def embed_query(self, text: str) -> np.ndarray:
        """Embed a single query string. Returns shape (dimensions,) float32 array."""
        return self.embed_texts([text])[0]

    def usage_summary(self) -> dict:
        return {
            "embedder": self.name,
            "dimensions": self.dimensions,
            "total_calls": self.total_calls,
            "total_texts_embedded": self.total_texts_embedded,
        }


class RandomEmbedder(_BaseEmbedder):
    """Pseudo-random vectors; a stand-in for a real embedding API call."""

    name = "random"

    def __init__(self, dimensions: int = DIMENSIONS, seed: int | None = None) -> None:
        super().__init__(dimensions)
        self._rng = np.random.default_rng(seed)

    def _vector(self, text: str) -> np.ndarray:
        return self._rng.uniform(-1.0, 1.0, self.dimensions)


class HashEmbedder(_BaseEmbedder):
    """Deterministic pseudo-random vectors keyed by the text content."""

    name = "hash"

    def _vector(self, text: str) -> np.ndarray:
        normalised = " ".join(text.lower().split())
        seed = int.from_bytes(hashlib.sha256(normalised.encode("utf-8")).digest()[:8], "big")
        return np.random.default_rng(seed).uniform(-1.0, 1.0, self.dimensions)


def make_embedder(kind: str, dimensions: int = DIMENSIONS, seed: int | None = None) -> Embedder:
    """Instantiate the embedder named in the settings."""
    if kind == "random":
        return RandomEmbedder(dimensions=dimensions, seed=seed)
    if kind == "hash":
        return HashEmbedder(dimensions=dimensions)
    raise ConfigurationError(f"Unknown embedder kind: {kind!r}")
