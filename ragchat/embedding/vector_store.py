"""
In-Memory Vector Store
-----------------------
Holds the corpus index as parallel structures:
  - a list of VectorEntry (Chunk + its embedding), in insertion order
  - a float32 matrix with one row per entry, used for the similarity scan

`VectorStore.search()` is an exact brute-force cosine scan, O(N * D).  At the
corpus sizes this service targets that is a few milliseconds.
`FaissVectorStore` offers the same `search()` contract on top of
faiss.IndexFlatIP (inner product == cosine similarity after L2
normalisation) and can be swapped in without touching the retriever.

Both return (entry, score) pairs sorted by score descending; equal scores
keep insertion order so results are deterministic.

The store is read-only after the index build and needs no locking.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import faiss
import numpy as np
from loguru import logger

from ragchat.errors import DimensionMismatch
from ragchat.schemas import Chunk


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """
    Cosine of the angle between two vectors, in [-1, 1].

    Returns 0.0 when either vector has zero norm.

    Raises:
        DimensionMismatch: if the vectors differ in length.
    """
    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()
    if va.shape[0] != vb.shape[0]:
        raise DimensionMismatch(va.shape[0], vb.shape[0])

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    return float(np.clip(np.dot(va, vb) / (norm_a * norm_b), -1.0, 1.0))


@dataclass(frozen=True)
class VectorEntry:
    """One indexed chunk together with its embedding."""

    chunk: Chunk
    embedding: np.ndarray

    @property
    def id(self) -> str:
        return self.chunk.id


class VectorStore:
    """
    Exact nearest-neighbour search by cosine similarity.

    Add entries via add(), then call search() as many times as you like.
    """

    backend = "numpy"

    def __init__(self, dimensions: int = 1536) -> None:
        self.dimensions = dimensions
        self.entries: list[VectorEntry] = []
        self._matrix = np.empty((0, dimensions), dtype=np.float32)
        self._norms = np.empty((0,), dtype=np.float32)

    # --- Build ----------------------------------------------------------------

    def add(self, chunks: Sequence[Chunk], embeddings: np.ndarray) -> None:
        """
        Append chunks and their pre-computed embeddings.

        Args:
            chunks: Chunk objects, in the order they should rank on ties.
            embeddings: Float array of shape (len(chunks), dimensions).
        """
        embeddings = np.asarray(embeddings, dtype=np.float32)
        if embeddings.ndim == 1 and len(chunks) == 0:
            embeddings = embeddings.reshape(0, self.dimensions)
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"Mismatch: {len(chunks)} chunks vs {len(embeddings)} embeddings"
            )
        if len(chunks) and embeddings.shape[1] != self.dimensions:
            raise DimensionMismatch(self.dimensions, embeddings.shape[1])

        self.entries.extend(
            VectorEntry(chunk=c, embedding=embeddings[i]) for i, c in enumerate(chunks)
        )
        self._matrix = np.vstack([self._matrix, embeddings])
        self._norms = np.linalg.norm(self._matrix, axis=1)
        self._on_add(embeddings)

        logger.debug(f"[VectorStore] {len(self.entries)} entries ({self.backend})")

    def _on_add(self, embeddings: np.ndarray) -> None:
        """Hook for indexed subclasses."""

    # --- Search ---------------------------------------------------------------

    def _check_query(self, query_embedding: Sequence[float] | np.ndarray) -> np.ndarray:
        q = np.asarray(query_embedding, dtype=np.float32).ravel()
        if q.shape[0] != self.dimensions:
            raise DimensionMismatch(q.shape[0], self.dimensions)
        return q

    def search(self, query_embedding: Sequence[float] | np.ndarray) -> list[tuple[VectorEntry, float]]:
        """
        Score every entry against the query.

        Returns: List of (VectorEntry, cosine_score) sorted descending,
        ties in insertion order.
        """
        q = self._check_query(query_embedding)
        if not self.entries:
            return []

        q_norm = float(np.linalg.norm(q))
        if q_norm == 0.0:
            scores = np.zeros(len(self.entries), dtype=np.float64)
        else:
            dots = self._matrix.astype(np.float64) @ q.astype(np.float64)
            denom = self._norms.astype(np.float64) * q_norm
            with np.errstate(divide="ignore", invalid="ignore"):
                scores = np.where(denom > 0, dots / denom, 0.0)
            scores = np.clip(scores, -1.0, 1.0)

        order = np.argsort(-scores, kind="stable")
        return [(self.entries[i], float(scores[i])) for i in order]

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_built(self) -> bool:
        return len(self.entries) > 0


class FaissVectorStore(VectorStore):
    """
    Same contract as VectorStore, backed by faiss.IndexFlatIP.

    Rows are L2-normalised before insertion so inner product == cosine.
    Zero vectors stay zero and therefore score 0 against everything.
    """

    backend = "faiss"

    def __init__(self, dimensions: int = 1536) -> None:
        super().__init__(dimensions)
        self.faiss_index = faiss.IndexFlatIP(dimensions)

    @staticmethod
    def _normalise(matrix: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms = np.where(norms == 0, 1, norms)  # avoid div-by-zero
        return np.ascontiguousarray(matrix / norms, dtype=np.float32)

    def _on_add(self, embeddings: np.ndarray) -> None:
        if len(embeddings):
            self.faiss_index.add(self._normalise(embeddings))

    def search(self, query_embedding: Sequence[float] | np.ndarray) -> list[tuple[VectorEntry, float]]:
        q = self._check_query(query_embedding)
        if not self.entries:
            return []

        qv = self._normalise(q.reshape(1, -1))
        scores, indices = self.faiss_index.search(qv, self.faiss_index.ntotal)

        hits = [
            (int(idx), float(np.clip(score, -1.0, 1.0)))
            for score, idx in zip(scores[0], indices[0])
            if idx >= 0
        ]
        # faiss does not guarantee tie order; restore insertion order on ties
        hits.sort(key=lambda h: (-h[1], h[0]))
        return [(self.entries[i], s) for i, s in hits]


def make_vector_store(backend: str, dimensions: int) -> VectorStore:
    if backend == "faiss":
        return FaissVectorStore(dimensions)
    return VectorStore(dimensions)
