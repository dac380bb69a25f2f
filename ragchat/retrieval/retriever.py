"""
Similarity Retriever
---------------------
Embeds the user query, scans the VectorStore and keeps the chunks whose
cosine similarity clears the threshold, best first, up to a cap.

The retriever only reports: when nothing clears the threshold it returns
has_context=False and leaves the decision of what to answer to the caller.

The retriever is stateless per query -- call retrieve_context() as many
times as you like from the same instance.  Threshold and cap are mutable at
runtime through the validated setters.
"""
from __future__ import annotations

import inspect
from dataclasses import dataclass, field

import numpy as np
from langsmith import traceable
from loguru import logger

from ragchat.embedding.embedder import Embedder
from ragchat.embedding.vector_store import VectorStore
from ragchat.errors import OutOfRange
from ragchat.utils.helpers import truncate_text

SIMILARITY_THRESHOLD = 0.7
MAX_RETRIEVED_CHUNKS = 3
MAX_CHUNKS_LIMIT = 10

NO_CONTEXT_MESSAGE = "I don't have enough information to answer this question."


@dataclass(frozen=True)
class ContextEntry:
    """One retrieved chunk, ranked. `order` is 1-based."""

    id: str
    title: str
    content: str
    similarity: float
    order: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "similarity": self.similarity,
            "order": self.order,
        }


@dataclass
class RetrievalResult:
    has_context: bool
    context: list[ContextEntry] = field(default_factory=list)
    message: str = ""
    similarity_scores: list[float] = field(default_factory=list)

    @property
    def retrieved_chunks(self) -> int:
        return len(self.context)


class Retriever:
    """
    Wraps VectorStore.search() with query embedding, thresholding and a cap.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        max_retrieved_chunks: int = MAX_RETRIEVED_CHUNKS,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.similarity_threshold = SIMILARITY_THRESHOLD
        self.max_retrieved_chunks = MAX_RETRIEVED_CHUNKS
        self.set_similarity_threshold(similarity_threshold)
        self.set_max_retrieved_chunks(max_retrieved_chunks)

    # --- Configuration --------------------------------------------------------

    def set_similarity_threshold(self, threshold: float) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise OutOfRange(f"Threshold must be between 0 and 1 (got {threshold})")
        self.similarity_threshold = float(threshold)
        logger.info(f"[Retriever] Similarity threshold set to {threshold}")

    def set_max_retrieved_chunks(self, max_chunks: int) -> None:
        if not 1 <= max_chunks <= MAX_CHUNKS_LIMIT:
            raise OutOfRange(
                f"Max chunks must be between 1 and {MAX_CHUNKS_LIMIT} (got {max_chunks})"
            )
        self.max_retrieved_chunks = int(max_chunks)
        logger.info(f"[Retriever] Max retrieved chunks set to {max_chunks}")

    def get_configuration(self) -> dict:
        return {
            "similarity_threshold": self.similarity_threshold,
            "max_retrieved_chunks": self.max_retrieved_chunks,
            "total_chunks_in_store": len(self.store),
            "embedding_dimensions": self.store.dimensions,
        }

    # --- Retrieval ------------------------------------------------------------

    async def _embed(self, query: str) -> np.ndarray:
        vector = self.embedder.embed_query(query)
        if inspect.isawaitable(vector):
            vector = await vector
        return vector

    @traceable(name="retrieve_context", run_type="retriever")
    async def retrieve_context(self, query: str) -> RetrievalResult:
        """
        Embed the query and return the ranked chunks above the threshold.

        Args:
            query: Raw user query string.

        Returns:
            RetrievalResult; has_context is False when nothing qualifies.
        """
        logger.debug(f"[Retriever] Query: {truncate_text(query, 80)!r}")

        query_vec = await self._embed(query)
        ranked = self.store.search(query_vec)

        relevant = [
            (entry, score) for entry, score in ranked if score >= self.similarity_threshold
        ][: self.max_retrieved_chunks]

        logger.info(
            f"[Retriever] Found {len(relevant)} relevant chunks "
            f"(threshold: {self.similarity_threshold})"
        )

        if not relevant:
            return RetrievalResult(has_context=False, message=NO_CONTEXT_MESSAGE)

        context = [
            ContextEntry(
                id=entry.id,
                title=entry.chunk.document_title,
                content=entry.chunk.content,
                similarity=score,
                order=rank,
            )
            for rank, (entry, score) in enumerate(relevant, start=1)
        ]
        return RetrievalResult(
            has_context=True,
            context=context,
            message=f"Found {len(context)} relevant documents.",
            similarity_scores=[c.similarity for c in context],
        )
