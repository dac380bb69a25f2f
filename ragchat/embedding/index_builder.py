"""
Index Build - Load, Chunk, Embed, Persist
-------------------------------------------
Reads the corpus (a JSON list of {title, content} records), chunks it with
WordWindowChunker, embeds every chunk and fills a VectorStore.

The finished index is persisted through a BlobStore as:

    {
      "chunks":   {chunk_id: {...chunk fields, "embedding": [...]}},
      "metadata": {totalDocuments, totalChunks, embeddingDimensions,
                   corpusChecksum, embedder, chunkSize, chunkOverlap, createdAt}
    }

On startup `load_or_build_index()` reuses the persisted index unless it is
missing or stale (different corpus checksum, embedder, dimensions or chunk
window), in which case the whole index is rebuilt.  There is no partial
update path.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import orjson
from loguru import logger
from pydantic import ValidationError

from ragchat.chunking.chunker import WordWindowChunker
from ragchat.embedding.embedder import Embedder
from ragchat.embedding.vector_store import VectorStore, make_vector_store
from ragchat.errors import CorpusError
from ragchat.schemas import Chunk, Document
from ragchat.storage.blob_store import BlobStore
from ragchat.utils.helpers import isoformat, sha256_hex, utc_now


@dataclass
class IndexStats:
    """Summary of the loaded index, reported by the status endpoint."""

    total_documents: int
    total_chunks: int
    average_chunk_size: int
    embedding_dimensions: int
    rebuilt: bool = False

    def to_dict(self) -> dict:
        return {
            "total_documents": self.total_documents,
            "total_chunks": self.total_chunks,
            "average_chunk_size": self.average_chunk_size,
            "embedding_dimensions": self.embedding_dimensions,
            "rebuilt": self.rebuilt,
        }


# --- Corpus -------------------------------------------------------------------

def load_documents(corpus_path: str | Path) -> list[Document]:
    """
    Load and validate the corpus file.

    Raises:
        CorpusError: file missing, not a JSON list, or a record lacks
            `title`/`content`.  Schema errors are fatal to the index build.
    """
    p = Path(corpus_path)
    if not p.exists():
        raise CorpusError(f"Corpus file not found: {p}")

    try:
        raw = orjson.loads(p.read_bytes())
    except orjson.JSONDecodeError as exc:
        raise CorpusError(f"Corpus file {p} is not valid JSON: {exc}") from exc

    if not isinstance(raw, list):
        raise CorpusError(f"Corpus file {p} must contain a JSON list of documents")

    docs: list[Document] = []
    for i, record in enumerate(raw):
        try:
            docs.append(Document.model_validate(record))
        except ValidationError as exc:
            raise CorpusError(f"Document #{i} in {p} is invalid: {exc}") from exc

    logger.info(f"[IndexBuilder] Loaded {len(docs)} documents from {p}")
    return docs


def corpus_checksum(docs: list[Document]) -> str:
    return sha256_hex(*(d.checksum for d in docs))


# --- Build --------------------------------------------------------------------

def build_index(
    docs: list[Document],
    chunker: WordWindowChunker,
    embedder: Embedder,
    backend: str = "numpy",
) -> VectorStore:
    """Chunk + embed the whole corpus into a fresh VectorStore."""
    chunks = chunker.chunk_corpus(docs)
    embeddings = embedder.embed_texts([c.content for c in chunks])
    store = make_vector_store(backend, embedder.dimensions)
    store.add(chunks, embeddings)
    logger.info(f"[IndexBuilder] Generated embeddings for {len(chunks)} chunks")
    return store


def index_to_blob(
    store: VectorStore,
    docs: list[Document],
    chunker: WordWindowChunker,
    embedder: Embedder,
) -> dict:
    chunks = {}
    for entry in store.entries:
        record = entry.chunk.model_dump(mode="json")
        record["embedding"] = entry.embedding.astype(float).tolist()
        chunks[entry.id] = record

    return {
        "chunks": chunks,
        "metadata": {
            "totalDocuments": len(docs),
            "totalChunks": len(store),
            "embeddingDimensions": store.dimensions,
            "corpusChecksum": corpus_checksum(docs),
            "embedder": embedder.name,
            "chunkSize": chunker.size,
            "chunkOverlap": chunker.overlap,
            "createdAt": isoformat(utc_now()),
        },
    }


def store_from_blob(blob: dict, backend: str = "numpy") -> VectorStore:
    meta = blob.get("metadata", {})
    dimensions = int(meta["embeddingDimensions"])
    chunks: list[Chunk] = []
    vectors: list[list[float]] = []
    for record in blob.get("chunks", {}).values():
        record = dict(record)
        vectors.append(record.pop("embedding"))
        chunks.append(Chunk.model_validate(record))

    store = make_vector_store(backend, dimensions)
    matrix = np.asarray(vectors, dtype=np.float32).reshape(len(chunks), dimensions)
    store.add(chunks, matrix)
    return store


def _stale_reason(
    meta: dict,
    docs: list[Document] | None,
    chunker: WordWindowChunker,
    embedder: Embedder,
) -> str | None:
    if meta.get("embeddingDimensions") != embedder.dimensions:
        return "embedding dimensions changed"
    if meta.get("embedder") != embedder.name:
        return "embedder changed"
    if (meta.get("chunkSize"), meta.get("chunkOverlap")) != (chunker.size, chunker.overlap):
        return "chunk window changed"
    if docs is not None and meta.get("corpusChecksum") != corpus_checksum(docs):
        return "corpus changed"
    return None


def load_or_build_index(
    corpus_path: str | Path,
    index_store: BlobStore,
    chunker: WordWindowChunker,
    embedder: Embedder,
    backend: str = "numpy",
    force: bool = False,
) -> tuple[VectorStore, IndexStats]:
    """
    Return a ready VectorStore, rebuilding and persisting it when needed.

    If the corpus file is gone but a persisted index exists, the index is
    used as-is (staleness cannot be checked).
    """
    docs: list[Document] | None = None
    if Path(corpus_path).exists():
        docs = load_documents(corpus_path)

    blob = None if force else index_store.load()
    if blob is not None:
        reason = _stale_reason(blob.get("metadata", {}), docs, chunker, embedder)
        if reason is None:
            store = store_from_blob(blob, backend)
            meta = blob["metadata"]
            logger.info(f"[IndexBuilder] Loaded vector store with {len(store)} embeddings")
            return store, _stats(store, int(meta.get("totalDocuments", 0)), rebuilt=False)
        logger.warning(f"[IndexBuilder] Persisted index is stale ({reason}), rebuilding")
    elif not force:
        logger.warning("[IndexBuilder] Vector store not found, creating new one...")

    if docs is None:
        raise CorpusError(f"Corpus file not found: {corpus_path}")

    store = build_index(docs, chunker, embedder, backend)
    index_store.save(index_to_blob(store, docs, chunker, embedder))
    logger.info(f"[IndexBuilder] Saved vector store -> {index_store!r}")
    return store, _stats(store, len(docs), rebuilt=True)


def _stats(store: VectorStore, total_documents: int, rebuilt: bool) -> IndexStats:
    words = [e.chunk.word_count for e in store.entries]
    return IndexStats(
        total_documents=total_documents,
        total_chunks=len(store),
        average_chunk_size=round(sum(words) / len(words)) if words else 0,
        embedding_dimensions=store.dimensions,
        rebuilt=rebuilt,
    )
