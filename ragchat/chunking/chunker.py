"""
Word-Window Chunker
--------------------
Splits each document into overlapping windows of N words.

    words:   w0 w1 w2 ... w299 w300 ... w549 w550 ...
    chunk 0: [w0 ............ w299]
    chunk 1:           [w250 ............ w549]
    chunk 2:                       [w500 ........ end]

The window advances by (size - overlap) words, so a fact that straddles a
boundary still appears whole in at least one chunk.  The final window may be
shorter than `size`; iteration stops as soon as a window reaches the end of
the word list.

Chunk ids are deterministic (doc_<documentIndex>_chunk_<chunkIndex>) so the
same corpus always produces the same index.
"""
from __future__ import annotations

from loguru import logger

from ragchat.errors import ConfigurationError
from ragchat.schemas import Chunk, Document

# ── Constants ─────────────────────────────────────────────────────────────────

CHUNK_SIZE = 300        # Words per window
CHUNK_OVERLAP = 50      # Words shared between consecutive windows


def _check_window(size: int, overlap: int) -> None:
    if size < 1:
        raise ConfigurationError(f"chunk size must be >= 1 (got {size})")
    if overlap < 0:
        raise ConfigurationError(f"chunk overlap must be >= 0 (got {overlap})")
    if overlap >= size:
        raise ConfigurationError(
            f"chunk overlap ({overlap}) must be smaller than chunk size ({size})"
        )


def chunk_text(text: str, size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> list[str]:
    """
    Split `text` on whitespace and return successive word windows.

    Raises:
        ConfigurationError: if size < 1, overlap < 0 or overlap >= size.
    """
    _check_window(size, overlap)

    words = text.split()
    stride = size - overlap
    chunks: list[str] = []

    i = 0
    while i < len(words):
        chunks.append(" ".join(words[i: i + size]))
        if i + size >= len(words):
            break
        i += stride

    return chunks


# ── Main Chunker ──────────────────────────────────────────────────────────────

class WordWindowChunker:
    """
    Turns corpus documents into Chunk records ready for embedding.

    Usage:
        chunker = WordWindowChunker(size=300, overlap=50)
        chunks = chunker.chunk_corpus(documents)
    """

    def __init__(
        self,
        size: int = CHUNK_SIZE,
        overlap: int = CHUNK_OVERLAP,
        source: str = "docs.json",
    ) -> None:
        _check_window(size, overlap)
        self.size = size
        self.overlap = overlap
        self.source = source

    def chunk_document(self, doc: Document, doc_index: int) -> list[Chunk]:
        chunks: list[Chunk] = []
        for chunk_index, text in enumerate(chunk_text(doc.content, self.size, self.overlap)):
            chunk_id = f"doc_{doc_index}_chunk_{chunk_index}"
            chunks.append(
                Chunk(
                    id=chunk_id,
                    document_title=doc.title,
                    document_index=doc_index,
                    chunk_index=chunk_index,
                    content=text,
                    word_count=len(text.split()),
                    metadata={
                        "source": self.source,
                        "title": doc.title,
                        "chunk_id": chunk_id,
                    },
                )
            )
        return chunks

    def chunk_corpus(self, docs: list[Document]) -> list[Chunk]:
        """Chunk every document. Returns a flat list in corpus order."""
        all_chunks: list[Chunk] = []
        for doc_index, doc in enumerate(docs):
            all_chunks.extend(self.chunk_document(doc, doc_index))

        logger.info(
            f"[Chunker] Processed {len(docs)} documents into {len(all_chunks)} chunks "
            f"(size={self.size}, overlap={self.overlap})"
        )
        return all_chunks
