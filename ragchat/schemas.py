"""
Core Pydantic schemas for the support chat service.

Documents and chunks describe the fixed corpus; sessions and messages are the
conversation state owned by the ConversationStore and persisted as JSON.
"""
from __future__ import annotations

import hashlib
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


# --- Corpus -------------------------------------------------------------------

class Document(BaseModel):
    """A raw source document from the corpus file. Read-only to the core."""

    model_config = ConfigDict(frozen=True)

    title: str
    content: str

    @computed_field
    @property
    def checksum(self) -> str:
        """SHA-256 of title + content - used to detect a stale index."""
        return hashlib.sha256(f"{self.title}\n{self.content}".encode("utf-8")).hexdigest()

    @computed_field
    @property
    def word_count(self) -> int:
        return len(self.content.split())


class Chunk(BaseModel):
    """
    A contiguous word window of a Document.

    The id is deterministic (doc_<documentIndex>_chunk_<chunkIndex>) so a
    rebuilt index produces the same ids for the same corpus.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    document_title: str
    document_index: int
    chunk_index: int
    content: str
    word_count: int
    metadata: dict[str, Any] = Field(default_factory=dict)


# --- Conversation -------------------------------------------------------------

class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageMetadata(BaseModel):
    """Per-message bookkeeping; unknown keys are kept as-is."""

    model_config = ConfigDict(extra="allow")

    tokens_used: int = 0
    model: str = ""
    retrieved_chunks: int = 0
    similarity_scores: list[float] = Field(default_factory=list)


class Message(BaseModel):
    id: str
    role: Role
    content: str
    timestamp: datetime
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)


class Session(BaseModel):
    """
    Server-side conversation state keyed by an unguessable id.

    message_count counts every message added since creation (or the last
    clear); it is not reduced when old messages are trimmed.
    """

    id: str
    created_at: datetime
    last_activity: datetime
    messages: list[Message] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    message_count: int = 0
