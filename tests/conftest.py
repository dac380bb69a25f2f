"""Pytest fixtures and shared test configuration.

Provides reusable fixtures for unit and integration tests.

Fixtures:
    - keyword_embedder: deterministic bag-of-keywords embedder
    - support_docs: small support corpus with one topic per document
    - vector_store / retriever: index built from support_docs
    - fake_sleep: records backoff delays instead of sleeping
    - clock: mutable clock for expiry tests
    - make_gateway / make_service: factories wired to httpx.MockTransport
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import httpx
import numpy as np
import pytest

from ragchat.chunking.chunker import WordWindowChunker
from ragchat.config import ConversationSettings, LLMSettings
from ragchat.conversation.store import ConversationStore
from ragchat.embedding.index_builder import build_index
from ragchat.embedding.vector_store import VectorStore
from ragchat.generation.gateway import LLMGateway
from ragchat.retrieval.retriever import Retriever
from ragchat.schemas import Document
from ragchat.serving.service import RAGService
from ragchat.storage.blob_store import MemoryBlobStore

VOCABULARY = ["password", "billing", "mobile", "api"]


class KeywordEmbedder:
    """One dimension per vocabulary word; the value is its occurrence count.

    Texts without any vocabulary word embed to the zero vector and therefore
    score 0 against everything.
    """

    name = "keyword"

    def __init__(self, vocabulary: list[str] = VOCABULARY) -> None:
        self.vocabulary = vocabulary
        self.dimensions = len(vocabulary)

    def _vector(self, text: str) -> np.ndarray:
        words = [w.strip(".,?!:;\"'") for w in text.lower().split()]
        return np.array([words.count(v) for v in self.vocabulary], dtype=np.float32)

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, self.dimensions), dtype=np.float32)
        return np.stack([self._vector(t) for t in texts])

    def embed_query(self, text: str) -> np.ndarray:
        return self._vector(text)


class MutableClock:
    """Callable clock the tests can move forward."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def keyword_embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def support_docs() -> list[Document]:
    return [
        Document(
            title="Password Reset",
            content="Reset your password from Settings > Security. A new password needs 12 characters.",
        ),
        Document(
            title="Billing",
            content="Billing questions: update the card under Settings > Billing.",
        ),
        Document(
            title="Mobile App",
            content="The mobile app runs on iOS and Android.",
        ),
    ]


@pytest.fixture
def chunker() -> WordWindowChunker:
    return WordWindowChunker(size=300, overlap=50)


@pytest.fixture
def vector_store(support_docs, chunker, keyword_embedder) -> VectorStore:
    return build_index(support_docs, chunker, keyword_embedder)


@pytest.fixture
def retriever(vector_store, keyword_embedder) -> Retriever:
    return Retriever(vector_store, keyword_embedder)


@pytest.fixture
def fake_sleep() -> Callable:
    """Async sleep that records the requested delays and returns at once."""
    calls: list[float] = []

    async def _sleep(seconds: float) -> None:
        calls.append(seconds)

    _sleep.calls = calls
    return _sleep


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))


def openai_ok(content: str = "Go to Settings > Security.", total_tokens: int = 42) -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"total_tokens": total_tokens},
    }


@pytest.fixture
def make_gateway(fake_sleep) -> Callable[..., LLMGateway]:
    """Build an LLMGateway whose HTTP calls go to `handler`."""

    def _make(handler: Callable[[httpx.Request], httpx.Response] | None = None, **overrides) -> LLMGateway:
        params = {
            "provider": "openai",
            "api_keys": {"openai": "sk-test"},
            "mock_delay_ms": 0,
        }
        params.update(overrides)
        transport = httpx.MockTransport(handler) if handler else None
        return LLMGateway(LLMSettings(**params), transport=transport, sleep=fake_sleep)

    return _make


@pytest.fixture
def make_service(retriever, make_gateway, clock) -> Callable[..., RAGService]:
    """Build a RAGService over the support corpus with an in-memory session store."""

    def _make(handler=None, **llm_overrides) -> RAGService:
        gateway = make_gateway(handler, **llm_overrides)
        conversations = ConversationStore(
            ConversationSettings(), MemoryBlobStore(), clock=clock
        )
        return RAGService(retriever, gateway, conversations)

    return _make
