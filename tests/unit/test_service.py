"""Unit tests for RAGService.process_query and the core-facing API."""

import httpx
import pytest

from ragchat.config import ConversationSettings, LLMSettings
from ragchat.conversation.store import ConversationStore
from ragchat.embedding.vector_store import VectorStore
from ragchat.errors import SessionNotFound
from ragchat.generation.gateway import LLMGateway
from ragchat.generation.mock_responses import DEFAULT_RESPONSE, MOCK_RESPONSES
from ragchat.generation.prompts import (
    FALLBACK_RESPONSE,
    NO_CONTEXT_RESPONSE,
    UNEXPECTED_ERROR_RESPONSE,
)
from ragchat.retrieval.retriever import Retriever
from ragchat.serving.service import RAGService
from ragchat.storage.blob_store import MemoryBlobStore
from tests.conftest import openai_ok


@pytest.fixture
def empty_mock_service(keyword_embedder, fake_sleep, clock) -> RAGService:
    """Mock provider over an empty corpus."""
    retriever = Retriever(VectorStore(keyword_embedder.dimensions), keyword_embedder)
    gateway = LLMGateway(LLMSettings(provider="mock", mock_delay_ms=0), sleep=fake_sleep)
    conversations = ConversationStore(ConversationSettings(), MemoryBlobStore(), clock=clock)
    return RAGService(retriever, gateway, conversations)


class TestProcessQuery:
    """Tests for the per-query lifecycle."""

    async def test_relevant_query_calls_llm_with_context(self, make_service) -> None:
        prompts: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            prompts.append(request.read().decode())
            return httpx.Response(200, json=openai_ok("Use Settings > Security.", 30))

        service = make_service(handler)
        reply = await service.process_query(None, "How do I reset my password?")

        assert reply.has_context
        assert reply.retrieved_chunks == 1
        assert reply.reply == "Use Settings > Security."
        assert reply.tokens_used == 30
        assert not reply.fallback and not reply.error
        assert "[Document 1: Password Reset]" in prompts[0]

        history = await service.get_conversation_history(reply.session_id)
        assert [m["role"] for m in history] == ["user", "assistant"]
        stats = await service.get_session_stats(reply.session_id)
        assert stats["total_tokens_used"] == 30

    async def test_no_context_skips_llm(self, make_service) -> None:
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=openai_ok())

        service = make_service(handler)
        reply = await service.process_query(None, "Tell me a joke")

        assert not reply.has_context
        assert reply.tokens_used == 0
        assert reply.reply == NO_CONTEXT_RESPONSE.format(query="Tell me a joke")
        assert calls == []

    async def test_llm_failure_becomes_fallback(self, make_service) -> None:
        service = make_service(lambda request: httpx.Response(500))

        reply = await service.process_query(None, "password help")

        assert reply.fallback
        assert reply.reply == FALLBACK_RESPONSE
        assert not reply.error
        history = await service.get_conversation_history(reply.session_id)
        assert history[-1]["content"] == FALLBACK_RESPONSE

    async def test_session_is_continued(self, make_service) -> None:
        service = make_service(lambda request: httpx.Response(200, json=openai_ok()))

        first = await service.process_query(None, "password")
        second = await service.process_query(first.session_id, "billing")

        assert second.session_id == first.session_id
        assert len(await service.get_conversation_history(first.session_id)) == 4

    async def test_retrieval_failure_returns_error_reply(self, make_service, monkeypatch) -> None:
        service = make_service(lambda request: httpx.Response(200, json=openai_ok()))

        async def broken(query):
            raise RuntimeError("index unavailable")

        monkeypatch.setattr(service.retriever, "retrieve_context", broken)

        reply = await service.process_query(None, "password")

        assert reply.error
        assert reply.reply == UNEXPECTED_ERROR_RESPONSE
        history = await service.get_conversation_history(reply.session_id)
        assert [m["content"] for m in history] == ["password", UNEXPECTED_ERROR_RESPONSE]


class TestEndToEnd:
    """Scenarios over the whole pipeline."""

    async def test_identical_embedding_gives_full_similarity(self, make_service) -> None:
        service = make_service(lambda request: httpx.Response(200, json=openai_ok()))

        reply = await service.process_query(None, "mobile")
        history = await service.conversations.get_session(reply.session_id)

        assert reply.has_context
        assert reply.retrieved_chunks == 1
        scores = history.messages[-1].metadata.similarity_scores
        assert scores == [pytest.approx(1.0)]

    async def test_empty_corpus_mock_greeting(self, empty_mock_service: RAGService) -> None:
        reply = await empty_mock_service.process_query(None, "hello")

        assert not reply.has_context
        assert reply.reply == MOCK_RESPONSES["hello"]

    async def test_mock_unmatched_query_returns_default(self, empty_mock_service) -> None:
        reply = await empty_mock_service.process_query(None, "zzz")

        assert reply.reply == DEFAULT_RESPONSE

    async def test_add_message_after_delete(self, empty_mock_service) -> None:
        reply = await empty_mock_service.process_query(None, "hello")
        assert await empty_mock_service.delete_session(reply.session_id)

        with pytest.raises(SessionNotFound):
            await empty_mock_service.conversations.add_message(reply.session_id, "user", "again")


class TestCoreApi:
    """Tests for the status and configuration surface."""

    async def test_clear_conversation(self, empty_mock_service) -> None:
        reply = await empty_mock_service.process_query(None, "hello")

        cleared = await empty_mock_service.clear_conversation(reply.session_id)

        assert cleared == reply.session_id
        assert await empty_mock_service.get_conversation_history(cleared) == []

    def test_system_status(self, make_service) -> None:
        service = make_service()

        status = service.get_system_status()

        assert status["initialized"]
        assert status["retrieval"]["total_chunks_in_store"] == 3
        assert status["llm"]["provider"] == "openai"
        assert status["conversations"]["total_active_sessions"] == 0
        assert status["index"] is None

    def test_tuning_passthrough(self, make_service) -> None:
        service = make_service()

        service.set_similarity_threshold(0.5)
        service.set_max_retrieved_chunks(5)

        assert service.get_configuration()["similarity_threshold"] == 0.5
        assert service.get_configuration()["max_retrieved_chunks"] == 5
