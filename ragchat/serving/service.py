"""
RAG Chat Service
-----------------
Orchestrates the full per-query lifecycle:

    session id (optional) + user query
        |
        v
    ConversationStore.get_or_create_session -> add user message
        |
        v
    Retriever.retrieve_context (embed + cosine scan + threshold/cap)
        |
        +-- context found ----> construct_prompt -> LLMGateway.call_with_fallback
        |
        +-- no context -------> mock keyword reply (mock provider) or the fixed
        |                       "not enough information" text; no LLM call
        v
    add assistant message -> ChatReply

The no-context branch never spends LLM budget on questions the corpus cannot
support.  LLM failures are already masked by call_with_fallback(); retrieval
or session failures are caught here and turned into a generic error reply.

RAGService is the one object the HTTP layer and the CLI talk to.  It is
built once at startup by build_service() and holds all mutable state.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from langsmith import traceable
from loguru import logger

from ragchat.chunking.chunker import WordWindowChunker
from ragchat.config import Settings
from ragchat.conversation.store import ConversationStore
from ragchat.embedding.embedder import make_embedder
from ragchat.embedding.index_builder import IndexStats, load_or_build_index
from ragchat.errors import RAGChatError, SessionNotFound
from ragchat.generation.gateway import LLMGateway
from ragchat.generation.mock_responses import generate_mock_response
from ragchat.generation.prompt_builder import construct_prompt
from ragchat.generation.prompts import (
    HISTORY_WINDOW,
    NO_CONTEXT_RESPONSE,
    UNEXPECTED_ERROR_RESPONSE,
)
from ragchat.retrieval.retriever import RetrievalResult, Retriever
from ragchat.storage.blob_store import JsonFileStore
from ragchat.utils.helpers import isoformat, truncate_text, utc_now


# ---------------------------------------------------------------------------
# Result schema
# ---------------------------------------------------------------------------

@dataclass
class ChatReply:
    """
    Everything the caller needs to render one assistant turn.

    fallback is True when the LLM failed and the apologetic text was used;
    error is True when retrieval or session handling failed.
    """

    reply: str
    session_id: str
    tokens_used: int
    retrieved_chunks: int
    processing_time_ms: int
    has_context: bool
    timestamp: str
    fallback: bool = False
    quota_exceeded: bool = False
    error: bool = False

    def to_dict(self) -> dict:
        return {
            "reply": self.reply,
            "session_id": self.session_id,
            "tokens_used": self.tokens_used,
            "retrieved_chunks": self.retrieved_chunks,
            "processing_time_ms": self.processing_time_ms,
            "has_context": self.has_context,
            "timestamp": self.timestamp,
            "fallback": self.fallback,
            "quota_exceeded": self.quota_exceeded,
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class RAGService:
    """
    End-to-end chat service over a fixed corpus.

    Usage:
        service = build_service(load_settings())
        await service.start()
        reply = await service.process_query(None, "How do I enable 2FA?")
        print(reply.reply, reply.session_id)
        await service.stop()
    """

    def __init__(
        self,
        retriever: Retriever,
        gateway: LLMGateway,
        conversations: ConversationStore,
        index_stats: Optional[IndexStats] = None,
    ) -> None:
        self.retriever = retriever
        self.gateway = gateway
        self.conversations = conversations
        self.index_stats = index_stats
        self.started_at = utc_now()
        logger.info(
            f"[RAGService] Ready | {len(retriever.store)} chunks | "
            f"provider={gateway.provider_name} model={gateway.current_model}"
        )

    # --- Lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        await self.conversations.start()

    async def stop(self) -> None:
        await self.conversations.stop()
        await self.gateway.aclose()

    async def check_llm_connection(self) -> Optional[dict]:
        """Send one test prompt to the configured provider. Skipped for mock or without a key."""
        if self.gateway.is_mock or not self.gateway.current_api_key:
            return None
        result = await self.gateway.test_connection()
        if result["success"]:
            logger.info(f"[RAGService] LLM connection test passed ({self.gateway.provider_name})")
        else:
            logger.warning(f"[RAGService] LLM connection test failed: {result['message']}")
        return result

    # --- Query ----------------------------------------------------------------

    def _no_context_reply(self, query: str) -> str:
        if self.gateway.is_mock:
            logger.info("[RAGService] Using mock response for general query")
            return generate_mock_response(query)
        logger.info("[RAGService] No relevant context found, using fixed response")
        return NO_CONTEXT_RESPONSE.format(query=query)

    @traceable(name="process_query", run_type="chain")
    async def process_query(
        self,
        session_id: Optional[str],
        query: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ChatReply:
        """
        Answer one user query within a session.

        Steps:
            1. Resolve (or create) the session
            2. Append the user message
            3. Build the recent history view
            4. Retrieve context
            5/6. LLM call with fallback, or the no-context reply
            7. Append the assistant message and return a ChatReply

        Args:
            session_id: Existing session id, or None to start a new one.
            query:      The raw question from the user.
            metadata:   Stored on a newly created session (user agent, ip...).
        """
        start = time.perf_counter()
        logger.info(f"[RAGService] Processing query: {truncate_text(query)!r}")

        active_id = await self.conversations.get_or_create_session(session_id, metadata)
        retrieval: Optional[RetrievalResult] = None

        try:
            await self.conversations.add_message(active_id, "user", query)
            history = (await self.conversations.get_formatted_history(active_id))[-HISTORY_WINDOW:]

            retrieval = await self.retriever.retrieve_context(query)

            if retrieval.has_context:
                prompt = construct_prompt(query, retrieval.context, history)
                llm = await self.gateway.call_with_fallback(prompt)
                reply_text, tokens = llm.content, llm.tokens_used
                fallback, quota = llm.fallback, llm.quota_exceeded
                reply_meta = {
                    "tokens_used": tokens,
                    "model": llm.model,
                    "provider": llm.provider,
                    "retrieved_chunks": retrieval.retrieved_chunks,
                    "similarity_scores": retrieval.similarity_scores,
                    "fallback": fallback,
                }
                logger.info(f"[RAGService] LLM response generated ({tokens} tokens)")
            else:
                reply_text, tokens = self._no_context_reply(query), 0
                fallback = quota = False
                reply_meta = {"tokens_used": 0, "retrieved_chunks": 0}

            await self.conversations.add_message(active_id, "assistant", reply_text, reply_meta)

        except RAGChatError as exc:
            return await self._error_reply(active_id, exc, retrieval, start)
        except Exception as exc:
            logger.exception(f"[RAGService] Unexpected failure: {exc}")
            return await self._error_reply(active_id, exc, retrieval, start)

        processing_ms = round((time.perf_counter() - start) * 1000)
        logger.info(f"[RAGService] Chat request completed in {processing_ms}ms")

        return ChatReply(
            reply=reply_text,
            session_id=active_id,
            tokens_used=tokens,
            retrieved_chunks=retrieval.retrieved_chunks,
            processing_time_ms=processing_ms,
            has_context=retrieval.has_context,
            timestamp=isoformat(utc_now()),
            fallback=fallback,
            quota_exceeded=quota,
        )

    async def _error_reply(
        self,
        session_id: str,
        exc: BaseException,
        retrieval: Optional[RetrievalResult],
        start: float,
    ) -> ChatReply:
        """Record the error text as the assistant turn when the session still exists."""
        logger.error(f"[RAGService] Chat request failed: {exc}")
        try:
            await self.conversations.add_message(
                session_id, "assistant", UNEXPECTED_ERROR_RESPONSE, {"error": True}
            )
        except SessionNotFound:
            logger.warning(f"[RAGService] Session {session_id} gone, error reply not stored")

        return ChatReply(
            reply=UNEXPECTED_ERROR_RESPONSE,
            session_id=session_id,
            tokens_used=0,
            retrieved_chunks=retrieval.retrieved_chunks if retrieval else 0,
            processing_time_ms=round((time.perf_counter() - start) * 1000),
            has_context=retrieval.has_context if retrieval else False,
            timestamp=isoformat(utc_now()),
            error=True,
        )

    # --- Core-facing API ------------------------------------------------------

    async def get_session_stats(self, session_id: str) -> Optional[dict]:
        return await self.conversations.get_session_stats(session_id)

    async def get_conversation_history(
        self, session_id: str, limit: Optional[int] = None
    ) -> list[dict]:
        return await self.conversations.get_conversation_history(session_id, limit)

    async def clear_conversation(self, session_id: str) -> str:
        session = await self.conversations.clear_conversation(session_id)
        return session.id

    async def delete_session(self, session_id: str) -> bool:
        return await self.conversations.delete_session(session_id)

    def get_configuration(self) -> dict:
        return self.retriever.get_configuration()

    def set_similarity_threshold(self, threshold: float) -> None:
        self.retriever.set_similarity_threshold(threshold)

    def set_max_retrieved_chunks(self, max_chunks: int) -> None:
        self.retriever.set_max_retrieved_chunks(max_chunks)

    def get_usage_stats(self) -> dict:
        return self.gateway.get_usage_stats()

    def get_system_status(self) -> dict:
        return {
            "initialized": True,
            "started_at": isoformat(self.started_at),
            "retrieval": self.get_configuration(),
            "llm": self.get_usage_stats(),
            "conversations": self.conversations.get_system_stats(),
            "index": self.index_stats.to_dict() if self.index_stats else None,
            "timestamp": isoformat(utc_now()),
        }


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def build_service(settings: Settings, force_rebuild: bool = False) -> RAGService:
    """
    Wire every component from settings: load or build the index, load
    persisted sessions and configure the LLM gateway.
    """
    chunker = WordWindowChunker(
        size=settings.chunking.chunk_size,
        overlap=settings.chunking.chunk_overlap,
        source=Path(settings.storage.corpus_file).name,
    )
    embedder = make_embedder(
        settings.embedding.kind,
        dimensions=settings.embedding.dimensions,
        seed=settings.embedding.seed,
    )
    store, stats = load_or_build_index(
        corpus_path=settings.storage.corpus_file,
        index_store=JsonFileStore(settings.storage.index_file),
        chunker=chunker,
        embedder=embedder,
        backend=settings.retrieval.backend,
        force=force_rebuild,
    )
    retriever = Retriever(
        store=store,
        embedder=embedder,
        similarity_threshold=settings.retrieval.similarity_threshold,
        max_retrieved_chunks=settings.retrieval.max_retrieved_chunks,
    )

    conversations = ConversationStore(
        settings.conversation, JsonFileStore(settings.storage.sessions_file)
    )
    conversations.load()

    gateway = LLMGateway(settings.llm)
    if not gateway.is_mock and not gateway.current_api_key:
        logger.warning(
            f"[RAGService] No API key for provider '{gateway.provider_name}' - "
            "system will use fallback responses"
        )

    return RAGService(retriever, gateway, conversations, index_stats=stats)
