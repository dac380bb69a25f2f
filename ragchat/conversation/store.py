"""
Conversation Store
-------------------
Owns every chat session: creation, bounded message history, idle expiry and
persistence.

    - Session ids are 128-bit random hex strings (secrets.token_hex).
    - A session expires when now - last_activity > session_timeout.  Expired
      sessions are dropped lazily on lookup and by a periodic sweep task.
    - add_message() trims the oldest messages beyond max_history_length
      (strict FIFO, no summarisation).
    - The whole session map is written to the BlobStore after every mutation;
      the sweep writes once per run, not once per deleted session.

All mutations and snapshot writes happen under one asyncio.Lock, so
concurrent add_message() calls on the same session and the sweep cannot
interleave a read-modify-write.
"""
from __future__ import annotations

import asyncio
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from loguru import logger
from pydantic import ValidationError

from ragchat.config import ConversationSettings
from ragchat.errors import SessionNotFound
from ragchat.schemas import Message, MessageMetadata, Role, Session
from ragchat.storage.blob_store import BlobStore, MemoryBlobStore
from ragchat.utils.helpers import isoformat, utc_now

STORE_VERSION = "1.0"


def generate_session_id() -> str:
    return secrets.token_hex(16)


class ConversationStore:
    """
    Session-scoped chat history with expiry.

    Usage:
        store = ConversationStore(settings, JsonFileStore("data/conversations.json"))
        store.load()
        await store.start()          # periodic sweep
        sid = await store.get_or_create_session(None)
        await store.add_message(sid, "user", "How do I reset my password?")
        ...
        await store.stop()
    """

    def __init__(
        self,
        settings: Optional[ConversationSettings] = None,
        blob_store: Optional[BlobStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        settings = settings or ConversationSettings()
        self.max_history_length = settings.max_history_length
        self.session_timeout = timedelta(seconds=settings.session_timeout_seconds)
        self.cleanup_interval = settings.cleanup_interval_seconds

        self._blob_store: BlobStore = blob_store if blob_store is not None else MemoryBlobStore()
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    # --- Persistence ----------------------------------------------------------

    def _snapshot(self) -> dict:
        return {
            "sessions": {sid: s.model_dump(mode="json") for sid, s in self._sessions.items()},
            "metadata": {
                "totalSessions": len(self._sessions),
                "lastSaved": isoformat(self._clock()),
                "version": STORE_VERSION,
            },
        }

    async def _persist(self) -> None:
        """Write the full map. Caller must hold the lock."""
        snapshot = self._snapshot()
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._blob_store.save, snapshot)
        except OSError as exc:
            logger.error(f"[ConversationStore] Error saving sessions: {exc}")

    def load(self) -> int:
        """
        Replace in-memory sessions with the persisted ones.

        Sessions that are already expired are dropped.  A corrupt store is
        logged and the service starts with no sessions.
        """
        self._sessions.clear()
        try:
            data = self._blob_store.load()
        except (OSError, ValueError) as exc:
            logger.error(f"[ConversationStore] Error loading sessions: {exc}")
            return 0

        if not data:
            logger.info("[ConversationStore] No existing sessions found, starting fresh")
            return 0

        dropped = 0
        for sid, raw in (data.get("sessions") or {}).items():
            try:
                session = Session.model_validate(raw)
            except ValidationError as exc:
                logger.warning(f"[ConversationStore] Skipping unreadable session {sid}: {exc}")
                continue
            if self._is_expired(session):
                dropped += 1
                continue
            self._sessions[sid] = session

        logger.info(
            f"[ConversationStore] Loaded {len(self._sessions)} sessions "
            f"({dropped} expired dropped)"
        )
        return len(self._sessions)

    # --- Expiry ---------------------------------------------------------------

    def _is_expired(self, session: Session) -> bool:
        return self._clock() - session.last_activity > self.session_timeout

    def _live(self, session_id: Optional[str]) -> Optional[Session]:
        """Lookup without side effects. Caller decides what to do with expiry."""
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is None or self._is_expired(session):
            return None
        return session

    async def _get_or_expire(self, session_id: Optional[str]) -> Optional[Session]:
        """Lookup under the lock, deleting an expired session on the way."""
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self._is_expired(session):
            logger.info(f"[ConversationStore] Session {session_id} expired, removing")
            del self._sessions[session_id]
            await self._persist()
            return None
        return session

    async def cleanup_expired_sessions(self) -> int:
        """Delete every expired session; persist once if anything was removed."""
        async with self._lock:
            expired = [sid for sid, s in self._sessions.items() if self._is_expired(s)]
            for sid in expired:
                del self._sessions[sid]
            if expired:
                await self._persist()
                logger.info(f"[ConversationStore] Cleaned up {len(expired)} expired sessions")
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                await self.cleanup_expired_sessions()
            except Exception as exc:
                logger.error(f"[ConversationStore] Sweep failed: {exc}")

    async def start(self) -> None:
        """Start the periodic expiry sweep (idempotent)."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(
                f"[ConversationStore] Expiry sweep every {self.cleanup_interval:.0f}s"
            )

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    # --- Mutations ------------------------------------------------------------

    def _new_session(self, metadata: Optional[dict[str, Any]]) -> Session:
        now = self._clock()
        session = Session(
            id=generate_session_id(),
            created_at=now,
            last_activity=now,
            metadata=dict(metadata or {}),
        )
        self._sessions[session.id] = session
        logger.info(f"[ConversationStore] Created new session: {session.id}")
        return session

    async def create_session(self, metadata: Optional[dict[str, Any]] = None) -> str:
        async with self._lock:
            session = self._new_session(metadata)
            await self._persist()
        return session.id

    async def get_session(self, session_id: str) -> Optional[Session]:
        """Return the live session or None (expired sessions are deleted)."""
        async with self._lock:
            return await self._get_or_expire(session_id)

    async def get_or_create_session(
        self,
        session_id: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """Return `session_id` if it is live (refreshing activity), else a new id."""
        async with self._lock:
            session = await self._get_or_expire(session_id)
            if session is not None:
                session.last_activity = self._clock()
            else:
                if session_id:
                    logger.warning(
                        f"[ConversationStore] Session {session_id} not found, creating new session"
                    )
                session = self._new_session(metadata)
            await self._persist()
        return session.id

    async def add_message(
        self,
        session_id: str,
        role: Role | str,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Session:
        """
        Append a message, then trim the oldest ones beyond max_history_length.

        Raises:
            SessionNotFound: unknown or expired session.
        """
        async with self._lock:
            session = await self._get_or_expire(session_id)
            if session is None:
                raise SessionNotFound(session_id)

            now = self._clock()
            session.messages.append(
                Message(
                    id=secrets.token_hex(8),
                    role=Role(role),
                    content=content,
                    timestamp=now,
                    metadata=MessageMetadata.model_validate(metadata or {}),
                )
            )
            session.message_count += 1
            session.last_activity = now

            excess = len(session.messages) - self.max_history_length
            if excess > 0:
                del session.messages[:excess]
                logger.debug(f"[ConversationStore] Trimmed {excess} old messages from {session_id}")

            await self._persist()

        logger.debug(
            f"[ConversationStore] Added {Role(role).value} message to {session_id} "
            f"({len(session.messages)} total)"
        )
        return session

    async def clear_conversation(self, session_id: str) -> Session:
        """
        Empty the history, keeping id and metadata.

        Raises:
            SessionNotFound: unknown or expired session.
        """
        async with self._lock:
            session = await self._get_or_expire(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            session.messages = []
            session.message_count = 0
            session.last_activity = self._clock()
            await self._persist()
        logger.info(f"[ConversationStore] Cleared conversation history for {session_id}")
        return session

    async def delete_session(self, session_id: str) -> bool:
        async with self._lock:
            if self._sessions.pop(session_id, None) is None:
                return False
            await self._persist()
        logger.info(f"[ConversationStore] Deleted session {session_id}")
        return True

    # --- Reads ----------------------------------------------------------------

    async def get_conversation_history(
        self, session_id: str, limit: Optional[int] = None
    ) -> list[dict]:
        session = await self.get_session(session_id)
        if session is None:
            return []
        messages = session.messages
        if limit and limit > 0:
            messages = messages[-limit:]
        return [
            {"role": m.role.value, "content": m.content, "timestamp": isoformat(m.timestamp)}
            for m in messages
        ]

    async def get_formatted_history(self, session_id: str) -> list[dict[str, str]]:
        """Role + content only, oldest first - the shape the prompt builder takes."""
        history = await self.get_conversation_history(session_id)
        return [{"role": m["role"], "content": m["content"]} for m in history]

    async def get_session_stats(self, session_id: str) -> Optional[dict]:
        session = await self.get_session(session_id)
        if session is None:
            return None

        user_count = sum(1 for m in session.messages if m.role is Role.USER)
        assistant_count = sum(1 for m in session.messages if m.role is Role.ASSISTANT)
        total_tokens = sum(m.metadata.tokens_used for m in session.messages)
        return {
            "session_id": session.id,
            "created_at": isoformat(session.created_at),
            "last_activity": isoformat(session.last_activity),
            "message_count": session.message_count,
            "user_message_count": user_count,
            "assistant_message_count": assistant_count,
            "total_tokens_used": total_tokens,
            "average_tokens_per_message": (
                round(total_tokens / session.message_count) if session.message_count else 0
            ),
            "is_expired": self._is_expired(session),
        }

    def get_all_sessions(self) -> list[dict]:
        """Live sessions, most recently active first."""
        live = [s for s in self._sessions.values() if not self._is_expired(s)]
        live.sort(key=lambda s: s.last_activity, reverse=True)
        return [
            {
                "id": s.id,
                "created_at": isoformat(s.created_at),
                "last_activity": isoformat(s.last_activity),
                "message_count": s.message_count,
                "metadata": s.metadata,
            }
            for s in live
        ]

    def get_system_stats(self) -> dict:
        sessions = self.get_all_sessions()
        total_messages = sum(s["message_count"] for s in sessions)
        return {
            "total_active_sessions": len(sessions),
            "total_messages": total_messages,
            "average_messages_per_session": (
                round(total_messages / len(sessions)) if sessions else 0
            ),
            "max_history_length": self.max_history_length,
            "session_timeout_seconds": self.session_timeout.total_seconds(),
            "storage": repr(self._blob_store),
        }

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return self._live(session_id) is not None
