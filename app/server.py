"""
RAG Chat - Web API Server
--------------------------
FastAPI server that wraps RAGService.

Endpoints:
  GET    /api/health                     -> liveness, uptime
  GET    /api/status                     -> retrieval / LLM / session / index stats
  POST   /api/chat                       -> answer one message in a session
  GET    /api/session/{id}?action=stats  -> per-session statistics
  GET    /api/session/{id}?action=history
  POST   /api/session/{id}?action=clear  -> empty the history, keep the session
  DELETE /api/session/{id}               -> drop the session

Every JSON response uses an envelope:
  {"success": true,  "data": {...}}
  {"success": false, "error": {"message", "statusCode", "timestamp"}}

Run from the project root:
    uvicorn app.server:app --reload --port 3000

Corpus, index and session files are resolved relative to CWD.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from ragchat.config import load_settings
from ragchat.errors import SessionNotFound
from ragchat.serving.service import RAGService, build_service
from ragchat.utils.helpers import isoformat, utc_now
from ragchat.utils.logger import setup_logger

load_dotenv()

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_MESSAGE_LENGTH = 2000
_STARTED = time.monotonic()

# ---------------------------------------------------------------------------
# Service singleton
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service once at startup unless one was injected; stop it on shutdown."""
    if getattr(app.state, "service", None) is None:
        settings = load_settings()
        setup_logger(log_level=settings.logging.level, log_file=settings.logging.file)
        logger.info("[Server] Loading RAG service...")
        app.state.service = build_service(settings)

    service: RAGService = app.state.service
    await service.start()
    await service.check_llm_connection()
    logger.info(
        f"[Server] Service ready | {len(service.retriever.store):,} chunks | "
        f"provider={service.gateway.provider_name}"
    )
    yield
    await service.stop()
    app.state.service = None
    logger.info("[Server] Service stopped.")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="RAG Chat API",
    description="Retrieval-augmented support chat over a fixed document corpus",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------

def _ok(data: Any) -> dict:
    return {"success": True, "data": data}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {
                "message": message,
                "statusCode": status_code,
                "timestamp": isoformat(utc_now()),
            },
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(SessionNotFound)
async def session_not_found_handler(request: Request, exc: SessionNotFound) -> JSONResponse:
    return _error(404, "Session not found")


def get_service(request: Request) -> RAGService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="System is still initializing. Please try again.")
    return service


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class ChatRequest(BaseModel):
    message: str = Field(max_length=MAX_MESSAGE_LENGTH)
    session_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/api/health")
async def health(request: Request):
    """Liveness probe; 503 until the service is built."""
    ready = getattr(request.app.state, "service", None) is not None
    body = {
        "status": "healthy" if ready else "initializing",
        "timestamp": isoformat(utc_now()),
        "uptime": round(time.monotonic() - _STARTED, 3),
    }
    return JSONResponse(status_code=200 if ready else 503, content=body)


@app.get("/api/status")
async def status(service: RAGService = Depends(get_service)):
    return _ok(service.get_system_status())


@app.post("/api/chat")
async def chat(
    body: ChatRequest,
    request: Request,
    service: RAGService = Depends(get_service),
):
    """
    Run the full RAG flow for one user message.

    A missing or expired session_id silently starts a new session; the
    active id is returned in data.session_id.
    """
    message = body.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message cannot be empty")

    logger.info(
        f"[API] Chat | session={body.session_id} | query={message[:80]!r}"
    )
    metadata = {
        "user_agent": request.headers.get("user-agent", ""),
        "ip": request.client.host if request.client else "",
    }
    reply = await service.process_query(body.session_id, message, metadata)
    if reply.error:
        return _error(500, reply.reply)
    return _ok(reply.to_dict())


@app.get("/api/session/{session_id}")
async def session_read(
    session_id: str,
    action: Literal["stats", "history"] = Query("stats"),
    service: RAGService = Depends(get_service),
):
    if action == "stats":
        stats = await service.get_session_stats(session_id)
        if stats is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return _ok(stats)

    history = await service.get_conversation_history(session_id)
    return _ok({"session_id": session_id, "history": history})


@app.post("/api/session/{session_id}")
async def session_action(
    session_id: str,
    action: Literal["clear"] = Query(...),
    service: RAGService = Depends(get_service),
):
    cleared_id = await service.clear_conversation(session_id)
    return _ok({"message": "Conversation cleared", "session_id": cleared_id})


@app.delete("/api/session/{session_id}")
async def session_delete(session_id: str, service: RAGService = Depends(get_service)):
    if not await service.delete_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return _ok({"message": "Session deleted", "session_id": session_id})
