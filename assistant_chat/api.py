"""FastAPI entry point for the chat assistant."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, validator

from .config import ChatConfig
from .llm_client import ChatLLMClient, ConfigurationError, UpstreamError
from .service import ChatService
from .session_store import SessionStore, SessionSweeper
from .tools import KnowledgeSearch
from .utils import setup_logging

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "anonymous"


class ChatMessage(BaseModel):
    role: str
    content: str

    @validator("role")
    def _known_role(cls, value: str) -> str:
        if value not in ("user", "assistant", "system"):
            raise ValueError("role must be one of user, assistant, system")
        return value


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(default_factory=list, description="Conversation turns to send.")
    model: Optional[str] = Field(None, description="Optional model override for this request.")
    stream: bool = True


class IngestDocument(BaseModel):
    id: Optional[str] = None
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @validator("text")
    def _not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("text must not be empty")
        return value


class IngestRequest(BaseModel):
    documents: List[IngestDocument] = Field(default_factory=list)


class HistoryResponse(BaseModel):
    user_id: str
    messages: List[Dict[str, Any]] = Field(default_factory=list)


def create_app(
    chat_config: Optional[ChatConfig] = None,
    *,
    knowledge: Optional[KnowledgeSearch] = None,
    client: Optional[ChatLLMClient] = None,
    store: Optional[SessionStore] = None,
    log_dir: Optional[str] = None,
) -> FastAPI:
    if log_dir:
        setup_logging(log_dir, logging.INFO)

    config = chat_config or ChatConfig()
    service = ChatService(config, store=store, knowledge=knowledge, client=client)
    sweeper = SessionSweeper(
        service.store,
        max_age_seconds=config.session_max_age_seconds,
        interval_seconds=config.sweep_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper.start()
        try:
            yield
        finally:
            await sweeper.stop()

    app = FastAPI(title="Assistant Chat", version="0.1.0", lifespan=lifespan)
    app.state.service = service
    app.state.sweeper = sweeper

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "active_sessions": len(app.state.service.store),
            "knowledge_base": app.state.service.knowledge is not None,
        }

    @app.post("/api/chat")
    async def chat(request: ChatRequest, x_user_id: Optional[str] = Header(None)):
        user_id = x_user_id or ANONYMOUS_USER
        messages = [m.dict() for m in request.messages]
        try:
            turn = await run_in_threadpool(app.state.service.prepare_turn, user_id, messages)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except ConfigurationError as exc:
            logger.error("Chat request rejected: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc

        try:
            if request.stream:
                stream = await run_in_threadpool(app.state.service.stream_reply, turn, model=request.model)
                return StreamingResponse(
                    stream,
                    media_type="text/event-stream",
                    headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
                )
            return await run_in_threadpool(app.state.service.complete_reply, turn, model=request.model)
        except UpstreamError as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content={"error": "AI API error", "details": exc.details},
            )
        except Exception as exc:
            logger.exception("Chat request failed (user_id=%s)", user_id)
            raise HTTPException(status_code=500, detail="Internal server error") from exc

    @app.post("/api/ingest")
    async def ingest(request: IngestRequest, x_user_id: Optional[str] = Header(None)) -> Dict[str, Any]:
        documents = [d.dict() for d in request.documents]
        try:
            count = await run_in_threadpool(
                app.state.service.ingest, documents, user_id=x_user_id or ANONYMOUS_USER
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except Exception as exc:
            logger.exception("Document ingestion failed")
            raise HTTPException(status_code=500, detail=f"Ingestion failed: {exc}") from exc

        return {
            "success": True,
            "message": f"Successfully ingested {count} documents",
            "count": count,
        }

    @app.get("/api/chat/history", response_model=HistoryResponse)
    async def chat_history(
        limit: Optional[int] = Query(None, gt=0),
        x_user_id: Optional[str] = Header(None),
    ):
        return app.state.service.get_history(x_user_id or ANONYMOUS_USER, limit=limit)

    @app.post("/api/chat/clear")
    async def clear_history(x_user_id: Optional[str] = Header(None)) -> Dict[str, str]:
        app.state.service.clear_history(x_user_id or ANONYMOUS_USER)
        return {"status": "cleared"}

    @app.get("/api/metrics")
    async def metrics() -> Dict[str, Any]:
        service = app.state.service
        summary = service.telemetry.summary()
        summary["sessions"] = service.store.active_sessions()
        summary["tools"] = service.tools.describe()
        return summary

    return app
