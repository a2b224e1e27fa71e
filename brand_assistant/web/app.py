"""FastAPI application exposing chat, ingestion and analytics endpoints."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Literal, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from ..chat.engine import ChatEngine, ClientInfo
from ..config import Settings, load_settings
from ..errors import AssistantError, NotSupportedError, ValidationError
from ..ingestion.pipeline import ingest_document, ingest_documents

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    """Request payload for the chat endpoints."""

    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = Field(default=None, description="User message to answer")
    session_id: Optional[str] = Field(
        default=None,
        alias="sessionId",
        description="Conversation identifier; a new one is issued when omitted",
    )


class LeadFormPayload(BaseModel):
    show: bool
    name: Optional[str] = None
    email: Optional[str] = None


class ChatResponsePayload(BaseModel):
    """Response payload for the chat endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    response: str
    session_id: str = Field(alias="sessionId")
    sources: Optional[List[str]] = None
    lead_captured: Optional[bool] = Field(default=None, alias="leadCaptured")
    lead_form: Optional[LeadFormPayload] = Field(default=None, alias="leadForm")


class IngestMetadata(BaseModel):
    url: Optional[str] = None
    title: Optional[str] = None
    type: Optional[Literal["webpage", "document", "faq"]] = None


class IngestRequest(BaseModel):
    content: Optional[str] = None
    metadata: Optional[IngestMetadata] = None


class BulkIngestRequest(BaseModel):
    documents: List[IngestRequest]


class ResolveGapRequest(BaseModel):
    note: Optional[str] = None


def _metadata(payload: Optional[IngestMetadata]) -> Optional[Dict[str, str]]:
    if payload is None:
        return None
    return payload.model_dump(exclude_none=True) or None


def _client_info(request: Request) -> ClientInfo:
    forwarded = request.headers.get("x-forwarded-for")
    ip_address = request.headers.get("cf-connecting-ip") or (
        forwarded.split(",")[0].strip() if forwarded else None
    )
    if ip_address is None and request.client is not None:
        ip_address = request.client.host
    return ClientInfo(
        ip_address=ip_address,
        origin=request.headers.get("origin"),
        user_agent=request.headers.get("user-agent"),
    )


def create_app(settings: Settings | None = None, *, engine: ChatEngine | None = None) -> FastAPI:
    """Instantiate the FastAPI app with shared dependencies."""

    if engine is None:
        engine = ChatEngine.from_settings(settings or load_settings())
    settings = engine.settings

    app = FastAPI(title="Brand Assistant", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.allowed_origin],
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["X-Session-ID"],
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(_request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(NotSupportedError)
    async def not_supported_handler(_request: Request, exc: NotSupportedError) -> JSONResponse:
        return JSONResponse(status_code=501, content={"error": str(exc)})

    @app.exception_handler(AssistantError)
    async def assistant_error_handler(request: Request, exc: AssistantError) -> JSONResponse:
        logger.error("Request to %s failed: %s", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"error": "An error occurred processing your request", "details": str(exc)},
        )

    def _analytics():
        if engine.analytics is None:
            raise HTTPException(status_code=404, detail="Analytics are not configured.")
        return engine.analytics

    @app.get("/")
    @app.get("/health")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok", "service": "brand-assistant"}

    @app.post("/chat", response_model=ChatResponsePayload, response_model_exclude_none=True)
    async def chat_endpoint(
        payload: ChatRequest, request: Request, background_tasks: BackgroundTasks
    ) -> ChatResponsePayload:
        client = _client_info(request)
        result = await engine.ask(payload.message, session_id=payload.session_id, client=client)
        background_tasks.add_task(engine.log_interaction, result, client)
        lead_form = LeadFormPayload(**asdict(result.lead_form)) if result.lead_form else None
        return ChatResponsePayload(
            response=result.answer,
            session_id=result.session_id,
            sources=result.sources or None,
            lead_captured=result.lead_captured,
            lead_form=lead_form,
        )

    @app.post("/chat/stream")
    async def chat_stream_endpoint(payload: ChatRequest) -> StreamingResponse:
        session_id, fragments = await engine.ask_stream(payload.message, session_id=payload.session_id)
        return StreamingResponse(
            fragments,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Session-ID": session_id},
        )

    @app.post("/ingest")
    async def ingest_endpoint(payload: IngestRequest) -> Dict[str, Any]:
        result = await ingest_document(
            engine.store,
            engine.embedder,
            payload.content,
            _metadata(payload.metadata),
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
        )
        return {
            "success": True,
            "message": f"Ingested {result.chunks} chunks",
            "sourceId": result.source_id,
            "chunks": result.chunk_ids,
        }

    @app.post("/ingest/bulk")
    async def bulk_ingest_endpoint(payload: BulkIngestRequest) -> Dict[str, Any]:
        results = await ingest_documents(
            engine.store,
            engine.embedder,
            [
                {"content": document.content, "metadata": _metadata(document.metadata)}
                for document in payload.documents
            ],
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
        )
        return {
            "success": True,
            "results": [
                {"sourceId": r.source_id, "chunks": r.chunks, **({"error": r.error} if r.error else {})}
                for r in results
            ],
            "total": sum(r.chunks for r in results),
        }

    @app.get("/stats")
    async def stats_endpoint() -> Dict[str, Any]:
        stats = await engine.store.stats()
        return {
            "vectorStore": settings.vector_store,
            "llmProvider": "openai",
            "embeddingProvider": "openai",
            **stats,
        }

    @app.delete("/clear")
    async def clear_endpoint() -> Dict[str, Any]:
        await engine.store.clear()
        return {"success": True, "message": "All vectors cleared"}

    @app.get("/analytics")
    def analytics_endpoint(days: int = 7) -> Dict[str, Any]:
        return _analytics().chat_summary(days=days)

    @app.get("/analytics/gaps/summary")
    def gaps_summary_endpoint() -> Dict[str, Any]:
        return _analytics().knowledge_gap_summary()

    @app.get("/analytics/gaps")
    def gaps_endpoint(status: Literal["active", "resolved"] = "active", limit: int = 50) -> Dict[str, Any]:
        gaps = _analytics().list_knowledge_gaps(status=status, limit=limit)
        return {"status": status, "gaps": [asdict(gap) for gap in gaps], "total": len(gaps)}

    @app.patch("/analytics/gaps/{gap_id}/resolve")
    def resolve_gap_endpoint(gap_id: int, payload: Optional[ResolveGapRequest] = None) -> Dict[str, Any]:
        note = payload.note if payload else None
        if not _analytics().resolve_knowledge_gap(gap_id, note):
            raise HTTPException(status_code=404, detail=f"Knowledge gap {gap_id} not found.")
        return {"success": True}

    return app
