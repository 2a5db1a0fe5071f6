#!/usr/bin/env python3
"""
Lima Assistant API - Main Application
Conversational front-end for medical field representatives working with the Lima CRM
"""

import logging
from datetime import timedelta
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .agents.dialogue_orchestrator import DialogueOrchestrator
from .agents.lima_functions import LimaFunctions
from .core.error_handling import ErrorHandler, ValidationError
from .core.messages import EMPTY_MESSAGE_ERROR, HELP_TEXT, SERVICE_NOT_READY_MESSAGE
from .core.session_store import SessionStore
from .core.settings import Settings, load_settings
from .llm.open_client import OpenAIClient
from .llm.rate_limited_client import RateLimitedLLMClient
from .models.conversation import utcnow
from .models.schemas import AssistantRequest, AssistantResponse
from .services.catalog_cache import CatalogCache
from .services.drug_search import DrugSearchService
from .services.entity_resolver import EntityResolver
from .services.lima_api import LimaAPIClient

logger = logging.getLogger(__name__)

SERVICE_NAME = "Lima Assistant API"
SERVICE_VERSION = "1.0.0"

# Global variables for services
settings: Optional[Settings] = None
session_store: Optional[SessionStore] = None
orchestrator: Optional[DialogueOrchestrator] = None
llm_client: Optional[RateLimitedLLMClient] = None


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global settings, session_store, orchestrator, llm_client

    settings = load_settings()
    configure_logging(settings.log_level)
    logger.info("🚀 Initializing Lima Assistant API...")

    lima_client = LimaAPIClient(
        base_url=settings.lima_api_base_url,
        access_token=settings.lima_api_token,
        timeout=settings.lima_api_timeout,
    )
    logger.info("✅ Lima API client initialized")

    base_llm_client = OpenAIClient(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        model=settings.openai_model,
        max_tokens=settings.openai_max_tokens,
        temperature=settings.openai_temperature,
        timeout=settings.openai_timeout,
    )
    llm_client = RateLimitedLLMClient(base_llm_client, max_calls_per_minute=settings.llm_max_calls_per_minute)
    logger.info("✅ LLM client initialized with rate limiting")

    resolver = EntityResolver()
    catalog_cache = CatalogCache(lima_client, ttl_seconds=settings.catalog_ttl_minutes * 60)
    drug_search = DrugSearchService(catalog_cache, resolver)

    store = SessionStore(
        max_age=timedelta(hours=settings.session_expiry_hours),
        cleanup_interval=timedelta(minutes=settings.session_cleanup_minutes),
    )
    lima_functions = LimaFunctions(lima_client, drug_search, store, resolver)

    async with store:
        session_store = store
        orchestrator = DialogueOrchestrator(
            store, llm_client, lima_functions, history_window=settings.history_window
        )
        logger.info("🎉 Lima Assistant API ready!")

        try:
            yield
        finally:
            logger.info("🔄 Shutting down Lima Assistant API...")
            orchestrator = None
            session_store = None
            await lima_client.aclose()
            await llm_client.aclose()
            llm_client = None


# Create FastAPI app
app = FastAPI(
    title=SERVICE_NAME,
    description="Voice/text assistant for medical representatives: reservations, visits, plans and stock in Lima CRM",
    version=SERVICE_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "endpoints": {
            "query": "/api/v1/assistant/query",
            "help": "/api/v1/assistant/help",
            "session_stats": "/api/v1/session/stats",
            "health": "/health",
            "docs": "/docs"
        },
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy" if orchestrator else "starting",
        "timestamp": utcnow().isoformat(),
        "service": SERVICE_NAME,
        "lima_configured": bool(settings and settings.lima_configured),
        "llm_configured": bool(settings and settings.openai_configured),
        "llm_rate_limit": llm_client.get_stats() if llm_client else None,
    }


@app.post("/api/v1/assistant/query", response_model=AssistantResponse)
async def assistant_query(request: AssistantRequest):
    """Process one utterance of the field rep"""
    if not request.message or not request.message.strip():
        error = ValidationError(EMPTY_MESSAGE_ERROR)
        reply = AssistantResponse(session_id=request.session_id, **ErrorHandler.handle_workflow_error(error))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=reply.model_dump(mode="json", by_alias=True),
        )

    if not orchestrator:
        reply = AssistantResponse(
            success=False,
            response=SERVICE_NOT_READY_MESSAGE,
            session_id=request.session_id,
            error_code="SERVICE_NOT_READY",
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=reply.model_dump(mode="json", by_alias=True),
        )

    logger.info(f"Query for session {request.session_id or '<new>'}: {len(request.message)} chars")
    return await orchestrator.process_message(request.message, request.session_id)


@app.get("/api/v1/assistant/help", response_class=PlainTextResponse)
async def assistant_help():
    """Example commands for the assistant"""
    return HELP_TEXT


@app.get("/api/v1/session/stats")
async def session_stats():
    """Get conversation session statistics"""
    if not session_store:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session store not initialized"
        )
    return session_store.get_session_stats()


@app.delete("/api/v1/session/{session_id}")
async def clear_session(session_id: str):
    """Forget a conversation session"""
    if not session_store:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session store not initialized"
        )
    if not session_store.remove(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} not found"
        )
    return {"status": "success", "message": f"Session {session_id} cleared"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("medrep_assistant.main:app", host="0.0.0.0", port=8000, reload=False)
