"""LLM Gateway - FastAPI Application.

Exposes the conversation orchestrator over HTTP:
- Start and continue chats per backend
- Read chat history
- List backend models
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging
from shared.models import (
    ChatErrorCode,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatStatus,
    GenerateRequest,
)
from providers.registry import UnknownBackendError, build_registry
from orchestrator.gateway import ConversationOrchestrator

logger = get_logger(__name__)


class ModelListResponse(BaseModel):
    """Models advertised by a backend."""
    backend: str
    models: list[str]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    backends: list[str]
    session_count: int


# Global instances
_settings: Optional[Settings] = None
_orchestrator: Optional[ConversationOrchestrator] = None
_cleanup_task: Optional[asyncio.Task] = None


ERROR_STATUS_CODES = {
    ChatErrorCode.MODEL_NOT_SET: status.HTTP_400_BAD_REQUEST,
    ChatErrorCode.BACKEND_UNAVAILABLE: status.HTTP_502_BAD_GATEWAY,
    ChatErrorCode.MALFORMED_BACKEND_RESPONSE: status.HTTP_502_BAD_GATEWAY,
    ChatErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def cleanup_sessions_task(orchestrator: ConversationOrchestrator, interval: int = 300):
    """Background task to evict idle sessions."""
    while True:
        await asyncio.sleep(interval)
        try:
            await orchestrator.cleanup_expired()
        except Exception as e:
            logger.error("Session cleanup failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global _settings, _orchestrator, _cleanup_task

    # Startup
    logger.info("Starting LLM Gateway")

    _settings = get_settings()
    setup_logging(_settings.log_level, json_output=_settings.environment == "production")

    _orchestrator = ConversationOrchestrator(
        registry=build_registry(_settings),
        session_ttl_minutes=_settings.gateway.session_ttl_minutes
    )

    if _settings.gateway.session_ttl_minutes:
        _cleanup_task = asyncio.create_task(
            cleanup_sessions_task(_orchestrator, _settings.gateway.cleanup_interval_seconds)
        )

    logger.info("LLM Gateway started", backends=_orchestrator.list_backends())

    yield

    # Shutdown
    logger.info("Shutting down LLM Gateway")

    if _cleanup_task:
        _cleanup_task.cancel()
        try:
            await _cleanup_task
        except asyncio.CancelledError:
            pass
        _cleanup_task = None

    await _orchestrator.close()


app = FastAPI(
    title="LLM Gateway",
    description="Multi-turn chat gateway over Ollama and OpenAI-compatible backends",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_orchestrator() -> ConversationOrchestrator:
    """Return the orchestrator or fail if startup has not run."""
    if _orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Gateway not initialized"
        )
    return _orchestrator


def envelope_response(result: ChatResponse) -> JSONResponse:
    """Render an envelope with the status code matching its outcome."""
    status_code = status.HTTP_200_OK
    if result.status == ChatStatus.ERROR:
        status_code = ERROR_STATUS_CODES.get(
            result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


def unknown_backend(e: UnknownBackendError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Health check endpoint."""
    status_info = await get_orchestrator().health_check()

    return HealthResponse(
        status=status_info["status"],
        backends=status_info["backends"],
        session_count=sum(
            s["total_sessions"] for s in status_info["sessions"].values()
        )
    )


@app.post("/llm/{backend}/generate", response_model=ChatResponse, tags=["Chat"])
async def generate(backend: str, request: GenerateRequest):
    """Start a new chat session."""
    try:
        result = await get_orchestrator().generate(backend, request)
    except UnknownBackendError as e:
        raise unknown_backend(e)

    return envelope_response(result)


@app.post("/llm/{backend}/chat", response_model=ChatResponse, tags=["Chat"])
async def continue_chat(backend: str, request: ChatRequest):
    """
    Continue a chat session.

    An unknown session id starts a new session under that id.
    """
    try:
        result = await get_orchestrator().chat(backend, request)
    except UnknownBackendError as e:
        raise unknown_backend(e)

    return envelope_response(result)


@app.get("/llm/{backend}/chat/{session_id}", response_model=list[ChatMessage], tags=["Chat"])
async def get_chat(backend: str, session_id: str):
    """Get chat history."""
    try:
        history = await get_orchestrator().get_history(backend, session_id)
    except UnknownBackendError as e:
        raise unknown_backend(e)

    if not history:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Chat not found"
        )

    return history


@app.get("/llm/{backend}/models", response_model=ModelListResponse, tags=["Models"])
async def list_models(backend: str):
    """List models available on a backend."""
    try:
        models = await get_orchestrator().list_models(backend)
    except UnknownBackendError as e:
        raise unknown_backend(e)

    return ModelListResponse(backend=backend, models=models)


def main():
    """Run the gateway server."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "orchestrator.main:app",
        host=settings.gateway.host,
        port=settings.gateway.port,
        reload=settings.environment == "development"
    )


if __name__ == "__main__":
    main()
