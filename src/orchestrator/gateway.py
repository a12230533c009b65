"""Conversation Orchestrator - core turn-processing logic.

The orchestrator coordinates:
- Session creation and lookup
- Model availability and fallback
- Dispatch to the backend adapter
- Response envelope construction
"""

import uuid
from typing import Any, Optional

from providers.base import (
    BackendUnavailableError,
    LLMProvider,
    MalformedBackendResponseError,
)
from providers.registry import ProviderRegistry
from shared.logging import get_logger, log_context
from shared.models import (
    ChatErrorCode,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatSession,
    GenerateRequest,
    MessageRole,
    ModelResolution,
)
from orchestrator import envelope
from orchestrator.resolver import ModelResolver
from orchestrator.sessions import SessionStore

logger = get_logger(__name__)


class ConversationOrchestrator:
    """
    Facade over sessions, model resolution and backend adapters.

    Each backend gets its own session store, so session ids are scoped
    to the backend they were created on. Callers always receive an
    envelope; backend and internal failures never propagate.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        resolver: Optional[ModelResolver] = None,
        session_ttl_minutes: Optional[int] = None
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            registry: Registered backend providers
            resolver: Model resolver; a default one is created if omitted
            session_ttl_minutes: Idle TTL for sessions, None to keep forever
        """
        self.registry = registry
        self.resolver = resolver or ModelResolver()
        self.session_ttl_minutes = session_ttl_minutes
        self._stores: dict[str, SessionStore] = {}

    def store_for(self, backend: str) -> SessionStore:
        """Get the session store for a backend, creating it on first use."""
        store = self._stores.get(backend)
        if store is None:
            store = SessionStore(session_ttl_minutes=self.session_ttl_minutes)
            self._stores[backend] = store
        return store

    async def generate(self, backend: str, request: GenerateRequest) -> ChatResponse:
        """
        Start a new session and run its first turn.

        Raises:
            UnknownBackendError: If backend is not registered
        """
        provider = self.registry.get(backend)
        store = self.store_for(backend)

        session_id = uuid.uuid4().hex
        while session_id in store:
            session_id = uuid.uuid4().hex

        model = request.model or provider.default_model

        logger.info("Generating new chat", backend=backend, session_id=session_id, model=model)
        return await self._process_turn(provider, backend, session_id, model, request.prompt)

    async def chat(self, backend: str, request: ChatRequest) -> ChatResponse:
        """
        Continue a session, starting it with the default model if unknown.

        Raises:
            UnknownBackendError: If backend is not registered
        """
        provider = self.registry.get(backend)
        session = await self.store_for(backend).get(request.id)

        if session is None:
            logger.info(
                "Creating new session for unknown id",
                backend=backend,
                session_id=request.id
            )
            return await self._process_turn(
                provider, backend, request.id, provider.default_model, request.prompt
            )

        if not session.model:
            logger.warning("Session has no model", backend=backend, session_id=request.id)
            return envelope.failure(
                request.id, "", "Model not set", ChatErrorCode.MODEL_NOT_SET
            )

        return await self._process_turn(
            provider, backend, request.id, session.model, request.prompt
        )

    async def _process_turn(
        self,
        provider: LLMProvider,
        backend: str,
        session_id: str,
        model: str,
        prompt: str
    ) -> ChatResponse:
        """
        Run one turn: resolve model, append user message, call the
        backend, append the reply.

        Only a session about to be created has its model resolved; an
        existing session always runs on its stored model. A failed turn
        keeps the user message and appends nothing else.
        """
        store = self.store_for(backend)

        with log_context(backend=backend, session_id=session_id):
            session = await store.get(session_id)

            if session is None:
                try:
                    resolution = await self.resolver.resolve(provider, model)
                except Exception as e:
                    logger.error("Model resolution failed", error=str(e), exc_info=True)
                    return envelope.failure(session_id, model, "Internal processing error")

                session = await store.get_or_create(session_id, resolution.resolved, backend)
                requested = resolution.requested
            else:
                requested = session.model

            applied = ModelResolution(
                requested=requested,
                resolved=session.model,
                substituted=session.model != requested
            )

            # No await between the lookup above and entering the turn
            async with store.turn(session.id):
                await store.append(
                    session.id, ChatMessage(role=MessageRole.USER, content=prompt)
                )

                try:
                    text = await provider.complete(session)
                except BackendUnavailableError as e:
                    logger.error("Backend request failed", model=session.model, error=str(e))
                    return envelope.failure(
                        session.id, session.model, str(e),
                        ChatErrorCode.BACKEND_UNAVAILABLE, applied
                    )
                except MalformedBackendResponseError as e:
                    logger.error("Invalid backend response", model=session.model, error=str(e))
                    return envelope.failure(
                        session.id, session.model, str(e),
                        ChatErrorCode.MALFORMED_BACKEND_RESPONSE, applied
                    )
                except Exception as e:
                    logger.error("Chat processing failed", error=str(e), exc_info=True)
                    return envelope.failure(
                        session.id, session.model, "Internal processing error",
                        ChatErrorCode.INTERNAL_ERROR, applied
                    )

                await store.append(
                    session.id, ChatMessage(role=MessageRole.ASSISTANT, content=text)
                )

            logger.info(
                "Turn completed",
                model=session.model,
                message_count=len(session.messages)
            )
            return envelope.success(session.id, session.model, text, applied)

    async def get_session(self, backend: str, session_id: str) -> Optional[ChatSession]:
        """Get a session, or None if unknown."""
        self.registry.get(backend)
        return await self.store_for(backend).get(session_id)

    async def get_history(self, backend: str, session_id: str) -> list[ChatMessage]:
        """Get a session's messages; empty when the session is unknown."""
        self.registry.get(backend)
        history = await self.store_for(backend).get_messages(session_id)
        if not history:
            logger.info("Chat history not found", backend=backend, session_id=session_id)
        return history

    async def list_models(self, backend: str) -> list[str]:
        """List models advertised by a backend."""
        return await self.registry.get(backend).list_models()

    def list_backends(self) -> list[str]:
        """List registered backend names."""
        return self.registry.list_backends()

    async def cleanup_expired(self) -> int:
        """Evict idle sessions from every store."""
        removed = 0
        for store in list(self._stores.values()):
            removed += await store.cleanup_expired()
        return removed

    async def health_check(self) -> dict[str, Any]:
        """Report registered backends and session counts."""
        return {
            "status": "healthy" if self.list_backends() else "degraded",
            "backends": self.list_backends(),
            "sessions": {
                name: store.get_stats()
                for name, store in self._stores.items()
            }
        }

    async def close(self) -> None:
        """Close all backend providers."""
        await self.registry.close()
