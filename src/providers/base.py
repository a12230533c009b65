"""Provider capability interface and shared HTTP plumbing.

Every backend adapter translates a session's history into the backend's
native chat schema, performs a single network call, and extracts the
assistant text from the reply. Adapters never touch session history;
the orchestrator owns appends.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from shared.logging import get_logger
from shared.models import ChatSession

logger = get_logger(__name__)


class ProviderError(Exception):
    """Base exception for backend adapter errors."""
    pass


class BackendUnavailableError(ProviderError):
    """Transport failure, timeout, or non-success status from the backend."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        """Whether a retry may succeed (no reply at all, or a 5xx)."""
        return self.status_code is None or self.status_code >= 500


class MalformedBackendResponseError(ProviderError):
    """Backend replied, but the payload holds no usable assistant message."""
    pass


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, BackendUnavailableError) and exc.transient


class LLMProvider(ABC):
    """
    Abstract capability interface for LLM backends.

    Attributes:
        name: Registry key for the backend (e.g. "ollama")
        default_model: Model used when the caller names none, and as the
            fallback when a requested model is unavailable
        verifies_models: Whether requested models are checked against the
            backend's model list before use
    """

    name: str = "base"
    verifies_models: bool = False

    def __init__(self, default_model: str) -> None:
        self.default_model = default_model

    @abstractmethod
    async def complete(self, session: ChatSession) -> str:
        """
        Send the session's full history to the backend.

        Args:
            session: Session whose messages (ending with the new user
                prompt) are translated into the backend request

        Returns:
            Assistant reply text from the first choice

        Raises:
            BackendUnavailableError: If the call fails or times out
            MalformedBackendResponseError: If the reply has no usable content
        """
        pass

    @abstractmethod
    async def list_models(self) -> list[str]:
        """Return model names the backend advertises; empty on any failure."""
        pass

    async def is_available(self, model: Optional[str]) -> bool:
        """Case-insensitive membership test of model in list_models()."""
        if not model:
            return False

        wanted = model.lower()
        return any(m.lower() == wanted for m in await self.list_models())

    async def close(self) -> None:
        """Release any network resources held by the provider."""
        pass

    async def __aenter__(self) -> "LLMProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class HTTPProvider(LLMProvider):
    """
    Base for providers that talk JSON over HTTP.

    Manages a lazily created httpx.AsyncClient and maps httpx failures
    onto the provider error taxonomy.
    """

    chat_path: str = ""
    models_path: str = ""

    def __init__(
        self,
        base_url: str,
        default_model: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        """
        Initialize the HTTP provider.

        Args:
            base_url: Backend base URL
            default_model: Default model name
            timeout: Request timeout in seconds
            transport: Optional transport override (used by tests)
        """
        super().__init__(default_model)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_headers(self) -> dict[str, str]:
        """Get request headers."""
        return {"Content-Type": "application/json"}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self._get_headers(),
                transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request_json(
        self,
        method: str,
        path: str,
        payload: Optional[dict[str, Any]] = None
    ) -> Any:
        """
        Perform one request and decode the JSON body.

        Raises:
            BackendUnavailableError: On any httpx request error and on
                non-success status codes
            MalformedBackendResponseError: If the body is not valid JSON
        """
        try:
            client = await self._get_client()
            response = await client.request(method, path, json=payload)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise BackendUnavailableError(f"{self.name} request timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise BackendUnavailableError(
                f"{self.name} returned HTTP {e.response.status_code}",
                status_code=e.response.status_code
            ) from e
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"Cannot connect to {self.name}: {e}") from e
        except httpx.RequestError as e:
            raise BackendUnavailableError(f"{self.name} request failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise MalformedBackendResponseError(
                f"Invalid JSON from {self.name}: {e}"
            ) from e

    @abstractmethod
    def _build_chat_payload(self, session: ChatSession) -> dict[str, Any]:
        """Translate the session into the backend's native request body."""
        pass

    @abstractmethod
    def _parse_chat_response(self, data: Any) -> str:
        """Extract assistant text from the backend's reply body."""
        pass

    @abstractmethod
    def _parse_models(self, data: Any) -> list[str]:
        """Extract model names from the backend's model listing."""
        pass

    async def complete(self, session: ChatSession) -> str:
        """Send the session history in one request; never retried."""
        payload = self._build_chat_payload(session)

        logger.debug(
            "Sending chat request",
            backend=self.name,
            model=payload.get("model"),
            message_count=len(session.messages)
        )

        data = await self._request_json("POST", self.chat_path, payload)
        return self._parse_chat_response(data)

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        reraise=True
    )
    async def _fetch_models(self) -> list[str]:
        data = await self._request_json("GET", self.models_path)
        return self._parse_models(data)

    async def list_models(self) -> list[str]:
        """List models; listing is best-effort, so failures yield []."""
        try:
            return await self._fetch_models()
        except ProviderError as e:
            logger.error("Failed to list models", backend=self.name, error=str(e))
            return []


def message_payload(session: ChatSession) -> list[dict[str, str]]:
    """Render the session history as [{role, content}, ...]."""
    return [
        {"role": m.role.value, "content": m.content}
        for m in session.messages
    ]
