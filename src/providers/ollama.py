"""Ollama backend adapter.

Wire format:
- GET  /api/tags  -> {"models": [{"name": ...}, ...]}
- POST /api/chat  {model, messages, stream: false}
                  -> {"message": {"role", "content"}, "done": true}

Ollama trusts the caller's model name; requested models are not checked
against /api/tags before use.
"""

from typing import Any, Optional

import httpx

from providers.base import HTTPProvider, MalformedBackendResponseError, message_payload
from shared.config import OllamaSettings
from shared.models import ChatSession


class OllamaProvider(HTTPProvider):
    """Adapter for a local or remote Ollama server."""

    name = "ollama"
    verifies_models = False
    chat_path = "/api/chat"
    models_path = "/api/tags"

    def __init__(
        self,
        settings: OllamaSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        super().__init__(
            base_url=settings.base_url,
            default_model=settings.default_model,
            timeout=settings.timeout_seconds,
            transport=transport
        )
        self.settings = settings

    def _build_chat_payload(self, session: ChatSession) -> dict[str, Any]:
        return {
            "model": session.model,
            "messages": message_payload(session),
            "stream": False,
        }

    def _parse_chat_response(self, data: Any) -> str:
        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None

        if not isinstance(content, str) or not content:
            raise MalformedBackendResponseError("Empty response from Ollama")

        return content

    def _parse_models(self, data: Any) -> list[str]:
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            raise MalformedBackendResponseError("Invalid model list from Ollama")

        return [
            m["name"] for m in models
            if isinstance(m, dict) and isinstance(m.get("name"), str)
        ]
