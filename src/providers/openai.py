"""OpenAI-compatible backend adapter.

Wire format (Bearer-authenticated):
- GET  /v1/models            -> {"data": [{"id": ...}, ...]}
- POST /v1/chat/completions  {model, messages, temperature, top_p,
                              max_tokens, presence_penalty,
                              frequency_penalty}
                             -> {"choices": [{"message": {"content"}}]}
"""

from typing import Any, Optional

import httpx

from providers.base import HTTPProvider, MalformedBackendResponseError, message_payload
from shared.config import OpenAISettings
from shared.models import ChatSession


class OpenAIProvider(HTTPProvider):
    """
    Adapter for the OpenAI chat-completions API and compatible servers.

    Requested models are checked against /v1/models; see
    orchestrator.resolver for the fallback policy.
    """

    name = "openai"
    verifies_models = True
    chat_path = "/v1/chat/completions"
    models_path = "/v1/models"

    def __init__(
        self,
        settings: OpenAISettings,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        """
        Initialize the OpenAI provider.

        Raises:
            ValueError: If no API key is configured
        """
        if not settings.api_key:
            raise ValueError("OpenAI API key is not configured")

        super().__init__(
            base_url=settings.base_url,
            default_model=settings.default_model,
            timeout=settings.timeout_seconds,
            transport=transport
        )
        self.settings = settings

    def _get_headers(self) -> dict[str, str]:
        headers = super()._get_headers()
        headers["Authorization"] = f"Bearer {self.settings.api_key}"
        return headers

    def _build_chat_payload(self, session: ChatSession) -> dict[str, Any]:
        return {
            "model": session.model,
            "messages": message_payload(session),
            "temperature": self.settings.temperature,
            "top_p": self.settings.top_p,
            "max_tokens": self.settings.max_tokens,
            "presence_penalty": self.settings.presence_penalty,
            "frequency_penalty": self.settings.frequency_penalty,
        }

    def _parse_chat_response(self, data: Any) -> str:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise MalformedBackendResponseError("No response from OpenAI")

        first = choices[0]
        message = first.get("message") if isinstance(first, dict) else None
        content = message.get("content") if isinstance(message, dict) else None

        if not isinstance(content, str) or not content:
            raise MalformedBackendResponseError("Empty response from OpenAI")

        return content

    def _parse_models(self, data: Any) -> list[str]:
        models = data.get("data") if isinstance(data, dict) else None
        if not isinstance(models, list):
            raise MalformedBackendResponseError("Invalid model list from OpenAI")

        return [
            m["id"] for m in models
            if isinstance(m, dict) and isinstance(m.get("id"), str)
        ]
