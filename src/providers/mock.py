"""Mock provider for running the gateway without a backend."""

from typing import Any, Optional

from providers.base import LLMProvider
from shared.models import ChatSession


class MockProvider(LLMProvider):
    """
    In-memory provider that records calls and returns canned replies.

    Replies and failures queued with set_next_response / set_next_error
    are consumed in order; otherwise the last user message is echoed.
    """

    name = "mock"

    def __init__(
        self,
        default_model: str = "mock-model",
        models: Optional[list[str]] = None,
        verifies_models: bool = False
    ) -> None:
        super().__init__(default_model)
        self.models = models if models is not None else [default_model]
        self.verifies_models = verifies_models
        self.call_history: list[dict[str, Any]] = []
        self._queue: list[Any] = []

    def set_next_response(self, response: str) -> None:
        """Queue a reply for the next completion."""
        self._queue.append(response)

    def set_next_error(self, error: Exception) -> None:
        """Queue an exception to raise on the next completion."""
        self._queue.append(error)

    async def complete(self, session: ChatSession) -> str:
        """Return the queued reply, or echo the last user message."""
        self.call_history.append({
            "session_id": session.id,
            "model": session.model,
            "messages": [(m.role.value, m.content) for m in session.messages],
        })

        if self._queue:
            item = self._queue.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

        last = session.messages[-1].content if session.messages else ""
        return f"Echo: {last}"

    async def list_models(self) -> list[str]:
        return list(self.models)
