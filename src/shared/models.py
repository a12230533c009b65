"""Core data models for the LLM Gateway.

This module defines the shared data structures used across the gateway:
conversation state, caller-facing requests, and the response envelope.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Role of a message author within a conversation."""
    USER = "user"
    ASSISTANT = "assistant"


class ChatStatus(str, Enum):
    """Status of an orchestration call."""
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    ERROR = "Error"


class ChatErrorCode(str, Enum):
    """Machine-readable reason attached to an error envelope."""
    MODEL_NOT_SET = "model_not_set"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    MALFORMED_BACKEND_RESPONSE = "malformed_backend_response"
    INTERNAL_ERROR = "internal_error"

    @property
    def is_client_error(self) -> bool:
        """Whether the caller, not the backend, is at fault."""
        return self is ChatErrorCode.MODEL_NOT_SET


class ChatMessage(BaseModel):
    """A single message in a conversation. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class ChatSession(BaseModel):
    """
    Conversation state owned by the session store.

    The model is fixed when the session is created; messages are only
    ever appended.
    """
    id: str
    model: str
    backend: str = ""
    messages: list[ChatMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class GenerateRequest(BaseModel):
    """Caller input for starting a new session."""
    model: Optional[str] = Field(default=None, description="Model name; backend default when empty")
    prompt: str = Field(..., description="User prompt")


class ChatRequest(BaseModel):
    """Caller input for continuing a session."""
    id: str = Field(..., description="Session identifier")
    prompt: str = Field(..., description="User prompt")


class ModelResolution(BaseModel):
    """Outcome of checking a requested model against a backend."""
    requested: str
    resolved: str
    substituted: bool = False


class ChatResponse(BaseModel):
    """
    Response envelope for one orchestration call.

    Carries either the assistant text (status Completed) or an error
    message and code (status Error). Not persisted beyond the call.
    """
    model_config = ConfigDict(protected_namespaces=())

    id: str
    model: str
    response: str = ""
    status: ChatStatus
    error: Optional[str] = None
    error_code: Optional[ChatErrorCode] = None
    requested_model: Optional[str] = None
    model_substituted: bool = False
