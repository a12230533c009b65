"""Shared models, configuration and logging for the LLM Gateway."""

from shared.models import (
    ChatErrorCode,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatSession,
    ChatStatus,
    GenerateRequest,
    MessageRole,
    ModelResolution,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "ChatErrorCode",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatSession",
    "ChatStatus",
    "GenerateRequest",
    "MessageRole",
    "ModelResolution",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
