"""Conversation Orchestrator.

Owns conversation state, resolves models, and dispatches turns to
backend adapters.
"""

from orchestrator.sessions import SessionStore
from orchestrator.resolver import ModelResolver
from orchestrator.gateway import ConversationOrchestrator

__all__ = [
    "SessionStore",
    "ModelResolver",
    "ConversationOrchestrator",
]
