"""LLM backend adapters.

Each adapter translates conversation history to a backend's wire
protocol and performs the network call.
"""

from providers.base import (
    BackendUnavailableError,
    LLMProvider,
    MalformedBackendResponseError,
    ProviderError,
)
from providers.registry import (
    ProviderRegistry,
    UnknownBackendError,
    build_registry,
    create_provider,
)

__all__ = [
    "BackendUnavailableError",
    "LLMProvider",
    "MalformedBackendResponseError",
    "ProviderError",
    "ProviderRegistry",
    "UnknownBackendError",
    "build_registry",
    "create_provider",
]
