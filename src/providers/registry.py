"""Provider Registry.

Maps backend names to provider instances so the orchestrator can
dispatch turns without per-backend branching.
"""

from typing import Callable, Optional

from providers.base import LLMProvider
from providers.mock import MockProvider
from providers.ollama import OllamaProvider
from providers.openai import OpenAIProvider
from shared.config import Settings
from shared.logging import get_logger

logger = get_logger(__name__)


class UnknownBackendError(KeyError):
    """Requested backend is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Unknown backend: {self.name}"


class ProviderRegistry:
    """Central registry of configured LLM providers."""

    def __init__(self) -> None:
        self._providers: dict[str, LLMProvider] = {}

    def register(self, provider: LLMProvider, name: Optional[str] = None) -> None:
        """
        Register a provider.

        Args:
            provider: Provider instance
            name: Registry key; defaults to provider.name

        Raises:
            ValueError: If the name is already registered
        """
        key = name or provider.name
        if key in self._providers:
            raise ValueError(f"Backend '{key}' is already registered")

        self._providers[key] = provider
        logger.info(
            "Backend registered",
            backend=key,
            default_model=provider.default_model,
            verifies_models=provider.verifies_models
        )

    def get(self, name: str) -> LLMProvider:
        """
        Look up a provider by backend name.

        Raises:
            UnknownBackendError: If no provider is registered under name
        """
        provider = self._providers.get(name)
        if provider is None:
            raise UnknownBackendError(name)
        return provider

    def __contains__(self, name: str) -> bool:
        return name in self._providers

    def list_backends(self) -> list[str]:
        """List registered backend names."""
        return sorted(self._providers)

    async def close(self) -> None:
        """Close every registered provider."""
        for provider in self._providers.values():
            await provider.close()


_FACTORIES: dict[str, Callable[[Settings], LLMProvider]] = {
    "ollama": lambda s: OllamaProvider(s.ollama),
    "openai": lambda s: OpenAIProvider(s.openai),
    "mock": lambda s: MockProvider(),
}


def create_provider(name: str, settings: Settings) -> LLMProvider:
    """
    Factory function to create a provider by backend name.

    Supports:
    - ollama: Ollama server
    - openai: OpenAI-compatible API
    - mock: Offline mock provider

    Raises:
        ValueError: If the backend is unsupported or misconfigured
    """
    factory = _FACTORIES.get(name)
    if not factory:
        raise ValueError(
            f"Unsupported backend: {name}. "
            f"Supported: {list(_FACTORIES.keys())}"
        )

    return factory(settings)


def build_registry(settings: Settings) -> ProviderRegistry:
    """
    Build a registry holding every backend named in settings.

    Backends whose configuration is invalid are logged and left out.
    """
    registry = ProviderRegistry()

    for name in settings.gateway.backends:
        if name in registry:
            logger.warning("Duplicate backend in settings ignored", backend=name)
            continue
        try:
            provider = create_provider(name, settings)
        except ValueError as e:
            logger.error("Backend disabled", backend=name, error=str(e))
            continue
        registry.register(provider, name)

    return registry
