"""Model Availability Resolver.

Decides which model a turn runs on. Backends that verify models have
unknown model names silently replaced by their default model; the
substitution is returned to the caller rather than raised.
"""

from typing import Optional

from providers.base import LLMProvider
from shared.logging import get_logger
from shared.models import ModelResolution

logger = get_logger(__name__)


class ModelResolver:
    """Applies the model fallback policy for a provider."""

    async def resolve(
        self,
        provider: LLMProvider,
        requested: Optional[str]
    ) -> ModelResolution:
        """
        Resolve the model to use for a turn.

        Args:
            provider: Backend the turn will run on
            requested: Model named by the caller or stored on the session

        Returns:
            The decision, with substituted=True when the default model
            replaced an unavailable one
        """
        requested = requested or ""

        if not provider.verifies_models:
            return ModelResolution(requested=requested, resolved=requested)

        if await provider.is_available(requested):
            return ModelResolution(requested=requested, resolved=requested)

        # The default is used even when the backend does not list it either
        resolved = provider.default_model
        if resolved != requested:
            logger.warning(
                "Model not available, using default",
                backend=provider.name,
                model=requested,
                default_model=resolved
            )
        return ModelResolution(
            requested=requested,
            resolved=resolved,
            substituted=resolved != requested
        )
