"""AI provider identifiers and their display configuration."""
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from ..exceptions import ProviderError


class AIProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    COHERE = "cohere"


class ProviderConfig(BaseModel):
    id: AIProvider
    name: str

    model_config = {"frozen": True}


AI_PROVIDERS: tuple[ProviderConfig, ...] = (
    ProviderConfig(id=AIProvider.OPENAI, name="OpenAI (GPT)"),
    ProviderConfig(id=AIProvider.ANTHROPIC, name="Anthropic (Claude)"),
    ProviderConfig(id=AIProvider.COHERE, name="Cohere"),
)


def default_provider() -> ProviderConfig:
    return AI_PROVIDERS[0]


def get_provider_config(provider: str) -> Optional[ProviderConfig]:
    """Return the configuration for ``provider`` or None if unknown."""
    for config in AI_PROVIDERS:
        if config.id.value == provider:
            return config
    return None


def resolve_provider(provider: Optional[str]) -> AIProvider:
    """Validate a provider identifier.

    Raises:
        ProviderError: If ``provider`` is empty or not a known provider.
    """
    config = get_provider_config(provider) if provider else None
    if config is None:
        raise ProviderError(f"Invalid AI provider: {provider!r}")
    return config.id
