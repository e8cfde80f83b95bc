"""AI providers and completion backends."""

from .registry import (
    AIProvider,
    ProviderConfig,
    AI_PROVIDERS,
    default_provider,
    get_provider_config,
    resolve_provider,
)
from .backends import (
    CompletionRequest,
    CompletionResponse,
    CompletionBackend,
    MockCompletionBackend,
    BackendRegistry,
)

__all__ = [
    "AIProvider",
    "ProviderConfig",
    "AI_PROVIDERS",
    "default_provider",
    "get_provider_config",
    "resolve_provider",
    "CompletionRequest",
    "CompletionResponse",
    "CompletionBackend",
    "MockCompletionBackend",
    "BackendRegistry",
]
