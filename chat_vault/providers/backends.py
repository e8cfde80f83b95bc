"""
Completion backends — the capability interface used to produce AI replies.

Each backend implements ``complete(request) -> CompletionResponse`` for one
provider; ``BackendRegistry`` selects the backend by provider id. Vendor SDK
bindings are registered by the deployment; the mock backend is always
available as the fallback.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, Field

from .registry import AIProvider, get_provider_config

logger = logging.getLogger("chat_vault.providers")


class CompletionRequest(BaseModel):
    prompt: str
    provider: AIProvider
    api_key: str = Field(repr=False)
    model: Optional[str] = None
    max_tokens: int = Field(default=1000, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class CompletionResponse(BaseModel):
    content: str = ""
    provider: AIProvider
    model_used: Optional[str] = None
    error: Optional[str] = None


class CompletionBackend(ABC):
    """Produces a reply for one provider."""

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Return the completion, reporting vendor failures in ``error``."""
        ...


class MockCompletionBackend(CompletionBackend):
    """Echo backend used when no vendor binding is registered."""

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        config = get_provider_config(request.provider.value)
        return CompletionResponse(
            content=f'Mock response from {config.name} for: "{request.prompt}"',
            provider=request.provider,
            model_used=request.model or f"mock-{request.provider.value}",
        )


class BackendRegistry:
    """Lookup table of provider id → completion backend."""

    def __init__(self, fallback: Optional[CompletionBackend] = None):
        self._backends: dict[AIProvider, CompletionBackend] = {}
        self._fallback = fallback or MockCompletionBackend()

    def register(self, provider: AIProvider, backend: CompletionBackend) -> None:
        self._backends[AIProvider(provider)] = backend
        logger.debug("Registered completion backend for %s", provider)

    def get(self, provider: AIProvider) -> CompletionBackend:
        return self._backends.get(provider, self._fallback)

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Dispatch ``request`` to its provider's backend.

        Exceptions escaping a backend are reported in ``error`` instead.
        """
        backend = self.get(request.provider)
        try:
            return await backend.complete(request)
        except Exception as err:
            logger.error(
                "Completion backend for %s raised %s",
                request.provider.value, err.__class__.__name__,
            )
            return CompletionResponse(
                provider=request.provider,
                model_used=request.model,
                error=str(err) or err.__class__.__name__,
            )
