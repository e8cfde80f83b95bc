"""Chat Vault.

Chat backend keeping message bodies and provider API keys encrypted at rest.
"""
from .version import (
    __title__,
    __description__,
    __version__,
    __license__,
)

__all__ = ["__title__", "__description__", "__version__", "__license__"]
