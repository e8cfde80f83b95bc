"""
Vault Configuration — Encryption key loading and validated settings.

Reads the process encryption key from the environment:
    ENCRYPTION_KEY = <64 hex characters, 32-byte AES-256 key>

The key is validated once at startup; a missing or malformed key is fatal.

Security Note:
    Never log key material. Only log lengths and variable names.
"""
import os
import re
import secrets
import logging
from typing import Optional

import pydantic
from pydantic import BaseModel, Field, field_validator

from ..conf import (
    ENCRYPTION_KEY_ENV,
    DECRYPTION_PLACEHOLDER,
    DSN_ENV,
    REDIS_URL_ENV,
    HOST_ENV,
    PORT_ENV,
    API_KEY_TTL_ENV,
    LOG_LEVEL_ENV,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_API_KEY_TTL,
    DEFAULT_LOG_LEVEL,
)
from ..exceptions import ConfigurationError

logger = logging.getLogger("chat_vault.vault")

KEY_LENGTH = 32  # AES-256
IV_SIZE = 16  # 128-bit nonce, kept for compatibility with stored envelopes
TAG_SIZE = 16  # GCM tag

_HEX_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]+$")


def load_encryption_key(value: Optional[str] = None) -> bytes:
    """Load and validate the process encryption key.

    Args:
        value: Hex-encoded key. When omitted, read from ``ENCRYPTION_KEY``.

    Returns:
        Raw 32-byte key.

    Raises:
        ConfigurationError: If the key is absent, not hex, or does not
            decode to exactly 32 bytes.
    """
    if value is None:
        value = os.environ.get(ENCRYPTION_KEY_ENV)
    if not value:
        raise ConfigurationError(
            f"{ENCRYPTION_KEY_ENV} is not set. "
            f"Set it to a {KEY_LENGTH * 2}-character hex string ({KEY_LENGTH} bytes)"
        )
    value = value.strip()
    if len(value) != KEY_LENGTH * 2:
        raise ConfigurationError(
            f"{ENCRYPTION_KEY_ENV} must be {KEY_LENGTH * 2} hex characters, "
            f"got {len(value)}"
        )
    if not _HEX_KEY_PATTERN.match(value):
        raise ConfigurationError(
            f"{ENCRYPTION_KEY_ENV} must contain only hexadecimal characters"
        )
    return bytes.fromhex(value)


def generate_encryption_key() -> str:
    """Generate a random 32-byte key and return it as a hex string.

    This is a utility for operators to provision ``ENCRYPTION_KEY``.
    """
    return secrets.token_hex(KEY_LENGTH)


class EncryptionConfig(BaseModel):
    """Validated, immutable encryption configuration."""

    key: bytes = Field(repr=False)
    placeholder: str = Field(default=DECRYPTION_PLACEHOLDER, min_length=1)
    api_key_cache_ttl: int = Field(default=DEFAULT_API_KEY_TTL, ge=60)

    model_config = {"frozen": True}

    @field_validator("key")
    @classmethod
    def validate_key_length(cls, v: bytes) -> bytes:
        """Ensure the key is exactly 32 bytes."""
        if len(v) != KEY_LENGTH:
            raise ValueError(
                f"encryption key must be exactly {KEY_LENGTH} bytes, got {len(v)}"
            )
        return v

    @classmethod
    def from_key(cls, key: bytes, **kwargs) -> "EncryptionConfig":
        """Build a config from raw key bytes, raising ConfigurationError."""
        try:
            return cls(key=key, **kwargs)
        except pydantic.ValidationError as err:
            raise ConfigurationError(str(err)) from None

    @classmethod
    def from_hex(cls, value: str, **kwargs) -> "EncryptionConfig":
        """Build a config from a hex-encoded key."""
        return cls.from_key(load_encryption_key(value), **kwargs)

    @classmethod
    def from_env(cls) -> "EncryptionConfig":
        """Create EncryptionConfig by loading values from environment.

        Raises:
            ConfigurationError: If ``ENCRYPTION_KEY`` is absent or invalid.
        """
        key = load_encryption_key()
        try:
            ttl = int(os.environ.get(API_KEY_TTL_ENV, DEFAULT_API_KEY_TTL))
        except ValueError:
            raise ConfigurationError(f"{API_KEY_TTL_ENV} must be an integer") from None
        config = cls.from_key(key, api_key_cache_ttl=ttl)
        logger.debug("Encryption key loaded (%d bytes)", len(config.key))
        return config


class ServerConfig(BaseModel):
    """Validated HTTP server and storage settings."""

    dsn: str = Field(min_length=1)
    redis_url: Optional[str] = None
    host: str = Field(default=DEFAULT_HOST)
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    log_level: str = Field(default=DEFAULT_LOG_LEVEL)

    model_config = {"frozen": True}

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a standard logging level name."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unsupported log level: {v}")
        return level

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create ServerConfig by loading values from environment."""
        dsn = os.environ.get(DSN_ENV)
        if not dsn:
            raise ConfigurationError(f"{DSN_ENV} environment variable is not set")
        try:
            return cls(
                dsn=dsn,
                redis_url=os.environ.get(REDIS_URL_ENV) or None,
                host=os.environ.get(HOST_ENV, DEFAULT_HOST),
                port=int(os.environ.get(PORT_ENV, DEFAULT_PORT)),
                log_level=os.environ.get(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL),
            )
        except (ValueError, pydantic.ValidationError) as err:
            raise ConfigurationError(str(err)) from None
