"""Chat Vault encryption layer.

Security Note (Threat Model):
    One AES-256 key protects every stored message body and API key.
    The key lives in process memory for the process lifetime; anyone
    able to read process memory or the ``ENCRYPTION_KEY`` variable can
    open every envelope. Rotation is available via ``rotate_encryption_key``.
"""

from .config import (
    EncryptionConfig,
    ServerConfig,
    load_encryption_key,
    generate_encryption_key,
)
from .crypto import Envelope, EnvelopeCipher, SealResult, OpenResult
from .credentials import CredentialStore
from .key_rotation import rotate_encryption_key

__all__ = [
    "EncryptionConfig",
    "ServerConfig",
    "load_encryption_key",
    "generate_encryption_key",
    "Envelope",
    "EnvelopeCipher",
    "SealResult",
    "OpenResult",
    "CredentialStore",
    "rotate_encryption_key",
]
