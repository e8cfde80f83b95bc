"""
Vault Crypto Core — Envelope sealing and opening for text stored at rest.

Envelope format (all fields lowercase hex, joined by ':'):

    <iv 16B>:<ciphertext>:<GCM tag 16B>

- Cipher: AES-256-GCM, empty associated data.
- IV: fresh random 128-bit value per seal call.
- Ciphertext length equals the UTF-8 plaintext length.

``seal`` and ``open`` never raise; they return ``SealResult`` / ``OpenResult``.
Malformed and tampered envelopes fail identically from the caller's view.

Security Note:
    Never log plaintext, ciphertext or envelope values.
    Only log record identifiers and error classes.
"""
import os
import re
import logging
from typing import Any, Iterable, Optional

from pydantic import BaseModel
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import (
    EnvelopeError,
    FormatError,
    AuthenticationError,
    EncryptionFailure,
)
from .config import EncryptionConfig, IV_SIZE, TAG_SIZE

logger = logging.getLogger("chat_vault.vault")

DELIMITER = ":"

_HEX_PATTERN = re.compile(r"[0-9a-fA-F]*")


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

def _unhex(field: str, name: str) -> bytes:
    if len(field) % 2 or not _HEX_PATTERN.fullmatch(field):
        raise FormatError(f"envelope {name} is not valid hex")
    return bytes.fromhex(field)


class Envelope(BaseModel):
    """Decoded envelope fields."""

    iv: bytes
    ciphertext: bytes
    tag: bytes

    model_config = {"frozen": True}

    @classmethod
    def parse(cls, text: str) -> "Envelope":
        """Split and hex-decode an envelope string.

        Raises:
            FormatError: wrong number of fields, bad hex, or bad iv/tag size.
        """
        if not isinstance(text, str):
            raise FormatError("envelope must be a string")
        parts = text.split(DELIMITER)
        if len(parts) != 3:
            raise FormatError(
                f"envelope must have 3 fields, got {len(parts)}"
            )
        iv_hex, ct_hex, tag_hex = parts
        iv = _unhex(iv_hex, "iv")
        ciphertext = _unhex(ct_hex, "ciphertext")
        tag = _unhex(tag_hex, "tag")
        if len(iv) != IV_SIZE:
            raise FormatError(f"envelope iv must be {IV_SIZE} bytes, got {len(iv)}")
        if len(tag) != TAG_SIZE:
            raise FormatError(f"envelope tag must be {TAG_SIZE} bytes, got {len(tag)}")
        return cls(iv=iv, ciphertext=ciphertext, tag=tag)

    def __str__(self) -> str:
        return DELIMITER.join(
            (self.iv.hex(), self.ciphertext.hex(), self.tag.hex())
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class SealResult(BaseModel):
    """Outcome of ``EnvelopeCipher.seal``."""

    envelope: Optional[str] = None
    error: Optional[EnvelopeError] = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> str:
        """Return the envelope or raise the recorded failure."""
        if self.error is not None:
            raise self.error
        return self.envelope


class OpenResult(BaseModel):
    """Outcome of ``EnvelopeCipher.open``.

    A failed open carries the error but callers should only branch on
    ``ok``: format and authentication failures are handled the same way.
    """

    value: Optional[str] = None
    error: Optional[EnvelopeError] = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @property
    def ok(self) -> bool:
        return self.error is None

    def value_or(self, default: Any) -> Any:
        return self.value if self.error is None else default


# ---------------------------------------------------------------------------
# Cipher
# ---------------------------------------------------------------------------

class EnvelopeCipher:
    """Seal and open envelopes under one process-wide key.

    Stateless apart from the key; safe to share between concurrent tasks.
    """

    def __init__(self, config: EncryptionConfig):
        self._aead = AESGCM(config.key)
        self.placeholder = config.placeholder

    def seal(self, plaintext: str) -> SealResult:
        """Encrypt ``plaintext`` into an envelope string.

        Args:
            plaintext: UTF-8 text to protect; may be empty.

        Returns:
            SealResult carrying the envelope or an ``EncryptionFailure``.
        """
        if not isinstance(plaintext, str):
            return SealResult(error=EncryptionFailure("plaintext must be a string"))
        try:
            iv = os.urandom(IV_SIZE)
            sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        except Exception as err:
            logger.error("Envelope seal failed: %s", err.__class__.__name__)
            return SealResult(error=EncryptionFailure(err.__class__.__name__))
        envelope = Envelope(
            iv=iv, ciphertext=sealed[:-TAG_SIZE], tag=sealed[-TAG_SIZE:]
        )
        return SealResult(envelope=str(envelope))

    def open(self, envelope: str, record_id: Any = None) -> OpenResult:
        """Decrypt an envelope string.

        Args:
            envelope: String produced by ``seal``.
            record_id: Identifier used only for log context.

        Returns:
            OpenResult carrying the plaintext, or a ``FormatError`` /
            ``AuthenticationError``.
        """
        try:
            parsed = Envelope.parse(envelope)
            try:
                data = self._aead.decrypt(
                    parsed.iv, parsed.ciphertext + parsed.tag, None
                )
            except InvalidTag:
                raise AuthenticationError("authentication tag mismatch") from None
            try:
                return OpenResult(value=data.decode("utf-8"))
            except UnicodeDecodeError:
                raise AuthenticationError("plaintext is not valid UTF-8") from None
        except EnvelopeError as err:
            logger.warning(
                "Envelope open failed record=%s reason=%s",
                record_id, err.__class__.__name__,
            )
            return OpenResult(error=err)
        except Exception as err:
            logger.error(
                "Envelope open error record=%s: %s",
                record_id, err.__class__.__name__,
            )
            return OpenResult(error=AuthenticationError(err.__class__.__name__))

    def open_or(self, envelope: str, placeholder: Optional[str] = None, record_id: Any = None) -> str:
        """Return the plaintext, or ``placeholder`` when the envelope won't open."""
        if placeholder is None:
            placeholder = self.placeholder
        return self.open(envelope, record_id=record_id).value_or(placeholder)

    def open_many(self, items: Iterable[tuple[Any, str]]) -> list[OpenResult]:
        """Open a batch of ``(record_id, envelope)`` pairs, one result per pair."""
        return [self.open(envelope, record_id=record_id) for record_id, envelope in items]
