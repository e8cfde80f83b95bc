"""
CredentialStore — Encrypted per-user, per-provider API key storage.

Provides the public API for user-held provider credentials:
- ``set(user_id, provider, api_key)`` — seal and upsert an API key
- ``get(user_id, provider)`` — open and return an API key (cache → DB)
- ``delete(user_id, provider)`` — remove an API key
- ``configured_providers(user_id)`` / ``status(user_id)`` — what is configured

Only envelopes are ever written to PostgreSQL or Redis. Nothing here
returns ciphertext to a client; listings expose provider names only.

Security Note:
    Never log API keys or envelopes. Only log user ids, providers and
    operations.
"""
import logging
from typing import Any, Optional

from ..exceptions import ValidationError
from ..providers import AIProvider, AI_PROVIDERS, resolve_provider
from .crypto import EnvelopeCipher

logger = logging.getLogger("chat_vault.vault")

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

UPSERT_API_KEY = """
INSERT INTO chat.user_api_keys (user_id, provider_name, encrypted_key)
VALUES ($1, $2, $3)
ON CONFLICT (user_id, provider_name)
DO UPDATE SET encrypted_key = EXCLUDED.encrypted_key,
             updated_at = NOW()
"""

SELECT_API_KEY = """
SELECT encrypted_key
FROM chat.user_api_keys
WHERE user_id = $1 AND provider_name = $2
"""

DELETE_API_KEY = """
DELETE FROM chat.user_api_keys
WHERE user_id = $1 AND provider_name = $2
"""

SELECT_PROVIDERS = """
SELECT provider_name
FROM chat.user_api_keys
WHERE user_id = $1
ORDER BY provider_name
"""

INSERT_AUDIT = """
INSERT INTO chat.user_api_key_audit (user_id, provider_name, operation)
VALUES ($1, $2, $3)
"""


def cache_key(user_id: str, provider_name: str) -> str:
    """Redis key holding the cached envelope for one (user, provider)."""
    return f"apikey:{user_id}:{provider_name}"


def _affected_rows(status: str) -> int:
    """Row count from an asyncpg command status such as ``'DELETE 1'``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


class CredentialStore:
    """Encrypted store of provider API keys, one per (user, provider).

    Lookup order for ``get()``: Redis envelope cache → PostgreSQL.
    Redis holds envelopes only, so a cache dump reveals nothing without
    the process key.
    """

    def __init__(
        self,
        cipher: EnvelopeCipher,
        db_pool: Any,
        redis: Any = None,
        cache_ttl: int = 3600,
    ):
        self._cipher = cipher
        self._db = db_pool
        self._redis = redis
        self._ttl = cache_ttl

    # ------------------------------------------------------------------
    # Redis helpers
    # ------------------------------------------------------------------

    def _redis_key(self, user_id: str, provider: AIProvider) -> str:
        """Build Redis cache key."""
        return cache_key(user_id, provider.value)

    async def _redis_set(self, user_id: str, provider: AIProvider, envelope: str) -> None:
        """Write envelope to Redis with TTL. No-op if Redis is None."""
        if self._redis is not None:
            await self._redis.setex(
                self._redis_key(user_id, provider), self._ttl, envelope,
            )

    async def _redis_get(self, user_id: str, provider: AIProvider) -> Optional[str]:
        """Read envelope from Redis. Returns None if not found or no Redis."""
        if self._redis is None:
            return None
        cached = await self._redis.get(self._redis_key(user_id, provider))
        if isinstance(cached, bytes):
            cached = cached.decode("ascii", errors="replace")
        return cached

    async def _redis_delete(self, user_id: str, provider: AIProvider) -> None:
        """Remove envelope from Redis cache. No-op if Redis is None."""
        if self._redis is not None:
            await self._redis.delete(self._redis_key(user_id, provider))

    # ------------------------------------------------------------------
    # Audit helper
    # ------------------------------------------------------------------

    async def _audit(self, conn: Any, user_id: str, provider: AIProvider, operation: str) -> None:
        """Insert an audit log entry."""
        await conn.execute(INSERT_AUDIT, user_id, provider.value, operation)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def set(self, user_id: str, provider: str, api_key: str) -> AIProvider:
        """Seal and persist an API key, replacing any previous one.

        Args:
            user_id: Owner of the key.
            provider: Provider identifier (``openai``, ``anthropic``, ...).
            api_key: Plaintext API key.

        Returns:
            The resolved provider.

        Raises:
            ProviderError: If ``provider`` is unknown.
            ValidationError: If ``api_key`` is empty.
            EncryptionFailure: If sealing fails; nothing is persisted.
        """
        provider_id = resolve_provider(provider)
        if not isinstance(api_key, str) or not api_key:
            raise ValidationError("Provider name and API key are required.")

        envelope = self._cipher.seal(api_key).unwrap()

        async with self._db.acquire() as conn:
            await conn.execute(UPSERT_API_KEY, user_id, provider_id.value, envelope)
            await self._audit(conn, user_id, provider_id, "set")

        await self._redis_set(user_id, provider_id, envelope)
        logger.info("API key set: user=%s provider=%s", user_id, provider_id.value)
        return provider_id

    async def get(self, user_id: str, provider: str) -> Optional[str]:
        """Open and return an API key.

        A cached envelope that fails to open is evicted and the database
        copy is used instead. Only envelopes that open are cached.

        Returns:
            The plaintext key, or None when no key is stored or the stored
            envelope cannot be opened.
        """
        provider_id = resolve_provider(provider)
        record_id = self._redis_key(user_id, provider_id)

        cached = await self._redis_get(user_id, provider_id)
        if cached is not None:
            result = self._cipher.open(cached, record_id=record_id)
            if result.ok:
                return result.value
            # stale (e.g. sealed under a retired key) or corrupt: go to the DB
            logger.info(
                "Evicting unreadable cached API key: user=%s provider=%s",
                user_id, provider_id.value,
            )
            await self._redis_delete(user_id, provider_id)

        async with self._db.acquire() as conn:
            envelope = await conn.fetchval(
                SELECT_API_KEY, user_id, provider_id.value,
            )
        if envelope is None:
            return None

        result = self._cipher.open(envelope, record_id=record_id)
        if not result.ok:
            logger.warning(
                "Failed to open API key for user=%s provider=%s",
                user_id, provider_id.value,
            )
            return None
        await self._redis_set(user_id, provider_id, envelope)
        return result.value

    async def delete(self, user_id: str, provider: str) -> bool:
        """Delete an API key.

        Returns:
            True if a key existed and was removed, False otherwise.
        """
        provider_id = resolve_provider(provider)

        await self._redis_delete(user_id, provider_id)

        async with self._db.acquire() as conn:
            status = await conn.execute(DELETE_API_KEY, user_id, provider_id.value)
            deleted = _affected_rows(status) > 0
            if deleted:
                await self._audit(conn, user_id, provider_id, "delete")

        logger.info(
            "API key delete: user=%s provider=%s deleted=%s",
            user_id, provider_id.value, deleted,
        )
        return deleted

    async def configured_providers(self, user_id: str) -> list[str]:
        """List provider ids for which ``user_id`` has a key."""
        async with self._db.acquire() as conn:
            rows = await conn.fetch(SELECT_PROVIDERS, user_id)
        return [row["provider_name"] for row in rows]

    async def status(self, user_id: str) -> dict[str, bool]:
        """Map every known provider to whether a key is configured."""
        configured = set(await self.configured_providers(user_id))
        return {p.id.value: p.id.value in configured for p in AI_PROVIDERS}
