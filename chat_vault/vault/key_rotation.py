"""
Vault Key Rotation — Batch re-sealing of stored envelopes under a new key.

Re-encrypts every message body and every provider API key from the old
process key to the new one in configurable batches. Each batch runs in its
own transaction for resumability. The operation is idempotent: envelopes
that already open under the new key are skipped.

Security Note:
    Plaintext exists in memory only during re-sealing of each row.
    Never log plaintext or envelope values.
"""
import logging
from typing import Any, Callable, Optional

from .crypto import EnvelopeCipher
from .credentials import cache_key

logger = logging.getLogger("chat_vault.vault")

# SQL statements
SELECT_MESSAGE_BATCH = """
SELECT seq AS cursor, id, content AS envelope
FROM chat.messages
WHERE seq > $1
ORDER BY seq
LIMIT $2
"""

UPDATE_MESSAGE = """
UPDATE chat.messages
SET content = $1
WHERE id = $2
"""

SELECT_API_KEY_BATCH = """
SELECT id AS cursor, id, encrypted_key AS envelope, user_id, provider_name
FROM chat.user_api_keys
WHERE id > $1
ORDER BY id
LIMIT $2
"""

UPDATE_API_KEY = """
UPDATE chat.user_api_keys
SET encrypted_key = $1, updated_at = NOW()
WHERE id = $2
"""


def _api_key_cache_key(row: Any) -> str:
    return cache_key(row["user_id"], row["provider_name"])


# (name, select, update, cache key of a rotated row or None)
_TABLES = (
    ("messages", SELECT_MESSAGE_BATCH, UPDATE_MESSAGE, None),
    ("user_api_keys", SELECT_API_KEY_BATCH, UPDATE_API_KEY, _api_key_cache_key),
)


async def _rotate_table(
    db_pool: Any,
    name: str,
    select_sql: str,
    update_sql: str,
    old_cipher: EnvelopeCipher,
    new_cipher: EnvelopeCipher,
    batch_size: int,
    redis: Any = None,
    row_cache_key: Optional[Callable[[Any], str]] = None,
) -> dict:
    stats = {"total": 0, "rotated": 0, "errors": 0, "skipped": 0}
    cursor = 0
    batch_num = 0

    while True:
        async with db_pool.acquire() as conn:
            rows = await conn.fetch(select_sql, cursor, batch_size)

        if not rows:
            break

        batch_num += 1
        logger.info(
            "Processing %s batch %d (%d rows)", name, batch_num, len(rows),
        )

        evict = []
        async with db_pool.acquire() as conn:
            tx = conn.transaction()
            await tx.start()
            try:
                for row in rows:
                    stats["total"] += 1
                    row_id = row["id"]
                    opened = old_cipher.open(row["envelope"], record_id=row_id)
                    if not opened.ok:
                        if new_cipher.open(row["envelope"], record_id=row_id).ok:
                            stats["skipped"] += 1
                        else:
                            logger.error(
                                "Cannot open %s id=%s under either key", name, row_id,
                            )
                            stats["errors"] += 1
                        continue

                    sealed = new_cipher.seal(opened.value)
                    if not sealed.ok:
                        logger.error("Error re-sealing %s id=%s", name, row_id)
                        stats["errors"] += 1
                        continue

                    await conn.execute(update_sql, sealed.envelope, row_id)
                    stats["rotated"] += 1
                    if row_cache_key is not None:
                        evict.append(row_cache_key(row))

                await tx.commit()
            except Exception:
                await tx.rollback()
                raise

        if redis is not None and evict:
            await redis.delete(*evict)
            logger.info("Evicted %d cached %s envelopes", len(evict), name)

        cursor = rows[-1]["cursor"]

    return stats


async def rotate_encryption_key(
    db_pool: Any,
    old_cipher: EnvelopeCipher,
    new_cipher: EnvelopeCipher,
    batch_size: int = 100,
    redis: Any = None,
) -> dict:
    """Re-seal all stored envelopes from ``old_cipher`` to ``new_cipher``.

    Args:
        db_pool: asyncpg-compatible connection pool.
        old_cipher: Cipher built from the key being retired.
        new_cipher: Cipher built from the replacement key.
        batch_size: Number of rows to process per batch/transaction.
        redis: Optional Redis client of the API key envelope cache. Cached
            envelopes of rotated API keys are deleted after each batch
            commits.

    Returns:
        Stats dict per table, each with keys: total, rotated, errors, skipped.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    logger.info("Starting encryption key rotation (batch_size=%d)", batch_size)
    stats = {}
    for name, select_sql, update_sql, row_cache_key in _TABLES:
        stats[name] = await _rotate_table(
            db_pool, name, select_sql, update_sql,
            old_cipher, new_cipher, batch_size,
            redis=redis, row_cache_key=row_cache_key,
        )
    logger.info("Key rotation complete: %s", stats)
    return stats
