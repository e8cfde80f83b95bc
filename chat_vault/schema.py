"""
PostgreSQL schema for Chat Vault.

``content`` and ``encrypted_key`` columns hold envelopes and are opaque to
the database.
"""
import logging
from typing import Any

logger = logging.getLogger("chat_vault.schema")

SCHEMA_DDL = """
CREATE SCHEMA IF NOT EXISTS chat;

CREATE TABLE IF NOT EXISTS chat.conversations (
    id uuid PRIMARY KEY,
    user_id text NOT NULL,
    title text,
    created_at timestamptz NOT NULL DEFAULT NOW(),
    updated_at timestamptz NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS conversations_user_idx
    ON chat.conversations (user_id, updated_at DESC);

CREATE TABLE IF NOT EXISTS chat.messages (
    seq bigserial UNIQUE,
    id uuid PRIMARY KEY,
    conversation_id uuid NOT NULL
        REFERENCES chat.conversations (id) ON DELETE CASCADE,
    sender text NOT NULL CHECK (sender IN ('USER', 'AI')),
    content text NOT NULL,
    ai_provider text,
    created_at timestamptz NOT NULL DEFAULT clock_timestamp()
);
CREATE INDEX IF NOT EXISTS messages_conversation_idx
    ON chat.messages (conversation_id, seq);

CREATE TABLE IF NOT EXISTS chat.user_api_keys (
    id bigserial PRIMARY KEY,
    user_id text NOT NULL,
    provider_name text NOT NULL,
    encrypted_key text NOT NULL,
    created_at timestamptz NOT NULL DEFAULT NOW(),
    updated_at timestamptz NOT NULL DEFAULT NOW(),
    UNIQUE (user_id, provider_name)
);

CREATE TABLE IF NOT EXISTS chat.user_api_key_audit (
    id bigserial PRIMARY KEY,
    user_id text NOT NULL,
    provider_name text NOT NULL,
    operation text NOT NULL,
    created_at timestamptz NOT NULL DEFAULT NOW()
);
"""


async def create_schema(db_pool: Any) -> None:
    """Apply the schema DDL; safe to run on every startup."""
    async with db_pool.acquire() as conn:
        await conn.execute(SCHEMA_DDL)
    logger.info("Chat Vault schema ready")
