"""
Shared fixtures: test keys, ciphers, and in-memory fakes of the asyncpg
pool and Redis client.

The fake connection dispatches on the SQL statement constants of the
modules under test, so any statement it does not know fails loudly.
"""
import uuid
import itertools
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

from chat_vault.chat import pipeline as pipeline_sql
from chat_vault.schema import SCHEMA_DDL
from chat_vault.vault import credentials as credentials_sql
from chat_vault.vault import key_rotation as rotation_sql
from chat_vault.vault import CredentialStore, EncryptionConfig, EnvelopeCipher
from chat_vault.chat import MessagePipeline


KEY_A = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
KEY_B = "ffeeddccbbaa99887766554433221100ffeeddccbbaa99887766554433221100"


# --- Fake PostgreSQL ---

class FakeDatabase:
    """Table state shared by every connection of a FakePool."""

    def __init__(self):
        self.conversations: dict[uuid.UUID, dict] = {}
        self.messages: list[dict] = []
        self.api_keys: dict[tuple[str, str], dict] = {}
        self.audit: list[dict] = []
        # statements that raise when run, to exercise rollback paths
        self.failing: set[str] = set()
        self.transactions: list["FakeTransaction"] = []
        self._seq = itertools.count(1)
        self._key_ids = itertools.count(1)
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        self._clock += timedelta(milliseconds=1)
        return self._clock

    # Each handler returns (rows, status).

    def upsert_api_key(self, user_id, provider, envelope):
        current = self.api_keys.get((user_id, provider))
        if current is None:
            self.api_keys[(user_id, provider)] = {
                "id": next(self._key_ids),
                "user_id": user_id,
                "provider_name": provider,
                "encrypted_key": envelope,
            }
        else:
            current["encrypted_key"] = envelope
        return [], "INSERT 0 1"

    def select_api_key(self, user_id, provider):
        row = self.api_keys.get((user_id, provider))
        return ([{"encrypted_key": row["encrypted_key"]}] if row else []), "SELECT"

    def delete_api_key(self, user_id, provider):
        row = self.api_keys.pop((user_id, provider), None)
        return [], f"DELETE {1 if row else 0}"

    def select_providers(self, user_id):
        names = sorted(p for (u, p) in self.api_keys if u == user_id)
        return [{"provider_name": n} for n in names], "SELECT"

    def insert_audit(self, user_id, provider, operation):
        self.audit.append(
            {"user_id": user_id, "provider_name": provider, "operation": operation}
        )
        return [], "INSERT 0 1"

    def insert_conversation(self, conv_id, user_id, title):
        now = self.now()
        row = {
            "id": conv_id, "user_id": user_id, "title": title,
            "created_at": now, "updated_at": now,
        }
        self.conversations[conv_id] = row
        return [dict(row)], "INSERT 0 1"

    def select_conversation(self, conv_id, user_id):
        row = self.conversations.get(conv_id)
        if row is None or row["user_id"] != user_id:
            return [], "SELECT"
        return [dict(row)], "SELECT"

    def list_conversations(self, user_id):
        rows = []
        for conv in self.conversations.values():
            if conv["user_id"] != user_id:
                continue
            count = sum(1 for m in self.messages if m["conversation_id"] == conv["id"])
            rows.append(dict(conv, message_count=count))
        rows.sort(key=lambda r: r["updated_at"], reverse=True)
        return rows, "SELECT"

    def insert_message(self, msg_id, conv_id, sender, content, ai_provider):
        row = {
            "seq": next(self._seq), "id": msg_id, "conversation_id": conv_id,
            "sender": sender, "content": content, "ai_provider": ai_provider,
            "created_at": self.now(),
        }
        self.messages.append(row)
        return [{k: row[k] for k in ("id", "conversation_id", "sender", "ai_provider", "created_at")}], "INSERT 0 1"

    def touch_conversation(self, conv_id):
        self.conversations[conv_id]["updated_at"] = self.now()
        return [], "UPDATE 1"

    def select_messages(self, conv_id):
        rows = [dict(m) for m in self.messages if m["conversation_id"] == conv_id]
        rows.sort(key=lambda r: r["seq"])
        return rows, "SELECT"

    def message_batch(self, cursor, limit):
        rows = sorted(
            (m for m in self.messages if m["seq"] > cursor), key=lambda m: m["seq"],
        )[:limit]
        return [{"cursor": m["seq"], "id": m["id"], "envelope": m["content"]} for m in rows], "SELECT"

    def update_message(self, envelope, msg_id):
        for m in self.messages:
            if m["id"] == msg_id:
                m["content"] = envelope
        return [], "UPDATE 1"

    def api_key_batch(self, cursor, limit):
        rows = sorted(
            (k for k in self.api_keys.values() if k["id"] > cursor), key=lambda k: k["id"],
        )[:limit]
        return [
            {
                "cursor": k["id"],
                "id": k["id"],
                "envelope": k["encrypted_key"],
                "user_id": k["user_id"],
                "provider_name": k["provider_name"],
            }
            for k in rows
        ], "SELECT"

    def update_api_key(self, envelope, key_id):
        for k in self.api_keys.values():
            if k["id"] == key_id:
                k["encrypted_key"] = envelope
        return [], "UPDATE 1"

    def ddl(self):
        return [], "CREATE"


_STATEMENTS = {
    credentials_sql.UPSERT_API_KEY: FakeDatabase.upsert_api_key,
    credentials_sql.SELECT_API_KEY: FakeDatabase.select_api_key,
    credentials_sql.DELETE_API_KEY: FakeDatabase.delete_api_key,
    credentials_sql.SELECT_PROVIDERS: FakeDatabase.select_providers,
    credentials_sql.INSERT_AUDIT: FakeDatabase.insert_audit,
    pipeline_sql.INSERT_CONVERSATION: FakeDatabase.insert_conversation,
    pipeline_sql.SELECT_CONVERSATION: FakeDatabase.select_conversation,
    pipeline_sql.LIST_CONVERSATIONS: FakeDatabase.list_conversations,
    pipeline_sql.INSERT_MESSAGE: FakeDatabase.insert_message,
    pipeline_sql.TOUCH_CONVERSATION: FakeDatabase.touch_conversation,
    pipeline_sql.SELECT_MESSAGES: FakeDatabase.select_messages,
    rotation_sql.SELECT_MESSAGE_BATCH: FakeDatabase.message_batch,
    rotation_sql.UPDATE_MESSAGE: FakeDatabase.update_message,
    rotation_sql.SELECT_API_KEY_BATCH: FakeDatabase.api_key_batch,
    rotation_sql.UPDATE_API_KEY: FakeDatabase.update_api_key,
    SCHEMA_DDL: FakeDatabase.ddl,
}


class FakeTransaction:
    """Snapshots conversations and messages on start; rollback restores them."""

    def __init__(self, db: FakeDatabase):
        self._db = db
        self._snapshot = None
        self.state = "new"

    async def start(self):
        self._snapshot = (dict(self._db.conversations), list(self._db.messages))
        self.state = "started"

    async def commit(self):
        self.state = "committed"

    async def rollback(self):
        self._db.conversations, self._db.messages = self._snapshot
        self.state = "rolled_back"


class FakeConnection:
    def __init__(self, db: FakeDatabase):
        self._db = db
        self.statements: list[str] = []

    def _run(self, query, args):
        handler = _STATEMENTS.get(query)
        if handler is None:
            raise AssertionError(f"unexpected SQL: {query.strip()[:60]}")
        if query in self._db.failing:
            raise RuntimeError("connection lost")
        self.statements.append(query)
        return handler(self._db, *args)

    async def execute(self, query, *args):
        return self._run(query, args)[1]

    async def fetch(self, query, *args):
        return self._run(query, args)[0]

    async def fetchrow(self, query, *args):
        rows = self._run(query, args)[0]
        return rows[0] if rows else None

    async def fetchval(self, query, *args):
        rows = self._run(query, args)[0]
        return next(iter(rows[0].values())) if rows else None

    def transaction(self):
        tx = FakeTransaction(self._db)
        self._db.transactions.append(tx)
        return tx


class FakePool:
    def __init__(self, db: FakeDatabase = None):
        self.db = db or FakeDatabase()
        self.acquired = 0
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        self.acquired += 1
        yield FakeConnection(self.db)

    async def close(self):
        self.closed = True


# --- Fake Redis ---

class FakeRedis:
    """Subset of redis.asyncio.Redis; values come back as bytes."""

    def __init__(self):
        self.store: dict[str, bytes] = {}
        self.ttls: dict[str, int] = {}
        self.closed = False

    async def setex(self, key, ttl, value):
        self.store[key] = value.encode() if isinstance(value, str) else value
        self.ttls[key] = ttl

    async def get(self, key):
        return self.store.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            self.ttls.pop(key, None)
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def aclose(self):
        self.closed = True


# --- Fixtures ---

@pytest.fixture
def config():
    return EncryptionConfig.from_hex(KEY_A)


@pytest.fixture
def other_config():
    return EncryptionConfig.from_hex(KEY_B)


@pytest.fixture
def cipher(config):
    return EnvelopeCipher(config)


@pytest.fixture
def other_cipher(other_config):
    return EnvelopeCipher(other_config)


@pytest.fixture
def pool():
    return FakePool()


@pytest.fixture
def redis():
    return FakeRedis()


@pytest.fixture
def credentials(cipher, pool):
    return CredentialStore(cipher, pool)


@pytest.fixture
def cached_credentials(cipher, pool, redis):
    return CredentialStore(cipher, pool, redis=redis, cache_ttl=120)


@pytest.fixture
def pipeline(cipher, pool, credentials):
    return MessagePipeline(cipher, pool, credentials)
