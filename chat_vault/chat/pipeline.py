"""
MessagePipeline — Conversations and encrypted message history.

Every message body is sealed before it reaches PostgreSQL and opened when
history is rendered. A message that cannot be opened is replaced by the
placeholder; the rest of the conversation renders normally.

Security Note:
    Never log message content or envelopes. Only log message ids,
    conversation ids and user ids.
"""
import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from ..exceptions import ValidationError, ProviderError, ConversationNotFound
from ..providers import (
    BackendRegistry,
    CompletionRequest,
    ProviderConfig,
    get_provider_config,
)
from ..vault.crypto import EnvelopeCipher
from ..vault.credentials import CredentialStore
from .models import Conversation, ConversationDetail, Message, PostResult, Sender

logger = logging.getLogger("chat_vault.chat")

DEFAULT_MODEL = "mockAI_default"
UNSAVED_REPLY_ID = "temp-ai-error"
UNSAVED_REPLY = "Error: AI response could not be saved securely."

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

INSERT_CONVERSATION = """
INSERT INTO chat.conversations (id, user_id, title)
VALUES ($1, $2, $3)
RETURNING id, user_id, title, created_at, updated_at
"""

SELECT_CONVERSATION = """
SELECT id, user_id, title, created_at, updated_at
FROM chat.conversations
WHERE id = $1 AND user_id = $2
"""

LIST_CONVERSATIONS = """
SELECT c.id, c.user_id, c.title, c.created_at, c.updated_at,
       COUNT(m.id) AS message_count
FROM chat.conversations c
LEFT JOIN chat.messages m ON m.conversation_id = c.id
WHERE c.user_id = $1
GROUP BY c.id
ORDER BY c.updated_at DESC
"""

INSERT_MESSAGE = """
INSERT INTO chat.messages (id, conversation_id, sender, content, ai_provider)
VALUES ($1, $2, $3, $4, $5)
RETURNING id, conversation_id, sender, ai_provider, created_at
"""

TOUCH_CONVERSATION = """
UPDATE chat.conversations
SET updated_at = NOW()
WHERE id = $1
"""

SELECT_MESSAGES = """
SELECT id, conversation_id, sender, content, ai_provider, created_at
FROM chat.messages
WHERE conversation_id = $1
ORDER BY seq ASC
"""


def render_messages(
    cipher: EnvelopeCipher,
    rows: Iterable[Any],
    placeholder: Optional[str] = None,
) -> list[Message]:
    """Open every stored message; one Message per row, failures as placeholder."""
    if placeholder is None:
        placeholder = cipher.placeholder
    messages = []
    for row in rows:
        # open() logs the failure with the message id
        result = cipher.open(row["content"], record_id=row["id"])
        messages.append(
            Message(
                id=str(row["id"]),
                conversation_id=str(row["conversation_id"]),
                sender=Sender(row["sender"]),
                content=result.value_or(placeholder),
                ai_provider=row["ai_provider"],
                created_at=row["created_at"],
            )
        )
    return messages


def _parse_conversation_id(conversation_id: Any) -> uuid.UUID:
    if isinstance(conversation_id, uuid.UUID):
        return conversation_id
    try:
        return uuid.UUID(str(conversation_id))
    except ValueError:
        raise ConversationNotFound(
            "Conversation not found or access denied."
        ) from None


class MessagePipeline:
    """Stores and renders encrypted conversations for one deployment."""

    def __init__(
        self,
        cipher: EnvelopeCipher,
        db_pool: Any,
        credentials: CredentialStore,
        backends: Optional[BackendRegistry] = None,
    ):
        self._cipher = cipher
        self._db = db_pool
        self._credentials = credentials
        self._backends = backends or BackendRegistry()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_conversation(self, conn: Any, user_id: str, conversation_id: Any) -> Any:
        row = await conn.fetchrow(
            SELECT_CONVERSATION, _parse_conversation_id(conversation_id), user_id,
        )
        if row is None:
            raise ConversationNotFound("Conversation not found or access denied.")
        return row

    async def _store_message(
        self,
        conn: Any,
        conversation_id: uuid.UUID,
        sender: Sender,
        envelope: str,
        ai_provider: Optional[str],
    ) -> Any:
        row = await conn.fetchrow(
            INSERT_MESSAGE,
            uuid.uuid4(), conversation_id, sender.value, envelope, ai_provider,
        )
        await conn.execute(TOUCH_CONVERSATION, conversation_id)
        return row

    async def _generate_reply(
        self,
        user_id: str,
        content: str,
        provider: Optional[ProviderConfig],
    ) -> tuple[str, str]:
        """Return (reply text, model or provider id used)."""
        if provider is None:
            return (
                f'Mock response from default AI (No provider specified) for: "{content}"',
                DEFAULT_MODEL,
            )

        api_key = await self._credentials.get(user_id, provider.id.value)
        if not api_key:
            logger.warning(
                "No usable API key for user=%s provider=%s, using mock response",
                user_id, provider.id.value,
            )
            return (
                f'Mock response from {provider.name} (No API Key configured/found) '
                f'for: "{content}"',
                provider.id.value,
            )

        response = await self._backends.complete(
            CompletionRequest(prompt=content, provider=provider.id, api_key=api_key)
        )
        if response.error:
            logger.error("LLM error from %s: %s", provider.name, response.error)
            return (
                f"Error from {provider.name}: {response.error}. "
                "Falling back to mock response.",
                provider.id.value,
            )
        return response.content, response.model_used or provider.id.value

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def post_message(
        self,
        user_id: str,
        content: str,
        conversation_id: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> PostResult:
        """Seal and store a user message, then generate and store the reply.

        Args:
            user_id: Author of the message.
            content: Plaintext message body.
            conversation_id: Existing conversation; a new one is created
                when omitted.
            provider: AI provider to answer with.

        Raises:
            ValidationError: If ``content`` is empty or not a string.
            ProviderError: If ``provider`` is unknown.
            ConversationNotFound: If the conversation is not owned by the user.
            EncryptionFailure: If the user message cannot be sealed; nothing
                is stored.
        """
        if not isinstance(content, str) or not content:
            raise ValidationError("Message content is required and must be a string.")

        provider_config = None
        if provider:
            provider_config = get_provider_config(provider)
            if provider_config is None:
                raise ProviderError("Invalid AI provider specified.")
        provider_id = provider_config.id.value if provider_config else None

        user_envelope = self._cipher.seal(content).unwrap()

        is_new = not conversation_id
        async with self._db.acquire() as conn:
            tx = conn.transaction()
            await tx.start()
            try:
                if is_new:
                    conv_row = await conn.fetchrow(
                        INSERT_CONVERSATION, uuid.uuid4(), user_id, None,
                    )
                else:
                    conv_row = await self._get_conversation(conn, user_id, conversation_id)
                conv_id = conv_row["id"]
                user_row = await self._store_message(
                    conn, conv_id, Sender.USER, user_envelope, provider_id,
                )
                await tx.commit()
            except Exception:
                await tx.rollback()
                raise
        if is_new:
            logger.info("Conversation created: user=%s id=%s", user_id, conv_id)

        user_message = Message(
            id=str(user_row["id"]),
            conversation_id=str(conv_id),
            sender=Sender.USER,
            content=content,
            ai_provider=provider_id,
            created_at=user_row["created_at"],
        )

        reply, model_used = await self._generate_reply(user_id, content, provider_config)

        sealed_reply = self._cipher.seal(reply)
        if not sealed_reply.ok:
            logger.error(
                "Failed to encrypt AI reply for conversation=%s; reply not saved",
                conv_id,
            )
            ai_message = Message(
                id=UNSAVED_REPLY_ID,
                conversation_id=str(conv_id),
                sender=Sender.AI,
                content=UNSAVED_REPLY,
                ai_provider=model_used,
                created_at=datetime.now(timezone.utc),
            )
        else:
            async with self._db.acquire() as conn:
                ai_row = await self._store_message(
                    conn, conv_id, Sender.AI, sealed_reply.envelope, model_used,
                )
            ai_message = Message(
                id=str(ai_row["id"]),
                conversation_id=str(conv_id),
                sender=Sender.AI,
                content=reply,
                ai_provider=model_used,
                created_at=ai_row["created_at"],
            )

        logger.debug(
            "Messages stored: user_message=%s ai_message=%s",
            user_message.id, ai_message.id,
        )

        conversation = None
        if is_new:
            conversation = await self.get_conversation(user_id, conv_id)

        return PostResult(
            user_message=user_message,
            ai_message=ai_message,
            conversation=conversation,
        )

    async def get_conversation(self, user_id: str, conversation_id: Any) -> ConversationDetail:
        """Return conversation metadata with its decrypted messages."""
        async with self._db.acquire() as conn:
            conv_row = await self._get_conversation(conn, user_id, conversation_id)
            rows = await conn.fetch(SELECT_MESSAGES, conv_row["id"])
        messages = render_messages(self._cipher, rows)
        base = Conversation.from_row(conv_row)
        return ConversationDetail(
            **base.model_dump(exclude={"message_count"}),
            message_count=len(messages),
            messages=messages,
        )

    async def history(self, user_id: str, conversation_id: Any) -> list[Message]:
        """Return the conversation's messages in chronological order.

        Raises:
            ConversationNotFound: If the conversation is not owned by the user.
        """
        async with self._db.acquire() as conn:
            conv_row = await self._get_conversation(conn, user_id, conversation_id)
            rows = await conn.fetch(SELECT_MESSAGES, conv_row["id"])
        return render_messages(self._cipher, rows)

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        """Conversation metadata, most recently updated first. No decryption."""
        async with self._db.acquire() as conn:
            rows = await conn.fetch(LIST_CONVERSATIONS, user_id)
        return [Conversation.from_row(row) for row in rows]
