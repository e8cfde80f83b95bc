"""Conversation and message models returned to API clients."""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Sender(str, Enum):
    USER = "USER"
    AI = "AI"


class ChatModel(BaseModel):
    """Base model serializing to camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Conversation(ChatModel):
    id: str
    user_id: str
    title: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    message_count: int = 0

    @classmethod
    def from_row(cls, row: Any) -> "Conversation":
        return cls(
            id=str(row["id"]),
            user_id=row["user_id"],
            title=row["title"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            message_count=row.get("message_count") or 0,
        )


class Message(ChatModel):
    """A message with its plaintext content."""

    id: str
    conversation_id: Optional[str] = None
    sender: Sender
    content: str
    ai_provider: Optional[str] = None
    created_at: datetime


class ConversationDetail(Conversation):
    messages: list[Message] = []


class PostResult(ChatModel):
    """Outcome of posting a user message."""

    user_message: Message
    ai_message: Message
    conversation: Optional[ConversationDetail] = None

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
