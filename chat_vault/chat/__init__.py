"""Conversations and encrypted messages."""

from .models import Sender, Conversation, ConversationDetail, Message, PostResult
from .pipeline import MessagePipeline, render_messages

__all__ = [
    "Sender",
    "Conversation",
    "ConversationDetail",
    "Message",
    "PostResult",
    "MessagePipeline",
    "render_messages",
]
