"""ORM models package exports."""

from app.models.conversation import Conversation
from app.models.message import Message
from app.models.message_deletion import MessageDeletion

__all__ = [
    "Conversation",
    "Message",
    "MessageDeletion",
]
