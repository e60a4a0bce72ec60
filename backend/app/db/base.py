"""SQLAlchemy metadata registry import for Alembic."""

from app.models import Conversation, Message, MessageDeletion
from app.models.base import Base

__all__ = ["Base", "Conversation", "Message", "MessageDeletion"]
