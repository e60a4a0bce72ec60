"""Conversation ORM model."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, IdMixin, TimestampMixin


class Conversation(Base, IdMixin, TimestampMixin):
    """Direct or group conversation with a denormalized last-message projection."""

    __tablename__ = "conversations"

    participants_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    is_group_chat: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    group_admin_ids_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    last_message_content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    last_message_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
