"""Per-user message deletion entry ORM model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, IdMixin, utcnow

if TYPE_CHECKING:
    from app.models.message import Message


class MessageDeletion(Base, IdMixin):
    """One ``deleted_by`` audit entry: who removed a message, when and how."""

    __tablename__ = "message_deletions"

    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    delete_mode: Mapped[str] = mapped_column(String(32), nullable=False)
    deleted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    message: Mapped[Message] = relationship(back_populates="deleted_by")
