"""Message ORM model."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, IdMixin, TimestampMixin

if TYPE_CHECKING:
    from app.models.message_deletion import MessageDeletion

MEDIA_MESSAGE_TYPES = ("image", "video", "file", "pdf")
UNSENT_STATUSES = ("sending", "failed")


@dataclass(frozen=True, slots=True)
class DeletionMetadata:
    """Read-only view over the deletion flags stored on a message row."""

    deleted_for_everyone: bool
    deleted_for_everyone_at: datetime | None
    deleted_for_everyone_by: str | None
    grace_delete_queued: bool
    grace_delete_retries: int
    grace_delete_participants: list[str]
    hard_deleted: bool
    hard_deleted_at: datetime | None


@dataclass(frozen=True, slots=True)
class AutoDeleteSettings:
    """Read-only view over the disappearing-message columns."""

    enabled: bool
    expires_at: datetime | None
    duration_hours: float | None


class Message(Base, IdMixin, TimestampMixin):
    """Conversation message with deletion and retention state."""

    __tablename__ = "messages"

    # No foreign key: orphaned rows are detected and swept by server cleanup.
    conversation_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    sender_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    message_type: Mapped[str] = mapped_column(String(16), default="text", nullable=False)
    media_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="sent", nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)

    deleted_for_everyone: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_for_everyone_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_for_everyone_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    grace_delete_queued: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    grace_delete_retries: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    grace_delete_participants_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    hard_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    hard_deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    auto_delete_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_delete_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )
    auto_delete_duration_hours: Mapped[float | None] = mapped_column(Float, nullable=True)

    deleted_by: Mapped[list[MessageDeletion]] = relationship(
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageDeletion.id",
        lazy="selectin",
    )

    @property
    def deletion_metadata(self) -> DeletionMetadata:
        return DeletionMetadata(
            deleted_for_everyone=self.deleted_for_everyone,
            deleted_for_everyone_at=self.deleted_for_everyone_at,
            deleted_for_everyone_by=self.deleted_for_everyone_by,
            grace_delete_queued=self.grace_delete_queued,
            grace_delete_retries=self.grace_delete_retries,
            grace_delete_participants=list(self.grace_delete_participants_json or []),
            hard_deleted=self.hard_deleted,
            hard_deleted_at=self.hard_deleted_at,
        )

    @property
    def auto_delete(self) -> AutoDeleteSettings:
        return AutoDeleteSettings(
            enabled=self.auto_delete_enabled,
            expires_at=self.auto_delete_expires_at,
            duration_hours=self.auto_delete_duration_hours,
        )

    def has_deletion_entry(self, user_id: str, delete_mode: str | None = None) -> bool:
        """Return whether ``user_id`` already has a deleted_by entry (optionally for one mode)."""

        return any(
            entry.user_id == user_id and (delete_mode is None or entry.delete_mode == delete_mode)
            for entry in self.deleted_by
        )
