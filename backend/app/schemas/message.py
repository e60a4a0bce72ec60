"""Message request/response schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

MessageType = Literal["text", "image", "video", "file", "pdf", "system"]
MessageStatus = Literal["sending", "sent", "delivered", "read", "failed"]


class MessageCreate(BaseModel):
    """Single message payload for persistence."""

    sender_id: str = Field(min_length=1)
    content: str = ""
    message_type: MessageType = "text"
    media_url: str | None = None
    file_name: str | None = None
    file_size: int | None = Field(default=None, ge=0)
    status: MessageStatus = "sent"
    created_at: datetime | None = None


class DeletionEntryRead(BaseModel):
    """Serialized ``deleted_by`` entry."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    delete_mode: str
    deleted_at: datetime


class DeletionMetadataRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    deleted_for_everyone: bool
    deleted_for_everyone_at: datetime | None = None
    deleted_for_everyone_by: str | None = None
    grace_delete_queued: bool
    grace_delete_retries: int
    grace_delete_participants: list[str] = Field(default_factory=list)
    hard_deleted: bool
    hard_deleted_at: datetime | None = None


class AutoDeleteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enabled: bool
    expires_at: datetime | None = None
    duration_hours: float | None = None


class MessageRead(BaseModel):
    """Serialized message."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: int
    sender_id: str
    content: str
    message_type: str
    media_url: str | None = None
    status: str
    is_deleted: bool
    deleted_by: list[DeletionEntryRead] = Field(default_factory=list)
    deletion_metadata: DeletionMetadataRead
    auto_delete: AutoDeleteRead
    created_at: datetime
    updated_at: datetime
