"""Deletion request modes and operation result schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter
from typing_extensions import Self


class DeleteMode(str, Enum):
    """Modes recorded on ``deleted_by`` entries and reported by results."""

    FOR_ME = "forMe"
    FOR_EVERYONE = "forEveryone"
    SOFT = "soft"
    HARD = "hard"
    MIXED = "mixed"
    GRACE = "graceDelete"
    AUTO = "autoDelete"
    MEDIA = "media"
    UNSENT = "unsent"
    SERVER_CLEANUP = "serverCleanup"


ContentFilter = Literal["all", "media"]


class ForMeBulkMode(BaseModel):
    mode: Literal["forMe"] = "forMe"


class ForEveryoneBulkMode(BaseModel):
    mode: Literal["forEveryone"] = "forEveryone"


class SoftBulkMode(BaseModel):
    mode: Literal["soft"] = "soft"


class HardBulkMode(BaseModel):
    mode: Literal["hard"] = "hard"
    delete_media: bool = False


BulkDeleteMode = Annotated[
    ForMeBulkMode | ForEveryoneBulkMode | SoftBulkMode | HardBulkMode,
    Field(discriminator="mode"),
]
bulk_delete_mode_adapter: TypeAdapter[BulkDeleteMode] = TypeAdapter(BulkDeleteMode)


class OperationResult(BaseModel):
    """Common envelope: structured failure plus non-fatal warnings."""

    success: bool = True
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def failed(cls, error: str) -> Self:
        return cls(success=False, error=error)


class DeletionResult(OperationResult):
    deleted_count: int = 0
    message_ids: list[int] = Field(default_factory=list)
    delete_mode: str | None = None
    warning: str | None = None
    for_me_count: int | None = None
    for_everyone_count: int | None = None
    deleted_media_count: int | None = None
    deleted_media: list[str] | None = None
    filter: ContentFilter | None = None
    bulk_delete: bool = False


class GraceQueueItem(BaseModel):
    message_id: int
    participant_ids: list[str]
    queued_at: datetime


class GraceDeleteResult(OperationResult):
    queued_count: int = 0
    queue_items: list[GraceQueueItem] = Field(default_factory=list)
    delete_mode: str = DeleteMode.GRACE.value


class GraceQueueResult(OperationResult):
    processed_count: int = 0
    message_ids: list[int] = Field(default_factory=list)


class AutoDeleteItem(BaseModel):
    message_id: int
    expires_at: datetime
    duration_hours: float


class AutoDeleteSetResult(OperationResult):
    set_count: int = 0
    messages: list[AutoDeleteItem] = Field(default_factory=list)
    delete_mode: str = DeleteMode.AUTO.value


class MediaDeleteResult(OperationResult):
    deleted_count: int = 0
    deleted_media_count: int = 0
    deleted_media: list[str] = Field(default_factory=list)
    message_ids: list[int] = Field(default_factory=list)
    delete_mode: str = DeleteMode.MEDIA.value


class CleanupBreakdown(BaseModel):
    orphaned: int = 0
    expired_auto_delete: int = 0
    old_soft_deleted: int = 0


class CleanupResult(OperationResult):
    deleted_count: int = 0
    results: CleanupBreakdown = Field(default_factory=CleanupBreakdown)
    delete_mode: str = DeleteMode.SERVER_CLEANUP.value
