"""Message deletion and retention services.

Every operation takes the message IDs a caller selected, the acting user and
the owning conversation. Messages outside that conversation are dropped from
the working set. Precondition failures come back as results with
``success=False``; store errors propagate. Media removal is best effort: a blob
store failure is logged, recorded in ``warnings`` and never blocks the
message-level outcome.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType

from pydantic import ValidationError
from sqlalchemy import String, cast, delete, or_, select
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.models.base import as_utc
from app.models.conversation import Conversation
from app.models.message import MEDIA_MESSAGE_TYPES, UNSENT_STATUSES, Message
from app.models.message_deletion import MessageDeletion
from app.schemas.deletion import (
    AutoDeleteItem,
    AutoDeleteSetResult,
    BulkDeleteMode,
    CleanupBreakdown,
    CleanupResult,
    ContentFilter,
    DeleteMode,
    DeletionResult,
    ForEveryoneBulkMode,
    ForMeBulkMode,
    GraceDeleteResult,
    GraceQueueItem,
    GraceQueueResult,
    HardBulkMode,
    MediaDeleteResult,
    SoftBulkMode,
    bulk_delete_mode_adapter,
)
from app.services.media_storage import MediaStorage, derive_media_public_id, get_media_storage

logger = logging.getLogger(__name__)

DEFAULT_AUTO_DELETE_DURATIONS: Mapping[str, int] = MappingProxyType({"24h": 24, "7d": 168, "90d": 2160})
MEDIA_DELETED_PLACEHOLDER = "[Media deleted]"


def _json_list_contains(column, value: str):
    """Match rows whose JSON string list holds ``value`` on any backend."""

    token = json.dumps(value).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return cast(column, String).like(f"%{token}%", escape="\\")


@dataclass(frozen=True, slots=True)
class DeletionPolicy:
    """Tunable windows, ceilings and duration table for deletion behaviour."""

    for_everyone_window: timedelta = timedelta(minutes=15)
    grace_max_retries: int = 3
    soft_delete_retention_days: int = 30
    auto_delete_durations: Mapping[str, int] = field(default_factory=lambda: DEFAULT_AUTO_DELETE_DURATIONS)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> DeletionPolicy:
        settings = settings or get_settings()
        return cls(
            for_everyone_window=timedelta(minutes=settings.delete_for_everyone_window_minutes),
            grace_max_retries=settings.grace_delete_max_retries,
            soft_delete_retention_days=settings.soft_delete_retention_days,
        )

    def resolve_auto_delete_hours(self, duration: str | int | float | None) -> float | None:
        """Map a named duration or an hour count to positive hours, else ``None``."""

        if duration is None or isinstance(duration, bool):
            return None
        if isinstance(duration, str):
            key = duration.strip()
            if key in self.auto_delete_durations:
                return float(self.auto_delete_durations[key])
            try:
                hours = float(key)
            except ValueError:
                return None
        elif isinstance(duration, (int, float)):
            hours = float(duration)
        else:
            return None
        if not math.isfinite(hours) or hours <= 0:
            return None
        try:
            timedelta(hours=hours)
        except OverflowError:
            return None
        return hours


class MessageDeletionService:
    """Applies the deletion and retention policies to stored messages."""

    def __init__(
        self,
        db: Session,
        *,
        policy: DeletionPolicy | None = None,
        media_storage: MediaStorage | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.db = db
        self.policy = policy or DeletionPolicy.from_settings()
        self.media_storage = media_storage if media_storage is not None else get_media_storage()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return as_utc(self._clock())

    # -- per-user visibility -------------------------------------------------

    def delete_for_me(self, message_ids: Sequence[int], user_id: str, conversation_id: int) -> DeletionResult:
        """Hide messages for ``user_id`` only. Repeat calls are no-ops."""

        messages = self._find_messages(message_ids, conversation_id)
        if not messages:
            return DeletionResult.failed("No messages found")

        now = self.now()
        for message in messages:
            if message.has_deletion_entry(user_id, DeleteMode.FOR_ME.value):
                logger.debug(
                    "message_deletion.for_me_already_hidden message_id=%s user_id=%s", message.id, user_id
                )
                continue
            message.deleted_by.append(
                MessageDeletion(user_id=user_id, delete_mode=DeleteMode.FOR_ME.value, deleted_at=now)
            )
        self.db.commit()
        return DeletionResult(
            deleted_count=len(messages),
            message_ids=[message.id for message in messages],
            delete_mode=DeleteMode.FOR_ME.value,
        )

    # -- global retraction ---------------------------------------------------

    def delete_for_everyone(
        self,
        message_ids: Sequence[int],
        user_id: str,
        conversation_id: int,
        *,
        time_window: timedelta | None = None,
        skip_time_window: bool = False,
    ) -> DeletionResult:
        """Retract messages for all participants.

        Only the sender may retract, and the check covers every selected message
        before anything is written. Messages older than the window are hidden
        for the caller only and the result reports a ``mixed`` mode.
        """

        messages = self._find_messages(message_ids, conversation_id)
        if not messages:
            return DeletionResult.failed("No messages found")
        if any(message.sender_id != user_id for message in messages):
            return DeletionResult.failed("You can only delete your own messages for everyone")

        window = time_window if time_window is not None else self.policy.for_everyone_window
        now = self.now()
        expired: list[Message] = []
        in_window: list[Message] = []
        for message in messages:
            if not skip_time_window and now - as_utc(message.created_at) > window:
                expired.append(message)
            else:
                in_window.append(message)

        if not expired:
            return self._perform_delete_for_everyone(in_window, user_id, conversation_id)

        for_me = self.delete_for_me([message.id for message in expired], user_id, conversation_id)
        if not in_window:
            return DeletionResult(
                deleted_count=for_me.deleted_count,
                message_ids=for_me.message_ids,
                delete_mode=DeleteMode.FOR_ME.value,
                warning="Time window expired, deleted for you only",
            )

        for_everyone = self._perform_delete_for_everyone(in_window, user_id, conversation_id)
        return DeletionResult(
            deleted_count=for_me.deleted_count + for_everyone.deleted_count,
            message_ids=[*for_me.message_ids, *for_everyone.message_ids],
            delete_mode=DeleteMode.MIXED.value,
            for_me_count=for_me.deleted_count,
            for_everyone_count=for_everyone.deleted_count,
            warning=f"{for_me.deleted_count} message(s) expired and deleted for you only",
        )

    def admin_delete(self, message_ids: Sequence[int], user_id: str, conversation_id: int) -> DeletionResult:
        """Let a group admin retract any messages for everyone, regardless of age."""

        conversation = self.db.get(Conversation, conversation_id)
        if conversation is None or not conversation.is_group_chat:
            return DeletionResult.failed("Admin delete only available for group chats")
        if user_id not in (conversation.group_admin_ids_json or []):
            return DeletionResult.failed("Only group admin can use admin delete")

        messages = self._find_messages(message_ids, conversation_id)
        if not messages:
            return DeletionResult.failed("No messages found")
        return self._perform_delete_for_everyone(messages, user_id, conversation_id)

    def _perform_delete_for_everyone(
        self,
        messages: Sequence[Message],
        user_id: str,
        conversation_id: int,
    ) -> DeletionResult:
        conversation = self.db.get(Conversation, conversation_id)
        participants = list(conversation.participants_json or []) if conversation is not None else []
        now = self.now()

        for message in messages:
            message.deleted_for_everyone = True
            message.deleted_for_everyone_at = now
            message.deleted_for_everyone_by = user_id
            for participant_id in participants:
                if not message.has_deletion_entry(participant_id):
                    message.deleted_by.append(
                        MessageDeletion(
                            user_id=participant_id,
                            delete_mode=DeleteMode.FOR_EVERYONE.value,
                            deleted_at=now,
                        )
                    )
        self.db.commit()
        return DeletionResult(
            deleted_count=len(messages),
            message_ids=[message.id for message in messages],
            delete_mode=DeleteMode.FOR_EVERYONE.value,
        )

    # -- grace queue ---------------------------------------------------------

    def grace_delete(
        self,
        message_ids: Sequence[int],
        user_id: str,
        conversation_id: int,
        participant_ids: Iterable[str],
    ) -> GraceDeleteResult:
        """Queue retraction notices for participants that are currently offline."""

        messages = self._find_messages(message_ids, conversation_id)
        if not messages:
            return GraceDeleteResult.failed("No messages found")

        participants = list(dict.fromkeys(participant_ids))
        now = self.now()
        items: list[GraceQueueItem] = []
        for message in messages:
            message.grace_delete_queued = True
            message.grace_delete_retries = 0
            message.grace_delete_participants_json = participants
            items.append(GraceQueueItem(message_id=message.id, participant_ids=participants, queued_at=now))
        self.db.commit()
        logger.info(
            "message_deletion.grace_queued user_id=%s conversation_id=%s message_count=%d",
            user_id,
            conversation_id,
            len(items),
        )
        return GraceDeleteResult(queued_count=len(items), queue_items=items)

    def process_grace_delete_queue(self, user_id: str) -> GraceQueueResult:
        """Run one delivery pass for ``user_id`` and retire entries at the retry ceiling."""

        max_retries = self.policy.grace_max_retries
        queued = self.db.scalars(
            select(Message)
            .where(
                Message.grace_delete_queued.is_(True),
                Message.grace_delete_retries < max_retries,
                or_(
                    _json_list_contains(Message.grace_delete_participants_json, user_id),
                    Message.deleted_by.any(MessageDeletion.user_id == user_id),
                ),
            )
            .order_by(Message.id.asc())
        ).all()
        # SQLite LIKE folds ASCII case.
        queued = [
            message
            for message in queued
            if user_id in message.grace_delete_participants_json or message.has_deletion_entry(user_id)
        ]

        for message in queued:
            message.grace_delete_retries += 1
            if message.grace_delete_retries >= max_retries:
                message.grace_delete_queued = False
        self.db.commit()
        return GraceQueueResult(processed_count=len(queued), message_ids=[message.id for message in queued])

    # -- soft / hard ---------------------------------------------------------

    def soft_delete(self, message_ids: Sequence[int], user_id: str, conversation_id: int) -> DeletionResult:
        """Tombstone messages; the rows stay for internal paths and the retention sweep."""

        messages = self._find_messages(message_ids, conversation_id)
        if not messages:
            return DeletionResult.failed("No messages found")

        now = self.now()
        for message in messages:
            message.is_deleted = True
            if not message.has_deletion_entry(user_id, DeleteMode.SOFT.value):
                message.deleted_by.append(
                    MessageDeletion(user_id=user_id, delete_mode=DeleteMode.SOFT.value, deleted_at=now)
                )
        self.db.commit()
        return DeletionResult(
            deleted_count=len(messages),
            message_ids=[message.id for message in messages],
            delete_mode=DeleteMode.SOFT.value,
        )

    def hard_delete(
        self,
        message_ids: Sequence[int],
        user_id: str,
        conversation_id: int,
        *,
        delete_media: bool = True,
    ) -> DeletionResult:
        """Physically remove messages and, optionally, their stored media."""

        messages = self._find_messages(message_ids, conversation_id)
        if not messages:
            return DeletionResult.failed("No messages found")

        warnings: list[str] = []
        deleted_media: list[str] = []
        removed_ids: list[int] = []
        now = self.now()
        for message in messages:
            if delete_media and message.media_url and self._destroy_media(message, warnings):
                deleted_media.append(message.media_url)
            message.hard_deleted = True
            message.hard_deleted_at = now
            self.db.flush()
            removed_ids.append(message.id)
            self.db.delete(message)
        self.db.flush()
        self._refresh_last_message([conversation_id])
        self.db.commit()
        logger.info(
            "message_deletion.hard_deleted user_id=%s conversation_id=%s message_count=%d media_count=%d",
            user_id,
            conversation_id,
            len(removed_ids),
            len(deleted_media),
        )
        return DeletionResult(
            deleted_count=len(removed_ids),
            message_ids=removed_ids,
            delete_mode=DeleteMode.HARD.value,
            deleted_media_count=len(deleted_media),
            deleted_media=deleted_media,
            warnings=warnings,
        )

    # -- auto delete ---------------------------------------------------------

    def set_auto_delete(
        self,
        message_ids: Sequence[int],
        user_id: str,
        conversation_id: int,
        duration: str | int | float | None,
    ) -> AutoDeleteSetResult:
        """Make the caller's messages disappear after ``duration``."""

        hours = self.policy.resolve_auto_delete_hours(duration)
        if hours is None:
            return AutoDeleteSetResult.failed("Invalid duration")
        try:
            expires_at = self.now() + timedelta(hours=hours)
        except OverflowError:
            return AutoDeleteSetResult.failed("Invalid duration")

        messages = self._find_messages(message_ids, conversation_id)
        if not messages:
            return AutoDeleteSetResult.failed("No messages found")
        if any(message.sender_id != user_id for message in messages):
            return AutoDeleteSetResult.failed("Only the sender can set auto-delete")

        items: list[AutoDeleteItem] = []
        for message in messages:
            message.auto_delete_enabled = True
            message.auto_delete_expires_at = expires_at
            message.auto_delete_duration_hours = hours
            items.append(AutoDeleteItem(message_id=message.id, expires_at=expires_at, duration_hours=hours))
        self.db.commit()
        return AutoDeleteSetResult(set_count=len(items), messages=items)

    def process_auto_delete(self) -> DeletionResult:
        """Sweep expired disappearing messages and refresh affected conversations once each."""

        now = self.now()
        expired = self.db.scalars(
            select(Message)
            .where(
                Message.auto_delete_enabled.is_(True),
                Message.auto_delete_expires_at <= now,
                Message.hard_deleted.is_(False),
            )
            .order_by(Message.id.asc())
        ).all()
        if not expired:
            return DeletionResult(deleted_count=0, delete_mode=DeleteMode.AUTO.value)

        warnings: list[str] = []
        conversation_ids = list(dict.fromkeys(message.conversation_id for message in expired))
        removed_ids: list[int] = []
        for message in expired:
            if message.media_url:
                self._destroy_media(message, warnings)
            removed_ids.append(message.id)
            self.db.delete(message)
        self.db.flush()
        self._refresh_last_message(conversation_ids)
        self.db.commit()
        return DeletionResult(
            deleted_count=len(removed_ids),
            message_ids=removed_ids,
            delete_mode=DeleteMode.AUTO.value,
            warnings=warnings,
        )

    # -- bulk ----------------------------------------------------------------

    def bulk_delete(
        self,
        message_ids: Sequence[int],
        user_id: str,
        conversation_id: int,
        delete_mode: BulkDeleteMode | str,
        *,
        delete_media: bool = False,
        content_filter: ContentFilter = "all",
    ) -> DeletionResult:
        """Filter the selection, then delegate to the single-mode operation."""

        if isinstance(delete_mode, str):
            try:
                delete_mode = bulk_delete_mode_adapter.validate_python(
                    {"mode": delete_mode, "delete_media": delete_media}
                )
            except ValidationError:
                return DeletionResult.failed("Invalid delete mode")
        if content_filter not in ("all", "media"):
            return DeletionResult.failed("Invalid filter")

        stmt = select(Message.id).where(Message.id.in_(list(message_ids)), Message.conversation_id == conversation_id)
        if content_filter == "media":
            stmt = stmt.where(Message.message_type.in_(MEDIA_MESSAGE_TYPES))
        matched_ids = list(self.db.scalars(stmt.order_by(Message.id.asc())).all())
        if not matched_ids:
            return DeletionResult.failed("No messages found matching criteria")

        if isinstance(delete_mode, ForMeBulkMode):
            result = self.delete_for_me(matched_ids, user_id, conversation_id)
        elif isinstance(delete_mode, ForEveryoneBulkMode):
            result = self.delete_for_everyone(matched_ids, user_id, conversation_id)
        elif isinstance(delete_mode, HardBulkMode):
            result = self.hard_delete(matched_ids, user_id, conversation_id, delete_media=delete_mode.delete_media)
        elif isinstance(delete_mode, SoftBulkMode):
            result = self.soft_delete(matched_ids, user_id, conversation_id)
        else:
            return DeletionResult.failed("Invalid delete mode")

        return result.model_copy(update={"filter": content_filter, "bulk_delete": True})

    # -- media ---------------------------------------------------------------

    def media_delete(
        self,
        message_ids: Sequence[int],
        user_id: str,
        conversation_id: int,
        *,
        delete_message: bool = False,
        delete_local_only: bool = False,
    ) -> MediaDeleteResult:
        """Remove media from media-bearing messages, optionally leaving a placeholder."""

        messages = self.db.scalars(
            select(Message)
            .where(
                Message.id.in_(list(message_ids)),
                Message.conversation_id == conversation_id,
                Message.message_type.in_(MEDIA_MESSAGE_TYPES),
            )
            .order_by(Message.id.asc())
        ).all()
        if not messages:
            return MediaDeleteResult.failed("No media messages found")

        warnings: list[str] = []
        deleted_media: list[str] = []
        for message in messages:
            if not message.media_url:
                continue
            if not delete_local_only:
                if not self._destroy_media(message, warnings):
                    # Keep the reference so a later cleanup can still find the blob.
                    continue
                deleted_media.append(message.media_url)
            if delete_message:
                message.media_url = None
                message.file_name = None
                message.file_size = None
                message.content = MEDIA_DELETED_PLACEHOLDER
        self.db.commit()
        logger.info(
            "message_deletion.media_deleted user_id=%s conversation_id=%s message_count=%d media_count=%d",
            user_id,
            conversation_id,
            len(messages),
            len(deleted_media),
        )
        return MediaDeleteResult(
            deleted_count=len(messages),
            deleted_media_count=len(deleted_media),
            deleted_media=deleted_media,
            message_ids=[message.id for message in messages],
            warnings=warnings,
        )

    # -- unsent --------------------------------------------------------------

    def unsent_message_delete(self, message_ids: Sequence[int], user_id: str, conversation_id: int) -> DeletionResult:
        """Drop the caller's in-flight or failed sends in one batch."""

        messages = self.db.scalars(
            select(Message)
            .where(
                Message.id.in_(list(message_ids)),
                Message.conversation_id == conversation_id,
                Message.sender_id == user_id,
                Message.status.in_(UNSENT_STATUSES),
            )
            .order_by(Message.id.asc())
        ).all()
        if not messages:
            return DeletionResult.failed("No unsent messages found")

        warnings: list[str] = []
        for message in messages:
            if message.media_url:
                self._destroy_media(message, warnings)

        matched_ids = [message.id for message in messages]
        deleted_count = self._purge_messages(matched_ids)
        self._refresh_last_message([conversation_id])
        self.db.commit()
        return DeletionResult(
            deleted_count=deleted_count,
            message_ids=matched_ids,
            delete_mode=DeleteMode.UNSENT.value,
            warnings=warnings,
        )

    # -- server cleanup ------------------------------------------------------

    def server_cleanup(
        self,
        *,
        delete_orphaned: bool = True,
        delete_expired_auto_delete: bool = True,
        delete_old_soft_deleted: bool = True,
        soft_delete_retention_days: int | None = None,
    ) -> CleanupResult:
        """Sweep orphans, expired disappearing messages and stale soft-deleted rows."""

        breakdown = CleanupBreakdown()
        warnings: list[str] = []

        if delete_orphaned:
            orphan_ids = list(
                self.db.scalars(
                    select(Message.id).where(Message.conversation_id.not_in(select(Conversation.id)))
                ).all()
            )
            breakdown.orphaned = self._purge_messages(orphan_ids)
            self.db.commit()

        if delete_expired_auto_delete:
            auto_result = self.process_auto_delete()
            breakdown.expired_auto_delete = auto_result.deleted_count
            warnings.extend(auto_result.warnings)

        if delete_old_soft_deleted:
            retention_days = (
                soft_delete_retention_days
                if soft_delete_retention_days is not None
                else self.policy.soft_delete_retention_days
            )
            cutoff = self.now() - timedelta(days=retention_days)
            stale = self.db.scalars(
                select(Message)
                .where(
                    Message.is_deleted.is_(True),
                    Message.hard_deleted.is_(False),
                    Message.updated_at < cutoff,
                )
                .order_by(Message.id.asc())
            ).all()
            for message in stale:
                if message.media_url:
                    self._destroy_media(message, warnings)
            conversation_ids = list(dict.fromkeys(message.conversation_id for message in stale))
            breakdown.old_soft_deleted = self._purge_messages([message.id for message in stale])
            self._refresh_last_message(conversation_ids)
            self.db.commit()

        total = breakdown.orphaned + breakdown.expired_auto_delete + breakdown.old_soft_deleted
        logger.info(
            "message_deletion.server_cleanup orphaned=%d expired_auto_delete=%d old_soft_deleted=%d total=%d",
            breakdown.orphaned,
            breakdown.expired_auto_delete,
            breakdown.old_soft_deleted,
            total,
        )
        return CleanupResult(deleted_count=total, results=breakdown, warnings=warnings)

    # -- helpers -------------------------------------------------------------

    def _find_messages(self, message_ids: Sequence[int], conversation_id: int) -> list[Message]:
        ids = list(message_ids)
        if not ids:
            return []
        stmt = (
            select(Message)
            .where(Message.id.in_(ids), Message.conversation_id == conversation_id)
            .order_by(Message.id.asc())
        )
        return list(self.db.scalars(stmt).all())

    def _destroy_media(self, message: Message, warnings: list[str]) -> bool:
        """Delete a message's blob; failures are logged and recorded, never raised."""

        public_id = derive_media_public_id(message.media_url)
        if public_id is None:
            return False
        try:
            self.media_storage.destroy(public_id)
        except Exception as exc:
            logger.warning(
                "message_deletion.media_cleanup_failed message_id=%s public_id=%s error=%s",
                message.id,
                public_id,
                exc,
            )
            warnings.append(f"Media cleanup failed for message {message.id}: {exc}")
            return False
        return True

    def _purge_messages(self, message_ids: list[int]) -> int:
        if not message_ids:
            return 0
        self.db.execute(delete(MessageDeletion).where(MessageDeletion.message_id.in_(message_ids)))
        result = self.db.execute(delete(Message).where(Message.id.in_(message_ids)))
        return int(result.rowcount or 0)

    def _refresh_last_message(self, conversation_ids: Iterable[int]) -> None:
        for conversation_id in dict.fromkeys(conversation_ids):
            conversation = self.db.get(Conversation, conversation_id)
            if conversation is None:
                continue
            latest = self.db.scalar(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(1)
            )
            conversation.last_message_content = latest.content if latest is not None else ""
            conversation.last_message_time = latest.created_at if latest is not None else None
