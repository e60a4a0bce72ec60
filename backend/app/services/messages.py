"""Message persistence and user-facing retrieval services."""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.base import as_utc
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.message_deletion import MessageDeletion
from app.schemas.message import MessageCreate


def create_messages(db: Session, conversation_id: int, message_inputs: list[MessageCreate]) -> list[Message]:
    """Persist a batch of messages and advance the conversation's last-message projection."""

    created: list[Message] = []
    for message_input in message_inputs:
        message = Message(
            conversation_id=conversation_id,
            sender_id=message_input.sender_id,
            content=message_input.content,
            message_type=message_input.message_type,
            media_url=message_input.media_url,
            file_name=message_input.file_name,
            file_size=message_input.file_size,
            status=message_input.status,
            created_at=message_input.created_at or datetime.now(timezone.utc),
        )
        db.add(message)
        created.append(message)

    conversation = db.get(Conversation, conversation_id)
    if conversation is not None and created:
        latest = max(created, key=lambda message: as_utc(message.created_at))
        previous = conversation.last_message_time
        if previous is not None and as_utc(previous) > as_utc(latest.created_at):
            latest = None
    else:
        latest = None
    if latest is not None:
        conversation.last_message_content = latest.content
        conversation.last_message_time = latest.created_at

    db.commit()
    for message in created:
        db.refresh(message)
    return created


def list_visible_messages(db: Session, conversation_id: int, user_id: str) -> list[Message]:
    """Return messages ``user_id`` may still see, oldest first.

    Soft-deleted messages and messages with any ``deleted_by`` entry for the
    viewer are excluded.
    """

    stmt = (
        select(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.is_deleted.is_(False),
            ~Message.deleted_by.any(MessageDeletion.user_id == user_id),
        )
        .order_by(Message.created_at.asc(), Message.id.asc())
    )
    return list(db.scalars(stmt).all())
