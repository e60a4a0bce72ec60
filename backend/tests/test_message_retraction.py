"""Tests for delete-for-me, delete-for-everyone and admin retraction."""

from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.models.base import Base
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.message_deletion import MessageDeletion
from app.schemas.message import MessageCreate
from app.services.message_deletion import DeletionPolicy, MessageDeletionService
from app.services.messages import create_messages


class _RecordingMediaStorage:
    def __init__(self) -> None:
        self.destroyed: list[str] = []

    def destroy(self, public_id: str) -> None:
        self.destroyed.append(public_id)


class MessageRetractionTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        self.db: Session = self.SessionLocal()
        self.db.execute(delete(MessageDeletion))
        self.db.execute(delete(Message))
        self.db.execute(delete(Conversation))
        self.db.commit()
        self.storage = _RecordingMediaStorage()
        self.service = MessageDeletionService(self.db, policy=DeletionPolicy(), media_storage=self.storage)
        self.conversation = Conversation(participants_json=["alice", "bob", "carol"])
        self.db.add(self.conversation)
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _message(self, sender_id: str = "alice", minutes_ago: float = 1, content: str = "hello") -> Message:
        created = create_messages(
            self.db,
            self.conversation.id,
            [
                MessageCreate(
                    sender_id=sender_id,
                    content=content,
                    created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
                )
            ],
        )
        return created[0]

    def _entries(self, message_id: int, user_id: str | None = None) -> list[MessageDeletion]:
        stmt = select(MessageDeletion).where(MessageDeletion.message_id == message_id)
        if user_id is not None:
            stmt = stmt.where(MessageDeletion.user_id == user_id)
        return list(self.db.scalars(stmt.order_by(MessageDeletion.id.asc())))

    def test_delete_for_me_is_idempotent(self) -> None:
        message = self._message(sender_id="bob")

        first = self.service.delete_for_me([message.id], "alice", self.conversation.id)
        second = self.service.delete_for_me([message.id], "alice", self.conversation.id)

        self.assertTrue(first.success)
        self.assertEqual(first.delete_mode, "forMe")
        self.assertEqual(first.deleted_count, 1)
        self.assertEqual(second.deleted_count, 1)
        entries = self._entries(message.id)
        self.assertEqual(len(entries), 1)
        self.assertEqual((entries[0].user_id, entries[0].delete_mode), ("alice", "forMe"))
        self.assertFalse(message.deleted_for_everyone)

    def test_delete_for_me_excludes_messages_from_other_conversations(self) -> None:
        message = self._message()
        other = Conversation(participants_json=["alice", "dave"])
        self.db.add(other)
        self.db.commit()

        result = self.service.delete_for_me([message.id], "alice", other.id)

        self.assertFalse(result.success)
        self.assertEqual(result.error, "No messages found")
        self.assertEqual(self._entries(message.id), [])

    def test_delete_for_everyone_marks_every_participant(self) -> None:
        message = self._message(minutes_ago=2)

        result = self.service.delete_for_everyone([message.id], "alice", self.conversation.id)

        self.assertTrue(result.success)
        self.assertEqual(result.delete_mode, "forEveryone")
        self.assertIsNone(result.warning)
        self.db.refresh(message)
        self.assertTrue(message.deletion_metadata.deleted_for_everyone)
        self.assertEqual(message.deletion_metadata.deleted_for_everyone_by, "alice")
        self.assertIsNotNone(message.deletion_metadata.deleted_for_everyone_at)
        entries = self._entries(message.id)
        self.assertEqual(sorted(entry.user_id for entry in entries), ["alice", "bob", "carol"])
        self.assertTrue(all(entry.delete_mode == "forEveryone" for entry in entries))

    def test_delete_for_everyone_keeps_existing_participant_entry(self) -> None:
        message = self._message(minutes_ago=2)
        self.service.delete_for_me([message.id], "bob", self.conversation.id)

        self.service.delete_for_everyone([message.id], "alice", self.conversation.id)
        self.service.delete_for_everyone([message.id], "alice", self.conversation.id)

        bob_entries = self._entries(message.id, "bob")
        self.assertEqual(len(bob_entries), 1)
        self.assertEqual(bob_entries[0].delete_mode, "forMe")
        self.assertEqual(len(self._entries(message.id, "carol")), 1)

    def test_delete_for_everyone_rejects_without_partial_effect(self) -> None:
        own = self._message(sender_id="alice", minutes_ago=2)
        foreign = self._message(sender_id="bob", minutes_ago=2)

        result = self.service.delete_for_everyone([own.id, foreign.id], "alice", self.conversation.id)

        self.assertFalse(result.success)
        self.assertEqual(result.error, "You can only delete your own messages for everyone")
        self.assertEqual(self._entries(own.id), [])
        self.assertEqual(self._entries(foreign.id), [])
        self.db.refresh(own)
        self.assertFalse(own.deleted_for_everyone)

    def test_delete_for_everyone_partitions_by_time_window(self) -> None:
        old = self._message(minutes_ago=20, content="old")
        recent = self._message(minutes_ago=5, content="recent")

        result = self.service.delete_for_everyone([old.id, recent.id], "alice", self.conversation.id)

        self.assertTrue(result.success)
        self.assertEqual(result.delete_mode, "mixed")
        self.assertEqual(result.for_me_count, 1)
        self.assertEqual(result.for_everyone_count, 1)
        self.assertEqual(result.deleted_count, 2)
        self.assertEqual(result.warning, "1 message(s) expired and deleted for you only")

        self.db.refresh(old)
        self.db.refresh(recent)
        self.assertFalse(old.deleted_for_everyone)
        self.assertEqual([(e.user_id, e.delete_mode) for e in self._entries(old.id)], [("alice", "forMe")])
        self.assertTrue(recent.deleted_for_everyone)
        self.assertEqual(len(self._entries(recent.id)), 3)

    def test_delete_for_everyone_falls_back_to_for_me_when_all_expired(self) -> None:
        old = self._message(minutes_ago=30)

        result = self.service.delete_for_everyone([old.id], "alice", self.conversation.id)

        self.assertTrue(result.success)
        self.assertEqual(result.delete_mode, "forMe")
        self.assertEqual(result.warning, "Time window expired, deleted for you only")
        self.assertEqual(len(self._entries(old.id)), 1)

    def test_delete_for_everyone_honours_window_overrides(self) -> None:
        old = self._message(minutes_ago=45)

        skipped = self.service.delete_for_everyone([old.id], "alice", self.conversation.id, skip_time_window=True)
        self.assertEqual(skipped.delete_mode, "forEveryone")

        older = self._message(minutes_ago=50)
        wide = MessageDeletionService(
            self.db,
            policy=DeletionPolicy(for_everyone_window=timedelta(hours=1)),
            media_storage=self.storage,
        )
        self.assertEqual(wide.delete_for_everyone([older.id], "alice", self.conversation.id).delete_mode, "forEveryone")

        oldest = self._message(minutes_ago=50)
        narrow = self.service.delete_for_everyone(
            [oldest.id], "alice", self.conversation.id, time_window=timedelta(minutes=10)
        )
        self.assertEqual(narrow.delete_mode, "forMe")

    def test_admin_delete_requires_group_admin(self) -> None:
        group = Conversation(participants_json=["alice", "bob"], is_group_chat=True, group_admin_ids_json=["bob"])
        self.db.add(group)
        self.db.commit()
        message = create_messages(
            self.db,
            group.id,
            [
                MessageCreate(
                    sender_id="alice",
                    content="off topic",
                    created_at=datetime.now(timezone.utc) - timedelta(days=2),
                )
            ],
        )[0]

        denied = self.service.admin_delete([message.id], "alice", group.id)
        self.assertFalse(denied.success)
        self.assertEqual(denied.error, "Only group admin can use admin delete")

        direct = self.service.admin_delete([self._message().id], "alice", self.conversation.id)
        self.assertEqual(direct.error, "Admin delete only available for group chats")

        allowed = self.service.admin_delete([message.id], "bob", group.id)
        self.assertTrue(allowed.success)
        self.assertEqual(allowed.delete_mode, "forEveryone")
        self.db.refresh(message)
        self.assertTrue(message.deleted_for_everyone)
        self.assertEqual(message.deleted_for_everyone_by, "bob")


if __name__ == "__main__":
    unittest.main()
