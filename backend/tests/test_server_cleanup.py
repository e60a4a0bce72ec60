"""Tests for the server cleanup sweep and its scheduled job wrappers."""

from __future__ import annotations

import asyncio
import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.models.base import Base
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.message_deletion import MessageDeletion
from app.services.deletion_jobs import run_auto_delete_sweep, run_periodically, run_server_cleanup_job
from app.services.message_deletion import DeletionPolicy, MessageDeletionService

PHOTO_URL = "https://res.cloudinary.com/inspiranet/image/upload/v1712/chat_media/stale.png"


class _RecordingMediaStorage:
    def __init__(self) -> None:
        self.destroyed: list[str] = []

    def destroy(self, public_id: str) -> None:
        self.destroyed.append(public_id)


class ServerCleanupTests(unittest.TestCase):
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
        self.conversation = Conversation(participants_json=["alice", "bob"])
        self.db.add(self.conversation)
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _add(self, **fields) -> Message:
        fields.setdefault("conversation_id", self.conversation.id)
        fields.setdefault("sender_id", "alice")
        fields.setdefault("content", "hello")
        message = Message(**fields)
        self.db.add(message)
        self.db.commit()
        return message

    def _soft_deleted(self, days_ago: float, **fields) -> Message:
        stamp = datetime.now(timezone.utc) - timedelta(days=days_ago)
        return self._add(is_deleted=True, created_at=stamp, updated_at=stamp, **fields)

    def _exists(self, message_id: int) -> bool:
        return self.db.scalar(select(Message.id).where(Message.id == message_id)) is not None

    def test_orphaned_messages_are_removed(self) -> None:
        orphan = self._add(conversation_id=987654)
        orphan.deleted_by.append(MessageDeletion(user_id="alice", delete_mode="forMe"))
        self.db.commit()
        kept = self._add()
        orphan_id = orphan.id

        result = self.service.server_cleanup(delete_orphaned=True)

        self.assertTrue(result.success)
        self.assertEqual(result.results.orphaned, 1)
        self.assertFalse(self._exists(orphan_id))
        self.assertTrue(self._exists(kept.id))
        self.assertEqual(list(self.db.scalars(select(MessageDeletion))), [])

    def test_retention_boundary_is_exclusive(self) -> None:
        stale = self._soft_deleted(31, message_type="image", media_url=PHOTO_URL)
        recent = self._soft_deleted(29)
        stale_id = stale.id

        result = self.service.server_cleanup(delete_orphaned=False, delete_expired_auto_delete=False)

        self.assertEqual(result.results.old_soft_deleted, 1)
        self.assertFalse(self._exists(stale_id))
        self.assertTrue(self._exists(recent.id))
        self.assertEqual(self.storage.destroyed, ["chat_media/stale"])

    def test_row_stamped_exactly_at_cutoff_survives(self) -> None:
        fixed_now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        cutoff = fixed_now - timedelta(days=30)
        at_cutoff = self._add(is_deleted=True, created_at=cutoff, updated_at=cutoff)
        past_cutoff = self._add(
            is_deleted=True,
            created_at=cutoff - timedelta(seconds=1),
            updated_at=cutoff - timedelta(seconds=1),
        )
        past_cutoff_id = past_cutoff.id
        service = MessageDeletionService(
            self.db,
            policy=DeletionPolicy(),
            media_storage=self.storage,
            clock=lambda: fixed_now,
        )

        result = service.server_cleanup(delete_orphaned=False, delete_expired_auto_delete=False)

        self.assertEqual(result.results.old_soft_deleted, 1)
        self.assertTrue(self._exists(at_cutoff.id))
        self.assertFalse(self._exists(past_cutoff_id))

    def test_retention_days_override(self) -> None:
        message = self._soft_deleted(8)

        default_run = self.service.server_cleanup(delete_orphaned=False, delete_expired_auto_delete=False)
        self.assertEqual(default_run.results.old_soft_deleted, 0)

        override_run = self.service.server_cleanup(
            delete_orphaned=False,
            delete_expired_auto_delete=False,
            soft_delete_retention_days=7,
        )
        self.assertEqual(override_run.results.old_soft_deleted, 1)
        self.assertFalse(self._exists(message.id))

    def test_cleanup_reports_breakdown_and_total(self) -> None:
        self._add(conversation_id=555)
        expired = self._add(
            auto_delete_enabled=True,
            auto_delete_expires_at=datetime.now(timezone.utc) - timedelta(hours=1),
        )
        self._soft_deleted(45)
        self._add(content="survivor")
        expired_id = expired.id

        result = self.service.server_cleanup()

        self.assertEqual(result.delete_mode, "serverCleanup")
        self.assertEqual(
            (result.results.orphaned, result.results.expired_auto_delete, result.results.old_soft_deleted),
            (1, 1, 1),
        )
        self.assertEqual(result.deleted_count, 3)
        self.assertFalse(self._exists(expired_id))
        self.db.refresh(self.conversation)
        self.assertEqual(self.conversation.last_message_content, "survivor")

        again = self.service.server_cleanup()
        self.assertEqual(again.deleted_count, 0)

    def test_disabled_categories_are_skipped(self) -> None:
        orphan = self._add(conversation_id=31337)

        result = self.service.server_cleanup(
            delete_orphaned=False,
            delete_expired_auto_delete=False,
            delete_old_soft_deleted=False,
        )

        self.assertEqual(result.deleted_count, 0)
        self.assertTrue(self._exists(orphan.id))

    def test_jobs_run_in_their_own_session(self) -> None:
        self._add(
            auto_delete_enabled=True,
            auto_delete_expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        )
        self._add(conversation_id=4242)

        sweep = run_auto_delete_sweep(self.SessionLocal, policy=DeletionPolicy(), media_storage=self.storage)
        cleanup = run_server_cleanup_job(
            self.SessionLocal,
            delete_expired_auto_delete=False,
            policy=DeletionPolicy(),
            media_storage=self.storage,
        )

        self.assertEqual(sweep.deleted_count, 1)
        self.assertEqual(cleanup.results.orphaned, 1)
        self.assertEqual(self.db.scalar(select(Message.id).where(Message.conversation_id == 4242)), None)

    def test_periodic_runner_survives_job_failure(self) -> None:
        calls: list[int] = []

        def flaky_job() -> None:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("database unavailable")

        async def drive() -> None:
            task = asyncio.create_task(run_periodically(flaky_job, 0, name="flaky"))
            while len(calls) < 3:
                await asyncio.sleep(0.01)
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task

        with mock.patch("app.services.deletion_jobs.logger") as logger:
            asyncio.run(drive())

        self.assertGreaterEqual(len(calls), 3)
        logger.exception.assert_called()


if __name__ == "__main__":
    unittest.main()
