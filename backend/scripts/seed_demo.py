"""Seed a demo conversation covering each deletion and retention state.

Usage (from repository root):
    python backend/scripts/seed_demo.py

Usage (from backend directory):
    python scripts/seed_demo.py
    # or
    python -m scripts.seed_demo
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Make `app` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.db.session import SessionLocal
from app.models.conversation import Conversation
from app.models.message import Message
from app.schemas.message import MessageCreate
from app.services.messages import create_messages

DEMO_PARTICIPANTS = ["alumni-ana", "student-ben", "faculty-chen"]


def build_demo_messages(now: datetime) -> list[MessageCreate]:
    """Return a deterministic group-chat history spread over the last hour."""

    payloads = [
        ("alumni-ana", "Welcome to the mentoring circle!", "text", None, "sent", 60),
        ("student-ben", "Thanks! Sharing my resume draft.", "pdf", "https://res.cloudinary.com/demo/raw/upload/v1/chat_media/resume.pdf", "sent", 30),
        ("faculty-chen", "Reviewing it this afternoon.", "text", None, "sent", 10),
        ("student-ben", "Photo from the career fair", "image", "https://res.cloudinary.com/demo/image/upload/v1/chat_media/fair.jpg", "failed", 2),
    ]
    return [
        MessageCreate(
            sender_id=sender,
            content=content,
            message_type=message_type,
            media_url=media_url,
            status=status,
            created_at=now - timedelta(minutes=minutes_ago),
        )
        for sender, content, message_type, media_url, status, minutes_ago in payloads
    ]


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Seed a demo group conversation with deletion states.")
    parser.add_argument(
        "--with-expired",
        action="store_true",
        help="Mark the oldest message as an already expired disappearing message.",
    )
    return parser.parse_args()


def main() -> None:
    """Seed demo data and print a short summary."""

    args = parse_args()
    now = datetime.now(timezone.utc)

    with SessionLocal() as db:
        conversation = Conversation(
            participants_json=DEMO_PARTICIPANTS,
            is_group_chat=True,
            group_admin_ids_json=["faculty-chen"],
        )
        db.add(conversation)
        db.commit()
        db.refresh(conversation)

        created_messages = create_messages(db, conversation.id, build_demo_messages(now))
        if args.with_expired:
            oldest: Message = created_messages[0]
            oldest.auto_delete_enabled = True
            oldest.auto_delete_duration_hours = 0.5
            oldest.auto_delete_expires_at = now - timedelta(minutes=30)
            db.commit()
        conversation_id = conversation.id

    print("Seed complete")
    print(f"conversation_id={conversation_id}")
    print(f"messages_created={len(created_messages)}")
    print(f"participants={','.join(DEMO_PARTICIPANTS)}")
    print()
    print("Try:")
    print("  python scripts/run_cleanup.py")


if __name__ == "__main__":
    main()
