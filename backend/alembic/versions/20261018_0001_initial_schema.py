"""initial schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:01
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "conversations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("participants_json", sa.JSON(), nullable=False),
        sa.Column("is_group_chat", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("group_admin_ids_json", sa.JSON(), nullable=False),
        sa.Column("last_message_content", sa.Text(), nullable=False, server_default=""),
        sa.Column("last_message_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_conversations_created_at", "conversations", ["created_at"], unique=False)

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("conversation_id", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.String(length=64), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("message_type", sa.String(length=16), nullable=False, server_default="text"),
        sa.Column("media_url", sa.String(length=1024), nullable=True),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="sent"),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_for_everyone", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_for_everyone_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_for_everyone_by", sa.String(length=64), nullable=True),
        sa.Column("grace_delete_queued", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("grace_delete_retries", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("grace_delete_participants_json", sa.JSON(), nullable=False),
        sa.Column("hard_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("hard_deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_delete_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_delete_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_delete_duration_hours", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"], unique=False)
    op.create_index("ix_messages_sender_id", "messages", ["sender_id"], unique=False)
    op.create_index("ix_messages_is_deleted", "messages", ["is_deleted"], unique=False)
    op.create_index("ix_messages_grace_delete_queued", "messages", ["grace_delete_queued"], unique=False)
    op.create_index("ix_messages_auto_delete_expires_at", "messages", ["auto_delete_expires_at"], unique=False)
    op.create_index("ix_messages_created_at", "messages", ["created_at"], unique=False)

    op.create_table(
        "message_deletions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("delete_mode", sa.String(length=32), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_message_deletions_message_id", "message_deletions", ["message_id"], unique=False)
    op.create_index("ix_message_deletions_user_id", "message_deletions", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_message_deletions_user_id", table_name="message_deletions")
    op.drop_index("ix_message_deletions_message_id", table_name="message_deletions")
    op.drop_table("message_deletions")
    op.drop_index("ix_messages_created_at", table_name="messages")
    op.drop_index("ix_messages_auto_delete_expires_at", table_name="messages")
    op.drop_index("ix_messages_grace_delete_queued", table_name="messages")
    op.drop_index("ix_messages_is_deleted", table_name="messages")
    op.drop_index("ix_messages_sender_id", table_name="messages")
    op.drop_index("ix_messages_conversation_id", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_conversations_created_at", table_name="conversations")
    op.drop_table("conversations")
