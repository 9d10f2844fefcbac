"""create chat tables

Revision ID: 20261019_01
Revises: 
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


WORKSPACE_ROLE = sa.Enum("owner", "admin", "member", name="workspace_role")
CHAT_TYPE = sa.Enum("workspace", "project", "direct", name="chat_type")
MESSAGE_TYPE = sa.Enum("text", "image", "file", "system", name="message_type")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=32), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("profile_picture", sa.String(length=512), nullable=True),
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_workspace_id", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("email", name="uq_users_email"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "workspaces",
        sa.Column("id", sa.String(length=32), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("owner_id", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "projects",
        sa.Column("id", sa.String(length=32), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("workspace_id", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "members",
        sa.Column("id", sa.String(length=32), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=32), nullable=False),
        sa.Column("workspace_id", sa.String(length=32), nullable=False),
        sa.Column("role", WORKSPACE_ROLE, nullable=False, server_default="member"),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "workspace_id", name="uq_workspace_member"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.String(length=32), primary_key=True, nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("sender_id", sa.String(length=32), nullable=False),
        sa.Column("chat_type", CHAT_TYPE, nullable=False),
        sa.Column("workspace_id", sa.String(length=32), nullable=True),
        sa.Column("project_id", sa.String(length=32), nullable=True),
        sa.Column("participant_a_id", sa.String(length=32), nullable=True),
        sa.Column("participant_b_id", sa.String(length=32), nullable=True),
        sa.Column("message_type", MESSAGE_TYPE, nullable=False, server_default="text"),
        sa.Column("reply_to_id", sa.String(length=32), nullable=True),
        sa.Column("is_edited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["sender_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["reply_to_id"], ["messages.id"], ondelete="SET NULL"),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_messages_workspace_created_at", "messages", ["chat_type", "workspace_id", "created_at"]
    )
    op.create_index(
        "ix_messages_project_created_at", "messages", ["chat_type", "project_id", "created_at"]
    )
    op.create_index(
        "ix_messages_direct_created_at",
        "messages",
        ["participant_a_id", "participant_b_id", "created_at"],
    )
    op.create_index("ix_messages_sender_created_at", "messages", ["sender_id", "created_at"])

    op.create_table(
        "message_reactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("message_id", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.String(length=32), nullable=False),
        sa.Column("emoji", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_reactions_message", "message_reactions", ["message_id"])


def downgrade() -> None:
    op.drop_index("ix_reactions_message", table_name="message_reactions")
    op.drop_table("message_reactions")
    op.drop_index("ix_messages_sender_created_at", table_name="messages")
    op.drop_index("ix_messages_direct_created_at", table_name="messages")
    op.drop_index("ix_messages_project_created_at", table_name="messages")
    op.drop_index("ix_messages_workspace_created_at", table_name="messages")
    op.drop_table("messages")
    op.drop_table("members")
    op.drop_table("projects")
    op.drop_table("workspaces")
    op.drop_table("users")

    bind = op.get_bind()
    MESSAGE_TYPE.drop(bind, checkfirst=True)
    CHAT_TYPE.drop(bind, checkfirst=True)
    WORKSPACE_ROLE.drop(bind, checkfirst=True)
