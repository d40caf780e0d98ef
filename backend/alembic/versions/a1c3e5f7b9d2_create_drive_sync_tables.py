"""Create Drive sync tables.

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a1c3e5f7b9d2"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create credential, settings, state and mirror tables."""
    op.create_table(
        "user_credentials",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("access_token_encrypted", sa.Text, nullable=True),
        sa.Column("refresh_token_encrypted", sa.Text, nullable=True),
        sa.Column("scope", sa.Text, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", name="uq_user_credentials_user_id"),
    )

    op.create_table(
        "sync_settings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("drive_folder_id", sa.String(128), nullable=True),
        sa.Column("drive_folder_name", sa.String(512), nullable=True),
        sa.Column("drive_folder_path", sa.Text, nullable=True),
        sa.Column("auto_delete_enabled", sa.Boolean, nullable=True, server_default=sa.false()),
        sa.Column("auto_delete_orphans_days", sa.Integer, nullable=True, server_default="30"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", name="uq_sync_settings_user_id"),
    )

    op.create_table(
        "sync_states",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("root_folder_id", sa.String(128), nullable=True),
        sa.Column("pending_folders_json", sa.Text, nullable=False, server_default="[]"),
        sa.Column(
            "status",
            sa.Enum("IDLE", "RUNNING", "ERROR", name="syncstatus"),
            nullable=False,
            server_default="IDLE",
        ),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("change_cursor", sa.String(512), nullable=True),
        sa.Column("scan_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_full_scan_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_changes_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_reconciled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stats_json", sa.Text, nullable=False, server_default="{}"),
        sa.Column("active_batch_id", sa.String(36), nullable=True),
        sa.Column("batch_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", name="uq_sync_states_user_id"),
    )

    op.create_table(
        "drive_folders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("folder_id", sa.String(128), nullable=False),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("parent_id", sa.String(128), nullable=True),
        sa.Column("path_cached", sa.Text, nullable=True),
        sa.Column("trashed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "folder_id", name="uq_drive_folders_user_folder"),
    )
    op.create_index(
        "ix_drive_folders_user_parent",
        "drive_folders",
        ["user_id", "parent_id"],
    )

    op.create_table(
        "drive_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("file_id", sa.String(128), nullable=False),
        sa.Column("name", sa.String(1024), nullable=False),
        sa.Column("mime_type", sa.String(255), nullable=True),
        sa.Column("size", sa.BigInteger, nullable=True),
        sa.Column("md5_checksum", sa.String(64), nullable=True),
        sa.Column("created_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modified_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("parents_json", sa.Text, nullable=False, server_default="[]"),
        sa.Column("trashed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("parent_id", sa.String(128), nullable=True),
        sa.Column("origin_folder_name", sa.String(512), nullable=True),
        sa.Column("path_cached", sa.Text, nullable=True),
        sa.Column("media_kind", sa.Enum("PHOTO", "VIDEO", name="mediakind"), nullable=True),
        sa.Column("width", sa.Integer, nullable=True),
        sa.Column("height", sa.Integer, nullable=True),
        sa.Column("duration_ms", sa.BigInteger, nullable=True),
        sa.Column("taken_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "MISSING", "DELETED", name="itemstatus"),
            nullable=False,
            server_default="ACTIVE",
        ),
        sa.Column(
            "origin_status",
            sa.Enum("ACTIVE", "MISSING", name="originstatus"),
            nullable=False,
            server_default="ACTIVE",
        ),
        sa.Column("origin_missing_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "file_id", name="uq_drive_items_user_file"),
    )
    op.create_index("ix_drive_items_user_status", "drive_items", ["user_id", "status"])
    op.create_index("ix_drive_items_user_origin", "drive_items", ["user_id", "origin_status"])

    op.create_table(
        "orphan_notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("ORPHANS_DETECTED", "ORPHANS_EXPIRING", name="notificationkind"),
            nullable=False,
            server_default="ORPHANS_DETECTED",
        ),
        sa.Column("items_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("sync_id", sa.String(64), nullable=False),
        sa.Column("acknowledged", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_orphan_notifications_user_ack",
        "orphan_notifications",
        ["user_id", "acknowledged"],
    )


def downgrade() -> None:
    """Drop all Drive sync tables."""
    op.drop_index("ix_orphan_notifications_user_ack", table_name="orphan_notifications")
    op.drop_table("orphan_notifications")
    op.drop_index("ix_drive_items_user_origin", table_name="drive_items")
    op.drop_index("ix_drive_items_user_status", table_name="drive_items")
    op.drop_table("drive_items")
    op.drop_index("ix_drive_folders_user_parent", table_name="drive_folders")
    op.drop_table("drive_folders")
    op.drop_table("sync_states")
    op.drop_table("sync_settings")
    op.drop_table("user_credentials")
