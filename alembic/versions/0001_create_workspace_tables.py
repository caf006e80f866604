"""create workspace tables

Revision ID: 0001_create_workspace_tables
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_create_workspace_tables"
down_revision = None
branch_labels = None
depends_on = None

DOC_JSON = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def upgrade():
    op.create_table(
        "folders",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("parent_id", sa.String(length=36), sa.ForeignKey("folders.id", ondelete="CASCADE"), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_folders_owner_id", "folders", ["owner_id"])
    op.create_index("ix_folders_owner_parent", "folders", ["owner_id", "parent_id"])

    op.create_table(
        "pages",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("folder_id", sa.String(length=36), sa.ForeignKey("folders.id", ondelete="SET NULL"), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("content", DOC_JSON, nullable=False),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("slug", sa.String(length=255), nullable=True, unique=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_pages_owner_id", "pages", ["owner_id"])
    op.create_index("ix_pages_owner_folder", "pages", ["owner_id", "folder_id"])

    op.create_table(
        "page_links",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("from_page_id", sa.String(length=36), sa.ForeignKey("pages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("to_page_id", sa.String(length=36), sa.ForeignKey("pages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("from_page_id", "to_page_id", name="ux_page_links_pair"),
    )
    op.create_index("ix_page_links_to", "page_links", ["to_page_id"])

    op.create_table(
        "bin_items",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("item_type", sa.String(length=16), nullable=False),
        sa.Column("item_id", sa.String(length=36), nullable=False),
        sa.Column("item_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("payload", DOC_JSON, nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_bin_items_owner_id", "bin_items", ["owner_id"])
    op.create_index("ix_bin_items_item_type", "bin_items", ["item_type"])
    op.create_index("ix_bin_items_owner_deleted", "bin_items", ["owner_id", "deleted_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("item_id", sa.String(length=255), nullable=False),
        sa.Column("details", DOC_JSON, nullable=False),
    )
    op.create_index("ix_audit_logs_owner_id", "audit_logs", ["owner_id"])


def downgrade():
    op.drop_index("ix_audit_logs_owner_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_bin_items_owner_deleted", table_name="bin_items")
    op.drop_index("ix_bin_items_item_type", table_name="bin_items")
    op.drop_index("ix_bin_items_owner_id", table_name="bin_items")
    op.drop_table("bin_items")
    op.drop_index("ix_page_links_to", table_name="page_links")
    op.drop_table("page_links")
    op.drop_index("ix_pages_owner_folder", table_name="pages")
    op.drop_index("ix_pages_owner_id", table_name="pages")
    op.drop_table("pages")
    op.drop_index("ix_folders_owner_parent", table_name="folders")
    op.drop_index("ix_folders_owner_id", table_name="folders")
    op.drop_table("folders")
