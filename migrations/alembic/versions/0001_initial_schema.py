"""Initial schema - users, preferences, taxonomy, documents, segments, sync log

Revision ID: 0001
Revises:
Create Date: 2026-10-16

Creates every CMMS table. segments.search_vector and segments.word_count are
generated columns, so they stay current on every insert and update of a
segment's text or title. A shared trigger refreshes updated_at.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

DEFAULT_PALETTE_JSON = (
    '["#E57373", "#81C784", "#64B5F6", "#FFD54F", "#BA68C8", '
    '"#4DB6AC", "#FF8A65", "#A1887F", "#90A4AE", "#F06292"]'
)

UPDATED_AT_TABLES = ("users", "user_preferences", "categories", "documents", "segments")


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        sa.UUID(),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _timestamp_column(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    # Enable pgcrypto extension for gen_random_uuid()
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # ==========================================================================
    # users table
    # ==========================================================================
    op.create_table(
        "users",
        _id_column(),
        sa.Column("google_id", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("profile_image_url", sa.Text(), nullable=True),
        sa.Column("watched_folder_id", sa.Text(), nullable=True),
        sa.Column("google_access_token_ciphertext", sa.LargeBinary(), nullable=True),
        sa.Column("google_access_token_nonce", sa.LargeBinary(), nullable=True),
        sa.Column("google_refresh_token_ciphertext", sa.LargeBinary(), nullable=True),
        sa.Column("google_refresh_token_nonce", sa.LargeBinary(), nullable=True),
        sa.Column("google_token_expires_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("sync_lease_acquired_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("google_id", name="uq_users_google_id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    # ==========================================================================
    # user_preferences table
    # ==========================================================================
    op.create_table(
        "user_preferences",
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column(
            "color_palette",
            postgresql.JSONB(),
            server_default=sa.text(f"'{DEFAULT_PALETTE_JSON}'::jsonb"),
            nullable=False,
        ),
        sa.Column("auto_assign_colors", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("theme", sa.Text(), server_default="system", nullable=False),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.PrimaryKeyConstraint("user_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "theme IN ('light', 'dark', 'system')",
            name="ck_user_preferences_theme",
        ),
    )

    # ==========================================================================
    # categories table
    # ==========================================================================
    op.create_table(
        "categories",
        _id_column(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("icon", sa.String(50), nullable=True),
        sa.Column("sort_order", sa.Integer(), server_default="0", nullable=False),
        sa.Column("is_default", sa.Boolean(), server_default="false", nullable=False),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "name", name="uq_categories_user_name"),
        sa.CheckConstraint(
            "char_length(name) BETWEEN 1 AND 100",
            name="ck_categories_name_length",
        ),
    )
    op.create_index("idx_categories_user_sort", "categories", ["user_id", "sort_order"])

    # ==========================================================================
    # tags table
    # ==========================================================================
    op.create_table(
        "tags",
        _id_column(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("tag_type", sa.String(50), nullable=True),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "name", name="uq_tags_user_name"),
        sa.CheckConstraint(
            "char_length(name) BETWEEN 1 AND 100",
            name="ck_tags_name_length",
        ),
    )

    # ==========================================================================
    # documents table
    # ==========================================================================
    op.create_table(
        "documents",
        _id_column(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("google_file_id", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("google_folder_id", sa.Text(), nullable=True),
        sa.Column("mime_type", sa.Text(), nullable=True),
        sa.Column("last_synced_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_modified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "user_id", "google_file_id", name="uq_documents_user_google_file"
        ),
    )
    op.create_index(
        "idx_documents_user_active_updated",
        "documents",
        ["user_id", "is_active", sa.text("updated_at DESC")],
    )

    # ==========================================================================
    # segments table
    # ==========================================================================
    op.create_table(
        "segments",
        _id_column(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("category_id", sa.UUID(), nullable=False),
        sa.Column("start_offset", sa.Integer(), nullable=False),
        sa.Column("end_offset", sa.Integer(), nullable=False),
        sa.Column("text_content", sa.Text(), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("color", sa.String(7), nullable=False),
        sa.Column("is_primary", sa.Boolean(), server_default="true", nullable=False),
        sa.Column(
            "word_count",
            sa.Integer(),
            sa.Computed(
                r"array_length(regexp_split_to_array(btrim(text_content), '\s+'), 1)",
                persisted=True,
            ),
            nullable=True,
        ),
        sa.Column(
            "search_vector",
            postgresql.TSVECTOR(),
            sa.Computed(
                "setweight(to_tsvector('english'::regconfig, coalesce(title, '')), 'A') || "
                "setweight(to_tsvector('english'::regconfig, text_content), 'B')",
                persisted=True,
            ),
            nullable=True,
        ),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
        # No ON DELETE action: deleting a category must migrate its segments first
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
        sa.CheckConstraint("start_offset >= 0", name="ck_segments_start_nonneg"),
        sa.CheckConstraint("end_offset > start_offset", name="ck_segments_offsets_ordered"),
        sa.CheckConstraint("color ~ '^#[0-9A-Fa-f]{6}$'", name="ck_segments_color_hex"),
    )
    op.create_index(
        "idx_segments_user_created", "segments", ["user_id", sa.text("created_at DESC")]
    )
    op.create_index("idx_segments_document_start", "segments", ["document_id", "start_offset"])
    op.create_index("idx_segments_category", "segments", ["category_id"])
    op.create_index(
        "idx_segments_search_vector",
        "segments",
        ["search_vector"],
        postgresql_using="gin",
    )

    # ==========================================================================
    # segment_tags junction
    # ==========================================================================
    op.create_table(
        "segment_tags",
        sa.Column("segment_id", sa.UUID(), nullable=False),
        sa.Column("tag_id", sa.UUID(), nullable=False),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("segment_id", "tag_id"),
        sa.ForeignKeyConstraint(["segment_id"], ["segments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tag_id"], ["tags.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_segment_tags_tag", "segment_tags", ["tag_id"])

    # ==========================================================================
    # segment_associations table
    # ==========================================================================
    op.create_table(
        "segment_associations",
        _id_column(),
        sa.Column("source_segment_id", sa.UUID(), nullable=False),
        sa.Column("target_segment_id", sa.UUID(), nullable=False),
        sa.Column("association_type", sa.Text(), nullable=False),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["source_segment_id"], ["segments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["target_segment_id"], ["segments.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "source_segment_id",
            "target_segment_id",
            name="uq_segment_associations_pair",
        ),
        sa.CheckConstraint(
            "source_segment_id <> target_segment_id",
            name="ck_segment_associations_not_self",
        ),
        sa.CheckConstraint(
            "association_type IN ('derivative', 'callback', 'reference', 'version')",
            name="ck_segment_associations_type",
        ),
    )
    op.create_index(
        "idx_segment_associations_target", "segment_associations", ["target_segment_id"]
    )

    # ==========================================================================
    # color_usage table
    # ==========================================================================
    op.create_table(
        "color_usage",
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("color", sa.String(7), nullable=False),
        _timestamp_column("last_used_at"),
        sa.Column("usage_count", sa.Integer(), server_default="1", nullable=False),
        sa.PrimaryKeyConstraint("user_id", "color"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )

    # ==========================================================================
    # sync_log table
    # ==========================================================================
    op.create_table(
        "sync_log",
        _id_column(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=True),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "action IN ('full_sync', 'single_sync', 'marker_repair')",
            name="ck_sync_log_action",
        ),
        sa.CheckConstraint(
            "status IN ('success', 'failed', 'partial')",
            name="ck_sync_log_status",
        ),
    )
    op.create_index(
        "idx_sync_log_user_action_created",
        "sync_log",
        ["user_id", "action", sa.text("created_at DESC")],
    )

    # ==========================================================================
    # updated_at trigger
    # ==========================================================================
    op.execute("""
        CREATE OR REPLACE FUNCTION set_updated_at() RETURNS trigger AS $$
        BEGIN
            NEW.updated_at = now();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
    """)
    for table in UPDATED_AT_TABLES:
        op.execute(f"""
            CREATE TRIGGER trg_{table}_updated_at
            BEFORE UPDATE ON {table}
            FOR EACH ROW EXECUTE FUNCTION set_updated_at()
        """)


def downgrade() -> None:
    for table in UPDATED_AT_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS trg_{table}_updated_at ON {table}")
    op.execute("DROP FUNCTION IF EXISTS set_updated_at()")

    # Drop tables in reverse order (respecting foreign key dependencies)
    op.drop_table("sync_log")
    op.drop_table("color_usage")
    op.drop_table("segment_associations")
    op.drop_table("segment_tags")
    op.drop_table("segments")
    op.drop_table("documents")
    op.drop_table("tags")
    op.drop_table("categories")
    op.drop_table("user_preferences")
    op.drop_table("users")

    # Note: We don't drop pgcrypto extension as it may be used by other things
