"""SQLAlchemy ORM models for CMMS.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Every row except the users table itself is owned by exactly one user.

The segments.search_vector column is generated by PostgreSQL and only
exists in the migration; it is read through raw SQL in the search service.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Computed,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class AssociationType(str, PyEnum):
    """How a target segment relates to its source."""

    derivative = "derivative"
    callback = "callback"
    reference = "reference"
    version = "version"


class SyncAction(str, PyEnum):
    """Kinds of sync runs recorded in sync_log."""

    full_sync = "full_sync"
    single_sync = "single_sync"
    marker_repair = "marker_repair"


class SyncStatus(str, PyEnum):
    """Outcome of a sync run."""

    success = "success"
    failed = "failed"
    partial = "partial"


class Theme(str, PyEnum):
    """UI theme preference."""

    light = "light"
    dark = "dark"
    system = "system"


# Ten-color palette used when a user has not configured one.
DEFAULT_PALETTE: tuple[str, ...] = (
    "#E57373",
    "#81C784",
    "#64B5F6",
    "#FFD54F",
    "#BA68C8",
    "#4DB6AC",
    "#FF8A65",
    "#A1887F",
    "#90A4AE",
    "#F06292",
)

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


def _pk() -> Mapped[UUID]:
    return mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )


def _created_at() -> Mapped[datetime]:
    return mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("now()"),
        nullable=False,
    )


def _updated_at() -> Mapped[datetime]:
    # Also refreshed by the set_updated_at trigger on every UPDATE.
    return mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("now()"),
        nullable=False,
    )


def _owner() -> Mapped[UUID]:
    return mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )


# =============================================================================
# Users
# =============================================================================


class User(Base):
    """User account, created on first Google sign-in.

    Google tokens are stored encrypted (see services/crypto.py); the
    plaintext never touches the database.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = _pk()
    google_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    watched_folder_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    google_access_token_ciphertext: Mapped[bytes | None] = mapped_column(
        LargeBinary, nullable=True
    )
    google_access_token_nonce: Mapped[bytes | None] = mapped_column(
        LargeBinary, nullable=True
    )
    google_refresh_token_ciphertext: Mapped[bytes | None] = mapped_column(
        LargeBinary, nullable=True
    )
    google_refresh_token_nonce: Mapped[bytes | None] = mapped_column(
        LargeBinary, nullable=True
    )
    google_token_expires_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    # Non-null while a sync run holds this user's lease.
    sync_lease_acquired_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    preferences: Mapped["UserPreferences | None"] = relationship(
        "UserPreferences", back_populates="user", uselist=False, passive_deletes=True
    )


class UserPreferences(Base):
    """Per-user display settings, including the color palette."""

    __tablename__ = "user_preferences"

    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    color_palette: Mapped[list[str]] = mapped_column(
        JSONB,
        server_default=text(
            "'[" + ", ".join(f'"{c}"' for c in DEFAULT_PALETTE) + "]'::jsonb"
        ),
        nullable=False,
    )
    auto_assign_colors: Mapped[bool] = mapped_column(
        Boolean, server_default="true", nullable=False
    )
    theme: Mapped[str] = mapped_column(Text, server_default="system", nullable=False)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    __table_args__ = (
        CheckConstraint(
            "theme IN ('light', 'dark', 'system')",
            name="ck_user_preferences_theme",
        ),
    )

    user: Mapped["User"] = relationship("User", back_populates="preferences")


# =============================================================================
# Taxonomy
# =============================================================================


class Category(Base):
    """A user-defined kind of material (Bit, One-Liner, ...)."""

    __tablename__ = "categories"

    id: Mapped[UUID] = _pk()
    user_id: Mapped[UUID] = _owner()
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    icon: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, server_default="false", nullable=False)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_categories_user_name"),
        CheckConstraint(
            "char_length(name) BETWEEN 1 AND 100",
            name="ck_categories_name_length",
        ),
    )


class Tag(Base):
    """A free-form label; tag_type is conventionally subject/technique/theme/status."""

    __tablename__ = "tags"

    id: Mapped[UUID] = _pk()
    user_id: Mapped[UUID] = _owner()
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    tag_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_tags_user_name"),
        CheckConstraint(
            "char_length(name) BETWEEN 1 AND 100",
            name="ck_tags_name_length",
        ),
    )


# =============================================================================
# Documents and Segments
# =============================================================================


class Document(Base):
    """A registered Google Doc. Soft-deleted via is_active."""

    __tablename__ = "documents"

    id: Mapped[UUID] = _pk()
    user_id: Mapped[UUID] = _owner()
    google_file_id: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    google_folder_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    mime_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    last_modified_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, server_default="true", nullable=False)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    __table_args__ = (
        UniqueConstraint("user_id", "google_file_id", name="uq_documents_user_google_file"),
    )

    segments: Mapped[list["Segment"]] = relationship(
        "Segment",
        back_populates="document",
        passive_deletes=True,  # ON DELETE CASCADE
        order_by="Segment.start_offset",
    )


class Segment(Base):
    """An excerpt of a document, tracked by a named range in the live doc.

    Offsets are code point offsets into the document's extracted plain text.
    """

    __tablename__ = "segments"

    id: Mapped[UUID] = _pk()
    user_id: Mapped[UUID] = _owner()
    document_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    # No ON DELETE action: category deletion must migrate segments explicitly.
    category_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("categories.id"),
        nullable=False,
    )
    start_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    end_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    text_content: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    color: Mapped[str] = mapped_column(String(7), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, server_default="true", nullable=False)
    word_count: Mapped[int | None] = mapped_column(
        Integer,
        Computed(
            r"array_length(regexp_split_to_array(btrim(text_content), '\s+'), 1)",
            persisted=True,
        ),
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    __table_args__ = (
        CheckConstraint("start_offset >= 0", name="ck_segments_start_nonneg"),
        CheckConstraint("end_offset > start_offset", name="ck_segments_offsets_ordered"),
        CheckConstraint(f"color ~ '{HEX_COLOR_PATTERN}'", name="ck_segments_color_hex"),
    )

    document: Mapped["Document"] = relationship(
        "Document", back_populates="segments", lazy="joined"
    )
    category: Mapped["Category"] = relationship("Category", lazy="joined")
    tags: Mapped[list["Tag"]] = relationship(
        "Tag",
        secondary="segment_tags",
        order_by="Tag.name",
        passive_deletes=True,
    )


class SegmentTag(Base):
    """Junction between segments and tags."""

    __tablename__ = "segment_tags"

    segment_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("segments.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tag_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("tags.id", ondelete="CASCADE"),
        primary_key=True,
    )
    created_at: Mapped[datetime] = _created_at()


class SegmentAssociation(Base):
    """Directed, typed edge between two segments."""

    __tablename__ = "segment_associations"

    id: Mapped[UUID] = _pk()
    source_segment_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("segments.id", ondelete="CASCADE"),
        nullable=False,
    )
    target_segment_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("segments.id", ondelete="CASCADE"),
        nullable=False,
    )
    association_type: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        UniqueConstraint(
            "source_segment_id",
            "target_segment_id",
            name="uq_segment_associations_pair",
        ),
        CheckConstraint(
            "source_segment_id <> target_segment_id",
            name="ck_segment_associations_not_self",
        ),
        CheckConstraint(
            "association_type IN ('derivative', 'callback', 'reference', 'version')",
            name="ck_segment_associations_type",
        ),
    )


# =============================================================================
# Color usage and sync audit
# =============================================================================


class ColorUsage(Base):
    """Per-user color history feeding color assignment."""

    __tablename__ = "color_usage"

    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    color: Mapped[str] = mapped_column(String(7), primary_key=True)
    last_used_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("now()"),
        nullable=False,
    )
    usage_count: Mapped[int] = mapped_column(Integer, server_default="1", nullable=False)


class SyncLog(Base):
    """Append-only audit trail of sync runs."""

    __tablename__ = "sync_log"

    id: Mapped[UUID] = _pk()
    user_id: Mapped[UUID] = _owner()
    document_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True,
    )
    action: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        CheckConstraint(
            "action IN ('full_sync', 'single_sync', 'marker_repair')",
            name="ck_sync_log_action",
        ),
        CheckConstraint(
            "status IN ('success', 'failed', 'partial')",
            name="ck_sync_log_status",
        ),
    )
