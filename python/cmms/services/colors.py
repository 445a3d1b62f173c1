"""Color assignment for new segments.

Within one document colors should be as distinct as possible; across all of
a user's documents they should cycle fairly. Strategy:

1. Drop palette colors already used by other segments of the same document.
2. Among the remaining colors pick the least recently used one; colors with
   no usage history are the stalest of all and win first, in palette order.
3. If the document has used the whole palette, pick the color with the
   lowest global usage count, ties broken by palette order.

Every path that assigns or changes a segment color must call
record_color_usage() in the same transaction.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from cmms.db.models import DEFAULT_PALETTE, ColorUsage, Segment, UserPreferences
from cmms.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class UsageStat:
    last_used_at: datetime
    usage_count: int


def choose_color(
    palette: list[str] | tuple[str, ...],
    used_in_document: set[str],
    usage: dict[str, UsageStat],
) -> str:
    """Pure color choice; colors are compared case-insensitively.

    Args:
        palette: Ordered candidate colors (non-empty).
        used_in_document: Colors already on other segments of the document.
        usage: Global usage history keyed by color.

    Returns:
        The chosen palette entry, as spelled in the palette.
    """
    if not palette:
        palette = DEFAULT_PALETTE
    used = {c.upper() for c in used_in_document}
    stats = {c.upper(): s for c, s in usage.items()}

    indexed = list(enumerate(palette))
    available = [(i, c) for i, c in indexed if c.upper() not in used]

    if available:

        def staleness(item: tuple[int, str]) -> tuple:
            i, color = item
            stat = stats.get(color.upper())
            if stat is None:
                return (0, i)
            return (1, stat.last_used_at, i)

        return min(available, key=staleness)[1]

    def global_count(item: tuple[int, str]) -> tuple[int, int]:
        i, color = item
        stat = stats.get(color.upper())
        return (stat.usage_count if stat else 0, i)

    return min(indexed, key=global_count)[1]


def get_palette(db: Session, user_id: UUID) -> tuple[list[str], bool]:
    """Return (palette, auto_assign_colors) for a user, with defaults."""
    prefs = db.get(UserPreferences, user_id)
    if prefs is None:
        return list(DEFAULT_PALETTE), True
    palette = [c for c in (prefs.color_palette or []) if isinstance(c, str)]
    return (palette or list(DEFAULT_PALETTE)), prefs.auto_assign_colors


def assign_color(
    db: Session,
    user_id: UUID,
    document_id: UUID,
    exclude_segment_id: UUID | None = None,
) -> str:
    """Pick a color for a new segment in document_id.

    When the user turned auto-assignment off, the first palette color is
    returned. The caller must record usage of the returned color.
    """
    palette, auto_assign = get_palette(db, user_id)
    if not auto_assign:
        return palette[0]

    used_stmt = select(Segment.color).where(
        Segment.user_id == user_id, Segment.document_id == document_id
    )
    if exclude_segment_id is not None:
        used_stmt = used_stmt.where(Segment.id != exclude_segment_id)
    used_in_document = set(db.scalars(used_stmt.distinct()).all())

    usage = {
        row.color: UsageStat(last_used_at=row.last_used_at, usage_count=row.usage_count)
        for row in db.scalars(select(ColorUsage).where(ColorUsage.user_id == user_id)).all()
    }

    color = choose_color(palette, used_in_document, usage)
    logger.debug(
        "color_assigned",
        document_id=str(document_id),
        color=color,
        document_colors=len(used_in_document),
    )
    return color


def record_color_usage(db: Session, user_id: UUID, color: str) -> None:
    """Upsert usage: count + 1 and refresh last_used_at. Does not commit."""
    db.execute(
        text("""
            INSERT INTO color_usage (user_id, color, last_used_at, usage_count)
            VALUES (:user_id, :color, clock_timestamp(), 1)
            ON CONFLICT (user_id, color) DO UPDATE
            SET usage_count = color_usage.usage_count + 1,
                last_used_at = clock_timestamp()
        """),
        {"user_id": user_id, "color": color.upper()},
    )
