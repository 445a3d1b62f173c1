"""Per-user defaults created on sign-in.

Race-safe and idempotent: concurrent logins for the same user converge on
one preferences row and one set of default categories.
"""

import logging
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# (name, icon, description); sort_order is (position + 1) * 10
DEFAULT_CATEGORIES: tuple[tuple[str, str, str], ...] = (
    ("One-Liner", "💬", "Short, self-contained joke"),
    ("Bit", "🎭", "A distinct chunk of material on a specific topic"),
    ("Set", "📋", "A collection of bits arranged for performance"),
    ("Sketch", "🎬", "Scripted scene for multiple characters"),
    ("Premise", "💡", "An idea or concept not yet fully fleshed out"),
    ("Callback", "🔄", "A reference to an earlier joke"),
    ("Crowd Work", "👥", "Interactions with the audience"),
    ("Opener", "🚀", "Material used to start a set"),
    ("Closer", "🎯", "Strong material used to end a set"),
)


def ensure_user_defaults(db: Session, user_id: UUID) -> None:
    """Create preferences and default categories for a user if missing.

    Default categories are only seeded for a user with no categories at all,
    so defaults a user deleted do not come back on the next login.
    Does not commit; runs inside the caller's transaction.
    """
    db.execute(
        text("""
            INSERT INTO user_preferences (user_id)
            VALUES (:user_id)
            ON CONFLICT (user_id) DO NOTHING
        """),
        {"user_id": user_id},
    )

    existing = db.execute(
        text("SELECT COUNT(*) FROM categories WHERE user_id = :user_id"),
        {"user_id": user_id},
    ).scalar_one()
    if existing:
        return

    for position, (name, icon, description) in enumerate(DEFAULT_CATEGORIES):
        db.execute(
            text("""
                INSERT INTO categories
                    (user_id, name, icon, description, sort_order, is_default)
                VALUES (:user_id, :name, :icon, :description, :sort_order, true)
                ON CONFLICT (user_id, name) DO NOTHING
            """),
            {
                "user_id": user_id,
                "name": name,
                "icon": icon,
                "description": description,
                "sort_order": (position + 1) * 10,
            },
        )
    logger.info("Seeded %d default categories for user %s", len(DEFAULT_CATEGORIES), user_id)
