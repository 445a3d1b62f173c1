#!/usr/bin/env python
"""Seed the development database with a demo user and material.

Creates one user with default categories, a registered document and a
couple of tagged segments, then prints a session token for that user so
the API can be exercised with curl.

Constraints:
- Refuses to run in staging or prod (CMMS_ENV check)
- Idempotent: fixed ids and ON CONFLICT DO NOTHING
- Never runs automatically (manual invocation only)

Usage:
    DATABASE_URL=... python scripts/seed_dev.py
"""

import os
import sys
from uuid import UUID

SEED_USER_ID = UUID("00000000-0000-4000-8000-000000000001")
SEED_DOCUMENT_ID = UUID("00000000-0000-4000-8000-000000000101")
SEED_GOOGLE_FILE_ID = "seed-google-file"
SEED_TEXT = (
    "I stopped at a gas station and the guy behind the counter had gas station hands. "
    "You know the hands. Every handshake is a small oil change."
)
SEED_SEGMENTS = (
    (
        UUID("00000000-0000-4000-8000-000000000201"),
        "Bit",
        "Gas station hands",
        "I stopped at a gas station and the guy behind the counter had gas station hands.",
        "#E57373",
    ),
    (
        UUID("00000000-0000-4000-8000-000000000202"),
        "One-Liner",
        "Oil change",
        "Every handshake is a small oil change.",
        "#81C784",
    ),
)
SEED_TAGS = ("travel", "work")


def main():
    # 1. Environment check (hard fail in staging/prod)
    cmms_env = os.getenv("CMMS_ENV", "local")
    if cmms_env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in CMMS_ENV={cmms_env}")
        sys.exit(1)

    if not os.getenv("DATABASE_URL"):
        print("ERROR: DATABASE_URL environment variable must be set")
        sys.exit(1)

    from sqlalchemy import text

    from cmms.auth.tokens import mint_session_token
    from cmms.config import get_settings
    from cmms.db.session import session_scope
    from cmms.services.bootstrap import ensure_user_defaults

    settings = get_settings()

    with session_scope() as db:
        db.execute(
            text("""
                INSERT INTO users (id, google_id, email, display_name)
                VALUES (:id, 'seed-google-id', 'dev@example.com', 'Dev Comic')
                ON CONFLICT (id) DO NOTHING
            """),
            {"id": SEED_USER_ID},
        )
        db.commit()
        ensure_user_defaults(db, SEED_USER_ID)

        db.execute(
            text("""
                INSERT INTO documents (id, user_id, google_file_id, title)
                VALUES (:id, :user_id, :google_file_id, 'Seed Notebook')
                ON CONFLICT (id) DO NOTHING
            """),
            {
                "id": SEED_DOCUMENT_ID,
                "user_id": SEED_USER_ID,
                "google_file_id": SEED_GOOGLE_FILE_ID,
            },
        )
        for name in SEED_TAGS:
            db.execute(
                text("""
                    INSERT INTO tags (user_id, name, tag_type)
                    VALUES (:user_id, :name, 'subject')
                    ON CONFLICT (user_id, name) DO NOTHING
                """),
                {"user_id": SEED_USER_ID, "name": name},
            )

        created = 0
        for segment_id, category, title, excerpt, color in SEED_SEGMENTS:
            start = SEED_TEXT.index(excerpt)
            result = db.execute(
                text("""
                    INSERT INTO segments (id, user_id, document_id, category_id,
                                          start_offset, end_offset, text_content, title, color)
                    SELECT :id, :user_id, :document_id, c.id, :start, :end, :text, :title, :color
                    FROM categories c
                    WHERE c.user_id = :user_id AND c.name = :category
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                """),
                {
                    "id": segment_id,
                    "user_id": SEED_USER_ID,
                    "document_id": SEED_DOCUMENT_ID,
                    "start": start,
                    "end": start + len(excerpt),
                    "text": excerpt,
                    "title": title,
                    "color": color,
                    "category": category,
                },
            )
            if result.fetchone() is not None:
                created += 1
            db.execute(
                text("""
                    INSERT INTO segment_tags (segment_id, tag_id)
                    SELECT :segment_id, t.id FROM tags t
                    WHERE t.user_id = :user_id AND t.name = 'work'
                    ON CONFLICT DO NOTHING
                """),
                {"segment_id": segment_id, "user_id": SEED_USER_ID},
            )
        db.commit()

    token = mint_session_token(
        SEED_USER_ID, "dev@example.com", settings.jwt_secret, settings.jwt_expires_in_s
    )
    print(f"Seeded user {SEED_USER_ID} ({created} new segments)")
    print(f"Session token: {token}")


if __name__ == "__main__":
    main()
