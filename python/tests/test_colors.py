"""Tests for segment color selection.

choose_color is pure and covered directly. assign_color and
record_color_usage are covered against the database.
"""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from cmms.db.models import DEFAULT_PALETTE
from cmms.services.colors import UsageStat, assign_color, choose_color, record_color_usage
from tests.factories import (
    create_test_document,
    create_test_segment,
    get_category_id,
    set_palette,
)

T0 = datetime(2026, 1, 1, tzinfo=UTC)
PALETTE = ["#111111", "#222222", "#333333"]


def _simulate(palette, picks, used_in_document=None):
    """Pick colors repeatedly for one document, updating usage like the service."""
    used = set(used_in_document or ())
    usage: dict[str, UsageStat] = {}
    chosen = []
    for n in range(picks):
        color = choose_color(palette, used, usage)
        previous = usage.get(color)
        usage[color] = UsageStat(
            last_used_at=T0 + timedelta(minutes=n),
            usage_count=(previous.usage_count if previous else 0) + 1,
        )
        used.add(color)
        chosen.append(color)
    return chosen


class TestChooseColor:
    def test_first_picks_are_distinct_in_palette_order(self):
        assert _simulate(PALETTE, 3) == PALETTE

    def test_default_palette_yields_ten_distinct_colors(self):
        picks = _simulate(list(DEFAULT_PALETTE), len(DEFAULT_PALETTE))
        assert len(set(picks)) == len(DEFAULT_PALETTE)

    def test_exhausted_document_falls_back_to_lowest_global_count(self):
        usage = {
            "#111111": UsageStat(T0, 5),
            "#222222": UsageStat(T0, 2),
            "#333333": UsageStat(T0, 7),
        }
        assert choose_color(PALETTE, set(PALETTE), usage) == "#222222"

    def test_global_count_ties_break_by_palette_order(self):
        usage = {c: UsageStat(T0, 3) for c in PALETTE}
        assert choose_color(PALETTE, set(PALETTE), usage) == "#111111"

    def test_never_used_color_wins_over_stale_one(self):
        usage = {"#111111": UsageStat(T0 - timedelta(days=365), 1)}
        assert choose_color(PALETTE, set(), usage) == "#222222"

    def test_least_recently_used_wins_when_all_have_history(self):
        usage = {
            "#111111": UsageStat(T0 + timedelta(hours=2), 1),
            "#222222": UsageStat(T0, 9),
            "#333333": UsageStat(T0 + timedelta(hours=1), 1),
        }
        assert choose_color(PALETTE, set(), usage) == "#222222"

    def test_document_colors_are_skipped(self):
        assert choose_color(PALETTE, {"#111111"}, {}) == "#222222"

    def test_comparison_is_case_insensitive(self):
        palette = ["#abcdef", "#123456"]
        assert choose_color(palette, {"#ABCDEF"}, {}) == "#123456"

    def test_returns_palette_spelling(self):
        usage = {"#ABCDEF": UsageStat(T0, 1)}
        assert choose_color(["#abcdef"], set(), usage) == "#abcdef"

    def test_empty_palette_uses_default(self):
        assert choose_color([], set(), {}) == DEFAULT_PALETTE[0]


class TestAssignColor:
    def test_new_document_gets_first_palette_color(self, db_session: Session, user_id):
        document_id = create_test_document(db_session, user_id)

        assert assign_color(db_session, user_id, document_id) == DEFAULT_PALETTE[0]

    def test_second_segment_gets_different_color(self, db_session: Session, user_id):
        document_id = create_test_document(db_session, user_id)
        category_id = get_category_id(db_session, user_id, "Bit")
        create_test_segment(
            db_session, user_id, document_id, category_id, color=DEFAULT_PALETTE[0]
        )

        assert assign_color(db_session, user_id, document_id) != DEFAULT_PALETTE[0]

    def test_auto_assign_off_uses_first_palette_color(self, db_session: Session, user_id):
        set_palette(db_session, user_id, ["#0000FF", "#00FF00"], auto=False)
        document_id = create_test_document(db_session, user_id)
        category_id = get_category_id(db_session, user_id, "Bit")
        create_test_segment(db_session, user_id, document_id, category_id, color="#0000FF")

        assert assign_color(db_session, user_id, document_id) == "#0000FF"

    def test_custom_palette_is_used(self, db_session: Session, user_id):
        set_palette(db_session, user_id, ["#0000FF", "#00FF00"])
        document_id = create_test_document(db_session, user_id)

        assert assign_color(db_session, user_id, document_id) == "#0000FF"


class TestRecordColorUsage:
    @pytest.mark.parametrize("times", [1, 3])
    def test_usage_count_accumulates(self, db_session: Session, user_id, times):
        for _ in range(times):
            record_color_usage(db_session, user_id, "#e57373")
        db_session.commit()

        count = db_session.execute(
            text(
                "SELECT usage_count FROM color_usage WHERE user_id = :u AND color = '#E57373'"
            ),
            {"u": user_id},
        ).scalar_one()
        assert count == times
