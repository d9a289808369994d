"""
Tests for analysis.py functions.

Tests the read-side queries against a populated insights.db, plus the
database summary against a mocked connection.
"""

from datetime import date
from unittest.mock import MagicMock

import pytest

from swipe_insights.analysis import (
    get_conversation_lengths,
    get_database_summary,
    get_matches_data,
    get_profile_aggregates,
    get_profile_detail,
    get_profile_meta,
    get_stored_meta,
    get_usage_series,
    list_profiles,
)
from swipe_insights.config import Config
from swipe_insights.database import InsightsDatabase


@pytest.fixture
def db(populated_db_path):
    """Connected InsightsDatabase over the populated insights.db."""
    with InsightsDatabase(Config(str(populated_db_path))) as database:
        yield database


class TestListProfiles:
    """Tests for list_profiles."""

    def test_most_recent_first(self, db):
        """Profiles are ordered by last active date, newest first."""
        profiles = list_profiles(db)
        assert [p["profile_id"] for p in profiles] == ["hinge-1", "tinder-1"]

    def test_summary_fields(self, db):
        """Each entry carries the window and a match count."""
        tinder = [p for p in list_profiles(db) if p["profile_id"] == "tinder-1"][0]
        assert tinder["platform"] == "TINDER"
        assert tinder["first_active_date"] == "2023-01-01"
        assert tinder["days_in_period"] == 4
        assert tinder["match_count"] == 2


class TestGetProfileDetail:
    """Tests for get_profile_detail."""

    def test_detail(self, db):
        """Profile, row counts and the stored all-time snapshot."""
        detail = get_profile_detail(db, "tinder-1")
        assert detail["profile"]["bio"] == "Coffee & hiking"
        assert detail["profile"]["age_at_last_usage"] == 27
        assert detail["counts"] == {
            "usage_day": 4,
            "match": 2,
            "message": 3,
            "interaction": 0,
            "media": 2,
            "prompt": 0,
        }
        assert detail["meta"]["period"] == "all-time"
        assert detail["meta"]["stored"] is True

    def test_unknown(self, db):
        """Unknown profiles return None."""
        assert get_profile_detail(db, "nobody") is None


class TestGetProfileMeta:
    """Tests for get_profile_meta and get_stored_meta."""

    def test_stored(self, db):
        """Stored periods are read back with their computed_at."""
        meta = get_profile_meta(db, "tinder-1", "2023")
        assert meta["stored"] is True
        assert meta["computed_at"] is not None
        assert meta["swipe_likes_total"] == 15

    def test_computed_quarter(self, db):
        """Unstored calendar periods are computed and clipped to the window."""
        meta = get_profile_meta(db, "tinder-1", "2023-Q1")
        assert meta["stored"] is False
        assert (meta["from_date"], meta["to_date"]) == ("2023-01-01", "2023-01-04")
        assert meta["conversation_count"] == 1

    def test_computed_rolling(self, db):
        """Rolling periods end at the reference day."""
        meta = get_profile_meta(db, "tinder-1", "last-2-days", today=date(2023, 1, 4))
        assert (meta["from_date"], meta["to_date"]) == ("2023-01-03", "2023-01-04")
        assert meta["days_in_period"] == 2
        assert meta["days_active"] == 1
        assert meta["app_opens_total"] == 2
        assert meta["swipes_per_day"] == 0

    def test_computed_not_persisted(self, db):
        """Computing a period leaves no stored row behind."""
        get_profile_meta(db, "hinge-1", "2023-Q1")
        assert get_stored_meta(db, "hinge-1", "2023-Q1") is None

    def test_bad_period(self, db):
        """Unrecognised period names raise ValueError."""
        with pytest.raises(ValueError):
            get_profile_meta(db, "tinder-1", "fortnight")

    def test_unknown_profile(self, db):
        """Unknown profiles return None."""
        assert get_profile_meta(db, "nobody", "2023-Q1") is None


class TestGetUsageSeries:
    """Tests for get_usage_series."""

    def test_full_series(self, db):
        """All days, including the synthesized gap day, in date order."""
        series = get_usage_series(db, "tinder-1")
        assert [row["date"] for row in series] == ["2023-01-01", "2023-01-02", "2023-01-03", "2023-01-04"]
        assert series[0]["swipes_combined"] == 30
        assert series[2]["date_is_missing_from_original_data"] is True

    def test_bounds(self, db):
        """start and end are inclusive."""
        series = get_usage_series(db, "tinder-1", start="2023-01-02", end="2023-01-03")
        assert [row["date"] for row in series] == ["2023-01-02", "2023-01-03"]

    def test_hinge_has_no_usage(self, db):
        """Hinge profiles have no usage timeline."""
        assert get_usage_series(db, "hinge-1") == []


class TestMatches:
    """Tests for get_matches_data and get_conversation_lengths."""

    def test_matches(self, db):
        """Matches come oldest first with their identity key."""
        matches = get_matches_data(db, "hinge-1")
        assert [m["identity_key"] for m in matches] == ["ts:2023-03-02T12:00:00Z", "ts:2023-03-04T18:00:00Z"]
        assert "messages" not in matches[0]
        assert matches[0]["we_met"] is True

    def test_limit(self, db):
        """limit caps the number of matches."""
        assert len(get_matches_data(db, "tinder-1", limit=1)) == 1

    def test_conversation_lengths(self, db):
        """Ghosted matches count as zero."""
        assert get_conversation_lengths(db, "tinder-1") == [3, 0]


class TestGetProfileAggregates:
    """Tests for get_profile_aggregates."""

    def test_tinder(self, db):
        """Usage and dated matches are bucketed by month and year."""
        aggregates = get_profile_aggregates(db, "tinder-1")
        january = aggregates["by_month"]["2023-01"]
        assert january["days"] == 4
        assert january["swipe_likes"] == 15
        assert january["conversations"] == 1
        assert aggregates["by_year"]["2023"]["app_opens"] == 10

    def test_hinge(self, db):
        """Hinge matches are placed by match date."""
        aggregates = get_profile_aggregates(db, "hinge-1")
        assert aggregates["by_month"]["2023-03"]["conversations"] == 2
        assert aggregates["by_month"]["2023-03"]["days"] == 0

    def test_unknown(self, db):
        """Unknown profiles return None."""
        assert get_profile_aggregates(db, "nobody") is None


class TestGetDatabaseSummary:
    """Tests for get_database_summary."""

    def test_mocked(self):
        """Counts are keyed by table name."""
        mock_db = MagicMock()
        mock_db.get_table_names.return_value = ["match", "profile"]
        mock_db.get_row_counts_by_table.return_value = [("match", 4), ("profile", 2)]
        mock_db.config.analysis_db_path_str = "/tmp/insights.db"

        summary = get_database_summary(mock_db)

        assert summary["table_count"] == 2
        assert summary["row_counts"] == {"match": 4, "profile": 2}
        assert summary["profile_count"] == 2
        assert summary["db_path"] == "/tmp/insights.db"

    def test_real(self, db):
        """The populated database holds both profiles."""
        summary = get_database_summary(db)
        assert summary["profile_count"] == 2
        assert "profile_meta" in summary["tables"]
