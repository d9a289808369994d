"""
Tests for the ingestion pipeline.

End-to-end tests through run_ingest against a temporary insights.db:
first uploads, idempotent and additive re-uploads, cross-account
absorption, and all-or-nothing failure handling. Fetching is exercised
with local files and a mocked httpx client.
"""

import json
import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from swipe_insights.database import open_insights_db
from swipe_insights.ingest.errors import ProfileNotFoundError
from swipe_insights.ingest.pipeline import (
    IngestResult,
    fetch_json,
    fetch_json_text,
    get_ingest_status,
    normalize_platform,
    recompute_meta,
    reset_profile_data,
    run_ingest,
)

SNAPSHOT_COLUMNS = (
    "period, from_date, to_date, days_in_period, days_active, swipe_likes_total, "
    "swipe_passes_total, like_rate, match_rate, swipes_per_day, conversation_count, "
    "average_response_time_seconds"
)


def _query(db_path: Path, sql: str, params=()):
    conn = open_insights_db(db_path, read_only=True)
    try:
        return [tuple(row) for row in conn.execute(sql, params).fetchall()]
    finally:
        conn.close()


def _profile(db_path: Path, profile_id: str):
    conn = open_insights_db(db_path, read_only=True)
    try:
        return conn.execute("SELECT * FROM profile WHERE profile_id = ?;", (profile_id,)).fetchone()
    finally:
        conn.close()


def _snapshots(db_path: Path, profile_id: str):
    return _query(
        db_path,
        f"SELECT {SNAPSHOT_COLUMNS} FROM profile_meta WHERE profile_id = ? ORDER BY period;",
        (profile_id,),
    )


def _shift_usage(export, old_prefix: str, new_prefix: str):
    for series in export["Usage"].values():
        shifted = {key.replace(old_prefix, new_prefix): value for key, value in series.items()}
        series.clear()
        series.update(shifted)
    return export


@pytest.mark.integration
class TestNewUpload:
    """Tests for first uploads."""

    def test_tinder_counts(self, ingest, tinder_export, row_count):
        """A Tinder upload writes profile, usage, matches, messages and media."""
        result = ingest(tinder_export, "tinder", "tinder-1")

        assert result.success, result.error
        assert result.mode == "NEW"
        assert result.platform == "TINDER"
        assert (result.matches_written, result.messages_written) == (2, 3)
        assert result.usage_days_written == 4
        assert result.photos_written == 2
        assert result.has_photos is True
        assert result.original_file_id is not None
        assert row_count("profile") == 1
        assert row_count("usage_day", "tinder-1") == 4
        assert row_count("message", "tinder-1") == 3
        assert row_count("original_file") == 1

    def test_tinder_snapshot(self, ingest, tinder_export, insights_db_path):
        """Snapshots are stored for all-time and each active year."""
        ingest(tinder_export, "tinder", "tinder-1")
        snapshots = dict((row[0], row) for row in _snapshots(insights_db_path, "tinder-1"))

        assert set(snapshots) == {"all-time", "2023"}
        all_time = snapshots["all-time"]
        assert all_time[1:5] == ("2023-01-01", "2023-01-04", 4, 3)
        assert all_time[7] == pytest.approx(0.375)
        assert all_time[9] == pytest.approx(20.0)
        assert all_time[10] == 2
        assert all_time[11] == 43500

    def test_hinge_counts(self, ingest, hinge_export, row_count):
        """A Hinge upload writes matches, identity events, prompts and media."""
        result = ingest(hinge_export, "hinge", "hinge-1", "user-2")

        assert result.success, result.error
        assert result.interactions_written == 10
        assert result.prompts_written == 2
        assert result.photos_written == 2
        assert (result.matches_written, result.messages_written) == (2, 3)
        assert result.usage_days_written == 0
        assert row_count("interaction", "hinge-1") == 10

    def test_result_str(self, ingest, tinder_export):
        """The result renders a readable summary."""
        text = str(ingest(tinder_export, "tinder", "tinder-1"))
        assert "SUCCESS" in text
        assert "tinder-1" in text

    def test_last_ingest_recorded(self, ingest, tinder_export, insights_db_path):
        """A committed ingestion updates etl_state."""
        ingest(tinder_export, "tinder", "tinder-1")
        rows = _query(insights_db_path, "SELECT value FROM etl_state WHERE key = 'last_ingest_at';")
        assert len(rows) == 1


@pytest.mark.integration
class TestAdditiveUpload:
    """Tests for re-uploads of the same account."""

    def test_identical_reupload_is_idempotent(self, ingest, tinder_export, insights_db_path, row_count):
        """Uploading the same export twice leaves the same rows and snapshots."""
        ingest(tinder_export, "tinder", "tinder-1")
        before = _snapshots(insights_db_path, "tinder-1")

        result = ingest(tinder_export, "tinder", "tinder-1")

        assert result.success, result.error
        assert result.mode == "ADDITIVE_SAME_ACCOUNT"
        assert (result.matches_written, result.messages_written) == (0, 0)
        assert result.matches_skipped == 2
        assert result.photos_written == 0
        assert row_count("match", "tinder-1") == 2
        assert row_count("message", "tinder-1") == 3
        assert row_count("usage_day", "tinder-1") == 4
        assert row_count("media", "tinder-1") == 2
        assert row_count("original_file") == 2
        assert _snapshots(insights_db_path, "tinder-1") == before

    def test_hinge_reupload_is_idempotent(self, ingest, hinge_export, row_count):
        """Identity events are deduplicated by timestamp."""
        ingest(hinge_export, "hinge", "hinge-1", "user-2")
        result = ingest(hinge_export, "hinge", "hinge-1", "user-2")

        assert result.interactions_written == 0
        assert result.interactions_skipped == 10
        assert result.matches_skipped == 2
        assert row_count("interaction", "hinge-1") == 10
        assert row_count("prompt", "hinge-1") == 2

    def test_new_matches_appended_existing_untouched(self, ingest, tinder_export, insights_db_path, row_count):
        """Only unknown matches are added; stored matches never change."""
        ingest(tinder_export, "tinder", "tinder-1")

        tinder_export["Messages"][1]["messages"].append(
            {"message": "one more", "sent_date": "Tue, 03 Jan 2023 09:00:00 GMT"}
        )
        tinder_export["Messages"].insert(
            0,
            {"match_id": "Match 3", "messages": [{"message": "hey", "sent_date": "2023-01-05T12:00:00Z"}]},
        )
        tinder_export["Usage"]["app_opens"]["2023-01-06"] = 4
        result = ingest(tinder_export, "tinder", "tinder-1")

        assert result.matches_written == 1
        assert result.messages_written == 1
        assert result.matches_skipped == 2
        totals = dict(_query(insights_db_path, "SELECT platform_match_id, total_message_count FROM match;"))
        assert totals == {"Match 1": 3, "Match 2": 0, "Match 3": 1}
        assert row_count("usage_day", "tinder-1") == 6

        profile = _profile(insights_db_path, "tinder-1")
        assert (profile["first_active_date"], profile["last_active_date"]) == ("2023-01-01", "2023-01-06")
        assert profile["days_in_period"] == 6

    def test_window_follows_newest_export(self, ingest, tinder_export, insights_db_path):
        """The active window is overwritten by the re-upload's own window."""
        ingest(tinder_export, "tinder", "tinder-1")
        for series in tinder_export["Usage"].values():
            series.pop("2023-01-01", None)

        assert ingest(tinder_export, "tinder", "tinder-1").success
        profile = _profile(insights_db_path, "tinder-1")
        assert (profile["first_active_date"], profile["last_active_date"]) == ("2023-01-02", "2023-01-04")
        assert profile["days_in_period"] == 3

    def test_narrower_reupload_shrinks_window(self, ingest, tinder_export, insights_db_path, row_count):
        """Older stored days stay in usage_day outside the new window."""
        ingest(tinder_export, "tinder", "tinder-1")
        for series in tinder_export["Usage"].values():
            series.pop("2023-01-01", None)
            series.pop("2023-01-02", None)
        tinder_export["Usage"]["app_opens"]["2023-01-03"] = 1

        assert ingest(tinder_export, "tinder", "tinder-1").success
        profile = _profile(insights_db_path, "tinder-1")
        assert (profile["first_active_date"], profile["last_active_date"]) == ("2023-01-03", "2023-01-04")
        assert profile["days_in_period"] == 2
        assert row_count("usage_day", "tinder-1") == 4

    def test_real_day_becomes_gap_day(self, ingest, tinder_export, insights_db_path, caplog):
        """A day the newest export leaves out is zeroed and flagged as synthesized."""
        ingest(tinder_export, "tinder", "tinder-1")
        for series in tinder_export["Usage"].values():
            series.pop("2023-01-02", None)

        with caplog.at_level(logging.WARNING, logger="swipe_insights.ingest.reconcile"):
            assert ingest(tinder_export, "tinder", "tinder-1").success

        rows = _query(
            insights_db_path,
            "SELECT app_opens, swipe_likes, date_is_missing_from_original_data "
            "FROM usage_day WHERE profile_id = 'tinder-1' AND date = '2023-01-02';",
        )
        assert rows == [(0, 0, 1)]
        assert "first: 2023-01-02" in caplog.text

    def test_profile_attributes_overwritten(self, ingest, tinder_export, insights_db_path):
        """Profile attributes follow the newest export."""
        ingest(tinder_export, "tinder", "tinder-1")
        tinder_export["User"]["bio"] = "Updated"
        ingest(tinder_export, "tinder", "tinder-1")
        assert _profile(insights_db_path, "tinder-1")["bio"] == "Updated"

    def test_usage_newest_wins_with_warning(self, ingest, tinder_export, insights_db_path, caplog):
        """Lower counts overwrite stored days and are logged."""
        ingest(tinder_export, "tinder", "tinder-1")
        tinder_export["Usage"]["app_opens"]["2023-01-01"] = 1

        with caplog.at_level(logging.WARNING, logger="swipe_insights.ingest.reconcile"):
            ingest(tinder_export, "tinder", "tinder-1")

        assert "lowers stored counts" in caplog.text
        rows = _query(insights_db_path, "SELECT app_opens FROM usage_day WHERE date = '2023-01-01';")
        assert rows == [(1,)]

    def test_hinge_new_event_on_known_match(self, ingest, hinge_export, insights_db_path):
        """A new event of a known match points at the stored match row."""
        ingest(hinge_export, "hinge", "hinge-1", "user-2")
        hinge_export["Matches"][2]["block"][0]["timestamp"] = "2023-03-09 18:00:00"

        result = ingest(hinge_export, "hinge", "hinge-1", "user-2")

        assert result.interactions_written == 1
        stored_match = _query(
            insights_db_path,
            "SELECT match_id FROM match WHERE identity_key = 'ts:2023-03-04T18:00:00Z';",
        )[0][0]
        event = _query(
            insights_db_path,
            "SELECT type, match_id FROM interaction WHERE timestamp = '2023-03-09T18:00:00Z';",
        )
        assert event == [("UNMATCH", stored_match)]

    def test_hinge_prompts_replaced(self, ingest, hinge_export, insights_db_path):
        """Prompts reflect the newest export only."""
        ingest(hinge_export, "hinge", "hinge-1", "user-2")
        hinge_export["Prompts"] = [{"id": 9, "prompt": "My simple pleasures", "text": "Tea"}]
        result = ingest(hinge_export, "hinge", "hinge-1", "user-2")

        assert result.prompts_written == 1
        assert _query(insights_db_path, "SELECT prompt FROM prompt;") == [("My simple pleasures",)]


@pytest.mark.integration
class TestAbsorption:
    """Tests for cross-account absorption."""

    @pytest.fixture
    def later_export(self, tinder_export):
        """The sample export moved to February under a newer account."""
        export = _shift_usage(json.loads(json.dumps(tinder_export)), "2023-01-", "2023-02-")
        export["User"]["create_date"] = "2023-01-20T00:00:00Z"
        return export

    def test_absorb_older_account(self, ingest, tinder_export, later_export, insights_db_path, row_count):
        """The old account's rows move to the new id and the old id disappears."""
        ingest(tinder_export, "tinder", "tinder-1")

        result = ingest(later_export, "tinder", "tinder-2", absorb_from="tinder-1")

        assert result.success, result.error
        assert result.mode == "CROSS_ACCOUNT_ABSORPTION"
        assert _profile(insights_db_path, "tinder-1") is None
        profile = _profile(insights_db_path, "tinder-2")
        assert profile["user_id"] == "user-1"
        assert (profile["first_active_date"], profile["last_active_date"]) == ("2023-01-01", "2023-02-04")
        assert profile["days_in_period"] == 35
        assert profile["create_date"] == "2022-12-31T08:00:00Z"

        # Match ids of two accounts are not comparable, so nothing is deduplicated
        assert row_count("match", "tinder-2") == 4
        assert row_count("message", "tinder-2") == 6
        assert row_count("usage_day", "tinder-2") == 8
        assert row_count("usage_day", "tinder-1") == 0

    def test_absorbed_snapshots(self, ingest, tinder_export, later_export, insights_db_path):
        """Snapshots are rebuilt over the union and the old ones are gone."""
        ingest(tinder_export, "tinder", "tinder-1")
        ingest(later_export, "tinder", "tinder-2", absorb_from="tinder-1")

        assert _snapshots(insights_db_path, "tinder-1") == []
        all_time = [row for row in _snapshots(insights_db_path, "tinder-2") if row[0] == "all-time"][0]
        assert all_time[5] == 30
        assert all_time[10] == 4

    def test_audit_trail_survives(self, ingest, tinder_export, later_export, insights_db_path):
        """Original file rows of the absorbed account are kept."""
        ingest(tinder_export, "tinder", "tinder-1")
        ingest(later_export, "tinder", "tinder-2", absorb_from="tinder-1")
        modes = _query(insights_db_path, "SELECT profile_id, mode FROM original_file ORDER BY created_at, mode;")
        assert sorted(modes) == [("tinder-1", "NEW"), ("tinder-2", "CROSS_ACCOUNT_ABSORPTION")]

    def test_overlap_rejected_and_nothing_committed(self, ingest, tinder_export, insights_db_path, row_count):
        """Overlapping windows abort the upload without writing anything."""
        ingest(tinder_export, "tinder", "tinder-1")
        # Starts 2023-01-03, while the old account was active until 2023-01-04
        overlapping = json.loads(json.dumps(tinder_export))
        for series in overlapping["Usage"].values():
            series.pop("2023-01-01", None)
            series.pop("2023-01-02", None)
        overlapping["Usage"]["app_opens"]["2023-01-03"] = 1

        result = ingest(overlapping, "tinder", "tinder-2", absorb_from="tinder-1")

        assert result.success is False
        assert "Cannot absorb" in result.error
        assert _profile(insights_db_path, "tinder-2") is None
        assert _profile(insights_db_path, "tinder-1")["user_id"] == "user-1"
        assert row_count("match", "tinder-1") == 2
        assert row_count("original_file") == 1

    def test_second_account_without_absorb_from(self, ingest, tinder_export, later_export):
        """A new external id for an owned platform is refused."""
        ingest(tinder_export, "tinder", "tinder-1")
        result = ingest(later_export, "tinder", "tinder-2")
        assert result.success is False
        assert "absorb_from=tinder-1" in result.error


@pytest.mark.integration
class TestFailures:
    """Tests for all-or-nothing failure handling."""

    def test_missing_identity_field(self, ingest, tinder_export, row_count):
        """A structural defect fails the upload before any write."""
        del tinder_export["User"]["birth_date"]
        result = ingest(tinder_export, "tinder", "tinder-1")
        assert result.success is False
        assert "birth_date" in result.error
        assert row_count("profile") == 0
        assert row_count("original_file") == 0

    def test_unsupported_platform(self, ingest, tinder_export):
        """Only Tinder and Hinge are accepted."""
        result = ingest(tinder_export, "bumble", "b-1")
        assert result.success is False
        assert "Unsupported platform" in result.error

    def test_invalid_json(self, insights_db_path):
        """Unparseable exports fail cleanly."""
        result = run_ingest(
            source="blob://broken",
            platform="tinder",
            profile_id="tinder-1",
            user_id="user-1",
            analysis_db_path=insights_db_path,
            fetcher=lambda source: "{not json",
        )
        assert result.success is False
        assert result.error

    def test_failure_mid_write_rolls_back(self, ingest, tinder_export, row_count):
        """A failure after rows were written leaves no trace."""
        with patch(
            "swipe_insights.ingest.reconcile.recompute_profile_meta",
            side_effect=RuntimeError("snapshot failed"),
        ):
            result = ingest(tinder_export, "tinder", "tinder-1")

        assert result.success is False
        assert result.error == "snapshot failed"
        for table in ("profile", "usage_day", "match", "message", "media", "original_file"):
            assert row_count(table) == 0

    def test_failed_reupload_keeps_previous_state(self, ingest, tinder_export, insights_db_path, row_count):
        """A failing re-upload leaves the committed profile as it was."""
        ingest(tinder_export, "tinder", "tinder-1")
        tinder_export["User"]["bio"] = "Should not stick"
        tinder_export["Messages"].insert(0, {"match_id": "Match 3", "messages": []})

        with patch(
            "swipe_insights.ingest.reconcile.store_original_file",
            side_effect=RuntimeError("audit failed"),
        ):
            result = ingest(tinder_export, "tinder", "tinder-1")

        assert result.success is False
        assert _profile(insights_db_path, "tinder-1")["bio"] == "Coffee & hiking"
        assert row_count("match", "tinder-1") == 2


class TestFetch:
    """Tests for fetch_json_text and fetch_json."""

    def test_local_file(self, tmp_path: Path, tinder_export):
        """Local paths are read from disk."""
        path = tmp_path / "export.json"
        path.write_text(json.dumps(tinder_export), encoding="utf-8")
        assert fetch_json(str(path)) == tinder_export

    def test_missing_local_file(self, tmp_path: Path):
        """Unreadable files raise OSError."""
        with pytest.raises(OSError):
            fetch_json_text(str(tmp_path / "missing.json"))

    @patch("swipe_insights.ingest.pipeline.httpx.Client")
    def test_http_source(self, mock_client_cls):
        """URLs are fetched through httpx with the configured timeout."""
        client = mock_client_cls.return_value.__enter__.return_value
        client.get.return_value = MagicMock(text='{"User": {}}')

        assert fetch_json_text("https://blob.example/export.json", timeout=5.0) == '{"User": {}}'
        mock_client_cls.assert_called_once_with(timeout=5.0, follow_redirects=True)
        client.get.assert_called_once_with("https://blob.example/export.json")
        client.get.return_value.raise_for_status.assert_called_once()

    def test_http_error_fails_ingest(self, insights_db_path):
        """An HTTP error status fails the upload."""
        request = httpx.Request("GET", "https://blob.example/export.json")
        response = httpx.Response(404, request=request)

        with patch("swipe_insights.ingest.pipeline.httpx.Client") as mock_client_cls:
            client = mock_client_cls.return_value.__enter__.return_value
            client.get.return_value = response
            result = run_ingest(
                source="https://blob.example/export.json",
                platform="tinder",
                profile_id="tinder-1",
                user_id="user-1",
                analysis_db_path=insights_db_path,
            )

        assert result.success is False
        assert "404" in result.error

    def test_run_ingest_from_local_file(self, tmp_path: Path, tinder_export):
        """Without a fetcher, run_ingest reads the source path."""
        path = tmp_path / "export.json"
        path.write_text(json.dumps(tinder_export), encoding="utf-8")
        result = run_ingest(
            source=str(path),
            platform="Tinder",
            profile_id="tinder-1",
            user_id="user-1",
            analysis_db_path=tmp_path / "data" / "insights.db",
        )
        assert result.success, result.error
        assert result.json_size_mb >= 0


class TestNormalizePlatform:
    """Tests for normalize_platform."""

    @pytest.mark.parametrize("raw,expected", [("tinder", "TINDER"), (" Hinge ", "HINGE"), ("TINDER", "TINDER")])
    def test_known(self, raw, expected):
        """Platform names are case-insensitive."""
        assert normalize_platform(raw) == expected

    @pytest.mark.parametrize("raw", ["", "bumble", None])
    def test_unknown(self, raw):
        """Other platforms are rejected."""
        with pytest.raises(ValueError):
            normalize_platform(raw)


class TestMaintenance:
    """Tests for reset_profile_data, recompute_meta and get_ingest_status."""

    def test_reset(self, populated_db_path, row_count):
        """Reset removes one profile and leaves the other."""
        deleted = reset_profile_data(populated_db_path, "tinder-1")
        assert deleted["profile"] == 1
        assert deleted["message"] == 3
        assert row_count("profile") == 1
        assert row_count("interaction", "hinge-1") == 10

    def test_reset_unknown(self, populated_db_path):
        """Resetting an unknown profile raises."""
        with pytest.raises(ProfileNotFoundError):
            reset_profile_data(populated_db_path, "nobody")

    def test_recompute(self, populated_db_path):
        """Stored snapshots can be rebuilt on demand."""
        snapshots = recompute_meta(populated_db_path, "hinge-1")
        assert [s.period for s in snapshots] == ["all-time", "2023"]
        assert snapshots[0].swipe_likes_total == 2

    def test_recompute_unknown(self, populated_db_path):
        """Recomputing an unknown profile raises."""
        with pytest.raises(ProfileNotFoundError):
            recompute_meta(populated_db_path, "nobody")

    def test_status_missing_db(self, tmp_path: Path):
        """A missing database reports exists=False."""
        assert get_ingest_status(tmp_path / "missing.db") == {"exists": False}

    def test_status(self, populated_db_path):
        """Status reports row counts and bookkeeping."""
        status = get_ingest_status(populated_db_path)
        assert status["exists"] is True
        assert status["schema_valid"] is True
        assert status["profile_count"] == 2
        assert status["match_count"] == 4
        assert status["interaction_count"] == 10
        assert status["schema_version"] == "1.0.0"
        assert status["last_ingest_at"] is not None


def test_ingest_result_failure_str():
    """Failed results name the error."""
    result = IngestResult(success=False, platform="TINDER", profile_id="t", error="boom")
    assert "FAILED: boom" in str(result)
