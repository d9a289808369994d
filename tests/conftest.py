"""
Pytest fixtures for Swipe Insights tests.

This module provides shared fixtures for testing the ingestion pipeline,
including sample exports and temporary insights databases.

Fixture Categories:
    1. Export fixtures (sample Tinder and Hinge exports as dicts)
    2. Database fixtures (empty insights.db, insights.db with ingested profiles)
    3. Helpers (fetchers that serve an export without touching the network)

Design Notes:
    - Fixtures use tmp_path for isolation between tests
    - Sample exports are small but cover every branch the builders take:
      sparse usage with a gap day, messages without timestamps, HTML
      entities, voice notes, blocks before and after a match
    - Ingestion fixtures pin as_of so ages and rolling periods are stable
"""

import copy
import json
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import pytest

from swipe_insights.database import open_insights_db
from swipe_insights.ingest.pipeline import run_ingest
from swipe_insights.ingest.schema import create_schema

AS_OF = date(2024, 1, 1)

TINDER_EXPORT: Dict[str, Any] = {
    "User": {
        "birth_date": "1995-06-15",
        "create_date": "2022-12-31T08:00:00.000Z",
        "gender": "M",
        "interested_in": "F",
        "gender_filter": "F",
        "age_filter_min": 25,
        "age_filter_max": 35,
        "bio": "Coffee &amp; hiking",
        "city": {"name": "Amsterdam", "region": "North Holland"},
        "country": {"code": "NL"},
        "jobs": [{"title": {"name": "Engineer", "displayed": True}, "company": {"name": "Acme", "displayed": False}}],
        "schools": [{"name": "TU Delft", "displayed": True}],
        "instagram": {"username": "someone"},
    },
    "Usage": {
        "app_opens": {"2023-01-01": 5, "2023-01-02": 3, "2023-01-04": 2},
        "swipes_likes": {"2023-01-01": 10, "2023-01-02": 5, "2023-01-04": 0},
        "swipes_passes": {"2023-01-01": 20, "2023-01-02": 5},
        "matches": {"2023-01-01": 2, "2023-01-02": 1},
        "messages_sent": {"2023-01-01": 3, "2023-01-02": 1},
        "messages_received": {"2023-01-01": 2},
    },
    # Newest match first, as Tinder lists them
    "Messages": [
        {"match_id": "Match 2", "messages": []},
        {
            "match_id": "Match 1",
            "messages": [
                {
                    "to": 1,
                    "message": "See you there",
                    "sent_date": "Mon, 02 Jan 2023 10:10:00 GMT",
                    "type": "gif",
                    "fixed_height": "https://media.example/gif.gif",
                },
                {"to": 1, "message": "Hi &amp; hello", "sent_date": "Sun, 01 Jan 2023 10:00:00 GMT"},
                {"to": 1, "message": "How are you?", "sent_date": "Sun, 01 Jan 2023 10:10:00 GMT"},
                {"to": 1, "message": "lost in transit"},
            ],
        },
    ],
    "Photos": [
        "https://images.example/photo-1.jpg",
        {"url": "https://images.example/photo-2.jpg", "type": "photo", "prompt_text": "Me, hiking"},
    ],
}

HINGE_EXPORT: Dict[str, Any] = {
    "User": {
        "profile": {
            "age": 30,
            "gender": "Woman",
            "height_centimeters": 170,
            "ethnicities": '["Asian"]',
            "workplaces": '["Studio North"]',
            "schools": '["RISD"]',
            "smoking": "No",
            "drinking": "Yes",
            "job_title": "Designer",
        },
        "account": {"signup_time": "2023-02-01 09:00:00"},
        "preferences": {"gender_preference": "Men", "age_min": 28, "age_max": 40},
        "devices": [{"device_platform": "ios", "device_os_versions": "17.0", "app_version": "9.1"}],
        "location": {"country": "US"},
    },
    "Matches": [
        # Liked, never matched, then removed
        {
            "like": [{"timestamp": "2023-03-05 09:00:00", "like": [{"timestamp": "2023-03-05 09:00:00"}]}],
            "block": [{"timestamp": "2023-03-06 09:00:00", "block_type": "remove"}],
        },
        # Liked with a comment, matched, chatted, met
        {
            "like": [
                {
                    "timestamp": "2023-03-01 10:00:00",
                    "like": [{"timestamp": "2023-03-01 10:00:00", "comment": "Great smile"}],
                }
            ],
            "match": [{"timestamp": "2023-03-02 12:00:00"}],
            "chats": [
                {"body": "Hey &amp; hi", "timestamp": "2023-03-02 13:00:00"},
                {"body": "", "timestamp": "2023-03-02 14:00:00"},
                {"timestamp": "2023-03-02 15:00:00"},
                {"body": "See you Friday", "timestamp": "2023-03-03 13:00:00"},
            ],
            "voice_notes": [{"timestamp": "2023-03-02 14:00:00"}],
            "we_met": [{"timestamp": "2023-03-10 20:00:00", "did_meet_subject": "Yes"}],
        },
        # Matched without a like of ours, then unmatched
        {
            "match": [{"timestamp": "2023-03-04 18:00:00"}],
            "block": [{"timestamp": "2023-03-08 18:00:00", "block_type": "unmatch"}],
        },
    ],
    "Prompts": [
        {
            "id": 1,
            "prompt": "A life goal of mine",
            "text": "Run a marathon",
            "type": "text",
            "created": "2023-02-01 09:30:00",
            "user_updated": "2023-02-02 09:30:00",
        },
        {"id": 2, "text": "answer without a prompt"},
        {"id": 3, "prompt": "Two truths and a lie", "type": "poll", "options": ["Cats", "Dogs"]},
    ],
    "Media": [
        {"url": "https://media.example/1.jpg", "type": "photo"},
        {"url": "https://media.example/2.mp4", "type": "video", "prompt": "Me, dancing"},
    ],
}


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "property: property-based tests using hypothesis")
    config.addinivalue_line("markers", "integration: end-to-end tests through run_ingest")


# =============================================================================
# Export fixtures
# =============================================================================


@pytest.fixture
def tinder_export() -> Dict[str, Any]:
    """
    A small Tinder export.

    Usage covers 2023-01-01..2023-01-04 with 2023-01-03 missing; "Match 1"
    has three timed messages (plus one without sent_date), "Match 2" none.
    """
    return copy.deepcopy(TINDER_EXPORT)


@pytest.fixture
def hinge_export() -> Dict[str, Any]:
    """
    A small Hinge export with three threads.

    Threads (oldest first): liked + matched + chatted + met (2023-03-01),
    matched then unmatched (2023-03-04), liked then removed (2023-03-05).
    """
    return copy.deepcopy(HINGE_EXPORT)


@pytest.fixture
def ingest_context():
    """Factory for IngestContext with a pinned as_of date."""
    from swipe_insights.ingest.models import IngestContext

    def _make(profile_id: str = "tinder-1", user_id: str = "user-1", **kwargs) -> IngestContext:
        kwargs.setdefault("as_of", AS_OF)
        return IngestContext(profile_id=profile_id, user_id=user_id, **kwargs)

    return _make


def serve_export(export: Dict[str, Any]) -> Callable[[str], str]:
    """Fetcher returning the given export's JSON text for any source."""
    text = json.dumps(export)
    return lambda source: text


# =============================================================================
# insights.db fixtures
# =============================================================================


@pytest.fixture
def insights_db_path(tmp_path: Path) -> Path:
    """
    Create an empty insights.db with schema.

    Returns:
        Path to the empty insights.db file.
    """
    db_path = tmp_path / "insights.db"
    create_schema(db_path)
    return db_path


@pytest.fixture
def insights_conn(insights_db_path: Path):
    """Read-write connection to the empty insights.db (autocommit mode)."""
    conn = open_insights_db(insights_db_path)
    yield conn
    conn.close()


@pytest.fixture
def ingest(insights_db_path: Path):
    """
    Run an ingestion against the temporary insights.db.

    Usage:
        result = ingest(export, "tinder", "tinder-1")
    """

    def _ingest(export: Dict[str, Any], platform: str, profile_id: str, user_id: str = "user-1", **kwargs):
        kwargs.setdefault("as_of", AS_OF)
        return run_ingest(
            source=f"blob://{platform}/{profile_id}.json",
            platform=platform,
            profile_id=profile_id,
            user_id=user_id,
            analysis_db_path=insights_db_path,
            fetcher=serve_export(export),
            **kwargs,
        )

    return _ingest


@pytest.fixture
def populated_db_path(insights_db_path: Path, ingest, tinder_export, hinge_export) -> Path:
    """
    insights.db holding one Tinder profile ("tinder-1", user-1) and one
    Hinge profile ("hinge-1", user-2).
    """
    assert ingest(tinder_export, "tinder", "tinder-1", "user-1").success
    assert ingest(hinge_export, "hinge", "hinge-1", "user-2").success
    return insights_db_path


@pytest.fixture
def row_count(insights_db_path: Path):
    """Count rows of a table in the temporary insights.db, optionally for one profile."""

    def _count(table: str, profile_id: Optional[str] = None) -> int:
        conn = open_insights_db(insights_db_path, read_only=True)
        try:
            if profile_id is None:
                return conn.execute(f"SELECT COUNT(*) FROM {table};").fetchone()[0]
            return conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE profile_id = ?;", (profile_id,)
            ).fetchone()[0]
        finally:
            conn.close()

    return _count
