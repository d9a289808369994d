"""
Read-side analysis functions over insights.db.

These are the queries dashboards and reports use: profile listings, stored
snapshots, usage series, matches and monthly/yearly aggregates. Nothing
here writes. A period without a stored snapshot is computed on the fly from
the profile graph and returned without being persisted.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from swipe_insights.database import InsightsDatabase
from swipe_insights.ingest.metrics import (
    MetaSnapshot,
    aggregate_usage_by_period,
    compute_meta_snapshot,
    fetch_profile_graph,
)
from swipe_insights.ingest.errors import ProfileNotFoundError
from swipe_insights.ingest.models import MatchRecord, ProfileRecord, UsageRecord

logger = logging.getLogger(__name__)

PROFILE_SUMMARY_FIELDS = (
    "profile_id",
    "platform",
    "user_id",
    "gender",
    "city",
    "country",
    "first_active_date",
    "last_active_date",
    "days_in_period",
    "age_at_last_usage",
)


def list_profiles(db: InsightsDatabase) -> List[Dict[str, Any]]:
    """
    List every stored profile with its match count.

    Args:
        db: Database connection.

    Returns:
        List of profile dictionaries, most recently active first.
    """
    rows = db.execute_query(
        """
        SELECT p.*, COUNT(m.match_id) AS match_count
        FROM profile p
        LEFT JOIN match m ON m.profile_id = p.profile_id
        GROUP BY p.profile_id
        ORDER BY p.last_active_date DESC, p.profile_id
        """
    )

    profiles = []
    for row in rows:
        entry = {name: row[name] for name in PROFILE_SUMMARY_FIELDS}
        entry["match_count"] = row["match_count"]
        profiles.append(entry)

    logger.info(f"Retrieved {len(profiles)} profiles")
    return profiles


def get_profile_detail(db: InsightsDatabase, profile_id: str) -> Optional[Dict[str, Any]]:
    """
    Get one profile with row counts and its all-time snapshot.

    Returns:
        Dictionary with "profile", "counts" and "meta", or None if unknown.
    """
    rows = db.execute_query("SELECT * FROM profile WHERE profile_id = ?", (profile_id,))
    if not rows:
        return None

    profile = ProfileRecord.from_row(rows[0])
    counts = {}
    for table in ("usage_day", "match", "message", "interaction", "media", "prompt"):
        counts[table] = db.execute_query(
            f"SELECT COUNT(*) FROM {table} WHERE profile_id = ?", (profile_id,)
        )[0][0]

    detail = {name: getattr(profile, name) for name in PROFILE_SUMMARY_FIELDS}
    detail.update(
        {
            "birth_date": profile.birth_date,
            "create_date": profile.create_date,
            "gender_str": profile.gender_str,
            "interested_in": profile.interested_in,
            "bio": profile.bio,
            "region": profile.region,
            "timezone": profile.timezone,
            "job_title": profile.job_title,
            "company": profile.company,
            "school": profile.school,
            "age_at_upload": profile.age_at_upload,
            "attributes": profile.attributes,
        }
    )

    return {
        "profile": detail,
        "counts": counts,
        "meta": get_stored_meta(db, profile_id, "all-time"),
    }


def get_stored_meta(db: InsightsDatabase, profile_id: str, period: str) -> Optional[Dict[str, Any]]:
    """Stored snapshot for a period, or None if that period is not stored."""
    rows = db.execute_query(
        "SELECT * FROM profile_meta WHERE profile_id = ? AND period = ?",
        (profile_id, period),
    )
    if not rows:
        return None
    snapshot = MetaSnapshot.from_row(rows[0]).as_row()
    snapshot["computed_at"] = rows[0]["computed_at"]
    snapshot["stored"] = True
    return snapshot


def get_profile_meta(
    db: InsightsDatabase,
    profile_id: str,
    period: str = "all-time",
    today: Optional[date] = None,
) -> Optional[Dict[str, Any]]:
    """
    Get a profile's snapshot for a period.

    Stored snapshots are returned as-is; any other period is computed from
    the current graph without being written.

    Args:
        db: Database connection.
        profile_id: Profile to read.
        period: "all-time", "last-N-days", "YYYY" or "YYYY-Qn".
        today: Reference day for rolling periods.

    Returns:
        Snapshot dictionary, or None if the profile does not exist.

    Raises:
        ValueError: If the period name is not recognised.
    """
    stored = get_stored_meta(db, profile_id, period)
    if stored is not None:
        return stored

    try:
        graph = fetch_profile_graph(db.connection, profile_id)
    except ProfileNotFoundError:
        return None

    snapshot = compute_meta_snapshot(graph, period, today).as_row()
    snapshot["computed_at"] = None
    snapshot["stored"] = False
    logger.info(f"Computed unstored '{period}' snapshot for {profile_id}")
    return snapshot


def get_usage_series(
    db: InsightsDatabase,
    profile_id: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Get daily usage rows for a profile, optionally bounded by ISO dates.

    Returns:
        List of usage dictionaries in date order.
    """
    query = "SELECT * FROM usage_day WHERE profile_id = ?"
    params: List[Any] = [profile_id]
    if start:
        query += " AND date >= ?"
        params.append(start)
    if end:
        query += " AND date <= ?"
        params.append(end)
    query += " ORDER BY date"

    series = []
    for row in db.execute_query(query, tuple(params)):
        record = UsageRecord.from_row(row)
        entry = dict(vars(record))
        entry["swipes_combined"] = record.swipes_combined
        series.append(entry)
    return series


def get_matches_data(db: InsightsDatabase, profile_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    """
    Get a profile's matches, oldest first, without their messages.

    Returns:
        List of match dictionaries.
    """
    rows = db.execute_query(
        "SELECT * FROM match WHERE profile_id = ? ORDER BY match_order, matched_at LIMIT ?",
        (profile_id, limit),
    )

    matches = []
    for row in rows:
        match = MatchRecord.from_row(row)
        entry = {key: value for key, value in vars(match).items() if key not in ("identity", "messages")}
        entry["identity_key"] = match.identity.key
        matches.append(entry)
    return matches


def get_conversation_lengths(db: InsightsDatabase, profile_id: str) -> List[int]:
    """Message count of every match of a profile (0 for ghosted matches)."""
    rows = db.execute_query(
        "SELECT total_message_count FROM match WHERE profile_id = ? ORDER BY match_order",
        (profile_id,),
    )
    return [row[0] for row in rows]


def get_profile_aggregates(db: InsightsDatabase, profile_id: str) -> Optional[Dict[str, Any]]:
    """
    Monthly and yearly usage/match buckets for a profile.

    Returns:
        {"by_month": {...}, "by_year": {...}}, or None if the profile is unknown.
    """
    try:
        graph = fetch_profile_graph(db.connection, profile_id)
    except ProfileNotFoundError:
        return None
    return aggregate_usage_by_period(graph.usage, graph.matches)


def get_database_summary(db: InsightsDatabase) -> Dict[str, Any]:
    """
    Get summary information about the database.

    Returns:
        Dictionary with table names and row counts.
    """
    tables = db.get_table_names()
    counts = dict(db.get_row_counts_by_table(tables))
    return {
        "table_count": len(tables),
        "tables": tables,
        "row_counts": counts,
        "profile_count": counts.get("profile", 0),
        "db_path": db.config.analysis_db_path_str,
    }
