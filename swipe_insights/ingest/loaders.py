"""
Batched writer for insights.db.

Every function here writes through the caller's connection and never
commits: one ingestion is one transaction, owned by the pipeline (see
database.transaction). A failure in any batch propagates and the caller's
transaction rolls back everything written so far.

Design Decisions:
    1. Large row-sets are chunked into fixed-size executemany batches,
       written sequentially in the same transaction
    2. Matches are written as a unit with exactly their own messages
    3. Existing matches are never updated; callers filter by identity key
    4. Usage is upserted on (profile_id, date); the newest upload wins even
       where it only synthesizes a zero row for a stored real day
    5. profile_meta is only ever replaced wholesale for a profile
"""

import sqlite3
from contextlib import closing
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set
import logging
import uuid

from swipe_insights.ingest.errors import ProfileNotFoundError, WriteError
from swipe_insights.ingest.models import (
    InteractionRecord,
    MatchRecord,
    MediaRecord,
    ProfileRecord,
    PromptRecord,
    UsageRecord,
)
from swipe_insights.ingest.timeutil import now_iso

logger = logging.getLogger(__name__)

MATCH_BATCH_SIZE = 500
USAGE_BATCH_SIZE = 500
MESSAGE_BATCH_SIZE = 1000
INTERACTION_BATCH_SIZE = 1000

PROFILE_COLUMNS = (
    "profile_id",
    "platform",
    "user_id",
    "birth_date",
    "create_date",
    "gender",
    "gender_str",
    "interested_in",
    "bio",
    "bio_original",
    "city",
    "region",
    "country",
    "timezone",
    "job_title",
    "company",
    "school",
    "first_active_date",
    "last_active_date",
    "days_in_period",
    "age_at_upload",
    "age_at_last_usage",
    "attributes_json",
)

USAGE_COUNT_COLUMNS = (
    "app_opens",
    "swipe_likes",
    "swipe_super_likes",
    "swipe_passes",
    "matches",
    "messages_sent",
    "messages_received",
)

META_COLUMNS = (
    "period",
    "from_date",
    "to_date",
    "days_in_period",
    "days_active",
    "app_opens_total",
    "swipe_likes_total",
    "swipe_super_likes_total",
    "swipe_passes_total",
    "matches_total",
    "messages_sent_total",
    "messages_received_total",
    "like_rate",
    "match_rate",
    "swipes_per_day",
    "conversation_count",
    "conversations_with_messages",
    "ghosted_count",
    "one_message_conversations",
    "max_conversation_message_count",
    "longest_conversation_two_week_max_days",
    "average_response_time_seconds",
    "mean_response_time_seconds",
    "median_conversation_duration_days",
    "longest_conversation_days",
    "average_messages_per_conversation",
    "median_messages_per_conversation",
)

# Deletion order for a full profile reset: children before parents
RESET_ORDER = (
    "message",
    "interaction",
    "match",
    "usage_day",
    "media",
    "prompt",
    "custom_data",
    "profile_meta",
    "profile",
)

# Tables whose rows move with the person when an old account is absorbed
REPOINT_TABLES = ("usage_day", "match", "message", "interaction", "custom_data")


def _bool_int(value: Optional[bool]) -> Optional[int]:
    if value is None:
        return None
    return 1 if value else 0


def insert_in_batches(
    conn: sqlite3.Connection,
    query: str,
    rows: Sequence[Sequence[Any]],
    batch_size: int,
    label: str,
) -> int:
    """
    Execute query once per row, in sequential fixed-size batches.

    Args:
        conn: Connection with an open transaction.
        query: Parameterized INSERT/UPSERT statement.
        rows: Parameter tuples.
        batch_size: Rows per executemany call.
        label: Row kind, for logging.

    Returns:
        Number of rows written.
    """
    if not rows:
        return 0

    batches = 0
    with closing(conn.cursor()) as cursor:
        for start in range(0, len(rows), batch_size):
            cursor.executemany(query, rows[start : start + batch_size])
            batches += 1

    logger.debug(f"Wrote {len(rows)} {label} rows in {batches} batch(es)")
    return len(rows)


# =============================================================================
# Profile
# =============================================================================


def get_profile(conn: sqlite3.Connection, profile_id: str) -> Optional[ProfileRecord]:
    """Fetch one profile, or None if it does not exist."""
    with closing(conn.cursor()) as cursor:
        cursor.execute("SELECT * FROM profile WHERE profile_id = ?;", (profile_id,))
        row = cursor.fetchone()
    return ProfileRecord.from_row(row) if row else None


def get_profile_for_user(
    conn: sqlite3.Connection, user_id: str, platform: str
) -> Optional[ProfileRecord]:
    """The profile a user currently owns on a platform, if any."""
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "SELECT * FROM profile WHERE user_id = ? AND platform = ?;",
            (user_id, platform),
        )
        row = cursor.fetchone()
    return ProfileRecord.from_row(row) if row else None


def _profile_values(profile: ProfileRecord) -> List[Any]:
    values = {name: getattr(profile, name) for name in PROFILE_COLUMNS if name != "attributes_json"}
    values["attributes_json"] = profile.attributes_json
    return [values[name] for name in PROFILE_COLUMNS]


def insert_profile(conn: sqlite3.Connection, profile: ProfileRecord) -> None:
    """
    Insert a new profile row.

    Raises:
        WriteError: If the insert wrote no row.
    """
    now = now_iso()
    columns = ", ".join(PROFILE_COLUMNS + ("created_at", "updated_at"))
    placeholders = ", ".join("?" for _ in range(len(PROFILE_COLUMNS) + 2))

    with closing(conn.cursor()) as cursor:
        cursor.execute(
            f"INSERT INTO profile ({columns}) VALUES ({placeholders});",
            _profile_values(profile) + [now, now],
        )
        if cursor.rowcount != 1:
            raise WriteError(f"Inserting profile {profile.profile_id} wrote no row")

    logger.info(f"Inserted profile {profile.profile_id} ({profile.platform})")


def update_profile(conn: sqlite3.Connection, profile: ProfileRecord) -> None:
    """
    Overwrite every attribute of an existing profile with the new values.

    Raises:
        ProfileNotFoundError: If no row has this profile_id.
    """
    assignments = ", ".join(f"{name} = ?" for name in PROFILE_COLUMNS if name != "profile_id")
    values = _profile_values(profile)[1:]

    with closing(conn.cursor()) as cursor:
        cursor.execute(
            f"UPDATE profile SET {assignments}, updated_at = ? WHERE profile_id = ?;",
            values + [now_iso(), profile.profile_id],
        )
        if cursor.rowcount == 0:
            raise ProfileNotFoundError(profile.profile_id)

    logger.info(f"Updated profile {profile.profile_id}")


def unlink_profile_user(conn: sqlite3.Connection, profile_id: str) -> None:
    """Detach a profile from its owning user (frees the user/platform slot)."""
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "UPDATE profile SET user_id = NULL, updated_at = ? WHERE profile_id = ?;",
            (now_iso(), profile_id),
        )
        if cursor.rowcount == 0:
            raise ProfileNotFoundError(profile_id)


def delete_profile(conn: sqlite3.Connection, profile_id: str) -> int:
    """Delete a profile row; child rows cascade. Returns rows deleted."""
    with closing(conn.cursor()) as cursor:
        cursor.execute("DELETE FROM profile WHERE profile_id = ?;", (profile_id,))
        deleted = cursor.rowcount
    logger.info(f"Deleted profile {profile_id}")
    return deleted


def reset_profile(conn: sqlite3.Connection, profile_id: str) -> Dict[str, int]:
    """
    Delete a profile and every row it owns, children first.

    Returns:
        Table name -> rows deleted.
    """
    deleted: Dict[str, int] = {}
    with closing(conn.cursor()) as cursor:
        for table in RESET_ORDER:
            cursor.execute(f"DELETE FROM {table} WHERE profile_id = ?;", (profile_id,))
            deleted[table] = cursor.rowcount
    logger.info(f"Reset profile {profile_id}: {deleted}")
    return deleted


def repoint_profile_rows(conn: sqlite3.Connection, old_profile_id: str, new_profile_id: str) -> Dict[str, int]:
    """
    Move usage, matches, messages, events and annotations to another profile.

    Returns:
        Table name -> rows moved.
    """
    moved: Dict[str, int] = {}
    with closing(conn.cursor()) as cursor:
        for table in REPOINT_TABLES:
            cursor.execute(
                f"UPDATE {table} SET profile_id = ? WHERE profile_id = ?;",
                (new_profile_id, old_profile_id),
            )
            moved[table] = cursor.rowcount
    logger.info(f"Re-parented rows {old_profile_id} -> {new_profile_id}: {moved}")
    return moved


# =============================================================================
# Usage
# =============================================================================


def upsert_usage(conn: sqlite3.Connection, profile_id: str, usage: List[UsageRecord]) -> int:
    """
    Upsert daily usage rows on (profile_id, date).

    The newest upload always wins: an incoming day overwrites every field of
    the stored day, including a real day the new export only synthesizes.

    Returns:
        Number of rows offered to the upsert.
    """
    query = """
        INSERT INTO usage_day
            (profile_id, date, app_opens, swipe_likes, swipe_super_likes, swipe_passes,
             swipes_combined, matches, messages_sent, messages_received,
             match_rate, like_rate, messages_sent_rate, engagement_rate, response_rate,
             user_age_this_day, date_is_missing_from_original_data)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (profile_id, date) DO UPDATE SET
            app_opens = excluded.app_opens,
            swipe_likes = excluded.swipe_likes,
            swipe_super_likes = excluded.swipe_super_likes,
            swipe_passes = excluded.swipe_passes,
            swipes_combined = excluded.swipes_combined,
            matches = excluded.matches,
            messages_sent = excluded.messages_sent,
            messages_received = excluded.messages_received,
            match_rate = excluded.match_rate,
            like_rate = excluded.like_rate,
            messages_sent_rate = excluded.messages_sent_rate,
            engagement_rate = excluded.engagement_rate,
            response_rate = excluded.response_rate,
            user_age_this_day = excluded.user_age_this_day,
            date_is_missing_from_original_data = excluded.date_is_missing_from_original_data;
    """
    rows = [
        (
            profile_id,
            record.date,
            record.app_opens,
            record.swipe_likes,
            record.swipe_super_likes,
            record.swipe_passes,
            record.swipes_combined,
            record.matches,
            record.messages_sent,
            record.messages_received,
            record.match_rate,
            record.like_rate,
            record.messages_sent_rate,
            record.engagement_rate,
            record.response_rate,
            record.user_age_this_day,
            _bool_int(record.date_is_missing_from_original_data),
        )
        for record in usage
    ]
    written = insert_in_batches(conn, query, rows, USAGE_BATCH_SIZE, "usage_day")
    if written:
        logger.info(f"Upserted {written} usage days for {profile_id}")
    return written


def find_usage_regressions(
    conn: sqlite3.Connection, profile_id: str, usage: List[UsageRecord]
) -> List[str]:
    """
    Dates where an incoming day would lower a stored real day's counts.

    Used to flag possibly partial-day exports before they overwrite data.
    """
    incoming = {r.date: r for r in usage}
    if not incoming:
        return []

    columns = ", ".join(USAGE_COUNT_COLUMNS)
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            f"SELECT date, {columns} FROM usage_day "
            "WHERE profile_id = ? AND date_is_missing_from_original_data = 0;",
            (profile_id,),
        )
        stored = cursor.fetchall()

    regressions = []
    for row in stored:
        record = incoming.get(row["date"])
        if record is None:
            continue
        if any(getattr(record, column) < row[column] for column in USAGE_COUNT_COLUMNS):
            regressions.append(row["date"])
    return sorted(regressions)


# =============================================================================
# Matches, messages, identity events
# =============================================================================


def get_match_keys(conn: sqlite3.Connection, profile_id: str) -> Dict[str, str]:
    """Existing match identity keys for a profile -> their match_id."""
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "SELECT identity_key, match_id FROM match WHERE profile_id = ?;",
            (profile_id,),
        )
        return {row[0]: row[1] for row in cursor.fetchall()}


def insert_matches(conn: sqlite3.Connection, profile_id: str, matches: List[MatchRecord]) -> Dict[str, int]:
    """
    Insert matches and exactly their own messages.

    Returns:
        {"matches": n, "messages": m}
    """
    now = now_iso()
    match_query = """
        INSERT INTO match
            (match_id, profile_id, identity_key, platform_match_id, match_order,
             matched_at, liked_at, like_comment, total_message_count,
             text_count, gif_count, gesture_count, voice_note_count, other_message_type_count,
             initial_message_at, last_message_at, response_time_median_seconds,
             conversation_duration_days, longest_gap_hours, message_imbalance_ratio,
             did_match_reply, last_message_from, we_met, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
    """
    message_query = """
        INSERT INTO message
            (message_id, match_id, profile_id, to_index, sent_date, sent_date_raw,
             content, content_raw, char_count, message_type, raw_type, gif_url,
             message_order, time_since_last_message)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
    """

    match_rows = [
        (
            m.match_id,
            profile_id,
            m.identity.key,
            m.platform_match_id,
            m.order,
            m.matched_at,
            m.liked_at,
            m.like_comment,
            m.total_message_count,
            m.text_count,
            m.gif_count,
            m.gesture_count,
            m.voice_note_count,
            m.other_message_type_count,
            m.initial_message_at,
            m.last_message_at,
            m.response_time_median_seconds,
            m.conversation_duration_days,
            m.longest_gap_hours,
            m.message_imbalance_ratio,
            _bool_int(m.did_match_reply),
            m.last_message_from,
            _bool_int(m.we_met),
            now,
        )
        for m in matches
    ]
    message_rows = [
        (
            msg.message_id,
            m.match_id,
            profile_id,
            msg.to_index,
            msg.sent_date,
            msg.sent_date_raw,
            msg.content,
            msg.content_raw,
            msg.char_count,
            msg.message_type,
            msg.raw_type,
            msg.gif_url,
            msg.order,
            msg.time_since_last_message,
        )
        for m in matches
        for msg in m.messages
    ]

    written = {
        "matches": insert_in_batches(conn, match_query, match_rows, MATCH_BATCH_SIZE, "match"),
        "messages": insert_in_batches(conn, message_query, message_rows, MESSAGE_BATCH_SIZE, "message"),
    }
    if matches:
        logger.info(f"Inserted {written['matches']} matches with {written['messages']} messages for {profile_id}")
    return written


def get_interaction_timestamps(conn: sqlite3.Connection, profile_id: str) -> Set[str]:
    """Timestamps of every stored identity event for a profile."""
    with closing(conn.cursor()) as cursor:
        cursor.execute("SELECT timestamp FROM interaction WHERE profile_id = ?;", (profile_id,))
        return {row[0] for row in cursor.fetchall()}


def insert_interactions(
    conn: sqlite3.Connection, profile_id: str, interactions: Iterable[InteractionRecord]
) -> int:
    """Insert identity events. Returns rows written."""
    query = """
        INSERT INTO interaction (interaction_id, profile_id, match_id, type, timestamp, comment)
        VALUES (?, ?, ?, ?, ?, ?);
    """
    rows = [
        (event.interaction_id, profile_id, event.match_id, event.type, event.timestamp, event.comment)
        for event in interactions
    ]
    written = insert_in_batches(conn, query, rows, INTERACTION_BATCH_SIZE, "interaction")
    if written:
        logger.info(f"Inserted {written} interactions for {profile_id}")
    return written


# =============================================================================
# Prompts and media
# =============================================================================


def insert_prompts(conn: sqlite3.Connection, profile_id: str, prompts: List[PromptRecord]) -> int:
    query = """
        INSERT INTO prompt
            (prompt_id, profile_id, prompt_type, prompt, answer_text, options, created, user_updated)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?);
    """
    rows = [
        (p.prompt_id, profile_id, p.prompt_type, p.prompt, p.answer_text, p.options, p.created, p.user_updated)
        for p in prompts
    ]
    return insert_in_batches(conn, query, rows, MATCH_BATCH_SIZE, "prompt")


def replace_prompts(conn: sqlite3.Connection, profile_id: str, prompts: List[PromptRecord]) -> int:
    """Replace a profile's prompts with the given current set."""
    with closing(conn.cursor()) as cursor:
        cursor.execute("DELETE FROM prompt WHERE profile_id = ?;", (profile_id,))
        removed = cursor.rowcount
    written = insert_prompts(conn, profile_id, prompts)
    logger.info(f"Replaced prompts for {profile_id}: {removed} removed, {written} inserted")
    return written


def get_media_urls(conn: sqlite3.Connection, profile_id: str) -> Set[str]:
    with closing(conn.cursor()) as cursor:
        cursor.execute("SELECT url FROM media WHERE profile_id = ?;", (profile_id,))
        return {row[0] for row in cursor.fetchall()}


def insert_media(conn: sqlite3.Connection, profile_id: str, media: List[MediaRecord]) -> int:
    query = """
        INSERT INTO media (media_id, profile_id, url, media_type, prompt)
        VALUES (?, ?, ?, ?, ?);
    """
    rows = [(m.media_id, profile_id, m.url, m.media_type, m.prompt) for m in media]
    return insert_in_batches(conn, query, rows, MATCH_BATCH_SIZE, "media")


# =============================================================================
# Derived snapshots and audit rows
# =============================================================================


def replace_profile_meta(
    conn: sqlite3.Connection, profile_id: str, snapshots: List[Mapping[str, Any]]
) -> int:
    """
    Delete every stored snapshot of a profile and insert the given ones.

    Args:
        snapshots: One mapping per period holding every META_COLUMNS key.

    Returns:
        Number of snapshot rows inserted.
    """
    now = now_iso()
    columns = ", ".join(("meta_id", "profile_id") + META_COLUMNS + ("computed_at",))
    placeholders = ", ".join("?" for _ in range(len(META_COLUMNS) + 3))
    query = f"INSERT INTO profile_meta ({columns}) VALUES ({placeholders});"

    rows = [
        tuple([str(uuid.uuid4()), profile_id] + [snapshot[c] for c in META_COLUMNS] + [now])
        for snapshot in snapshots
    ]

    with closing(conn.cursor()) as cursor:
        cursor.execute("DELETE FROM profile_meta WHERE profile_id = ?;", (profile_id,))
    return insert_in_batches(conn, query, rows, MATCH_BATCH_SIZE, "profile_meta")


def store_original_file(
    conn: sqlite3.Connection,
    profile_id: str,
    platform: str,
    blob_url: str,
    user_id: Optional[str],
    mode: str,
) -> str:
    """Record the uploaded export. Returns the new original_file_id."""
    original_file_id = str(uuid.uuid4())
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            """
            INSERT INTO original_file
                (original_file_id, profile_id, data_provider, blob_url, user_id, mode, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (original_file_id, profile_id, platform, blob_url, user_id, mode, now_iso()),
        )
        if cursor.rowcount != 1:
            raise WriteError(f"Storing original file for {profile_id} wrote no row")
    return original_file_id


def add_custom_data(conn: sqlite3.Connection, profile_id: str, key: str, value: Optional[str]) -> str:
    """Attach a free-form annotation to a profile. Returns its id."""
    custom_data_id = str(uuid.uuid4())
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "INSERT INTO custom_data (custom_data_id, profile_id, key, value, created_at) VALUES (?, ?, ?, ?, ?);",
            (custom_data_id, profile_id, key, value, now_iso()),
        )
    return custom_data_id


def update_etl_state(conn: sqlite3.Connection, key: str, value: str) -> None:
    """
    Update ETL state tracking.

    Args:
        conn: SQLite connection to insights.db.
        key: State key (e.g., 'last_ingest_at').
        value: State value.
    """
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            "INSERT OR REPLACE INTO etl_state (key, value, updated_at) VALUES (?, ?, ?);",
            (key, value, now_iso()),
        )


def get_etl_state(conn: sqlite3.Connection, key: str) -> Optional[str]:
    """Get an ETL state value, or None if the key is not set."""
    with closing(conn.cursor()) as cursor:
        cursor.execute("SELECT value FROM etl_state WHERE key = ?;", (key,))
        row = cursor.fetchone()
    return row[0] if row else None
