"""
Schema definitions for insights.db.

This module defines the DDL for the normalized store that every dating-app
export is ingested into, and that dashboards read from.

Design Decisions:
    1. profile_id is the platform's external account id, so re-uploads of
       the same account land on the same row without a lookup table
    2. (user_id, platform) is unique; absorption unlinks the old profile
       before inserting the new one to free that slot
    3. Every child table cascades from profile, so deleting an absorbed or
       reset profile never leaves orphans
    4. Match identity is a single identity_key column ("id:<match id>" or
       "ts:<timestamp>"), which keeps dedup identical across platforms
    5. Use ISO-8601 TEXT for timestamps and YYYY-MM-DD TEXT for usage dates
    6. profile_meta is derived only; it is deleted and rebuilt on every write
"""

import sqlite3
from pathlib import Path
from typing import List
import logging

logger = logging.getLogger(__name__)

# Schema version for migration tracking
SCHEMA_VERSION = "1.0.0"

SCHEMA_DDL = """
-- =============================================================================
-- profile: One row per (platform, external account id)
-- =============================================================================
-- Attributes are overwritten on every additive re-upload. user_id is nullable
-- so a profile can be unlinked while it is absorbed into a newer account.
--
CREATE TABLE IF NOT EXISTS profile (
    profile_id TEXT PRIMARY KEY,
    platform TEXT NOT NULL CHECK (platform IN ('TINDER', 'HINGE')),
    user_id TEXT,
    birth_date TEXT NOT NULL,
    create_date TEXT NOT NULL,
    gender TEXT NOT NULL DEFAULT 'UNKNOWN',
    gender_str TEXT,
    interested_in TEXT,
    bio TEXT,
    bio_original TEXT,
    city TEXT,
    region TEXT,
    country TEXT,
    timezone TEXT,
    job_title TEXT,
    company TEXT,
    school TEXT,
    first_active_date TEXT NOT NULL,
    last_active_date TEXT NOT NULL,
    days_in_period INTEGER NOT NULL,
    age_at_upload INTEGER,
    age_at_last_usage INTEGER,
    attributes_json TEXT NOT NULL DEFAULT '{{}}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (user_id, platform)
);

-- =============================================================================
-- usage_day: Dense daily activity timeline
-- =============================================================================
-- Unique per (profile, date). Upserted; the newest upload's values win.
-- Days synthesized to fill gaps carry date_is_missing_from_original_data = 1.
--
CREATE TABLE IF NOT EXISTS usage_day (
    profile_id TEXT NOT NULL REFERENCES profile(profile_id) ON DELETE CASCADE,
    date TEXT NOT NULL,
    app_opens INTEGER NOT NULL DEFAULT 0,
    swipe_likes INTEGER NOT NULL DEFAULT 0,
    swipe_super_likes INTEGER NOT NULL DEFAULT 0,
    swipe_passes INTEGER NOT NULL DEFAULT 0,
    swipes_combined INTEGER NOT NULL DEFAULT 0,
    matches INTEGER NOT NULL DEFAULT 0,
    messages_sent INTEGER NOT NULL DEFAULT 0,
    messages_received INTEGER NOT NULL DEFAULT 0,
    match_rate REAL NOT NULL DEFAULT 0,
    like_rate REAL NOT NULL DEFAULT 0,
    messages_sent_rate REAL NOT NULL DEFAULT 0,
    engagement_rate REAL NOT NULL DEFAULT 0,
    response_rate REAL NOT NULL DEFAULT 0,
    user_age_this_day INTEGER,
    date_is_missing_from_original_data INTEGER NOT NULL DEFAULT 0
        CHECK (date_is_missing_from_original_data IN (0, 1)),
    PRIMARY KEY (profile_id, date)
);

-- =============================================================================
-- match: One row per mutual connection (immutable once written)
-- =============================================================================
-- identity_key is not unique: absorbed accounts never dedup against each other.
--
CREATE TABLE IF NOT EXISTS match (
    match_id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL REFERENCES profile(profile_id) ON DELETE CASCADE,
    identity_key TEXT NOT NULL,
    platform_match_id TEXT,
    match_order INTEGER NOT NULL,
    matched_at TEXT,
    liked_at TEXT,
    like_comment TEXT,
    total_message_count INTEGER NOT NULL DEFAULT 0,
    text_count INTEGER NOT NULL DEFAULT 0,
    gif_count INTEGER NOT NULL DEFAULT 0,
    gesture_count INTEGER NOT NULL DEFAULT 0,
    voice_note_count INTEGER NOT NULL DEFAULT 0,
    other_message_type_count INTEGER NOT NULL DEFAULT 0,
    initial_message_at TEXT,
    last_message_at TEXT,
    response_time_median_seconds REAL,
    conversation_duration_days INTEGER,
    longest_gap_hours INTEGER,
    message_imbalance_ratio REAL,
    did_match_reply INTEGER NOT NULL DEFAULT 0,
    last_message_from TEXT,
    we_met INTEGER,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_match_profile_identity
    ON match(profile_id, identity_key);

-- =============================================================================
-- message: One row per message, owned by exactly one match
-- =============================================================================
CREATE TABLE IF NOT EXISTS message (
    message_id TEXT PRIMARY KEY,
    match_id TEXT NOT NULL REFERENCES match(match_id) ON DELETE CASCADE,
    profile_id TEXT NOT NULL REFERENCES profile(profile_id) ON DELETE CASCADE,
    to_index INTEGER,
    sent_date TEXT NOT NULL,
    sent_date_raw TEXT,
    content TEXT NOT NULL DEFAULT '',
    content_raw TEXT NOT NULL DEFAULT '',
    char_count INTEGER NOT NULL DEFAULT 0,
    message_type TEXT NOT NULL,
    raw_type TEXT,
    gif_url TEXT,
    message_order INTEGER NOT NULL,
    time_since_last_message INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_message_match
    ON message(match_id);

CREATE INDEX IF NOT EXISTS idx_message_profile
    ON message(profile_id);

-- =============================================================================
-- interaction: Timestamped identity events (like, match, unmatch, ...)
-- =============================================================================
-- Deduplicated by exact timestamp per profile on additive re-upload.
--
CREATE TABLE IF NOT EXISTS interaction (
    interaction_id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL REFERENCES profile(profile_id) ON DELETE CASCADE,
    match_id TEXT REFERENCES match(match_id) ON DELETE SET NULL,
    type TEXT NOT NULL CHECK (
        type IN ('LIKE_SENT', 'MATCH', 'MESSAGE_SENT', 'UNMATCH', 'REJECT', 'WE_MET')
    ),
    timestamp TEXT NOT NULL,
    comment TEXT
);

CREATE INDEX IF NOT EXISTS idx_interaction_profile_timestamp
    ON interaction(profile_id, timestamp);

-- =============================================================================
-- prompt: Current-state profile prompts (replaced wholesale on re-upload)
-- =============================================================================
CREATE TABLE IF NOT EXISTS prompt (
    prompt_id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL REFERENCES profile(profile_id) ON DELETE CASCADE,
    prompt_type TEXT NOT NULL,
    prompt TEXT NOT NULL,
    answer_text TEXT,
    options TEXT,
    created TEXT,
    user_updated TEXT
);

-- =============================================================================
-- media: Profile photos and other media (append-only by URL)
-- =============================================================================
CREATE TABLE IF NOT EXISTS media (
    media_id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL REFERENCES profile(profile_id) ON DELETE CASCADE,
    url TEXT NOT NULL,
    media_type TEXT NOT NULL DEFAULT 'photo',
    prompt TEXT
);

CREATE INDEX IF NOT EXISTS idx_media_profile
    ON media(profile_id);

-- =============================================================================
-- custom_data: Free-form per-profile annotations
-- =============================================================================
CREATE TABLE IF NOT EXISTS custom_data (
    custom_data_id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL REFERENCES profile(profile_id) ON DELETE CASCADE,
    key TEXT NOT NULL,
    value TEXT,
    created_at TEXT NOT NULL
);

-- =============================================================================
-- profile_meta: Derived statistics snapshot per (profile, period)
-- =============================================================================
CREATE TABLE IF NOT EXISTS profile_meta (
    meta_id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL REFERENCES profile(profile_id) ON DELETE CASCADE,
    period TEXT NOT NULL,
    from_date TEXT NOT NULL,
    to_date TEXT NOT NULL,
    days_in_period INTEGER NOT NULL,
    days_active INTEGER NOT NULL,
    app_opens_total INTEGER NOT NULL,
    swipe_likes_total INTEGER NOT NULL,
    swipe_super_likes_total INTEGER NOT NULL,
    swipe_passes_total INTEGER NOT NULL,
    matches_total INTEGER NOT NULL,
    messages_sent_total INTEGER NOT NULL,
    messages_received_total INTEGER NOT NULL,
    like_rate REAL NOT NULL,
    match_rate REAL NOT NULL,
    swipes_per_day REAL NOT NULL,
    conversation_count INTEGER NOT NULL,
    conversations_with_messages INTEGER NOT NULL,
    ghosted_count INTEGER NOT NULL,
    one_message_conversations INTEGER NOT NULL,
    max_conversation_message_count INTEGER NOT NULL,
    longest_conversation_two_week_max_days INTEGER NOT NULL,
    average_response_time_seconds INTEGER,
    mean_response_time_seconds INTEGER,
    median_conversation_duration_days INTEGER,
    longest_conversation_days INTEGER,
    average_messages_per_conversation REAL,
    median_messages_per_conversation INTEGER,
    computed_at TEXT NOT NULL,
    UNIQUE (profile_id, period)
);

-- =============================================================================
-- original_file: Audit pointer to each uploaded export
-- =============================================================================
-- Intentionally not cascaded: the audit trail outlives absorbed profiles.
--
CREATE TABLE IF NOT EXISTS original_file (
    original_file_id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    data_provider TEXT NOT NULL CHECK (data_provider IN ('TINDER', 'HINGE')),
    blob_url TEXT NOT NULL,
    user_id TEXT,
    mode TEXT NOT NULL,
    created_at TEXT NOT NULL
);

-- =============================================================================
-- etl_state: Ingestion bookkeeping
-- =============================================================================
-- Common keys:
--   - 'schema_version': Current schema version
--   - 'last_ingest_at': Timestamp of the last committed ingestion
--
CREATE TABLE IF NOT EXISTS etl_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

INSERT OR REPLACE INTO etl_state (key, value, updated_at)
VALUES ('schema_version', '{schema_version}', strftime('%Y-%m-%dT%H:%M:%SZ', 'now'));
""".format(
    schema_version=SCHEMA_VERSION
)

REQUIRED_TABLES = {
    "profile",
    "usage_day",
    "match",
    "message",
    "interaction",
    "prompt",
    "media",
    "custom_data",
    "profile_meta",
    "original_file",
    "etl_state",
}


def create_schema(db_path: Path) -> None:
    """
    Create the insights.db schema if it doesn't exist.

    This function is idempotent - safe to call multiple times.

    Args:
        db_path: Path to the insights.db file. Parent directory will be created
                 if it doesn't exist.

    Raises:
        sqlite3.Error: If schema creation fails.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    logger.info(f"Creating/verifying schema at: {db_path}")

    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.executescript(SCHEMA_DDL)
        conn.commit()

        logger.info(f"Schema created/verified successfully (version {SCHEMA_VERSION})")
    except sqlite3.Error as e:
        logger.error(f"Schema creation failed: {e}")
        raise
    finally:
        conn.close()


def get_table_names(db_path: Path) -> List[str]:
    """
    Get all table names in the insights database.

    Args:
        db_path: Path to the insights.db file.

    Returns:
        List of table names.
    """
    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;")
        return [row[0] for row in cursor.fetchall()]
    finally:
        conn.close()


def verify_schema(db_path: Path) -> bool:
    """
    Verify that the schema exists and has all required tables.

    Args:
        db_path: Path to the insights.db file.

    Returns:
        True if schema is valid, False otherwise.
    """
    if not db_path.exists():
        return False

    existing_tables = set(get_table_names(db_path))
    return REQUIRED_TABLES.issubset(existing_tables)
