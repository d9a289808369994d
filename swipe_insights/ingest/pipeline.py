"""
Ingestion pipeline orchestration.

One call to run_ingest turns one uploaded export into normalized rows:

Pipeline Steps:
    1. Ensure the insights.db schema exists
    2. Fetch the export (http(s) URL through httpx, or a local file)
    3. Transform it into a row-set: profile, usage timeline, matches with
       their messages, identity events, prompts, media
    4. Take the per-profile lock(s) and open one transaction
    5. Reconcile (NEW / ADDITIVE_SAME_ACCOUNT / CROSS_ACCOUNT_ABSORPTION),
       recompute snapshots, record the original file
    6. Commit, or roll back everything on any failure

Steps 1-3 never write; a transform failure therefore leaves the database
untouched. run_ingest never raises: failures come back as an IngestResult
with success=False.
"""

import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import logging

import httpx

from swipe_insights.config import Config
from swipe_insights.database import open_insights_db, transaction
from swipe_insights.ingest.conversations import build_hinge_matches, build_tinder_matches
from swipe_insights.ingest.errors import ProfileNotFoundError
from swipe_insights.ingest.loaders import get_etl_state, get_profile, reset_profile, update_etl_state
from swipe_insights.ingest.metrics import MetaSnapshot, recompute_profile_meta
from swipe_insights.ingest.models import (
    PLATFORM_HINGE,
    PLATFORM_TINDER,
    ExportRowSet,
    IngestContext,
)
from swipe_insights.ingest.reconcile import PROFILE_LOCKS, reconcile
from swipe_insights.ingest.schema import create_schema, verify_schema
from swipe_insights.ingest.timeutil import now_iso, parse_date
from swipe_insights.ingest.transformers import (
    transform_hinge_media,
    transform_hinge_profile,
    transform_hinge_prompts,
    transform_tinder_photos,
    transform_tinder_profile,
)
from swipe_insights.ingest.usage import expand_usage

logger = logging.getLogger(__name__)

# Returns the raw JSON text of an export for a source reference
Fetcher = Callable[[str], str]

STATUS_TABLES = ("profile", "usage_day", "match", "message", "interaction", "media", "prompt", "profile_meta")


@dataclass
class IngestResult:
    """Result of one ingestion call."""

    success: bool
    platform: str
    profile_id: str
    mode: Optional[str] = None
    matches_written: int = 0
    messages_written: int = 0
    interactions_written: int = 0
    usage_days_written: int = 0
    photos_written: int = 0
    prompts_written: int = 0
    matches_skipped: int = 0
    interactions_skipped: int = 0
    has_photos: bool = False
    json_size_mb: float = 0.0
    original_file_id: Optional[str] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0

    def __str__(self) -> str:
        status = "SUCCESS" if self.success else f"FAILED: {self.error}"
        mode = self.mode or "no mode"
        return (
            f"Ingest {status} ({self.platform} {self.profile_id}, {mode})\n"
            f"  Matches: {self.matches_written} written, {self.matches_skipped} already known\n"
            f"  Messages: {self.messages_written} written\n"
            f"  Events: {self.interactions_written} written, {self.interactions_skipped} already known\n"
            f"  Usage days: {self.usage_days_written}, photos: {self.photos_written}, "
            f"prompts: {self.prompts_written}\n"
            f"  Export: {self.json_size_mb:.2f} MB\n"
            f"  Duration: {self.duration_seconds:.2f}s"
        )


def fetch_json_text(source: str, timeout: float = Config.DEFAULT_FETCH_TIMEOUT_SECONDS) -> str:
    """
    Load the raw JSON text of an export.

    Args:
        source: http(s) URL of the stored export, or a local file path.
        timeout: HTTP timeout in seconds.

    Raises:
        httpx.HTTPError: If the download fails or returns an error status.
        OSError: If the local file cannot be read.
    """
    if source.startswith(("http://", "https://")):
        with httpx.Client(timeout=timeout, follow_redirects=True) as client:
            response = client.get(source)
            response.raise_for_status()
            return response.text

    return Path(source).expanduser().read_text(encoding="utf-8")


def fetch_json(source: str, timeout: float = Config.DEFAULT_FETCH_TIMEOUT_SECONDS) -> Any:
    """Fetch and parse an export (see fetch_json_text)."""
    return json.loads(fetch_json_text(source, timeout))


def normalize_platform(platform: str) -> str:
    """'tinder' / 'Hinge' -> 'TINDER' / 'HINGE'."""
    value = (platform or "").strip().upper()
    if value not in (PLATFORM_TINDER, PLATFORM_HINGE):
        raise ValueError(f"Unsupported platform: {platform!r}")
    return value


def build_row_set(platform: str, export: Dict[str, Any], context: IngestContext) -> ExportRowSet:
    """
    Transform a parsed export into every row it contributes.

    Pure: no database access.

    Raises:
        MissingIdentityFieldError: If the export lacks required identity fields.
        ValueError: If the platform is not supported.
    """
    platform = normalize_platform(platform)
    if not isinstance(export, dict):
        raise ValueError("Export must be a JSON object")

    if platform == PLATFORM_TINDER:
        profile = transform_tinder_profile(export, context)
        return ExportRowSet(
            platform=platform,
            profile=profile,
            usage=expand_usage(export.get("Usage") or {}, parse_date(profile.birth_date)),
            matches=build_tinder_matches(export.get("Messages")),
            media=transform_tinder_photos(export.get("Photos")),
        )

    profile = transform_hinge_profile(export, context)
    matches, interactions = build_hinge_matches(export.get("Matches"))
    return ExportRowSet(
        platform=platform,
        profile=profile,
        matches=matches,
        interactions=interactions,
        prompts=transform_hinge_prompts(export.get("Prompts")),
        media=transform_hinge_media(export.get("Media")),
    )


def run_ingest(
    source: str,
    platform: str,
    profile_id: str,
    user_id: Optional[str],
    analysis_db_path: Path,
    absorb_from: Optional[str] = None,
    country: Optional[str] = None,
    timezone_name: Optional[str] = None,
    fetcher: Optional[Fetcher] = None,
    timeout: float = Config.DEFAULT_FETCH_TIMEOUT_SECONDS,
    as_of: Optional[date] = None,
) -> IngestResult:
    """
    Ingest one export into insights.db.

    Args:
        source: Reference to the export (URL or file path); stored as blob_url.
        platform: "tinder" or "hinge".
        profile_id: External account id the export belongs to.
        user_id: Owning user account.
        analysis_db_path: Path to insights.db (created if missing).
        absorb_from: Older external id of the same person to absorb.
        country: Country override.
        timezone_name: Timezone of the user.
        fetcher: Replaces fetch_json_text (source -> JSON text).
        timeout: HTTP timeout for the default fetcher.
        as_of: Ingestion date used for ages and rolling periods (default: today, UTC).

    Returns:
        IngestResult with counts and success status.
    """
    start_time = datetime.now()
    platform_label = (platform or "").upper()

    try:
        # Step 1: Ensure schema exists
        logger.info("Step 1: Ensuring schema exists...")
        create_schema(analysis_db_path)

        # Step 2: Fetch export
        logger.info(f"Step 2: Fetching export from {source}...")
        raw_text = fetcher(source) if fetcher else fetch_json_text(source, timeout)
        json_size_mb = round(len(raw_text) / 1024 / 1024, 2)
        export = json.loads(raw_text)

        # Step 3: Transform
        logger.info("Step 3: Transforming export...")
        context = IngestContext(
            profile_id=profile_id,
            user_id=user_id,
            as_of=as_of or datetime.now(tz=timezone.utc).date(),
            blob_url=source,
            timezone=timezone_name,
            country=country,
        )
        rows = build_row_set(platform, export, context)
        logger.info(
            f"Built {len(rows.usage)} usage days, {len(rows.matches)} matches, "
            f"{rows.message_count} messages, {len(rows.interactions)} events, {len(rows.media)} media"
        )

        # Steps 4-6: Reconcile inside one transaction
        logger.info("Step 4: Reconciling and writing...")
        conn = open_insights_db(analysis_db_path)
        try:
            with PROFILE_LOCKS.hold(profile_id, absorb_from):
                with transaction(conn):
                    outcome = reconcile(conn, rows, context, absorb_from)
                    update_etl_state(conn, "last_ingest_at", now_iso())
        finally:
            conn.close()

        result = IngestResult(
            success=True,
            platform=rows.platform,
            profile_id=outcome.profile_id,
            mode=outcome.mode.value,
            matches_written=outcome.matches_written,
            messages_written=outcome.messages_written,
            interactions_written=outcome.interactions_written,
            usage_days_written=outcome.usage_days_written,
            photos_written=outcome.media_written,
            prompts_written=outcome.prompts_written,
            matches_skipped=outcome.matches_skipped,
            interactions_skipped=outcome.interactions_skipped,
            has_photos=bool(rows.media),
            json_size_mb=json_size_mb,
            original_file_id=outcome.original_file_id,
            duration_seconds=(datetime.now() - start_time).total_seconds(),
        )
        logger.info(f"Ingest completed in {result.duration_seconds:.2f}s ({result.mode})")
        return result

    except Exception as e:
        duration = (datetime.now() - start_time).total_seconds()
        logger.error(f"Ingest failed for {platform_label} {profile_id}: {e}")
        return IngestResult(
            success=False,
            platform=platform_label,
            profile_id=profile_id,
            error=str(e),
            duration_seconds=duration,
        )


def reset_profile_data(analysis_db_path: Path, profile_id: str) -> Dict[str, int]:
    """
    Delete a profile and everything it owns in one transaction.

    Raises:
        ProfileNotFoundError: If the profile does not exist.
    """
    conn = open_insights_db(analysis_db_path)
    try:
        with PROFILE_LOCKS.hold(profile_id):
            with transaction(conn):
                if get_profile(conn, profile_id) is None:
                    raise ProfileNotFoundError(profile_id)
                return reset_profile(conn, profile_id)
    finally:
        conn.close()


def recompute_meta(
    analysis_db_path: Path, profile_id: str, today: Optional[date] = None
) -> List[MetaSnapshot]:
    """Rebuild a profile's stored snapshots on demand."""
    conn = open_insights_db(analysis_db_path)
    try:
        with PROFILE_LOCKS.hold(profile_id):
            with transaction(conn):
                return recompute_profile_meta(conn, profile_id, today)
    finally:
        conn.close()


def get_ingest_status(analysis_db_path: Path) -> dict:
    """
    Get current ingestion status from insights.db.

    Returns:
        Dictionary with schema validity, row counts and bookkeeping values.
    """
    if not analysis_db_path.exists():
        return {"exists": False}

    schema_valid = verify_schema(analysis_db_path)
    conn = open_insights_db(analysis_db_path, read_only=True)
    try:
        status: Dict[str, Any] = {"exists": True, "schema_valid": schema_valid}
        if schema_valid:
            for table in STATUS_TABLES:
                status[f"{table}_count"] = conn.execute(f"SELECT COUNT(*) FROM {table};").fetchone()[0]
            status["last_ingest_at"] = get_etl_state(conn, "last_ingest_at")
            status["schema_version"] = get_etl_state(conn, "schema_version")
        return status
    finally:
        conn.close()
