"""
Integrity validation for insights.db.

Run these checks after ingestion (or any time, via the CLI) to confirm the
store still satisfies the invariants the writer relies on.

Validation Checks:
    1. No orphaned messages (each message's match exists under the same profile)
    2. Every profile has an all-time snapshot
    3. Usage dates are YYYY-MM-DD
    4. Every active window is ordered (first <= last)
    5. Timestamps are ISO-8601
    6. ETL state is valid
"""

import re
import sqlite3
from contextlib import closing
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import logging

from swipe_insights.database import open_insights_db
from swipe_insights.ingest.metrics import PERIOD_ALL_TIME

logger = logging.getLogger(__name__)

# ISO-8601 timestamp format regex (basic)
ISO8601_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z?$")

ISO_DATE_GLOB = "[0-9][0-9][0-9][0-9]-[0-9][0-9]-[0-9][0-9]"

# (table, column) pairs holding ISO-8601 timestamps
TIMESTAMP_COLUMNS = (
    ("match", "matched_at"),
    ("match", "initial_message_at"),
    ("message", "sent_date"),
    ("interaction", "timestamp"),
)


@dataclass
class ValidationCheck:
    """Result of a single validation check."""

    name: str
    passed: bool
    message: str
    details: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of all validation checks."""

    passed: bool
    checks: List[ValidationCheck] = field(default_factory=list)
    summary: str = ""

    def __str__(self) -> str:
        lines = []
        for check in self.checks:
            icon = "✓" if check.passed else "✗"
            lines.append(f"{icon} {check.name}: {check.message}")
            if check.details and not check.passed:
                lines.append(f"  → {check.details}")

        status = "All checks passed" if self.passed else "Some checks failed"
        lines.append(f"\n{status}.")
        return "\n".join(lines)


def _count(conn: sqlite3.Connection, query: str) -> int:
    with closing(conn.cursor()) as cursor:
        cursor.execute(query)
        return cursor.fetchone()[0]


def check_no_orphan_messages(conn: sqlite3.Connection) -> ValidationCheck:
    """Verify every message belongs to an existing match of the same profile."""
    orphan_count = _count(
        conn,
        """
        SELECT COUNT(*) FROM message msg
        LEFT JOIN match m ON m.match_id = msg.match_id
        WHERE m.match_id IS NULL OR m.profile_id != msg.profile_id;
        """,
    )
    passed = orphan_count == 0
    return ValidationCheck(
        name="Orphan messages",
        passed=passed,
        message="None found" if passed else f"{orphan_count} orphaned messages",
        details="Messages must share their match's profile_id" if not passed else None,
    )


def check_snapshots_present(conn: sqlite3.Connection) -> ValidationCheck:
    """Verify every profile has an all-time snapshot."""
    with closing(conn.cursor()) as cursor:
        cursor.execute(
            """
            SELECT p.profile_id FROM profile p
            WHERE NOT EXISTS (
                SELECT 1 FROM profile_meta pm
                WHERE pm.profile_id = p.profile_id AND pm.period = ?
            );
            """,
            (PERIOD_ALL_TIME,),
        )
        missing = [row[0] for row in cursor.fetchall()]

    passed = not missing
    return ValidationCheck(
        name="Snapshots",
        passed=passed,
        message="Every profile has an all-time snapshot" if passed else f"{len(missing)} profiles missing",
        details=", ".join(missing[:5]) if not passed else None,
    )


def check_usage_dates(conn: sqlite3.Connection) -> ValidationCheck:
    """
    Verify usage dates are ISO dates.

    Stored days may sit outside the profile's window: a re-upload overwrites
    the window but keeps every older day.
    """
    invalid = _count(conn, f"SELECT COUNT(*) FROM usage_day WHERE date NOT GLOB '{ISO_DATE_GLOB}';")
    passed = invalid == 0
    message = "All usage dates valid" if passed else f"{invalid} invalid dates"
    return ValidationCheck(name="Usage dates", passed=passed, message=message)


def check_active_windows(conn: sqlite3.Connection) -> ValidationCheck:
    """Verify first_active_date <= last_active_date for every profile."""
    unordered = _count(conn, "SELECT COUNT(*) FROM profile WHERE first_active_date > last_active_date;")
    passed = unordered == 0
    return ValidationCheck(
        name="Active windows",
        passed=passed,
        message="All windows ordered" if passed else f"{unordered} profiles with first > last",
    )


def check_timestamp_formats(conn: sqlite3.Connection) -> ValidationCheck:
    """Verify stored timestamps are ISO-8601."""
    invalid = 0
    for table, column in TIMESTAMP_COLUMNS:
        invalid += _count(
            conn,
            f"SELECT COUNT(*) FROM {table} WHERE {column} IS NOT NULL "
            f"AND {column} NOT GLOB '{ISO_DATE_GLOB}T*';",
        )

    passed = invalid == 0
    return ValidationCheck(
        name="Timestamp formats",
        passed=passed,
        message="All timestamps valid" if passed else f"{invalid} invalid timestamps",
    )


def check_etl_state(conn: sqlite3.Connection) -> ValidationCheck:
    """Verify the schema version and last ingestion timestamp are recorded."""
    with closing(conn.cursor()) as cursor:
        cursor.execute("SELECT key, value FROM etl_state;")
        state = {row[0]: row[1] for row in cursor.fetchall()}

    if "schema_version" not in state:
        return ValidationCheck(name="ETL state", passed=False, message="Missing schema_version")

    last_ingest = state.get("last_ingest_at")
    if last_ingest is None:
        return ValidationCheck(name="ETL state", passed=True, message="No ingestion recorded yet")
    if not ISO8601_PATTERN.match(last_ingest):
        return ValidationCheck(
            name="ETL state",
            passed=False,
            message=f"Invalid last_ingest_at format: {last_ingest}",
        )

    return ValidationCheck(name="ETL state", passed=True, message=f"Valid (last ingest: {last_ingest})")


def validate_insights_db(analysis_db_path: Path) -> ValidationResult:
    """
    Run all validation checks against insights.db.

    Args:
        analysis_db_path: Path to insights.db.

    Returns:
        ValidationResult with all check results.
    """
    checks: List[ValidationCheck] = []

    try:
        conn = open_insights_db(analysis_db_path, read_only=True)
        try:
            checks.append(check_no_orphan_messages(conn))
            checks.append(check_snapshots_present(conn))
            checks.append(check_usage_dates(conn))
            checks.append(check_active_windows(conn))
            checks.append(check_timestamp_formats(conn))
            checks.append(check_etl_state(conn))
        finally:
            conn.close()

    except Exception as e:
        checks.append(
            ValidationCheck(
                name="Connection",
                passed=False,
                message=f"Failed to validate: {e}",
            )
        )

    all_passed = all(check.passed for check in checks)
    passed_count = sum(1 for c in checks if c.passed)

    result = ValidationResult(
        passed=all_passed,
        checks=checks,
        summary=f"{passed_count}/{len(checks)} checks passed",
    )

    logger.info(f"Validation complete: {result.summary}")
    return result
