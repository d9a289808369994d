"""
Metrics engine: derived statistics snapshots for a profile.

A snapshot is a pure function of a profile's usage days, matches and
identity events, evaluated over a period window. Snapshots are never
patched; recompute_profile_meta deletes every stored row for the profile
and inserts fresh ones, inside the caller's transaction.

Design Decisions:
    1. Every ratio is zero-safe (0 when its denominator is 0) and every
       median/mean of an empty list is None, so nothing here raises on
       sparse data
    2. swipes_per_day divides by days that had at least one swipe, never by
       calendar days, so idle stretches do not dilute it
    3. Periods are predicates over ISO date strings: all-time, last-N-days,
       YYYY and YYYY-Qn. Calendar periods are clipped to the active window
    4. Hinge has no daily usage series, so its swipe figures come from
       LIKE_SENT events and its message figures from stored matches
"""

import re
import sqlite3
from contextlib import closing
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import logging

from swipe_insights.ingest.errors import ProfileNotFoundError
from swipe_insights.ingest.loaders import replace_profile_meta
from swipe_insights.ingest.models import (
    EVENT_LIKE_SENT,
    PLATFORM_HINGE,
    InteractionRecord,
    MatchRecord,
    ProfileRecord,
    UsageRecord,
)
from swipe_insights.ingest.stats import get_ratio, mean, median, round_or_none
from swipe_insights.ingest.timeutil import days_between, parse_date, to_iso_date

logger = logging.getLogger(__name__)

PERIOD_ALL_TIME = "all-time"

# A conversation counts for the "two week max" figure only while every gap
# between consecutive messages stays under this many hours.
TWO_WEEKS_HOURS = 14 * 24

_LAST_N_DAYS = re.compile(r"^last-(\d+)-days$")
_YEAR = re.compile(r"^(\d{4})$")
_QUARTER = re.compile(r"^(\d{4})-Q([1-4])$")

__all__ = [
    "PERIOD_ALL_TIME",
    "MetaSnapshot",
    "ProfileGraph",
    "aggregate_usage_by_period",
    "compute_meta_snapshot",
    "fetch_profile_graph",
    "filter_usage_by_period",
    "get_ratio",
    "median",
    "period_predicate",
    "recompute_profile_meta",
    "resolve_period_window",
    "snapshot_periods",
    "summarize_conversations",
]


# =============================================================================
# Periods
# =============================================================================


def _clip(start: date, end: date, first: date, last: date) -> Tuple[date, date]:
    clipped_start, clipped_end = max(start, first), min(end, last)
    if clipped_start > clipped_end:
        return start, end
    return clipped_start, clipped_end


def resolve_period_window(period: str, first: date, last: date, today: date) -> Tuple[date, date]:
    """
    Resolve a period name to an inclusive (from, to) date window.

    Args:
        period: "all-time", "last-N-days", "YYYY" or "YYYY-Qn".
        first: Profile's first active date.
        last: Profile's last active date.
        today: Reference day for rolling periods.

    Returns:
        (from_date, to_date). Calendar periods are clipped to first..last;
        a calendar period entirely outside the active window keeps its
        calendar bounds.

    Raises:
        ValueError: If the period name is not recognised.
    """
    if period == PERIOD_ALL_TIME:
        return first, last

    rolling = _LAST_N_DAYS.match(period)
    if rolling:
        days = int(rolling.group(1))
        if days < 1:
            raise ValueError(f"Rolling period must cover at least one day: {period}")
        return today - timedelta(days=days - 1), today

    year = _YEAR.match(period)
    if year:
        value = int(year.group(1))
        return _clip(date(value, 1, 1), date(value, 12, 31), first, last)

    quarter = _QUARTER.match(period)
    if quarter:
        value, number = int(quarter.group(1)), int(quarter.group(2))
        start = date(value, 3 * (number - 1) + 1, 1)
        end_month_start = date(value + 1, 1, 1) if number == 4 else date(value, 3 * number + 1, 1)
        return _clip(start, end_month_start - timedelta(days=1), first, last)

    raise ValueError(f"Unknown period: {period}")


def period_predicate(period: str, first: date, last: date, today: date) -> Callable[[Optional[str]], bool]:
    """
    Predicate over ISO date (or timestamp) strings for a period.

    all-time accepts everything, including undated values.
    """
    if period == PERIOD_ALL_TIME:
        return lambda value: True

    start, end = resolve_period_window(period, first, last, today)
    start_iso, end_iso = to_iso_date(start), to_iso_date(end)

    def in_window(value: Optional[str]) -> bool:
        return bool(value) and start_iso <= value[:10] <= end_iso

    return in_window


def filter_usage_by_period(
    usage: Sequence[UsageRecord], period: str, first: date, last: date, today: date
) -> List[UsageRecord]:
    """Usage rows whose date falls in the period."""
    keep = period_predicate(period, first, last, today)
    return [record for record in usage if keep(record.date)]


# =============================================================================
# Snapshots
# =============================================================================


@dataclass
class MetaSnapshot:
    """Derived statistics for one profile over one period."""

    period: str
    from_date: str
    to_date: str
    days_in_period: int
    days_active: int = 0
    app_opens_total: int = 0
    swipe_likes_total: int = 0
    swipe_super_likes_total: int = 0
    swipe_passes_total: int = 0
    matches_total: int = 0
    messages_sent_total: int = 0
    messages_received_total: int = 0
    like_rate: float = 0.0
    match_rate: float = 0.0
    swipes_per_day: float = 0.0
    conversation_count: int = 0
    conversations_with_messages: int = 0
    ghosted_count: int = 0
    one_message_conversations: int = 0
    max_conversation_message_count: int = 0
    longest_conversation_two_week_max_days: int = 0
    average_response_time_seconds: Optional[int] = None
    mean_response_time_seconds: Optional[int] = None
    median_conversation_duration_days: Optional[int] = None
    longest_conversation_days: Optional[int] = None
    average_messages_per_conversation: Optional[float] = None
    median_messages_per_conversation: Optional[int] = None

    def as_row(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MetaSnapshot":
        names = cls.__dataclass_fields__.keys()
        return cls(**{name: row[name] for name in names})


@dataclass
class ProfileGraph:
    """A profile with every row its snapshot is derived from."""

    profile: ProfileRecord
    usage: List[UsageRecord] = field(default_factory=list)
    matches: List[MatchRecord] = field(default_factory=list)
    interactions: List[InteractionRecord] = field(default_factory=list)


def summarize_conversations(matches: Sequence[MatchRecord]) -> Dict[str, Any]:
    """
    Conversation figures over a set of matches.

    Ghosted conversations are matches without messages. Response time,
    duration and length figures are taken over conversations that have at
    least one message; zero-day durations are left out of the duration
    figures, and the median message count is rounded to a whole message.
    """
    with_messages = [m for m in matches if m.total_message_count > 0]
    totals = [m.total_message_count for m in with_messages]
    response_medians = [
        m.response_time_median_seconds for m in with_messages if m.response_time_median_seconds is not None
    ]
    durations = [
        m.conversation_duration_days for m in with_messages if (m.conversation_duration_days or 0) > 0
    ]
    two_week_durations = [
        m.conversation_duration_days or 0
        for m in with_messages
        if (m.longest_gap_hours or 0) < TWO_WEEKS_HOURS
    ]

    return {
        "conversation_count": len(matches),
        "conversations_with_messages": len(with_messages),
        "ghosted_count": len(matches) - len(with_messages),
        "one_message_conversations": sum(1 for total in totals if total == 1),
        "max_conversation_message_count": max(totals, default=0),
        "longest_conversation_two_week_max_days": max(two_week_durations, default=0),
        "average_response_time_seconds": round_or_none(median(response_medians)),
        "mean_response_time_seconds": round_or_none(mean(response_medians)),
        "median_conversation_duration_days": round_or_none(median(durations)),
        "longest_conversation_days": max(durations, default=None),
        "average_messages_per_conversation": mean(totals),
        "median_messages_per_conversation": round_or_none(median(totals)),
    }


def _today() -> date:
    return datetime.now(tz=timezone.utc).date()


def compute_meta_snapshot(
    graph: ProfileGraph,
    period: str = PERIOD_ALL_TIME,
    today: Optional[date] = None,
) -> MetaSnapshot:
    """
    Compute the snapshot of a profile's graph over one period.

    Args:
        graph: Profile plus its usage, matches and identity events.
        period: Period name (see resolve_period_window).
        today: Reference day for rolling periods (default: current UTC date).

    Returns:
        MetaSnapshot. Undefined ratios are 0 and undefined medians None.

    Raises:
        ValueError: If the period name is not recognised.
    """
    today = today or _today()
    profile = graph.profile
    first = parse_date(profile.first_active_date)
    last = parse_date(profile.last_active_date)
    from_date, to_date = resolve_period_window(period, first, last, today)
    in_period = period_predicate(period, first, last, today)

    matches = [m for m in graph.matches if in_period(m.activity_date)]

    if profile.platform == PLATFORM_HINGE:
        events = [e for e in graph.interactions if in_period(e.timestamp)]
        likes = [e for e in events if e.type == EVENT_LIKE_SENT]
        totals = {
            "app_opens_total": 0,
            "swipe_likes_total": len(likes),
            "swipe_super_likes_total": 0,
            "swipe_passes_total": 0,
            "matches_total": len(matches),
            "messages_sent_total": sum(m.total_message_count for m in matches),
            "messages_received_total": 0,
        }
        swipe_days = len({e.timestamp[:10] for e in likes})
        days_active = len({e.timestamp[:10] for e in events})
    else:
        usage = [u for u in graph.usage if in_period(u.date)]
        totals = {
            "app_opens_total": sum(u.app_opens for u in usage),
            "swipe_likes_total": sum(u.swipe_likes for u in usage),
            "swipe_super_likes_total": sum(u.swipe_super_likes for u in usage),
            "swipe_passes_total": sum(u.swipe_passes for u in usage),
            "matches_total": sum(u.matches for u in usage),
            "messages_sent_total": sum(u.messages_sent for u in usage),
            "messages_received_total": sum(u.messages_received for u in usage),
        }
        swipe_days = sum(1 for u in usage if u.swipes_combined > 0)
        days_active = sum(1 for u in usage if u.app_opens > 0)

    likes_total = totals["swipe_likes_total"]
    swipes = likes_total + totals["swipe_passes_total"]

    return MetaSnapshot(
        period=period,
        from_date=to_iso_date(from_date),
        to_date=to_iso_date(to_date),
        days_in_period=days_between(from_date, to_date) + 1,
        days_active=days_active,
        like_rate=get_ratio(likes_total, swipes),
        match_rate=get_ratio(totals["matches_total"], likes_total),
        swipes_per_day=get_ratio(swipes, swipe_days),
        **totals,
        **summarize_conversations(matches),
    )


def snapshot_periods(graph: ProfileGraph) -> List[str]:
    """Periods stored for a profile: all-time plus each calendar year it was active."""
    first = parse_date(graph.profile.first_active_date)
    last = parse_date(graph.profile.last_active_date)
    return [PERIOD_ALL_TIME] + [str(year) for year in range(first.year, last.year + 1)]


def fetch_profile_graph(conn: sqlite3.Connection, profile_id: str) -> ProfileGraph:
    """
    Load a profile with its usage, matches and identity events.

    Raises:
        ProfileNotFoundError: If the profile does not exist.
    """
    with closing(conn.cursor()) as cursor:
        cursor.execute("SELECT * FROM profile WHERE profile_id = ?;", (profile_id,))
        row = cursor.fetchone()
        if row is None:
            raise ProfileNotFoundError(profile_id)
        profile = ProfileRecord.from_row(row)

        cursor.execute("SELECT * FROM usage_day WHERE profile_id = ? ORDER BY date;", (profile_id,))
        usage = [UsageRecord.from_row(r) for r in cursor.fetchall()]

        cursor.execute(
            "SELECT * FROM match WHERE profile_id = ? ORDER BY match_order, matched_at;",
            (profile_id,),
        )
        matches = [MatchRecord.from_row(r) for r in cursor.fetchall()]

        cursor.execute(
            "SELECT * FROM interaction WHERE profile_id = ? ORDER BY timestamp;",
            (profile_id,),
        )
        interactions = [InteractionRecord.from_row(r) for r in cursor.fetchall()]

    return ProfileGraph(profile=profile, usage=usage, matches=matches, interactions=interactions)


def recompute_profile_meta(
    conn: sqlite3.Connection, profile_id: str, today: Optional[date] = None
) -> List[MetaSnapshot]:
    """
    Delete and rebuild every stored snapshot of a profile.

    Runs inside the caller's transaction; a ProfileNotFoundError here means
    an earlier write step lost the profile and must abort the transaction.
    """
    graph = fetch_profile_graph(conn, profile_id)
    snapshots = [compute_meta_snapshot(graph, period, today) for period in snapshot_periods(graph)]
    replace_profile_meta(conn, profile_id, [s.as_row() for s in snapshots])

    all_time = snapshots[0]
    logger.info(
        f"Recomputed {len(snapshots)} snapshots for {profile_id}: "
        f"{all_time.conversation_count} conversations, like_rate={all_time.like_rate:.3f}, "
        f"swipes_per_day={all_time.swipes_per_day:.1f}"
    )
    return snapshots


# =============================================================================
# Dashboard aggregates
# =============================================================================


def _empty_bucket() -> Dict[str, int]:
    return {
        "days": 0,
        "app_opens": 0,
        "swipe_likes": 0,
        "swipe_passes": 0,
        "matches": 0,
        "messages_sent": 0,
        "messages_received": 0,
        "conversations": 0,
    }


def aggregate_usage_by_period(
    usage: Sequence[UsageRecord], matches: Sequence[MatchRecord]
) -> Dict[str, Dict[str, Dict[str, int]]]:
    """
    Bucket usage days and dated matches by month (YYYY-MM) and year (YYYY).

    Returns:
        {"by_month": {bucket: totals}, "by_year": {bucket: totals}}, buckets
        in chronological order.
    """
    by_month: Dict[str, Dict[str, int]] = {}
    by_year: Dict[str, Dict[str, int]] = {}

    for record in usage:
        for key, buckets in ((record.date[:7], by_month), (record.date[:4], by_year)):
            bucket = buckets.setdefault(key, _empty_bucket())
            bucket["days"] += 1
            bucket["app_opens"] += record.app_opens
            bucket["swipe_likes"] += record.swipe_likes
            bucket["swipe_passes"] += record.swipe_passes
            bucket["matches"] += record.matches
            bucket["messages_sent"] += record.messages_sent
            bucket["messages_received"] += record.messages_received

    for match in matches:
        day = match.activity_date
        if not day:
            continue
        for key, buckets in ((day[:7], by_month), (day[:4], by_year)):
            buckets.setdefault(key, _empty_bucket())["conversations"] += 1

    return {
        "by_month": dict(sorted(by_month.items())),
        "by_year": dict(sorted(by_year.items())),
    }
