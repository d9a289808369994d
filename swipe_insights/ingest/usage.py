"""
Usage expander: sparse per-day count maps to a dense daily timeline.

Tinder exports one {date: count} map per activity series, and only lists
days on which that series was nonzero. The expander merges the series into
one row per calendar day from the earliest to the latest observed date, and
synthesizes zero rows (flagged date_is_missing_from_original_data) for the
days no series mentions. Platforms without a daily series skip this stage.
"""

from datetime import date
from typing import Any, Dict, List, Mapping, Optional
import logging

from swipe_insights.ingest.models import UsageRecord
from swipe_insights.ingest.timeutil import iter_days, parse_date, to_iso_date, years_between

logger = logging.getLogger(__name__)

# UsageRecord field -> key of the series in the export's Usage object
USAGE_KEYS = {
    "app_opens": "app_opens",
    "swipe_likes": "swipes_likes",
    "swipe_passes": "swipes_passes",
    "swipe_super_likes": "superlikes",
    "matches": "matches",
    "messages_sent": "messages_sent",
    "messages_received": "messages_received",
}


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator else 0.0


def _count(value: Any) -> int:
    """Coerce an exported count to a non-negative int (bad values -> 0)."""
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


def compute_usage_record(
    counts: Mapping[str, int],
    day: date,
    birth_date: Optional[date] = None,
    synthesized: bool = False,
) -> UsageRecord:
    """
    Build one day's usage row with its per-day rates.

    Every rate is zero-safe: it is 0 when its denominator is 0.

    Args:
        counts: Field name -> count for this day (missing fields count as 0).
        day: Calendar day of the row.
        birth_date: Used to compute the user's age on that day.
        synthesized: True when the day was absent from every export series.

    Returns:
        UsageRecord for the day.
    """
    app_opens = counts.get("app_opens", 0)
    likes = counts.get("swipe_likes", 0)
    passes = counts.get("swipe_passes", 0)
    matches = counts.get("matches", 0)
    sent = counts.get("messages_sent", 0)
    received = counts.get("messages_received", 0)

    return UsageRecord(
        date=to_iso_date(day),
        app_opens=app_opens,
        swipe_likes=likes,
        swipe_super_likes=counts.get("swipe_super_likes", 0),
        swipe_passes=passes,
        matches=matches,
        messages_sent=sent,
        messages_received=received,
        match_rate=_ratio(matches, likes),
        like_rate=_ratio(likes, likes + passes),
        messages_sent_rate=_ratio(sent, sent + received),
        engagement_rate=_ratio(likes + passes + sent, app_opens),
        response_rate=_ratio(sent, received),
        user_age_this_day=years_between(birth_date, day) if birth_date else None,
        date_is_missing_from_original_data=synthesized,
    )


def collect_daily_counts(usage: Mapping[str, Any]) -> Dict[date, Dict[str, int]]:
    """
    Merge the export's per-series maps into date -> {field: count}.

    Keys that are not valid dates are skipped with a log line.
    """
    by_day: Dict[date, Dict[str, int]] = {}
    for field_name, export_key in USAGE_KEYS.items():
        series = usage.get(export_key) or {}
        if not isinstance(series, dict):
            logger.info(f"Skipping usage series '{export_key}': not a date map")
            continue
        for raw_day, value in series.items():
            day = parse_date(raw_day)
            if day is None:
                logger.info(f"Skipping usage entry with invalid date '{raw_day}' in '{export_key}'")
                continue
            by_day.setdefault(day, {})[field_name] = _count(value)
    return by_day


def expand_usage(usage: Mapping[str, Any], birth_date: Optional[date] = None) -> List[UsageRecord]:
    """
    Expand sparse usage maps into one row per day over the observed range.

    Args:
        usage: The export's Usage object (series name -> {YYYY-MM-DD: count}).
        birth_date: Used for user_age_this_day.

    Returns:
        Chronological UsageRecords covering min..max observed date, with
        gap days synthesized as zero rows. Empty when no dates are present.
    """
    by_day = collect_daily_counts(usage)
    if not by_day:
        return []

    first, last = min(by_day), max(by_day)
    records: List[UsageRecord] = []
    synthesized = 0
    for day in iter_days(first, last):
        counts = by_day.get(day)
        if counts is None:
            synthesized += 1
            records.append(compute_usage_record({}, day, birth_date, synthesized=True))
        else:
            records.append(compute_usage_record(counts, day, birth_date))

    logger.info(
        f"Usage timeline: {len(records)} days ({len(by_day)} from export, "
        f"{synthesized} synthesized) {to_iso_date(first)}..{to_iso_date(last)}"
    )
    return records
