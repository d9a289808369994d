"""
Match/message builder.

Groups raw conversation data into MatchRecords, each carrying its own
MessageRecords, plus (for Hinge) the identity events found in each thread.

Per-conversation figures are computed here, once, from the message
timestamps:
    - response_time_median_seconds: median gap between consecutive messages
    - conversation_duration_days: whole days between first and last message
    - longest_gap_hours: largest consecutive gap, in whole hours

Exports only contain the account owner's side of each conversation, so
figures that need the other side (imbalance ratio, whether the match
replied) are stored as null/false rather than guessed.

Skippable defects (a message without a timestamp, a bodyless chat that is
not a voice note, a match without an id) are dropped with a log line.
"""

import html
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import logging
import uuid

from swipe_insights.ingest.models import (
    EVENT_LIKE_SENT,
    EVENT_MATCH,
    EVENT_MESSAGE_SENT,
    EVENT_REJECT,
    EVENT_UNMATCH,
    EVENT_WE_MET,
    MESSAGE_ACTIVITY,
    MESSAGE_CONTACT_CARD,
    MESSAGE_GESTURE,
    MESSAGE_GIF,
    MESSAGE_OTHER,
    MESSAGE_TEXT,
    MESSAGE_VOICE_NOTE,
    SENDER_USER,
    InteractionRecord,
    MatchIdentity,
    MatchRecord,
    MessageRecord,
)
from swipe_insights.ingest.stats import median
from swipe_insights.ingest.timeutil import parse_timestamp, to_iso

logger = logging.getLogger(__name__)

TINDER_MESSAGE_TYPES = {
    "gif": MESSAGE_GIF,
    "gesture": MESSAGE_GESTURE,
    "contact_card": MESSAGE_CONTACT_CARD,
    "activity": MESSAGE_ACTIVITY,
    "1": MESSAGE_TEXT,
}

VOICE_NOTE_CONTENT = "[Voice Note]"

# Hinge thread keys whose entries carry a timestamp
HINGE_THREAD_KEYS = ("like", "match", "chats", "block", "we_met", "voice_notes")

_LATEST = datetime.max.replace(tzinfo=timezone.utc)


@dataclass
class ConversationMetrics:
    """Derived figures for one conversation."""

    gaps_seconds: List[int] = field(default_factory=list)
    response_time_median_seconds: Optional[float] = None
    conversation_duration_days: Optional[int] = None
    longest_gap_hours: Optional[int] = None


def conversation_metrics(sent_times: List[datetime]) -> ConversationMetrics:
    """
    Compute gap-based figures from chronologically ordered send times.

    Args:
        sent_times: Message timestamps, oldest first.

    Returns:
        ConversationMetrics; every figure is None when it is undefined
        (no messages, or a single message for the gap figures).
    """
    if not sent_times:
        return ConversationMetrics()

    gaps = [
        math.floor((current - previous).total_seconds())
        for previous, current in zip(sent_times, sent_times[1:])
    ]
    duration_seconds = (sent_times[-1] - sent_times[0]).total_seconds()

    return ConversationMetrics(
        gaps_seconds=gaps,
        response_time_median_seconds=median(gaps),
        conversation_duration_days=math.floor(duration_seconds / 86400),
        longest_gap_hours=math.floor(max(gaps) / 3600) if gaps else None,
    )


def classify_tinder_message(message: Dict[str, Any]) -> str:
    """Map a Tinder message's raw type to a message type (missing -> TEXT)."""
    raw_type = message.get("type")
    if raw_type is None or raw_type == "":
        return MESSAGE_TEXT
    return TINDER_MESSAGE_TYPES.get(str(raw_type), MESSAGE_OTHER)


def _to_index(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _apply_metrics(match: MatchRecord, sent_times: List[datetime]) -> None:
    metrics = conversation_metrics(sent_times)
    match.total_message_count = len(match.messages)
    match.response_time_median_seconds = metrics.response_time_median_seconds
    match.conversation_duration_days = metrics.conversation_duration_days
    match.longest_gap_hours = metrics.longest_gap_hours
    match.message_imbalance_ratio = None
    match.did_match_reply = False
    match.last_message_from = SENDER_USER if match.messages else None
    if sent_times:
        match.initial_message_at = to_iso(sent_times[0])
        match.last_message_at = to_iso(sent_times[-1])


# =============================================================================
# Tinder
# =============================================================================


def build_tinder_matches(raw_matches: Any) -> List[MatchRecord]:
    """
    Build matches and messages from Tinder's Messages list.

    The export lists matches newest first; they are reversed so match order
    is chronological. Messages inside a match are ordered by send time.

    Args:
        raw_matches: The export's Messages list ({match_id, messages: [...]}).

    Returns:
        MatchRecords, each with its MessageRecords attached.
    """
    matches: List[MatchRecord] = []
    seen_keys = set()
    skipped_messages = 0

    for entry in reversed(list(raw_matches or [])):
        if not isinstance(entry, dict) or not entry.get("match_id"):
            logger.info("Skipping Tinder match without match_id")
            continue

        identity = MatchIdentity.stable(str(entry["match_id"]))
        if identity.key in seen_keys:
            logger.info(f"Skipping duplicate Tinder match in export: {identity.value}")
            continue
        seen_keys.add(identity.key)

        timed: List[Tuple[datetime, Dict[str, Any]]] = []
        for raw in entry.get("messages") or []:
            sent = parse_timestamp(raw.get("sent_date")) if isinstance(raw, dict) else None
            if sent is None:
                skipped_messages += 1
                continue
            timed.append((sent, raw))
        timed.sort(key=lambda pair: pair[0])

        match = MatchRecord(
            match_id=str(uuid.uuid4()),
            identity=identity,
            order=len(matches),
            platform_match_id=identity.value,
        )

        counts: Counter = Counter()
        previous: Optional[datetime] = None
        for position, (sent, raw) in enumerate(timed):
            message_type = classify_tinder_message(raw)
            counts[message_type] += 1
            content_raw = raw.get("message") or ""
            match.messages.append(
                MessageRecord(
                    message_id=str(uuid.uuid4()),
                    match_id=match.match_id,
                    sent_date=to_iso(sent),
                    sent_date_raw=str(raw.get("sent_date")),
                    message_type=message_type,
                    order=position,
                    content=html.unescape(content_raw),
                    content_raw=content_raw,
                    to_index=_to_index(raw.get("to")),
                    raw_type=str(raw["type"]) if raw.get("type") not in (None, "") else None,
                    gif_url=raw.get("fixed_height") or None,
                    time_since_last_message=(
                        math.floor((sent - previous).total_seconds()) if previous else 0
                    ),
                )
            )
            previous = sent

        match.text_count = counts[MESSAGE_TEXT]
        match.gif_count = counts[MESSAGE_GIF]
        match.gesture_count = counts[MESSAGE_GESTURE]
        match.other_message_type_count = (
            counts[MESSAGE_CONTACT_CARD] + counts[MESSAGE_ACTIVITY] + counts[MESSAGE_OTHER]
        )
        _apply_metrics(match, [sent for sent, _ in timed])
        matches.append(match)

    if skipped_messages:
        logger.info(f"Skipped {skipped_messages} Tinder messages without sent_date")

    with_messages = sum(1 for m in matches if m.messages)
    logger.info(
        f"Built {len(matches)} Tinder matches ({with_messages} with messages, "
        f"{sum(len(m.messages) for m in matches)} messages)"
    )
    return matches


# =============================================================================
# Hinge
# =============================================================================


def hinge_thread_timestamps(thread: Dict[str, Any]) -> List[datetime]:
    """Every parseable timestamp in a Hinge conversation thread."""
    stamps: List[datetime] = []
    for key in HINGE_THREAD_KEYS:
        for entry in thread.get(key) or []:
            if isinstance(entry, dict):
                stamp = parse_timestamp(entry.get("timestamp"))
                if stamp is not None:
                    stamps.append(stamp)
    return stamps


def _timestamped(entries: Any, label: str) -> List[Tuple[datetime, Dict[str, Any]]]:
    """Entries paired with their parsed timestamp, oldest first."""
    result: List[Tuple[datetime, Dict[str, Any]]] = []
    for entry in entries or []:
        stamp = parse_timestamp(entry.get("timestamp")) if isinstance(entry, dict) else None
        if stamp is None:
            logger.info(f"Skipping Hinge {label} entry without timestamp")
            continue
        result.append((stamp, entry))
    result.sort(key=lambda pair: pair[0])
    return result


def build_hinge_matches(
    threads: Any,
) -> Tuple[List[MatchRecord], List[InteractionRecord]]:
    """
    Build matches, messages and identity events from Hinge's Matches list.

    Threads are processed oldest first. Per thread:
        - each like -> LIKE_SENT (comment from the first reaction)
        - a match -> MatchRecord identified by its timestamp, plus MATCH
        - chats (matched threads only) -> messages, each with MESSAGE_SENT;
          a bodyless chat is a voice note when its timestamp is in voice_notes
        - we_met -> WE_MET, and sets the match's we_met flag
        - block -> UNMATCH when matched, REJECT otherwise

    Args:
        threads: The export's Matches list.

    Returns:
        (matches, interactions).
    """
    valid_threads = [t for t in (threads or []) if isinstance(t, dict)]
    valid_threads.sort(key=lambda t: min(hinge_thread_timestamps(t), default=_LATEST))

    matches: List[MatchRecord] = []
    interactions: List[InteractionRecord] = []
    match_ids_by_key: Dict[str, str] = {}

    for thread in valid_threads:
        likes = _timestamped(thread.get("like"), "like")
        for stamp, entry in likes:
            reactions = entry.get("like") or []
            first_reaction = reactions[0] if reactions and isinstance(reactions[0], dict) else {}
            interactions.append(
                InteractionRecord(
                    interaction_id=str(uuid.uuid4()),
                    type=EVENT_LIKE_SENT,
                    timestamp=to_iso(stamp),
                    comment=first_reaction.get("comment") or None,
                )
            )

        matched = _timestamped(thread.get("match"), "match")
        match_id: Optional[str] = None

        if matched:
            matched_at = matched[0][0]
            identity = MatchIdentity.timestamp_proxy(to_iso(matched_at))
            if identity.key in match_ids_by_key:
                logger.info(f"Skipping duplicate Hinge match in export: {identity.value}")
                match_id = match_ids_by_key[identity.key]
            else:
                match = _build_hinge_match(thread, identity, matched_at, likes, len(matches), interactions)
                matches.append(match)
                match_id = match.match_id
                match_ids_by_key[identity.key] = match_id
        elif thread.get("chats"):
            logger.debug("Ignoring chats on a Hinge thread without a match")

        for stamp, entry in _timestamped(thread.get("block"), "block"):
            interactions.append(
                InteractionRecord(
                    interaction_id=str(uuid.uuid4()),
                    type=EVENT_UNMATCH if match_id else EVENT_REJECT,
                    timestamp=to_iso(stamp),
                    match_id=match_id,
                    comment=entry.get("block_type") or None,
                )
            )

    logger.info(
        f"Built {len(matches)} Hinge matches, {sum(len(m.messages) for m in matches)} messages, "
        f"{len(interactions)} interactions from {len(valid_threads)} threads"
    )
    return matches, interactions


def _build_hinge_match(
    thread: Dict[str, Any],
    identity: MatchIdentity,
    matched_at: datetime,
    likes: List[Tuple[datetime, Dict[str, Any]]],
    order: int,
    interactions: List[InteractionRecord],
) -> MatchRecord:
    match = MatchRecord(
        match_id=str(uuid.uuid4()),
        identity=identity,
        order=order,
        matched_at=identity.value,
    )
    if likes:
        first_stamp, first_like = likes[0]
        reactions = first_like.get("like") or []
        match.liked_at = to_iso(first_stamp)
        if reactions and isinstance(reactions[0], dict):
            match.like_comment = reactions[0].get("comment") or None

    interactions.append(
        InteractionRecord(
            interaction_id=str(uuid.uuid4()),
            type=EVENT_MATCH,
            timestamp=identity.value,
            match_id=match.match_id,
        )
    )

    voice_note_stamps = {to_iso(stamp) for stamp, _ in _timestamped(thread.get("voice_notes"), "voice note")}

    sent_times: List[datetime] = []
    for stamp, chat in _timestamped(thread.get("chats"), "chat"):
        body = chat.get("body")
        if body:
            message_type = MESSAGE_TEXT
            content_raw = str(body)
            content = html.unescape(content_raw)
        elif to_iso(stamp) in voice_note_stamps:
            message_type = MESSAGE_VOICE_NOTE
            content_raw = ""
            content = VOICE_NOTE_CONTENT
        else:
            logger.info(f"Skipping Hinge chat without body at {to_iso(stamp)}")
            continue

        match.messages.append(
            MessageRecord(
                message_id=str(uuid.uuid4()),
                match_id=match.match_id,
                sent_date=to_iso(stamp),
                sent_date_raw=str(chat.get("timestamp")),
                message_type=message_type,
                order=len(match.messages),
                content=content,
                content_raw=content_raw,
                to_index=1,
                time_since_last_message=(
                    math.floor((stamp - sent_times[-1]).total_seconds()) if sent_times else 0
                ),
            )
        )
        sent_times.append(stamp)
        interactions.append(
            InteractionRecord(
                interaction_id=str(uuid.uuid4()),
                type=EVENT_MESSAGE_SENT,
                timestamp=to_iso(stamp),
                match_id=match.match_id,
            )
        )

    for stamp, entry in _timestamped(thread.get("we_met"), "we_met"):
        answer = entry.get("did_meet_subject")
        match.we_met = str(answer).strip().lower() == "yes"
        interactions.append(
            InteractionRecord(
                interaction_id=str(uuid.uuid4()),
                type=EVENT_WE_MET,
                timestamp=to_iso(stamp),
                match_id=match.match_id,
                comment=str(answer) if answer is not None else None,
            )
        )

    match.text_count = sum(1 for m in match.messages if m.message_type == MESSAGE_TEXT)
    match.voice_note_count = sum(1 for m in match.messages if m.message_type == MESSAGE_VOICE_NOTE)
    _apply_metrics(match, sent_times)
    return match
