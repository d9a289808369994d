"""
Row models produced by the transformers and builders and consumed by the
loaders and the metrics engine.

Design Decisions:
    1. Plain dataclasses, one per stored row type, with from_row() to read
       them back from sqlite3.Row results
    2. Messages hang off their MatchRecord so a match and exactly its own
       messages are inserted or skipped together
    3. Match identity is a small value object (stable platform id or a
       timestamp proxy) so dedup never branches on platform
"""

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

PLATFORM_TINDER = "TINDER"
PLATFORM_HINGE = "HINGE"
PLATFORMS = (PLATFORM_TINDER, PLATFORM_HINGE)

# Message types
MESSAGE_TEXT = "TEXT"
MESSAGE_GIF = "GIF"
MESSAGE_GESTURE = "GESTURE"
MESSAGE_CONTACT_CARD = "CONTACT_CARD"
MESSAGE_ACTIVITY = "ACTIVITY"
MESSAGE_VOICE_NOTE = "VOICE_NOTE"
MESSAGE_OTHER = "OTHER"

# Identity event types
EVENT_LIKE_SENT = "LIKE_SENT"
EVENT_MATCH = "MATCH"
EVENT_MESSAGE_SENT = "MESSAGE_SENT"
EVENT_UNMATCH = "UNMATCH"
EVENT_REJECT = "REJECT"
EVENT_WE_MET = "WE_MET"

# Only the account owner's side of a conversation is ever exported
SENDER_USER = "USER"


@dataclass(frozen=True)
class MatchIdentity:
    """
    Reconstructible identity of a match across uploads of the same account.

    kind is "id" when the platform ships a stable match id, "ts" when the
    match timestamp has to stand in for one.
    """

    kind: str
    value: str

    STABLE_ID = "id"
    TIMESTAMP_PROXY = "ts"

    @classmethod
    def stable(cls, platform_match_id: str) -> "MatchIdentity":
        return cls(cls.STABLE_ID, platform_match_id)

    @classmethod
    def timestamp_proxy(cls, matched_at_iso: str) -> "MatchIdentity":
        return cls(cls.TIMESTAMP_PROXY, matched_at_iso)

    @classmethod
    def from_key(cls, key: str) -> "MatchIdentity":
        kind, _, value = key.partition(":")
        return cls(kind, value)

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.value}"


@dataclass
class IngestContext:
    """Per-upload parameters that are not part of the export itself."""

    profile_id: str
    user_id: Optional[str]
    as_of: date
    blob_url: str = ""
    timezone: Optional[str] = None
    country: Optional[str] = None


@dataclass
class ProfileRecord:
    """Normalized profile attributes for one (platform, external id)."""

    profile_id: str
    platform: str
    user_id: Optional[str]
    birth_date: str
    create_date: str
    first_active_date: str
    last_active_date: str
    days_in_period: int
    gender: str = "UNKNOWN"
    gender_str: Optional[str] = None
    interested_in: Optional[str] = None
    bio: Optional[str] = None
    bio_original: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    timezone: Optional[str] = None
    job_title: Optional[str] = None
    company: Optional[str] = None
    school: Optional[str] = None
    age_at_upload: Optional[int] = None
    age_at_last_usage: Optional[int] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def attributes_json(self) -> str:
        return json.dumps(self.attributes, sort_keys=True, default=str)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ProfileRecord":
        return cls(
            profile_id=row["profile_id"],
            platform=row["platform"],
            user_id=row["user_id"],
            birth_date=row["birth_date"],
            create_date=row["create_date"],
            first_active_date=row["first_active_date"],
            last_active_date=row["last_active_date"],
            days_in_period=row["days_in_period"],
            gender=row["gender"],
            gender_str=row["gender_str"],
            interested_in=row["interested_in"],
            bio=row["bio"],
            bio_original=row["bio_original"],
            city=row["city"],
            region=row["region"],
            country=row["country"],
            timezone=row["timezone"],
            job_title=row["job_title"],
            company=row["company"],
            school=row["school"],
            age_at_upload=row["age_at_upload"],
            age_at_last_usage=row["age_at_last_usage"],
            attributes=json.loads(row["attributes_json"] or "{}"),
        )


@dataclass
class UsageRecord:
    """One calendar day of activity counts and per-day rates."""

    date: str
    app_opens: int = 0
    swipe_likes: int = 0
    swipe_super_likes: int = 0
    swipe_passes: int = 0
    matches: int = 0
    messages_sent: int = 0
    messages_received: int = 0
    match_rate: float = 0.0
    like_rate: float = 0.0
    messages_sent_rate: float = 0.0
    engagement_rate: float = 0.0
    response_rate: float = 0.0
    user_age_this_day: Optional[int] = None
    date_is_missing_from_original_data: bool = False

    @property
    def swipes_combined(self) -> int:
        return self.swipe_likes + self.swipe_passes

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "UsageRecord":
        return cls(
            date=row["date"],
            app_opens=row["app_opens"],
            swipe_likes=row["swipe_likes"],
            swipe_super_likes=row["swipe_super_likes"],
            swipe_passes=row["swipe_passes"],
            matches=row["matches"],
            messages_sent=row["messages_sent"],
            messages_received=row["messages_received"],
            match_rate=row["match_rate"],
            like_rate=row["like_rate"],
            messages_sent_rate=row["messages_sent_rate"],
            engagement_rate=row["engagement_rate"],
            response_rate=row["response_rate"],
            user_age_this_day=row["user_age_this_day"],
            date_is_missing_from_original_data=bool(row["date_is_missing_from_original_data"]),
        )


@dataclass
class MessageRecord:
    """One message belonging to exactly one match."""

    message_id: str
    match_id: str
    sent_date: str
    message_type: str
    order: int
    content: str = ""
    content_raw: str = ""
    to_index: Optional[int] = None
    sent_date_raw: Optional[str] = None
    raw_type: Optional[str] = None
    gif_url: Optional[str] = None
    time_since_last_message: int = 0

    @property
    def char_count(self) -> int:
        return len(self.content)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MessageRecord":
        return cls(
            message_id=row["message_id"],
            match_id=row["match_id"],
            sent_date=row["sent_date"],
            message_type=row["message_type"],
            order=row["message_order"],
            content=row["content"],
            content_raw=row["content_raw"],
            to_index=row["to_index"],
            sent_date_raw=row["sent_date_raw"],
            raw_type=row["raw_type"],
            gif_url=row["gif_url"],
            time_since_last_message=row["time_since_last_message"],
        )


@dataclass
class MatchRecord:
    """One mutual connection plus its derived conversation figures."""

    match_id: str
    identity: MatchIdentity
    order: int
    platform_match_id: Optional[str] = None
    matched_at: Optional[str] = None
    liked_at: Optional[str] = None
    like_comment: Optional[str] = None
    text_count: int = 0
    gif_count: int = 0
    gesture_count: int = 0
    voice_note_count: int = 0
    other_message_type_count: int = 0
    initial_message_at: Optional[str] = None
    last_message_at: Optional[str] = None
    response_time_median_seconds: Optional[float] = None
    conversation_duration_days: Optional[int] = None
    longest_gap_hours: Optional[int] = None
    message_imbalance_ratio: Optional[float] = None
    did_match_reply: bool = False
    last_message_from: Optional[str] = None
    we_met: Optional[bool] = None
    messages: List[MessageRecord] = field(default_factory=list)
    total_message_count: int = 0

    @property
    def activity_date(self) -> Optional[str]:
        """Date used to place the match in a period: matched, else first message."""
        stamp = self.matched_at or self.initial_message_at
        return stamp[:10] if stamp else None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MatchRecord":
        we_met = row["we_met"]
        return cls(
            match_id=row["match_id"],
            identity=MatchIdentity.from_key(row["identity_key"]),
            order=row["match_order"],
            platform_match_id=row["platform_match_id"],
            matched_at=row["matched_at"],
            liked_at=row["liked_at"],
            like_comment=row["like_comment"],
            text_count=row["text_count"],
            gif_count=row["gif_count"],
            gesture_count=row["gesture_count"],
            voice_note_count=row["voice_note_count"],
            other_message_type_count=row["other_message_type_count"],
            initial_message_at=row["initial_message_at"],
            last_message_at=row["last_message_at"],
            response_time_median_seconds=row["response_time_median_seconds"],
            conversation_duration_days=row["conversation_duration_days"],
            longest_gap_hours=row["longest_gap_hours"],
            message_imbalance_ratio=row["message_imbalance_ratio"],
            did_match_reply=bool(row["did_match_reply"]),
            last_message_from=row["last_message_from"],
            we_met=None if we_met is None else bool(we_met),
            total_message_count=row["total_message_count"],
        )


@dataclass
class InteractionRecord:
    """A timestamped identity event, optionally tied to a match."""

    interaction_id: str
    type: str
    timestamp: str
    match_id: Optional[str] = None
    comment: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "InteractionRecord":
        return cls(
            interaction_id=row["interaction_id"],
            type=row["type"],
            timestamp=row["timestamp"],
            match_id=row["match_id"],
            comment=row["comment"],
        )


@dataclass
class PromptRecord:
    """A profile prompt and the user's current answer."""

    prompt_id: str
    prompt_type: str
    prompt: str
    answer_text: Optional[str] = None
    options: Optional[str] = None
    created: Optional[str] = None
    user_updated: Optional[str] = None


@dataclass
class MediaRecord:
    """A profile photo or other media item, identified by URL."""

    media_id: str
    url: str
    media_type: str = "photo"
    prompt: Optional[str] = None


@dataclass
class ExportRowSet:
    """Everything one export turns into, before any reconciliation."""

    platform: str
    profile: ProfileRecord
    usage: List[UsageRecord] = field(default_factory=list)
    matches: List[MatchRecord] = field(default_factory=list)
    interactions: List[InteractionRecord] = field(default_factory=list)
    prompts: List[PromptRecord] = field(default_factory=list)
    media: List[MediaRecord] = field(default_factory=list)

    @property
    def message_count(self) -> int:
        return sum(len(m.messages) for m in self.matches)
