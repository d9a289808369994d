"""
Identity reconciler: decides how an upload merges into existing profiles.

Three modes:
    NEW                       no profile exists for the upload's external id
    ADDITIVE_SAME_ACCOUNT     re-upload of an existing external id
    CROSS_ACCOUNT_ABSORPTION  the caller names an older external id that
                              belongs to the same person and must be merged
                              into this one

Every apply_* function runs inside the caller's transaction and finishes by
recomputing the snapshot and recording the original file, so a failure at
any step (including the snapshot) rolls back the whole upload.

Design Decisions:
    1. Matches are immutable once stored; re-uploads only append matches
       whose identity key is unknown for the profile
    2. Identity events are deduplicated by exact timestamp per profile
    3. Absorption never dedups the new export against transferred rows;
       match identifiers of two accounts are not comparable
    4. Uploads for one profile id are serialized in-process by a keyed lock
       registry, on top of the database transaction
"""

import dataclasses
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional
import logging

from swipe_insights.ingest.errors import (
    ActiveWindowOverlapError,
    ProfileConflictError,
    ProfileNotFoundError,
)
from swipe_insights.ingest.loaders import (
    delete_profile,
    find_usage_regressions,
    get_interaction_timestamps,
    get_match_keys,
    get_media_urls,
    get_profile,
    get_profile_for_user,
    insert_interactions,
    insert_matches,
    insert_media,
    insert_profile,
    insert_prompts,
    replace_prompts,
    repoint_profile_rows,
    store_original_file,
    unlink_profile_user,
    update_profile,
    upsert_usage,
)
from swipe_insights.ingest.metrics import MetaSnapshot, recompute_profile_meta
from swipe_insights.ingest.models import (
    PLATFORM_HINGE,
    ExportRowSet,
    IngestContext,
    MediaRecord,
    ProfileRecord,
)
from swipe_insights.ingest.timeutil import days_between, parse_date, years_between

logger = logging.getLogger(__name__)


class IngestMode(str, Enum):
    NEW = "NEW"
    ADDITIVE_SAME_ACCOUNT = "ADDITIVE_SAME_ACCOUNT"
    CROSS_ACCOUNT_ABSORPTION = "CROSS_ACCOUNT_ABSORPTION"


class ProfileLockRegistry:
    """
    In-process keyed locks, one per profile id.

    hold() acquires the locks of every id it is given in sorted order, so two
    uploads touching overlapping ids (e.g. an absorption and a re-upload of
    either account) cannot deadlock.

    A lock lives in the registry only while some caller holds or waits on it;
    the last one out drops it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    def _checkout(self, profile_id: str) -> threading.Lock:
        with self._guard:
            self._users[profile_id] = self._users.get(profile_id, 0) + 1
            return self._locks.setdefault(profile_id, threading.Lock())

    def _checkin(self, profile_id: str) -> None:
        with self._guard:
            self._users[profile_id] -= 1
            if not self._users[profile_id]:
                del self._users[profile_id]
                del self._locks[profile_id]

    @contextmanager
    def hold(self, *profile_ids: Optional[str]) -> Iterator[None]:
        ids = sorted({p for p in profile_ids if p})
        checked_out: List[str] = []
        acquired: List[threading.Lock] = []
        try:
            for profile_id in ids:
                lock = self._checkout(profile_id)
                checked_out.append(profile_id)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for profile_id in checked_out:
                self._checkin(profile_id)


PROFILE_LOCKS = ProfileLockRegistry()


@dataclass
class ReconcileOutcome:
    """What one reconciliation wrote."""

    mode: IngestMode
    profile_id: str
    matches_written: int = 0
    messages_written: int = 0
    interactions_written: int = 0
    usage_days_written: int = 0
    media_written: int = 0
    prompts_written: int = 0
    matches_skipped: int = 0
    interactions_skipped: int = 0
    media_skipped: int = 0
    rows_repointed: Dict[str, int] = field(default_factory=dict)
    snapshots: List[MetaSnapshot] = field(default_factory=list)
    original_file_id: Optional[str] = None


def select_mode(conn: sqlite3.Connection, profile_id: str, absorb_from: Optional[str] = None) -> IngestMode:
    """
    Pick the merge strategy for an upload.

    An explicit absorb_from naming a different id always means absorption;
    otherwise the mode depends on whether the profile already exists.
    """
    if absorb_from and absorb_from != profile_id:
        return IngestMode.CROSS_ACCOUNT_ABSORPTION
    if absorb_from == profile_id:
        logger.info(f"absorb_from equals the upload's own id {profile_id}; treating as a re-upload")
    if get_profile(conn, profile_id) is not None:
        return IngestMode.ADDITIVE_SAME_ACCOUNT
    return IngestMode.NEW


def _with_window(profile: ProfileRecord, first_active: str, last_active: str, **changes) -> ProfileRecord:
    """Copy of profile with a new active window and the figures derived from it."""
    first, last = parse_date(first_active), parse_date(last_active)
    return dataclasses.replace(
        profile,
        first_active_date=first_active,
        last_active_date=last_active,
        days_in_period=days_between(first, last) + 1,
        age_at_last_usage=years_between(parse_date(profile.birth_date), last),
        **changes,
    )


def _new_media(media: List[MediaRecord], known_urls: set) -> List[MediaRecord]:
    fresh = []
    for item in media:
        if item.url not in known_urls:
            known_urls.add(item.url)
            fresh.append(item)
    return fresh


# =============================================================================
# NEW
# =============================================================================


def apply_new(conn: sqlite3.Connection, rows: ExportRowSet, context: IngestContext) -> ReconcileOutcome:
    """
    Insert a profile seen for the first time with every row of its export.

    Raises:
        ProfileConflictError: If the user already owns a profile on this
            platform under another external id (that needs absorb_from).
    """
    profile = rows.profile
    if context.user_id:
        owned = get_profile_for_user(conn, context.user_id, rows.platform)
        if owned is not None:
            raise ProfileConflictError(
                f"User {context.user_id} already owns {rows.platform} profile {owned.profile_id}; "
                f"upload with absorb_from={owned.profile_id} to merge it into {profile.profile_id}"
            )

    outcome = ReconcileOutcome(mode=IngestMode.NEW, profile_id=profile.profile_id)
    insert_profile(conn, profile)
    outcome.usage_days_written = upsert_usage(conn, profile.profile_id, rows.usage)

    written = insert_matches(conn, profile.profile_id, rows.matches)
    outcome.matches_written = written["matches"]
    outcome.messages_written = written["messages"]
    outcome.interactions_written = insert_interactions(conn, profile.profile_id, rows.interactions)
    outcome.prompts_written = insert_prompts(conn, profile.profile_id, rows.prompts)
    outcome.media_written = insert_media(conn, profile.profile_id, _new_media(rows.media, set()))
    return outcome


# =============================================================================
# ADDITIVE_SAME_ACCOUNT
# =============================================================================


def apply_additive(conn: sqlite3.Connection, rows: ExportRowSet, context: IngestContext) -> ReconcileOutcome:
    """
    Merge a re-upload of an existing account.

    Profile attributes and usage days are overwritten by the new export;
    matches, identity events and media are append-only.

    Raises:
        ProfileNotFoundError: If the profile vanished since mode selection.
        ProfileConflictError: If the stored profile belongs to another platform.
    """
    profile_id = rows.profile.profile_id
    stored = get_profile(conn, profile_id)
    if stored is None:
        raise ProfileNotFoundError(profile_id)
    if stored.platform != rows.platform:
        raise ProfileConflictError(
            f"Profile {profile_id} is a {stored.platform} profile; cannot merge a {rows.platform} export"
        )

    outcome = ReconcileOutcome(mode=IngestMode.ADDITIVE_SAME_ACCOUNT, profile_id=profile_id)

    # The newest export owns the window; older stored days stay in usage_day.
    update_profile(conn, rows.profile)

    regressions = find_usage_regressions(conn, profile_id, rows.usage)
    if regressions:
        logger.warning(
            f"Re-upload of {profile_id} lowers stored counts on {len(regressions)} day(s) "
            f"(first: {regressions[0]}); newest export wins"
        )
    outcome.usage_days_written = upsert_usage(conn, profile_id, rows.usage)

    known_matches = get_match_keys(conn, profile_id)
    fresh_matches = []
    # Events of skipped matches must point at the match row already stored
    match_id_map: Dict[str, str] = {}
    for match in rows.matches:
        existing_id = known_matches.get(match.identity.key)
        if existing_id is None:
            fresh_matches.append(match)
        else:
            match_id_map[match.match_id] = existing_id
    outcome.matches_skipped = len(rows.matches) - len(fresh_matches)

    written = insert_matches(conn, profile_id, fresh_matches)
    outcome.matches_written = written["matches"]
    outcome.messages_written = written["messages"]

    known_timestamps = get_interaction_timestamps(conn, profile_id)
    fresh_events = []
    for event in rows.interactions:
        if event.timestamp in known_timestamps:
            continue
        if event.match_id in match_id_map:
            event = dataclasses.replace(event, match_id=match_id_map[event.match_id])
        fresh_events.append(event)
    outcome.interactions_skipped = len(rows.interactions) - len(fresh_events)
    outcome.interactions_written = insert_interactions(conn, profile_id, fresh_events)

    if rows.platform == PLATFORM_HINGE:
        outcome.prompts_written = replace_prompts(conn, profile_id, rows.prompts)

    fresh_media = _new_media(rows.media, get_media_urls(conn, profile_id))
    outcome.media_skipped = len(rows.media) - len(fresh_media)
    outcome.media_written = insert_media(conn, profile_id, fresh_media)

    if not (outcome.matches_written or outcome.interactions_written or outcome.media_written):
        logger.info(f"Re-upload of {profile_id} found no new matches, events or media")
    else:
        logger.info(
            f"Re-upload of {profile_id}: {outcome.matches_written} new matches "
            f"({outcome.matches_skipped} known), {outcome.interactions_written} new events "
            f"({outcome.interactions_skipped} known), {outcome.media_written} new media"
        )
    return outcome


# =============================================================================
# CROSS_ACCOUNT_ABSORPTION
# =============================================================================


def apply_absorption(
    conn: sqlite3.Connection, rows: ExportRowSet, context: IngestContext, absorb_from: str
) -> ReconcileOutcome:
    """
    Absorb an older account into the newly uploaded one.

    The old profile's usage, matches, messages, events and annotations are
    re-parented to the new id, the old profile is deleted, and the new
    export's rows are inserted as-is.

    Raises:
        ProfileNotFoundError: If absorb_from does not exist.
        ProfileConflictError: If the new id already exists or the platforms differ.
        ActiveWindowOverlapError: If old.last_active_date >= new.first_active_date.
    """
    new_profile = rows.profile
    old = get_profile(conn, absorb_from)
    if old is None:
        raise ProfileNotFoundError(absorb_from)
    if old.platform != rows.platform:
        raise ProfileConflictError(
            f"Cannot absorb {old.platform} profile {absorb_from} into a {rows.platform} export"
        )
    if get_profile(conn, new_profile.profile_id) is not None:
        raise ProfileConflictError(
            f"Profile {new_profile.profile_id} already exists; absorb into a new external id only"
        )
    if old.last_active_date >= new_profile.first_active_date:
        raise ActiveWindowOverlapError(
            absorb_from, old.last_active_date, new_profile.profile_id, new_profile.first_active_date
        )

    outcome = ReconcileOutcome(mode=IngestMode.CROSS_ACCOUNT_ABSORPTION, profile_id=new_profile.profile_id)

    profile = _with_window(
        new_profile,
        min(old.first_active_date, new_profile.first_active_date),
        max(old.last_active_date, new_profile.last_active_date),
        create_date=min(old.create_date, new_profile.create_date),
    )

    # Free the (user_id, platform) slot before the new profile claims it
    unlink_profile_user(conn, absorb_from)
    insert_profile(conn, profile)
    outcome.rows_repointed = repoint_profile_rows(conn, absorb_from, profile.profile_id)
    delete_profile(conn, absorb_from)

    outcome.usage_days_written = upsert_usage(conn, profile.profile_id, rows.usage)
    written = insert_matches(conn, profile.profile_id, rows.matches)
    outcome.matches_written = written["matches"]
    outcome.messages_written = written["messages"]
    outcome.interactions_written = insert_interactions(conn, profile.profile_id, rows.interactions)
    outcome.prompts_written = insert_prompts(conn, profile.profile_id, rows.prompts)
    outcome.media_written = insert_media(conn, profile.profile_id, _new_media(rows.media, set()))

    logger.info(
        f"Absorbed {absorb_from} into {profile.profile_id}: moved {outcome.rows_repointed}, "
        f"window {profile.first_active_date}..{profile.last_active_date}"
    )
    return outcome


def reconcile(
    conn: sqlite3.Connection,
    rows: ExportRowSet,
    context: IngestContext,
    absorb_from: Optional[str] = None,
) -> ReconcileOutcome:
    """
    Select a mode, apply it, recompute snapshots and record the upload.

    Must be called inside an open transaction (and, for concurrent callers,
    while holding PROFILE_LOCKS for the profile ids involved).

    Returns:
        ReconcileOutcome describing what was written.
    """
    mode = select_mode(conn, rows.profile.profile_id, absorb_from)
    logger.info(f"Reconciling {rows.platform} profile {rows.profile.profile_id} as {mode.value}")

    if mode is IngestMode.NEW:
        outcome = apply_new(conn, rows, context)
    elif mode is IngestMode.ADDITIVE_SAME_ACCOUNT:
        outcome = apply_additive(conn, rows, context)
    else:
        outcome = apply_absorption(conn, rows, context, absorb_from)

    outcome.snapshots = recompute_profile_meta(conn, outcome.profile_id, today=context.as_of)
    outcome.original_file_id = store_original_file(
        conn,
        outcome.profile_id,
        rows.platform,
        context.blob_url,
        context.user_id,
        mode.value,
    )
    return outcome
