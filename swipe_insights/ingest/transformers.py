"""
Export transformers: raw platform JSON to normalized profile attributes.

Each transformer is a pure function of (export, context). It never touches
the database and never reads the clock; the ingestion date arrives through
IngestContext.as_of so the same input always yields the same ProfileRecord.

Design Decisions:
    1. Free text (bios) is HTML-entity decoded; the raw value is kept next
       to it for audit
    2. Only identity fields are required (external id, birth and creation
       dates); every other attribute degrades to None
    3. Platform-specific attributes that no query filters on are kept in
       ProfileRecord.attributes and stored as JSON
    4. The active window is derived here, because the export is the only
       place it can come from on first upload
"""

import html
import json
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
import logging
import uuid

from swipe_insights.ingest.conversations import hinge_thread_timestamps
from swipe_insights.ingest.errors import MissingIdentityFieldError
from swipe_insights.ingest.models import (
    PLATFORM_HINGE,
    PLATFORM_TINDER,
    IngestContext,
    MediaRecord,
    ProfileRecord,
    PromptRecord,
)
from swipe_insights.ingest.timeutil import (
    days_between,
    parse_date,
    parse_timestamp,
    to_iso,
    to_iso_date,
    years_between,
)
from swipe_insights.ingest.usage import USAGE_KEYS

logger = logging.getLogger(__name__)

TINDER_GENDERS = {
    "M": "MALE",
    "F": "FEMALE",
    "Other": "OTHER",
    "More": "MORE",
}

HINGE_GENDERS = {
    "Man": "MALE",
    "Woman": "FEMALE",
    "Nonbinary": "OTHER",
    "Non-binary": "OTHER",
}


def map_tinder_gender(value: Any) -> str:
    """Map Tinder's single-letter gender codes to the shared enum."""
    return TINDER_GENDERS.get(str(value), "UNKNOWN") if value is not None else "UNKNOWN"


def map_hinge_gender(value: Any) -> str:
    """Map Hinge's gender labels to the shared enum."""
    return HINGE_GENDERS.get(str(value), "UNKNOWN") if value is not None else "UNKNOWN"


def decode_html(value: Optional[str]) -> Optional[str]:
    """Decode HTML entities in exported free text (e.g. '&amp;' -> '&')."""
    if value is None:
        return None
    return html.unescape(value)


def parse_json_array(value: Any) -> Optional[List[Any]]:
    """
    Parse Hinge's JSON-encoded string arrays leniently.

    Example: '["Asian","Indian"]' -> ["Asian", "Indian"]. Real lists pass
    through; anything unparseable becomes None.
    """
    if isinstance(value, list):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = json.loads(value)
    except ValueError:
        return None
    return parsed if isinstance(parsed, list) else None


def parse_yes_no(value: Any) -> bool:
    """Hinge exports booleans as 'Yes'/'No' strings."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("yes", "true")


def _first(items: Any) -> Optional[Dict[str, Any]]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return None


def _unique(values: Iterable[Any]) -> List[Any]:
    seen: Set[Any] = set()
    result = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


def _require_profile_id(context: IngestContext, platform: str) -> None:
    if not context.profile_id or not str(context.profile_id).strip():
        raise MissingIdentityFieldError("profile_id", platform)


# =============================================================================
# Tinder
# =============================================================================


def tinder_active_window(usage: Dict[str, Any]) -> Optional[Tuple[date, date]]:
    """
    First and last day on the app, from the app_opens timeline.

    Falls back to every usage series when app_opens is empty.

    Returns:
        (first, last) dates, or None when the export has no usable dates.
    """
    series = usage.get("app_opens") or {}
    dates = [d for d in (parse_date(k) for k in series) if d is not None]
    if not dates:
        for key in USAGE_KEYS.values():
            dates.extend(d for d in (parse_date(k) for k in (usage.get(key) or {})) if d)
    if not dates:
        return None
    return min(dates), max(dates)


def transform_tinder_profile(export: Dict[str, Any], context: IngestContext) -> ProfileRecord:
    """
    Transform a Tinder export into profile attributes.

    Args:
        export: Parsed Tinder export (User, Usage, Messages, Photos, ...).
        context: Upload parameters (external id, owner, overrides, as_of).

    Returns:
        ProfileRecord keyed by context.profile_id.

    Raises:
        MissingIdentityFieldError: If external id, birth_date or create_date is absent.
    """
    _require_profile_id(context, PLATFORM_TINDER)
    user = export.get("User") or {}

    birth_date = parse_date(user.get("birth_date"))
    if birth_date is None:
        raise MissingIdentityFieldError("User.birth_date", PLATFORM_TINDER)
    created = parse_timestamp(user.get("create_date"))
    if created is None:
        raise MissingIdentityFieldError("User.create_date", PLATFORM_TINDER)

    window = tinder_active_window(export.get("Usage") or {})
    first_active, last_active = window if window else (created.date(), created.date())

    first_job = _first(user.get("jobs"))
    first_school = _first(user.get("schools"))
    city = user.get("city") or {}
    country = user.get("country")
    country_code = country.get("code") if isinstance(country, dict) else None

    job_title = (first_job or {}).get("title") or {}
    company = (first_job or {}).get("company") or {}

    bio_raw = user.get("bio")

    return ProfileRecord(
        profile_id=context.profile_id,
        platform=PLATFORM_TINDER,
        user_id=context.user_id,
        birth_date=to_iso_date(birth_date),
        create_date=to_iso(created),
        first_active_date=to_iso_date(first_active),
        last_active_date=to_iso_date(last_active),
        days_in_period=days_between(first_active, last_active) + 1,
        gender=map_tinder_gender(user.get("gender")),
        gender_str=user.get("gender"),
        interested_in=map_tinder_gender(user.get("interested_in")),
        bio=decode_html(bio_raw),
        bio_original=bio_raw,
        city=city.get("name"),
        region=city.get("region"),
        country=context.country or country_code,
        timezone=context.timezone,
        job_title=job_title.get("name") if isinstance(job_title, dict) else None,
        company=company.get("name") if isinstance(company, dict) else None,
        school=(first_school or {}).get("name"),
        age_at_upload=years_between(birth_date, context.as_of),
        age_at_last_usage=years_between(birth_date, last_active),
        attributes={
            "age_filter_min": user.get("age_filter_min"),
            "age_filter_max": user.get("age_filter_max"),
            "gender_filter": map_tinder_gender(user.get("gender_filter")),
            "gender_filter_str": user.get("gender_filter"),
            "interested_in_str": user.get("interested_in"),
            "user_interests": user.get("user_interests"),
            "interests": user.get("interests"),
            "sexual_orientations": user.get("sexual_orientations"),
            "descriptors": user.get("descriptors"),
            "instagram_connected": bool(user.get("instagram")),
            "spotify_connected": bool(user.get("spotify")),
            "job_title_displayed": job_title.get("displayed") if isinstance(job_title, dict) else None,
            "company_displayed": company.get("displayed") if isinstance(company, dict) else None,
            "school_displayed": (first_school or {}).get("displayed"),
            "education_level": user.get("education"),
            "active_time": user.get("active_time"),
        },
    )


def transform_tinder_photos(photos: Any) -> List[MediaRecord]:
    """
    Turn Tinder's Photos list into media rows.

    Older exports list bare URL strings; newer ones list photo objects with
    url, type and prompt_text. An empty or missing list is a valid empty set.
    """
    if not isinstance(photos, list):
        return []

    media: List[MediaRecord] = []
    for photo in photos:
        if isinstance(photo, str):
            if photo:
                media.append(MediaRecord(media_id=str(uuid.uuid4()), url=photo))
        elif isinstance(photo, dict) and photo.get("url"):
            media.append(
                MediaRecord(
                    media_id=str(uuid.uuid4()),
                    url=photo["url"],
                    media_type=photo.get("type") or "photo",
                    prompt=photo.get("prompt_text") or None,
                )
            )
        else:
            logger.info("Skipping Tinder photo entry without a URL")
    return media


# =============================================================================
# Hinge
# =============================================================================


def derive_hinge_birth_date(age: int, signup: date) -> date:
    """
    Approximate a birth date from age at signup.

    Hinge exports carry no birth date; January 1st of (signup year - age)
    is used consistently so re-uploads produce the same value.
    """
    return date(signup.year - int(age), 1, 1)


def hinge_active_window(threads: Any) -> Optional[Tuple[date, date]]:
    """First and last activity date across every conversation thread."""
    stamps = []
    for thread in threads or []:
        if isinstance(thread, dict):
            stamps.extend(hinge_thread_timestamps(thread))
    if not stamps:
        return None
    return min(stamps).date(), max(stamps).date()


def transform_hinge_profile(export: Dict[str, Any], context: IngestContext) -> ProfileRecord:
    """
    Transform a Hinge export into profile attributes.

    Args:
        export: Parsed Hinge export (User, Matches, Prompts, Media).
        context: Upload parameters (external id, owner, overrides, as_of).

    Returns:
        ProfileRecord keyed by context.profile_id.

    Raises:
        MissingIdentityFieldError: If external id, account.signup_time or profile.age is absent.
    """
    _require_profile_id(context, PLATFORM_HINGE)
    user = export.get("User") or {}
    profile = user.get("profile") or {}
    account = user.get("account") or {}
    preferences = user.get("preferences") or {}

    signup = parse_timestamp(account.get("signup_time"))
    if signup is None:
        raise MissingIdentityFieldError("User.account.signup_time", PLATFORM_HINGE)
    age = profile.get("age")
    if age is None or isinstance(age, bool) or not str(age).strip().lstrip("-").isdigit():
        raise MissingIdentityFieldError("User.profile.age", PLATFORM_HINGE)

    birth_date = derive_hinge_birth_date(int(age), signup.date())

    window = hinge_active_window(export.get("Matches"))
    first_active, last_active = window if window else (signup.date(), signup.date())

    workplaces = parse_json_array(profile.get("workplaces")) or []
    schools = parse_json_array(profile.get("schools")) or []
    devices = [d for d in (user.get("devices") or []) if isinstance(d, dict)]
    location = user.get("location") or {}

    return ProfileRecord(
        profile_id=context.profile_id,
        platform=PLATFORM_HINGE,
        user_id=context.user_id,
        birth_date=to_iso_date(birth_date),
        create_date=to_iso(signup),
        first_active_date=to_iso_date(first_active),
        last_active_date=to_iso_date(last_active),
        days_in_period=days_between(first_active, last_active) + 1,
        gender=map_hinge_gender(profile.get("gender")),
        gender_str=profile.get("gender") or "unknown",
        interested_in=preferences.get("gender_preference") or None,
        country=context.country or location.get("country"),
        timezone=context.timezone,
        job_title=profile.get("job_title") or None,
        company=str(workplaces[0]) if workplaces else None,
        school=str(schools[0]) if schools else None,
        age_at_upload=years_between(birth_date, context.as_of),
        age_at_last_usage=years_between(birth_date, last_active),
        attributes={
            "height_centimeters": profile.get("height_centimeters"),
            "gender_identity": profile.get("gender_identity") or profile.get("gender"),
            "ethnicities": parse_json_array(profile.get("ethnicities")) or [],
            "religions": parse_json_array(profile.get("religions")) or [],
            "workplaces": workplaces,
            "schools": schools,
            "hometowns": parse_json_array(profile.get("hometowns")) or [],
            "smoking": parse_yes_no(profile.get("smoking")),
            "drinking": parse_yes_no(profile.get("drinking")),
            "marijuana": parse_yes_no(profile.get("marijuana")),
            "drugs": parse_yes_no(profile.get("drugs")),
            "children": profile.get("children") or "",
            "family_plans": profile.get("family_plans") or "",
            "education_attained": profile.get("education_attained") or "",
            "politics": profile.get("politics") or "",
            "dating_intention": profile.get("dating_intention") or "",
            "relationship_types": profile.get("relationship_types") or "",
            "selfie_verified": bool(profile.get("selfie_verified")),
            "distance_miles_max": preferences.get("distance_miles_max"),
            "age_min": preferences.get("age_min"),
            "age_max": preferences.get("age_max"),
            "ethnicity_preference": parse_json_array(preferences.get("ethnicity_preference")) or [],
            "religion_preference": parse_json_array(preferences.get("religion_preference")) or [],
            "device_count": len(devices) or None,
            "device_platforms": _unique(d.get("device_platform") for d in devices),
            "device_os_versions": _unique(d.get("device_os_versions") for d in devices),
            "app_versions": _unique(d.get("app_version") for d in devices),
        },
    )


def transform_hinge_prompts(prompts: Any) -> List[PromptRecord]:
    """
    Turn Hinge's Prompts list into prompt rows.

    Entries without prompt text are skipped with a log line. Poll options
    are flattened to a comma-separated string.
    """
    records: List[PromptRecord] = []
    for entry in prompts or []:
        if not isinstance(entry, dict) or not entry.get("prompt"):
            logger.info(f"Skipping prompt without text: id={entry.get('id') if isinstance(entry, dict) else None}")
            continue
        options = entry.get("options")
        records.append(
            PromptRecord(
                prompt_id=str(uuid.uuid4()),
                prompt_type=entry.get("type") or "text",
                prompt=entry["prompt"],
                answer_text=entry.get("text"),
                options=", ".join(str(o) for o in options) if isinstance(options, list) else None,
                created=entry.get("created"),
                user_updated=entry.get("user_updated"),
            )
        )
    return records


def transform_hinge_media(media: Any) -> List[MediaRecord]:
    """Turn Hinge's Media list into media rows (type defaults to photo)."""
    records: List[MediaRecord] = []
    for item in media or []:
        if not isinstance(item, dict) or not item.get("url"):
            logger.info("Skipping Hinge media entry without a URL")
            continue
        records.append(
            MediaRecord(
                media_id=str(uuid.uuid4()),
                url=item["url"],
                media_type=item.get("type") or "photo",
                prompt=item.get("prompt") or None,
            )
        )
    return records
