"""
Ingestion module for Swipe Insights.

Turns raw dating-app exports (Tinder, Hinge) into normalized rows in
insights.db, reconciles them with what is already stored for the same
person, and keeps the derived statistics snapshots in step.

Architecture Overview:
    export JSON          insights.db
    ├── User        →    ├── profile
    ├── Usage       →    ├── usage_day
    ├── Messages /  →    ├── match, message
    │   Matches     →    ├── interaction
    ├── Prompts     →    ├── prompt
    └── Photos/Media →   ├── media
                         ├── profile_meta (derived)
                         └── original_file (audit)

Key Design Decisions:
    1. Transformers and builders are pure; only loaders touch the database
    2. One transaction per ingestion; any structural failure rolls back all of it
    3. Matches are immutable historical facts; re-uploads only append
    4. Snapshots are always deleted and recomputed, never patched
"""

from swipe_insights.ingest.schema import create_schema, verify_schema, SCHEMA_VERSION
from swipe_insights.ingest.errors import (
    IngestError,
    MissingIdentityFieldError,
    ProfileNotFoundError,
    ProfileConflictError,
    ActiveWindowOverlapError,
    WriteError,
)
from swipe_insights.ingest.models import (
    PLATFORM_TINDER,
    PLATFORM_HINGE,
    IngestContext,
    ExportRowSet,
    MatchIdentity,
    ProfileRecord,
    UsageRecord,
    MatchRecord,
    MessageRecord,
    InteractionRecord,
)
from swipe_insights.ingest.transformers import (
    transform_tinder_profile,
    transform_hinge_profile,
)
from swipe_insights.ingest.usage import expand_usage
from swipe_insights.ingest.conversations import (
    build_tinder_matches,
    build_hinge_matches,
    conversation_metrics,
)
from swipe_insights.ingest.metrics import (
    MetaSnapshot,
    compute_meta_snapshot,
    recompute_profile_meta,
    resolve_period_window,
    aggregate_usage_by_period,
)
from swipe_insights.ingest.stats import median, get_ratio
from swipe_insights.ingest.reconcile import IngestMode, PROFILE_LOCKS, reconcile
from swipe_insights.ingest.pipeline import (
    run_ingest,
    fetch_json,
    build_row_set,
    reset_profile_data,
    recompute_meta,
    get_ingest_status,
    IngestResult,
)
from swipe_insights.ingest.validation import validate_insights_db, ValidationResult

__all__ = [
    # Schema
    "create_schema",
    "verify_schema",
    "SCHEMA_VERSION",
    # Errors
    "IngestError",
    "MissingIdentityFieldError",
    "ProfileNotFoundError",
    "ProfileConflictError",
    "ActiveWindowOverlapError",
    "WriteError",
    # Models
    "PLATFORM_TINDER",
    "PLATFORM_HINGE",
    "IngestContext",
    "ExportRowSet",
    "MatchIdentity",
    "ProfileRecord",
    "UsageRecord",
    "MatchRecord",
    "MessageRecord",
    "InteractionRecord",
    # Transform
    "transform_tinder_profile",
    "transform_hinge_profile",
    "expand_usage",
    "build_tinder_matches",
    "build_hinge_matches",
    "conversation_metrics",
    # Metrics
    "MetaSnapshot",
    "compute_meta_snapshot",
    "recompute_profile_meta",
    "resolve_period_window",
    "aggregate_usage_by_period",
    "median",
    "get_ratio",
    # Reconcile
    "IngestMode",
    "PROFILE_LOCKS",
    "reconcile",
    # Pipeline
    "run_ingest",
    "fetch_json",
    "build_row_set",
    "reset_profile_data",
    "recompute_meta",
    "get_ingest_status",
    "IngestResult",
    # Validation
    "validate_insights_db",
    "ValidationResult",
]
