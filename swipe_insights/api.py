"""
FastAPI backend for Swipe Insights.

IMPORTANT: This API ONLY reads from insights.db. Ingestion happens through
the CLI (`swipe-insights ingest ...`), inside one transaction per upload, so
the API never sees a profile mid-ingestion.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from swipe_insights.analysis import (
    get_matches_data,
    get_profile_aggregates,
    get_profile_detail,
    get_profile_meta,
    get_usage_series,
    list_profiles,
)
from swipe_insights.config import Config
from swipe_insights.database import InsightsDatabase


def _get_analysis_db_path() -> Path:
    """Get the path to insights.db."""
    return Path(os.getenv(
        "SWIPE_INSIGHTS_DB_PATH",
        str(Config.DEFAULT_DATA_PATH / Config.DEFAULT_DB_NAME),
    ))


def _open_insights_db() -> InsightsDatabase:
    """
    Open insights.db for reading.

    Raises HTTPException if insights.db doesn't exist.
    """
    path = _get_analysis_db_path()
    if not path.exists():
        raise HTTPException(
            status_code=503,
            detail={
                "error": "insights.db not found",
                "message": "Run `swipe-insights ingest` first to populate the database",
                "path": str(path),
            },
        )
    db = InsightsDatabase(Config(str(path)))
    db.connect()
    return db


def _not_found(profile_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Profile not found: {profile_id}")


app = FastAPI(
    title="Swipe Insights API",
    version="0.1.0",
    description="Read-only API over insights.db.",
)

# Local dev CORS defaults
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        os.getenv("SWIPE_INSIGHTS_ALLOWED_ORIGIN", "http://127.0.0.1:5173"),
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> Dict[str, Any]:
    """Health check - also verifies insights.db is accessible."""
    path = _get_analysis_db_path()
    return {
        "status": "ok" if path.exists() else "degraded",
        "analysis_db_exists": path.exists(),
        "analysis_db_path": str(path),
    }


@app.get("/profiles")
def profiles() -> List[Dict[str, Any]]:
    """List stored profiles."""
    with _open_insights_db() as db:
        return list_profiles(db)


@app.get("/profiles/{profile_id}")
def profile_detail(profile_id: str) -> Dict[str, Any]:
    """Get a profile with row counts and its all-time snapshot."""
    with _open_insights_db() as db:
        detail = get_profile_detail(db, profile_id)
    if detail is None:
        raise _not_found(profile_id)
    return detail


@app.get("/profiles/{profile_id}/meta")
def profile_meta(profile_id: str, period: str = Query(default="all-time")) -> Dict[str, Any]:
    """
    Get a profile's snapshot for a period.

    Periods that are not stored (e.g. last-30-days, 2023-Q2) are computed
    on the fly and not written.
    """
    with _open_insights_db() as db:
        try:
            snapshot = get_profile_meta(db, profile_id, period)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    if snapshot is None:
        raise _not_found(profile_id)
    return snapshot


@app.get("/profiles/{profile_id}/usage")
def profile_usage(
    profile_id: str,
    start: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    end: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
) -> List[Dict[str, Any]]:
    """Get daily usage rows, optionally bounded by start/end dates."""
    with _open_insights_db() as db:
        if get_profile_detail(db, profile_id) is None:
            raise _not_found(profile_id)
        return get_usage_series(db, profile_id, start, end)


@app.get("/profiles/{profile_id}/matches")
def profile_matches(profile_id: str, limit: int = Query(default=50, ge=1, le=1000)) -> List[Dict[str, Any]]:
    """Get a profile's matches, oldest first."""
    with _open_insights_db() as db:
        if get_profile_detail(db, profile_id) is None:
            raise _not_found(profile_id)
        return get_matches_data(db, profile_id, limit)


@app.get("/profiles/{profile_id}/aggregates")
def profile_aggregates(profile_id: str) -> Dict[str, Any]:
    """Get monthly and yearly usage/match buckets."""
    with _open_insights_db() as db:
        aggregates = get_profile_aggregates(db, profile_id)
    if aggregates is None:
        raise _not_found(profile_id)
    return aggregates
