"""
Swipe Insights - ingestion and analytics for dating-app data exports.

This package provides functionality to:
- Ingest Tinder and Hinge exports into a normalized SQLite store
- Reconcile re-uploads and account switches of the same person
- Compute and serve derived activity and conversation statistics
"""

__version__ = "0.1.0"

from swipe_insights.config import get_config, Config
from swipe_insights.database import InsightsDatabase

__all__ = [
    "get_config",
    "Config",
    "InsightsDatabase",
]
