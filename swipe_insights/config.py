"""
Configuration module for Swipe Insights.

Handles configuration settings such as the insights database location,
logging destination and blob fetch behaviour.

Database Paths:
    - insights.db: Our normalized store (read-write for ingestion, read-only
      for the API and reporting commands)

Environment Variables:
    SWIPE_INSIGHTS_DB_PATH: Override the insights.db location.
    SWIPE_INSIGHTS_LOG_FILE: Optional rotating log file.
    SWIPE_INSIGHTS_FETCH_TIMEOUT: Seconds to wait when fetching an export.
"""

import os
from pathlib import Path
from typing import Optional


class Config:
    """Configuration class for Swipe Insights."""

    # Default location of insights.db
    DEFAULT_DATA_PATH = Path.home() / ".swipe_insights"
    DEFAULT_DB_NAME = "insights.db"

    DEFAULT_FETCH_TIMEOUT_SECONDS = 30.0

    def __init__(
        self,
        analysis_db_path: Optional[str] = None,
        log_file: Optional[str] = None,
        fetch_timeout_seconds: Optional[float] = None,
        default_country: Optional[str] = None,
        default_timezone: Optional[str] = None,
    ):
        """
        Initialize configuration.

        Args:
            analysis_db_path: Optional path to insights.db. Falls back to
                    SWIPE_INSIGHTS_DB_PATH, then ~/.swipe_insights/insights.db.
            log_file: Optional path for a rotating log file. Falls back to
                    SWIPE_INSIGHTS_LOG_FILE.
            fetch_timeout_seconds: Timeout for fetching exports over HTTP.
            default_country: Country code applied when an upload names none.
            default_timezone: Timezone applied when an upload names none.
        """
        env_db_path = os.getenv("SWIPE_INSIGHTS_DB_PATH")
        self._analysis_db_path: Path
        if analysis_db_path:
            self._analysis_db_path = Path(analysis_db_path)
        elif env_db_path:
            self._analysis_db_path = Path(env_db_path)
        else:
            self._analysis_db_path = self.DEFAULT_DATA_PATH / self.DEFAULT_DB_NAME

        self._log_file: Optional[str] = log_file or os.getenv("SWIPE_INSIGHTS_LOG_FILE")

        if fetch_timeout_seconds is None:
            fetch_timeout_seconds = self._timeout_from_env()
        self._fetch_timeout_seconds = fetch_timeout_seconds

        self._default_country = default_country
        self._default_timezone = default_timezone

    def _timeout_from_env(self) -> float:
        """Read the fetch timeout from the environment, ignoring bad values."""
        raw = os.getenv("SWIPE_INSIGHTS_FETCH_TIMEOUT")
        if not raw:
            return self.DEFAULT_FETCH_TIMEOUT_SECONDS
        try:
            value = float(raw)
        except ValueError:
            return self.DEFAULT_FETCH_TIMEOUT_SECONDS
        return value if value > 0 else self.DEFAULT_FETCH_TIMEOUT_SECONDS

    @property
    def analysis_db_path(self) -> Path:
        """Get the insights.db file path."""
        return self._analysis_db_path

    @property
    def analysis_db_path_str(self) -> str:
        """Get the insights.db file path as a string."""
        return str(self._analysis_db_path)

    @property
    def log_file(self) -> Optional[str]:
        """Get the optional log file path."""
        return self._log_file

    @property
    def fetch_timeout_seconds(self) -> float:
        """Get the export fetch timeout in seconds."""
        return self._fetch_timeout_seconds

    @property
    def default_country(self) -> Optional[str]:
        """Get the default country code for uploads."""
        return self._default_country

    @property
    def default_timezone(self) -> Optional[str]:
        """Get the default timezone for uploads."""
        return self._default_timezone

    def validate(self) -> bool:
        """
        Validate that insights.db exists and is readable.

        Returns:
            True if insights.db exists and is readable, False otherwise.
        """
        return self._analysis_db_path.exists() and os.access(self._analysis_db_path, os.R_OK)

    def ensure_analysis_dir(self) -> None:
        """
        Ensure the insights.db parent directory exists.

        Creates the directory if it doesn't exist.
        """
        self._analysis_db_path.parent.mkdir(parents=True, exist_ok=True)


# Global configuration instance
_config: Optional[Config] = None


def get_config(analysis_db_path: Optional[str] = None) -> Config:
    """
    Get or create the global configuration instance.

    Args:
        analysis_db_path: Optional path to insights.db.

    Returns:
        Config instance.
    """
    global _config
    if _config is None or analysis_db_path is not None:
        _config = Config(analysis_db_path)
    return _config


def set_config(config: Config) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Config instance to use.
    """
    global _config
    _config = config
