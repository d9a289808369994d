"""
Logging configuration for Swipe Insights.

Ingestion runs are long, multi-step and mostly silent unless something is
skipped, so every module logs through the standard library and this module
wires the handlers once, using dictConfig so it can be re-run safely.

Environment Variables:
    LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to INFO if not set or invalid.
    SWIPE_INSIGHTS_LOG_FILE: Optional file to mirror console output into.

Usage:
    from swipe_insights.logger_config import setup_logging
    setup_logging()  # Uses LOG_LEVEL env var, defaults to INFO

    # Or override explicitly:
    setup_logging(level=logging.DEBUG, log_file="ingest.log")
"""

import logging
import logging.config
import os
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are chatty at INFO during ingestion and serving
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def get_log_level() -> int:
    """
    Get log level from LOG_LEVEL environment variable.

    Supports: DEBUG, INFO, WARNING, ERROR, CRITICAL (case-insensitive).
    Defaults to INFO if not set or invalid.

    Returns:
        Logging level constant (e.g., logging.INFO).
    """
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, None)

    if level is None or not isinstance(level, int):
        return logging.INFO

    return level


def setup_logging(
    level: Optional[int] = None,
    format_string: Optional[str] = None,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure logging for the application using dictConfig.

    Args:
        level: Logging level. If None, reads from LOG_LEVEL env var (default: INFO).
        format_string: Optional custom format string.
        log_file: Optional file path to write logs to (with rotation). If None,
            SWIPE_INSIGHTS_LOG_FILE is used when set.
    """
    if level is None:
        level = get_log_level()

    if format_string is None:
        format_string = DEFAULT_FORMAT

    if log_file is None:
        log_file = os.getenv("SWIPE_INSIGHTS_LOG_FILE") or None

    config: dict = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": format_string,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            # Keep library request logs out of ingestion output unless debugging
            name: {"level": max(level, logging.WARNING)}
            for name in NOISY_LOGGERS
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
    }

    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "standard",
            "filename": log_file,
            "maxBytes": 10_485_760,  # 10 MB
            "backupCount": 5,
        }
        config["root"]["handlers"].append("file")

    logging.config.dictConfig(config)
