"""
Terminal formatting helpers for the Swipe Insights CLI.
"""

from typing import Optional


class Colors:
    """ANSI color codes for terminal output."""

    HEADER = "\033[95m"
    OKBLUE = "\033[94m"
    OKGREEN = "\033[92m"
    WARNING = "\033[93m"
    FAIL = "\033[91m"
    ENDC = "\033[0m"
    BOLD = "\033[1m"


def format_rate(value: Optional[float]) -> str:
    """Format a 0..1 ratio as a percentage ("-" when undefined)."""
    if value is None:
        return "-"
    return f"{value * 100:.1f}%"


def format_duration(seconds: Optional[float]) -> str:
    """
    Format a duration in seconds for humans.

    Examples: 45 -> "45s", 3900 -> "1h 5m", 200000 -> "2d 7h".
    """
    if seconds is None:
        return "-"
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    minutes, _ = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m"
    hours, minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {minutes}m"
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h"


def format_count(count: int) -> str:
    """
    Format a count with appropriate units.

    Returns:
        Formatted string (e.g., "1,234" or "1.2M").
    """
    if count < 1_000_000:
        return f"{count:,}"
    return f"{count / 1_000_000:.1f}M"
