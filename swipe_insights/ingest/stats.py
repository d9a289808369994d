"""
Small numeric helpers shared by the conversation builder and the metrics
engine. All of them accept empty input.
"""

from typing import Optional, Sequence, Union

Number = Union[int, float]


def median(values: Sequence[Number]) -> Optional[float]:
    """
    Standard sorted-array median.

    Even-length input averages the two middle values: median([1, 3, 5, 7])
    is 4, median([1, 3, 5]) is 3.

    Returns:
        The median, or None for empty input.
    """
    if not values:
        return None
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return float(ordered[mid])
    return (ordered[mid - 1] + ordered[mid]) / 2


def mean(values: Sequence[Number]) -> Optional[float]:
    """Arithmetic mean, or None for empty input."""
    if not values:
        return None
    return sum(values) / len(values)


def get_ratio(numerator: Number, denominator: Number) -> float:
    """numerator / denominator, or 0.0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return numerator / denominator


def round_or_none(value: Optional[float]) -> Optional[int]:
    """Round half away from zero, passing None through."""
    if value is None:
        return None
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)
