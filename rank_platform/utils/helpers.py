"""
Utility helpers for the Geo-Grid Rank Tracking Platform.
"""

import datetime
import re
from typing import Optional

from rank_platform.config.settings import MAX_TRACKED_RANK, UNRANKED_LABEL


def is_unranked(rank: Optional[int]) -> bool:
    """True for missing ranks and anything past the tracked depth."""
    return rank is None or rank < 1 or rank > MAX_TRACKED_RANK


def format_rank(rank: Optional[int]) -> str:
    """Format a rank for display; unranked values always read ``100+``."""
    if is_unranked(rank):
        return UNRANKED_LABEL
    return str(rank)


def format_ranking_change(current: Optional[int], previous: Optional[int]) -> str:
    """Format a ranking change for display."""
    if previous is None or current is None:
        return "NEW" if current else "N/A"
    diff = previous - current  # positive means improved
    if diff > 0:
        return f"▲{diff}"
    elif diff < 0:
        return f"▼{abs(diff)}"
    return "—"


def get_date_range(period: str = "week") -> tuple:
    """Get start and end dates for a reporting period."""
    today = datetime.date.today()
    if period == "week":
        start = today - datetime.timedelta(days=7)
    elif period == "month":
        start = today - datetime.timedelta(days=30)
    elif period == "quarter":
        start = today - datetime.timedelta(days=90)
    else:
        start = today - datetime.timedelta(days=7)
    return start, today


_COORDINATE_PATTERN = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*[, ]\s*(-?\d+(?:\.\d+)?)\s*$")


def parse_coordinates(value: str) -> tuple[float, float]:
    """Parse ``"lat,lng"`` (or ``"lat lng"``) into floats."""
    match = _COORDINATE_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Expected 'latitude,longitude', got {value!r}")
    lat, lng = float(match.group(1)), float(match.group(2))
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise ValueError(f"Coordinates out of range: {lat}, {lng}")
    return lat, lng
