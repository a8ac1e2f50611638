"""
Geo-Grid Rank Tracking Platform
===============================

Tracks how a local business ranks for its keywords across a geographic grid
of search locations, and turns successive scans into trend data.
"""

__version__ = "1.0.0"

from rank_platform.modules.geo_math import GeoPoint, distance_miles
from rank_platform.modules.grid_generator import GridCell, GridRun, generate_grid
from rank_platform.modules.rank_sampler import Keyword, RankObservation, RankSampler

__all__ = [
    "GeoPoint",
    "distance_miles",
    "GridCell",
    "GridRun",
    "generate_grid",
    "Keyword",
    "RankObservation",
    "RankSampler",
]
