"""
Grid Generator
==============

Lays out the geographic sampling lattice around a business location.

The lattice is ``grid_size x grid_size`` points spanning ``2 * radius_miles``
on both axes, ordered row-major (north row first, west to east) with ids
starting at 1. The ordering is fixed so that two grids generated for the same
center/size/radius at different times line up cell-for-cell.

Usage:
    from rank_platform.modules.grid_generator import generate_grid

    cells = generate_grid(GeoPoint(38.8048, -77.0469), grid_size=5, radius_miles=1.0)
"""

from __future__ import annotations

import dataclasses
import datetime
import math
from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from rank_platform.exceptions import GridValidationError
from rank_platform.modules.geo_math import (
    MILES_PER_DEGREE_LAT,
    GeoPoint,
    degrees_per_mile,
    offset_point,
)


@dataclass(frozen=True)
class GridCell:
    """One sampled point of the lattice.

    ``rank``/``search_volume``/``competitors`` stay empty until the Rank
    Sampler populates a copy via :meth:`with_sample`.
    """

    id: int
    point: GeoPoint
    rank: Optional[int] = None
    search_volume: int = 0
    rank_change: int = 0
    competitors: tuple[str, ...] = ()

    @property
    def is_sampled(self) -> bool:
        return self.rank is not None

    def with_sample(
        self,
        rank: int,
        search_volume: int = 0,
        competitors: tuple[str, ...] = (),
        rank_change: int = 0,
    ) -> "GridCell":
        return dataclasses.replace(
            self,
            rank=rank,
            search_volume=search_volume,
            competitors=tuple(competitors),
            rank_change=rank_change,
        )


# ---------------------------------------------------------------------------
# Shapes
# ---------------------------------------------------------------------------


class GridShape:
    """Decides which lattice points belong to the grid."""

    name = "base"

    def includes(self, north_miles: float, east_miles: float, radius_miles: float) -> bool:
        raise NotImplementedError


class SquareShape(GridShape):
    """Every lattice point."""

    name = "square"

    def includes(self, north_miles: float, east_miles: float, radius_miles: float) -> bool:
        return True


class CircularShape(GridShape):
    """Lattice points no further than ``radius_miles`` from the center."""

    name = "circular"

    def includes(self, north_miles: float, east_miles: float, radius_miles: float) -> bool:
        # small slack so the N/S/E/W edge points survive float rounding
        return math.hypot(north_miles, east_miles) <= radius_miles * (1 + 1e-9)


GRID_SHAPES: dict[str, GridShape] = {
    SquareShape.name: SquareShape(),
    CircularShape.name: CircularShape(),
}


def get_shape(shape: str | GridShape) -> GridShape:
    if isinstance(shape, GridShape):
        return shape
    try:
        return GRID_SHAPES[shape]
    except KeyError:
        raise GridValidationError(
            f"Unknown grid shape '{shape}' (expected one of {sorted(GRID_SHAPES)})"
        ) from None


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


def validate_grid_parameters(center: GeoPoint, grid_size: int, radius_miles: float) -> None:
    """Reject degenerate grids. Nothing is coerced."""
    if isinstance(grid_size, bool) or not isinstance(grid_size, int):
        raise GridValidationError(f"grid_size must be an integer, got {grid_size!r}")
    if grid_size < 2:
        raise GridValidationError(f"grid_size must be >= 2, got {grid_size}")
    if not radius_miles > 0:
        raise GridValidationError(f"radius_miles must be > 0, got {radius_miles}")
    # raises PolarLatitudeError for unusable latitudes, at the center and at
    # the north/south edge rows of the lattice
    degrees_per_mile(center.latitude)
    span = radius_miles / MILES_PER_DEGREE_LAT
    degrees_per_mile(center.latitude + span)
    degrees_per_mile(center.latitude - span)


def generate_grid(
    center: GeoPoint,
    grid_size: int,
    radius_miles: float,
    shape: str | GridShape = "square",
) -> list[GridCell]:
    """Produce the sampling lattice around ``center``.

    Parameters
    ----------
    center : GeoPoint
        Business location.
    grid_size : int
        Points per side, must be >= 2.
    radius_miles : float
        Half the side length of the lattice, must be > 0.
    shape : str or GridShape
        ``"square"`` (default) keeps every point; ``"circular"`` keeps the
        points within ``radius_miles`` of the center.

    Returns
    -------
    list of GridCell
        Row-major, latitude descending then longitude ascending, ids from 1.

    Raises
    ------
    GridValidationError
        For ``grid_size < 2``, ``radius_miles <= 0`` or an unknown shape.
    PolarLatitudeError
        If the center, or the grid's north or south edge, is too close to
        a pole.
    """
    validate_grid_parameters(center, grid_size, radius_miles)
    grid_shape = get_shape(shape)

    step_miles = (2 * radius_miles) / (grid_size - 1)
    cells: list[GridCell] = []
    next_id = 1

    for row in range(grid_size):
        north = radius_miles - row * step_miles
        for col in range(grid_size):
            east = -radius_miles + col * step_miles
            if not grid_shape.includes(north, east, radius_miles):
                continue
            cells.append(GridCell(id=next_id, point=offset_point(center, north, east)))
            next_id += 1

    logger.debug(
        "Generated {} {} grid cells around ({}, {}) r={}mi",
        len(cells), grid_shape.name, center.latitude, center.longitude, radius_miles,
    )
    return cells


def grid_signature(
    center: GeoPoint,
    grid_size: int,
    radius_miles: float,
    shape: str | GridShape = "square",
) -> tuple:
    """Key identifying grids that are positionally comparable."""
    return (
        round(center.latitude, 7),
        round(center.longitude, 7),
        grid_size,
        round(float(radius_miles), 7),
        get_shape(shape).name,
    )


@dataclass(frozen=True)
class GridRun:
    """One sampling run's lattice, keyed by (center, size, radius, timestamp).

    Passed by reference to the sampler, aggregator and connector builder in
    place of shared mutable grid state.
    """

    center: GeoPoint
    grid_size: int
    radius_miles: float
    run_timestamp: datetime.datetime
    shape: str = "square"
    cells: tuple[GridCell, ...] = field(default_factory=tuple)

    @classmethod
    def create(
        cls,
        center: GeoPoint,
        grid_size: int,
        radius_miles: float,
        run_timestamp: Optional[datetime.datetime] = None,
        shape: str = "square",
    ) -> "GridRun":
        cells = generate_grid(center, grid_size, radius_miles, shape)
        return cls(
            center=center,
            grid_size=grid_size,
            radius_miles=radius_miles,
            run_timestamp=run_timestamp or datetime.datetime.now(datetime.timezone.utc),
            shape=get_shape(shape).name,
            cells=tuple(cells),
        )

    @property
    def key(self) -> tuple:
        return self.signature + (self.run_timestamp,)

    @property
    def signature(self) -> tuple:
        return grid_signature(self.center, self.grid_size, self.radius_miles, self.shape)

    def is_comparable(self, other: "GridRun") -> bool:
        return self.signature == other.signature
