"""
Trend Connector Builder
=======================

Derives the directional connectors drawn on the map between two
time-ordered snapshots of the same grid. Connectors are transient render
data: building them never touches the underlying observations.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Sequence

from rank_platform.exceptions import SnapshotMismatchError
from rank_platform.modules.geo_math import GeoPoint, bearing_degrees, midpoint
from rank_platform.modules.grid_generator import GridCell, GridRun
from rank_platform.modules.rank_aggregator import rank_change


class TrendDirection(Enum):
    """Movement of a rank between two runs (same sign as rank change)."""
    IMPROVED = "improved"
    DECLINED = "declined"
    FLAT = "flat"


def classify_change(change: int) -> TrendDirection:
    if change > 0:
        return TrendDirection.IMPROVED
    if change < 0:
        return TrendDirection.DECLINED
    return TrendDirection.FLAT


@dataclass(frozen=True)
class TrendConnector:
    start: GeoPoint
    end: GeoPoint
    rank_change: int
    bearing_degrees: float
    cell_id: int = 0

    @property
    def midpoint(self) -> GeoPoint:
        return midpoint(self.start, self.end)

    @property
    def direction(self) -> TrendDirection:
        return classify_change(self.rank_change)


def build_connector(previous: GridCell, current: GridCell) -> TrendConnector:
    """Connector from a cell's earlier observation to its later one."""
    if previous.rank is None or current.rank is None:
        raise SnapshotMismatchError(f"Cell {current.id} has not been sampled in both snapshots")
    return TrendConnector(
        start=previous.point,
        end=current.point,
        rank_change=rank_change(previous.rank, current.rank),
        bearing_degrees=bearing_degrees(previous.point, current.point),
        cell_id=current.id,
    )


def build_trend_connectors(
    previous_cells: Sequence[GridCell],
    current_cells: Sequence[GridCell],
) -> list[TrendConnector]:
    """One connector per grid position, ordered by cell id.

    Raises
    ------
    SnapshotMismatchError
        If the snapshots do not cover the same cell positions.
    """
    if len(previous_cells) != len(current_cells):
        raise SnapshotMismatchError(
            f"Snapshots differ in size ({len(previous_cells)} vs {len(current_cells)} cells)"
        )

    previous_by_id = {cell.id: cell for cell in previous_cells}
    current_by_id = {cell.id: cell for cell in current_cells}
    if previous_by_id.keys() != current_by_id.keys():
        raise SnapshotMismatchError("Snapshots do not cover the same grid cell ids")

    return [
        build_connector(previous_by_id[cell_id], current_by_id[cell_id])
        for cell_id in sorted(current_by_id)
    ]


def build_run_connectors(
    previous_run: GridRun,
    current_run: GridRun,
    previous_cells: Mapping[str, Sequence[GridCell]],
    current_cells: Mapping[str, Sequence[GridCell]],
) -> dict[str, list[TrendConnector]]:
    """Connectors per keyword between two comparable runs.

    Keywords that only appear in one of the runs are skipped.

    Raises
    ------
    SnapshotMismatchError
        If the runs were not generated from the same center/size/radius/shape,
        or ``previous_run`` is not older than ``current_run``.
    """
    if not previous_run.is_comparable(current_run):
        raise SnapshotMismatchError("Runs were generated for different grids")
    if previous_run.run_timestamp >= current_run.run_timestamp:
        raise SnapshotMismatchError("Previous run must be older than the current run")

    return {
        text: build_trend_connectors(previous_cells[text], cells)
        for text, cells in current_cells.items()
        if text in previous_cells
    }
