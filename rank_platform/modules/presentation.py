"""
Presentation Adapter
====================

Pure transforms from aggregator/connector output into the plain-data shapes
the dashboard views consume. No state, no I/O.

Unranked values are never emitted as raw integers: numeric fields carry
``None`` and the matching ``*_label`` field carries ``"100+"``.
"""

from __future__ import annotations

import datetime
from typing import Any, Iterable, Mapping, Optional, Sequence

from rank_platform.modules.grid_generator import GridCell
from rank_platform.modules.rank_aggregator import (
    KeywordAggregate,
    RankHistoryPoint,
    RunAggregate,
    SummaryMetrics,
)
from rank_platform.modules.trend_connector import TrendConnector, TrendDirection
from rank_platform.utils.helpers import format_rank, format_ranking_change, is_unranked

DIRECTION_COLORS = {
    TrendDirection.IMPROVED: "#34D399",
    TrendDirection.DECLINED: "#EF4444",
    TrendDirection.FLAT: "#888888",
}

DIRECTION_ARROWS = {
    TrendDirection.IMPROVED: "arrow-up",
    TrendDirection.DECLINED: "arrow-down",
    TrendDirection.FLAT: "arrow-right",
}

RANK_BUCKETS = (
    ("1-3", 1, 3),
    ("4-10", 4, 10),
    ("11-20", 11, 20),
    ("21-100", 21, 100),
)

SORTABLE_FIELDS = ("keyword", "current_rank", "previous_rank", "best_rank", "change", "search_volume")

# heat-map weight is 0.5 + rank_change / span, so +/-10 positions saturate it
HEATMAP_CHANGE_SPAN = 20.0


def _display_rank(rank: Optional[int]) -> Optional[int]:
    return None if is_unranked(rank) else rank


def _history_rows(points: Sequence[RankHistoryPoint]) -> list[dict[str, Any]]:
    return [
        {
            "date": p.date.isoformat(),
            "rank": _display_rank(p.rank),
            "rank_label": format_rank(p.rank),
        }
        for p in points
    ]


# ---------------------------------------------------------------------------
# Keyword table
# ---------------------------------------------------------------------------


def keyword_row(
    aggregate: KeywordAggregate,
    history: Sequence[RankHistoryPoint] = (),
    last_updated: Optional[datetime.datetime] = None,
) -> dict[str, Any]:
    kw = aggregate.keyword
    return {
        "keyword": kw.text,
        "tags": list(kw.tags),
        "is_primary": kw.is_primary,
        "current_rank": _display_rank(aggregate.current_rank),
        "current_rank_label": format_rank(aggregate.current_rank),
        "previous_rank": _display_rank(aggregate.previous_rank),
        "previous_rank_label": (
            format_rank(aggregate.previous_rank) if aggregate.previous_rank is not None else "N/A"
        ),
        "best_rank": _display_rank(aggregate.best_rank),
        "best_rank_label": format_rank(aggregate.best_rank),
        "change": aggregate.change,
        "change_label": format_ranking_change(aggregate.current_rank, aggregate.previous_rank),
        "search_volume": aggregate.search_volume,
        "difficulty": kw.difficulty,
        "cells_ranked": aggregate.cells_ranked,
        "cells_total": aggregate.cells_total,
        "afpr": aggregate.grid_metrics.afpr,
        "tgrm": aggregate.grid_metrics.tgrm,
        "tss": aggregate.grid_metrics.tss,
        "history": _history_rows(history),
        "last_updated": last_updated.isoformat() if last_updated else None,
    }


def keyword_rows(
    aggregate: RunAggregate,
    last_updated: Optional[datetime.datetime] = None,
) -> list[dict[str, Any]]:
    """Keyword table rows, primary keywords first."""
    stamp = last_updated or aggregate.run_timestamp
    rows = [
        keyword_row(a, aggregate.history.get(a.keyword.text, ()), stamp)
        for a in aggregate.keywords
    ]
    rows.sort(key=lambda r: (not r["is_primary"], r["keyword"]))
    return rows


def sort_keyword_rows(
    rows: Iterable[dict[str, Any]],
    sort_by: str = "current_rank",
    order: str = "asc",
) -> list[dict[str, Any]]:
    """Sort table rows; unranked (``None``) values always sort last."""
    field_name = sort_by if sort_by in SORTABLE_FIELDS else "current_rank"
    descending = order == "desc"
    rows = list(rows)

    present = [r for r in rows if r.get(field_name) is not None]
    missing = [r for r in rows if r.get(field_name) is None]

    if field_name == "keyword":
        present.sort(key=lambda r: str(r["keyword"]).lower(), reverse=descending)
    else:
        present.sort(key=lambda r: r[field_name], reverse=descending)
    return present + missing


# ---------------------------------------------------------------------------
# Tiles and charts
# ---------------------------------------------------------------------------


def summary_tiles(summary: SummaryMetrics) -> list[dict[str, Any]]:
    return [
        {"key": "total_keywords", "label": "Total Keywords", "value": summary.total_keywords},
        {"key": "keywords_up", "label": "Keywords Up", "value": summary.keywords_up},
        {"key": "keywords_no_change", "label": "No Change", "value": summary.keywords_no_change},
        {"key": "keywords_down", "label": "Keywords Down", "value": summary.keywords_down},
        {"key": "keywords_top3", "label": "Top 3", "value": summary.keywords_top3},
        {"key": "keywords_top10", "label": "Top 10", "value": summary.keywords_top10},
        {"key": "keywords_top100", "label": "Top 100", "value": summary.keywords_top100},
    ]


def trend_chart(history: Mapping[str, Sequence[RankHistoryPoint]]) -> dict[str, Any]:
    """Rank-over-time matrix: one row per keyword, one column per date.

    Dates a keyword was not tracked on, and unranked points, are ``None``.
    """
    keywords = sorted(history)
    dates = sorted({p.date for points in history.values() for p in points})

    ranks: list[list[Optional[int]]] = []
    for text in keywords:
        by_date = {p.date: p.rank for p in history[text]}
        ranks.append([_display_rank(by_date.get(d)) if d in by_date else None for d in dates])

    return {
        "keywords": keywords,
        "dates": [d.isoformat() for d in dates],
        "ranks": ranks,
    }


def grid_markers(cells: Iterable[GridCell]) -> list[dict[str, Any]]:
    """Map markers for one keyword's sampled grid."""
    return [
        {
            "id": cell.id,
            "lat": cell.point.latitude,
            "lng": cell.point.longitude,
            "rank": _display_rank(cell.rank),
            "rank_label": format_rank(cell.rank),
            "in_top3": not is_unranked(cell.rank) and cell.rank <= 3,
            "search_volume": cell.search_volume,
            "rank_change": cell.rank_change,
            "competitors": list(cell.competitors),
        }
        for cell in sorted(cells, key=lambda c: c.id)
    ]


def heatmap_points(cells: Iterable[GridCell]) -> list[dict[str, Any]]:
    """Heat-map layer weighting each sampled cell by its rank change.

    A change of 0 is neutral (0.5); every position gained or lost moves the
    weight by ``1 / HEATMAP_CHANGE_SPAN``, clamped to [0, 1].
    """
    points = []
    for cell in sorted(cells, key=lambda c: c.id):
        if not cell.is_sampled:
            continue
        weight = 0.5 + cell.rank_change / HEATMAP_CHANGE_SPAN
        points.append({
            "lat": cell.point.latitude,
            "lng": cell.point.longitude,
            "weight": min(1.0, max(0.0, weight)),
        })
    return points


def rank_distribution(
cells: Iterable[GridCell]) -> list[dict[str, Any]]:
    """Cell counts per rank bucket, including the ``100+`` bucket."""
    counts = {label: 0 for label, _, _ in RANK_BUCKETS}
    unranked = 0
    for cell in cells:
        if is_unranked(cell.rank):
            unranked += 1
            continue
        for label, low, high in RANK_BUCKETS:
            if low <= cell.rank <= high:
                counts[label] += 1
                break

    distribution = [{"range": label, "count": counts[label]} for label, _, _ in RANK_BUCKETS]
    distribution.append({"range": format_rank(None), "count": unranked})
    return distribution


def connector_overlays(connectors: Iterable[TrendConnector]) -> list[dict[str, Any]]:
    """Line/arrow overlay data for the map."""
    overlays = []
    for c in connectors:
        direction = c.direction
        mid = c.midpoint
        overlays.append({
            "cell_id": c.cell_id,
            "start": {"lat": c.start.latitude, "lng": c.start.longitude},
            "end": {"lat": c.end.latitude, "lng": c.end.longitude},
            "midpoint": {"lat": mid.latitude, "lng": mid.longitude},
            "rotation": c.bearing_degrees,
            "rank_change": c.rank_change,
            "direction": direction.value,
            "color": DIRECTION_COLORS[direction],
            "arrow": DIRECTION_ARROWS[direction],
        })
    return overlays


def dashboard_payload(
    aggregate: RunAggregate,
    cells_by_keyword: Mapping[str, Sequence[GridCell]],
    connectors_by_keyword: Optional[Mapping[str, Sequence[TrendConnector]]] = None,
) -> dict[str, Any]:
    """Everything the rankings page renders for one run."""
    connectors_by_keyword = connectors_by_keyword or {}
    all_cells = [cell for cells in cells_by_keyword.values() for cell in cells]
    return {
        "run_timestamp": aggregate.run_timestamp.isoformat(),
        "summary_metrics": aggregate.summary.as_dict(),
        "summary_tiles": summary_tiles(aggregate.summary),
        "keyword_rankings": keyword_rows(aggregate),
        "trends": trend_chart(aggregate.history),
        "rank_distribution": rank_distribution(all_cells),
        "grids": {
            text: {
                "markers": grid_markers(cells),
                "heatmap": heatmap_points(cells),
                "connectors": connector_overlays(connectors_by_keyword.get(text, ())),
            }
            for text, cells in sorted(cells_by_keyword.items())
        },
    }
