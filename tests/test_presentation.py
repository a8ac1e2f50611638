"""Tests for the presentation adapter."""

import datetime

import pytest

from rank_platform.config.settings import UNRANKED_RANK
from rank_platform.modules.geo_math import GeoPoint
from rank_platform.modules.grid_generator import GridCell
from rank_platform.modules.presentation import (
    connector_overlays,
    dashboard_payload,
    grid_markers,
    heatmap_points,
    keyword_rows,
    rank_distribution,
    sort_keyword_rows,
    summary_tiles,
    trend_chart,
)
from rank_platform.modules.rank_aggregator import RankHistoryPoint, aggregate_run, cells_by_keyword
from rank_platform.modules.rank_sampler import Keyword
from rank_platform.modules.trend_connector import TrendConnector

from conftest import make_observation

T0 = datetime.datetime(2026, 1, 1, tzinfo=datetime.timezone.utc)
T1 = datetime.datetime(2026, 1, 8, tzinfo=datetime.timezone.utc)


def _aggregate():
    observations = [
        make_observation("apostille services", 1, 4),
        make_observation("apostille services", 2, 9),
        make_observation("mobile notary", 1, UNRANKED_RANK),
        make_observation("notary near me", 1, 2),
    ]
    history = {"apostille services": (RankHistoryPoint(T0, 10),)}
    keywords = [Keyword("apostille services", is_primary=True, tags=("apostille",)),
                Keyword("mobile notary"), Keyword("notary near me")]
    return observations, aggregate_run(observations, {"apostille services": 10}, history, T1, keywords)


class TestKeywordRows:
    """Tests for keyword table rows."""

    def test_row_fields(self):
        """Rows carry ranks, labels, change and history."""
        _, aggregate = _aggregate()
        rows = keyword_rows(aggregate)
        row = rows[0]
        assert row["keyword"] == "apostille services"
        assert row["is_primary"] is True
        assert row["current_rank"] == 4
        assert row["previous_rank"] == 10
        assert row["change"] == 6
        assert row["change_label"] == "▲6"
        assert row["best_rank"] == 4
        assert [h["rank"] for h in row["history"]] == [10, 4]
        assert row["last_updated"] == T1.isoformat()

    def test_unranked_renders_as_label(self):
        """Unranked keywords never show a raw sentinel."""
        _, aggregate = _aggregate()
        row = next(r for r in keyword_rows(aggregate) if r["keyword"] == "mobile notary")
        assert row["current_rank"] is None
        assert row["current_rank_label"] == "100+"
        assert row["history"][0]["rank_label"] == "100+"
        assert UNRANKED_RANK not in [v for v in row.values() if isinstance(v, int)]

    def test_sorting(self):
        """Rows sort by field with unranked values last."""
        _, aggregate = _aggregate()
        rows = keyword_rows(aggregate)
        by_rank = sort_keyword_rows(rows, "current_rank", "asc")
        assert [r["keyword"] for r in by_rank] == ["notary near me", "apostille services", "mobile notary"]
        by_name = sort_keyword_rows(rows, "keyword", "desc")
        assert [r["keyword"] for r in by_name] == ["notary near me", "mobile notary", "apostille services"]
        by_rank_desc = sort_keyword_rows(rows, "current_rank", "desc")
        assert by_rank_desc[-1]["keyword"] == "mobile notary"


class TestTilesAndCharts:
    """Tests for tiles, trend chart and distribution."""

    def test_summary_tiles(self):
        """Seven tiles in a fixed order."""
        _, aggregate = _aggregate()
        tiles = summary_tiles(aggregate.summary)
        assert [t["key"] for t in tiles] == [
            "total_keywords", "keywords_up", "keywords_no_change", "keywords_down",
            "keywords_top3", "keywords_top10", "keywords_top100",
        ]
        assert tiles[0]["value"] == 3

    def test_trend_chart(self):
        """The chart is a keywords x dates matrix with gaps as None."""
        _, aggregate = _aggregate()
        chart = trend_chart(aggregate.history)
        assert chart["keywords"] == ["apostille services", "mobile notary", "notary near me"]
        assert chart["dates"] == [T0.isoformat(), T1.isoformat()]
        assert chart["ranks"] == [[10, 4], [None, None], [None, 2]]

    def test_rank_distribution(self):
        """Cells are bucketed with a 100+ bucket."""
        cells = [GridCell(id=i, point=GeoPoint(0, 0), rank=r)
                 for i, r in enumerate([1, 3, 4, 15, 60, 101, 101], start=1)]
        assert rank_distribution(cells) == [
            {"range": "1-3", "count": 2},
            {"range": "4-10", "count": 1},
            {"range": "11-20", "count": 1},
            {"range": "21-100", "count": 1},
            {"range": "100+", "count": 2},
        ]

    def test_grid_markers(self):
        """Markers label ranks and flag top-3 cells."""
        cells = [GridCell(id=2, point=GeoPoint(1, 2), rank=UNRANKED_RANK),
                 GridCell(id=1, point=GeoPoint(3, 4), rank=2)]
        markers = grid_markers(cells)
        assert [m["id"] for m in markers] == [1, 2]
        assert markers[0]["in_top3"] is True
        assert markers[1]["rank"] is None
        assert markers[1]["rank_label"] == "100+"


class TestHeatmapPoints:
    """Tests for the rank-change heat map."""

    def _cell(self, cell_id, change):
        return GridCell(id=cell_id, point=GeoPoint(38.8, -77.0 + cell_id / 100)).with_sample(
            rank=5, rank_change=change
        )

    def test_weight_from_rank_change(self):
        """No change is neutral; each position moves the weight by 1/20."""
        points = heatmap_points([self._cell(1, 0), self._cell(2, 4), self._cell(3, -6)])
        assert [p["weight"] for p in points] == pytest.approx([0.5, 0.7, 0.2])
        assert points[1]["lat"] == 38.8
        assert points[1]["lng"] == -77.0 + 2 / 100

    def test_weight_clamped(self):
        """Changes of 10 or more positions saturate at 0 and 1."""
        points = heatmap_points([
            self._cell(1, 10), self._cell(2, 25), self._cell(3, -10), self._cell(4, -40),
        ])
        assert [p["weight"] for p in points] == [1.0, 1.0, 0.0, 0.0]

    def test_unsampled_cells_skipped(self):
        """Cells without a rank carry no heat."""
        unsampled = GridCell(id=1, point=GeoPoint(38.8, -77.0))
        points = heatmap_points([unsampled, self._cell(2, 3)])
        assert len(points) == 1
        assert points[0]["weight"] == pytest.approx(0.65)


class TestConnectorOverlays:
    """Tests for map connector overlays."""

    def test_colors_and_arrows(self):
        """Direction picks the color and arrow."""
        a, b = GeoPoint(0.0, 0.0), GeoPoint(0.0, 1.0)
        overlays = connector_overlays([
            TrendConnector(a, b, 3, 0.0, cell_id=1),
            TrendConnector(a, b, -3, 0.0, cell_id=2),
            TrendConnector(a, b, 0, 0.0, cell_id=3),
        ])
        assert [o["color"] for o in overlays] == ["#34D399", "#EF4444", "#888888"]
        assert [o["arrow"] for o in overlays] == ["arrow-up", "arrow-down", "arrow-right"]
        assert overlays[0]["midpoint"] == {"lat": 0.0, "lng": 0.5}


class TestDashboardPayload:
    """Tests for the assembled payload."""

    def test_payload_sections(self):
        """The payload assembles every view section."""
        observations, aggregate = _aggregate()
        payload = dashboard_payload(aggregate, cells_by_keyword(observations))
        assert payload["summary_metrics"]["total_keywords"] == 3
        assert len(payload["keyword_rankings"]) == 3
        assert set(payload["grids"]) == {"apostille services", "mobile notary", "notary near me"}
        assert payload["grids"]["mobile notary"]["connectors"] == []
        assert sum(b["count"] for b in payload["rank_distribution"]) == 4
        heat = payload["grids"]["apostille services"]["heatmap"]
        assert [p["weight"] for p in heat] == [0.5, 0.5]
