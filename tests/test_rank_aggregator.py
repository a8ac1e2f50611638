"""Tests for the rank aggregator."""

import datetime
import random

import pytest

from rank_platform.config.settings import UNRANKED_RANK
from rank_platform.modules.geo_math import GeoPoint
from rank_platform.modules.grid_generator import GridCell
from rank_platform.modules.rank_aggregator import (
    RankHistoryPoint,
    aggregate_run,
    aggregate_to_dict,
    annotate_rank_changes,
    append_history,
    compute_summary,
    current_ranks,
    grid_metrics,
    rank_change,
    rank_drop_alerts,
)
from rank_platform.modules.rank_sampler import Keyword

from conftest import make_observation

T0 = datetime.datetime(2026, 1, 1, tzinfo=datetime.timezone.utc)
T1 = datetime.datetime(2026, 1, 8, tzinfo=datetime.timezone.utc)


class TestCurrentRanks:
    """Tests for the per-keyword best rank."""

    def test_minimum_across_cells(self):
        """The keyword's rank is its best cell."""
        obs = [make_observation("notary", i, r) for i, r in enumerate([3, 7, 12], start=1)]
        assert current_ranks(obs) == {"notary": 3}

    def test_order_independent(self):
        """Shuffling observations does not change the result."""
        obs = [make_observation(kw, i, r)
               for kw in ("a", "b", "c")
               for i, r in enumerate([40, 9, 101, 22], start=1)]
        expected = aggregate_run(obs, {"a": 12}, {}, T1).summary
        shuffled = list(obs)
        random.Random(7).shuffle(shuffled)
        assert current_ranks(shuffled) == current_ranks(obs)
        assert aggregate_run(shuffled, {"a": 12}, {}, T1).summary == expected


class TestRankChange:
    """Tests for the change sign convention."""

    def test_improvement_is_positive(self):
        """10 -> 4 is an improvement of 6."""
        assert rank_change(10, 4) == 6

    def test_decline_is_negative(self):
        """4 -> 10 is a decline of 6."""
        assert rank_change(4, 10) == -6

    def test_no_previous_is_zero(self):
        """A new keyword has no change."""
        assert rank_change(None, 8) == 0


class TestSummary:
    """Tests for portfolio summary metrics."""

    def test_counts(self):
        """Up/down/no-change and top buckets are counted correctly."""
        current = {"a": 2, "b": 8, "c": 50, "d": UNRANKED_RANK, "e": 3}
        previous = {"a": 5, "b": 8, "c": 20, "d": 90}
        summary = compute_summary(current, previous)

        assert summary.total_keywords == 5
        assert summary.keywords_up == 1
        assert summary.keywords_down == 2
        assert summary.keywords_no_change == 2
        assert summary.keywords_top3 == 2
        assert summary.keywords_top10 == 3
        assert summary.keywords_top100 == 4

    def test_up_down_same_partition_total(self):
        """Up + down + no change always equals the total."""
        rng = random.Random(3)
        current = {str(i): rng.randint(1, 120) for i in range(50)}
        previous = {str(i): rng.randint(1, 120) for i in range(0, 50, 2)}
        s = compute_summary(current, previous)
        assert s.keywords_up + s.keywords_down + s.keywords_no_change == s.total_keywords

    def test_deep_rank_not_in_top100(self):
        """A raw provider rank of 150 never counts toward top 100."""
        obs = [make_observation("deep", 1, 150)]
        aggregate = aggregate_run(obs, {}, {}, T1)
        assert aggregate.summary.keywords_top100 == 0
        assert aggregate.keyword("deep").current_rank == UNRANKED_RANK

    def test_empty(self):
        """No keywords gives an all-zero summary."""
        assert compute_summary({}, {}).as_dict() == {
            "total_keywords": 0, "keywords_up": 0, "keywords_no_change": 0,
            "keywords_down": 0, "keywords_top3": 0, "keywords_top10": 0,
            "keywords_top100": 0,
        }


class TestHistory:
    """Tests for append-only rank history."""

    def test_append(self):
        """One point is appended per run."""
        history = append_history((), T0, 9)
        history = append_history(history, T1, 4)
        assert [p.rank for p in history] == [9, 4]
        assert [p.date for p in history] == [T0, T1]

    def test_same_timestamp_is_noop(self):
        """Re-appending the same run does not duplicate the point."""
        history = append_history((), T0, 9)
        assert append_history(history, T0, 9) == history

    def test_older_timestamp_rejected(self):
        """History is never rewritten."""
        history = append_history((), T1, 9)
        with pytest.raises(ValueError):
            append_history(history, T0, 4)

    def test_input_not_mutated(self):
        """The caller's history is left alone."""
        original = (RankHistoryPoint(T0, 9),)
        append_history(original, T1, 4)
        assert original == (RankHistoryPoint(T0, 9),)


class TestAggregateRun:
    """Tests for full run aggregation."""

    def test_keyword_aggregate(self):
        """Per-keyword aggregate has rank, change, best and cell counts."""
        obs = [make_observation("notary", i, r) for i, r in enumerate([4, 7, 101], start=1)]
        history = {"notary": (RankHistoryPoint(T0, 10),)}
        aggregate = aggregate_run(obs, {"notary": 10}, history, T1)

        kw = aggregate.keyword("notary")
        assert kw.current_rank == 4
        assert kw.previous_rank == 10
        assert kw.change == 6
        assert kw.best_rank == 4
        assert kw.cells_ranked == 2
        assert kw.cells_total == 3
        assert [p.rank for p in aggregate.history["notary"]] == [10, 4]
        assert history["notary"] == (RankHistoryPoint(T0, 10),)

    def test_new_keyword_has_no_change(self):
        """A keyword without previous data gets change 0."""
        aggregate = aggregate_run([make_observation("fresh", 1, 2)], {}, {}, T1)
        kw = aggregate.keyword("fresh")
        assert kw.change == 0
        assert kw.previous_rank is None
        assert aggregate.summary.keywords_no_change == 1

    def test_tracked_keyword_without_observations(self):
        """Tracked keywords with no observations are unranked."""
        aggregate = aggregate_run([], {}, {}, T1, keywords=[Keyword("silent")])
        assert aggregate.keyword("silent").current_rank == UNRANKED_RANK
        assert aggregate.summary.total_keywords == 1

    def test_keywords_sorted(self):
        """Keyword aggregates come out sorted by text."""
        obs = [make_observation(t, 1, 5) for t in ("zeta", "alpha", "mid")]
        aggregate = aggregate_run(obs, {}, {}, T1)
        assert [a.keyword.text for a in aggregate.keywords] == ["alpha", "mid", "zeta"]

    def test_to_dict(self):
        """Plain-data form carries summary and keywords."""
        aggregate = aggregate_run([make_observation("notary", 1, 3)], {}, {}, T1)
        data = aggregate_to_dict(aggregate)
        assert data["summary"]["keywords_top3"] == 1
        assert data["keywords"]["notary"]["current_rank"] == 3


class TestGridMetrics:
    """Tests for AFPR / TGRM / TSS."""

    def test_metrics(self):
        """Metrics are computed over ranked cells only."""
        metrics = grid_metrics([1, 3, 8, 20, UNRANKED_RANK])
        assert metrics.afpr == pytest.approx(4.0)
        assert metrics.tgrm == pytest.approx(8.0)
        assert metrics.tss == pytest.approx(50.0)

    def test_no_ranked_cells(self):
        """All-unranked grids give zero metrics."""
        metrics = grid_metrics([UNRANKED_RANK, UNRANKED_RANK])
        assert (metrics.afpr, metrics.tgrm, metrics.tss) == (0.0, 0.0, 0.0)


class TestAnnotateAndAlerts:
    """Tests for per-cell change annotation and drop alerts."""

    def test_annotate_rank_changes(self):
        """Cells pick up their change against the previous snapshot."""
        previous = {"notary": [GridCell(id=1, point=GeoPoint(38.8, -77.0), rank=9)]}
        obs = [make_observation("notary", 1, 3), make_observation("notary", 2, 5)]
        annotated = annotate_rank_changes(obs, previous)
        changes = {o.cell.id: o.cell.rank_change for o in annotated}
        assert changes == {1: 6, 2: 0}
        assert obs[0].cell.rank_change == 0

    def test_drop_alerts(self):
        """Keywords losing at least the threshold raise an alert."""
        obs = [make_observation("falling", 1, 12), make_observation("steady", 1, 3)]
        aggregate = aggregate_run(obs, {"falling": 2, "steady": 3}, {}, T1)
        alerts = rank_drop_alerts(aggregate, threshold=5)
        assert [a.keyword for a in alerts] == ["falling"]
        assert alerts[0].change == -10
        assert alerts[0].severity == "warning"
