"""Tests for the SQLAlchemy campaign store."""

import datetime

import pytest
from sqlalchemy import func, select

from rank_platform.database.models import GridCellRank, GridRunRecord, KeywordRankHistory
from rank_platform.exceptions import CampaignNotFoundError
from rank_platform.modules.grid_generator import GridRun
from rank_platform.modules.rank_aggregator import aggregate_run
from rank_platform.modules.rank_sampler import Keyword, RankObservation

T0 = datetime.datetime(2026, 1, 1, 6, 0, tzinfo=datetime.timezone.utc)
T1 = datetime.datetime(2026, 1, 8, 6, 0, tzinfo=datetime.timezone.utc)


def _observe(run, keywords, rank=5):
    return [
        RankObservation(
            keyword=kw,
            cell=cell.with_sample(rank=rank, search_volume=40, competitors=("Rival",)),
            rank=rank,
            captured_at=run.run_timestamp,
        )
        for cell in run.cells
        for kw in keywords
    ]


def _count(session_factory, model):
    session = session_factory()
    try:
        return session.scalar(select(func.count()).select_from(model))
    finally:
        session.close()


class TestCampaigns:
    """Tests for campaign seeding and loading."""

    def test_load_campaign(self, store, campaign_id, center):
        """Loading returns configuration and keywords."""
        context = store.load_campaign(campaign_id)
        assert context.business_identity == "Common Notary Apostille"
        assert context.center == center
        assert context.grid_size == 3
        assert [k.text for k in context.keywords] == ["apostille services", "mobile notary"]
        assert context.keywords[0].is_primary
        assert context.keywords[0].tags == ("apostille",)

    def test_missing_campaign(self, store):
        """Unknown campaign ids raise CampaignNotFoundError."""
        with pytest.raises(CampaignNotFoundError):
            store.load_campaign(999)

    def test_add_keyword_to_missing_campaign(self, store):
        """Keywords cannot be added to a missing campaign."""
        with pytest.raises(CampaignNotFoundError):
            store.add_keyword(999, "notary")

    def test_active_campaigns(self, store, campaign_id):
        """New campaigns are active."""
        assert store.active_campaign_ids() == [campaign_id]


class TestCommitRun:
    """Tests for committing runs."""

    def test_commit_and_read_back(self, store, campaign_id, center):
        """A committed run is readable as history and snapshot."""
        context = store.load_campaign(campaign_id)
        run = GridRun.create(center, 3, 1.0, run_timestamp=T0)
        observations = _observe(run, context.keywords)
        aggregate = aggregate_run(observations, {}, {}, T0, context.keywords)

        run_id = store.commit_run(campaign_id, run, aggregate, observations)

        history = store.keyword_history(campaign_id)
        assert set(history) == {"apostille services", "mobile notary"}
        assert history["mobile notary"][0].date == T0
        assert store.previous_ranks(campaign_id) == {"apostille services": 5, "mobile notary": 5}

        snapshot = store.latest_snapshot(campaign_id)
        assert snapshot.run_id == run_id
        assert snapshot.run.is_comparable(run)
        assert snapshot.run.run_timestamp == T0
        assert len(snapshot.cells_by_keyword["mobile notary"]) == 9
        assert snapshot.cells_by_keyword["mobile notary"][0].competitors == ("Rival",)
        assert store.latest_run(campaign_id).grid_size == 3

    def test_commit_is_idempotent(self, store, campaign_id, center, session_factory):
        """Committing the same run twice writes it once."""
        context = store.load_campaign(campaign_id)
        run = GridRun.create(center, 3, 1.0, run_timestamp=T0)
        observations = _observe(run, context.keywords)
        aggregate = aggregate_run(observations, {}, {}, T0, context.keywords)

        first = store.commit_run(campaign_id, run, aggregate, observations)
        second = store.commit_run(campaign_id, run, aggregate, observations)
        assert first == second
        assert _count(session_factory, GridRunRecord) == 1
        assert _count(session_factory, KeywordRankHistory) == 2

    def test_failed_commit_rolls_back(self, store, campaign_id, center, session_factory):
        """A failure mid-commit leaves nothing behind."""
        context = store.load_campaign(campaign_id)
        run = GridRun.create(center, 3, 1.0, run_timestamp=T0)
        observations = _observe(run, context.keywords)
        aggregate = aggregate_run(observations, {}, {}, T0, context.keywords)
        broken = observations + _observe(run, [Keyword(None)])

        with pytest.raises(Exception):
            store.commit_run(campaign_id, run, aggregate, broken)

        assert _count(session_factory, GridRunRecord) == 0
        assert _count(session_factory, GridCellRank) == 0
        assert _count(session_factory, KeywordRankHistory) == 0

    def test_commit_unknown_campaign(self, store, center):
        """Committing against a missing campaign is rejected."""
        run = GridRun.create(center, 3, 1.0, run_timestamp=T0)
        aggregate = aggregate_run([], {}, {}, T0)
        with pytest.raises(CampaignNotFoundError):
            store.commit_run(999, run, aggregate, [])

    def test_latest_snapshot_is_newest(self, store, campaign_id, center):
        """The newest run is returned as the latest snapshot."""
        context = store.load_campaign(campaign_id)
        for ts, rank in ((T0, 9), (T1, 4)):
            run = GridRun.create(center, 3, 1.0, run_timestamp=ts)
            observations = _observe(run, context.keywords, rank=rank)
            aggregate = aggregate_run(
                observations, store.previous_ranks(campaign_id),
                store.keyword_history(campaign_id), ts, context.keywords,
            )
            store.commit_run(campaign_id, run, aggregate, observations)

        snapshot = store.latest_snapshot(campaign_id)
        assert snapshot.run.run_timestamp == T1
        assert [p.rank for p in store.keyword_history(campaign_id)["mobile notary"]] == [9, 4]

    def test_no_runs(self, store, campaign_id):
        """A campaign without runs has no snapshot or history."""
        assert store.latest_snapshot(campaign_id) is None
        assert store.keyword_history(campaign_id) == {}


class TestAlerts:
    """Tests for alert records."""

    def test_record_and_list(self, store, campaign_id):
        """Recorded alerts are listed newest first."""
        store.record_alert("task_failure", "first", campaign_id=campaign_id)
        store.record_alert("ranking_drop", "second", severity="warning", campaign_id=campaign_id)
        alerts = store.recent_alerts(campaign_id=campaign_id)
        assert [a["title"] for a in alerts] == ["second", "first"]
