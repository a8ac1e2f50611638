"""Shared fixtures for the rank platform tests."""

import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from rank_platform.database.models import init_db
from rank_platform.database.store import CampaignStore
from rank_platform.modules.geo_math import GeoPoint
from rank_platform.modules.grid_generator import GridCell
from rank_platform.modules.providers import RankLookup
from rank_platform.modules.rank_sampler import Keyword, RankObservation

ALEXANDRIA = GeoPoint(38.8048, -77.0469)


class ScriptedProvider:
    """Provider returning ranks from a ``(keyword, cell_point) -> rank`` function."""

    def __init__(self, rank_for=None):
        self.rank_for = rank_for or (lambda keyword, point: 5)
        self.calls = 0

    def lookup_rank(self, point, keyword, business_identity):
        self.calls += 1
        return RankLookup(rank=self.rank_for(keyword, point), search_volume=100)


def make_observation(text, cell_id, rank, at=None):
    cell = GridCell(id=cell_id, point=GeoPoint(38.8 + cell_id / 1000, -77.0)).with_sample(rank=rank)
    return RankObservation(
        keyword=Keyword(text),
        cell=cell,
        rank=rank,
        captured_at=at or datetime.datetime(2026, 1, 1, tzinfo=datetime.timezone.utc),
    )


@pytest.fixture
def center():
    return ALEXANDRIA


@pytest.fixture
def session_factory(tmp_path):
    """Session factory bound to a throwaway SQLite database."""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return CampaignStore(session_factory=session_factory)


@pytest.fixture
def campaign_id(store, center):
    """A 3x3 campaign with two tracked keywords."""
    cid = store.create_campaign(
        name="Alexandria Apostille",
        business_name="Common Notary Apostille",
        center=center,
        grid_size=3,
        radius_miles=1.0,
    )
    store.add_keyword(cid, "apostille services", tags=["apostille"], is_primary=True, volume=500)
    store.add_keyword(cid, "mobile notary")
    return cid
