"""
Campaign store: the persistence boundary of a geo-grid scan.

Reads campaign configuration and prior results, and commits a finished run
(grid run row, per-cell ranks, history points, alerts) in one transaction.
Nothing is written for a run until :meth:`CampaignStore.commit_run`.
"""

from __future__ import annotations

import datetime
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from rank_platform.config.settings import (
    DEFAULT_GRID_SHAPE,
    DEFAULT_GRID_SIZE,
    DEFAULT_RADIUS_MILES,
)
from rank_platform.database.models import (
    Alert,
    Campaign,
    CampaignKeyword,
    GridCellRank,
    GridRunRecord,
    KeywordRankHistory,
    SessionLocal,
)
from rank_platform.exceptions import CampaignNotFoundError
from rank_platform.modules.geo_math import GeoPoint
from rank_platform.modules.grid_generator import GridCell, GridRun
from rank_platform.modules.rank_aggregator import (
    RankDropAlert,
    RankHistoryPoint,
    RunAggregate,
    previous_ranks_from_history,
)
from rank_platform.modules.rank_sampler import Keyword, RankObservation


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


@dataclass(frozen=True)
class CampaignContext:
    """Everything a scan needs to know about a campaign."""

    campaign_id: int
    name: str
    business_identity: str
    center: GeoPoint
    grid_size: int
    radius_miles: float
    shape: str
    keywords: tuple[Keyword, ...] = ()


@dataclass(frozen=True)
class RunSnapshot:
    """A committed run plus its sampled cells per keyword."""

    run_id: int
    run: GridRun
    cells_by_keyword: dict[str, list[GridCell]] = field(default_factory=dict)


class CampaignStore:
    """SQLAlchemy-backed campaign/keyword store.

    Parameters
    ----------
    session_factory : callable, optional
        Returns a new ``Session``. Defaults to ``SessionLocal``.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def create_campaign(
        self,
        name: str,
        business_name: str,
        center: GeoPoint,
        grid_size: int = DEFAULT_GRID_SIZE,
        radius_miles: float = DEFAULT_RADIUS_MILES,
        grid_shape: str = DEFAULT_GRID_SHAPE,
    ) -> int:
        session = self.session_factory()
        try:
            campaign = Campaign(
                name=name,
                business_name=business_name,
                center_lat=center.latitude,
                center_lng=center.longitude,
                grid_size=grid_size,
                radius_miles=radius_miles,
                grid_shape=grid_shape,
            )
            session.add(campaign)
            session.commit()
            logger.info("Created campaign {} '{}'", campaign.id, name)
            return campaign.id
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def add_keyword(
        self,
        campaign_id: int,
        keyword: str,
        tags: Sequence[str] = (),
        is_primary: bool = False,
        volume: int = 0,
        difficulty: int = 0,
    ) -> int:
        session = self.session_factory()
        try:
            if session.get(Campaign, campaign_id) is None:
                raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
            row = CampaignKeyword(
                campaign_id=campaign_id,
                keyword=keyword.strip(),
                tags=list(tags),
                is_primary=is_primary,
                volume=volume,
                difficulty=difficulty,
            )
            session.add(row)
            session.commit()
            return row.id
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def active_campaign_ids(self) -> list[int]:
        session = self.session_factory()
        try:
            stmt = select(Campaign.id).where(Campaign.is_active.is_(True)).order_by(Campaign.id)
            return list(session.scalars(stmt))
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load_campaign(self, campaign_id: int) -> CampaignContext:
        """Campaign configuration and its tracked keywords.

        Raises
        ------
        CampaignNotFoundError
            If no campaign has this id.
        """
        session = self.session_factory()
        try:
            campaign = session.get(Campaign, campaign_id)
            if campaign is None:
                raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
            keywords = tuple(
                Keyword(
                    text=row.keyword,
                    tags=tuple(row.tags or ()),
                    is_primary=bool(row.is_primary),
                    volume=row.volume or 0,
                    difficulty=row.difficulty or 0,
                )
                for row in sorted(campaign.keywords, key=lambda r: r.id)
            )
            return CampaignContext(
                campaign_id=campaign.id,
                name=campaign.name,
                business_identity=campaign.business_name,
                center=GeoPoint(campaign.center_lat, campaign.center_lng),
                grid_size=campaign.grid_size or DEFAULT_GRID_SIZE,
                radius_miles=campaign.radius_miles or DEFAULT_RADIUS_MILES,
                shape=campaign.grid_shape or DEFAULT_GRID_SHAPE,
                keywords=keywords,
            )
        finally:
            session.close()

    def keyword_history(self, campaign_id: int) -> dict[str, tuple[RankHistoryPoint, ...]]:
        """Rank history per keyword, oldest point first."""
        session = self.session_factory()
        try:
            stmt = (
                select(KeywordRankHistory)
                .where(KeywordRankHistory.campaign_id == campaign_id)
                .order_by(KeywordRankHistory.keyword, KeywordRankHistory.run_timestamp)
            )
            history: dict[str, list[RankHistoryPoint]] = defaultdict(list)
            for row in session.scalars(stmt):
                history[row.keyword].append(
                    RankHistoryPoint(date=_as_utc(row.run_timestamp), rank=row.rank)
                )
            return {text: tuple(points) for text, points in history.items()}
        finally:
            session.close()

    def previous_ranks(self, campaign_id: int) -> dict[str, Optional[int]]:
        """Most recent recorded rank per keyword."""
        return previous_ranks_from_history(self.keyword_history(campaign_id))

    def latest_snapshot(self, campaign_id: int) -> Optional[RunSnapshot]:
        """The most recent committed run with its cells, or ``None``."""
        session = self.session_factory()
        try:
            stmt = (
                select(GridRunRecord)
                .where(GridRunRecord.campaign_id == campaign_id)
                .order_by(GridRunRecord.run_timestamp.desc())
                .limit(1)
            )
            record = session.scalars(stmt).first()
            if record is None:
                return None

            cells_by_keyword: dict[str, list[GridCell]] = defaultdict(list)
            for row in record.cells:
                cells_by_keyword[row.keyword].append(
                    GridCell(
                        id=row.cell_id,
                        point=GeoPoint(row.lat, row.lng),
                        rank=row.rank,
                        search_volume=row.search_volume or 0,
                        rank_change=row.rank_change or 0,
                        competitors=tuple(row.competitors or ()),
                    )
                )

            positions: dict[int, GeoPoint] = {}
            for cells in cells_by_keyword.values():
                for cell in cells:
                    positions.setdefault(cell.id, cell.point)

            run = GridRun(
                center=GeoPoint(record.center_lat, record.center_lng),
                grid_size=record.grid_size,
                radius_miles=record.radius_miles,
                run_timestamp=_as_utc(record.run_timestamp),
                shape=record.grid_shape or DEFAULT_GRID_SHAPE,
                cells=tuple(GridCell(id=i, point=p) for i, p in sorted(positions.items())),
            )
            return RunSnapshot(
                run_id=record.id,
                run=run,
                cells_by_keyword={
                    text: sorted(cells, key=lambda c: c.id)
                    for text, cells in cells_by_keyword.items()
                },
            )
        finally:
            session.close()

    def latest_run(self, campaign_id: int) -> Optional[GridRun]:
        snapshot = self.latest_snapshot(campaign_id)
        return snapshot.run if snapshot else None

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit_run(
        self,
        campaign_id: int,
        run: GridRun,
        aggregate: RunAggregate,
        observations: Iterable[RankObservation],
        alerts: Iterable[RankDropAlert] = (),
    ) -> int:
        """Persist a completed run atomically and return its run id.

        Committing the same run timestamp twice returns the existing run id
        without writing anything.
        """
        observations = list(observations)
        run_timestamp = _as_utc(run.run_timestamp)

        session = self.session_factory()
        try:
            if session.get(Campaign, campaign_id) is None:
                raise CampaignNotFoundError(f"Campaign {campaign_id} not found")

            existing = session.scalars(
                select(GridRunRecord).where(
                    GridRunRecord.campaign_id == campaign_id,
                    GridRunRecord.run_timestamp == run_timestamp,
                )
            ).first()
            if existing is not None:
                logger.info(
                    "Run {} for campaign {} already committed as id {}",
                    run_timestamp.isoformat(), campaign_id, existing.id,
                )
                return existing.id

            record = GridRunRecord(
                campaign_id=campaign_id,
                center_lat=run.center.latitude,
                center_lng=run.center.longitude,
                grid_size=run.grid_size,
                radius_miles=run.radius_miles,
                grid_shape=run.shape,
                run_timestamp=run_timestamp,
                cell_count=len(run.cells),
                keyword_count=len(aggregate.keywords),
                failed_lookups=sum(1 for o in observations if o.failed),
            )
            session.add(record)
            session.flush()

            for obs in observations:
                session.add(
                    GridCellRank(
                        run_id=record.id,
                        keyword=obs.keyword.text,
                        cell_id=obs.cell.id,
                        lat=obs.cell.point.latitude,
                        lng=obs.cell.point.longitude,
                        rank=obs.rank,
                        search_volume=obs.search_volume,
                        rank_change=obs.cell.rank_change,
                        competitors=list(obs.competitors),
                        error=obs.error,
                        latency_seconds=obs.latency_seconds,
                        date_checked=_as_utc(obs.captured_at),
                    )
                )

            for keyword_aggregate in aggregate.keywords:
                text = keyword_aggregate.keyword.text
                points = aggregate.history.get(text, ())
                if not points:
                    continue
                point = points[-1]
                session.add(
                    KeywordRankHistory(
                        campaign_id=campaign_id,
                        keyword=text,
                        run_timestamp=_as_utc(point.date),
                        rank=point.rank,
                    )
                )

            for alert in alerts:
                session.add(
                    Alert(
                        campaign_id=campaign_id,
                        alert_type="ranking_drop",
                        severity=alert.severity,
                        title=alert.title,
                        message=(
                            f"'{alert.keyword}' moved from {alert.previous_rank} "
                            f"to {alert.current_rank}"
                        ),
                        data={
                            "keyword": alert.keyword,
                            "previous_rank": alert.previous_rank,
                            "current_rank": alert.current_rank,
                            "change": alert.change,
                            "run_timestamp": run_timestamp.isoformat(),
                        },
                    )
                )

            session.commit()
            logger.success(
                "Committed run {} for campaign {}: {} observations, {} history points",
                record.id, campaign_id, len(observations), len(aggregate.keywords),
            )
            return record.id
        except Exception:
            session.rollback()
            logger.error("Commit of run {} for campaign {} rolled back", run_timestamp.isoformat(), campaign_id)
            raise
        finally:
            session.close()

    def record_alert(
        self,
        alert_type: str,
        title: str,
        message: str = "",
        severity: str = "info",
        data: Optional[dict] = None,
        campaign_id: Optional[int] = None,
    ) -> None:
        session = self.session_factory()
        try:
            session.add(
                Alert(
                    campaign_id=campaign_id,
                    alert_type=alert_type,
                    severity=severity,
                    title=title,
                    message=message,
                    data=data,
                )
            )
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def recent_alerts(self, campaign_id: Optional[int] = None, limit: int = 20) -> list[dict]:
        session = self.session_factory()
        try:
            stmt = select(Alert).order_by(Alert.id.desc()).limit(limit)
            if campaign_id is not None:
                stmt = stmt.where(Alert.campaign_id == campaign_id)
            return [
                {
                    "alert_type": a.alert_type,
                    "severity": a.severity,
                    "title": a.title,
                    "message": a.message,
                    "data": a.data,
                }
                for a in session.scalars(stmt)
            ]
        finally:
            session.close()
