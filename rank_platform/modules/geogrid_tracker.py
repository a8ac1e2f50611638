"""
Geo-Grid Tracker
================

Runs one geo-grid scan for a campaign end to end:

    load campaign -> generate grid -> sample ranks -> aggregate
    -> build trend connectors -> commit

The store is only written in the final commit step, so a cancelled or failed
scan leaves the campaign's previous summary and history untouched.

Usage:
    tracker = GeoGridTracker(CampaignStore(), sampler_factory=default_sampler_factory)
    result = tracker.scan(campaign_id=1)
"""

from __future__ import annotations

import asyncio
import datetime
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from loguru import logger

from rank_platform.config.settings import ALERTS, RANK_PROVIDER, RANK_PROVIDER_API_KEY
from rank_platform.database.store import CampaignContext, CampaignStore
from rank_platform.exceptions import RunCancelledError, SnapshotMismatchError
from rank_platform.modules import presentation
from rank_platform.modules.grid_generator import GridCell, GridRun
from rank_platform.modules.providers import build_provider
from rank_platform.modules.rank_aggregator import (
    RankDropAlert,
    RunAggregate,
    aggregate_run,
    annotate_rank_changes,
    cells_by_keyword,
    rank_drop_alerts,
)
from rank_platform.modules.rank_sampler import RankObservation, RankSampler
from rank_platform.modules.trend_connector import TrendConnector, build_run_connectors


@dataclass(frozen=True)
class ScanResult:
    campaign_id: int
    run_id: int
    run: GridRun
    observations: tuple[RankObservation, ...]
    aggregate: RunAggregate
    cells_by_keyword: dict[str, list[GridCell]] = field(default_factory=dict)
    connectors: dict[str, list[TrendConnector]] = field(default_factory=dict)
    alerts: tuple[RankDropAlert, ...] = ()

    @property
    def failed_lookups(self) -> int:
        return sum(1 for o in self.observations if o.failed)

    def dashboard(self) -> dict[str, Any]:
        return presentation.dashboard_payload(self.aggregate, self.cells_by_keyword, self.connectors)


def default_sampler_factory(campaign: CampaignContext) -> RankSampler:
    """Sampler backed by the configured provider, centered on the campaign."""
    options: dict[str, Any] = {}
    if RANK_PROVIDER == "simulated":
        options = {"center": campaign.center, "radius_miles": campaign.radius_miles}
    elif RANK_PROVIDER_API_KEY:
        options = {"api_key": RANK_PROVIDER_API_KEY}
    provider = build_provider(RANK_PROVIDER, **options)
    return RankSampler(provider, business_identity=campaign.business_identity)


class GeoGridTracker:
    """Coordinates a scan across sampler, aggregator and store.

    Parameters
    ----------
    store : CampaignStore
    sampler : RankSampler, optional
        Used for every scan when given.
    sampler_factory : callable, optional
        Builds a sampler per campaign when ``sampler`` is not given.
    drop_threshold : int, optional
        Positions a keyword must lose to raise a ranking-drop alert.
    """

    def __init__(
        self,
        store: CampaignStore,
        sampler: Optional[RankSampler] = None,
        sampler_factory: Optional[Callable[[CampaignContext], RankSampler]] = None,
        drop_threshold: Optional[int] = None,
    ):
        self.store = store
        self.sampler = sampler
        self.sampler_factory = sampler_factory or default_sampler_factory
        self.drop_threshold = (
            drop_threshold if drop_threshold is not None else ALERTS["ranking_drop_threshold"]
        )

    def _sampler_for(self, campaign: CampaignContext) -> RankSampler:
        if self.sampler is not None:
            return self.sampler
        return self.sampler_factory(campaign)

    async def run_scan(
        self,
        campaign_id: int,
        grid_size: Optional[int] = None,
        radius_miles: Optional[float] = None,
        shape: Optional[str] = None,
        run_timestamp: Optional[datetime.datetime] = None,
        cancel_event: Any = None,
    ) -> ScanResult:
        """Scan a campaign's grid and commit the result.

        Raises
        ------
        CampaignNotFoundError
        GridValidationError
        ProviderConfigurationError
            Before any provider call when the provider is unusable.
        RunCancelledError
            If ``cancel_event`` is set before the commit; nothing is stored.
        """
        campaign = self.store.load_campaign(campaign_id)
        if run_timestamp is not None and run_timestamp.tzinfo is None:
            run_timestamp = run_timestamp.replace(tzinfo=datetime.timezone.utc)
        run = GridRun.create(
            center=campaign.center,
            grid_size=grid_size if grid_size is not None else campaign.grid_size,
            radius_miles=radius_miles if radius_miles is not None else campaign.radius_miles,
            run_timestamp=run_timestamp,
            shape=shape or campaign.shape,
        )
        logger.info(
            "Starting geo-grid scan for campaign {} '{}': {} cells, {} keywords",
            campaign.campaign_id, campaign.name, len(run.cells), len(campaign.keywords),
        )

        previous = self.store.latest_snapshot(campaign_id)
        history = self.store.keyword_history(campaign_id)
        previous_ranks = {text: points[-1].rank for text, points in history.items() if points}

        sampler = self._sampler_for(campaign)
        try:
            observations = await sampler.sample_run(run.cells, campaign.keywords, cancel_event=cancel_event)
        finally:
            # per-campaign samplers from the factory are not reused
            if sampler is not self.sampler:
                sampler.close()

        comparable = (
            previous is not None
            and previous.run.is_comparable(run)
            and previous.run.run_timestamp < run.run_timestamp
        )
        if comparable:
            observations = annotate_rank_changes(observations, previous.cells_by_keyword)

        aggregate = aggregate_run(
            observations,
            previous_ranks=previous_ranks,
            history=history,
            run_timestamp=run.run_timestamp,
            keywords=campaign.keywords,
        )
        current_cells = cells_by_keyword(observations)

        connectors: dict[str, list[TrendConnector]] = {}
        if comparable:
            try:
                connectors = build_run_connectors(
                    previous.run, run, previous.cells_by_keyword, current_cells
                )
            except SnapshotMismatchError as exc:
                logger.warning("Skipping trend connectors for campaign {}: {}", campaign_id, exc)
        elif previous is not None:
            logger.info("Previous run for campaign {} used a different grid; no connectors", campaign_id)

        alerts = rank_drop_alerts(aggregate, self.drop_threshold)
        for alert in alerts:
            logger.warning(
                "Ranking drop for '{}': {} -> {}", alert.keyword, alert.previous_rank, alert.current_rank
            )

        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelledError(f"Scan for campaign {campaign_id} cancelled before commit")

        run_id = self.store.commit_run(campaign_id, run, aggregate, observations, alerts)

        result = ScanResult(
            campaign_id=campaign_id,
            run_id=run_id,
            run=run,
            observations=tuple(observations),
            aggregate=aggregate,
            cells_by_keyword=current_cells,
            connectors=connectors,
            alerts=tuple(alerts),
        )
        logger.success(
            "Scan complete for campaign {}: run {} | {} keywords | {} failed lookups",
            campaign_id, run_id, aggregate.summary.total_keywords, result.failed_lookups,
        )
        return result

    def scan(self, campaign_id: int, **kwargs) -> ScanResult:
        """Blocking wrapper around :meth:`run_scan`."""
        return asyncio.run(self.run_scan(campaign_id, **kwargs))

    def scan_all(self) -> dict[str, Any]:
        """Scan every active campaign; one campaign's failure does not stop the rest."""
        results: dict[str, Any] = {"scanned": [], "failed": []}
        for campaign_id in self.store.active_campaign_ids():
            try:
                result = self.scan(campaign_id)
                results["scanned"].append({
                    "campaign_id": campaign_id,
                    "run_id": result.run_id,
                    "summary": result.aggregate.summary.as_dict(),
                    "alerts": len(result.alerts),
                })
            except Exception as exc:
                logger.exception("Scan failed for campaign {}", campaign_id)
                results["failed"].append({"campaign_id": campaign_id, "error": str(exc)})
        return results
