"""
Rank Aggregator
===============

Rolls a run's per-cell observations up into per-keyword ranks, portfolio
summary metrics and the append-only rank history used for trend charts.

Policy:
    * A keyword's current rank is the best (minimum) rank seen on any grid
      cell in the run.
    * change = previous_rank - current_rank, positive means improvement.
      A keyword with no previous rank has change 0.
    * Ranks deeper than 100 are the unranked sentinel and never count toward
      a "top N" bucket.

Everything here is a pure function of its inputs and independent of the
order observations arrive in.
"""

from __future__ import annotations

import datetime
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

from loguru import logger

from rank_platform.config.settings import MAX_TRACKED_RANK, UNRANKED_RANK
from rank_platform.modules.grid_generator import GridCell
from rank_platform.modules.rank_sampler import Keyword, RankObservation, normalize_rank


@dataclass(frozen=True)
class RankHistoryPoint:
    date: datetime.datetime
    rank: int


@dataclass(frozen=True)
class SummaryMetrics:
    """Portfolio tiles. Always recomputed, never stored on its own."""

    total_keywords: int = 0
    keywords_up: int = 0
    keywords_no_change: int = 0
    keywords_down: int = 0
    keywords_top3: int = 0
    keywords_top10: int = 0
    keywords_top100: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "total_keywords": self.total_keywords,
            "keywords_up": self.keywords_up,
            "keywords_no_change": self.keywords_no_change,
            "keywords_down": self.keywords_down,
            "keywords_top3": self.keywords_top3,
            "keywords_top10": self.keywords_top10,
            "keywords_top100": self.keywords_top100,
        }


@dataclass(frozen=True)
class GridMetrics:
    """Spatial quality of one keyword's grid.

    afpr : average rank over cells on the first page (rank <= 10)
    tgrm : mean rank over all ranked cells
    tss  : percentage of ranked cells in the top 3
    """

    afpr: float = 0.0
    tgrm: float = 0.0
    tss: float = 0.0


@dataclass(frozen=True)
class KeywordAggregate:
    keyword: Keyword
    current_rank: int
    previous_rank: Optional[int]
    change: int
    best_rank: int
    cells_ranked: int
    cells_total: int
    grid_metrics: GridMetrics = field(default_factory=GridMetrics)
    search_volume: int = 0


@dataclass(frozen=True)
class RunAggregate:
    run_timestamp: datetime.datetime
    keywords: tuple[KeywordAggregate, ...]
    summary: SummaryMetrics
    history: Mapping[str, tuple[RankHistoryPoint, ...]]

    def keyword(self, text: str) -> Optional[KeywordAggregate]:
        for aggregate in self.keywords:
            if aggregate.keyword.text == text:
                return aggregate
        return None


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


def is_ranked(rank: Optional[int]) -> bool:
    return rank is not None and 1 <= rank <= MAX_TRACKED_RANK


def current_ranks(observations: Iterable[RankObservation]) -> dict[str, int]:
    """Best (minimum) rank per keyword text across all cells."""
    best: dict[str, int] = {}
    for obs in observations:
        rank = normalize_rank(obs.rank)
        text = obs.keyword.text
        if text not in best or rank < best[text]:
            best[text] = rank
    return best


def rank_change(previous: Optional[int], current: int) -> int:
    """``previous - current``; 0 when there is no previous observation."""
    if previous is None:
        return 0
    return normalize_rank(previous) - normalize_rank(current)


def compute_summary(
    current: Mapping[str, int],
    previous: Mapping[str, Optional[int]],
) -> SummaryMetrics:
    """Summary tiles for the keywords in ``current``.

    Keywords missing from ``previous`` count as "no change".
    """
    up = down = same = 0
    top3 = top10 = top100 = 0

    for text, rank in current.items():
        change = rank_change(previous.get(text), rank)
        if change > 0:
            up += 1
        elif change < 0:
            down += 1
        else:
            same += 1

        if is_ranked(rank):
            top100 += 1
            if rank <= 10:
                top10 += 1
            if rank <= 3:
                top3 += 1

    return SummaryMetrics(
        total_keywords=len(current),
        keywords_up=up,
        keywords_no_change=same,
        keywords_down=down,
        keywords_top3=top3,
        keywords_top10=top10,
        keywords_top100=top100,
    )


def grid_metrics(ranks: Iterable[int]) -> GridMetrics:
    """AFPR / TGRM / TSS over one keyword's cell ranks."""
    ranked = [r for r in ranks if is_ranked(r)]
    if not ranked:
        return GridMetrics()

    first_page = [r for r in ranked if r <= 10]
    afpr = sum(first_page) / len(first_page) if first_page else 0.0
    tgrm = sum(ranked) / len(ranked)
    tss = sum(1 for r in ranked if r <= 3) / len(ranked) * 100
    return GridMetrics(afpr=round(afpr, 2), tgrm=round(tgrm, 2), tss=round(tss, 2))


def append_history(
    history: Sequence[RankHistoryPoint],
    run_timestamp: datetime.datetime,
    rank: int,
) -> tuple[RankHistoryPoint, ...]:
    """Return ``history`` with one point for this run appended.

    Appending the same run timestamp again is a no-op so a restarted commit
    does not duplicate points.

    Raises
    ------
    ValueError
        If ``run_timestamp`` is older than the last recorded point.
    """
    points = tuple(history)
    if points:
        last = points[-1]
        if last.date == run_timestamp:
            return points
        if run_timestamp < last.date:
            raise ValueError(
                f"Run timestamp {run_timestamp.isoformat()} precedes the last history "
                f"point {last.date.isoformat()}; history is append-only"
            )
    return points + (RankHistoryPoint(date=run_timestamp, rank=normalize_rank(rank)),)


def cells_by_keyword(observations: Iterable[RankObservation]) -> dict[str, list[GridCell]]:
    """Sampled cells per keyword text, ordered by cell id."""
    grouped: dict[str, list[GridCell]] = defaultdict(list)
    for obs in observations:
        grouped[obs.keyword.text].append(obs.cell)
    return {text: sorted(cells, key=lambda c: c.id) for text, cells in grouped.items()}


def annotate_rank_changes(
    observations: Iterable[RankObservation],
    previous_cells: Mapping[str, Sequence[GridCell]],
) -> list[RankObservation]:
    """Fill each observation cell's ``rank_change`` from the previous snapshot.

    Cells are matched on (keyword text, cell id). Cells without a previous
    counterpart keep ``rank_change == 0``. Returns new observations; the
    inputs are not modified.
    """
    previous_lookup: dict[tuple[str, int], GridCell] = {
        (text, cell.id): cell
        for text, cells in previous_cells.items()
        for cell in cells
    }

    annotated: list[RankObservation] = []
    for obs in observations:
        prev = previous_lookup.get((obs.keyword.text, obs.cell.id))
        change = rank_change(prev.rank if prev is not None else None, obs.rank)
        cell = obs.cell.with_sample(
            rank=obs.rank,
            search_volume=obs.cell.search_volume,
            competitors=obs.cell.competitors,
            rank_change=change,
        )
        annotated.append(
            RankObservation(
                keyword=obs.keyword,
                cell=cell,
                rank=obs.rank,
                captured_at=obs.captured_at,
                latency_seconds=obs.latency_seconds,
                error=obs.error,
            )
        )
    return annotated


# ---------------------------------------------------------------------------
# Run aggregation
# ---------------------------------------------------------------------------


def aggregate_run(
    observations: Iterable[RankObservation],
    previous_ranks: Mapping[str, Optional[int]],
    history: Mapping[str, Sequence[RankHistoryPoint]],
    run_timestamp: datetime.datetime,
    keywords: Optional[Iterable[Keyword]] = None,
) -> RunAggregate:
    """Aggregate one completed run.

    Parameters
    ----------
    observations : iterable of RankObservation
        Every observation of the run, in any order.
    previous_ranks : mapping of keyword text to rank
        The preceding run's per-keyword rank. Missing keywords are new.
    history : mapping of keyword text to history points
        Existing history; not modified.
    run_timestamp : datetime
        Timestamp used for the appended history point.
    keywords : iterable of Keyword, optional
        Tracked keywords. A keyword with no observations is recorded as
        unranked. Defaults to the keywords seen in ``observations``.

    Returns
    -------
    RunAggregate
    """
    observations = list(observations)

    tracked: dict[str, Keyword] = {}
    for kw in keywords or ():
        tracked[kw.text] = kw
    for obs in observations:
        tracked.setdefault(obs.keyword.text, obs.keyword)

    best = current_ranks(observations)
    current = {text: best.get(text, UNRANKED_RANK) for text in tracked}

    ranks_by_keyword: dict[str, list[int]] = defaultdict(list)
    volume_by_keyword: dict[str, int] = defaultdict(int)
    for obs in observations:
        ranks_by_keyword[obs.keyword.text].append(normalize_rank(obs.rank))
        volume_by_keyword[obs.keyword.text] = max(
            volume_by_keyword[obs.keyword.text], obs.search_volume
        )

    new_history: dict[str, tuple[RankHistoryPoint, ...]] = {
        text: tuple(points) for text, points in history.items()
    }

    aggregates: list[KeywordAggregate] = []
    for text in sorted(tracked):
        kw = tracked[text]
        rank = current[text]
        previous = previous_ranks.get(text)
        points = append_history(new_history.get(text, ()), run_timestamp, rank)
        new_history[text] = points

        cell_ranks = ranks_by_keyword.get(text, [])
        aggregates.append(
            KeywordAggregate(
                keyword=kw,
                current_rank=rank,
                previous_rank=normalize_rank(previous) if previous is not None else None,
                change=rank_change(previous, rank),
                best_rank=min(p.rank for p in points),
                cells_ranked=sum(1 for r in cell_ranks if is_ranked(r)),
                cells_total=len(cell_ranks),
                grid_metrics=grid_metrics(cell_ranks),
                search_volume=volume_by_keyword.get(text, 0) or kw.volume,
            )
        )

    summary = compute_summary(current, previous_ranks)
    logger.info(
        "Aggregated run {}: {} keywords, up={}, down={}, top10={}",
        run_timestamp.isoformat(), summary.total_keywords,
        summary.keywords_up, summary.keywords_down, summary.keywords_top10,
    )
    return RunAggregate(
        run_timestamp=run_timestamp,
        keywords=tuple(aggregates),
        summary=summary,
        history=new_history,
    )


@dataclass(frozen=True)
class RankDropAlert:
    keyword: str
    previous_rank: int
    current_rank: int
    change: int

    @property
    def severity(self) -> str:
        return "critical" if self.current_rank > MAX_TRACKED_RANK else "warning"

    @property
    def title(self) -> str:
        return f"Ranking drop: '{self.keyword}' fell {abs(self.change)} positions"


def rank_drop_alerts(aggregate: RunAggregate, threshold: int) -> list[RankDropAlert]:
    """Keywords whose rank worsened by at least ``threshold`` positions."""
    alerts = []
    for a in aggregate.keywords:
        if a.previous_rank is not None and a.change <= -threshold:
            alerts.append(
                RankDropAlert(
                    keyword=a.keyword.text,
                    previous_rank=a.previous_rank,
                    current_rank=a.current_rank,
                    change=a.change,
                )
            )
    return alerts


def previous_ranks_from_history(
    history: Mapping[str, Sequence[RankHistoryPoint]],
) -> dict[str, Optional[int]]:
    """Last recorded rank per keyword."""
    return {text: (points[-1].rank if points else None) for text, points in history.items()}


def aggregate_to_dict(aggregate: RunAggregate) -> dict[str, Any]:
    """Plain-data form of a run aggregate, for task results and logs."""
    return {
        "run_timestamp": aggregate.run_timestamp.isoformat(),
        "summary": aggregate.summary.as_dict(),
        "keywords": {
            a.keyword.text: {
                "current_rank": a.current_rank,
                "previous_rank": a.previous_rank,
                "change": a.change,
                "best_rank": a.best_rank,
            }
            for a in aggregate.keywords
        },
    }
