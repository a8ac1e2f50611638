"""
Rank Sampler
============

Orchestrates one sampling run: for every (grid cell, keyword) pair ask the
ranking provider for a rank, attach timing metadata, and degrade failures of
individual pairs to the unranked sentinel instead of failing the run.

Pairs are independent, so they are sampled concurrently on an asyncio event
loop behind a semaphore sized to the provider's concurrency limit. Each
provider call gets its own timeout and a short tenacity retry on transient
:class:`ProviderError` failures. Sync providers run on a thread pool of the
same size owned by the sampler.

Usage:
    sampler = RankSampler(provider, business_identity="Common Notary Apostille")
    observations = asyncio.run(sampler.sample_run(cells, keywords))
"""

from __future__ import annotations

import asyncio
import datetime
import inspect
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from rank_platform.config.settings import MAX_TRACKED_RANK, SAMPLER, UNRANKED_RANK
from rank_platform.exceptions import (
    ProviderConfigurationError,
    ProviderError,
    RunCancelledError,
)
from rank_platform.modules.grid_generator import GridCell
from rank_platform.modules.providers import RankLookup, RankProvider


@dataclass(frozen=True)
class Keyword:
    """A tracked search term. Owned by campaign configuration, never mutated here."""

    text: str
    tags: tuple[str, ...] = ()
    is_primary: bool = False
    volume: int = 0
    difficulty: int = 0


@dataclass(frozen=True)
class RankObservation:
    """Rank of one keyword at one grid cell for one run."""

    keyword: Keyword
    cell: GridCell
    rank: int
    captured_at: datetime.datetime
    latency_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def is_unranked(self) -> bool:
        return self.rank > MAX_TRACKED_RANK

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def search_volume(self) -> int:
        return self.cell.search_volume

    @property
    def competitors(self) -> tuple[str, ...]:
        return self.cell.competitors


def normalize_rank(value: Any) -> int:
    """Map a provider rank onto the 1..100 scale plus the unranked sentinel.

    ``None``, non-positive and anything deeper than ``MAX_TRACKED_RANK``
    become ``UNRANKED_RANK``.
    """
    if value is None:
        return UNRANKED_RANK
    try:
        rank = int(value)
    except (TypeError, ValueError):
        return UNRANKED_RANK
    if rank < 1 or rank > MAX_TRACKED_RANK:
        return UNRANKED_RANK
    return rank


def _coerce_lookup(result: Any) -> RankLookup:
    """Accept either a RankLookup or a plain dict from the provider."""
    if isinstance(result, RankLookup):
        return result
    if isinstance(result, dict):
        return RankLookup(
            rank=result.get("rank"),
            search_volume=int(result.get("search_volume", result.get("searchVolume", 0)) or 0),
            competitors=tuple(result.get("competitors") or ()),
        )
    raise ProviderError(f"Unexpected provider response type: {type(result).__name__}")


class RankSampler:
    """Concurrent, failure-tolerant rank lookups for one run.

    Parameters
    ----------
    provider : RankProvider
        Client owned by the caller. Passed in explicitly; the sampler never
        looks up credentials on its own.
    business_identity : str
        Name/identifier the provider matches in search results.
    max_concurrency : int, optional
        Upper bound on in-flight provider calls.
    call_timeout : float, optional
        Seconds allowed for each individual provider call.
    retry_attempts : int, optional
        Attempts per call for transient ``ProviderError`` failures.
    """

    def __init__(
        self,
        provider: RankProvider,
        business_identity: str,
        max_concurrency: Optional[int] = None,
        call_timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_wait_min: Optional[float] = None,
        retry_wait_max: Optional[float] = None,
    ) -> None:
        self.provider = provider
        self.business_identity = business_identity
        self.max_concurrency = SAMPLER["max_concurrency"] if max_concurrency is None else max_concurrency
        self.call_timeout = call_timeout if call_timeout is not None else SAMPLER["call_timeout_seconds"]
        self.retry_attempts = SAMPLER["retry_attempts"] if retry_attempts is None else retry_attempts
        self.retry_wait_min = SAMPLER["retry_wait_min"] if retry_wait_min is None else retry_wait_min
        self.retry_wait_max = SAMPLER["retry_wait_max"] if retry_wait_max is None else retry_wait_max

        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")
        if self.retry_attempts < 1:
            raise ValueError(f"retry_attempts must be >= 1, got {self.retry_attempts}")

        # created on first use, only sync providers need it
        self._executor: Optional[ThreadPoolExecutor] = None

    def close(self) -> None:
        """Shut down the worker threads used for sync providers."""
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    # ------------------------------------------------------------------
    # Provider plumbing
    # ------------------------------------------------------------------

    async def check_provider(self) -> None:
        """Fail fast when the provider cannot serve this run.

        Raises
        ------
        ProviderConfigurationError
            If the business identity is missing or the provider's own
            ``check_configuration`` rejects its setup.
        """
        if not self.business_identity:
            raise ProviderConfigurationError("No business identity configured for rank lookups")

        check = getattr(self.provider, "check_configuration", None)
        if check is None:
            return
        result = check()
        if inspect.isawaitable(result):
            await result

    async def _call_in_worker(self, lookup, cell: GridCell, keyword: Keyword) -> Any:
        """Run a sync lookup on the sampler's own pool of ``max_concurrency`` threads.

        A running thread cannot be interrupted, so when the call is cancelled
        (timeout or run cancellation) this waits for the thread to return
        before re-raising. The caller's concurrency slot stays held until then.
        """
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_concurrency, thread_name_prefix="rank-lookup"
            )
        loop = asyncio.get_running_loop()
        worker = loop.run_in_executor(
            self._executor, lookup, cell.point, keyword.text, self.business_identity
        )
        try:
            return await asyncio.shield(worker)
        except asyncio.CancelledError:
            await asyncio.gather(worker, return_exceptions=True)
            raise

    async def _call_provider(self, cell: GridCell, keyword: Keyword) -> RankLookup:
        lookup = self.provider.lookup_rank
        if inspect.iscoroutinefunction(lookup):
            result = await lookup(cell.point, keyword.text, self.business_identity)
        else:
            result = await self._call_in_worker(lookup, cell, keyword)
        if inspect.isawaitable(result):
            result = await result
        return _coerce_lookup(result)

    async def _lookup_with_retry(self, cell: GridCell, keyword: Keyword) -> RankLookup:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=1, min=self.retry_wait_min, max=self.retry_wait_max),
            retry=(
                retry_if_exception_type(ProviderError)
                & retry_if_not_exception_type(ProviderConfigurationError)
            ),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                lookup = await asyncio.wait_for(
                    self._call_provider(cell, keyword), timeout=self.call_timeout
                )
        return lookup

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    async def sample_rank(self, cell: GridCell, keyword: Keyword) -> RankObservation:
        """Look up one (cell, keyword) pair.

        Provider errors and timeouts produce an observation ranked
        ``UNRANKED_RANK`` with ``error`` set. Configuration errors propagate.
        """
        captured_at = datetime.datetime.now(datetime.timezone.utc)
        started = time.monotonic()
        error: Optional[str] = None

        try:
            lookup = await self._lookup_with_retry(cell, keyword)
        except ProviderConfigurationError:
            raise
        except asyncio.TimeoutError:
            error = f"timed out after {self.call_timeout}s"
        except Exception as exc:
            error = str(exc) or type(exc).__name__

        latency = time.monotonic() - started

        if error is not None:
            logger.warning(
                "Rank lookup failed for '{}' at cell {} ({}); recording as unranked",
                keyword.text, cell.id, error,
            )
            sampled = cell.with_sample(rank=UNRANKED_RANK)
            return RankObservation(
                keyword=keyword,
                cell=sampled,
                rank=UNRANKED_RANK,
                captured_at=captured_at,
                latency_seconds=latency,
                error=error,
            )

        rank = normalize_rank(lookup.rank)
        sampled = cell.with_sample(
            rank=rank,
            search_volume=max(0, int(lookup.search_volume or 0)),
            competitors=tuple(lookup.competitors),
        )
        return RankObservation(
            keyword=keyword,
            cell=sampled,
            rank=rank,
            captured_at=captured_at,
            latency_seconds=latency,
        )

    async def sample_run(
        self,
        cells: Iterable[GridCell],
        keywords: Iterable[Keyword],
        cancel_event: Any = None,
    ) -> list[RankObservation]:
        """Sample every (cell, keyword) pair of a run.

        Parameters
        ----------
        cells : iterable of GridCell
        keywords : iterable of Keyword
        cancel_event : threading.Event or asyncio.Event, optional
            When set, no further pairs start and the run raises
            :class:`RunCancelledError`.

        Returns
        -------
        list of RankObservation
            ``len(cells) * len(keywords)`` observations, cell-major.

        Raises
        ------
        ProviderConfigurationError
            Before any lookup when the provider is unusable.
        RunCancelledError
            If ``cancel_event`` was set before the batch completed.
        """
        cells = list(cells)
        keywords = list(keywords)

        await self.check_provider()

        total = len(cells) * len(keywords)
        logger.info(
            "Sampling {} pairs ({} cells x {} keywords, concurrency={})",
            total, len(cells), len(keywords), self.max_concurrency,
        )

        semaphore = asyncio.Semaphore(self.max_concurrency)

        def _cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        async def _bounded(cell: GridCell, keyword: Keyword) -> RankObservation:
            async with semaphore:
                if _cancelled():
                    raise RunCancelledError("Sampling run cancelled")
                observation = await self.sample_rank(cell, keyword)
            if _cancelled():
                raise RunCancelledError("Sampling run cancelled")
            return observation

        tasks = [
            asyncio.ensure_future(_bounded(cell, keyword))
            for cell in cells
            for keyword in keywords
        ]
        try:
            observations = list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        failed = sum(1 for o in observations if o.failed)
        logger.info("Sampling finished: {} observations, {} degraded to unranked", len(observations), failed)
        return observations
