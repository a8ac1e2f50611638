"""
Ranking provider contract.

A provider answers one question: where does ``business_identity`` rank for
``keyword`` when searched from ``point``? Real SERP/maps clients live outside
this package and plug in through :func:`register_provider`; the tracker only
ever talks to the :class:`RankProvider` protocol.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from loguru import logger

from rank_platform.exceptions import ProviderConfigurationError
from rank_platform.modules.geo_math import GeoPoint, distance_miles


@dataclass(frozen=True)
class RankLookup:
    """What a provider returns for one (point, keyword) lookup."""

    rank: Optional[int]
    search_volume: int = 0
    competitors: tuple[str, ...] = ()


@runtime_checkable
class RankProvider(Protocol):
    """Interchangeable ranking-data source.

    ``lookup_rank`` may be a plain function or a coroutine function. It may
    raise :class:`~rank_platform.exceptions.ProviderError` for a failed call.
    Providers can optionally define ``check_configuration()`` which raises
    :class:`~rank_platform.exceptions.ProviderConfigurationError` when no call
    could succeed.
    """

    def lookup_rank(self, point: GeoPoint, keyword: str, business_identity: str) -> RankLookup:
        ...


# ---------------------------------------------------------------------------
# Simulated provider
# ---------------------------------------------------------------------------

_COMPETITOR_POOL = (
    "Competitor A",
    "Competitor B",
    "Competitor C",
    "Competitor D",
    "Competitor E",
    "Competitor F",
)


def _stable_hash(value: str) -> int:
    """Process-independent integer hash of a string."""
    return int(hashlib.md5(value.encode("utf-8")).hexdigest()[:12], 16)


class SimulatedRankProvider:
    """Deterministic stand-in used for demos and local development.

    Ranks degrade with distance from ``center`` and vary per keyword and per
    point, but the same inputs always give the same answer.
    """

    def __init__(
        self,
        center: Optional[GeoPoint] = None,
        radius_miles: float = 1.0,
        max_rank: int = 20,
    ) -> None:
        self.center = center
        self.radius_miles = radius_miles if radius_miles > 0 else 1.0
        self.max_rank = max_rank

    def check_configuration(self) -> None:
        if self.max_rank < 1:
            raise ProviderConfigurationError("SimulatedRankProvider.max_rank must be >= 1")

    def lookup_rank(self, point: GeoPoint, keyword: str, business_identity: str) -> RankLookup:
        if not business_identity:
            raise ProviderConfigurationError("A business identity is required to look up ranks")

        keyword_hash = _stable_hash(f"{business_identity}:{keyword}")
        point_hash = _stable_hash(f"{keyword}:{point.latitude:.6f}:{point.longitude:.6f}")

        base_rank = 1 + keyword_hash % 5
        distance_factor = 0.0
        if self.center is not None:
            distance_factor = distance_miles(self.center, point) / self.radius_miles * 5
        jitter = point_hash % 4

        rank = max(1, min(self.max_rank, int(base_rank + distance_factor + jitter)))
        search_volume = max(0, 1000 - rank * 30 + keyword_hash % 200)

        count = 1 + point_hash % 3
        competitors = tuple(
            _COMPETITOR_POOL[(point_hash + i) % len(_COMPETITOR_POOL)] for i in range(count)
        )
        return RankLookup(rank=rank, search_volume=search_volume, competitors=competitors)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_PROVIDER_FACTORIES: dict[str, Callable[..., Any]] = {
    "simulated": SimulatedRankProvider,
}


def register_provider(name: str, factory: Callable[..., Any]) -> None:
    """Make a provider available to :func:`build_provider` under ``name``."""
    _PROVIDER_FACTORIES[name.lower()] = factory
    logger.debug("Registered rank provider '{}'", name)


def available_providers() -> list[str]:
    return sorted(_PROVIDER_FACTORIES)


def build_provider(name: str, **options: Any) -> RankProvider:
    """Instantiate a registered provider.

    Raises
    ------
    ProviderConfigurationError
        If no provider is registered under ``name``.
    """
    factory = _PROVIDER_FACTORIES.get((name or "").lower())
    if factory is None:
        raise ProviderConfigurationError(
            f"Unknown rank provider '{name}' (available: {', '.join(available_providers())})"
        )
    return factory(**options)
