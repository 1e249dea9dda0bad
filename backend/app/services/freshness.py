"""Freshness coordinator.

Mediates between the upstream market data client and the optional snapshot
cache for a single request:

1. Try the upstream provider.
2. On success, write the snapshots to the cache (best effort) and return
   them as fresh.
3. On failure, serve the cached snapshots as a degraded response if there
   are any; otherwise fail with the upstream error kind.

The coordinator keeps no state between requests. Whether a cache exists is
decided by the caller through the optional `cache` handle.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from .coin_cache import CacheUnavailableError, CoinCacheStore
from .market_data import CoinGeckoClient, CoinSnapshot, ErrorKind, HistorySeries, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_UPSTREAM_TIMEOUT = 15.0


class OutcomeStatus(str, Enum):
    """Freshness of a coordinator result."""
    FRESH = "fresh"
    DEGRADED = "degraded"
    FAILED = "failed"


class DataSource(str, Enum):
    """Provenance reported to API consumers."""
    API_WITH_DB = "api_with_db"
    API_ONLY = "api_only"
    DB_CACHE = "db_cache"
    ERROR = "error"


@dataclass(frozen=True)
class FetchOutcome:
    """Tagged result of one coordinator operation.

    Build instances with fresh(), degraded() or failed().
    """
    status: OutcomeStatus
    source: DataSource
    data: Any = None
    reason: Optional[ErrorKind] = None
    error: Optional[str] = None

    @classmethod
    def fresh(cls, data: Any, cache_available: bool) -> "FetchOutcome":
        source = DataSource.API_WITH_DB if cache_available else DataSource.API_ONLY
        return cls(status=OutcomeStatus.FRESH, source=source, data=data)

    @classmethod
    def degraded(cls, data: Any, reason: ErrorKind, error: Optional[str] = None) -> "FetchOutcome":
        return cls(status=OutcomeStatus.DEGRADED, source=DataSource.DB_CACHE, data=data, reason=reason, error=error)

    @classmethod
    def failed(cls, reason: ErrorKind, error: Optional[str] = None) -> "FetchOutcome":
        return cls(status=OutcomeStatus.FAILED, source=DataSource.ERROR, reason=reason, error=error)

    @property
    def is_fresh(self) -> bool:
        return self.status == OutcomeStatus.FRESH

    @property
    def is_degraded(self) -> bool:
        return self.status == OutcomeStatus.DEGRADED

    @property
    def is_failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED

    @property
    def http_status(self) -> int:
        """Degraded responses are successes; only failures map to errors."""
        if self.is_failed:
            return self.reason.http_status
        return 200


class FreshnessCoordinator:
    """Per-request mediator between upstream and cache."""

    def __init__(
        self,
        upstream: CoinGeckoClient,
        cache: Optional[CoinCacheStore] = None,
        upstream_timeout: float = DEFAULT_UPSTREAM_TIMEOUT,
    ):
        """Initialize the coordinator.

        Args:
            upstream: Market data client
            cache: Snapshot store, or None when no persistence is available
            upstream_timeout: Hard bound on one upstream call, in seconds
        """
        self.upstream = upstream
        self.cache = cache
        self.upstream_timeout = upstream_timeout

    @property
    def cache_available(self) -> bool:
        return self.cache is not None

    async def _call_upstream(self, call: Callable[[], Awaitable[Any]]) -> Any:
        """Run one upstream call, normalizing every failure to UpstreamError."""
        try:
            return await asyncio.wait_for(call(), timeout=self.upstream_timeout)
        except UpstreamError:
            raise
        except asyncio.TimeoutError as e:
            raise UpstreamError(
                ErrorKind.TIMEOUT, f"Upstream call exceeded {self.upstream_timeout}s"
            ) from e
        except Exception as e:
            logger.exception("Unexpected upstream client failure")
            raise UpstreamError(ErrorKind.UPSTREAM_OTHER, str(e) or type(e).__name__) from e

    async def get_top_coins(self, limit: int) -> FetchOutcome:
        """Get the top coins by market cap, falling back to the cache."""
        try:
            snapshots: List[CoinSnapshot] = await self._call_upstream(
                lambda: self.upstream.fetch_top_coins(limit)
            )
        except UpstreamError as e:
            return await self._fallback(limit, e)

        if self.cache is not None:
            persisted = await self.cache.upsert_many(snapshots)
            if persisted < len(snapshots):
                logger.warning(f"Persisted {persisted}/{len(snapshots)} snapshots to cache")

        return FetchOutcome.fresh(snapshots, cache_available=self.cache_available)

    async def _fallback(self, limit: int, error: UpstreamError) -> FetchOutcome:
        if self.cache is None:
            logger.error(f"Upstream failed ({error.kind.value}) and no cache is configured")
            return FetchOutcome.failed(error.kind, error.detail)

        try:
            cached = await self.cache.get_all(limit)
        except CacheUnavailableError as cache_error:
            logger.error(f"Cache fallback also failed: {cache_error}")
            return FetchOutcome.failed(error.kind, error.detail)

        if not cached:
            logger.error(f"Upstream failed ({error.kind.value}) and the cache is empty")
            return FetchOutcome.failed(error.kind, error.detail)

        logger.info(f"Serving {len(cached)} cached coins after upstream failure ({error.kind.value})")
        return FetchOutcome.degraded(cached, reason=error.kind, error=error.detail)

    async def get_history(self, coin_id: str, days: int, interval: Optional[str] = None) -> FetchOutcome:
        """Get the price history of a coin. History is never cached."""
        try:
            series: HistorySeries = await self._call_upstream(
                lambda: self.upstream.fetch_history(coin_id, days, interval)
            )
        except UpstreamError as e:
            logger.error(f"History fetch for {coin_id} failed ({e.kind.value}): {e.detail}")
            return FetchOutcome.failed(e.kind, e.detail)

        return FetchOutcome.fresh(series, cache_available=False)
