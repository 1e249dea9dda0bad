"""Coins router.

Coin list and history go through the freshness coordinator; single-coin
lookup and trending gainers read the cache only.
"""

from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..services.coin_cache import CacheUnavailableError, CoinCacheStore
from ..services.config import config_service
from ..services.freshness import FetchOutcome, FreshnessCoordinator
from ..services.market_data import DEFAULT_TIMEOUT_SECONDS, CoinGeckoClient, ErrorKind

router = APIRouter()

RATE_LIMIT_SUGGESTION = (
    "Consider getting a free CoinGecko API key for higher rate limits: "
    "https://www.coingecko.com/en/api/pricing"
)
HISTORY_RATE_LIMIT_SUGGESTION = (
    "The chart will use simulated data. For real historical data, consider getting a CoinGecko API key."
)


class CoinResponse(BaseModel):
    """Schema for one coin snapshot."""
    coingecko_id: str
    symbol: str
    name: str
    price: float
    market_cap: float
    change_24h: float
    volume_24h: float
    rank: int
    image: str
    last_updated: datetime

    class Config:
        from_attributes = True


class CoinListResponse(BaseModel):
    """Envelope for the coin list, with provenance."""
    success: bool
    count: int = 0
    data: List[CoinResponse] = []
    source: str
    message: Optional[str] = None
    suggestion: Optional[str] = None
    error: Optional[str] = None


class CoinDetailResponse(BaseModel):
    """Envelope for a single coin."""
    success: bool
    data: CoinResponse


class TrendingResponse(BaseModel):
    """Envelope for trending gainers."""
    success: bool
    count: int
    data: List[CoinResponse]


class CandleResponse(BaseModel):
    """Synthesized candlestick for one history point."""
    x: str
    open: float
    high: float
    low: float
    close: float


class HistoryData(BaseModel):
    """Chart-ready history series."""
    labels: List[str]
    data: List[float]
    candlestickData: List[CandleResponse]
    interval: str
    days: int


class HistoryResponse(BaseModel):
    """Envelope for a coin's history."""
    success: bool
    data: HistoryData


class HistoryErrorResponse(BaseModel):
    """History failure; the consumer should simulate a series locally."""
    success: bool = False
    message: str
    error: Optional[str] = None
    fallback: bool = True
    suggestion: Optional[str] = None


def get_upstream_client(request: Request) -> CoinGeckoClient:
    """Dependency for the shared upstream client."""
    return request.app.state.upstream


def get_cache_store(request: Request) -> Optional[CoinCacheStore]:
    """Dependency for the cache store, None when persistence is unavailable."""
    return getattr(request.app.state, "cache_store", None)


def get_coordinator(
    upstream: CoinGeckoClient = Depends(get_upstream_client),
    cache: Optional[CoinCacheStore] = Depends(get_cache_store),
) -> FreshnessCoordinator:
    """Dependency building a coordinator for the current request."""
    # Outer bound sits above the client's own request timeout
    timeout = config_service.get("coingecko.timeout_seconds", DEFAULT_TIMEOUT_SECONDS) + 5
    return FreshnessCoordinator(upstream=upstream, cache=cache, upstream_timeout=timeout)


def _degraded_message(reason: ErrorKind) -> str:
    if reason == ErrorKind.RATE_LIMITED:
        return "Returned cached data due to API rate limit"
    return f"Returned cached data because the market data API is unavailable ({reason.value})"


def _coin_list_envelope(outcome: FetchOutcome) -> CoinListResponse:
    if outcome.is_failed:
        throttled = outcome.reason.is_throttled
        return CoinListResponse(
            success=False,
            source=outcome.source.value,
            message=(
                "API rate limit exceeded. Please try again in a few minutes or set up a CoinGecko API key."
                if throttled else "Error fetching cryptocurrency data"
            ),
            error=outcome.error,
            suggestion=RATE_LIMIT_SUGGESTION if throttled else None,
        )

    coins = [CoinResponse.model_validate(snapshot) for snapshot in outcome.data]
    return CoinListResponse(
        success=True,
        count=len(coins),
        data=coins,
        source=outcome.source.value,
        message=_degraded_message(outcome.reason) if outcome.is_degraded else None,
    )


@router.get("", response_model=CoinListResponse, response_model_exclude_none=True)
async def list_coins(
    limit: int = Query(50, ge=1, le=250),
    coordinator: FreshnessCoordinator = Depends(get_coordinator),
):
    """List top coins by market cap, from the live API or the cache."""
    outcome = await coordinator.get_top_coins(limit)
    envelope = _coin_list_envelope(outcome)
    return JSONResponse(
        status_code=outcome.http_status,
        content=envelope.model_dump(mode="json", exclude_none=True),
    )


@router.get("/trending/gainers", response_model=TrendingResponse)
async def trending_gainers(
    limit: int = Query(10, ge=1, le=250),
    cache: Optional[CoinCacheStore] = Depends(get_cache_store),
):
    """List cached coins with a positive 24h change, biggest gain first."""
    if cache is None:
        return TrendingResponse(success=True, count=0, data=[])

    try:
        gainers = await cache.get_top_gainers(limit)
    except CacheUnavailableError as e:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "Error fetching trending coins", "error": str(e)},
        )

    return TrendingResponse(
        success=True,
        count=len(gainers),
        data=[CoinResponse.model_validate(g) for g in gainers],
    )


@router.get("/{identifier}", response_model=CoinDetailResponse)
async def get_coin(
    identifier: str,
    cache: Optional[CoinCacheStore] = Depends(get_cache_store),
):
    """Get a cached coin by symbol or CoinGecko id."""
    if cache is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coin not found")

    try:
        coin = await cache.get_one(identifier)
    except CacheUnavailableError as e:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "Error fetching coin data", "error": str(e)},
        )

    if coin is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coin not found")

    return CoinDetailResponse(success=True, data=CoinResponse.model_validate(coin))


@router.get(
    "/{coin_id}/history",
    response_model=HistoryResponse,
    responses={429: {"model": HistoryErrorResponse}, 500: {"model": HistoryErrorResponse}},
)
async def get_coin_history(
    coin_id: str,
    days: int = Query(7, ge=1, le=365),
    interval: Optional[str] = Query(None),
    coordinator: FreshnessCoordinator = Depends(get_coordinator),
):
    """Get price history with synthesized candlesticks for a coin."""
    outcome = await coordinator.get_history(coin_id, days, interval)

    if outcome.is_failed:
        throttled = outcome.reason.is_throttled
        body = HistoryErrorResponse(
            message=(
                "Historical data API rate limit exceeded. Using simulated data instead."
                if throttled else "Error fetching historical data"
            ),
            error=outcome.error,
            suggestion=HISTORY_RATE_LIMIT_SUGGESTION if throttled else None,
        )
        return JSONResponse(status_code=outcome.http_status, content=body.model_dump(mode="json"))

    return HistoryResponse(success=True, data=HistoryData(**outcome.data.to_dict()))
