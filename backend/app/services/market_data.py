"""CoinGecko market data client.

Fetches the top coins by market capitalization and the price history of a
single coin, and normalizes the provider payloads into CoinSnapshot and
HistorySeries records. Every request is bounded by a timeout, and failures
are classified into an ErrorKind so callers can decide between a throttled
notice and a server fault without inspecting provider details.
"""

import asyncio
import logging
import math
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

logger = logging.getLogger(__name__)

COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"
API_KEY_HEADER = "x-cg-demo-api-key"

# Free tier friendly defaults
DEFAULT_PAGE_SIZE_CAP = 20
DEFAULT_MAX_HISTORY_DAYS = 7
DEFAULT_TIMEOUT_SECONDS = 10.0


class ErrorKind(str, Enum):
    """Classification of upstream failures."""
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    TIMEOUT = "timeout"
    UPSTREAM_OTHER = "upstream_other"

    @property
    def is_throttled(self) -> bool:
        """Throttled failures are shown to users as a non-fatal notice."""
        return self in (ErrorKind.RATE_LIMITED, ErrorKind.UNAUTHORIZED)

    @property
    def http_status(self) -> int:
        return 429 if self.is_throttled else 500


class UpstreamError(Exception):
    """Raised when the market data provider cannot deliver a usable response."""

    def __init__(self, kind: ErrorKind, detail: str, status_code: Optional[int] = None):
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)

    @classmethod
    def from_status(cls, status_code: int, body: str = "") -> "UpstreamError":
        """Classify a non-200 provider response."""
        if status_code == 429:
            kind = ErrorKind.RATE_LIMITED
        elif status_code in (401, 403):
            kind = ErrorKind.UNAUTHORIZED
        else:
            kind = ErrorKind.UPSTREAM_OTHER

        detail = f"CoinGecko returned {status_code}"
        if body:
            detail = f"{detail}: {body[:200]}"
        return cls(kind, detail, status_code=status_code)


def _number(value: Any, default: float = 0.0) -> float:
    """Coerce an optional provider number, defaulting on null or garbage."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class CoinSnapshot:
    """One coin's market state as of a fetch."""
    coingecko_id: str
    symbol: str
    name: str
    price: float = 0.0
    market_cap: float = 0.0
    change_24h: float = 0.0
    volume_24h: float = 0.0
    rank: int = 0
    image: str = ""
    last_updated: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        self.symbol = (self.symbol or "").strip().upper()
        self.name = (self.name or "").strip()
        self.price = max(0.0, self.price)
        self.market_cap = max(0.0, self.market_cap)
        self.volume_24h = max(0.0, self.volume_24h)
        self.rank = max(0, int(self.rank))

    @classmethod
    def from_market_payload(cls, item: Dict[str, Any], fetched_at: Optional[datetime] = None) -> "CoinSnapshot":
        """Build a snapshot from one entry of /coins/markets."""
        return cls(
            coingecko_id=str(item["id"]),
            symbol=str(item.get("symbol") or ""),
            name=str(item.get("name") or ""),
            price=_number(item.get("current_price")),
            market_cap=_number(item.get("market_cap")),
            change_24h=_number(item.get("price_change_percentage_24h")),
            volume_24h=_number(item.get("total_volume")),
            rank=int(_number(item.get("market_cap_rank"))),
            image=str(item.get("image") or ""),
            last_updated=fetched_at or datetime.utcnow(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coingecko_id": self.coingecko_id,
            "symbol": self.symbol,
            "name": self.name,
            "price": self.price,
            "market_cap": self.market_cap,
            "change_24h": self.change_24h,
            "volume_24h": self.volume_24h,
            "rank": self.rank,
            "image": self.image,
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass
class PricePoint:
    """One observation in a price history."""
    timestamp: datetime
    label: str
    price: float


@dataclass
class Candle:
    """Candlestick values for one history point."""
    x: str
    open: float
    high: float
    low: float
    close: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": self.x,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
        }


@dataclass
class HistorySeries:
    """Price history of one coin, ready for charting."""
    coin_id: str
    days: int  # as requested by the caller
    provider_days: int  # as sent upstream, after clamping
    interval: str
    points: List[PricePoint] = field(default_factory=list)
    candles: List[Candle] = field(default_factory=list)

    @property
    def labels(self) -> List[str]:
        return [p.label for p in self.points]

    @property
    def prices(self) -> List[float]:
        return [p.price for p in self.points]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "labels": self.labels,
            "data": self.prices,
            "candlestickData": [c.to_dict() for c in self.candles],
            "interval": self.interval,
            "days": self.days,
        }


class OhlcSynthesizer:
    """Synthesizes open/high/low/close values around a single price.

    The free CoinGecko API only returns one price per point, so candles are
    derived from it with bounded random volatility. Pass a seeded
    random.Random for reproducible output.
    """

    def __init__(self, rng: Optional[random.Random] = None, volatility: float = 0.02):
        self.rng = rng or random.Random()
        self.volatility = volatility

    def candle(self, label: str, price: float) -> Candle:
        spread = price * self.volatility
        open_ = price + (self.rng.random() - 0.5) * spread * 0.5
        close = price + (self.rng.random() - 0.5) * spread * 0.5
        high = max(open_, close, price) + self.rng.random() * spread * 0.3
        low = min(open_, close, price) - self.rng.random() * spread * 0.3

        # Clamping is monotonic, so low <= open/close <= high still holds
        return Candle(
            x=label,
            open=max(0.0, open_),
            high=max(0.0, high),
            low=max(0.0, low),
            close=max(0.0, close),
        )


def select_interval(days: int) -> str:
    """Pick point granularity from the requested span."""
    if days <= 1:
        return "minutely"
    if days <= 90:
        return "hourly"
    return "daily"


def format_label(timestamp: datetime, interval: str) -> str:
    """Format a chart label for a point at the given granularity."""
    if interval == "minutely":
        return timestamp.strftime("%H:%M")
    if interval == "hourly":
        return timestamp.strftime("%m/%d/%Y %H:%M")
    return timestamp.strftime("%m/%d/%Y")


class CoinGeckoClient:
    """Async client for the CoinGecko v3 REST API."""

    def __init__(
        self,
        base_url: str = COINGECKO_BASE_URL,
        api_key: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        page_size_cap: int = DEFAULT_PAGE_SIZE_CAP,
        max_history_days: int = DEFAULT_MAX_HISTORY_DAYS,
        vs_currency: str = "usd",
        session: Optional[aiohttp.ClientSession] = None,
        synthesizer: Optional[OhlcSynthesizer] = None,
    ):
        """Initialize the client.

        Args:
            base_url: CoinGecko API root
            api_key: Optional demo API key, raises the provider's rate limit
            timeout_seconds: Total timeout applied to every request
            page_size_cap: Maximum coins requested per call
            max_history_days: Maximum history span requested per call
            vs_currency: Quote currency
            session: Pre-built HTTP session, mostly for tests
            synthesizer: OHLC synthesizer, seedable for tests
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key or None
        self.timeout_seconds = timeout_seconds
        self.page_size_cap = page_size_cap
        self.max_history_days = max_history_days
        self.vs_currency = vs_currency
        self.synthesizer = synthesizer or OhlcSynthesizer()
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config) -> "CoinGeckoClient":
        """Build a client from a ConfigService."""
        return cls(
            base_url=config.get("coingecko.base_url", COINGECKO_BASE_URL),
            api_key=config.get("coingecko.api_key"),
            timeout_seconds=config.get("coingecko.timeout_seconds", DEFAULT_TIMEOUT_SECONDS),
            page_size_cap=config.get("coingecko.page_size_cap", DEFAULT_PAGE_SIZE_CAP),
            max_history_days=config.get("coingecko.max_history_days", DEFAULT_MAX_HISTORY_DAYS),
            vs_currency=config.get("coingecko.vs_currency", "usd"),
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers[API_KEY_HEADER] = self.api_key
        return headers

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        """Issue a GET request and decode the JSON body.

        Raises:
            UpstreamError: classified failure
        """
        url = f"{self.base_url}{path}"
        session = self._get_session()
        try:
            async with session.get(url, params=params, headers=self._headers(), timeout=self._timeout) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise UpstreamError.from_status(resp.status, body)
                return await resp.json(content_type=None)
        except UpstreamError as e:
            logger.warning(f"CoinGecko request to {path} failed: {e.detail}")
            raise
        except asyncio.TimeoutError as e:
            logger.warning(f"CoinGecko request to {path} timed out after {self.timeout_seconds}s")
            raise UpstreamError(
                ErrorKind.TIMEOUT, f"CoinGecko request timed out after {self.timeout_seconds}s"
            ) from e
        except (aiohttp.ClientError, ValueError) as e:
            logger.error(f"CoinGecko request to {path} failed: {e}")
            raise UpstreamError(ErrorKind.UPSTREAM_OTHER, str(e) or type(e).__name__) from e

    async def fetch_top_coins(self, limit: int) -> List[CoinSnapshot]:
        """Fetch up to `limit` coins ordered by descending market cap.

        The request size is capped at page_size_cap whatever the caller asks
        for, so the provider never rejects the batch.
        """
        per_page = min(max(1, limit), self.page_size_cap)
        params = {
            "vs_currency": self.vs_currency,
            "order": "market_cap_desc",
            "per_page": per_page,
            "page": 1,
            "sparkline": "false",
            "price_change_percentage": "24h",
        }
        payload = await self._get_json("/coins/markets", params)
        if not isinstance(payload, list):
            raise UpstreamError(ErrorKind.UPSTREAM_OTHER, "Unexpected /coins/markets payload")

        fetched_at = datetime.utcnow()
        snapshots: List[CoinSnapshot] = []
        seen = set()
        for item in payload:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            if item["id"] in seen:
                continue
            seen.add(item["id"])
            snapshots.append(CoinSnapshot.from_market_payload(item, fetched_at))
            if len(snapshots) >= per_page:
                break

        logger.debug(f"Fetched {len(snapshots)} coins from CoinGecko (requested {limit})")
        return snapshots

    async def fetch_history(self, coin_id: str, days: int, interval: Optional[str] = None) -> HistorySeries:
        """Fetch the price history of one coin.

        `days` is clamped to max_history_days before the call. Granularity is
        derived from the requested span; `interval` is only a caller hint and
        is logged when it disagrees.
        """
        provider_days = min(max(1, days), self.max_history_days)
        granularity = select_interval(days)
        if interval and interval != granularity:
            logger.debug(f"Ignoring interval hint {interval!r} for {days} days, using {granularity}")

        params = {
            "vs_currency": self.vs_currency,
            "days": provider_days,
            "interval": granularity,
        }
        payload = await self._get_json(f"/coins/{quote(coin_id, safe='')}/market_chart", params)
        if not isinstance(payload, dict):
            raise UpstreamError(ErrorKind.UPSTREAM_OTHER, "Unexpected market_chart payload")

        series = HistorySeries(
            coin_id=coin_id,
            days=days,
            provider_days=provider_days,
            interval=granularity,
        )
        for pair in payload.get("prices") or []:
            try:
                timestamp_ms, price = pair[0], float(pair[1])
                timestamp = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
            except (TypeError, ValueError, IndexError, OverflowError, OSError):
                continue
            if not math.isfinite(price):
                continue
            price = max(0.0, price)
            label = format_label(timestamp, granularity)
            series.points.append(PricePoint(timestamp=timestamp, label=label, price=price))
            series.candles.append(self.synthesizer.candle(label, price))

        return series
