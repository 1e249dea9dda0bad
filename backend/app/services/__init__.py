# Business Logic Services

from .market_data import (
    CoinGeckoClient,
    CoinSnapshot,
    PricePoint,
    Candle,
    HistorySeries,
    OhlcSynthesizer,
    ErrorKind,
    UpstreamError,
)
from .coin_cache import (
    CoinCacheStore,
    CacheUnavailableError,
)
from .freshness import (
    FreshnessCoordinator,
    FetchOutcome,
    OutcomeStatus,
    DataSource,
)
from .config import (
    ConfigService,
    config_service,
    ConfigValidationException,
    ConfigValidationError,
)
from .logging_service import configure_logging

__all__ = [
    # Upstream
    "CoinGeckoClient",
    "CoinSnapshot",
    "PricePoint",
    "Candle",
    "HistorySeries",
    "OhlcSynthesizer",
    "ErrorKind",
    "UpstreamError",
    # Cache
    "CoinCacheStore",
    "CacheUnavailableError",
    # Freshness
    "FreshnessCoordinator",
    "FetchOutcome",
    "OutcomeStatus",
    "DataSource",
    # Config
    "ConfigService",
    "config_service",
    "ConfigValidationException",
    "ConfigValidationError",
    # Logging
    "configure_logging",
]
