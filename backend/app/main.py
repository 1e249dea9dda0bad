"""CryptoPulse FastAPI Application.

Serves top coins, trending gainers and price history from CoinGecko, with an
optional database cache used as a fallback when the provider is unavailable.
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .models import connect_database
from .routers import coins, health
from .services.coin_cache import CoinCacheStore
from .services.config import config_service, ConfigValidationException
from .services.logging_service import configure_logging
from .services.market_data import CoinGeckoClient

logger = logging.getLogger(__name__)


def load_config() -> None:
    """Load configuration; invalid configuration is fatal."""
    try:
        config_service.load_and_validate()
    except ConfigValidationException as e:
        print(f"FATAL: {e}")
        print("Server cannot start with invalid configuration.")
        sys.exit(1)
    except Exception as e:
        print(f"WARNING: Could not load config file: {e}")
        print("Using default configuration")


async def connect_cache(app: FastAPI) -> None:
    """Connect the cache database in the background.

    The API serves upstream data right away; the cache becomes the fallback
    once this succeeds.
    """
    connection = await connect_database(
        config_service.get("database.url"),
        timeout_seconds=config_service.get("database.connect_timeout_seconds", 3.0),
    )
    if connection is None:
        logger.warning("Running without database: coins will only be fetched from the API")
        return

    engine, session_maker = connection
    app.state.db_engine = engine
    app.state.cache_store = CoinCacheStore(
        session_maker,
        operation_timeout=config_service.get("database.operation_timeout_seconds", 3.0),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    app.state.upstream = CoinGeckoClient.from_config(config_service)
    app.state.cache_store = None
    app.state.db_engine = None
    if not config_service.get("coingecko.api_key"):
        logger.info("No CoinGecko API key configured, using the public rate limit")

    connect_task = None
    if config_service.get("database.enabled", True):
        connect_task = asyncio.create_task(connect_cache(app))
    else:
        logger.info("Database disabled by configuration, running in API-only mode")

    yield

    logger.info("Shutting down...")
    if connect_task is not None and not connect_task.done():
        connect_task.cancel()
        with suppress(asyncio.CancelledError):
            await connect_task

    await app.state.upstream.close()

    if app.state.db_engine is not None:
        await app.state.db_engine.dispose()
        logger.info("Database connection closed")


load_config()
configure_logging(
    config_service.get("logging.level", "INFO"),
    config_service.get("logging.format"),
)

app = FastAPI(
    title="CryptoPulse API",
    description="Cryptocurrency market data with cached fallback",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config_service.get("cors.allow_origins", []),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(coins.router, prefix="/api/coins", tags=["Coins"])


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors in the API's success/message envelope."""
    message = exc.detail
    if exc.status_code == 404 and message == "Not Found":
        message = "Route not found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Invalid request parameters",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Something went wrong!",
            "error": str(exc) if config_service.get("server.debug") else "Internal server error",
        },
    )


@app.get("/")
async def root():
    """Root endpoint listing the API entry points."""
    return {
        "message": "Welcome to CryptoPulse API",
        "version": "1.0.0",
        "endpoints": {
            "coins": "/api/coins",
            "health": "/api/health",
        },
        "docs": "/docs",
    }


def run() -> None:
    """Run the API with uvicorn using the configured host and port."""
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=config_service.get("server.host", "0.0.0.0"),
        port=config_service.get("server.port", 5000),
        reload=config_service.get("server.debug", False),
    )
