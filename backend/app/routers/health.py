"""Health check router."""

from datetime import datetime, timezone
from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    cache_store = getattr(request.app.state, "cache_store", None)
    cache_ok = cache_store is not None and await cache_store.ping()
    return {
        "success": True,
        "status": "ok",
        "service": "cryptopulse",
        "version": "1.0.0",
        "message": "CryptoPulse API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cache": "connected" if cache_ok else "unavailable",
    }
