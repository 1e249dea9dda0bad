"""Pytest configuration and fixtures."""

from typing import List

import pytest
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.models import create_session_maker, init_db
from app.routers.coins import get_cache_store, get_upstream_client
from app.services.coin_cache import CoinCacheStore
from app.services.market_data import CoinSnapshot
from tests.factories import FakeUpstream, make_snapshot


@pytest.fixture
def sample_coins() -> List[CoinSnapshot]:
    """BTC, ETH and SOL ranked by market cap."""
    return [
        make_snapshot("bitcoin", "btc", rank=1, price=50000.0, change_24h=2.5),
        make_snapshot("ethereum", "eth", rank=2, price=3000.0, change_24h=-1.2),
        make_snapshot("solana", "sol", rank=3, price=100.0, change_24h=7.8),
    ]


@pytest.fixture(scope="function")
async def session_maker(tmp_path):
    """Session factory on a fresh file-backed SQLite database."""
    engine, maker = create_session_maker(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")
    await init_db(engine)

    yield maker

    await engine.dispose()


@pytest.fixture
def cache_store(session_maker) -> CoinCacheStore:
    """Working cache store."""
    return CoinCacheStore(session_maker, operation_timeout=5.0)


@pytest.fixture
async def unreachable_cache_store(tmp_path):
    """Cache store whose database file cannot be opened."""
    engine, maker = create_session_maker(
        f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'cache.db'}"
    )

    yield CoinCacheStore(maker, operation_timeout=5.0)

    await engine.dispose()


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture(scope="function")
async def client(fake_upstream, cache_store):
    """Create test client wired to the fake upstream and the test cache.

    Tests can swap either dependency through app.dependency_overrides.
    """
    app.dependency_overrides[get_upstream_client] = lambda: fake_upstream
    app.dependency_overrides[get_cache_store] = lambda: cache_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
