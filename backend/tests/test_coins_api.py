"""Tests for the coins API."""

import random

import pytest

from app.main import app
from app.routers.coins import get_cache_store, get_upstream_client
from app.services.market_data import CoinGeckoClient, ErrorKind, OhlcSynthesizer, UpstreamError
from tests.factories import FakeResponse, FakeSession, make_snapshot


class TestListCoins:
    """GET /api/coins"""

    @pytest.mark.asyncio
    async def test_fresh_with_cache(self, client, fake_upstream, cache_store, sample_coins):
        fake_upstream.coins = sample_coins

        response = await client.get("/api/coins?limit=3")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["source"] == "api_with_db"
        assert data["count"] == 3
        assert [c["symbol"] for c in data["data"]] == ["BTC", "ETH", "SOL"]
        assert [c["rank"] for c in data["data"]] == [1, 2, 3]
        assert data["data"][0]["price"] == 50000.0
        assert "message" not in data

        cached = await cache_store.get_all(limit=10)
        assert len(cached) == 3

    @pytest.mark.asyncio
    async def test_fresh_without_cache(self, client, fake_upstream, sample_coins):
        fake_upstream.coins = sample_coins
        app.dependency_overrides[get_cache_store] = lambda: None

        response = await client.get("/api/coins?limit=3")

        assert response.status_code == 200
        assert response.json()["source"] == "api_only"

    @pytest.mark.asyncio
    async def test_default_limit(self, client, fake_upstream):
        await client.get("/api/coins")

        assert fake_upstream.calls == [("fetch_top_coins", 50)]

    @pytest.mark.asyncio
    async def test_timeout_serves_cached_btc(self, client, fake_upstream, cache_store):
        await cache_store.upsert(make_snapshot("bitcoin", "btc", rank=1, price=48000.0))
        fake_upstream.error = UpstreamError(ErrorKind.TIMEOUT, "timed out")

        response = await client.get("/api/coins")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["source"] == "db_cache"
        assert [c["coingecko_id"] for c in data["data"]] == ["bitcoin"]
        assert "cached data" in data["message"]

    @pytest.mark.asyncio
    async def test_rate_limited_with_cache_is_200(self, client, fake_upstream, cache_store, sample_coins):
        await cache_store.upsert_many(sample_coins)
        fake_upstream.error = UpstreamError(ErrorKind.RATE_LIMITED, "429")

        response = await client.get("/api/coins")

        assert response.status_code == 200
        data = response.json()
        assert data["source"] == "db_cache"
        assert data["message"] == "Returned cached data due to API rate limit"

    @pytest.mark.asyncio
    async def test_rate_limited_unreachable_cache_is_429(self, client, fake_upstream, unreachable_cache_store):
        fake_upstream.error = UpstreamError(ErrorKind.RATE_LIMITED, "CoinGecko returned 429", status_code=429)
        app.dependency_overrides[get_cache_store] = lambda: unreachable_cache_store

        response = await client.get("/api/coins")

        assert response.status_code == 429
        data = response.json()
        assert data["success"] is False
        assert data["source"] == "error"
        assert "rate limit" in data["message"]
        assert "API key" in data["suggestion"]

    @pytest.mark.asyncio
    async def test_unauthorized_no_cache_is_429(self, client, fake_upstream):
        fake_upstream.error = UpstreamError(ErrorKind.UNAUTHORIZED, "401")
        app.dependency_overrides[get_cache_store] = lambda: None

        response = await client.get("/api/coins")

        assert response.status_code == 429

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", [ErrorKind.TIMEOUT, ErrorKind.UPSTREAM_OTHER])
    async def test_other_failures_empty_cache_are_500(self, client, fake_upstream, kind):
        fake_upstream.error = UpstreamError(kind, "down")

        response = await client.get("/api/coins")

        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert data["source"] == "error"
        assert data["message"] == "Error fetching cryptocurrency data"
        assert data["error"] == "down"
        assert "suggestion" not in data

    @pytest.mark.asyncio
    async def test_invalid_limit(self, client):
        response = await client.get("/api/coins?limit=0")

        assert response.status_code == 422
        assert response.json()["success"] is False


class TestLookup:
    """GET /api/coins/{identifier}"""

    @pytest.mark.asyncio
    async def test_by_symbol(self, client, cache_store, sample_coins):
        await cache_store.upsert_many(sample_coins)

        response = await client.get("/api/coins/eth")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["data"]["coingecko_id"] == "ethereum"

    @pytest.mark.asyncio
    async def test_by_id(self, client, cache_store, sample_coins):
        await cache_store.upsert_many(sample_coins)

        response = await client.get("/api/coins/solana")

        assert response.status_code == 200
        assert response.json()["data"]["symbol"] == "SOL"

    @pytest.mark.asyncio
    async def test_lookup_never_calls_upstream(self, client, fake_upstream, cache_store, sample_coins):
        await cache_store.upsert_many(sample_coins)

        await client.get("/api/coins/btc")

        assert fake_upstream.calls == []

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        response = await client.get("/api/coins/dogecoin")

        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Coin not found"}

    @pytest.mark.asyncio
    async def test_not_found_without_cache(self, client):
        app.dependency_overrides[get_cache_store] = lambda: None

        response = await client.get("/api/coins/btc")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unreachable_cache(self, client, unreachable_cache_store):
        app.dependency_overrides[get_cache_store] = lambda: unreachable_cache_store

        response = await client.get("/api/coins/btc")

        assert response.status_code == 500
        assert response.json()["message"] == "Error fetching coin data"


class TestTrendingGainers:
    """GET /api/coins/trending/gainers"""

    @pytest.mark.asyncio
    async def test_gainers_sorted(self, client, fake_upstream, cache_store, sample_coins):
        await cache_store.upsert_many(sample_coins)

        response = await client.get("/api/coins/trending/gainers")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["count"] == 2
        assert [c["symbol"] for c in data["data"]] == ["SOL", "BTC"]
        assert fake_upstream.calls == []

    @pytest.mark.asyncio
    async def test_gainers_limit(self, client, cache_store, sample_coins):
        await cache_store.upsert_many(sample_coins)

        response = await client.get("/api/coins/trending/gainers?limit=1")

        assert [c["symbol"] for c in response.json()["data"]] == ["SOL"]

    @pytest.mark.asyncio
    async def test_gainers_without_cache(self, client):
        app.dependency_overrides[get_cache_store] = lambda: None

        response = await client.get("/api/coins/trending/gainers")

        assert response.status_code == 200
        assert response.json() == {"success": True, "count": 0, "data": []}


class TestHistory:
    """GET /api/coins/{coin_id}/history"""

    @pytest.mark.asyncio
    async def test_days_clamped_before_upstream_call(self, client):
        session = FakeSession(FakeResponse(payload={"prices": [
            [1748779200000, 50000.0],
            [1748782800000, 50250.0],
        ]}))
        upstream = CoinGeckoClient(session=session, synthesizer=OhlcSynthesizer(rng=random.Random(7)))
        app.dependency_overrides[get_upstream_client] = lambda: upstream

        response = await client.get("/api/coins/bitcoin/history?days=30")

        assert session.requests[0]["params"]["days"] == 7
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["days"] == 30
        assert data["interval"] == "hourly"
        assert data["data"] == [50000.0, 50250.0]
        assert len(data["labels"]) == 2
        assert len(data["candlestickData"]) == 2
        for candle in data["candlestickData"]:
            assert candle["low"] <= candle["open"] <= candle["high"]
            assert candle["low"] <= candle["close"] <= candle["high"]

    @pytest.mark.asyncio
    async def test_rate_limited_history_signals_fallback(self, client, fake_upstream):
        fake_upstream.error = UpstreamError(ErrorKind.RATE_LIMITED, "429")

        response = await client.get("/api/coins/bitcoin/history?days=7")

        assert response.status_code == 429
        data = response.json()
        assert data["success"] is False
        assert data["fallback"] is True
        assert "simulated" in data["message"]

    @pytest.mark.asyncio
    async def test_failed_history_signals_fallback(self, client, fake_upstream):
        fake_upstream.error = UpstreamError(ErrorKind.UPSTREAM_OTHER, "bad gateway")

        response = await client.get("/api/coins/bitcoin/history")

        assert response.status_code == 500
        data = response.json()
        assert data["fallback"] is True
        assert data["message"] == "Error fetching historical data"
        assert data["error"] == "bad gateway"


@pytest.mark.asyncio
async def test_unknown_route(client):
    response = await client.get("/api/nothing-here")

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Route not found"}


@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["endpoints"]["coins"] == "/api/coins"
