"""
Tests for the HTTP API with an injected container.
"""

import pytest
from fastapi.testclient import TestClient

from marketlens.api import routes
from marketlens.api.routes import create_api_app
from marketlens.cache import InMemoryStore
from marketlens.config import Settings
from marketlens.container import AppContainer
from marketlens.exceptions import NotFoundError, ProviderError


@pytest.fixture
def container(defillama, birdeye):
    return AppContainer(
        settings=Settings(_env_file=None),
        store=InMemoryStore(),
        defillama=defillama,
        birdeye=birdeye,
    )


@pytest.fixture
def client(container):
    with TestClient(create_api_app(container)) as c:
        yield c


class TestLifecycle:
    def test_providers_started_and_closed(self, container, defillama, birdeye):
        with TestClient(create_api_app(container)) as c:
            assert c.get("/health").status_code == 200
            defillama.initialize.assert_awaited_once()
            birdeye.initialize.assert_awaited_once()
        defillama.close.assert_awaited_once()
        birdeye.close.assert_awaited_once()

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["store"]["backend"] == "memory"
        assert "X-Response-Time" in response.headers


class TestDefiRoutes:
    def test_overview(self, client, defillama):
        defillama.fetch_protocols.return_value = [
            {"slug": "jupiter", "name": "Jupiter", "chains": ["Solana"], "chainTvls": {"Solana": 2e9}},
        ]
        defillama.fetch_historical_chain_tvl.return_value = [{"date": 1704067200, "tvl": 5e9}]
        defillama.fetch_chain_fees.return_value = {"total24h": 100}

        response = client.get("/api/defi")

        assert response.status_code == 200
        body = response.json()
        assert body["numberOfProtocols"] == 1
        assert body["inflows"]["totalFees_1d"] == 100

    def test_protocol_resolution(self, client, defillama):
        defillama.fetch_protocol.return_value = {"slug": "raydium", "name": "Raydium"}
        defillama.fetch_fees.return_value = None

        response = client.get("/api/defi/raydium-v3")

        assert response.status_code == 200
        body = response.json()
        assert body["resolvedSlug"] == "raydium"
        assert body["wasResolved"] is True
        assert body["protocol"]["name"] == "Raydium"
        defillama.fetch_protocol.assert_awaited_with("raydium-v3")

    def test_protocol_not_found(self, client, defillama):
        defillama.fetch_protocol.side_effect = NotFoundError("missing", "defillama", 404)
        assert client.get("/api/defi/nope").status_code == 404


class TestCryptoRoutes:
    def test_markets(self, client, birdeye):
        birdeye.fetch_token_list.return_value = [{"address": "JUPy", "symbol": "jup", "price": 0.85}]

        response = client.get("/api/crypto/markets", params={"limit": 10})

        assert response.status_code == 200
        assert response.json()["tokens"][0]["symbol"] == "JUP"
        birdeye.fetch_token_list.assert_awaited_once_with(10, 0)

    def test_markets_validates_limit(self, client):
        assert client.get("/api/crypto/markets", params={"limit": 0}).status_code == 422

    def test_token_not_found(self, client, birdeye):
        birdeye.fetch_token_overview.side_effect = NotFoundError("missing", "birdeye", 404)
        assert client.get("/api/crypto/token/nope").status_code == 404

    def test_price_history_bad_days(self, client):
        response = client.get("/api/crypto/price-history", params={"address": "JUPy", "days": "14"})
        assert response.status_code == 400

    def test_price_history_upstream_error(self, client, birdeye):
        birdeye.fetch_ohlcv.side_effect = ProviderError("API error: 500", "birdeye", 500)

        response = client.get("/api/crypto/price-history", params={"address": "JUPy", "days": "7"})

        assert response.status_code == 502
        assert response.json()["provider"] == "birdeye"

    def test_trending_fallback(self, client, birdeye):
        birdeye.fetch_trending.side_effect = ProviderError("down", "birdeye")

        response = client.get("/api/crypto/trending")

        assert response.status_code == 200
        assert response.json() == {"tokens": []}

    def test_newly_listed(self, client, birdeye):
        birdeye.fetch_token_list.return_value = [{"address": "NEW1", "symbol": "new"}]

        response = client.get("/api/crypto/newly-listed", params={"limit": 25, "hours": 12})

        assert response.status_code == 200
        assert response.json()["tokens"][0]["address"] == "NEW1"
        assert birdeye.fetch_token_list.await_args.args == (25, 0)
        assert "min_recent_listing_time" in birdeye.fetch_token_list.await_args.kwargs["filters"]

    def test_newly_listed_validates_hours(self, client):
        assert client.get("/api/crypto/newly-listed", params={"hours": 0}).status_code == 422

    def test_global_stats(self, client, defillama):
        defillama.fetch_stablecoin_chains.return_value = [
            {"name": "Solana", "totalCirculatingUSD": {"peggedUSD": 5e9}},
        ]
        defillama.fetch_stablecoin_chart.return_value = []

        body = client.get("/api/crypto/global").json()

        assert body["stablecoins_tvl"] == 5e9
        assert body["stablecoins_tvl_change"] == 0

    def test_tvl(self, client, defillama):
        defillama.fetch_historical_chain_tvl.return_value = [{"date": 1, "tvl": 100}, {"date": 2, "tvl": 110}]
        assert client.get("/api/crypto/tvl").json()["tvl"] == 110


class TestOperationalRoutes:
    def test_cache_stats_open_without_secret(self, client, monkeypatch):
        monkeypatch.setattr(routes.settings, "internal_api_secret", None)

        response = client.get("/api/internal/cache-stats")

        assert response.status_code == 200
        body = response.json()
        assert "deduplication" in body
        assert body["writeBehind"]["failures"] == 0

    def test_cache_stats_requires_secret(self, client, monkeypatch):
        monkeypatch.setattr(routes.settings, "internal_api_secret", "s3cret")

        assert client.get("/api/internal/cache-stats").status_code == 401
        ok = client.get("/api/internal/cache-stats", headers={"Authorization": "Bearer s3cret"})
        assert ok.status_code == 200

    def test_cron_requires_secret(self, client, monkeypatch):
        monkeypatch.setattr(routes.settings, "cron_secret", None)
        assert client.post("/api/cron/refresh-cache").status_code == 401

    def test_cron_refreshes(self, client, container, defillama, birdeye, monkeypatch):
        monkeypatch.setattr(routes.settings, "cron_secret", "cron")
        defillama.fetch_protocols.return_value = []
        defillama.fetch_historical_chain_tvl.return_value = []
        defillama.fetch_chain_fees.return_value = {}
        birdeye.fetch_token_list.return_value = [{"address": "a"}, {"address": "b"}]

        response = client.post("/api/cron/refresh-cache", headers={"Authorization": "Bearer cron"})

        assert response.status_code == 200
        assert response.json()["tokens"] == 2
        birdeye.fetch_token_list.assert_awaited_once_with(100, 0)
