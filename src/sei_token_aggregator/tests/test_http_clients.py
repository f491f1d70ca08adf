from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest
import requests

from sei_token_aggregator.config.settings import DataSourceConfig
from sei_token_aggregator.ingestion.coingecko_api import CoinGeckoClient
from sei_token_aggregator.ingestion.dexscreener_api import DexScreenerClient
from sei_token_aggregator.ingestion.dune_api import DuneClient
from sei_token_aggregator.ingestion.http import BackoffPolicy, RateLimitedError, SourceError


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, *, invalid_json: bool = False) -> None:
        self.status_code = status_code
        self._payload = payload
        self._invalid_json = invalid_json

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self) -> Any:
        if self._invalid_json:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    def __init__(self, response: FakeResponse) -> None:
        self.response = response
        self.requests: List[Dict[str, Any]] = []

    def get(self, url: str, *, params: Optional[Dict[str, Any]] = None, headers=None, timeout=None) -> FakeResponse:
        self.requests.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        return self.response


def test_coingecko_listing_maps_platform_addresses() -> None:
    session = FakeSession(
        FakeResponse(
            payload=[
                {"id": "alpha", "platforms": {"sei-v2": "0xAA"}},
                {"id": "beta", "platforms": {"ethereum": "0xbb"}},
                {"id": "gamma", "platforms": {"sei-v2": ""}},
                "junk",
            ]
        )
    )
    client = CoinGeckoClient(DataSourceConfig(coingecko_api_key="demo"), session=session)  # type: ignore[arg-type]

    mapping = asyncio.run(client.list_platform_ids())

    assert mapping == {"0xaa": "alpha"}
    sent = session.requests[0]
    assert sent["url"].endswith("/coins/list")
    assert sent["params"] == {"include_platform": "true"}
    assert sent["headers"]["x-cg-demo-api-key"] == "demo"


def test_coingecko_simple_prices_and_request_limit() -> None:
    session = FakeSession(FakeResponse(payload={"alpha": {"usd": 1.25, "usd_24h_change": -3.5, "usd_24h_vol": "12"}}))
    client = CoinGeckoClient(DataSourceConfig(coingecko_ids_per_request=2), session=session)  # type: ignore[arg-type]

    prices = asyncio.run(client.simple_prices(["alpha", "alpha"]))

    assert prices == {"alpha": {"usd": 1.25, "usd_24h_change": -3.5, "usd_24h_vol": 12.0}}
    assert session.requests[0]["params"]["ids"] == "alpha"
    with pytest.raises(ValueError):
        asyncio.run(client.simple_prices(["a", "b", "c"]))


def test_rate_limit_and_http_errors_are_mapped() -> None:
    limited = CoinGeckoClient(DataSourceConfig(), session=FakeSession(FakeResponse(429)))  # type: ignore[arg-type]
    with pytest.raises(RateLimitedError):
        asyncio.run(limited.simple_prices(["alpha"]))

    failing = CoinGeckoClient(DataSourceConfig(), session=FakeSession(FakeResponse(503)))  # type: ignore[arg-type]
    with pytest.raises(SourceError) as excinfo:
        asyncio.run(failing.simple_prices(["alpha"]))
    assert excinfo.value.status_code == 503
    assert not isinstance(excinfo.value, RateLimitedError)

    garbled = CoinGeckoClient(DataSourceConfig(), session=FakeSession(FakeResponse(invalid_json=True)))  # type: ignore[arg-type]
    with pytest.raises(SourceError):
        asyncio.run(garbled.simple_prices(["alpha"]))


def test_dexscreener_batch_url_and_pair_parsing() -> None:
    session = FakeSession(
        FakeResponse(
            payload=[
                {
                    "pairAddress": "0xpool",
                    "baseToken": {"address": "0xAA"},
                    "priceUsd": "0.5",
                    "priceChange": {"h24": 12.5},
                    "txns": {"h24": {"buys": 7, "sells": 2}},
                    "volume": {"h24": 1000},
                    "liquidity": {"usd": 25000},
                },
                {"baseToken": {}},
            ]
        )
    )
    client = DexScreenerClient(DataSourceConfig(), session=session)  # type: ignore[arg-type]

    pairs = asyncio.run(client.fetch_pairs(["0xaa", "0xbb"]))

    assert session.requests[0]["url"] == "https://api.dexscreener.com/tokens/v1/seiv2/0xaa,0xbb"
    assert len(pairs) == 1
    pair = pairs[0]
    assert pair.base_token_address == "0xaa"
    assert pair.price_usd == 0.5
    assert (pair.buys_24h, pair.sells_24h) == (7, 2)
    assert pair.liquidity_usd == 25000.0


def test_dune_rows_and_invalid_payload() -> None:
    config = DataSourceConfig(dune_query_id="123", dune_api_key="key")
    session = FakeSession(FakeResponse(payload={"result": {"rows": [{"tx_hash": "0x1"}]}}))
    client = DuneClient(config, session=session)  # type: ignore[arg-type]

    rows = asyncio.run(client.fetch_rows(10_000, 20_000))

    assert rows == [{"tx_hash": "0x1"}]
    sent = session.requests[0]
    assert sent["url"] == "https://api.dune.com/api/v1/query/123/results"
    assert sent["params"] == {"limit": 10_000, "offset": 20_000}
    assert sent["headers"]["X-Dune-API-Key"] == "key"

    session.response = FakeResponse(payload={"error": "boom"})
    assert asyncio.run(client.fetch_rows(10, 0)) == []


def test_dune_without_query_id_raises() -> None:
    client = DuneClient(DataSourceConfig(), session=FakeSession(FakeResponse(payload={})))  # type: ignore[arg-type]
    assert client.is_configured is False
    with pytest.raises(SourceError):
        asyncio.run(client.fetch_rows(10, 0))


def test_backoff_policy_delays_are_capped() -> None:
    policy = BackoffPolicy(max_retries=5, initial_delay=1.0, max_delay=10.0)
    assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]
