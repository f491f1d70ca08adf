from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from httpx import ASGITransport, AsyncClient

from sei_token_aggregator.api.app import create_app
from sei_token_aggregator.api.queries import most_swapped, order_records
from sei_token_aggregator.config.settings import AppConfig
from sei_token_aggregator.models.schemas import Snapshot, TokenInfo, TokenRecord
from sei_token_aggregator.monitoring.metrics import METRICS
from sei_token_aggregator.service.controller import CacheController

NOW = datetime.now(timezone.utc)


def _record(address: str, price: Optional[float], buys: int, sells: int, *, age_days: int = 0) -> TokenRecord:
    return TokenRecord(
        contract_address=address,
        name=f"Token {address[-2:].upper()}",
        symbol=address[-2:].upper(),
        decimals=18,
        logo="",
        current_price=price,
        price_updated_at=NOW - timedelta(days=age_days),
        last_24h_variation=None,
        info=TokenInfo(buys=buys, sells=sells),
    )


RECORDS = (
    _record("0xaa", 1.5, 3, 1),
    _record("0xbb", None, 10, 5, age_days=30),
    _record("0xcc", 0.2, 0, 1),
    _record("0xdd", 9.0, 2, 2, age_days=10),
)


class StaticBuilder:
    def __init__(self) -> None:
        self.calls = 0

    async def build(self) -> Snapshot:
        self.calls += 1
        return Snapshot(records=RECORDS, built_at=NOW, success=True)


def _exercise(requests_fn) -> StaticBuilder:
    builder = StaticBuilder()
    controller = CacheController(builder, ttl_seconds=300)
    app = create_app(controller, AppConfig(), manage_refresh=False)

    async def _run() -> None:
        await controller.trigger_refresh()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            await requests_fn(client)

    asyncio.run(_run())
    return builder


def test_health_and_metrics_endpoints() -> None:
    METRICS.reset()

    async def _requests(client: AsyncClient) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
        metrics = await client.get("/metrics")
        assert metrics.status_code == 200
        assert "refresh_successes" in metrics.text

    _exercise(_requests)
    METRICS.reset()


def test_tokens_default_page() -> None:
    async def _requests(client: AsyncClient) -> None:
        resp = await client.get("/tokens")
        assert resp.status_code == 200
        payload = resp.json()
        assert payload["meta"] == {"page": 1, "limit": 50, "totalItemsCount": 4, "pagesCount": 1}
        first = payload["data"][0]
        assert first["contractAddress"] == "0xaa"
        assert first["currentPrice"] == 1.5
        assert first["info"] == {"buys": 3, "sells": 1, "swaps": 4}
        assert first["priceUpdatedAt"] == NOW.isoformat()

    _exercise(_requests)


def test_tokens_pagination_and_limit_cap() -> None:
    async def _requests(client: AsyncClient) -> None:
        resp = await client.get("/tokens", params={"page": 2, "limit": 3})
        payload = resp.json()
        assert [item["contractAddress"] for item in payload["data"]] == ["0xdd"]
        assert payload["meta"]["pagesCount"] == 2

        capped = await client.get("/tokens", params={"limit": 500})
        assert capped.json()["meta"]["limit"] == 100

    _exercise(_requests)


def test_tokens_address_filter_and_ordering() -> None:
    async def _requests(client: AsyncClient) -> None:
        filtered = await client.get("/tokens", params={"addresses": "0xBB, 0xcc"})
        assert [item["contractAddress"] for item in filtered.json()["data"]] == ["0xbb", "0xcc"]

        ordered = await client.get("/tokens", params={"order": "currentPrice", "sort": "asc"})
        prices = [item["currentPrice"] for item in ordered.json()["data"]]
        assert prices == [0.2, 1.5, 9.0, None]

        bad = await client.get("/tokens", params={"order": "marketCap"})
        assert bad.status_code == 400

    _exercise(_requests)


def test_tokens_most_swapped_and_new_filters() -> None:
    async def _requests(client: AsyncClient) -> None:
        top = await client.get("/tokens", params={"isMostSwapped": "true"})
        assert [item["contractAddress"] for item in top.json()["data"]] == ["0xbb"]

        recent = await client.get("/tokens", params={"new": "true"})
        assert {item["contractAddress"] for item in recent.json()["data"]} == {"0xaa", "0xcc"}

    _exercise(_requests)


def test_top_traded_sorted_by_swaps() -> None:
    async def _requests(client: AsyncClient) -> None:
        resp = await client.get("/tokens/top-traded")
        payload = resp.json()
        assert payload["meta"]["limit"] == 10
        assert [item["contractAddress"] for item in payload["data"]] == ["0xbb", "0xaa", "0xdd", "0xcc"]

    _exercise(_requests)


def test_status_and_manual_refresh() -> None:
    async def _requests(client: AsyncClient) -> None:
        status = await client.get("/tokens/status")
        payload = status.json()
        assert payload["cache_status"] == "fresh"
        assert payload["total_tokens"] == 4
        assert payload["price_sources"]["coingecko"]["priority"] == 1
        assert payload["price_sources"]["dexscreener"]["priority"] == 2

        refreshed = await client.post("/tokens/refresh", params={"wait": "true"})
        assert refreshed.status_code == 200
        assert refreshed.json()["refreshing"] is False

    builder = _exercise(_requests)
    assert builder.calls == 2


def test_order_records_places_nulls_last_in_both_directions() -> None:
    descending: List[TokenRecord] = order_records(RECORDS, "currentPrice", descending=True)
    assert [record.current_price for record in descending] == [9.0, 1.5, 0.2, None]

    by_name = order_records(RECORDS, "name", descending=False)
    assert [record.contract_address for record in by_name] == ["0xaa", "0xbb", "0xcc", "0xdd"]


def test_most_swapped_keeps_at_least_one_token() -> None:
    assert len(most_swapped(RECORDS[:1])) == 1
    assert most_swapped(()) == []
