from __future__ import annotations

from sei_token_aggregator.ingestion.cache import IdentifierMapCache, PriceCache
from sei_token_aggregator.models.schemas import PriceInfo, PriceSource


class ManualClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_price_cache_serves_fresh_entries_until_ttl() -> None:
    clock = ManualClock()
    cache = PriceCache(60, timer=clock)
    info = PriceInfo(usd=1.25, source=PriceSource.PRIMARY)

    entry = cache.put("0xaa", info)
    assert entry.fetched_at == clock.now
    assert cache.get("0xaa") == entry
    assert "0xaa" in cache

    clock.advance(59)
    assert cache.get("0xaa") is not None

    clock.advance(2)
    assert cache.get("0xaa") is None
    assert "0xaa" not in cache


def test_price_cache_keeps_expired_entry_for_stale_reads() -> None:
    clock = ManualClock()
    cache = PriceCache(10, timer=clock)
    cache.put("0xaa", PriceInfo(usd=2.0))

    clock.advance(3_600)

    stale = cache.get_stale("0xaa")
    assert stale is not None
    assert stale.info.usd == 2.0
    assert len(cache) == 1


def test_price_cache_invalidate() -> None:
    clock = ManualClock()
    cache = PriceCache(60, timer=clock)
    cache.put("0xaa", PriceInfo(usd=1.0))
    cache.put("0xbb", PriceInfo(usd=2.0))

    cache.invalidate("0xaa")
    assert cache.get("0xaa") is None
    assert cache.get_stale("0xaa") is None
    assert cache.get("0xbb") is not None

    cache.invalidate()
    assert len(cache) == 0


def test_identifier_cache_expires_as_a_unit_but_remembers_last_good() -> None:
    clock = ManualClock()
    cache = IdentifierMapCache(3_600, timer=clock)
    assert cache.get() is None
    assert cache.last_good() is None

    stored = cache.put({"0xaa": "token-a"})
    assert cache.get() == {"0xaa": "token-a"}
    assert stored["0xaa"] == "token-a"

    clock.advance(3_601)
    assert cache.get() is None
    assert cache.last_good() == {"0xaa": "token-a"}

    cache.put({"0xbb": "token-b"})
    cache.invalidate()
    assert cache.get() is None
    assert cache.last_good() == {"0xbb": "token-b"}
