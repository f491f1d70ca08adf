"""Token price lookups across CoinGecko (primary) and DexScreener (fallback)."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..config.settings import AppConfig, get_app_config
from ..models.schemas import NO_PRICE, PriceInfo, PriceSource, SourceOutcome
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import normalize_address, utc_now
from .cache import PriceCache
from .coingecko_api import CoinGeckoClient
from .dexscreener_api import DexPair, DexScreenerClient
from .http import BackoffPolicy, RateLimitedError, SleepFn, SourceError, call_with_backoff
from .identifier_resolver import IdentifierResolver

RATE_LIMITED = "rate_limited"


class PriceFetcher:
    """Price fetcher with per-address caching, id chunking and a fallback source."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        primary: Optional[CoinGeckoClient] = None,
        fallback: Optional[DexScreenerClient] = None,
        resolver: Optional[IdentifierResolver] = None,
        cache: Optional[PriceCache] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config or get_app_config()
        sources = self._config.data_sources
        self._primary = primary if primary is not None else CoinGeckoClient(sources)
        self._fallback = fallback if fallback is not None else DexScreenerClient(sources)
        self._resolver = (
            resolver
            if resolver is not None
            else IdentifierResolver(self._primary, app_config=self._config, sleep=sleep)
        )
        self._cache = cache
        self._backoff = BackoffPolicy.from_config(self._config.retry)
        self._request_delay = sources.request_delay_seconds
        self._sleep = sleep
        self._clock = clock
        self._logger = get_logger(__name__)

    @property
    def cache(self) -> PriceCache:
        return self._cache_for(0)

    def _cache_for(self, universe_size: int) -> PriceCache:
        """The price cache, created on first use with room for the whole universe."""

        if self._cache is None:
            cfg = self._config.cache
            self._cache = PriceCache(
                cfg.price_ttl_seconds,
                maxsize=max(cfg.price_cache_size, universe_size),
            )
        elif universe_size > self._cache.maxsize:
            METRICS.increment("price_cache.undersized")
            self._logger.warning(
                "Price cache holds %d entries but %d addresses were requested; "
                "fresh entries will be evicted early",
                self._cache.maxsize,
                universe_size,
            )
        return self._cache

    async def fetch_prices(self, addresses: Iterable[str]) -> Dict[str, PriceInfo]:
        """Return a ``PriceInfo`` for every requested address, in request order."""

        ordered_unique = list(
            dict.fromkeys(normalize_address(address) for address in addresses if address and address.strip())
        )
        if not ordered_unique:
            return {}
        cache = self._cache_for(len(ordered_unique))
        results: Dict[str, PriceInfo] = {}
        missing: List[str] = []
        for address in ordered_unique:
            entry = cache.get(address)
            if entry is not None:
                results[address] = entry.info
            else:
                missing.append(address)
        METRICS.increment("price_cache.hits", len(results))
        METRICS.increment("price_cache.misses", len(missing))
        if missing:
            results.update(await self._request(missing))
        return {address: results.get(address, NO_PRICE) for address in ordered_unique}

    async def _request(self, addresses: List[str]) -> Dict[str, PriceInfo]:
        resolved: Dict[str, PriceInfo] = {}
        cacheable: Dict[str, PriceInfo] = {}
        primary_failed: set[str] = set()
        remaining: List[str] = []

        primary = await self._fetch_from_primary(addresses)
        for address in addresses:
            outcome = primary.get(address) or SourceOutcome.not_found()
            if outcome.is_found and outcome.info is not None and outcome.info.usd is not None:
                resolved[address] = cacheable[address] = outcome.info
                continue
            if outcome.is_error:
                if outcome.reason == RATE_LIMITED:
                    stale = self.cache.get_stale(address)
                    if stale is not None:
                        METRICS.increment("price_cache.stale_served")
                        resolved[address] = stale.info
                        continue
                primary_failed.add(address)
            remaining.append(address)

        fallback = await self._fetch_from_fallback(remaining) if remaining else {}
        for address in remaining:
            outcome = fallback.get(address) or SourceOutcome.not_found()
            if outcome.is_found and outcome.info is not None:
                resolved[address] = cacheable[address] = outcome.info
            elif outcome.is_error:
                stale = self.cache.get_stale(address) if outcome.reason == RATE_LIMITED else None
                if stale is not None:
                    METRICS.increment("price_cache.stale_served")
                    resolved[address] = stale.info
                else:
                    resolved[address] = NO_PRICE
            elif address in primary_failed:
                resolved[address] = NO_PRICE
            else:
                # Both sources answered and neither knows a price: remember that.
                resolved[address] = cacheable[address] = PriceInfo(updated_at=self._clock())

        for address, info in cacheable.items():
            self.cache.put(address, info)

        primary_count = sum(1 for info in resolved.values() if info.source is PriceSource.PRIMARY)
        fallback_count = sum(1 for info in resolved.values() if info.source is PriceSource.FALLBACK)
        METRICS.increment("prices.primary", primary_count)
        METRICS.increment("prices.fallback", fallback_count)
        self._logger.info(
            "Resolved %d prices (%d primary, %d fallback) for %d addresses",
            primary_count + fallback_count,
            primary_count,
            fallback_count,
            len(addresses),
        )
        return resolved

    async def _fetch_from_primary(self, addresses: Sequence[str]) -> Dict[str, SourceOutcome]:
        outcomes: Dict[str, SourceOutcome] = {}
        ids = await self._resolver.resolve(addresses)
        if self._resolver.degraded:
            # Without a current listing an unresolved address is unknown, not absent.
            listing_error = self._resolver.last_error
            reason = (
                RATE_LIMITED
                if isinstance(listing_error, RateLimitedError)
                else f"identifier listing unavailable: {listing_error}"
            )
            for address in addresses:
                if address not in ids:
                    outcomes[address] = SourceOutcome.error(reason)
        id_map: Dict[str, List[str]] = {}
        for address, coin_id in ids.items():
            id_map.setdefault(coin_id, []).append(address)
        coin_ids = list(id_map)
        chunk_size = self._primary.max_ids_per_request
        for idx in range(0, len(coin_ids), chunk_size):
            if idx:
                await self._sleep(self._request_delay)
            chunk = coin_ids[idx : idx + chunk_size]
            try:
                payload = await call_with_backoff(
                    lambda: self._primary.simple_prices(chunk),
                    self._backoff,
                    sleep=self._sleep,
                    description="coingecko price chunk",
                )
            except RateLimitedError:
                self._logger.error(
                    "Rate limit exceeded after %d retries for %d coin ids",
                    self._backoff.max_retries,
                    len(chunk),
                )
                self._mark(outcomes, chunk, id_map, SourceOutcome.error(RATE_LIMITED))
                continue
            except SourceError as exc:
                self._logger.warning("Failed to fetch CoinGecko prices for chunk: %s", exc)
                self._mark(outcomes, chunk, id_map, SourceOutcome.error(str(exc)))
                continue

            fetched_at = self._clock()
            for coin_id in chunk:
                quote = payload.get(coin_id) or {}
                usd = quote.get("usd")
                if usd is None:
                    self._mark(outcomes, [coin_id], id_map, SourceOutcome.not_found())
                    continue
                info = PriceInfo(
                    usd=usd,
                    change_24h=quote.get("usd_24h_change"),
                    volume_24h=quote.get("usd_24h_vol") or 0.0,
                    updated_at=fetched_at,
                    source=PriceSource.PRIMARY,
                )
                self._mark(outcomes, [coin_id], id_map, SourceOutcome.found(info))
        return outcomes

    async def _fetch_from_fallback(self, addresses: Sequence[str]) -> Dict[str, SourceOutcome]:
        outcomes: Dict[str, SourceOutcome] = {}
        batch_size = self._fallback.max_addresses_per_request
        self._logger.info("Fetching DexScreener prices for %d tokens", len(addresses))
        for idx in range(0, len(addresses), batch_size):
            if idx:
                await self._sleep(self._request_delay)
            batch = list(addresses[idx : idx + batch_size])
            try:
                pairs = await call_with_backoff(
                    lambda: self._fallback.fetch_pairs(batch),
                    self._backoff,
                    sleep=self._sleep,
                    description="dexscreener batch",
                )
            except RateLimitedError:
                self._logger.error("DexScreener rate limit exhausted for %d addresses", len(batch))
                for address in batch:
                    outcomes[address] = SourceOutcome.error(RATE_LIMITED)
                continue
            except SourceError as exc:
                self._logger.warning("Skipping DexScreener batch of %d addresses: %s", len(batch), exc)
                for address in batch:
                    outcomes[address] = SourceOutcome.error(str(exc))
                continue

            grouped: Dict[str, List[DexPair]] = defaultdict(list)
            wanted = set(batch)
            for pair in pairs:
                if pair.base_token_address in wanted:
                    grouped[pair.base_token_address].append(pair)
            fetched_at = self._clock()
            for address in batch:
                token_pairs = grouped.get(address)
                if token_pairs:
                    outcomes[address] = SourceOutcome.found(_merge_pairs(token_pairs, fetched_at))
                else:
                    outcomes[address] = SourceOutcome.not_found()
        return outcomes

    @staticmethod
    def _mark(
        outcomes: Dict[str, SourceOutcome],
        coin_ids: Iterable[str],
        id_map: Dict[str, List[str]],
        outcome: SourceOutcome,
    ) -> None:
        for coin_id in coin_ids:
            for address in id_map.get(coin_id, ()):
                outcomes[address] = outcome


def _merge_pairs(pairs: List[DexPair], fetched_at: datetime) -> PriceInfo:
    """Price from the deepest priced pool; activity summed over every pool of the token."""

    priced = [pair for pair in pairs if pair.price_usd is not None]
    best = max(priced or pairs, key=lambda pair: pair.liquidity_usd)
    return PriceInfo(
        usd=best.price_usd,
        change_24h=best.price_change_24h,
        buys=sum(pair.buys_24h for pair in pairs),
        sells=sum(pair.sells_24h for pair in pairs),
        volume_24h=sum(pair.volume_24h for pair in pairs),
        updated_at=fetched_at,
        pairs=tuple(dict.fromkeys(pair.pair_address for pair in pairs if pair.pair_address)),
        source=PriceSource.FALLBACK,
    )


__all__ = ["PriceFetcher", "RATE_LIMITED"]
