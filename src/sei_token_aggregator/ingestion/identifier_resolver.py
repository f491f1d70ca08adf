"""Resolve token addresses to CoinGecko coin ids."""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, Mapping, Optional

from ..config.settings import AppConfig, get_app_config
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import normalize_address
from .cache import IdentifierMapCache
from .coingecko_api import CoinGeckoClient
from .http import BackoffPolicy, SleepFn, SourceError, call_with_backoff


class IdentifierResolver:
    """Serves address → coin id lookups from a bulk listing refreshed every few hours."""

    def __init__(
        self,
        client: Optional[CoinGeckoClient] = None,
        cache: Optional[IdentifierMapCache] = None,
        *,
        app_config: Optional[AppConfig] = None,
        backoff: Optional[BackoffPolicy] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        config = app_config or get_app_config()
        self._client = client if client is not None else CoinGeckoClient(config.data_sources)
        self._cache = cache if cache is not None else IdentifierMapCache(config.cache.identifier_ttl_seconds)
        self._platform_id = config.data_sources.coingecko_platform_id
        self._backoff = backoff or BackoffPolicy.from_config(config.retry)
        self._sleep = sleep
        self._logger = get_logger(__name__)
        self._last_error: Optional[SourceError] = None

    @property
    def last_error(self) -> Optional[SourceError]:
        """Failure of the most recent listing reload; ``None`` once a reload succeeds."""
        return self._last_error

    @property
    def degraded(self) -> bool:
        return self._last_error is not None

    async def resolve(self, addresses: Iterable[str]) -> Dict[str, str]:
        """Return ids for the addresses the source knows; unknown ones are simply absent.

        After a failed listing reload the result is a fallback and :attr:`degraded`
        is set, so an absent address may still be known to the source.
        """

        mapping = self._cache.get()
        if mapping is None:
            mapping = await self._reload()
        resolved: Dict[str, str] = {}
        for address in addresses:
            key = normalize_address(address)
            coin_id = mapping.get(key)
            if coin_id is not None:
                resolved[key] = coin_id
        return resolved

    async def _reload(self) -> Mapping[str, str]:
        try:
            listing = await call_with_backoff(
                lambda: self._client.list_platform_ids(self._platform_id),
                self._backoff,
                sleep=self._sleep,
                description="coin listing",
            )
        except SourceError as exc:
            METRICS.increment("identifier_resolver.reload_failures")
            self._last_error = exc
            fallback = self._cache.last_good()
            self._logger.warning(
                "Coin listing failed (%s); serving %s mapping",
                exc,
                "last good" if fallback is not None else "empty",
            )
            return fallback if fallback is not None else {}
        self._last_error = None
        METRICS.increment("identifier_resolver.reloads")
        self._logger.info(
            "Loaded %d %s coin ids", len(listing), self._platform_id
        )
        return self._cache.put(listing)


__all__ = ["IdentifierResolver"]
