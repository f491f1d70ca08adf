"""Process-lifetime caches for identifier mappings and per-address prices."""

from __future__ import annotations

import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional

from cachetools import TTLCache

from ..models.schemas import PriceInfo

Timer = Callable[[], float]


@dataclass(frozen=True, slots=True)
class PriceCacheEntry:
    info: PriceInfo
    fetched_at: float


class PriceCache:
    """Per-address price cache with a short TTL.

    Expired entries stay readable through :meth:`get_stale` so a rate-limited
    lookup can still serve the last known value. A cached ``PriceInfo`` without
    a price is a real answer ("the sources know nothing"), not a miss.
    """

    def __init__(self, ttl_seconds: float, *, maxsize: int = 10_000, timer: Timer = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._timer = timer
        self._maxsize = maxsize
        self._fresh: TTLCache[str, PriceCacheEntry] = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=timer)
        self._last_known: Dict[str, PriceCacheEntry] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def maxsize(self) -> int:
        return self._maxsize

    def get(self, address: str) -> Optional[PriceCacheEntry]:
        """Return the entry only while it is younger than the TTL."""
        return self._fresh.get(address)

    def get_stale(self, address: str) -> Optional[PriceCacheEntry]:
        """Return the most recent entry regardless of age."""
        return self._last_known.get(address)

    def put(self, address: str, info: PriceInfo) -> PriceCacheEntry:
        entry = PriceCacheEntry(info=info, fetched_at=self._timer())
        self._fresh[address] = entry
        self._last_known[address] = entry
        return entry

    def invalidate(self, address: Optional[str] = None) -> None:
        if address is None:
            self._fresh.clear()
            self._last_known.clear()
            return
        self._fresh.pop(address, None)
        self._last_known.pop(address, None)

    def __contains__(self, address: object) -> bool:
        return address in self._fresh

    def __len__(self) -> int:
        return len(self._last_known)


class IdentifierMapCache:
    """Holds one whole address → source id mapping that expires as a unit."""

    _KEY = "mapping"

    def __init__(self, ttl_seconds: float, *, timer: Timer = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._cache: TTLCache[str, Mapping[str, str]] = TTLCache(maxsize=1, ttl=ttl_seconds, timer=timer)
        self._last_good: Optional[Mapping[str, str]] = None

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self) -> Optional[Mapping[str, str]]:
        """Return the mapping while it is fresh, else ``None``."""
        return self._cache.get(self._KEY)

    def last_good(self) -> Optional[Mapping[str, str]]:
        return self._last_good

    def put(self, mapping: Mapping[str, str]) -> Mapping[str, str]:
        frozen = MappingProxyType(dict(mapping))
        self._cache[self._KEY] = frozen
        self._last_good = frozen
        return frozen

    def invalidate(self) -> None:
        """Force the next lookup to re-list; the last good mapping is kept for fallback."""
        self._cache.clear()


__all__ = ["IdentifierMapCache", "PriceCache", "PriceCacheEntry"]
