"""DexScreener client used as the fallback price source."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

import requests

from ..config.settings import DataSourceConfig, get_app_config
from .http import JsonHttpSource, SourceError


@dataclass(frozen=True, slots=True)
class DexPair:
    """The subset of a DexScreener pair record the aggregator consumes."""

    base_token_address: str
    pair_address: Optional[str]
    price_usd: Optional[float]
    price_change_24h: Optional[float]
    buys_24h: int
    sells_24h: int
    volume_24h: float
    liquidity_usd: float


class DexScreenerClient(JsonHttpSource):
    """Batched token lookups against ``/tokens/v1/{chain}/{addresses}``."""

    source_name = "dexscreener"

    def __init__(
        self,
        config: Optional[DataSourceConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or get_app_config().data_sources
        super().__init__(session, self._config.http_timeout)
        self._base_url = str(self._config.dexscreener_base_url).rstrip("/")

    @property
    def max_addresses_per_request(self) -> int:
        return self._config.dexscreener_addresses_per_request

    async def fetch_pairs(self, addresses: Iterable[str]) -> List[DexPair]:
        batch = list(dict.fromkeys(addresses))
        if not batch:
            return []
        if len(batch) > self.max_addresses_per_request:
            raise ValueError(
                f"at most {self.max_addresses_per_request} addresses per request, got {len(batch)}"
            )
        url = f"{self._base_url}/tokens/v1/{self._config.dexscreener_chain_id}/{','.join(batch)}"
        payload = await self._aget_json(url)
        if isinstance(payload, dict) and isinstance(payload.get("pairs"), list):
            payload = payload["pairs"]
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise SourceError(self.source_name, "unexpected pair payload")
        pairs: List[DexPair] = []
        for item in payload:
            parsed = self._parse_pair(item)
            if parsed is not None:
                pairs.append(parsed)
        return pairs

    @staticmethod
    def _parse_pair(item: Any) -> Optional[DexPair]:
        if not isinstance(item, dict):
            return None
        base = item.get("baseToken")
        if not isinstance(base, dict) or not isinstance(base.get("address"), str):
            return None
        address = base["address"].strip().lower()
        if not address:
            return None
        txns = _nested(item, "txns", "h24")
        return DexPair(
            base_token_address=address,
            pair_address=item.get("pairAddress") or None,
            price_usd=_to_float(item.get("priceUsd")),
            price_change_24h=_to_float(_nested(item, "priceChange").get("h24")),
            buys_24h=_to_count(txns.get("buys")),
            sells_24h=_to_count(txns.get("sells")),
            volume_24h=_to_float(_nested(item, "volume").get("h24")) or 0.0,
            liquidity_usd=_to_float(_nested(item, "liquidity").get("usd")) or 0.0,
        )


def _nested(item: dict, *keys: str) -> dict:
    current: Any = item
    for key in keys:
        current = current.get(key) if isinstance(current, dict) else None
    return current if isinstance(current, dict) else {}


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool) or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_count(value: Any) -> int:
    number = _to_float(value)
    if number is None or number < 0:
        return 0
    return int(number)


__all__ = ["DexPair", "DexScreenerClient"]
