"""CoinGecko client: coin listing for id resolution and batched simple prices."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import requests

from ..config.settings import DataSourceConfig, get_app_config
from .http import JsonHttpSource, SourceError


class CoinGeckoClient(JsonHttpSource):
    """Primary price source."""

    source_name = "coingecko"

    def __init__(
        self,
        config: Optional[DataSourceConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or get_app_config().data_sources
        super().__init__(session, self._config.http_timeout)
        self._base_url = str(self._config.coingecko_base_url).rstrip("/")

    @property
    def max_ids_per_request(self) -> int:
        return self._config.coingecko_ids_per_request

    def _headers(self) -> Dict[str, str]:
        if self._config.coingecko_api_key:
            return {"x-cg-demo-api-key": self._config.coingecko_api_key}
        return {}

    async def list_platform_ids(self, platform_id: Optional[str] = None) -> Dict[str, str]:
        """Return ``{contract address: coin id}`` for every coin deployed on ``platform_id``."""

        platform = platform_id or self._config.coingecko_platform_id
        payload = await self._aget_json(
            f"{self._base_url}/coins/list",
            params={"include_platform": "true"},
            headers=self._headers(),
        )
        if not isinstance(payload, list):
            raise SourceError(self.source_name, "unexpected coin listing payload")
        mapping: Dict[str, str] = {}
        for item in payload:
            if not isinstance(item, dict):
                continue
            coin_id = item.get("id")
            platforms = item.get("platforms")
            if not coin_id or not isinstance(platforms, dict):
                continue
            address = platforms.get(platform)
            if isinstance(address, str) and address.strip():
                mapping[address.strip().lower()] = str(coin_id)
        return mapping

    async def simple_prices(self, coin_ids: Iterable[str]) -> Dict[str, Dict[str, Optional[float]]]:
        """Return ``{coin id: {usd, usd_24h_change, usd_24h_vol}}`` for one batch of ids."""

        ids: List[str] = list(dict.fromkeys(coin_ids))
        if not ids:
            return {}
        if len(ids) > self.max_ids_per_request:
            raise ValueError(
                f"at most {self.max_ids_per_request} ids per request, got {len(ids)}"
            )
        payload = await self._aget_json(
            f"{self._base_url}/simple/price",
            params={
                "ids": ",".join(ids),
                "vs_currencies": "usd",
                "include_24hr_change": "true",
                "include_24hr_vol": "true",
            },
            headers=self._headers(),
        )
        if not isinstance(payload, dict):
            raise SourceError(self.source_name, "unexpected price payload")
        prices: Dict[str, Dict[str, Optional[float]]] = {}
        for coin_id, value in payload.items():
            if not isinstance(value, dict):
                continue
            prices[str(coin_id)] = {
                "usd": _to_float(value.get("usd")),
                "usd_24h_change": _to_float(value.get("usd_24h_change")),
                "usd_24h_vol": _to_float(value.get("usd_24h_vol")),
            }
        return prices


def _to_float(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


__all__ = ["CoinGeckoClient"]
