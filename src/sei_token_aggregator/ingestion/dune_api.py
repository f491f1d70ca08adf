"""Dune query results client providing paginated swap rows."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from ..config.settings import DataSourceConfig, get_app_config
from .http import JsonHttpSource, SourceError


class DuneClient(JsonHttpSource):
    """Reads one page of a saved query's result rows."""

    source_name = "dune"

    def __init__(
        self,
        config: Optional[DataSourceConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or get_app_config().data_sources
        super().__init__(session, self._config.http_timeout)
        self._base_url = str(self._config.dune_base_url).rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self._config.dune_query_id)

    async def fetch_rows(self, limit: int, offset: int) -> List[Dict[str, Any]]:
        """Return the raw rows for ``limit``/``offset``; an unusable payload yields ``[]``."""

        if not self._config.dune_query_id:
            raise SourceError(self.source_name, "dune_query_id is not configured")
        headers = {}
        if self._config.dune_api_key:
            headers["X-Dune-API-Key"] = self._config.dune_api_key
        self._logger.info("Fetching swap rows limit=%d offset=%d", limit, offset)
        payload = await self._aget_json(
            f"{self._base_url}/query/{self._config.dune_query_id}/results",
            params={"limit": limit, "offset": offset},
            headers=headers,
        )
        result = payload.get("result") if isinstance(payload, dict) else None
        rows = result.get("rows") if isinstance(result, dict) else None
        if not isinstance(rows, list):
            self._logger.error("Invalid response format from Dune at offset %d", offset)
            return []
        return rows


__all__ = ["DuneClient"]
