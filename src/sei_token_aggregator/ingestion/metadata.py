"""Token universe loaded from the metadata CSV."""

from __future__ import annotations

import asyncio
import csv
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from ..config.settings import MetadataConfig, get_app_config
from ..models.schemas import TokenMetadata
from ..monitoring.logger import get_logger
from ..utils.constants import normalize_address


class MetadataStore:
    """Reads ``contract_address,name,symbol,decimals[,logo]`` rows once and serves them."""

    def __init__(self, config: Optional[MetadataConfig] = None, *, path: Optional[Path] = None) -> None:
        self._config = config or get_app_config().metadata
        self._path = Path(path or self._config.csv_path)
        self._tokens: Dict[str, TokenMetadata] = {}
        self._order: List[str] = []
        self._loaded = False
        self._logger = get_logger(__name__)

    @property
    def loaded(self) -> bool:
        return self._loaded

    def load(self) -> Mapping[str, TokenMetadata]:
        tokens: Dict[str, TokenMetadata] = {}
        order: List[str] = []
        with self._path.open(newline="", encoding="utf-8-sig") as handle:
            for row in csv.DictReader(handle):
                raw_address = (row.get("contract_address") or "").strip()
                if not raw_address:
                    continue
                address = normalize_address(raw_address)
                if address in tokens:
                    continue
                tokens[address] = TokenMetadata(
                    address=address,
                    name=(row.get("name") or "").strip() or raw_address,
                    symbol=(row.get("symbol") or "").strip() or raw_address,
                    decimals=_parse_decimals(row.get("decimals")),
                    logo=(row.get("logo") or "").strip(),
                )
                order.append(address)
        self._tokens = tokens
        self._order = order
        self._loaded = True
        self._logger.info("Loaded metadata for %d tokens from %s", len(order), self._path)
        return dict(tokens)

    async def ensure_loaded(self) -> None:
        if not self._loaded:
            await asyncio.to_thread(self.load)

    def get(self, address: str) -> Optional[TokenMetadata]:
        return self._tokens.get(normalize_address(address))

    def all(self) -> Mapping[str, TokenMetadata]:
        return dict(self._tokens)

    def addresses(self) -> List[str]:
        return list(self._order)


def _parse_decimals(value: Optional[str]) -> int:
    try:
        return int(float(value)) if value not in (None, "") else 0
    except (TypeError, ValueError):
        return 0


__all__ = ["MetadataStore"]
