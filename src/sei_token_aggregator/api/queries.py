"""Filtering, ordering and pagination over snapshot records."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..models.schemas import TokenRecord
from ..utils.constants import normalize_address
from .utils import token_to_dto

ORDER_COLUMNS: Dict[str, Callable[[TokenRecord], Any]] = {
    "name": lambda record: record.name,
    "symbol": lambda record: record.symbol,
    "decimals": lambda record: record.decimals,
    "contractAddress": lambda record: record.contract_address,
    "currentPrice": lambda record: record.current_price,
    "priceUpdatedAt": lambda record: record.price_updated_at,
    "last24hVariation": lambda record: record.last_24h_variation,
    "swaps": lambda record: record.info.swaps,
    "sells": lambda record: record.info.sells,
    "buys": lambda record: record.info.buys,
}

MOST_SWAPPED_FRACTION = 0.25
NEW_TOKEN_WINDOW = timedelta(days=7)


@dataclass(slots=True)
class TokenQuery:
    page: int = 1
    limit: int = 50
    addresses: List[str] = field(default_factory=list)
    order: Optional[str] = None
    descending: bool = True
    most_swapped: bool = False
    new: bool = False


@dataclass(frozen=True, slots=True)
class Page:
    data: List[Dict[str, Any]]
    page: int
    limit: int
    total_items: int

    @property
    def pages_count(self) -> int:
        return math.ceil(self.total_items / self.limit) if self.limit else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "meta": {
                "page": self.page,
                "limit": self.limit,
                "totalItemsCount": self.total_items,
                "pagesCount": self.pages_count,
            },
        }


def parse_addresses(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [normalize_address(part) for part in raw.split(",") if part.strip()]


def clamp_page(page: Optional[int]) -> int:
    return page if page and page > 0 else 1


def clamp_limit(limit: Optional[int], *, default: int, maximum: int) -> int:
    if not limit or limit <= 0:
        return min(default, maximum)
    return min(limit, maximum)


def filter_addresses(records: Iterable[TokenRecord], addresses: Sequence[str]) -> List[TokenRecord]:
    wanted = set(addresses)
    return [record for record in records if record.contract_address in wanted]


def most_swapped(records: Sequence[TokenRecord], fraction: float = MOST_SWAPPED_FRACTION) -> List[TokenRecord]:
    """Top ``fraction`` of tokens by swap count, at least one."""
    if not records:
        return []
    ranked = sorted(records, key=lambda record: record.info.swaps, reverse=True)
    keep = max(1, math.ceil(len(ranked) * fraction))
    return ranked[:keep]


def recently_updated(records: Iterable[TokenRecord], now: datetime, window: timedelta = NEW_TOKEN_WINDOW) -> List[TokenRecord]:
    cutoff = now - window
    return [record for record in records if record.price_updated_at >= cutoff]


def order_records(records: Iterable[TokenRecord], column: str, *, descending: bool = True) -> List[TokenRecord]:
    """Sort by a response column; records with a null value always go last."""
    key = ORDER_COLUMNS[column]
    present = [record for record in records if key(record) is not None]
    missing = [record for record in records if key(record) is None]

    def sort_key(record: TokenRecord) -> Any:
        value = key(record)
        return value.casefold() if isinstance(value, str) else value

    present.sort(key=sort_key, reverse=descending)
    return present + missing


def paginate(records: Sequence[TokenRecord], page: int, limit: int) -> Page:
    offset = (page - 1) * limit
    window = records[offset : offset + limit]
    return Page(
        data=[token_to_dto(record) for record in window],
        page=page,
        limit=limit,
        total_items=len(records),
    )


def select_tokens(records: Sequence[TokenRecord], query: TokenQuery, *, now: datetime) -> Page:
    data: List[TokenRecord] = list(records)
    if query.addresses:
        data = filter_addresses(data, query.addresses)
    if query.most_swapped:
        data = most_swapped(data)
    if query.new:
        data = recently_updated(data, now)
    if query.order:
        data = order_records(data, query.order, descending=query.descending)
    return paginate(data, query.page, query.limit)


def top_traded(records: Sequence[TokenRecord], page: int, limit: int) -> Page:
    ranked = sorted(records, key=lambda record: record.info.swaps, reverse=True)
    return paginate(ranked, page, limit)


__all__ = [
    "ORDER_COLUMNS",
    "Page",
    "TokenQuery",
    "clamp_limit",
    "clamp_page",
    "filter_addresses",
    "most_swapped",
    "order_records",
    "paginate",
    "parse_addresses",
    "recently_updated",
    "select_tokens",
    "top_traded",
]
