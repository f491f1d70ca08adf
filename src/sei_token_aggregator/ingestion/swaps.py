"""Swap event collection from the paginated feed and per-token aggregation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from ..config.settings import AppConfig, get_app_config
from ..models.schemas import SwapAggregate, SwapEvent
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import normalize_address, parse_timestamp
from .dune_api import DuneClient
from .http import SleepFn, SourceError, call_with_fixed_retry

logger = get_logger(__name__)


def parse_swap_row(row: Any) -> Optional[SwapEvent]:
    """Validate one raw row; ``None`` means the row is dropped."""

    if not isinstance(row, dict):
        return None
    sold = row.get("token_sold_address")
    bought = row.get("token_bought_address")
    if not isinstance(sold, str) or not isinstance(bought, str):
        return None
    sold = normalize_address(sold)
    bought = normalize_address(bought)
    if not sold or not bought:
        return None
    block_time = parse_timestamp(row.get("block_time"))
    if block_time is None:
        return None
    return SwapEvent(
        token_sold_address=sold,
        token_bought_address=bought,
        block_time=block_time,
        amount_usd=_as_float(row.get("amount_usd")) or 0.0,
        token_pair=row.get("token_pair") or None,
        tx_hash=row.get("tx_hash") or None,
        token_sold_symbol=row.get("token_sold_symbol") or None,
        token_bought_symbol=row.get("token_bought_symbol") or None,
        token_sold_amount=_as_float(row.get("token_sold_amount")),
        token_bought_amount=_as_float(row.get("token_bought_amount")),
    )


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class SwapCollector:
    """Walks the swap feed page by page until it is exhausted."""

    def __init__(
        self,
        client: Optional[DuneClient] = None,
        *,
        app_config: Optional[AppConfig] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        config = app_config or get_app_config()
        self._client = client if client is not None else DuneClient(config.data_sources)
        self._page_size = config.data_sources.dune_page_size
        self._max_retries = config.retry.page_max_retries
        self._retry_delay = config.retry.page_retry_delay_seconds
        self._sleep = sleep

    @property
    def page_size(self) -> int:
        return self._page_size

    async def fetch_page(self, offset: int) -> List[Dict[str, Any]]:
        """Raw rows at ``offset``; a page that keeps failing comes back empty."""

        try:
            return await call_with_fixed_retry(
                lambda: self._client.fetch_rows(self._page_size, offset),
                max_retries=self._max_retries,
                delay=self._retry_delay,
                sleep=self._sleep,
                description=f"swap page at offset {offset}",
            )
        except SourceError as exc:
            METRICS.increment("swaps.page_failures")
            logger.error("All retry attempts failed for swap page at offset %d: %s", offset, exc)
            return []

    async def collect_all(self, max_events: Optional[int] = None) -> List[SwapEvent]:
        if max_events is not None and max_events <= 0:
            return []
        if not self._client.is_configured:
            logger.warning("Swap feed is not configured; skipping swap collection")
            return []

        events: List[SwapEvent] = []
        offset = 0
        consecutive_empty = 0
        logger.info("Starting to fetch all swap events")
        while True:
            rows = await self.fetch_page(offset)
            METRICS.increment("swaps.pages")
            if not rows:
                consecutive_empty += 1
                if consecutive_empty >= 2:
                    break
                continue
            consecutive_empty = 0
            valid = [event for event in (parse_swap_row(row) for row in rows) if event is not None]
            dropped = len(rows) - len(valid)
            if dropped:
                METRICS.increment("swaps.rows_dropped", dropped)
                logger.debug("Dropped %d invalid swap rows at offset %d", dropped, offset)
            events.extend(valid)
            offset += len(rows)
            logger.info("Fetched %d swap rows (%d valid), total events %d", len(rows), len(valid), len(events))
            if max_events is not None and len(events) >= max_events:
                del events[max_events:]
                break
            if len(rows) < self._page_size:
                break
        METRICS.increment("swaps.events", len(events))
        logger.info("Completed fetching swap events. Total events: %d", len(events))
        return events


@dataclass
class _AggregateBuilder:
    buys: int = 0
    sells: int = 0
    total_volume_usd: float = 0.0
    last_swap_time: Optional[datetime] = None
    pairs: Set[str] = field(default_factory=set)

    def add_leg(self, event: SwapEvent) -> None:
        self.total_volume_usd += event.amount_usd
        if self.last_swap_time is None or event.block_time > self.last_swap_time:
            self.last_swap_time = event.block_time
        if event.token_pair:
            self.pairs.add(event.token_pair)

    def freeze(self) -> SwapAggregate:
        return SwapAggregate(
            buys=self.buys,
            sells=self.sells,
            total_volume_usd=self.total_volume_usd,
            last_swap_time=self.last_swap_time,
            pairs=frozenset(self.pairs),
        )


def aggregate_swaps(events: Iterable[SwapEvent]) -> Mapping[str, SwapAggregate]:
    """Group events by token: the sold token counts a sell, the bought token a buy."""

    builders: Dict[str, _AggregateBuilder] = {}
    for event in events:
        sold = builders.setdefault(event.token_sold_address, _AggregateBuilder())
        sold.sells += 1
        sold.add_leg(event)
        bought = builders.setdefault(event.token_bought_address, _AggregateBuilder())
        bought.buys += 1
        bought.add_leg(event)
    return {address: builder.freeze() for address, builder in builders.items()}


__all__ = ["SwapCollector", "aggregate_swaps", "parse_swap_row"]
