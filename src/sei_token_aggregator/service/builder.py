"""One full refresh pass: metadata, swaps, prices, aggregation."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, Optional

from ..analysis.aggregation import AggregationEngine
from ..config.settings import AppConfig, get_app_config
from ..ingestion.metadata import MetadataStore
from ..ingestion.pricing import PriceFetcher
from ..ingestion.swaps import SwapCollector, aggregate_swaps
from ..models.schemas import Snapshot
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import utc_now

logger = get_logger(__name__)


class SnapshotBuilder:
    """Produces a fresh :class:`Snapshot`; raises if the pass cannot complete."""

    def __init__(
        self,
        *,
        metadata: MetadataStore,
        swaps: SwapCollector,
        prices: PriceFetcher,
        engine: AggregationEngine,
        max_swap_events: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._metadata = metadata
        self._swaps = swaps
        self._prices = prices
        self._engine = engine
        self._max_swap_events = max_swap_events
        self._clock = clock

    @classmethod
    def from_config(cls, config: Optional[AppConfig] = None) -> "SnapshotBuilder":
        app_config = config or get_app_config()
        return cls(
            metadata=MetadataStore(app_config.metadata),
            swaps=SwapCollector(app_config=app_config),
            prices=PriceFetcher(app_config),
            engine=AggregationEngine(app_config.cache),
            max_swap_events=app_config.data_sources.max_swap_events,
        )

    async def build(self) -> Snapshot:
        started = time.perf_counter()
        await self._metadata.ensure_loaded()

        events = await self._swaps.collect_all(self._max_swap_events)
        swap_aggregates = aggregate_swaps(events)
        logger.info(
            "Collected %d swap events across %d token addresses", len(events), len(swap_aggregates)
        )

        addresses = self._metadata.addresses()
        prices = await self._prices.fetch_prices(addresses)

        result = self._engine.aggregate(
            addresses,
            swap_aggregates,
            prices,
            self._metadata.all(),
            swap_events=len(events),
        )
        METRICS.observe("refresh.build_seconds", time.perf_counter() - started)
        return Snapshot(
            records=result.records,
            built_at=self._clock(),
            success=True,
            source_counts=result.counts,
        )


__all__ = ["SnapshotBuilder"]
