"""Merge swap activity and price data into per-token records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..config.settings import CacheConfig, get_app_config
from ..models.schemas import (
    EMPTY_SWAP_AGGREGATE,
    NO_PRICE,
    Attribution,
    PriceInfo,
    PriceSource,
    SourceCounts,
    SwapAggregate,
    TokenActivity,
    TokenInfo,
    TokenMetadata,
    TokenRecord,
)
from ..monitoring.logger import get_logger
from ..utils.constants import normalize_address, utc_now

logger = get_logger(__name__)


def classify_attribution(swaps: SwapAggregate, price: PriceInfo) -> Attribution:
    """Which sources contributed; used for reporting only, never for merging."""

    has_swaps = swaps.has_activity
    has_price = price.has_data
    if has_swaps and has_price:
        return Attribution.BOTH
    if has_swaps:
        return Attribution.SWAP_ONLY
    if has_price and price.source is PriceSource.PRIMARY:
        return Attribution.PRIMARY_ONLY
    if has_price:
        return Attribution.FALLBACK_ONLY
    return Attribution.NONE


def build_record(
    address: str,
    meta: Optional[TokenMetadata],
    swaps: SwapAggregate,
    price: PriceInfo,
    *,
    now: datetime,
) -> TokenRecord:
    return TokenRecord(
        contract_address=address,
        name=meta.name if meta else address,
        symbol=meta.symbol if meta else address,
        decimals=meta.decimals if meta else 0,
        logo=meta.logo if meta else "",
        current_price=price.usd,
        price_updated_at=price.updated_at or now,
        last_24h_variation=price.change_24h,
        info=TokenInfo(buys=price.buys + swaps.buys, sells=price.sells + swaps.sells),
        price_source=price.source,
        attribution=classify_attribution(swaps, price),
        activity=TokenActivity(
            volume_24h=price.volume_24h,
            swap_amount_usd=swaps.total_volume_usd,
            last_swap_time=swaps.last_swap_time,
            pairs=tuple(dict.fromkeys([*price.pairs, *sorted(swaps.pairs)])),
        ),
    )


@dataclass(frozen=True, slots=True)
class AggregationResult:
    records: Tuple[TokenRecord, ...]
    counts: SourceCounts


class AggregationEngine:
    """Builds the ordered record list for one refresh pass."""

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        *,
        filter_tokens_without_data: Optional[bool] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        cfg = config or get_app_config().cache
        self._filter = (
            cfg.filter_tokens_without_data
            if filter_tokens_without_data is None
            else filter_tokens_without_data
        )
        self._clock = clock

    @property
    def filters_tokens_without_data(self) -> bool:
        return self._filter

    def aggregate(
        self,
        addresses: Iterable[str],
        swap_aggregates: Mapping[str, SwapAggregate],
        price_infos: Mapping[str, PriceInfo],
        metadata: Optional[Mapping[str, TokenMetadata]] = None,
        *,
        swap_events: int = 0,
    ) -> AggregationResult:
        now = self._clock()
        metadata = metadata or {}
        ordered = list(dict.fromkeys(normalize_address(address) for address in addresses if address))
        tally: Dict[Attribution, int] = {attribution: 0 for attribution in Attribution}
        records: List[TokenRecord] = []
        for address in ordered:
            swaps = swap_aggregates.get(address, EMPTY_SWAP_AGGREGATE)
            price = price_infos.get(address, NO_PRICE)
            record = build_record(address, metadata.get(address), swaps, price, now=now)
            tally[record.attribution] += 1
            logger.debug(
                "Token %s: attribution=%s price=%s buys=%d sells=%d",
                record.symbol,
                record.attribution.value,
                record.current_price,
                record.info.buys,
                record.info.sells,
            )
            if self._filter and record.attribution is Attribution.NONE:
                continue
            records.append(record)

        filtered_out = len(ordered) - len(records)
        counts = SourceCounts(
            swap_events=swap_events,
            swap_tokens=len(swap_aggregates),
            priced_total=sum(1 for info in price_infos.values() if info.usd is not None),
            primary_priced=sum(
                1 for info in price_infos.values()
                if info.usd is not None and info.source is PriceSource.PRIMARY
            ),
            fallback_priced=sum(
                1 for info in price_infos.values()
                if info.usd is not None and info.source is PriceSource.FALLBACK
            ),
            swap_only=tally[Attribution.SWAP_ONLY],
            primary_only=tally[Attribution.PRIMARY_ONLY],
            fallback_only=tally[Attribution.FALLBACK_ONLY],
            both=tally[Attribution.BOTH],
            none=tally[Attribution.NONE],
            total_processed=len(records),
            filtered_out=filtered_out,
        )
        logger.info(
            "Aggregated %d tokens: swap-only=%d primary-only=%d fallback-only=%d both=%d none=%d filtered=%d",
            len(ordered),
            counts.swap_only,
            counts.primary_only,
            counts.fallback_only,
            counts.both,
            counts.none,
            filtered_out,
        )
        return AggregationResult(records=tuple(records), counts=counts)


__all__ = ["AggregationEngine", "AggregationResult", "build_record", "classify_attribution"]
