from __future__ import annotations

from datetime import datetime, timezone

from sei_token_aggregator.analysis.aggregation import AggregationEngine, classify_attribution
from sei_token_aggregator.config.settings import CacheConfig
from sei_token_aggregator.models.schemas import (
    NO_PRICE,
    Attribution,
    PriceInfo,
    PriceSource,
    SwapAggregate,
    TokenMetadata,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _engine(filter_enabled: bool) -> AggregationEngine:
    return AggregationEngine(CacheConfig(filter_tokens_without_data=filter_enabled), clock=lambda: NOW)


def test_counts_are_summed_across_swap_feed_and_price_source() -> None:
    metadata = {"0xaa": TokenMetadata(address="0xaa", name="Alpha", symbol="AA", decimals=18)}
    swaps = {"0xaa": SwapAggregate(buys=2, sells=1)}
    prices = {"0xaa": PriceInfo(usd=1.50, buys=1, sells=0, updated_at=NOW, source=PriceSource.FALLBACK)}

    result = _engine(True).aggregate(["0xAA"], swaps, prices, metadata, swap_events=3)

    assert len(result.records) == 1
    record = result.records[0]
    assert record.contract_address == "0xaa"
    assert record.name == "Alpha"
    assert record.current_price == 1.50
    assert record.info.buys == 3
    assert record.info.sells == 1
    assert record.info.swaps == 4
    assert record.attribution is Attribution.BOTH
    assert result.counts.both == 1
    assert result.counts.swap_events == 3
    assert result.counts.fallback_priced == 1


def test_tokens_without_data_are_filtered_when_enabled() -> None:
    result = _engine(True).aggregate(["0xaa", "0xbb"], {"0xbb": SwapAggregate(buys=1)}, {})

    assert [record.contract_address for record in result.records] == ["0xbb"]
    assert result.counts.none == 1
    assert result.counts.filtered_out == 1
    assert result.counts.total_processed == 1


def test_tokens_without_data_are_kept_when_filter_disabled() -> None:
    result = _engine(False).aggregate(["0xaa"], {}, {"0xaa": NO_PRICE})

    assert len(result.records) == 1
    record = result.records[0]
    assert record.current_price is None
    assert record.info.buys == 0
    assert record.info.sells == 0
    assert record.name == "0xaa"
    assert record.price_updated_at == NOW
    assert result.counts.filtered_out == 0


def test_records_follow_first_seen_order_without_duplicates() -> None:
    swaps = {address: SwapAggregate(buys=1) for address in ("0xaa", "0xbb", "0xcc")}
    result = _engine(True).aggregate(["0xcc", "0xaa", "0xCC", "0xbb"], swaps, {})

    assert [record.contract_address for record in result.records] == ["0xcc", "0xaa", "0xbb"]


def test_classify_attribution() -> None:
    primary = PriceInfo(usd=1.0, source=PriceSource.PRIMARY)
    fallback = PriceInfo(usd=1.0, source=PriceSource.FALLBACK)
    active = SwapAggregate(sells=1)
    idle = SwapAggregate()

    assert classify_attribution(active, primary) is Attribution.BOTH
    assert classify_attribution(active, NO_PRICE) is Attribution.SWAP_ONLY
    assert classify_attribution(idle, primary) is Attribution.PRIMARY_ONLY
    assert classify_attribution(idle, fallback) is Attribution.FALLBACK_ONLY
    assert classify_attribution(idle, NO_PRICE) is Attribution.NONE
