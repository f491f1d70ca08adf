"""Data models shared by the ingestion, aggregation and serving layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple


class PriceSource(str, Enum):
    """Upstream that produced a price."""

    PRIMARY = "coingecko"
    FALLBACK = "dexscreener"
    NONE = "none"


class Attribution(str, Enum):
    """Which upstream sources contributed data to a token record."""

    SWAP_ONLY = "swap_only"
    PRIMARY_ONLY = "primary_only"
    FALLBACK_ONLY = "fallback_only"
    BOTH = "both"
    NONE = "none"


class OutcomeKind(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class TokenMetadata:
    """Static token description loaded from the metadata CSV."""

    address: str
    name: str
    symbol: str
    decimals: int = 0
    logo: str = ""


@dataclass(frozen=True, slots=True)
class PriceInfo:
    """Price and 24h trading statistics reported by a price source."""

    usd: Optional[float] = None
    change_24h: Optional[float] = None
    buys: int = 0
    sells: int = 0
    volume_24h: float = 0.0
    updated_at: Optional[datetime] = None
    pairs: Tuple[str, ...] = ()
    source: PriceSource = PriceSource.NONE

    @property
    def has_data(self) -> bool:
        return self.usd is not None or self.buys > 0 or self.sells > 0


NO_PRICE = PriceInfo()


@dataclass(frozen=True, slots=True)
class SourceOutcome:
    """Result of asking one source about one address."""

    kind: OutcomeKind
    info: Optional[PriceInfo] = None
    reason: Optional[str] = None

    @classmethod
    def found(cls, info: PriceInfo) -> "SourceOutcome":
        return cls(OutcomeKind.FOUND, info=info)

    @classmethod
    def not_found(cls) -> "SourceOutcome":
        return cls(OutcomeKind.NOT_FOUND)

    @classmethod
    def error(cls, reason: str) -> "SourceOutcome":
        return cls(OutcomeKind.ERROR, reason=reason)

    @property
    def is_found(self) -> bool:
        return self.kind is OutcomeKind.FOUND

    @property
    def is_error(self) -> bool:
        return self.kind is OutcomeKind.ERROR


@dataclass(frozen=True, slots=True)
class SwapEvent:
    """A validated swap row from the event feed."""

    token_sold_address: str
    token_bought_address: str
    block_time: datetime
    amount_usd: float = 0.0
    token_pair: Optional[str] = None
    tx_hash: Optional[str] = None
    token_sold_symbol: Optional[str] = None
    token_bought_symbol: Optional[str] = None
    token_sold_amount: Optional[float] = None
    token_bought_amount: Optional[float] = None


@dataclass(frozen=True, slots=True)
class SwapAggregate:
    """Swap activity for one token over a single collection pass."""

    buys: int = 0
    sells: int = 0
    total_volume_usd: float = 0.0
    last_swap_time: Optional[datetime] = None
    pairs: frozenset[str] = frozenset()

    @property
    def has_activity(self) -> bool:
        return self.buys > 0 or self.sells > 0


EMPTY_SWAP_AGGREGATE = SwapAggregate()


@dataclass(frozen=True, slots=True)
class TokenActivity:
    """Internal activity details kept alongside a record but not served over HTTP."""

    volume_24h: float = 0.0
    swap_amount_usd: float = 0.0
    last_swap_time: Optional[datetime] = None
    pairs: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TokenInfo:
    buys: int = 0
    sells: int = 0

    @property
    def swaps(self) -> int:
        return self.buys + self.sells


@dataclass(frozen=True, slots=True)
class TokenRecord:
    """Composite per-token view served to readers."""

    contract_address: str
    name: str
    symbol: str
    decimals: int
    logo: str
    current_price: Optional[float]
    price_updated_at: datetime
    last_24h_variation: Optional[float]
    info: TokenInfo
    price_source: PriceSource = PriceSource.NONE
    attribution: Attribution = Attribution.NONE
    activity: TokenActivity = field(default_factory=TokenActivity)


@dataclass(frozen=True, slots=True)
class SourceCounts:
    """Per-refresh tallies of what each upstream contributed."""

    swap_events: int = 0
    swap_tokens: int = 0
    priced_total: int = 0
    primary_priced: int = 0
    fallback_priced: int = 0
    swap_only: int = 0
    primary_only: int = 0
    fallback_only: int = 0
    both: int = 0
    none: int = 0
    total_processed: int = 0
    filtered_out: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "swap_events": self.swap_events,
            "swap_tokens": self.swap_tokens,
            "priced_total": self.priced_total,
            "primary_priced": self.primary_priced,
            "fallback_priced": self.fallback_priced,
            "swap_only": self.swap_only,
            "primary_only": self.primary_only,
            "fallback_only": self.fallback_only,
            "both": self.both,
            "none": self.none,
            "total_processed": self.total_processed,
            "filtered_out": self.filtered_out,
        }


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Immutable result of one successful refresh."""

    records: Tuple[TokenRecord, ...] = ()
    built_at: Optional[datetime] = None
    success: bool = False
    source_counts: SourceCounts = field(default_factory=SourceCounts)

    def __len__(self) -> int:
        return len(self.records)


EMPTY_SNAPSHOT = Snapshot()


__all__ = [
    "Attribution",
    "EMPTY_SNAPSHOT",
    "EMPTY_SWAP_AGGREGATE",
    "NO_PRICE",
    "OutcomeKind",
    "PriceInfo",
    "PriceSource",
    "Snapshot",
    "SourceCounts",
    "SourceOutcome",
    "SwapAggregate",
    "SwapEvent",
    "TokenActivity",
    "TokenInfo",
    "TokenMetadata",
    "TokenRecord",
]
