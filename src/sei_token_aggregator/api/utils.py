"""Utility helpers for API serialization."""

from __future__ import annotations

from typing import Any, Dict

from ..models.schemas import TokenRecord


def token_to_dto(record: TokenRecord) -> Dict[str, Any]:
    """Public response shape of a token; internal activity data is not exposed."""

    return {
        "name": record.name,
        "symbol": record.symbol,
        "decimals": record.decimals,
        "logo": record.logo,
        "contractAddress": record.contract_address,
        "currentPrice": record.current_price,
        "priceUpdatedAt": record.price_updated_at.isoformat(),
        "last24hVariation": record.last_24h_variation,
        "info": {
            "buys": record.info.buys,
            "sells": record.info.sells,
            "swaps": record.info.swaps,
        },
    }


__all__ = ["token_to_dto"]
