"""Shared constants and small helpers for token addresses and timestamps."""

from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def normalize_address(address: str) -> str:
    """Canonical form of a token address used as the key across all sources."""
    return address.strip().lower()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse Dune/ISO style timestamps such as ``2024-05-01 12:00:00.000 UTC``."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith(" UTC"):
        text = text[:-4]
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    "normalize_address",
    "parse_timestamp",
    "utc_now",
]
