"""Shared HTTP plumbing for the upstream API clients."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import requests
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from ..config.settings import RetryConfig
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS

DEFAULT_HEADERS = {"User-Agent": "sei-token-aggregator/1.0", "Accept": "application/json"}

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[None]]

_logger = get_logger(__name__)


class SourceError(Exception):
    """An upstream request failed or returned an unusable payload."""

    def __init__(self, source: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


class RateLimitedError(SourceError):
    """The upstream answered with HTTP 429."""


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Exponential backoff applied to rate-limited requests."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "BackoffPolicy":
        return cls(
            max_retries=config.rate_limit_max_retries,
            initial_delay=config.rate_limit_initial_delay_seconds,
            max_delay=config.rate_limit_max_delay_seconds,
        )

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-based)."""
        return min(self.initial_delay * (2 ** (retry_number - 1)), self.max_delay)


class JsonHttpSource:
    """Base class wrapping a ``requests.Session`` with error mapping."""

    source_name = "http"

    def __init__(self, session: Optional[requests.Session], timeout: float) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout
        self._logger = get_logger(f"{__name__}.{self.source_name}")

    def _get_json(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        merged_headers = dict(DEFAULT_HEADERS)
        if headers:
            merged_headers.update(headers)
        METRICS.increment(f"source.{self.source_name}.requests")
        try:
            response = self._session.get(
                url,
                params=params,
                headers=merged_headers,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            METRICS.increment(f"source.{self.source_name}.errors")
            raise SourceError(self.source_name, f"request failed: {exc}") from exc
        if response.status_code == 429:
            METRICS.increment(f"source.{self.source_name}.rate_limited")
            raise RateLimitedError(self.source_name, "rate limited", status_code=429)
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            METRICS.increment(f"source.{self.source_name}.errors")
            raise SourceError(
                self.source_name, f"HTTP {response.status_code}", status_code=response.status_code
            ) from exc
        try:
            return response.json()
        except ValueError as exc:
            METRICS.increment(f"source.{self.source_name}.errors")
            raise SourceError(self.source_name, "invalid JSON payload") from exc

    async def _aget_json(self, url: str, **kwargs: Any) -> Any:
        return await asyncio.to_thread(self._get_json, url, **kwargs)


async def call_with_backoff(
    func: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    *,
    sleep: SleepFn = asyncio.sleep,
    description: str = "request",
) -> T:
    """Await ``func`` retrying only on ``RateLimitedError`` with exponential backoff.

    Raises the last ``RateLimitedError`` once ``policy.max_retries`` retries are
    spent; every other exception propagates on the first failure.
    """

    def _log_retry(state) -> None:
        retry_number = state.attempt_number
        _logger.info(
            "Rate limited during %s; retrying in %.1fs (attempt %d/%d)",
            description,
            policy.delay_for(retry_number),
            retry_number,
            policy.max_retries,
        )

    retrying = AsyncRetrying(
        retry=retry_if_exception_type(RateLimitedError),
        wait=wait_exponential(multiplier=policy.initial_delay, max=policy.max_delay),
        stop=stop_after_attempt(policy.max_retries + 1),
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await func()
    raise AssertionError("unreachable")  # pragma: no cover


async def call_with_fixed_retry(
    func: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    delay: float,
    sleep: SleepFn = asyncio.sleep,
    description: str = "request",
) -> T:
    """Await ``func`` retrying any ``SourceError`` with a constant delay."""

    def _log_retry(state) -> None:
        _logger.warning(
            "%s failed (attempt %d/%d): %s; retrying in %.1fs",
            description,
            state.attempt_number,
            max_retries + 1,
            state.outcome.exception(),
            delay,
        )

    retrying = AsyncRetrying(
        retry=retry_if_exception_type(SourceError),
        wait=wait_fixed(delay),
        stop=stop_after_attempt(max_retries + 1),
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await func()
    raise AssertionError("unreachable")  # pragma: no cover


__all__ = [
    "BackoffPolicy",
    "JsonHttpSource",
    "RateLimitedError",
    "SourceError",
    "call_with_backoff",
    "call_with_fixed_retry",
]
