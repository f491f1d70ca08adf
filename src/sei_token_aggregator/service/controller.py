"""Single-flight owner of the served token snapshot."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

from ..config.settings import AppConfig, get_app_config
from ..models.schemas import EMPTY_SNAPSHOT, Snapshot, SourceCounts
from ..monitoring.logger import correlation_scope, get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import utc_now


class SnapshotSource(Protocol):
    async def build(self) -> Snapshot:  # pragma: no cover - protocol
        ...


class CacheState(str, Enum):
    EMPTY = "empty"
    SERVING = "serving"
    REFRESHING = "refreshing"


class TtlState(str, Enum):
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"


@dataclass(frozen=True, slots=True)
class CacheStatus:
    state: CacheState
    ttl_state: TtlState
    built_at: Optional[datetime]
    age_seconds: Optional[float]
    last_refresh_success: bool
    last_refresh_at: Optional[datetime]
    last_error: Optional[str]
    total_tokens: int
    source_counts: SourceCounts

    @property
    def health(self) -> str:
        return "healthy" if self.last_refresh_success else "degraded"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "cache_status": self.ttl_state.value,
            "last_refresh": self.built_at.isoformat() if self.built_at else None,
            "cache_age_seconds": int(self.age_seconds) if self.age_seconds is not None else None,
            "total_tokens": self.total_tokens,
            "last_fetch": {
                "success": self.last_refresh_success,
                "timestamp": self.last_refresh_at.isoformat() if self.last_refresh_at else None,
                "error": self.last_error,
                **self.source_counts.to_dict(),
            },
            "health": self.health,
        }


class CacheController:
    """Serves the last good snapshot and refreshes it with at most one build in flight.

    ``trigger_refresh`` checks and claims the in-flight slot before its first
    ``await``, so on a single event loop no second build can start while one is
    running. Callers arriving during a build get the currently served snapshot
    immediately; callers that want the new one use :meth:`wait_for_refresh`.
    """

    def __init__(
        self,
        builder: SnapshotSource,
        *,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self._builder = builder
        self._ttl = ttl_seconds
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleep
        self._logger = get_logger(__name__)
        self._snapshot: Snapshot = EMPTY_SNAPSHOT
        self._built_at: Optional[float] = None
        self._inflight: Optional[asyncio.Future[Snapshot]] = None
        self._last_success = False
        self._last_refresh_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, builder: SnapshotSource, config: Optional[AppConfig] = None) -> "CacheController":
        app_config = config or get_app_config()
        return cls(builder, ttl_seconds=app_config.cache.ttl_seconds)

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def state(self) -> CacheState:
        if self._inflight is not None:
            return CacheState.REFRESHING
        if self._built_at is None:
            return CacheState.EMPTY
        return CacheState.SERVING

    def get_snapshot(self) -> Snapshot:
        return self._snapshot

    def is_stale(self) -> bool:
        if self._built_at is None:
            return True
        return self._clock() - self._built_at >= self._ttl

    async def trigger_refresh(self) -> Snapshot:
        """Start a refresh unless one is running; never raises on build failure."""

        if self._inflight is not None:
            METRICS.increment("refresh.skipped_in_flight")
            self._logger.info("Refresh already in progress; serving current snapshot")
            return self._snapshot
        inflight: asyncio.Future[Snapshot] = asyncio.get_running_loop().create_future()
        self._inflight = inflight
        try:
            await self._run_refresh()
        finally:
            self._inflight = None
            if not inflight.done():
                inflight.set_result(self._snapshot)
        return self._snapshot

    async def refresh_if_stale(self) -> Snapshot:
        if self._inflight is None and self.is_stale():
            return await self.trigger_refresh()
        return self._snapshot

    async def wait_for_refresh(self) -> Snapshot:
        """Attach to the in-flight refresh, if any, and return its resulting snapshot."""

        inflight = self._inflight
        if inflight is None:
            return self._snapshot
        return await asyncio.shield(inflight)

    async def _run_refresh(self) -> None:
        with correlation_scope() as refresh_id:
            started = time.perf_counter()
            self._logger.info("Refreshing token snapshot", extra={"refresh_id": refresh_id})
            try:
                snapshot = await self._builder.build()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                self._last_success = False
                self._last_refresh_at = self._wall_clock()
                self._last_error = str(exc) or exc.__class__.__name__
                METRICS.increment("refresh.failures")
                self._logger.exception(
                    "Snapshot refresh failed; keeping previous snapshot of %d tokens",
                    len(self._snapshot),
                )
                return
            self._snapshot = snapshot
            self._built_at = self._clock()
            self._last_success = True
            self._last_refresh_at = self._wall_clock()
            self._last_error = None
            METRICS.increment("refresh.successes")
            METRICS.gauge("snapshot.tokens", len(snapshot))
            METRICS.observe("refresh.duration_seconds", time.perf_counter() - started)
            self._logger.info("Snapshot refreshed with %d tokens", len(snapshot))

    def get_status(self) -> CacheStatus:
        if self._built_at is None:
            ttl_state = TtlState.EMPTY
            age = None
        else:
            age = max(self._clock() - self._built_at, 0.0)
            ttl_state = TtlState.STALE if age >= self._ttl else TtlState.FRESH
        return CacheStatus(
            state=self.state,
            ttl_state=ttl_state,
            built_at=self._snapshot.built_at,
            age_seconds=age,
            last_refresh_success=self._last_success,
            last_refresh_at=self._last_refresh_at,
            last_error=self._last_error,
            total_tokens=len(self._snapshot),
            source_counts=self._snapshot.source_counts,
        )

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, *, refresh_immediately: bool = True) -> None:
        """Start the periodic refresher; its interval equals the TTL."""
        if not self.is_running():
            self._task = asyncio.create_task(self._run_periodic(refresh_immediately))

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run_periodic(self, refresh_immediately: bool) -> None:
        if refresh_immediately:
            await self._tick()
        while True:
            await self._sleep(self._ttl)
            await self._tick()

    async def _tick(self) -> None:
        if self._inflight is not None:
            METRICS.increment("refresh.ticks_skipped")
            self._logger.info("Auto refresh: refresh already in progress, skipping")
            return
        await self.trigger_refresh()


__all__ = ["CacheController", "CacheState", "CacheStatus", "SnapshotSource", "TtlState"]
