"""HTTP application factory for the token snapshot API."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Set

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from ..config.settings import AppConfig, get_app_config
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..service.controller import CacheController, CacheState
from ..utils.constants import utc_now
from .queries import (
    ORDER_COLUMNS,
    TokenQuery,
    clamp_limit,
    clamp_page,
    parse_addresses,
    select_tokens,
    top_traded,
)

logger = get_logger(__name__)

PRICE_SOURCES: Dict[str, Dict[str, Any]] = {
    "coingecko": {
        "enabled": True,
        "priority": 1,
        "description": "Primary source for token prices",
    },
    "dexscreener": {
        "enabled": True,
        "priority": 2,
        "description": "Fallback source when CoinGecko data is unavailable",
    },
}


def create_app(
    controller: CacheController,
    config: Optional[AppConfig] = None,
    *,
    manage_refresh: bool = True,
) -> FastAPI:
    """Build the API around ``controller``.

    With ``manage_refresh`` the periodic refresher is started on application
    startup and stopped on shutdown.
    """

    app_config = config or get_app_config()
    cfg = app_config.api
    background: Set[asyncio.Task] = set()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if manage_refresh:
            await controller.start(refresh_immediately=cfg.refresh_on_startup)
        try:
            yield
        finally:
            if manage_refresh:
                await controller.stop()
            for task in list(background):
                task.cancel()

    app = FastAPI(title="SEI Token Aggregator", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allowed_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics", response_class=PlainTextResponse)
    async def prometheus_metrics() -> str:
        return METRICS.export_prometheus()

    @app.get("/tokens")
    async def list_tokens(
        page: Optional[int] = Query(default=None),
        limit: Optional[int] = Query(default=None),
        addresses: Optional[str] = Query(default=None),
        order: Optional[str] = Query(default=None),
        sort: str = Query(default="desc"),
        is_most_swapped: bool = Query(default=False, alias="isMostSwapped"),
        new: bool = Query(default=False),
    ) -> JSONResponse:
        if order is not None and order not in ORDER_COLUMNS:
            raise HTTPException(
                status_code=400,
                detail=f"Unknown order column {order!r}; expected one of {sorted(ORDER_COLUMNS)}",
            )
        query = TokenQuery(
            page=clamp_page(page),
            limit=clamp_limit(limit, default=cfg.default_page_limit, maximum=cfg.max_page_limit),
            addresses=parse_addresses(addresses),
            order=order,
            descending=sort.lower() != "asc",
            most_swapped=is_most_swapped,
            new=new,
        )
        snapshot = controller.get_snapshot()
        METRICS.increment("api.tokens_requests")
        return JSONResponse(select_tokens(snapshot.records, query, now=utc_now()).to_dict())

    @app.get("/tokens/top-traded")
    async def list_top_traded(
        page: Optional[int] = Query(default=None),
        limit: Optional[int] = Query(default=None),
    ) -> JSONResponse:
        snapshot = controller.get_snapshot()
        result = top_traded(
            snapshot.records,
            clamp_page(page),
            clamp_limit(limit, default=cfg.default_top_traded_limit, maximum=cfg.max_page_limit),
        )
        return JSONResponse(result.to_dict())

    @app.get("/tokens/status")
    async def cache_status() -> JSONResponse:
        payload = controller.get_status().to_dict()
        payload["price_sources"] = PRICE_SOURCES
        return JSONResponse(payload)

    @app.post("/tokens/refresh")
    async def refresh_tokens(wait: bool = Query(default=False)) -> JSONResponse:
        if controller.state is CacheState.REFRESHING:
            if wait:
                await controller.wait_for_refresh()
                return JSONResponse({"refreshing": False, **controller.get_status().to_dict()})
            return JSONResponse(
                {"refreshing": True, **controller.get_status().to_dict()},
                status_code=202,
            )
        if wait:
            await controller.trigger_refresh()
            return JSONResponse({"refreshing": False, **controller.get_status().to_dict()})
        task = asyncio.create_task(controller.trigger_refresh())
        background.add(task)
        task.add_done_callback(background.discard)
        logger.info("Manual refresh scheduled")
        return JSONResponse(
            {"refreshing": True, **controller.get_status().to_dict()},
            status_code=202,
        )

    return app


__all__ = ["PRICE_SOURCES", "create_app"]
