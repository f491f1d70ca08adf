"""Entrypoint for the SEI token aggregator."""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Optional

import uvicorn

from .api.app import create_app
from .config.settings import AppConfig, get_app_config
from .monitoring import bootstrap_observability
from .monitoring.logger import get_logger
from .service.builder import SnapshotBuilder
from .service.controller import CacheController, CacheStatus

logger = get_logger(__name__)


def build_controller(config: Optional[AppConfig] = None) -> CacheController:
    app_config = config or get_app_config()
    return CacheController.from_config(SnapshotBuilder.from_config(app_config), app_config)


async def run_once(controller: CacheController) -> CacheStatus:
    await controller.trigger_refresh()
    status = controller.get_status()
    logger.info(
        "Refresh finished: success=%s tokens=%d", status.last_refresh_success, status.total_tokens
    )
    return status


async def run_loop(controller: CacheController, max_cycles: Optional[int] = None) -> None:
    """Refresh every TTL without serving HTTP; stops after ``max_cycles`` when given."""
    cycle = 0
    while True:
        cycle += 1
        await controller.trigger_refresh()
        logger.info("Cycle %d complete", cycle, extra={"cycle": cycle})
        if max_cycles is not None and cycle >= max_cycles:
            break
        await asyncio.sleep(controller.ttl_seconds)


def serve(config: AppConfig, host: Optional[str] = None, port: Optional[int] = None) -> None:
    app = create_app(build_controller(config), config)
    uvicorn.run(
        app,
        host=host or config.api.host,
        port=port or config.api.port,
        log_level=config.monitoring.log_level.lower(),
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Aggregate SEI token prices and swap activity")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single refresh, print the cache status as JSON and exit.",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Refresh continuously at the cache TTL interval without serving HTTP.",
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="Optional limit to the number of loop iterations to execute.",
    )
    parser.add_argument("--host", help="Override API host")
    parser.add_argument("--port", type=int, help="Override API port")
    args = parser.parse_args()

    config = get_app_config()
    bootstrap_observability(config)
    if args.once:
        status = asyncio.run(run_once(build_controller(config)))
        print(json.dumps(status.to_dict(), indent=2))
    elif args.loop:
        asyncio.run(run_loop(build_controller(config), args.max_cycles))
    else:
        serve(config, args.host, args.port)


if __name__ == "__main__":
    main()
