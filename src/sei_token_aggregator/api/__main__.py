"""Entry point for launching the token API server."""

from __future__ import annotations

import argparse

from ..config.settings import get_app_config
from ..main import serve
from ..monitoring import bootstrap_observability


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve the SEI token snapshot API")
    parser.add_argument("--host", help="Override API host")
    parser.add_argument("--port", type=int, help="Override API port")
    args = parser.parse_args()

    config = get_app_config()
    bootstrap_observability(config)
    serve(config, args.host, args.port)


if __name__ == "__main__":
    main()
