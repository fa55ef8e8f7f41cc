#!/usr/bin/env python3
"""Run the F&O intraday engine.

Usage:
    python scripts/run_engine.py --profile paper
    python scripts/run_engine.py --profile paper --api-port 8015

Exit codes: 0 normal shutdown, 1 fatal runtime error, 2 configuration error.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import uvicorn

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fno_engine.config.config_manager import ConfigManager
from fno_engine.config.engine_config import EngineConfig
from fno_engine.core.errors import ConfigError, TradingError
from fno_engine.core.logging_setup import setup_logging
from fno_engine.engine.orchestrator import Orchestrator
from fno_engine.server.state import EngineState

logger = logging.getLogger("run_engine")


def parse_args():
    parser = argparse.ArgumentParser(description="NSE F&O Intraday Engine")
    parser.add_argument("--config", type=str, default=None,
                        help="Path to base config TOML (defaults to the packaged engine_base.toml)")
    parser.add_argument("--profile", type=str, default="paper",
                        help="Config profile (paper, live)")
    parser.add_argument("--local", type=str, default=None,
                        help="Optional local override TOML")
    parser.add_argument("--api-port", type=int, default=None,
                        help="Serve the monitoring API on this port")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args()


def load_config(args) -> EngineConfig:
    cm = ConfigManager()
    try:
        cm.load(args.config, profile=args.profile, local_path=args.local)
    except (FileNotFoundError, ValueError) as e:
        raise ConfigError(f"Cannot load configuration: {e}") from e
    return EngineConfig.from_manager(cm)


async def serve(config: EngineConfig, api_port: int | None) -> None:
    orchestrator = Orchestrator(config)
    EngineState().orchestrator = orchestrator

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, orchestrator.request_shutdown)

    server = None
    server_task = None
    if api_port is not None:
        server = uvicorn.Server(uvicorn.Config(
            "fno_engine.server.app:app",
            host=config.api_host,
            port=api_port,
            log_level="info",
        ))
        server_task = asyncio.create_task(server.serve())
        logger.info("API: http://%s:%d  WebSocket: ws://%s:%d/ws",
                    config.api_host, api_port, config.api_host, api_port)

    try:
        await orchestrator.run()
    finally:
        if server is not None:
            server.should_exit = True
            await server_task


def main() -> int:
    args = parse_args()
    try:
        config = load_config(args)
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error("[%s] %s", e.code, e.message)
        return 2

    setup_logging(
        "debug" if args.verbose else config.log_level,
        config.log_dir,
        config.log_rotation,
        config.log_retention_days,
    )
    logger.info("Starting %s engine for %s (profile=%s)",
                "paper" if config.enable_paper_trading else "LIVE", config.underlying, args.profile)

    try:
        asyncio.run(serve(config, args.api_port))
    except ConfigError as e:
        logger.error("[%s] %s", e.code, e.message)
        return 2
    except TradingError as e:
        logger.critical("Engine stopped: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
