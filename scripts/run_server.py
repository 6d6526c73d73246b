#!/usr/bin/env python3
"""
Run the registry HTTP server.

Configuration comes from REGISTRY_* environment variables; flags override
the listener and backend.

Usage:
    # In-memory backend on :8080
    python scripts/run_server.py

    # Redis REST gateway backend
    REGISTRY_KV_REST_URL=https://kv.example.com REGISTRY_KV_REST_TOKEN=... \\
        python scripts/run_server.py --backend rest --port 9000
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from dataclasses import replace

from appregistry.api.server import start_registry_server, stop_registry_server
from appregistry.config import BackendKind, RegistryConfig, ServerConfig
from appregistry.logging_config import setup_logging
from appregistry.metrics import RegistryMetrics
from appregistry.service import RegistryService

logger = logging.getLogger(__name__)


async def serve(config: RegistryConfig) -> int:
    """Run until SIGINT/SIGTERM."""
    metrics = RegistryMetrics()
    service = RegistryService.from_config(config, metrics=metrics)
    runner = await start_registry_server(
        service, config.server.host, config.server.port, metrics=metrics
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
        logger.info("Shutdown requested")
    finally:
        await stop_registry_server(runner)
        await service.close()
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run the application registry HTTP server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--host", type=str, default=None, help="Bind address")
    parser.add_argument("--port", type=int, default=None, help="Bind port")
    parser.add_argument(
        "--backend",
        choices=[k.value for k in BackendKind],
        default=None,
        help="Key-value backend (default: REGISTRY_BACKEND or memory)",
    )
    parser.add_argument("--log-level", type=str, default="INFO", help="Log level")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    args = parser.parse_args()

    setup_logging(level=args.log_level.upper(), json_format=args.json_logs)

    config = RegistryConfig.from_env()
    if args.host is not None or args.port is not None:
        config.server = ServerConfig(
            host=args.host if args.host is not None else config.server.host,
            port=args.port if args.port is not None else config.server.port,
        )
    if args.backend is not None:
        config.backend = replace(config.backend, kind=BackendKind(args.backend))

    logger.info(
        "Starting registry",
        extra={"backend": config.backend.kind.value, "port": config.server.port},
    )
    return asyncio.run(serve(config))


if __name__ == "__main__":
    raise SystemExit(main())
