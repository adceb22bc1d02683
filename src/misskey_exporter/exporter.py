"""
Composition root and process entry point.

MisskeyExporter wires the store connector, the API client, the collector,
the sampler and the health checker together from an ExporterConfig.
run() serves the HTTP application with uvicorn until SIGINT or SIGTERM,
then shuts everything down in order.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Any

import uvicorn
from fastapi import FastAPI
from pydantic import ValidationError

from misskey_exporter import __version__
from misskey_exporter.api_client import MisskeyApiClient
from misskey_exporter.collector import MetricsCollector
from misskey_exporter.config import ExporterConfig, load_config
from misskey_exporter.database import Database
from misskey_exporter.health import HealthChecker
from misskey_exporter.logging import get_logger, setup_logging
from misskey_exporter.sampler import MetricsSampler
from misskey_exporter.server import create_app

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1

STARTUP_POLL_SECONDS = 0.1


class MisskeyExporter:
    """
    Owns every long-lived component of the exporter.

    Example:
        >>> exporter = MisskeyExporter(config)
        >>> await exporter.start()
        >>> app = exporter.app
        >>> await exporter.shutdown()
    """

    def __init__(self, config: ExporterConfig) -> None:
        self.config = config
        self.database = Database.from_config(config.database)
        self.api_client = MisskeyApiClient.from_config(config.misskey)
        self.collector = MetricsCollector()
        self.sampler = MetricsSampler(
            self.database,
            self.api_client,
            self.collector,
            interval_ms=config.sampling.update_interval_ms,
        )
        self.health_checker = HealthChecker(self.database, self.api_client)
        self.app: FastAPI = create_app(self.sampler, self.health_checker)

    async def start(self) -> None:
        """
        Connect to the store and start sampling.

        Raises:
            Exception: If the initial store connection fails.
        """
        logger.info(
            "Starting Misskey exporter",
            extra={"version": __version__, "config": self.config.to_log_dict()},
        )

        if self.config.sampling.enable_log_parsing:
            logger.info("Log parsing is enabled but not implemented; ignoring")

        await self.database.connect()
        await self.sampler.start()

    async def shutdown(self) -> None:
        """Stop sampling and close the store connection."""
        logger.info("Shutting down Misskey exporter")
        await self.sampler.stop()
        await self.database.disconnect()
        logger.info("Misskey exporter stopped")

    def get_status(self) -> dict[str, Any]:
        """Get exporter status for diagnostics."""
        return {
            "version": __version__,
            "database": self.database.state.value,
            "sampler": self.sampler.get_status().to_dict(),
        }


async def run(config: ExporterConfig) -> int:
    """
    Run the exporter until a shutdown signal arrives.

    Args:
        config: Loaded configuration.

    Returns:
        Process exit code.
    """
    exporter = MisskeyExporter(config)

    try:
        await exporter.start()
    except Exception as e:
        logger.error(
            "Failed to start exporter",
            extra={"error_type": type(e).__name__, "error": str(e)},
        )
        await exporter.shutdown()
        return EXIT_FAILURE

    server = uvicorn.Server(
        uvicorn.Config(
            exporter.app,
            host=config.server.host,
            port=config.server.port,
            log_config=None,
            access_log=False,
        )
    )
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received shutdown signal", extra={"signal": sig.name})
        server.should_exit = True

    logger.info(
        "Serving metrics",
        extra={"host": config.server.host, "port": config.server.port},
    )

    serve_task = asyncio.create_task(server.serve())
    installed: list[signal.Signals] = []

    try:
        # Replace the handlers uvicorn installs inside serve() once it is up
        while not server.started and not serve_task.done():
            await asyncio.sleep(STARTUP_POLL_SECONDS)

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, signal_handler, sig)
                installed.append(sig)
        except (ValueError, NotImplementedError):
            # Signal handling not supported on this platform
            pass

        await serve_task
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await exporter.shutdown()

    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """
    Console entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv).

    Returns:
        Process exit code.
    """
    try:
        config = load_config(cli_args=argv)
    except (FileNotFoundError, ValidationError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_FAILURE

    setup_logging(config.logging)
    return asyncio.run(run(config))
