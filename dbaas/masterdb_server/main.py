"""
MasterDB Server - Main entry point.

This module starts the MasterDB server with all components:
- Document store (SQLite or in-memory)
- Schema registry and accessor cache, loaded from persisted metadata
- Schema event bus and synchronizer (local or Kafka)
- HTTP API (FastAPI served by uvicorn)

Usage:
    python -m dbaas.masterdb_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Every persisted schema is loaded before requests are accepted
    - Graceful shutdown stops the HTTP server before the store is closed

How to change safely:
    - Test shutdown sequence thoroughly
    - Keep startup failures fatal; a half-started instance serves stale schemas
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
import uvicorn

from .api import create_app
from .config import ServerConfig
from .service import MasterDataService

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.VerboseJSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiokafka").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class Server:
    """MasterDB Server orchestrator.

    Manages the lifecycle of the service and the HTTP server. The service
    itself is started and stopped by the application lifespan.

    Attributes:
        config: Server configuration
        service: MasterDataService instance
        http_server: uvicorn server running the FastAPI app

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        self.service: MasterDataService | None = None
        self.http_server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the server and wait for a shutdown request."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting MasterDB server")
        self.config.log_config()

        try:
            self.service = MasterDataService.from_config(self.config)
            app = create_app(self.service, cors_origins=self.config.http.cors_origins)

            self.http_server = uvicorn.Server(
                uvicorn.Config(
                    app,
                    host=self.config.http.host,
                    port=self.config.http.port,
                    log_config=None,
                    lifespan="on",
                )
            )
            self._task = asyncio.create_task(self.http_server.serve())

            self._running = True
            logger.info(
                "MasterDB server started successfully",
                extra={"http_bind": f"{self.config.http.host}:{self.config.http.port}"},
            )

            # Wait for shutdown signal or HTTP server exit
            shutdown = asyncio.create_task(self._shutdown_event.wait())
            done, _ = await asyncio.wait(
                {shutdown, self._task}, return_when=asyncio.FIRST_COMPLETED
            )
            shutdown.cancel()
            if self._task in done and self._task.exception() is not None:
                raise self._task.exception()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping MasterDB server")

        if self.http_server:
            self.http_server.should_exit = True
        if self._task:
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

        # Lifespan normally stops the service; cover an aborted startup
        if self.service and self.service.is_running:
            await self.service.stop()

        self._running = False
        logger.info("MasterDB server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Create server
    server = Server(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
