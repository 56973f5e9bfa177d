"""Relay orchestration - ties router, liveness monitor and server together."""

import asyncio
import logging
import signal
from typing import Optional

from keyrelay.config import Config
from keyrelay.liveness import LivenessMonitor
from keyrelay.router import SignalingRouter
from keyrelay.server import RelayServer

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """Error during relay startup."""

    pass


class RelayDaemon:
    """Main process object.

    Responsibilities:
    - Own the signaling router (registry and negotiation table)
    - Run the liveness probe and reaper
    - Serve the WebSocket and HTTP endpoints
    - Shut down gracefully on SIGTERM/SIGINT
    """

    def __init__(self, config: Config, router: Optional[SignalingRouter] = None):
        """Initialize daemon.

        Args:
            config: Relay configuration.
            router: Optional injected router (for testing).
        """
        self._config = config
        self._running = False
        self.router = router or SignalingRouter(
            handler_timeout=config.relay.handler_timeout
        )
        self.monitor = LivenessMonitor(config.liveness, self.router)
        self.server = RelayServer(config, self.router)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Start serving.

        Raises:
            StartupError: If the listening socket cannot be opened.
        """
        host = host or self._config.bind_address
        port = self._config.port if port is None else port
        logger.info("Starting relay...")

        try:
            await self.server.start(host, port)
        except OSError as e:
            await self.server.close()
            raise StartupError(f"Cannot listen on {host}:{port}: {e}") from e

        await self.monitor.start()
        self._setup_signals()

        self._running = True
        logger.info(f"Relay running on port {self.server.get_port()}")

    async def run_forever(self) -> None:
        """Run until a shutdown signal."""
        if not self._running:
            await self.start()

        try:
            while self._running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await self._shutdown()

    async def stop(self) -> None:
        """Request a graceful stop."""
        self._running = False

    def _setup_signals(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(
                    sig,
                    lambda: asyncio.create_task(self.stop()),
                )
            except (NotImplementedError, RuntimeError):
                # Not available on this platform or outside the main thread
                logger.debug(f"Signal handler for {sig} not installed")

    async def _shutdown(self) -> None:
        """Perform graceful shutdown."""
        logger.info("Shutting down gracefully")
        await self.monitor.stop()
        await self.server.close()
        logger.info("Relay stopped")
