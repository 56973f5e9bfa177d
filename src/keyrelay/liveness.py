"""
Liveness probing and stale-state reaping.

Two independent loops:
- Probe loop: every connection must answer the previous WebSocket ping
  before the next tick, otherwise it is treated as dead, run through
  the disconnection path and terminated.
- Reaper loop: drops negotiations that never completed within the
  connection timeout and, when enabled, devices whose last heartbeat
  is older than the same timeout.

Both loops take the router lock before touching shared state.
"""

import asyncio
import logging
from typing import Optional

from keyrelay.config import LivenessConfig
from keyrelay.router import SignalingRouter

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """Runs the probe and reaper loops for a router.

    Usage:
        monitor = LivenessMonitor(config, router)
        await monitor.start()
        ...
        await monitor.stop()
    """

    def __init__(self, config: LivenessConfig, router: SignalingRouter):
        """Initialize the monitor.

        Args:
            config: Probe/reaper intervals and timeout.
            router: Router whose connections and state are monitored.
        """
        self._config = config
        self._router = router
        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def config(self) -> LivenessConfig:
        """Get the liveness configuration."""
        return self._config

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start both loops."""
        if self._running:
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(
                self._run_every(self._config.probe_interval, self.probe_once)
            ),
            asyncio.create_task(
                self._run_every(self._config.cleanup_interval, self.reap_once)
            ),
        ]
        logger.info(
            f"LivenessMonitor started (probe={self._config.probe_interval}s, "
            f"cleanup={self._config.cleanup_interval}s, "
            f"timeout={self._config.connection_timeout}s)"
        )

    async def stop(self) -> None:
        """Stop both loops."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("LivenessMonitor stopped")

    async def _run_every(self, interval: float, action) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval)
                await action()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Liveness loop error: {e}")

    async def probe_once(self) -> list[str]:
        """Run one probe tick.

        Returns:
            Identities of registered devices found dead on this tick.
        """
        router = self._router
        dead = []
        dead_identities: list[str] = []

        async with router.lock:
            for conn in router.connections:
                if conn.closing:
                    continue
                if not conn.alive:
                    dead.append(conn)
                    router.forget_locked(conn)
                    identity = conn.identity
                    if identity is not None and router.registry.lookup(identity) is conn:
                        router.disconnect_locked(identity)
                        dead_identities.append(identity)
                    continue
                conn.alive = False
                conn.probe()

        for conn in dead:
            logger.warning(f"No pong from {conn.identity or 'unregistered client'}, terminating")
            conn.terminate()
        return dead_identities

    async def reap_once(self) -> tuple[list, list[str]]:
        """Run one reaper sweep.

        Returns:
            (evicted pair keys, reaped device identities)
        """
        router = self._router
        timeout = self._config.connection_timeout
        idle = []
        reaped: list[str] = []

        async with router.lock:
            if self._config.reap_idle_devices:
                # Before eviction: disconnecting notifies peers through these records
                for identity in router.registry.stale(timeout):
                    conn = router.registry.lookup(identity)
                    router.disconnect_locked(identity)
                    router.forget_locked(conn)
                    idle.append(conn)
                    reaped.append(identity)
                    logger.info(f"Removing idle device {identity}")

            evicted = router.negotiations.evict_older_than(timeout)
            for pair in evicted:
                logger.info(f"Removing stale negotiation {pair}")

        for conn in idle:
            conn.terminate()
        return evicted, reaped
