"""Registry binding device keys to their live connections."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from keyrelay.identity import validate_key

logger = logging.getLogger(__name__)


@dataclass
class RegistryEntry:
    """A registered device.

    The connection is referenced, not owned: closing it is the job of
    whoever handles its lifecycle.
    """

    identity: str
    connection: Any  # keyrelay.channel.Connection
    last_heartbeat: float = field(default_factory=time.time)


class DeviceRegistry:
    """Maps device keys to connections, one connection per key.

    This is a plain state container; callers serialize access (the
    router holds its lock around every call).
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        """Initialize empty registry.

        Args:
            clock: Time source, injectable for tests.
        """
        self._entries: dict[str, RegistryEntry] = {}
        self._clock = clock

    def register(self, identity: str, connection: Any) -> Optional[RegistryEntry]:
        """Bind ``identity`` to ``connection``.

        Args:
            identity: Device key.
            connection: Connection to bind.

        Returns:
            The displaced entry if a different connection held the key,
            None otherwise.

        Raises:
            InvalidIdentity: If the key is malformed.
        """
        validate_key(identity)

        displaced = self._entries.get(identity)
        if displaced is not None and displaced.connection is connection:
            displaced = None

        self._entries[identity] = RegistryEntry(
            identity=identity,
            connection=connection,
            last_heartbeat=self._clock(),
        )
        if displaced is not None:
            logger.info(f"Device {identity} re-registered, superseding old channel")
        return displaced

    def touch(self, identity: str) -> None:
        """Record a heartbeat for ``identity`` (no-op if unknown)."""
        entry = self._entries.get(identity)
        if entry is not None:
            entry.last_heartbeat = self._clock()

    def lookup(self, identity: str) -> Optional[Any]:
        """Get the connection bound to ``identity``."""
        entry = self._entries.get(identity)
        return entry.connection if entry is not None else None

    def get(self, identity: str) -> Optional[RegistryEntry]:
        return self._entries.get(identity)

    def remove(self, identity: str) -> Optional[RegistryEntry]:
        """Unbind ``identity``. Safe to call for unknown keys."""
        return self._entries.pop(identity, None)

    def stale(self, timeout: float) -> list[str]:
        """Identities whose last heartbeat is older than ``timeout`` seconds."""
        now = self._clock()
        return [
            identity
            for identity, entry in self._entries.items()
            if now - entry.last_heartbeat > timeout
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity: str) -> bool:
        return identity in self._entries
