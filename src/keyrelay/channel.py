"""Device channels and per-connection outbound queues.

A ``Connection`` pairs a duplex channel with the identity bound to it
(if any) and the liveness flag used by the probe loop. Outbound frames
go through a bounded outbox drained by one writer task per connection,
so frames to one device keep their order and a slow device never
blocks the relay.
"""

import asyncio
import logging
from typing import Any, Optional, Protocol

from keyrelay.errors import ChannelUnavailable
from keyrelay.messages import encode_frame

logger = logging.getLogger(__name__)


class ChannelProtocol(Protocol):
    """Protocol for duplex message channels."""

    @property
    def closed(self) -> bool:
        """True once the channel can no longer send."""
        ...

    async def send_json(self, message: dict[str, Any]) -> None:
        """Send one message."""
        ...

    async def ping(self) -> None:
        """Send a transport-level liveness probe."""
        ...

    async def close(self) -> None:
        """Close the channel."""
        ...


class WebSocketChannel:
    """Channel over an aiohttp WebSocket (server side)."""

    def __init__(self, ws: Any):  # web.WebSocketResponse or compatible
        self._ws = ws

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send_json(self, message: dict[str, Any]) -> None:
        if self._ws.closed:
            raise ChannelUnavailable("WebSocket not open")
        await self._ws.send_str(encode_frame(message))

    async def ping(self) -> None:
        if self._ws.closed:
            raise ChannelUnavailable("WebSocket not open")
        await self._ws.ping()

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()


_SEND = "send"
_PING = "ping"
_CLOSE = "close"


class Connection:
    """One device connection as seen by the relay.

    Attributes:
        channel: The underlying duplex channel (owned by this connection).
        identity: Device key bound by a successful registration.
        alive: False between a liveness probe and its acknowledgment.
    """

    def __init__(
        self,
        channel: ChannelProtocol,
        send_timeout: float = 5.0,
        outbox_size: int = 256,
    ):
        """Initialize connection.

        Args:
            channel: Channel to write frames to.
            send_timeout: Timeout for a single send or ping.
            outbox_size: Queued frames allowed before the connection is
                considered unavailable and closed.
        """
        self.channel = channel
        self.identity: Optional[str] = None
        self.alive = True
        self._send_timeout = send_timeout
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self._writer: Optional[asyncio.Task] = None
        self._closer: Optional[asyncio.Task] = None
        self._closing = False
        self._closed_event = asyncio.Event()

    def __repr__(self) -> str:
        return f"<Connection identity={self.identity!r} alive={self.alive}>"

    @property
    def closing(self) -> bool:
        return self._closing

    def start(self) -> None:
        """Start the writer task."""
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop())

    def bind(self, identity: str) -> None:
        """Attach the identity confirmed by registration."""
        self.identity = identity

    def post(self, message: dict[str, Any]) -> bool:
        """Queue a frame for delivery without waiting.

        Returns:
            False if the connection is closing or its outbox overflowed.
        """
        return self._enqueue(_SEND, message)

    def probe(self) -> bool:
        """Queue a transport ping."""
        return self._enqueue(_PING, None)

    def close_soon(self) -> None:
        """Close after every frame queued so far has been written."""
        if self._closing:
            return
        self._closing = True
        try:
            self._outbox.put_nowait((_CLOSE, None))
        except asyncio.QueueFull:
            self.terminate()

    async def close(self) -> None:
        """Close and wait until the channel is closed."""
        self.close_soon()
        if self._writer is None:
            await self._close_channel()
            return
        await self._closed_event.wait()

    async def drain(self) -> None:
        """Wait until every queued frame has been handled."""
        await self._outbox.join()

    def _enqueue(self, kind: str, payload: Any) -> bool:
        if self._closing:
            return False
        try:
            self._outbox.put_nowait((kind, payload))
        except asyncio.QueueFull:
            logger.warning(f"Outbox full, dropping connection {self.identity}")
            self.terminate()
            return False
        return True

    def terminate(self) -> None:
        """Drop pending frames and close the channel now."""
        self._closing = True
        if self._writer is not None:
            self._writer.cancel()
        # A writer cancelled before its first step never reaches its cleanup
        self._closer = asyncio.create_task(self._close_channel())

    async def _close_channel(self) -> None:
        try:
            await self.channel.close()
        except Exception as e:
            logger.debug(f"Error closing channel for {self.identity}: {e}")
        finally:
            self._closed_event.set()

    async def _write_loop(self) -> None:
        """Drain the outbox until a close request or a send failure."""
        try:
            while True:
                kind, payload = await self._outbox.get()
                try:
                    if kind == _CLOSE:
                        break
                    if kind == _SEND:
                        await asyncio.wait_for(
                            self.channel.send_json(payload), timeout=self._send_timeout
                        )
                    elif kind == _PING:
                        await asyncio.wait_for(
                            self.channel.ping(), timeout=self._send_timeout
                        )
                except asyncio.TimeoutError:
                    logger.warning(f"Send timeout to {self.identity}, closing channel")
                    break
                except Exception as e:
                    logger.warning(f"Channel unavailable for {self.identity}: {e}")
                    break
                finally:
                    self._outbox.task_done()
        except asyncio.CancelledError:
            pass
        finally:
            self._closing = True
            # Release anyone waiting in drain()
            while not self._outbox.empty():
                self._outbox.get_nowait()
                self._outbox.task_done()
            await self._close_channel()
