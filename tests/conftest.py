"""Pytest configuration and shared fixtures."""

import json

import pytest
import pytest_asyncio

from keyrelay.channel import Connection
from keyrelay.router import SignalingRouter


class FakeChannel:
    """In-memory channel recording what the relay sends."""

    def __init__(self, fail_sends: bool = False):
        self.sent: list[dict] = []
        self.pings = 0
        self.fail_sends = fail_sends
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_json(self, message: dict) -> None:
        if self._closed or self.fail_sends:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(message)

    async def ping(self) -> None:
        if self._closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.pings += 1

    async def close(self) -> None:
        self._closed = True

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from keyrelay.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def router():
    """Router with fresh registry and negotiation table."""
    return SignalingRouter(handler_timeout=1.0)


async def send(router, conn, **message) -> None:
    """Deliver one frame to the router and wait for every outbox to flush."""
    await router.handle_frame(conn, json.dumps(message))
    for other in router.connections:
        await other.drain()
    await conn.drain()


@pytest_asyncio.fixture
async def connect(router):
    """Factory opening connections on ``router``.

    ``await connect("AAAA111111")`` returns a connection registered under
    that key with the registration reply already consumed.
    """
    created = []

    async def _connect(identity=None, channel=None):
        conn = Connection(channel or FakeChannel(), send_timeout=0.5)
        conn.start()
        created.append(conn)
        await router.connection_opened(conn)
        if identity is not None:
            await send(router, conn, type="register", deviceKey=identity)
            assert conn.channel.sent[-1] == {
                "type": "registration-success",
                "deviceKey": identity,
            }
            conn.channel.sent.clear()
        return conn

    yield _connect

    for conn in created:
        await conn.close()
