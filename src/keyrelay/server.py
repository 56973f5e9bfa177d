"""HTTP/WebSocket server for the relay.

Single aiohttp server handling all routes:
- /health - Health check
- /ws - Device WebSocket (signaling)
- /api/keys/{device_key} - Key format and availability check
- /api/stats - Registry and negotiation counts
"""

import logging
from typing import Optional

from aiohttp import WSMsgType, web

from keyrelay.channel import Connection, WebSocketChannel
from keyrelay.config import Config
from keyrelay.identity import is_valid_key
from keyrelay.router import SignalingRouter

logger = logging.getLogger(__name__)


class RelayServer:
    """aiohttp application exposing the signaling router."""

    def __init__(self, config: Config, router: SignalingRouter):
        """Initialize server.

        Args:
            config: Relay configuration (origins, send limits).
            router: Router handling device messages.
        """
        self._config = config
        self.router = router
        self.app = web.Application()
        self._setup_routes()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._port: int = 0

    def _setup_routes(self) -> None:
        """Set up all HTTP routes."""
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_get("/ws", self._handle_websocket)
        self.app.router.add_get("/api/keys/{device_key}", self._handle_check_key)
        self.app.router.add_get("/api/stats", self._handle_stats)

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.Response(text="OK")

    async def _handle_check_key(self, request: web.Request) -> web.Response:
        """Report whether a key is well formed and not currently registered."""
        device_key = request.match_info["device_key"]
        valid = is_valid_key(device_key)
        return web.json_response(
            {
                "deviceKey": device_key,
                "valid": valid,
                "available": valid and device_key not in self.router.registry,
            }
        )

    async def _handle_stats(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "connections": len(self.router.connections),
                "devices": len(self.router.registry),
                "negotiations": len(self.router.negotiations),
            }
        )

    # =========================================================================
    # WebSocket
    # =========================================================================

    def _origin_allowed(self, request: web.Request) -> bool:
        origin = request.headers.get("Origin")
        # Native clients send no origin
        return not origin or origin in self._config.allowed_origins

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Handle one device WebSocket until it closes.

        Pings are answered here and pongs are forwarded to the router,
        so autoping is off.
        """
        if not self._origin_allowed(request):
            logger.warning(
                f"WebSocket: Rejected origin {request.headers.get('Origin')}"
            )
            raise web.HTTPForbidden(text="Origin not allowed")

        ws = web.WebSocketResponse(autoping=False)
        await ws.prepare(request)

        conn = Connection(
            WebSocketChannel(ws),
            send_timeout=self._config.relay.send_timeout,
            outbox_size=self._config.relay.outbox_size,
        )
        conn.start()
        await self.router.connection_opened(conn)
        logger.info(f"New connection established from {request.remote or 'unknown'}")

        try:
            async for msg in ws:
                if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                    await self.router.handle_frame(conn, msg.data)
                elif msg.type == WSMsgType.PING:
                    await ws.pong(msg.data)
                elif msg.type == WSMsgType.PONG:
                    await self.router.pong_received(conn)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"WebSocket error: {ws.exception()}")
                    break
        finally:
            await self.router.connection_closed(conn)

        return ws

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start the server.

        Args:
            host: Host to bind to.
            port: Port to bind to (0 for random).

        Returns:
            App runner for cleanup.
        """
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        # Get actual port
        if self._site._server and self._site._server.sockets:
            self._port = self._site._server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info(f"Relay server started on {host}:{self._port}")
        return self._runner

    def get_port(self) -> int:
        """Get the actual bound port."""
        return self._port

    async def close(self) -> None:
        """Close all device connections and stop the server."""
        await self.router.close_all()

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        logger.info("Relay server closed")
