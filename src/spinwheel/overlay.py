"""HTTP/WebSocket server for the browser overlay.

The overlay page and its socket share one port and path: a plain GET of
``/`` returns the page, a WebSocket upgrade of ``/`` subscribes to spins.
"""

import time
from collections.abc import Callable
from pathlib import Path

from aiohttp import WSMsgType, web

from .broadcaster import OutcomeBroadcaster
from .logger import get_logger

logger = get_logger(__name__)

PUBLIC_DIR = Path(__file__).resolve().parent / "public"

StatusProvider = Callable[[], dict]


class OverlayServer:
    """Serves the overlay page, overlay sockets and /health."""

    def __init__(
        self,
        broadcaster: OutcomeBroadcaster,
        host: str = "0.0.0.0",
        port: int = 3000,
        public_dir: Path = PUBLIC_DIR,
        status_providers: dict[str, StatusProvider] | None = None,
    ):
        self.broadcaster = broadcaster
        self.host = host
        self.port = port
        self.public_dir = public_dir
        self.status_providers = status_providers or {}
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app["start_time"] = time.monotonic()
        app.router.add_get("/", self.handle_root)
        app.router.add_get("/health", self.health_check)
        if self.public_dir.is_dir():
            app.router.add_static("/static", self.public_dir)
        return app

    async def handle_root(self, request: web.Request) -> web.StreamResponse:
        ws = web.WebSocketResponse(heartbeat=30.0)
        if not ws.can_prepare(request).ok:
            index = self.public_dir / "index.html"
            if not index.is_file():
                raise web.HTTPNotFound()
            return web.FileResponse(index)

        await ws.prepare(request)
        logger.info("WebSocket client connected (likely OBS browser source)", remote=request.remote)
        self.broadcaster.add(ws)

        try:
            # Overlays only listen; incoming frames are drained and ignored
            async for message in ws:
                if message.type == WSMsgType.ERROR:
                    logger.error("WebSocket error", error=str(ws.exception()))
        finally:
            self.broadcaster.discard(ws)

        return ws

    async def health_check(self, request: web.Request) -> web.Response:
        health_data = {
            "status": "healthy",
            "service": "spinwheel",
            "timestamp": int(time.time()),
            "uptime_seconds": int(time.monotonic() - request.app["start_time"]),
            "overlay_clients": self.broadcaster.connection_count,
        }

        for name, provider in self.status_providers.items():
            try:
                status = provider()
            except Exception as e:
                logger.warning("Status provider failed", provider=name, error=str(e))
                status = {"connected": False, "error": str(e)}
            health_data[name] = status

        chat_status = health_data.get("chat")
        if isinstance(chat_status, dict) and not chat_status.get("connected", False):
            health_data["status"] = "degraded"
            health_data["message"] = "Chat connection is down"

        return web.json_response(health_data)

    async def start(self) -> None:
        self.runner = web.AppRunner(self.create_app(), access_log=None)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"HTTP server running on http://localhost:{self.port}")
        logger.info(f"Add to OBS as Browser Source: http://localhost:{self.port}")

    async def stop(self) -> None:
        await self.broadcaster.close_all()

        if self.site:
            try:
                await self.site.stop()
            except Exception as e:
                logger.warning(f"Site stop error (non-critical): {e}")

        if self.runner:
            try:
                await self.runner.cleanup()
            except Exception as e:
                logger.warning(f"Runner cleanup error (non-critical): {e}")

        self.site = None
        self.runner = None
