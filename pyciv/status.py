"""Read-only HTTP status endpoint over a running session."""

import contextlib
import logging
from typing import Optional

from aiohttp import web

from pyciv.enums import Channel

LOGGER = logging.getLogger(__name__)


class StatusServer:
    """Serves ``GET /status`` (full session snapshot) and ``GET /channels/{A|B}``."""

    def __init__(self, session, host: str = "127.0.0.1", port: int = 8080):
        self._session = session
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/status", self._handle_status)
        app.router.add_get("/channels/{channel}", self._handle_channel)
        return app

    async def start(self):
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info("Status endpoint listening on http://%s:%s/status", self._host, self._port)

    async def stop(self):
        with contextlib.suppress(Exception):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    async def _handle_status(self, request: web.Request) -> web.Response:
        snapshot = self._session.snapshot()
        status = 200 if self._session.connected else 503
        return web.json_response(snapshot, status=status)

    async def _handle_channel(self, request: web.Request) -> web.Response:
        name = request.match_info["channel"].upper()
        try:
            channel = Channel(name)
        except ValueError:
            return web.json_response({"error": f"unknown channel {name}"}, status=404)
        state = self._session.get_channel_state(channel)
        payload = state.as_dict()
        payload["channel"] = channel.value
        payload["selected"] = self._session.selected_channel is channel
        return web.json_response(payload)
