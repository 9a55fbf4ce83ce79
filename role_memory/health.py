from __future__ import annotations

import logging
from typing import Optional, Protocol

from aiohttp import web

LOGGER = logging.getLogger(__name__)

RUNNING_TEXT = "Discord Role Memory Bot is running!"


class SupportsCommandSync(Protocol):
    async def sync_commands_for_guild(self, guild_id: int) -> bool: ...


class HealthServer:
    """Health check plus optional command re-registration endpoint."""

    def __init__(
        self,
        bot: SupportsCommandSync,
        host: str = "0.0.0.0",
        port: int = 3000,
        maintenance_endpoint: bool = False,
    ):
        self.bot = bot
        self.host = host
        self.port = port
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None

        self.app.router.add_get("/", self.health_handler)
        self.app.router.add_get("/health", self.health_handler)
        if maintenance_endpoint:
            self.app.router.add_post(
                "/guilds/{guild_id}/commands", self.register_commands_handler
            )

    async def health_handler(self, request: web.Request) -> web.Response:
        return web.Response(text=RUNNING_TEXT)

    async def register_commands_handler(self, request: web.Request) -> web.Response:
        raw_id = request.match_info["guild_id"]
        try:
            guild_id = int(raw_id)
        except ValueError:
            return web.json_response(
                {"status": "error", "error": f"Invalid guild id '{raw_id}'"},
                status=400,
            )
        LOGGER.info("Command registration requested for guild %s", guild_id)
        try:
            ok = await self.bot.sync_commands_for_guild(guild_id)
        except Exception as exc:
            LOGGER.exception("Command registration failed for guild %s", guild_id)
            return web.json_response({"status": "error", "error": str(exc)}, status=500)
        if not ok:
            return web.json_response(
                {"status": "error", "error": f"Guild {guild_id} not available"},
                status=404,
            )
        return web.json_response({"status": "ok", "guild_id": str(guild_id)})

    async def start(self) -> None:
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        LOGGER.info("Health server listening on %s:%s", self.host, self.port)

    async def stop(self) -> None:
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            LOGGER.info("Health server stopped")
