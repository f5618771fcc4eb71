# Copyright (C) 2026 grodz
#
# This file is part of Needle.
#
# Needle is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""
Needle - per-voice-channel music sessions for Discord

Entry point. Wires the Lavalink engine, session store, event router and
facade together, loads the music cog, and owns shutdown.
"""

import asyncio
import os
import signal

import aiohttp
import discord
import mafic
from discord.ext import commands
from dotenv import load_dotenv
from loguru import logger

from core.errors import ErrorSink
from core.facade import SessionFacade
from core.lavalink import LavalinkEngine
from core.router import EventRouter
from core.session import SessionStore
from utils.config import ConfigManager, config_dir, lavalink_settings, validate_configuration
from utils.logging import setup_logging


def custom_exception_handler(loop, context):
    """Suppress cosmetic aiohttp shutdown warnings, pass everything else on."""
    message = context.get("message", "")
    if message in ("Unclosed client session", "Unclosed connector"):
        return
    loop.default_exception_handler(context)


class NeedleBot(commands.Bot):
    """Discord client that owns the session layer.

    Attributes:
        config_manager: Loaded ConfigManager
        pool: mafic node pool
        store: SessionStore shared by router, facade and the /np command
        errors: ErrorSink for every non-fatal failure
        engine: LavalinkEngine (mafic listeners in cogs.music feed it)
        router: EventRouter consuming engine.events
        facade: SessionFacade used by the music cog
    """

    def __init__(self, config_manager: ConfigManager) -> None:
        intents = discord.Intents.default()
        intents.voice_states = True
        intents.members = True  # Needed to count listeners in voice channels
        super().__init__(command_prefix=commands.when_mentioned, intents=intents)

        self.config_manager = config_manager
        self.status_settings = config_manager.status_settings()
        self.pool = mafic.NodePool(self)
        self.store = SessionStore()
        self.errors = ErrorSink()

        engine = config_manager.get("engine", {})
        self.engine = LavalinkEngine(
            search_type=engine.get("search_type", "ytsearch"),
            default_volume=engine.get("default_volume", 50),
            leave_on_empty=engine.get("leave_on_empty", True),
        )
        self.router = EventRouter(self.store, self.errors, self.status_settings)
        self.facade = SessionFacade(self.engine, self.store, self.router, self.errors)
        self._closing = False

    async def setup_hook(self) -> None:
        asyncio.get_running_loop().set_exception_handler(custom_exception_handler)

        await self._connect_lavalink()
        self.router.start(self.engine.events)
        await self.load_extension("cogs.music")

        # Sync to one guild for instant command updates, globally otherwise
        if guild_id := os.getenv("GUILD_ID"):
            guild = discord.Object(id=int(guild_id))
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
        else:
            await self.tree.sync()
        logger.debug("commands synced")

    async def _connect_lavalink(self) -> None:
        host, port, password = lavalink_settings()
        try:
            await self.pool.create_node(host=host, port=port, label="MAIN", password=password)
            logger.log("NOTICE", f"connected to lavalink at {host}:{port}")
        except (aiohttp.ClientError, asyncio.TimeoutError, mafic.MaficException) as e:
            # Commands answer "music_unavailable" while the pool is empty
            logger.error(f"lavalink connection failed: {e}")

    async def on_ready(self) -> None:
        logger.log("NOTICE", f"logged in as {self.user}")

    async def close(self) -> None:
        """Cancel every ticker and leave voice before closing the gateway."""
        if self._closing:
            return
        self._closing = True
        logger.info("shutting down")

        await self.router.shutdown()
        await self.engine.shutdown()

        await super().close()
        logger.info("shutdown complete")


async def main() -> None:
    load_dotenv()
    setup_logging(os.getenv("LOG_LEVEL", "verbose"))

    config_manager = ConfigManager(config_dir())
    await config_manager.load()
    setup_logging(config_manager.get("logging", {}).get("level", "verbose"))

    await validate_configuration()

    bot = NeedleBot(config_manager)

    # SIGINT = Ctrl+C, SIGTERM = systemd stop / docker stop
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda s=sig: _on_signal(bot, s))
        except NotImplementedError:
            pass  # Windows: KeyboardInterrupt still reaches asyncio.run

    async with bot:
        await bot.start(os.environ["DISCORD_TOKEN"].strip())


def _on_signal(bot: NeedleBot, sig: signal.Signals) -> None:
    logger.info(f"received {sig.name}, shutting down")
    asyncio.create_task(bot.close())


def run() -> None:
    """Console entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
