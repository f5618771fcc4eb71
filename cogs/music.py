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

"""Music playback commands for Needle."""

import discord
import mafic
from discord import app_commands
from discord.ext import commands
from loguru import logger

from core.ticker import compute_bucket
from ui.status import build_now_playing_embed, build_progress_description
from utils.response import ResponseMixin, truncate_for_display


class Music(ResponseMixin, commands.Cog):
    """Slash commands over SessionFacade, and mafic listeners for the engine.

    Commands only talk to the facade. Status messages are posted by the
    router and tickers, never from here.
    """

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    @property
    def facade(self):
        return self.bot.facade

    @property
    def engine(self):
        return self.bot.engine

    @app_commands.command(name="play", description="play a song or playlist, or add it to the queue")
    @app_commands.guild_only()
    @app_commands.describe(query="search terms or a url")
    async def play(self, interaction: discord.Interaction, query: str) -> None:
        # Check Lavalink availability
        if not self.bot.pool.nodes:
            await self.respond(interaction, "music_unavailable")
            return

        voice_channel = await self.user_voice_channel(interaction)
        if voice_channel is None:
            return

        await interaction.response.defer(ephemeral=True)

        query_display = truncate_for_display(query, 50)
        logger.info(f"{interaction.user.display_name} requested '{query_display}' in #{voice_channel.name}")

        ok = await self.facade.play(
            voice_channel,
            query,
            text_channel=interaction.channel,
            requested_by=interaction.user.display_name,
        )
        if ok:
            await self.respond(interaction, "request_received", query=query_display)
        else:
            await self.respond(interaction, "play_failed")

    @app_commands.command(name="skip", description="skip to the next song")
    @app_commands.guild_only()
    async def skip(self, interaction: discord.Interaction) -> None:
        voice_channel = await self.user_voice_channel(interaction)
        if voice_channel is None:
            return

        if voice_channel.id not in self.bot.store:
            await self.respond(interaction, "nothing_playing")
            return

        await interaction.response.defer(ephemeral=True)
        if await self.facade.skip(voice_channel):
            logger.info(f"{interaction.user.display_name} skipped")
            await self.respond(interaction, "skipped")
        else:
            await self.respond(interaction, "skip_failed")

    @app_commands.command(name="stop", description="stop playback, clear the queue and disconnect")
    @app_commands.guild_only()
    async def stop(self, interaction: discord.Interaction) -> None:
        voice_channel = await self.user_voice_channel(interaction)
        if voice_channel is None:
            return

        await interaction.response.defer(ephemeral=True)
        if await self.facade.stop(voice_channel):
            logger.info(f"stopped by {interaction.user.display_name}")
            await self.respond(interaction, "stopped")
        else:
            await self.respond(interaction, "operation_failed")

    @app_commands.command(name="leave", description="leave the voice channel")
    @app_commands.guild_only()
    async def leave(self, interaction: discord.Interaction) -> None:
        voice_channel = await self.user_voice_channel(interaction)
        if voice_channel is None:
            return

        await interaction.response.defer(ephemeral=True)
        if await self.facade.leave(voice_channel):
            logger.info(f"{interaction.user.display_name} sent the bot away")
            await self.respond(interaction, "left")
        else:
            await self.respond(interaction, "operation_failed")

    @app_commands.command(name="np", description="show what's playing")
    @app_commands.guild_only()
    async def now_playing(self, interaction: discord.Interaction) -> None:
        """Show the Now Playing embed with the current progress line."""
        voice_channel = await self.user_voice_channel(interaction)
        if voice_channel is None:
            return

        session = self.bot.store.get(voice_channel.id)
        if session is None or session.current_track is None:
            await self.respond(interaction, "nothing_playing")
            return

        settings = self.bot.status_settings
        track = session.current_track
        embed = build_now_playing_embed(track, session.channel_name, settings)
        bucket = compute_bucket(session.elapsed, track.duration, settings.bar_resolution)
        if bucket is not None:
            embed.description = build_progress_description(track, session.elapsed, bucket, settings)

        await interaction.response.send_message(embed=embed, ephemeral=True, delete_after=self.auto_delete_after())

    # =========================================================================
    # ENGINE LISTENERS
    # =========================================================================

    @commands.Cog.listener()
    async def on_track_start(self, event: mafic.TrackStartEvent) -> None:
        self.engine.handle_track_start(event)

    @commands.Cog.listener()
    async def on_track_end(self, event: mafic.TrackEndEvent) -> None:
        await self.engine.handle_track_end(event)

    @commands.Cog.listener()
    async def on_track_exception(self, event: mafic.TrackExceptionEvent) -> None:
        """Handle track playback errors (corrupted source, codec issues)."""
        self.engine.handle_track_exception(event)

    @commands.Cog.listener()
    async def on_track_stuck(self, event: mafic.TrackStuckEvent) -> None:
        """Handle stuck track (no audio progress for threshold_ms)."""
        self.engine.handle_track_stuck(event)

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState
    ):
        """Handle listeners leaving, and the bot being disconnected."""
        await self.engine.handle_voice_state_update(member, before, after, self.bot.user.id)


async def setup(bot: commands.Bot) -> None:
    """Load the Music cog."""
    await bot.add_cog(Music(bot))
