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

"""Interaction replies and display helpers.

ResponseMixin gives cogs respond(), which renders a messages.yaml entry as
an ephemeral reply and cleans it up after ui.brief_auto_delete seconds.
Also home to the display limits shared by the status embeds.
"""

import asyncio

import discord

# Pending reply deletions, held so the loop keeps a strong reference
_cleanup_tasks: set[asyncio.Task] = set()

# Characters Discord treats as inline markdown
_MARKDOWN_CHARS = ("\\", "*", "_", "~", "`", "|")

# Embed limits, kept below Discord's (1024 / 256) so "..." and escapes fit.
# Truncate first, then escape.
EMBED_FIELD_MAX = 1000
EMBED_TITLE_MAX = 240      # linked track name inside "🎶 **[...](url)**"


def escape_markdown(text: str) -> str:
    """Backslash-escape markdown so track and channel names show as typed."""
    for char in _MARKDOWN_CHARS:
        text = text.replace(char, f"\\{char}")
    return text


def truncate_for_display(text: str, max_length: int) -> str:
    """Cut text to max_length characters, ending in "..." when shortened."""
    if len(text) > max_length:
        return text[:max_length - 3] + "..."
    return text


class ResponseMixin:
    """Ephemeral command replies driven by messages.yaml.

    The cog using this needs `self.bot.config_manager` (a ConfigManager).
    Replies whose message is disabled are acknowledged without any text.
    """

    def msg(self, key: str, **kwargs) -> str:
        return self.bot.config_manager.msg(key, **kwargs)

    def auto_delete_after(self) -> float | None:
        """Seconds before a reply is removed, or None to keep it."""
        seconds = self.bot.config_manager.get("ui", {}).get("brief_auto_delete", 10)
        return seconds or None

    async def _delete_later(self, interaction: discord.Interaction, delay: float) -> None:
        # Followups can't use delete_after
        try:
            await asyncio.sleep(delay)
            await interaction.delete_original_response()
        except asyncio.CancelledError:
            pass
        except discord.HTTPException:
            pass  # Already gone

    async def respond(self, interaction: discord.Interaction, key: str, **kwargs) -> None:
        """Reply with the `key` message, or acknowledge silently if it is disabled."""
        if not self.bot.config_manager.is_enabled(key):
            if not interaction.response.is_done():
                await interaction.response.defer(ephemeral=True)
            try:
                await interaction.delete_original_response()
            except discord.NotFound:
                pass
            return

        text = self.msg(key, **kwargs)
        delete_after = self.auto_delete_after()

        if not interaction.response.is_done():
            await interaction.response.send_message(text, ephemeral=True, delete_after=delete_after)
            return

        # Deferred: the reply goes out as a followup
        await interaction.followup.send(text, ephemeral=True)
        if delete_after:
            task = asyncio.create_task(self._delete_later(interaction, delete_after))
            _cleanup_tasks.add(task)
            task.add_done_callback(_cleanup_tasks.discard)

    async def user_voice_channel(self, interaction: discord.Interaction):
        """Voice channel the invoking user is in, or None after telling them why not.

        Refuses a channel other than the one the bot is already playing in.
        """
        voice = getattr(interaction.user, "voice", None)
        if voice is None or voice.channel is None:
            await self.respond(interaction, "not_in_vc")
            return None

        bot_voice = interaction.guild.voice_client
        if bot_voice is not None and bot_voice.channel != voice.channel:
            await self.respond(interaction, "wrong_vc", channel=bot_voice.channel.mention)
            return None
        return voice.channel
