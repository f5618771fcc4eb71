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

"""Status message embeds for Needle.

Builds the "Now Playing", "Song Added to Queue" and "Playlist Added to
Queue" embeds, and the progress line that replaces the Now Playing
description while a track plays.
"""

from dataclasses import dataclass

import discord

from core.session import Track
from utils.response import (
    escape_markdown,
    truncate_for_display,
    EMBED_FIELD_MAX,
    EMBED_TITLE_MAX,
)


@dataclass(frozen=True, slots=True)
class StatusSettings:
    """Status message appearance and progress cadence.

    Built from the `status` section of settings.yaml by
    ConfigManager.status_settings(). Defaults match settings.yaml defaults.
    """

    enabled: bool = True
    tick_interval: float = 7.0  # Seconds
    bar_resolution: int = 10
    bar_filled: str = "▬"
    bar_empty: str = "▬"
    bar_cursor: str = "🔘"
    now_playing_color: int = 0x0099FF
    queued_color: int = 0x00FF00
    announce_playlists: bool = True


def format_timestamp(seconds: float | None) -> str:
    """Format seconds as zero-padded HH:MM:SS.

    Hours are not wrapped at 24 (a 25h stream shows "25:00:00").
    None or negative values render as "00:00:00".
    """
    if seconds is None or seconds != seconds or seconds < 0:  # NaN check via !=
        seconds = 0
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def build_progress_bar(bucket: int, settings: StatusSettings) -> str:
    """Build the progress bar for a bucket.

    Always bar_resolution + 1 glyphs wide: `bucket` filled, one cursor,
    then `bar_resolution - bucket` empty.

    Example (resolution 10, bucket 5): "▬▬▬▬▬🔘▬▬▬▬▬"
    """
    resolution = settings.bar_resolution
    bucket = max(0, min(resolution, bucket))
    return settings.bar_filled * bucket + settings.bar_cursor + settings.bar_empty * (resolution - bucket)


def _track_link(track: Track) -> str:
    name = escape_markdown(truncate_for_display(track.name, EMBED_TITLE_MAX))
    if track.url:
        return f"🎶 **[{name}]({track.url})**"
    return f"🎶 **{name}**"


def build_progress_description(track: Track, elapsed: float, bucket: int, settings: StatusSettings) -> str:
    """Now Playing description with the progress line under the track link."""
    bar = build_progress_bar(bucket, settings)
    return (
        f"{_track_link(track)}\n"
        f"`{format_timestamp(elapsed)}` {bar} `{format_timestamp(track.duration)}`"
    )


def _field_text(value: str) -> str:
    return f"**{escape_markdown(truncate_for_display(value, EMBED_FIELD_MAX))}**"


def build_now_playing_embed(track: Track, channel_name: str, settings: StatusSettings) -> discord.Embed:
    """Build the Now Playing embed.

    Optional fields are added only when the track has a value for them.
    Zero is a value (0 views shows "0"), None is not.
    """
    embed = discord.Embed(
        title="Now Playing",
        description=_track_link(track),
        color=settings.now_playing_color,
        timestamp=discord.utils.utcnow(),
    )
    embed.add_field(name="In Channel", value=_field_text(channel_name or "unknown"), inline=True)

    if track.requested_by:
        embed.add_field(name="Requested by", value=_field_text(track.requested_by), inline=True)

    if track.has_progress:
        embed.add_field(name="Duration", value=f"**{format_timestamp(track.duration)}**", inline=True)

    if track.views is not None:
        embed.add_field(name="Views", value=f"**{track.views:,}**", inline=True)

    if track.likes is not None:
        embed.add_field(name="Likes", value=f"👍 **{track.likes:,}**", inline=True)

    if track.dislikes is not None:
        embed.add_field(name="Dislikes", value=f"👎 **{track.dislikes:,}**", inline=True)

    if track.uploader:
        embed.add_field(name="Uploader", value=_field_text(track.uploader), inline=True)

    if track.is_live:
        embed.add_field(name="Live", value="🔴 **This is a live stream**", inline=True)

    if track.thumbnail:
        embed.set_thumbnail(url=track.thumbnail)

    return embed


def build_queued_embed(track: Track, channel_name: str, settings: StatusSettings) -> discord.Embed:
    """Build the "Song Added to Queue" embed."""
    name = escape_markdown(truncate_for_display(track.name, EMBED_TITLE_MAX))
    channel = escape_markdown(channel_name or "unknown")
    return discord.Embed(
        title="Song Added to Queue",
        description=f"- Song Name :  **{name}**\n- Channel : **{channel}**",
        color=settings.queued_color,
        timestamp=discord.utils.utcnow(),
    )


def build_playlist_embed(playlist, channel_name: str, settings: StatusSettings) -> discord.Embed:
    """Build the "Playlist Added to Queue" embed."""
    name = escape_markdown(truncate_for_display(playlist.name, EMBED_TITLE_MAX))
    count = len(playlist.tracks)
    song_word = "song" if count == 1 else "songs"
    channel = escape_markdown(channel_name or "unknown")
    return discord.Embed(
        title="Playlist Added to Queue",
        description=f"- Playlist : **{name}** ({count} {song_word})\n- Channel : **{channel}**",
        color=settings.queued_color,
        timestamp=discord.utils.utcnow(),
    )
