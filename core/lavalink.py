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

"""Lavalink playback engine (mafic).

Owns one ChannelQueue per voice channel and translates mafic's player
events into Needle's engine events. Nothing in here touches sessions: every
state change the session layer cares about goes onto `events`.

mafic event -> engine event:
    track start                -> SongStarted
    track end (finished/failed) -> next song, or Finish when the queue is empty
    track end (replaced/stopped) -> ignored (skip/stop already handled it)
    track exception / stuck    -> ErrorReported(TrackPlaybackError)
    bot alone in channel       -> Empty, then leave
    bot disconnected by a user -> Disconnect
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import discord
import mafic
from loguru import logger

from core.errors import (
    NoUpNextError,
    NothingPlayingError,
    TrackLoadError,
    TrackPlaybackError,
    VoiceConnectionError,
)
from core.events import (
    Disconnect,
    Empty,
    ErrorReported,
    Finish,
    PlaylistInfo,
    PlaylistQueued,
    SongQueued,
    SongStarted,
)
from core.session import Track
from utils.context_managers import engine_errors


def track_from_mafic(track: mafic.Track, requested_by: str | None = None) -> Track:
    """Map a mafic track onto a Track. Lengths arrive in milliseconds."""
    length = getattr(track, "length", None)
    is_live = bool(getattr(track, "stream", False))
    duration = None
    if not is_live and length and length > 0:
        duration = length / 1000

    return Track(
        name=track.title or "Unknown",
        url=getattr(track, "uri", None),
        duration=duration,
        uploader=getattr(track, "author", None) or None,
        thumbnail=getattr(track, "artwork_url", None),
        is_live=is_live,
        requested_by=requested_by,
    )


def active_members(channel: Any) -> list:
    """Listeners in a voice channel (excludes bots and deafened users)."""
    return [
        m for m in getattr(channel, "members", [])
        if not m.bot
        and not (m.voice and (m.voice.self_deaf or m.voice.deaf))
    ]


@dataclass
class QueueEntry:
    """A queued song: what we show, and what mafic plays."""
    track: Track
    source: Any  # mafic.Track


@dataclass
class ChannelQueue:
    """Songs for one voice channel. Current song first, empty when idle.

    `stopped` flips to True once stop/leave tears the queue down. A stopped
    queue is never reused; the next play creates a fresh one.
    """
    voice_channel: Any
    text_channel: Any = None
    player: mafic.Player | None = None
    entries: list[QueueEntry] = field(default_factory=list)
    stopped: bool = False

    @property
    def songs(self) -> list[Track]:
        return [entry.track for entry in self.entries]

    @property
    def current_time(self) -> float:
        """Seconds into the current song (mafic estimates position between updates)."""
        if self.player is None:
            return 0.0
        position = self.player.position
        return position / 1000 if position else 0.0

    @property
    def guild_id(self) -> int | None:
        guild = getattr(self.voice_channel, "guild", None)
        return guild.id if guild else None


class LavalinkEngine:
    """Playback engine over a mafic node pool.

    The bot's listeners forward mafic events to the handle_* methods. The
    EventRouter consumes `events`.
    """

    def __init__(
        self,
        search_type: str = "ytsearch",
        default_volume: int = 50,
        leave_on_empty: bool = True,
    ) -> None:
        self.search_type = search_type
        self.default_volume = default_volume
        self.leave_on_empty = leave_on_empty
        self.events: asyncio.Queue = asyncio.Queue()
        self._queues: dict[int, ChannelQueue] = {}
        # Playback operation lock (prevents concurrent play/skip/track-end races)
        self._locks: dict[int, asyncio.Lock] = {}

    def _lock(self, channel_id: int) -> asyncio.Lock:
        if channel_id not in self._locks:
            self._locks[channel_id] = asyncio.Lock()
        return self._locks[channel_id]

    def _emit(self, event: Any) -> None:
        self.events.put_nowait(event)

    def queue_for(self, channel_id: int) -> ChannelQueue | None:
        return self._queues.get(channel_id)

    def _queue_for_guild(self, guild_id: int) -> ChannelQueue | None:
        for queue in self._queues.values():
            if queue.guild_id == guild_id:
                return queue
        return None

    def _queue_for_player(self, player: Any) -> ChannelQueue | None:
        guild = getattr(player, "guild", None)
        if guild is None:
            return None
        return self._queue_for_guild(guild.id)

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def _connect(self, voice_channel: Any) -> mafic.Player:
        """Join voice_channel, or reuse the guild's player if already there."""
        voice_client = voice_channel.guild.voice_client
        if voice_client is not None:
            if not isinstance(voice_client, mafic.Player):
                raise VoiceConnectionError("guild voice client is not a lavalink player")
            if voice_client.channel != voice_channel:
                raise VoiceConnectionError(f"already connected to #{voice_client.channel.name}")
            return voice_client

        try:
            player = await voice_channel.connect(cls=mafic.Player, self_deaf=True)
        except (discord.ClientException, asyncio.TimeoutError) as e:
            raise VoiceConnectionError(f"failed to join #{voice_channel.name}: {e}") from e

        with engine_errors("set volume"):
            await player.set_volume(self.default_volume)

        logger.info(f"joined #{voice_channel.name}")
        return player

    async def _resolve(self, player: mafic.Player, query: str) -> tuple[list, str | None]:
        """Fetch tracks for a query. Returns (tracks, playlist name or None)."""
        with engine_errors("load"):
            result = await player.fetch_tracks(query, search_type=self.search_type)

        if isinstance(result, mafic.Playlist):
            return list(result.tracks), result.name
        if not result:
            return [], None
        # Search results: first hit only
        return [result[0]], None

    async def _start_current(self, queue: ChannelQueue) -> None:
        """Play the head of the queue. mafic fires track start when it begins."""
        entry = queue.entries[0]
        with engine_errors("play"):
            await queue.player.play(entry.source)

    async def play(
        self,
        voice_channel: Any,
        query: str,
        *,
        text_channel: Any = None,
        requested_by: str | None = None,
    ) -> ChannelQueue:
        """Resolve a query and play it, or queue it behind the current song."""
        async with self._lock(voice_channel.id):
            player = await self._connect(voice_channel)

            queue = self._queues.get(voice_channel.id)
            if queue is None or queue.stopped:
                queue = ChannelQueue(voice_channel=voice_channel, text_channel=text_channel, player=player)
                self._queues[voice_channel.id] = queue
            else:
                queue.player = player
                if text_channel is not None:
                    queue.text_channel = text_channel

            sources, playlist_name = await self._resolve(player, query)
            if not sources:
                raise TrackLoadError(f"no results for {query!r}")

            entries = [QueueEntry(track_from_mafic(s, requested_by), s) for s in sources]
            was_idle = not queue.entries
            queue.entries.extend(entries)

            if was_idle:
                try:
                    await self._start_current(queue)
                except Exception:
                    queue.entries.clear()
                    raise
            elif playlist_name is not None:
                playlist = PlaylistInfo(
                    name=playlist_name,
                    tracks=tuple(e.track for e in entries),
                    url=query if query.startswith("http") else None,
                    requested_by=requested_by,
                )
                self._emit(PlaylistQueued(queue, playlist))
            else:
                self._emit(SongQueued(queue, entries[0].track))

            logger.debug(f"resolved {query!r} to {len(entries)} track(s) in #{voice_channel.name}")
            return queue

    async def skip(self, voice_channel: Any) -> None:
        """Jump to the next song. The replaced track's end event is ignored."""
        async with self._lock(voice_channel.id):
            queue = self._queues.get(voice_channel.id)
            if queue is None or queue.stopped or not queue.entries:
                raise NothingPlayingError("nothing is playing")
            if len(queue.entries) < 2:
                raise NoUpNextError("there is no up next song")

            queue.entries.pop(0)
            await self._start_current(queue)

    async def stop(self, voice_channel: Any) -> None:
        """Stop playback, clear the queue and leave voice."""
        queue = self._queues.get(voice_channel.id)
        if queue is not None:
            queue.stopped = True
            queue.entries.clear()
        try:
            if queue is not None and queue.player is not None:
                with engine_errors("stop"):
                    await queue.player.stop()
        finally:
            # Voice is left even if the player refused to stop
            await self.leave_voice(voice_channel.id)

    async def leave_voice(self, channel_id: int) -> None:
        """Disconnect from a voice channel and drop its queue."""
        queue = self._queues.pop(channel_id, None)
        lock = self._locks.get(channel_id)
        if lock is not None and not lock.locked():
            del self._locks[channel_id]
        if queue is None:
            return
        queue.stopped = True
        queue.entries.clear()

        player = queue.player
        if player is not None and player.connected:
            with engine_errors("disconnect"):
                await player.disconnect()
        logger.info(f"left #{queue.voice_channel.name}")

    # =========================================================================
    # MAFIC EVENTS
    # =========================================================================

    def handle_track_start(self, event: mafic.TrackStartEvent) -> None:
        queue = self._queue_for_player(event.player)
        if queue is not None and queue.entries:
            track = queue.entries[0].track
        else:
            track = track_from_mafic(event.track)
        # A None queue becomes a missing-context drop in the router
        self._emit(SongStarted(queue, track))

    async def handle_track_end(self, event: mafic.TrackEndEvent) -> None:
        # Note: mafic.EndReason values are lowercase ("replaced", not "REPLACED")
        if event.reason in (mafic.EndReason.REPLACED, mafic.EndReason.STOPPED):
            return

        queue = self._queue_for_player(event.player)
        if queue is None or queue.stopped:
            return

        async with self._lock(queue.voice_channel.id):
            # Re-validate after acquiring lock (stop may have run meanwhile)
            if queue.stopped:
                return
            if queue.entries:
                queue.entries.pop(0)
            await self._advance(queue)

    async def _advance(self, queue: ChannelQueue) -> None:
        """Play the next playable song, or emit Finish when none is left."""
        while queue.entries:
            try:
                await self._start_current(queue)
                return
            except Exception as e:
                self._emit(ErrorReported(e, queue))
                queue.entries.pop(0)

        logger.info(f"queue finished in #{queue.voice_channel.name}")
        self._emit(Finish(queue))

    def handle_track_exception(self, event: mafic.TrackExceptionEvent) -> None:
        queue = self._queue_for_player(event.player)
        title = event.track.title if event.track else "unknown"
        self._emit(ErrorReported(TrackPlaybackError(f"track exception for '{title}': {event.exception}"), queue))
        # on_track_end follows and advances the queue

    def handle_track_stuck(self, event: mafic.TrackStuckEvent) -> None:
        queue = self._queue_for_player(event.player)
        title = event.track.title if event.track else "unknown"
        self._emit(ErrorReported(TrackPlaybackError(f"track stuck for '{title}' (threshold: {event.threshold_ms}ms)"), queue))

    async def handle_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
        bot_user_id: int,
    ) -> None:
        """React to the bot being disconnected, or its channel emptying."""
        queue = self._queue_for_guild(member.guild.id)
        if queue is None or queue.stopped:
            return

        # Bot's own channel changes
        if member.id == bot_user_id:
            if before.channel and not after.channel:
                logger.info("disconnected from voice")
                self._queues.pop(queue.voice_channel.id, None)
                queue.stopped = True
                queue.entries.clear()
                self._emit(Disconnect(queue))
            return

        if member.bot:
            return

        channel = queue.voice_channel
        if before.channel != channel or after.channel == channel:
            return  # Not someone leaving the bot's channel

        if not active_members(channel) and self.leave_on_empty:
            logger.info(f"#{channel.name} is empty, leaving")
            self._emit(Empty(queue))
            await self.leave_voice(channel.id)

    async def shutdown(self) -> None:
        """Leave every voice channel (bot shutdown)."""
        for channel_id in list(self._queues):
            try:
                await self.leave_voice(channel_id)
            except Exception as e:
                logger.warning(f"error leaving channel {channel_id} during shutdown: {e}")
