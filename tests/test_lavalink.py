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
Unit tests for the mafic-backed LavalinkEngine.

The node pool is never touched: players, tracks and playlists are mocks.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import mafic
import pytest

from core.errors import (
    EngineOperationError,
    ErrorKind,
    NoUpNextError,
    NothingPlayingError,
    TrackLoadError,
    TrackPlaybackError,
    VoiceConnectionError,
)
from core.events import Disconnect, Empty, ErrorReported, Finish, PlaylistQueued, SongQueued, SongStarted
from core.facade import SessionFacade
from core.lavalink import ChannelQueue, LavalinkEngine, active_members, track_from_mafic
from core.session import Session
from utils.context_managers import engine_errors
from tests.conftest import VOICE_CHANNEL_ID

BOT_ID = 4242


def mafic_track(title="Song X", length=300_000, stream=False, **kwargs):
    return SimpleNamespace(
        title=title,
        uri=kwargs.get("uri", f"https://example.com/{(title or 'untitled').replace(' ', '-').lower()}"),
        length=length,
        author=kwargs.get("author", "Some Artist"),
        artwork_url=kwargs.get("artwork_url"),
        stream=stream,
    )


def member(member_id=1, bot=False, deaf=False, guild=None):
    return SimpleNamespace(
        id=member_id,
        bot=bot,
        guild=guild,
        voice=SimpleNamespace(self_deaf=deaf, deaf=False),
    )


def drain(engine):
    events = []
    while not engine.events.empty():
        events.append(engine.events.get_nowait())
    return events


@pytest.fixture
def guild():
    return SimpleNamespace(id=777, voice_client=None)


@pytest.fixture
def player(guild):
    player = MagicMock(spec=mafic.Player)
    player.guild = guild
    player.connected = True
    player.position = 0
    player.play = AsyncMock()
    player.stop = AsyncMock()
    player.disconnect = AsyncMock()
    player.set_volume = AsyncMock()
    player.fetch_tracks = AsyncMock(return_value=[mafic_track("Song X")])
    return player


@pytest.fixture
def vc(guild, player):
    channel = MagicMock(spec=discord.VoiceChannel)
    channel.id = VOICE_CHANNEL_ID
    channel.name = "Lounge"
    channel.guild = guild
    channel.members = []

    async def connect(**kwargs):
        guild.voice_client = player
        return player

    channel.connect = AsyncMock(side_effect=connect)
    player.channel = channel
    return channel


@pytest.fixture
def engine():
    return LavalinkEngine(search_type="ytsearch", default_volume=40)


async def play(engine, vc, player, *titles):
    player.fetch_tracks.return_value = [mafic_track(t) for t in titles]
    return await engine.play(vc, titles[0])


class TestHelpers:

    @pytest.mark.unit
    def test_track_from_mafic(self):
        track = track_from_mafic(mafic_track("Song X", 215_000, artwork_url="https://img/x.jpg"), "ana")

        assert track.name == "Song X"
        assert track.duration == 215
        assert track.uploader == "Some Artist"
        assert track.thumbnail == "https://img/x.jpg"
        assert track.requested_by == "ana"
        assert track.is_live is False

    @pytest.mark.unit
    @pytest.mark.parametrize("length, stream", [(0, False), (None, False), (9_999_999, True)])
    def test_track_without_usable_length(self, length, stream):
        track = track_from_mafic(mafic_track("Radio", length, stream=stream))
        assert track.duration is None
        assert track.is_live is stream
        assert track.has_progress is False

    @pytest.mark.unit
    def test_missing_title(self):
        assert track_from_mafic(mafic_track(None)).name == "Unknown"

    @pytest.mark.unit
    def test_active_members(self):
        channel = SimpleNamespace(members=[
            member(1),
            member(2, bot=True),
            member(3, deaf=True),
            SimpleNamespace(id=4, bot=False, voice=None),
        ])
        assert [m.id for m in active_members(channel)] == [1, 4]

    @pytest.mark.unit
    def test_queue_current_time(self, player):
        queue = ChannelQueue(voice_channel=None)
        assert queue.current_time == 0.0

        player.position = 150_000
        queue.player = player
        assert queue.current_time == 150.0

    @pytest.mark.unit
    def test_engine_errors_translation(self):
        with pytest.raises(EngineOperationError):
            with engine_errors("play"):
                raise mafic.MaficException("node said no")

        error = TrackLoadError("no results")
        with pytest.raises(TrackLoadError) as exc_info:
            with engine_errors("load"):
                raise error
        assert exc_info.value is error

        with pytest.raises(TimeoutError):
            with engine_errors("load"):
                raise TimeoutError()


class TestPlay:
    """Test cases for play."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_first_play_joins_and_starts(self, engine, vc, player, guild):
        queue = await engine.play(vc, "song x", text_channel="text", requested_by="ana")

        vc.connect.assert_awaited_once_with(cls=mafic.Player, self_deaf=True)
        player.set_volume.assert_awaited_once_with(40)
        player.fetch_tracks.assert_awaited_once_with("song x", search_type="ytsearch")
        player.play.assert_awaited_once()
        assert queue is engine.queue_for(VOICE_CHANNEL_ID)
        assert queue.text_channel == "text"
        assert [t.name for t in queue.songs] == ["Song X"]
        assert queue.songs[0].requested_by == "ana"
        # SongStarted comes from mafic's track start, not from play
        assert drain(engine) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_search_keeps_first_hit_only(self, engine, vc, player):
        queue = await play(engine, vc, player, "Hit 1", "Hit 2", "Hit 3")
        assert [t.name for t in queue.songs] == ["Hit 1"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_play_while_playing_queues(self, engine, vc, player):
        await play(engine, vc, player, "Song A")
        queue = await play(engine, vc, player, "Song B")

        vc.connect.assert_awaited_once()
        assert player.play.await_count == 1
        assert [t.name for t in queue.songs] == ["Song A", "Song B"]

        [event] = drain(engine)
        assert isinstance(event, SongQueued)
        assert event.track.name == "Song B"
        assert event.queue is queue

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_playlist_queued(self, engine, vc, player):
        await play(engine, vc, player, "Song A")

        playlist = MagicMock(spec=mafic.Playlist)
        playlist.name = "Road Trip"
        playlist.tracks = [mafic_track("One"), mafic_track("Two")]
        player.fetch_tracks.return_value = playlist

        queue = await engine.play(vc, "https://example.com/playlist")

        assert len(queue.songs) == 3
        [event] = drain(engine)
        assert isinstance(event, PlaylistQueued)
        assert event.playlist.name == "Road Trip"
        assert len(event.playlist.tracks) == 2
        assert event.playlist.url == "https://example.com/playlist"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_results(self, engine, vc, player):
        player.fetch_tracks.return_value = []

        with pytest.raises(TrackLoadError):
            await engine.play(vc, "asdfghjkl")

        assert engine.queue_for(VOICE_CHANNEL_ID).songs == []
        player.play.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_start_clears_queue(self, engine, vc, player):
        player.play.side_effect = mafic.MaficException("bad track")

        with pytest.raises(EngineOperationError):
            await engine.play(vc, "song")

        assert engine.queue_for(VOICE_CHANNEL_ID).songs == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_busy_in_another_channel(self, engine, vc, guild):
        other = MagicMock(spec=mafic.Player)
        other.channel = SimpleNamespace(name="Other Room")
        guild.voice_client = other

        with pytest.raises(VoiceConnectionError):
            await engine.play(vc, "song")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_join_failure(self, engine, vc):
        vc.connect.side_effect = discord.ClientException("already connecting")

        with pytest.raises(VoiceConnectionError):
            await engine.play(vc, "song")


class TestTrackEvents:
    """Test cases for mafic player event handling."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_track_start_emits_song_started(self, engine, vc, player):
        queue = await play(engine, vc, player, "Song A")

        engine.handle_track_start(SimpleNamespace(player=player, track=mafic_track("Song A")))

        [event] = drain(engine)
        assert isinstance(event, SongStarted)
        assert event.queue is queue
        assert event.track is queue.songs[0]

    @pytest.mark.unit
    def test_track_start_for_unknown_player(self, engine):
        stranger = SimpleNamespace(guild=SimpleNamespace(id=1))

        engine.handle_track_start(SimpleNamespace(player=stranger, track=mafic_track("Song A")))

        [event] = drain(engine)
        assert event.queue is None
        assert event.track.name == "Song A"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_track_end_plays_next_then_finishes(self, engine, vc, player):
        queue = await play(engine, vc, player, "Song A")
        await play(engine, vc, player, "Song B")
        drain(engine)

        await engine.handle_track_end(SimpleNamespace(player=player, reason=mafic.EndReason.FINISHED))
        assert [t.name for t in queue.songs] == ["Song B"]
        assert player.play.await_count == 2
        assert drain(engine) == []

        await engine.handle_track_end(SimpleNamespace(player=player, reason=mafic.EndReason.FINISHED))
        assert queue.songs == []
        [event] = drain(engine)
        assert isinstance(event, Finish)
        assert event.queue is queue

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", [mafic.EndReason.REPLACED, mafic.EndReason.STOPPED])
    async def test_track_end_ignored_for_replace_and_stop(self, engine, vc, player, reason):
        queue = await play(engine, vc, player, "Song A")

        await engine.handle_track_end(SimpleNamespace(player=player, reason=reason))

        assert len(queue.songs) == 1
        assert drain(engine) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unplayable_next_song_is_skipped(self, engine, vc, player):
        queue = await play(engine, vc, player, "Song A")
        await play(engine, vc, player, "Broken")
        await play(engine, vc, player, "Song C")
        drain(engine)
        player.play.side_effect = [mafic.MaficException("gone"), None]

        await engine.handle_track_end(SimpleNamespace(player=player, reason=mafic.EndReason.FINISHED))

        assert [t.name for t in queue.songs] == ["Song C"]
        [event] = drain(engine)
        assert isinstance(event, ErrorReported)
        assert isinstance(event.error, EngineOperationError)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exception_and_stuck_are_reported(self, engine, vc, player):
        queue = await play(engine, vc, player, "Song A")
        track = mafic_track("Song A")

        engine.handle_track_exception(SimpleNamespace(player=player, track=track, exception="decoder"))
        engine.handle_track_stuck(SimpleNamespace(player=player, track=track, threshold_ms=10_000))

        events = drain(engine)
        assert len(events) == 2
        assert all(isinstance(e, ErrorReported) for e in events)
        assert all(isinstance(e.error, TrackPlaybackError) for e in events)
        assert all(e.queue is queue for e in events)
        assert len(queue.songs) == 1


class TestSkipStop:
    """Test cases for skip, stop and leave."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_skip_without_queue(self, engine, vc):
        with pytest.raises(NothingPlayingError):
            await engine.skip(vc)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_skip_last_song(self, engine, vc, player):
        await play(engine, vc, player, "Song A")

        with pytest.raises(NoUpNextError):
            await engine.skip(vc)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_skip_plays_next(self, engine, vc, player):
        queue = await play(engine, vc, player, "Song A")
        await play(engine, vc, player, "Song B")

        await engine.skip(vc)

        assert [t.name for t in queue.songs] == ["Song B"]
        assert player.play.await_count == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_tears_down(self, engine, vc, player, guild):
        queue = await play(engine, vc, player, "Song A")

        await engine.stop(vc)

        assert queue.stopped is True
        assert queue.songs == []
        player.stop.assert_awaited_once()
        player.disconnect.assert_awaited_once()
        assert engine.queue_for(VOICE_CHANNEL_ID) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_leaves_voice_when_player_refuses(self, engine, vc, player):
        queue = await play(engine, vc, player, "Song A")
        player.stop.side_effect = mafic.MaficException("node said no")

        with pytest.raises(EngineOperationError):
            await engine.stop(vc)

        assert queue.stopped is True
        player.disconnect.assert_awaited_once()
        assert engine.queue_for(VOICE_CHANNEL_ID) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_second_stop_succeeds_after_player_failure(self, engine, vc, player, store, router, errors):
        queue = await play(engine, vc, player, "Song A")
        store.upsert(Session(channel_id=VOICE_CHANNEL_ID, channel_name="Lounge", queue=queue))
        facade = SessionFacade(engine, store, router, errors)
        player.stop.side_effect = mafic.MaficException("node said no")

        assert await facade.stop(vc) is False
        assert VOICE_CHANNEL_ID in store

        assert await facade.stop(vc) is True
        assert VOICE_CHANNEL_ID not in store
        assert errors.count(ErrorKind.ENGINE_OPERATION) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_leave_drops_channel_lock(self, engine, vc, player):
        await play(engine, vc, player, "Song A")
        assert VOICE_CHANNEL_ID in engine._locks

        await engine.leave_voice(VOICE_CHANNEL_ID)

        assert VOICE_CHANNEL_ID not in engine._locks

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_play_after_stop_uses_fresh_queue(self, engine, vc, player, guild):
        old = await play(engine, vc, player, "Song A")
        await engine.stop(vc)
        guild.voice_client = None

        new = await play(engine, vc, player, "Song B")

        assert new is not old
        assert new.stopped is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_leave_twice(self, engine, vc, player):
        await play(engine, vc, player, "Song A")

        await engine.leave_voice(VOICE_CHANNEL_ID)
        await engine.leave_voice(VOICE_CHANNEL_ID)

        player.disconnect.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_shutdown_leaves_everything(self, engine, vc, player):
        await play(engine, vc, player, "Song A")

        await engine.shutdown()

        assert engine.queue_for(VOICE_CHANNEL_ID) is None
        player.disconnect.assert_awaited_once()


class TestVoiceState:
    """Test cases for voice state updates."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bot_disconnected(self, engine, vc, player, guild):
        queue = await play(engine, vc, player, "Song A")
        bot = member(BOT_ID, bot=True, guild=guild)

        await engine.handle_voice_state_update(
            bot, SimpleNamespace(channel=vc), SimpleNamespace(channel=None), BOT_ID
        )

        [event] = drain(engine)
        assert isinstance(event, Disconnect)
        assert event.queue is queue
        assert queue.stopped is True
        assert engine.queue_for(VOICE_CHANNEL_ID) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_last_listener_leaves(self, engine, vc, player, guild):
        queue = await play(engine, vc, player, "Song A")
        vc.members = [member(BOT_ID, bot=True)]

        await engine.handle_voice_state_update(
            member(1, guild=guild), SimpleNamespace(channel=vc), SimpleNamespace(channel=None), BOT_ID
        )

        [event] = drain(engine)
        assert isinstance(event, Empty)
        assert event.queue is queue
        player.disconnect.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_listener_leaves_others_remain(self, engine, vc, player, guild):
        await play(engine, vc, player, "Song A")
        vc.members = [member(2)]

        await engine.handle_voice_state_update(
            member(1, guild=guild), SimpleNamespace(channel=vc), SimpleNamespace(channel=None), BOT_ID
        )

        assert drain(engine) == []
        player.disconnect.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stay_when_leave_on_empty_off(self, vc, player, guild):
        engine = LavalinkEngine(leave_on_empty=False)
        await play(engine, vc, player, "Song A")

        await engine.handle_voice_state_update(
            member(1, guild=guild), SimpleNamespace(channel=vc), SimpleNamespace(channel=None), BOT_ID
        )

        assert drain(engine) == []
