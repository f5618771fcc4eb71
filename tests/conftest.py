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
Pytest configuration and shared fixtures for the Needle test suite.

Discord channels and messages are mocks. Engine queues are plain
namespaces carrying the attributes the session layer reads.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
import pytest_asyncio

from core.errors import ErrorSink
from core.router import EventRouter
from core.session import Session, SessionStore, Track
from ui.status import StatusSettings

VOICE_CHANNEL_ID = 555000111
OTHER_CHANNEL_ID = 555000222


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks run up to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_track(name: str = "Song X", duration: float | None = 300, **kwargs) -> Track:
    """Build a Track with sensible defaults."""
    kwargs.setdefault("url", f"https://example.com/{name.replace(' ', '-').lower()}")
    return Track(name=name, duration=duration, **kwargs)


def make_queue(
    channel_id: int = VOICE_CHANNEL_ID,
    channel_name: str = "Lounge",
    text_channel=None,
    songs: list | None = None,
    current_time: float = 0,
) -> SimpleNamespace:
    """Engine queue stand-in with the attributes the router and ticker read."""
    return SimpleNamespace(
        voice_channel=SimpleNamespace(id=channel_id, name=channel_name),
        text_channel=text_channel,
        current_time=current_time,
        songs=list(songs or []),
        stopped=False,
    )


@pytest.fixture
def status_message():
    """Mock of the posted Now Playing message."""
    message = MagicMock(spec=discord.Message)
    message.edit = AsyncMock()
    return message


@pytest.fixture
def text_channel(status_message):
    """Mock text channel whose send() returns status_message."""
    channel = MagicMock(spec=discord.TextChannel)
    channel.id = 999000111
    channel.name = "music"
    channel.send = AsyncMock(return_value=status_message)
    return channel


@pytest.fixture
def voice_channel():
    """Mock Discord voice channel."""
    channel = MagicMock(spec=discord.VoiceChannel)
    channel.id = VOICE_CHANNEL_ID
    channel.name = "Lounge"
    return channel


@pytest.fixture
def settings():
    """Status settings with a ticker interval long enough to never fire on its own."""
    return StatusSettings(tick_interval=60.0)


@pytest.fixture
def errors():
    return ErrorSink()


@pytest.fixture
def store():
    store = SessionStore()
    yield store
    store.clear()


@pytest_asyncio.fixture
async def router(store, errors, settings):
    router = EventRouter(store, errors, settings)
    yield router
    await router.shutdown()


@pytest.fixture
def session_factory(store, text_channel):
    """Create and store a session playing a track."""
    def create(track: Track | None = None, current_time: float = 0, channel_id: int = VOICE_CHANNEL_ID) -> Session:
        track = track or make_track()
        queue = make_queue(channel_id=channel_id, text_channel=text_channel, songs=[track], current_time=current_time)
        session = Session(
            channel_id=channel_id,
            channel_name="Lounge",
            text_channel=text_channel,
            queue=queue,
        )
        session.set_track(track)
        store.upsert(session)
        return session
    return create


@pytest.fixture
def engine():
    """Mock playback engine for facade tests."""
    engine = MagicMock()
    engine.events = asyncio.Queue()
    engine.play = AsyncMock(side_effect=lambda vc, query, **kw: make_queue(channel_id=vc.id))
    engine.skip = AsyncMock()
    engine.stop = AsyncMock()
    engine.leave_voice = AsyncMock()
    return engine


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: fast tests with no network or Discord connection"
    )
