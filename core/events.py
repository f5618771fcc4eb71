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

"""Engine lifecycle events and the engine interface.

The engine never calls into the session layer. It puts one of the event
types below on its `events` queue and the EventRouter consumes them in
order.

Queue objects carried by events are duck-typed. Anything with these
attributes works (LavalinkEngine's ChannelQueue, or a SimpleNamespace in
tests):

    voice_channel  - object with .id and .name
    text_channel   - Messageable with async send(), or None
    current_time   - seconds into the current song
    songs          - list of Track, current song first, empty when idle
    stopped        - True once stop/leave tore the queue down
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

from core.session import Track


@dataclass(frozen=True, slots=True)
class PlaylistInfo:
    """A resolved playlist added to a queue in one go."""

    name: str
    tracks: tuple[Track, ...] = ()
    url: str | None = None
    requested_by: str | None = None


@dataclass(frozen=True, slots=True)
class SongStarted:
    queue: Any
    track: Track | None


@dataclass(frozen=True, slots=True)
class SongQueued:
    queue: Any
    track: Track | None


@dataclass(frozen=True, slots=True)
class PlaylistQueued:
    queue: Any
    playlist: PlaylistInfo | None


@dataclass(frozen=True, slots=True)
class Finish:
    """Queue ran out of songs."""

    queue: Any


@dataclass(frozen=True, slots=True)
class Disconnect:
    """Bot left the voice channel without a stop/leave command."""

    queue: Any


@dataclass(frozen=True, slots=True)
class Empty:
    """Every listener left the voice channel."""

    queue: Any


@dataclass(frozen=True, slots=True)
class ErrorReported:
    """Error reported by the engine itself (not raised from a call)."""

    error: BaseException
    queue: Any = None


LifecycleEvent = SongStarted | SongQueued | PlaylistQueued | Finish | Disconnect | Empty
EngineEvent = LifecycleEvent | ErrorReported


def voice_channel_of(queue: Any) -> Any:
    """Voice channel of a queue, or None if the queue or channel is missing."""
    if queue is None:
        return None
    channel = getattr(queue, "voice_channel", None)
    if channel is None or getattr(channel, "id", None) is None:
        return None
    return channel


class PlaybackEngine(Protocol):
    """What the session layer needs from a playback engine."""

    events: asyncio.Queue

    async def play(
        self,
        voice_channel: Any,
        query: str,
        *,
        text_channel: Any = None,
        requested_by: str | None = None,
    ) -> Any: ...

    async def skip(self, voice_channel: Any) -> None: ...

    async def stop(self, voice_channel: Any) -> None: ...

    async def leave_voice(self, channel_id: int) -> None: ...
