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

"""Per-voice-channel session state."""

import math
from dataclasses import dataclass, field
from typing import Any

from loguru import logger


@dataclass(frozen=True, slots=True)
class Track:
    """Descriptor for one playable item.

    Every field except name may be None. None means "unknown, don't show it",
    never zero: a track with views=None renders no views field at all, while
    views=0 renders "0".
    """

    name: str
    url: str | None = None
    duration: float | None = None  # Seconds
    uploader: str | None = None
    thumbnail: str | None = None
    is_live: bool = False
    views: int | None = None
    likes: int | None = None
    dislikes: int | None = None
    requested_by: str | None = None

    @property
    def has_progress(self) -> bool:
        """True if progress can be computed (finite, positive, not a stream)."""
        if self.is_live or self.duration is None:
            return False
        return math.isfinite(self.duration) and self.duration > 0


@dataclass(eq=False)
class Session:
    """Playback state for one voice channel.

    The ticker is owned exclusively by the session. close() cancels it and
    must run before the session is dropped or replaced (SessionStore does
    this for you).

    Attributes:
        channel_id: Voice channel ID (store key)
        channel_name: Voice channel display name
        text_channel: Where status messages go (None = no UI)
        queue: Engine queue, source of current_time and songs
        current_track: Track being played, None until the engine starts one
        ticker: Active ProgressTicker, None if not running
        last_rendered_bucket: Last progress level shown (-1 = none yet)
    """

    channel_id: int
    channel_name: str = ""
    text_channel: Any = None
    queue: Any = None
    current_track: Track | None = None
    ticker: Any = None
    last_rendered_bucket: int = -1
    closed: bool = field(default=False, init=False)

    @property
    def elapsed(self) -> float:
        """Seconds into the current track, as last reported by the engine."""
        if self.queue is None:
            return 0.0
        return float(getattr(self.queue, "current_time", 0) or 0)

    @property
    def duration(self) -> float | None:
        return self.current_track.duration if self.current_track else None

    @property
    def engine_has_track(self) -> bool:
        """False once the engine queue reports nothing playing."""
        if self.queue is None:
            return False
        return bool(getattr(self.queue, "songs", None))

    def set_track(self, track: Track | None) -> None:
        """Swap the current track. Resets the rendered progress level."""
        self.current_track = track
        self.last_rendered_bucket = -1

    def cancel_ticker(self) -> None:
        """Cancel and release the ticker if one is attached."""
        if ticker := self.ticker:
            self.ticker = None
            ticker.cancel()

    def close(self) -> None:
        """Tear down the session (idempotent)."""
        self.cancel_ticker()
        self.closed = True


class SessionStore:
    """Map of voice channel ID -> Session, at most one per channel.

    All methods are synchronous. Nothing here awaits, so under asyncio every
    call is atomic with respect to other tasks.
    """

    def __init__(self) -> None:
        self._sessions: dict[int, Session] = {}

    def upsert(self, session: Session) -> Session:
        """Insert or replace the session for session.channel_id.

        A different session already stored for that channel is closed first
        (its ticker is cancelled before the new entry lands).
        """
        previous = self._sessions.get(session.channel_id)
        if previous is not None and previous is not session:
            previous.close()
            logger.debug(f"replaced session for channel {session.channel_id}")
        self._sessions[session.channel_id] = session
        return session

    def get(self, channel_id: int) -> Session | None:
        """Session for a channel, or None."""
        return self._sessions.get(channel_id)

    def remove(self, channel_id: int) -> bool:
        """Close and drop the session for a channel.

        Returns:
            True if a session was removed, False if there was none (no-op)
        """
        session = self._sessions.get(channel_id)
        if session is None:
            return False
        session.close()
        del self._sessions[channel_id]
        return True

    def is_current(self, session: Session) -> bool:
        """Check that session is still the stored session for its channel."""
        return self._sessions.get(session.channel_id) is session

    def channel_ids(self) -> list[int]:
        return list(self._sessions)

    def clear(self) -> None:
        """Close and drop every session (shutdown)."""
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._sessions
