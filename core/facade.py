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

"""Session facade - play/stop/skip/leave for the command layer.

Every operation returns True on success and False otherwise. Nothing
raises past the facade: engine failures go to the ErrorSink and leave the
store as it was.

Ordering rules when commands and engine events overlap:
    - song-started (router) wins over play bookkeeping
    - a stop/leave that completes while play is in flight wins over that play
"""

import asyncio
from collections import Counter
from typing import Any

from loguru import logger

from core.errors import ErrorKind, ErrorSink
from core.events import PlaybackEngine
from core.router import EventRouter
from core.session import Session, SessionStore


class SessionFacade:
    def __init__(
        self,
        engine: PlaybackEngine,
        store: SessionStore,
        router: EventRouter,
        errors: ErrorSink,
    ) -> None:
        self.engine = engine
        self.store = store
        self.router = router
        self.errors = errors
        # Per channel, only while a play is in flight: bumped when a stop/leave completes
        self._generations: dict[int, int] = {}
        self._plays_in_flight: Counter[int] = Counter()

    def _generation(self, channel_id: int) -> int:
        return self._generations.get(channel_id, 0)

    def _bump(self, channel_id: int) -> None:
        if self._plays_in_flight[channel_id]:
            self._generations[channel_id] = self._generation(channel_id) + 1

    def _play_done(self, channel_id: int) -> None:
        self._plays_in_flight[channel_id] -= 1
        if self._plays_in_flight[channel_id] <= 0:
            del self._plays_in_flight[channel_id]
            self._generations.pop(channel_id, None)

    async def play(
        self,
        voice_channel: Any,
        query: str,
        *,
        text_channel: Any = None,
        requested_by: str | None = None,
    ) -> bool:
        """Resolve and play (or queue) a query in a voice channel.

        On success, attaches the engine queue to the channel's session, or
        records a track-less placeholder when there is none yet so stop/skip
        work before the first song-started arrives. An existing session is
        never replaced here.
        """
        channel_id = voice_channel.id
        generation = self._generation(channel_id)
        self._plays_in_flight[channel_id] += 1

        try:
            queue = await self.engine.play(
                voice_channel,
                query,
                text_channel=text_channel,
                requested_by=requested_by,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.errors.handle_error(e, ErrorKind.ENGINE_OPERATION, channel_id)
            return False
        finally:
            overtaken = self._generation(channel_id) != generation
            self._play_done(channel_id)

        if overtaken:
            logger.debug(f"play in #{voice_channel.name} overtaken by stop, skipping bookkeeping")
            return True

        session = self.store.get(channel_id)
        if session is None:
            if queue is not None and getattr(queue, "stopped", False):
                return True
            self.store.upsert(
                Session(
                    channel_id=channel_id,
                    channel_name=getattr(voice_channel, "name", "") or "",
                    text_channel=text_channel,
                    queue=queue,
                )
            )
            logger.debug(f"placeholder session for #{voice_channel.name}")
        else:
            if session.queue is None:
                session.queue = queue
            if session.text_channel is None:
                session.text_channel = text_channel

        return True

    async def stop(self, voice_channel: Any) -> bool:
        """Stop playback, clear the queue and end the session.

        No session is a silent no-op. If the engine call fails the session
        stays in place.
        """
        channel_id = voice_channel.id
        if self.store.get(channel_id) is None:
            return True

        try:
            await self.engine.stop(voice_channel)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.errors.handle_error(e, ErrorKind.ENGINE_OPERATION, channel_id)
            return False

        self._bump(channel_id)
        self.router.end_session(channel_id, "stopped")
        return True

    async def skip(self, voice_channel: Any) -> bool:
        """Advance to the next song. The resulting song-started updates the session."""
        channel_id = voice_channel.id
        if self.store.get(channel_id) is None:
            logger.debug(f"skip in #{voice_channel.name} with no session")
            return False

        try:
            await self.engine.skip(voice_channel)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.errors.handle_error(e, ErrorKind.ENGINE_OPERATION, channel_id)
            return False

        return True

    async def leave(self, voice_channel: Any) -> bool:
        """Leave the voice channel and end the session. No session is a no-op."""
        channel_id = voice_channel.id
        if self.store.get(channel_id) is None:
            return True

        try:
            await self.engine.leave_voice(channel_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.errors.handle_error(e, ErrorKind.ENGINE_OPERATION, channel_id)
            return False

        self._bump(channel_id)
        self.router.end_session(channel_id, "left")
        return True
