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

"""Progress ticker - periodic Now Playing updates for one session."""

import asyncio
import math
from typing import Callable

from loguru import logger

from core.errors import ErrorKind, ErrorSink
from core.session import Session
from ui.status import (
    StatusSettings,
    build_now_playing_embed,
    build_progress_description,
)


def compute_bucket(elapsed: float, duration: float | None, resolution: int) -> int | None:
    """Discretize playback progress into 0..resolution.

    Returns None when progress can't be computed (no duration, zero,
    negative, infinite). Never divides by zero.
    """
    if duration is None or not math.isfinite(duration) or duration <= 0:
        return None
    if not math.isfinite(elapsed) or elapsed < 0:
        elapsed = 0.0
    bucket = math.floor(elapsed / duration * resolution)
    return max(0, min(resolution, bucket))


class ProgressTicker:
    """Posts the Now Playing message, then edits its progress bar on a cadence.

    One ticker per session per track. The owning Session holds the only
    reference that matters: SessionStore closes the session (and cancels
    this ticker) before replacing or removing it.

    Lifecycle:
        start() -> post Now Playing -> [sleep -> tick()] until tick() says stop

    tick() stops when:
        - cancel() was called
        - the session is no longer current for its channel (superseded)
        - the engine reports nothing playing, or moved to another song
        - elapsed >= duration (after rendering the final bucket)

    Tracks without progress (live, unknown or zero length) get the initial
    post only. No loop runs for them.

    Attributes:
        session: Owning session (elapsed comes from session.queue)
        track: Track this ticker was started for (pinned)
        message: Posted status message, None until posted / after release
        embed: Embed last sent, mutated in place for edits
    """

    def __init__(
        self,
        session: Session,
        is_current: Callable[[Session], bool],
        errors: ErrorSink,
        settings: StatusSettings,
    ) -> None:
        self.session = session
        self.track = session.current_track
        self.is_current = is_current
        self.errors = errors
        self.settings = settings
        self.message = None
        self.embed = None
        self._task: asyncio.Task | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def start(self) -> asyncio.Task:
        """Schedule the ticker task. Must be called from the event loop."""
        if self._task is None:
            self._task = asyncio.create_task(
                self._run(), name=f"progress-ticker-{self.session.channel_id}"
            )
        return self._task

    def cancel(self) -> None:
        """Stop the ticker. Safe to call more than once, or before start()."""
        self._cancelled = True
        task = self._task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _stop_reason(self) -> str | None:
        """Why the ticker must not render anymore, or None if it may."""
        if self._cancelled:
            return "cancelled"
        if not self.is_current(self.session):
            return "superseded"
        if self.session.current_track is not self.track:
            return "track changed"
        if not self.session.engine_has_track:
            return "nothing playing"
        songs = getattr(self.session.queue, "songs", None)
        if songs and songs[0] != self.track:
            return "engine moved on"
        return None

    async def _run(self) -> None:
        """Background loop: post, then tick until told to stop."""
        try:
            await self._post()

            if not self.track or not self.track.has_progress:
                return  # Live or unknown length: the initial post is all we render

            while True:
                await asyncio.sleep(self.settings.tick_interval)
                if not await self.tick():
                    break

        except asyncio.CancelledError:
            pass  # Cancelled by session teardown, clean exit
        except Exception:
            logger.opt(exception=True).error("progress ticker crashed")
        finally:
            self._release()

    def _release(self) -> None:
        """Drop the message handle and detach from the session."""
        self.message = None
        self.embed = None
        if self.session.ticker is self:
            self.session.ticker = None

    async def _post(self) -> bool:
        """Send the Now Playing message. Returns True if a message was posted."""
        text_channel = self.session.text_channel
        if text_channel is None or self.track is None:
            return False

        embed = build_now_playing_embed(self.track, self.session.channel_name, self.settings)

        # Nothing suspends between this check and the send call
        if reason := self._stop_reason():
            logger.debug(f"skipping now playing post: {reason}")
            return False

        try:
            self.message = await text_channel.send(embed=embed)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.errors.handle_error(e, ErrorKind.RENDER, self.session.channel_id)
            return False

        self.embed = embed
        logger.debug(f"posted now playing for \"{self.track.name}\"")
        return True

    async def tick(self) -> bool:
        """Run one progress update.

        Computes the bucket and edits the message when the bucket advanced.
        The bucket is claimed (written to the session) before the edit is
        awaited, and no state is written after the await, so a cancelled
        or superseded ticker can't leave a late write behind.

        Returns:
            True to keep ticking, False to stop
        """
        session = self.session
        track = self.track

        if reason := self._stop_reason():
            logger.debug(f"progress ticker stopping: {reason}")
            return False

        elapsed = session.elapsed
        bucket = compute_bucket(elapsed, track.duration, self.settings.bar_resolution)
        if bucket is None:
            return False

        finished = elapsed >= track.duration

        if self.message is None:
            # Initial post failed earlier, try again with the same guard
            await self._post()
            return not finished

        if bucket <= session.last_rendered_bucket:
            return not finished

        self.embed.description = build_progress_description(track, elapsed, bucket, self.settings)

        # Re-check immediately before the edit. No await between here and the call.
        if reason := self._stop_reason():
            logger.debug(f"progress ticker stopping before edit: {reason}")
            return False
        session.last_rendered_bucket = bucket

        try:
            await self.message.edit(embed=self.embed)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Not fatal: next bucket change tries again
            self.errors.handle_error(e, ErrorKind.RENDER, session.channel_id)

        return not finished
