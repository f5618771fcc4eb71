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

"""Event router - maps engine lifecycle events onto session state.

State machine (per voice channel, keyed through SessionStore):

    song started     -> create/replace session, restart ticker
    song queued      -> "added to queue" post, no state change
    playlist queued  -> "playlist added" post (if enabled), no state change
    finish           -> end session
    disconnect       -> end session
    empty            -> end session
    error            -> ErrorSink only

Handlers are synchronous. A handler never awaits while it reads or writes
the store, so no other task can observe a half-applied transition. Status
posts for queued songs run as fire-and-forget tasks. The Now Playing post
belongs to the session's ticker.
"""

import asyncio
from typing import Any, Callable

from loguru import logger

from core.errors import ErrorKind, ErrorSink, MissingContextError
from core.events import (
    Disconnect,
    Empty,
    EngineEvent,
    ErrorReported,
    Finish,
    LifecycleEvent,
    PlaylistQueued,
    SongQueued,
    SongStarted,
    voice_channel_of,
)
from core.session import Session, SessionStore
from core.ticker import ProgressTicker
from ui.status import StatusSettings, build_playlist_embed, build_queued_embed


class EventRouter:
    """Consumes engine events and keeps SessionStore in step with them.

    Two entry points, kept apart so a playback error can never reach the
    session bookkeeping:
        on_lifecycle_event(event) - state transitions
        on_error(error)           - ErrorSink only

    Attributes:
        store: Shared SessionStore
        errors: ErrorSink for malformed events, engine errors, failed posts
        settings: Status appearance and ticker cadence
    """

    def __init__(self, store: SessionStore, errors: ErrorSink, settings: StatusSettings | None = None) -> None:
        self.store = store
        self.errors = errors
        self.settings = settings or StatusSettings()
        self._task: asyncio.Task | None = None
        # Pending queued-message posts, held so the loop keeps a strong reference
        self._post_tasks: set[asyncio.Task] = set()
        self._handlers: dict[type, Callable[[Any, Any], None]] = {
            SongStarted: self._on_song_started,
            SongQueued: self._on_song_queued,
            PlaylistQueued: self._on_playlist_queued,
            Finish: self._on_finish,
            Disconnect: self._on_disconnect,
            Empty: self._on_empty,
        }

    # =========================================================================
    # CONSUMER LOOP
    # =========================================================================

    def start(self, events: asyncio.Queue) -> asyncio.Task:
        """Start consuming an engine event queue in the background."""
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = asyncio.create_task(self.run(events), name="event-router")
        return self._task

    async def run(self, events: asyncio.Queue) -> None:
        """Consume events forever, in delivery order. One bad event never stops the loop."""
        logger.debug("event router started")
        while True:
            event = await events.get()
            try:
                self.dispatch(event)
            except Exception:
                logger.opt(exception=True).error(f"failed to handle {type(event).__name__}")
            finally:
                events.task_done()

    async def shutdown(self) -> None:
        """Stop consuming, cancel pending posts, and close every session."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

        for task in list(self._post_tasks):
            task.cancel()

        count = len(self.store)
        self.store.clear()
        logger.debug(f"event router stopped, closed {count} session(s)")

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def dispatch(self, event: EngineEvent) -> None:
        """Route one engine event to the lifecycle or error path."""
        if isinstance(event, ErrorReported):
            channel = voice_channel_of(event.queue)
            self.on_error(event.error, channel.id if channel else None)
            return
        self.on_lifecycle_event(event)

    def on_lifecycle_event(self, event: LifecycleEvent) -> None:
        """Apply a lifecycle event to the store.

        Events without a resolvable voice channel are recorded as
        missing-context and dropped. They never create a session.
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning(f"unknown engine event: {type(event).__name__}")
            return

        channel = voice_channel_of(getattr(event, "queue", None))
        if channel is None:
            self.errors.handle_error(
                MissingContextError(f"{type(event).__name__} without a queue or voice channel"),
                ErrorKind.MISSING_CONTEXT,
            )
            return

        handler(event, channel)

    def on_error(self, error: BaseException, channel_id: int | None = None) -> None:
        """Forward an engine-reported error to the sink."""
        self.errors.handle_error(error, ErrorKind.ENGINE_REPORTED, channel_id)

    def end_session(self, channel_id: int, reason: str) -> bool:
        """Cancel the channel's ticker and drop its session. No-op if absent."""
        if self.store.remove(channel_id):
            logger.info(f"session ended in channel {channel_id} ({reason})")
            return True
        logger.debug(f"no session to end in channel {channel_id} ({reason})")
        return False

    # =========================================================================
    # HANDLERS
    # =========================================================================

    def _on_song_started(self, event: SongStarted, channel: Any) -> None:
        queue = event.queue

        # stop/leave already tore this queue down, a late start must not resurrect it
        if getattr(queue, "stopped", False):
            logger.debug(f"ignoring song start for stopped queue in #{channel.name}")
            return

        if event.track is None:
            self.errors.handle_error(
                MissingContextError("SongStarted without a track"),
                ErrorKind.MISSING_CONTEXT,
                channel.id,
            )
            return

        previous = self.store.get(channel.id)
        text_channel = getattr(queue, "text_channel", None)
        if text_channel is None and previous is not None:
            text_channel = previous.text_channel

        session = Session(
            channel_id=channel.id,
            channel_name=getattr(channel, "name", "") or "",
            text_channel=text_channel,
            queue=queue,
        )
        session.set_track(event.track)

        # Closes the previous session first (cancels its ticker)
        self.store.upsert(session)

        if self.settings.enabled and text_channel is not None:
            ticker = ProgressTicker(session, self.store.is_current, self.errors, self.settings)
            session.ticker = ticker
            ticker.start()

        logger.info(f"now playing \"{event.track.name}\" in #{session.channel_name}")

    def _on_song_queued(self, event: SongQueued, channel: Any) -> None:
        session = self.store.get(channel.id)
        if session is None:
            logger.debug(f"song queued in #{channel.name} without a session")
            return
        if event.track is None:
            return

        logger.info(f"queued \"{event.track.name}\" in #{channel.name}")
        text_channel = getattr(event.queue, "text_channel", None) or session.text_channel
        if self.settings.enabled and text_channel is not None:
            embed = build_queued_embed(event.track, session.channel_name, self.settings)
            self._spawn_post(text_channel, embed, channel.id)

    def _on_playlist_queued(self, event: PlaylistQueued, channel: Any) -> None:
        session = self.store.get(channel.id)
        if session is None:
            logger.debug(f"playlist queued in #{channel.name} without a session")
            return
        if event.playlist is None:
            return

        logger.info(f"queued playlist \"{event.playlist.name}\" ({len(event.playlist.tracks)} songs) in #{channel.name}")
        text_channel = getattr(event.queue, "text_channel", None) or session.text_channel
        if self.settings.enabled and self.settings.announce_playlists and text_channel is not None:
            embed = build_playlist_embed(event.playlist, session.channel_name, self.settings)
            self._spawn_post(text_channel, embed, channel.id)

    def _on_finish(self, event: Finish, channel: Any) -> None:
        self.end_session(channel.id, "queue finished")

    def _on_disconnect(self, event: Disconnect, channel: Any) -> None:
        self.end_session(channel.id, "disconnected")

    def _on_empty(self, event: Empty, channel: Any) -> None:
        self.end_session(channel.id, "channel empty")

    # =========================================================================
    # POSTS
    # =========================================================================

    def _spawn_post(self, text_channel: Any, embed: Any, channel_id: int) -> None:
        task = asyncio.create_task(self._post(text_channel, embed, channel_id))
        self._post_tasks.add(task)
        task.add_done_callback(self._post_tasks.discard)

    async def _post(self, text_channel: Any, embed: Any, channel_id: int) -> None:
        try:
            await text_channel.send(embed=embed)
        except asyncio.CancelledError:
            pass  # Shutdown
        except Exception as e:
            self.errors.handle_error(e, ErrorKind.RENDER, channel_id)
