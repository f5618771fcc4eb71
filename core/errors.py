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

"""Error types and the error sink.

Errors never flow through the session state machine. Anything that goes
wrong (a malformed engine event, a failed engine call, an error the engine
reports on its own, a status message that can't be posted) ends up in
ErrorSink.handle_error(), which logs and counts it and returns.
"""

import asyncio
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

import aiohttp
import discord
from loguru import logger


class NeedleError(Exception):
    """Base exception for all Needle errors."""

    pass


class MissingContextError(NeedleError):
    """Raised when an engine event has no resolvable voice channel."""

    pass


class EngineError(NeedleError):
    """Base exception for playback engine failures."""

    pass


class EngineOperationError(EngineError):
    """Raised when a play/skip/stop/leave call into the engine fails."""

    pass


class TrackLoadError(EngineError):
    """Raised when a query resolves to no playable tracks."""

    pass


class NothingPlayingError(EngineError):
    """Raised when an operation needs a queue and the channel has none."""

    pass


class NoUpNextError(EngineError):
    """Raised when skip is requested with nothing queued after the current song."""

    pass


class VoiceConnectionError(EngineError):
    """Raised when the engine can't join or use a voice channel."""

    pass


class TrackPlaybackError(EngineError):
    """Reported by the engine when a track fails or gets stuck mid-playback."""

    pass


class ErrorKind(Enum):
    """Where an error came from."""

    MISSING_CONTEXT = "missing-context"
    ENGINE_OPERATION = "engine-operation"
    ENGINE_REPORTED = "engine-reported"
    RENDER = "render"


# Library errors that are expected to clear up on their own
TRANSIENT_ERRORS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    discord.HTTPException,
    ConnectionError,
)


@dataclass(frozen=True)
class ErrorRecord:
    """One handled error, kept for diagnostics."""

    kind: ErrorKind
    error: BaseException
    channel_id: int | None = None
    transient: bool = False
    at: float = field(default_factory=time.monotonic)

    @property
    def summary(self) -> str:
        text = str(self.error) or type(self.error).__name__
        return f"{type(self.error).__name__}: {text}"


def is_transient(error: BaseException) -> bool:
    """Check if an error is a network/API hiccup rather than a real fault."""
    return isinstance(error, TRANSIENT_ERRORS)


class ErrorSink:
    """Classifies and records errors. Never raises, never touches sessions.

    Severity by kind:
    - missing-context: warning (malformed engine event, dropped)
    - engine-operation: warning for known engine errors, error with
      traceback for anything unexpected
    - engine-reported: warning
    - render: debug when transient, warning otherwise

    Attributes:
        counts: Number of handled errors per ErrorKind
        last: Most recent ErrorRecord, or None
    """

    def __init__(self) -> None:
        self.counts: Counter[ErrorKind] = Counter()
        self.last: ErrorRecord | None = None

    def handle_error(
        self,
        error: BaseException,
        kind: ErrorKind = ErrorKind.ENGINE_REPORTED,
        channel_id: int | None = None,
    ) -> ErrorRecord | None:
        """Classify and record an error.

        Args:
            error: The exception to record
            kind: Which path the error came from
            channel_id: Voice channel the error relates to, if known

        Returns:
            The ErrorRecord, or None if recording itself failed
        """
        try:
            record = ErrorRecord(
                kind=kind,
                error=error,
                channel_id=channel_id,
                transient=is_transient(error),
            )
            self.counts[kind] += 1
            self.last = record
            self._log(record)
            return record
        except Exception:
            # Last resort: the sink must never take down its caller
            logger.opt(exception=True).error("error sink failed")
            return None

    def _log(self, record: ErrorRecord) -> None:
        where = f" in channel {record.channel_id}" if record.channel_id else ""

        if record.kind is ErrorKind.MISSING_CONTEXT:
            logger.warning(f"dropped event{where}: {record.summary}")
        elif record.kind is ErrorKind.RENDER:
            if record.transient:
                logger.debug(f"status update failed{where}: {record.summary}")
            else:
                logger.warning(f"status update failed{where}: {record.summary}")
        elif record.kind is ErrorKind.ENGINE_REPORTED:
            logger.warning(f"engine error{where}: {record.summary}")
        elif isinstance(record.error, NeedleError) or record.transient:
            logger.warning(f"engine operation failed{where}: {record.summary}")
        else:
            logger.opt(exception=record.error).error(f"engine operation failed{where}: {record.summary}")

    def count(self, kind: ErrorKind) -> int:
        """Number of errors handled for a kind."""
        return self.counts[kind]

    def reset(self) -> None:
        """Clear counters and the last record."""
        self.counts.clear()
        self.last = None
