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
Context Managers for Engine Calls

Turns mafic's exceptions into Needle's error types at the engine boundary,
so nothing above the engine adapter has to know about mafic.
"""

from contextlib import contextmanager

import mafic

from core.errors import (
    EngineOperationError,
    NeedleError,
    TrackLoadError,
    VoiceConnectionError,
)


@contextmanager
def engine_errors(action: str):
    """
    Translate mafic failures raised inside the block.

    Usage:
        with engine_errors("skip"):
            await player.play(next_track)

    Needle errors pass through untouched. Network errors (aiohttp, timeouts)
    also pass through so the ErrorSink can classify them as transient.

    Args:
        action: Short name of the operation, used in the error message
    """
    try:
        yield
    except NeedleError:
        raise
    except mafic.TrackLoadException as e:
        raise TrackLoadError(f"{action}: failed to load track ({e.message})") from e
    except mafic.PlayerNotConnected as e:
        raise VoiceConnectionError(f"{action}: player not connected") from e
    except mafic.NoNodesAvailable as e:
        raise EngineOperationError(f"{action}: no lavalink nodes available") from e
    except mafic.MaficException as e:
        raise EngineOperationError(f"{action}: {e}") from e
