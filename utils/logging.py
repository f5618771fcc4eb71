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
Logging Setup

loguru sink with 4-character level names for clean, aligned logs:
- DEBUG    -> [DBUG] - Technical details for debugging
- INFO     -> [INFO] - Normal operation messages
- NOTICE   -> [NOTE] - Startup milestones, shown even at "minimal"
- WARNING  -> [WARN] - Issues that don't stop operation
- ERROR    -> [FAIL] - Recoverable failures
- CRITICAL -> [CRIT] - Catastrophic failures

CAUTION: Changing LEVEL_NAMES may break log parsing or monitoring tools.
"""

import logging
import sys

from loguru import logger

LEVEL_NAMES = {
    "DEBUG": "DBUG",
    "INFO": "INFO",
    "NOTICE": "NOTE",
    "SUCCESS": "INFO",
    "WARNING": "WARN",
    "ERROR": "FAIL",
    "CRITICAL": "CRIT",
}

# logging.level setting -> loguru level
VERBOSITY = {
    "minimal": "NOTICE",
    "verbose": "INFO",
    "debug": "DEBUG",
}

# Library loggers routed through loguru
LIBRARY_LOGGERS = ("discord", "mafic", "aiohttp")

NOTICE_LEVEL_NO = 25


class InterceptHandler(logging.Handler):
    """Forward stdlib logging records (discord.py, mafic) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _format(record) -> str:
    short = LEVEL_NAMES.get(record["level"].name, record["level"].name[:4].upper())
    return "[{time:YYYY-MM-DD HH:mm:ss}] [" + short + "] {message}\n{exception}"


def register_notice_level() -> None:
    """Add the NOTICE level (between INFO and WARNING). Safe to call twice."""
    try:
        logger.level("NOTICE")
    except ValueError:
        logger.level("NOTICE", no=NOTICE_LEVEL_NO, color="<cyan><bold>")


def setup_logging(level: str = "verbose") -> str:
    """Install the stderr sink and route library loggers through loguru.

    Args:
        level: "minimal", "verbose" or "debug" (unknown values mean verbose)

    Returns:
        The loguru level name the sink was installed at
    """
    register_notice_level()
    loguru_level = VERBOSITY.get(str(level).lower(), "INFO")

    logger.remove()
    logger.add(sys.stderr, level=loguru_level, format=_format, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Reduce library noise unless debugging
    library_level = logging.DEBUG if loguru_level == "DEBUG" else logging.WARNING
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    return loguru_level
