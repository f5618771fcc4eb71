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

"""Configuration management for Needle."""

import asyncio
import copy
import os
import sys
import tempfile
from pathlib import Path
from typing import Any

import aiohttp
import yaml
from loguru import logger

from ui.status import StatusSettings


# =============================================================================
# DEFAULT SETTINGS SCHEMA
# =============================================================================
# These defaults are used when settings.yaml is missing or incomplete.
# Environment variables can override any setting (see _apply_env_overrides).
#
# Status Settings (status.*):
#   enabled                - Post Now Playing / queued messages at all
#   tick_interval_ms       - Milliseconds between progress bar edits (1000-600000)
#   bar_resolution         - Progress bar segments (1-40)
#   bar_filled / bar_empty - Glyphs either side of the cursor
#   bar_cursor             - Glyph marking the current position
#   now_playing_color      - Now Playing embed color as hex integer
#   queued_color           - "Added to Queue" embed color as hex integer
#   announce_playlists     - Post "Playlist Added to Queue" when one is queued
#
# Engine Settings (engine.*):
#   search_type            - Lavalink search prefix for plain-text queries
#   leave_on_empty         - Leave voice when the last listener leaves
#   default_volume         - Initial volume when joining voice (0-100)
#
# UI Settings (ui.*):
#   brief_auto_delete      - Seconds before auto-deleting command replies (0 = never)
#
# Logging Settings (logging.*):
#   level                  - Log verbosity: "minimal", "verbose", or "debug"
# =============================================================================

DEFAULT_SETTINGS = {
    "status": {
        "enabled": True,
        "tick_interval_ms": 7000,
        "bar_resolution": 10,
        "bar_filled": "▬",
        "bar_empty": "▬",
        "bar_cursor": "🔘",
        "now_playing_color": 0x0099FF,
        "queued_color": 0x00FF00,
        "announce_playlists": True,
    },
    "engine": {
        "search_type": "ytsearch",
        "leave_on_empty": True,
        "default_volume": 50,
    },
    "ui": {
        "brief_auto_delete": 10,  # seconds, 0 to disable
    },
    # Logging (LOG_LEVEL env var overrides this)
    "logging": {
        "level": "verbose",  # minimal, verbose, debug
    },
}

# Ranged integers: (section, key) -> (min, max)
RANGES = {
    ("status", "tick_interval_ms"): (1000, 600000),
    ("status", "bar_resolution"): (1, 40),
    ("engine", "default_volume"): (0, 100),
    ("ui", "brief_auto_delete"): (0, 3600),
}

LOG_LEVELS = ("minimal", "verbose", "debug")

# =============================================================================
# DEFAULT MESSAGES SCHEMA
# =============================================================================
# Command replies with per-message enable/disable control.
#   text    - The message template (supports {variables} for formatting)
#   enabled - Whether to show this message (True) or acknowledge silently (False)
# =============================================================================

DEFAULT_MESSAGES = {
    # Voice errors
    "not_in_vc": {"text": "join a voice channel first", "enabled": True},
    "wrong_vc": {"text": "i'm already playing in {channel}", "enabled": True},

    # Playback
    "request_received": {"text": "got it, looking up **{query}**", "enabled": False},
    "play_failed": {"text": "couldn't play that, check the query and try again", "enabled": True},
    "nothing_playing": {"text": "nothing is playing", "enabled": True},
    "skipped": {"text": "skipped", "enabled": True},
    "skip_failed": {"text": "nothing to skip to", "enabled": True},
    "stopped": {"text": "stopped and cleared the queue", "enabled": True},
    "left": {"text": "left the voice channel", "enabled": True},
    "operation_failed": {"text": "that didn't work, try again", "enabled": True},

    # Availability
    "music_unavailable": {"text": "music system is down", "enabled": True},
}


def deep_merge(user: dict, defaults: dict) -> dict:
    """Overlay user values on a copy of defaults, section by section.

    Keys the defaults don't know about are dropped with a warning.
    """
    result = copy.deepcopy(defaults)
    for key, value in user.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(value, result[key])
        elif key in defaults:
            result[key] = value
        else:
            logger.warning(f"unknown config key: {key}")
    return result


def load_yaml(path: Path, defaults: dict) -> dict:
    """Load YAML file merged over defaults. Missing or broken files yield defaults."""
    if not path.exists():
        return copy.deepcopy(defaults)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            user = yaml.safe_load(f) or {}

        if not isinstance(user, dict):
            logger.warning(f"{path.name} invalid, using defaults")
            return copy.deepcopy(defaults)

        return deep_merge(user, defaults)

    except yaml.YAMLError:
        logger.opt(exception=True).error(f"failed to parse {path.name}")
        return copy.deepcopy(defaults)


def save_yaml(path: Path, data: dict, header: str = "") -> None:
    """Save YAML atomically (temp file then rename) with optional header comment."""
    temp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix='.tmp')
        with os.fdopen(temp_fd, 'w', encoding='utf-8') as f:
            if header:
                f.write(header)
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        Path(temp_path).replace(path)
    except Exception:
        if temp_path:
            Path(temp_path).unlink(missing_ok=True)
        raise


def parse_hex_color(value: Any) -> int:
    """Parse "0099FF", "0x0099FF" or "#0099FF" (or an int) to an int."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    text = str(value).strip().lstrip("#").removeprefix("0x").removeprefix("0X")
    return int(text, 16)


def parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


class ConfigManager:
    """settings.yaml and messages.yaml, layered over built-in defaults.

    Later layers win: DEFAULT_SETTINGS / DEFAULT_MESSAGES, then the YAML
    files, then environment variables.

    Access patterns:
        config_manager.get("engine")        # Get a settings section
        config_manager.msg("key", **vars)   # Get formatted message
        config_manager.is_enabled("key")    # Check if message should show
        config_manager.status_settings()    # Typed status/ticker settings

    Attributes:
        config_path: Directory holding both YAML files
        settings: Validated settings
        messages: Reply templates
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self.settings: dict = copy.deepcopy(DEFAULT_SETTINGS)
        self.messages: dict = copy.deepcopy(DEFAULT_MESSAGES)

    async def load(self) -> None:
        """Read both files (writing defaults for any that are missing), then env, then validate."""
        settings_path = self.config_path / "settings.yaml"
        self.settings = await asyncio.to_thread(load_yaml, settings_path, DEFAULT_SETTINGS)

        if not settings_path.exists():
            header = "# Needle Settings\n# Edit these values to customize behavior\n\n"
            await asyncio.to_thread(save_yaml, settings_path, DEFAULT_SETTINGS, header)
            logger.debug(f"generated {settings_path.name}")

        messages_path = self.config_path / "messages.yaml"
        self.messages = await asyncio.to_thread(load_yaml, messages_path, DEFAULT_MESSAGES)

        if not messages_path.exists():
            header = "# Needle Replies\n# Set enabled: false to acknowledge a command silently\n\n"
            await asyncio.to_thread(save_yaml, messages_path, DEFAULT_MESSAGES, header)
            logger.debug(f"generated {messages_path.name}")

        self._apply_env_overrides()
        self._validate_settings()

        logger.debug("config loaded")

    def _validate_settings(self) -> None:
        """Repair and clamp the merged settings in place.

        Validation steps:
        1. Null-restore: a section or key left empty in YAML gets its default.
        2. Ranged integers (RANGES): clamped, warning logged when out of range.
        3. Colors: string hex coerced to int.
        4. Log level: unknown values reset to "verbose".
        5. Bar glyphs: empty strings reset to defaults.
        """
        for section, defaults in DEFAULT_SETTINGS.items():
            sect = self.settings.get(section)
            if not isinstance(sect, dict):
                if sect is not None:
                    logger.warning(f"{section} section invalid, using defaults")
                self.settings[section] = copy.deepcopy(defaults)
                continue
            for key, default in defaults.items():
                if sect.get(key) is None:
                    sect[key] = default

        for (section, key), (min_val, max_val) in RANGES.items():
            sect = self.settings[section]
            value = sect.get(key)
            try:
                v = int(value)
                clamped = max(min_val, min(max_val, v))
                if clamped != v:
                    logger.warning(f"{section}.{key}={v} out of range, clamped to {clamped} (valid: {min_val}-{max_val})")
                sect[key] = clamped
            except (ValueError, TypeError):
                logger.warning(f"{section}.{key}={value!r} invalid, using default")
                sect[key] = DEFAULT_SETTINGS[section][key]

        status = self.settings["status"]
        for key in ("now_playing_color", "queued_color"):
            try:
                status[key] = parse_hex_color(status[key])
            except (ValueError, TypeError):
                logger.warning(f"status.{key}={status[key]!r} invalid, using default")
                status[key] = DEFAULT_SETTINGS["status"][key]

        for key in ("bar_filled", "bar_empty", "bar_cursor"):
            if not isinstance(status[key], str) or not status[key]:
                status[key] = DEFAULT_SETTINGS["status"][key]

        level = str(self.settings["logging"].get("level", "")).lower()
        if level not in LOG_LEVELS:
            logger.warning(f"logging.level={level!r} invalid, using verbose")
            level = "verbose"
        self.settings["logging"]["level"] = level

    def _apply_env_overrides(self) -> None:
        """Apply environment variables on top of the YAML values.

        The env_map dict maps ENV_VAR_NAME -> (setting_key, converter). Setting
        keys use dot notation ("status.tick_interval_ms"). Invalid values are
        logged as warnings and ignored (setting unchanged).
        """
        env_map = {
            "TICK_INTERVAL_MS": ("status.tick_interval_ms", int),
            "BAR_RESOLUTION": ("status.bar_resolution", int),
            "STATUS_ENABLED": ("status.enabled", parse_bool),
            "ANNOUNCE_PLAYLISTS": ("status.announce_playlists", parse_bool),
            "NOW_PLAYING_COLOR": ("status.now_playing_color", parse_hex_color),
            "SEARCH_TYPE": ("engine.search_type", str),
            "LEAVE_ON_EMPTY": ("engine.leave_on_empty", parse_bool),
            "DEFAULT_VOLUME": ("engine.default_volume", int),
            "BRIEF_AUTO_DELETE": ("ui.brief_auto_delete", int),
            "LOG_LEVEL": ("logging.level", str),
        }

        for env_key, (setting_key, converter) in env_map.items():
            if value := os.getenv(env_key):
                try:
                    converted = converter(value)
                    section, key = setting_key.split(".")
                    target = self.settings.setdefault(section, {})
                    if not isinstance(target, dict):
                        # Corrupted YAML: expected dict but got scalar
                        logger.warning(f"invalid config structure for {setting_key}")
                        continue
                    target[key] = converted
                    logger.debug(f"{env_key} overrides {setting_key}")
                except (ValueError, TypeError) as e:
                    logger.warning(f"invalid env var {env_key}: {e}")

    def get(self, key: str, default=None) -> Any:
        """Get a settings section or value from settings.yaml."""
        return self.settings.get(key, default)

    def msg(self, key: str, **kwargs) -> str:
        """Get formatted message text. Returns the key itself if not found."""
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        template = entry.get("text", key) if isinstance(entry, dict) else str(entry)
        try:
            return template.format(**kwargs)
        except (KeyError, IndexError):
            return template

    def is_enabled(self, key: str) -> bool:
        """Check if a message should be shown (False = acknowledge silently)."""
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        return entry.get("enabled", True) if isinstance(entry, dict) else True

    def status_settings(self) -> StatusSettings:
        """Typed view of the status section for the router and tickers."""
        status = self.settings["status"]
        return StatusSettings(
            enabled=bool(status["enabled"]),
            tick_interval=status["tick_interval_ms"] / 1000,
            bar_resolution=status["bar_resolution"],
            bar_filled=status["bar_filled"],
            bar_empty=status["bar_empty"],
            bar_cursor=status["bar_cursor"],
            now_playing_color=status["now_playing_color"],
            queued_color=status["queued_color"],
            announce_playlists=bool(status["announce_playlists"]),
        )


async def validate_configuration() -> None:
    """Pre-flight checks run by main() before connecting. Exits with status 1 on failure.

    Checks the token looks like a bot token, the config directory exists (it
    is created if not) and Lavalink answers /version. A missing GUILD_ID only
    warns.
    """
    errors = []

    token = os.getenv("DISCORD_TOKEN")
    if not token:
        errors.append("DISCORD_TOKEN not set - add it to .env")
    else:
        parts = token.strip().split(".")
        if len(parts) != 3 or any(not part for part in parts):
            errors.append(
                "DISCORD_TOKEN does not look like a bot token (expected three dot-separated parts), "
                "copy it again from https://discord.com/developers/applications"
            )

    if not os.getenv("GUILD_ID"):
        logger.warning("GUILD_ID not set - commands may take up to 1 hour to show up")

    config_path = config_dir()
    if not config_path.exists():
        try:
            config_path.mkdir(parents=True)
            logger.warning(f"created missing config directory: {config_path}")
        except OSError as e:
            errors.append(f"cannot create config directory {config_path}: {e}")

    host, port, password = lavalink_settings()
    try:
        async with aiohttp.ClientSession() as session:
            url = f"http://{host}:{port}/version"
            headers = {"Authorization": password}
            async with session.get(url, headers=headers, timeout=aiohttp.ClientTimeout(total=30)) as resp:
                if resp.status != 200:
                    errors.append(f"lavalink not responding at {url}")
                else:
                    version = await resp.text()
                    logger.log("NOTICE", f"lavalink version: {version}")
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        errors.append(f"cannot connect to lavalink at {host}:{port}: {e}")

    if errors:
        for error in errors:
            logger.error(error)
        sys.exit(1)


def config_dir() -> Path:
    """Directory holding settings.yaml and messages.yaml (CONFIG_PATH, default ./config)."""
    return Path(os.getenv("CONFIG_PATH") or "./config")


def lavalink_settings() -> tuple[str, int, str]:
    """Lavalink host, port and password from the environment."""
    host = os.getenv("LAVALINK_HOST", "127.0.0.1")
    port = int(os.getenv("LAVALINK_PORT", "2333"))
    password = os.getenv("LAVALINK_PASSWORD", "youshallnotpass")
    return host, port, password
