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
Unit tests for status embeds and text helpers.
"""

import pytest

from core.events import PlaylistInfo
from ui.status import (
    StatusSettings,
    build_now_playing_embed,
    build_playlist_embed,
    build_queued_embed,
)
from utils.response import escape_markdown, truncate_for_display
from tests.conftest import make_track


def field_names(embed):
    return [field.name for field in embed.fields]


class TestNowPlayingEmbed:
    """Test cases for the Now Playing embed."""

    @pytest.mark.unit
    def test_minimal_track(self):
        embed = build_now_playing_embed(make_track("Song X", None, url=None), "Lounge", StatusSettings())

        assert embed.title == "Now Playing"
        assert embed.description == "🎶 **Song X**"
        assert field_names(embed) == ["In Channel"]
        assert embed.color.value == 0x0099FF

    @pytest.mark.unit
    def test_full_track(self):
        track = make_track(
            "Song X", 215,
            uploader="Some Artist",
            thumbnail="https://img.example.com/x.jpg",
            views=1234567,
            likes=10,
            dislikes=0,
            requested_by="ana",
        )

        embed = build_now_playing_embed(track, "Lounge", StatusSettings())

        assert field_names(embed) == [
            "In Channel", "Requested by", "Duration", "Views", "Likes", "Dislikes", "Uploader",
        ]
        values = {field.name: field.value for field in embed.fields}
        assert values["Duration"] == "**00:03:35**"
        assert values["Views"] == "**1,234,567**"
        assert values["Dislikes"] == "👎 **0**"
        assert embed.thumbnail.url == "https://img.example.com/x.jpg"

    @pytest.mark.unit
    def test_zero_views_shown_unknown_views_hidden(self):
        shown = build_now_playing_embed(make_track(views=0), "Lounge", StatusSettings())
        hidden = build_now_playing_embed(make_track(views=None), "Lounge", StatusSettings())

        assert "Views" in field_names(shown)
        assert "Views" not in field_names(hidden)

    @pytest.mark.unit
    def test_live_stream(self):
        embed = build_now_playing_embed(make_track("Radio", None, is_live=True), "Lounge", StatusSettings())

        assert "Live" in field_names(embed)
        assert "Duration" not in field_names(embed)

    @pytest.mark.unit
    def test_markdown_in_names_is_escaped(self):
        embed = build_now_playing_embed(make_track("**loud**", url=None), "the_lounge", StatusSettings())

        assert embed.description == "🎶 **\\*\\*loud\\*\\***"
        assert embed.fields[0].value == "**the\\_lounge**"


class TestQueuedEmbeds:
    """Test cases for queued song and playlist embeds."""

    @pytest.mark.unit
    def test_song_queued(self):
        settings = StatusSettings(queued_color=0x123456)

        embed = build_queued_embed(make_track("Song B"), "Lounge", settings)

        assert embed.title == "Song Added to Queue"
        assert embed.description == "- Song Name :  **Song B**\n- Channel : **Lounge**"
        assert embed.color.value == 0x123456

    @pytest.mark.unit
    @pytest.mark.parametrize("count, text", [(1, "(1 song)"), (3, "(3 songs)")])
    def test_playlist_queued(self, count, text):
        playlist = PlaylistInfo(name="Road Trip", tracks=tuple(make_track(f"t{i}") for i in range(count)))

        embed = build_playlist_embed(playlist, "Lounge", StatusSettings())

        assert embed.title == "Playlist Added to Queue"
        assert text in embed.description


class TestTextHelpers:

    @pytest.mark.unit
    @pytest.mark.parametrize("text, expected", [
        ("plain", "plain"),
        ("snake_case", "snake\\_case"),
        ("a*b~c|d`e", "a\\*b\\~c\\|d\\`e"),
        ("back\\slash", "back\\\\slash"),
    ])
    def test_escape_markdown(self, text, expected):
        assert escape_markdown(text) == expected

    @pytest.mark.unit
    def test_truncate_for_display(self):
        assert truncate_for_display("short", 10) == "short"
        assert truncate_for_display("a" * 20, 10) == "aaaaaaa..."
