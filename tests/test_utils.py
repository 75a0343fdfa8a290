"""
Tests for utility functions in vidmeta/utils.py.

This module tests video ID extraction from feed entries and the
transcript formatting helpers.
"""

from dataclasses import dataclass

from vidmeta.utils import format_timestamp, sanitize_for_log, video_id_from_entry, watch_url


@dataclass
class Entry:
    entry_id: str
    link: str | None = None


class TestVideoIdFromEntry:
    """Tests for video_id_from_entry function."""

    def test_feed_entry_id(self):
        """Test that the yt:video: entry ID yields the video ID."""
        assert video_id_from_entry(Entry("yt:video:dQw4w9WgXcQ")) == "dQw4w9WgXcQ"

    def test_feed_entry_id_wins_over_link(self):
        """Test that the entry ID is preferred over the link."""
        entry = Entry("yt:video:abc123", "https://www.youtube.com/watch?v=dQw4w9WgXcQ")
        assert video_id_from_entry(entry) == "abc123"

    def test_empty_feed_entry_id(self):
        """Test that a bare prefix yields no video ID."""
        assert video_id_from_entry(Entry("yt:video:")) is None

    def test_watch_link(self):
        """Test extracting video ID from standard watch URL."""
        entry = Entry("urn:1", "https://www.youtube.com/watch?v=dQw4w9WgXcQ")
        assert video_id_from_entry(entry) == "dQw4w9WgXcQ"

    def test_watch_link_with_params(self):
        """Test extracting video ID from watch URL with additional parameters."""
        entry = Entry("urn:1", "https://www.youtube.com/watch?v=dQw4w9WgXcQ&list=xyz")
        assert video_id_from_entry(entry) == "dQw4w9WgXcQ"

    def test_youtu_be_link(self):
        """Test extracting video ID from youtu.be short URL."""
        assert video_id_from_entry(Entry("urn:1", "https://youtu.be/dQw4w9WgXcQ")) == "dQw4w9WgXcQ"

    def test_embed_link(self):
        """Test extracting video ID from embed URL."""
        entry = Entry("urn:1", "https://www.youtube.com/embed/dQw4w9WgXcQ")
        assert video_id_from_entry(entry) == "dQw4w9WgXcQ"

    def test_shorts_link(self):
        """Test extracting video ID from YouTube Shorts URL."""
        entry = Entry("urn:1", "https://www.youtube.com/shorts/dQw4w9WgXcQ?feature=share")
        assert video_id_from_entry(entry) == "dQw4w9WgXcQ"

    def test_mobile_link(self):
        """Test extracting from mobile URL."""
        entry = Entry("urn:1", "https://m.youtube.com/watch?v=dQw4w9WgXcQ")
        assert video_id_from_entry(entry) == "dQw4w9WgXcQ"

    def test_non_video_entry(self):
        """Test that entries from other sources are not videos."""
        assert video_id_from_entry(Entry("tag:blog.example,2024:1", "https://blog.example/post")) is None
        assert video_id_from_entry(Entry("urn:1", "https://example.com/watch?v=123")) is None

    def test_entry_without_link(self):
        """Test that an entry with neither form is not a video."""
        assert video_id_from_entry(Entry("urn:1")) is None


class TestWatchUrl:
    """Tests for watch_url function."""

    def test_plain_link(self):
        assert watch_url("abc123") == "https://youtube.com/watch?v=abc123"

    def test_deep_link_floors_seconds(self):
        """Test that the position is truncated to whole seconds."""
        assert watch_url("abc123", 61.7) == "https://youtube.com/watch?v=abc123&t=61"

    def test_deep_link_at_zero(self):
        assert watch_url("abc123", 0) == "https://youtube.com/watch?v=abc123&t=0"


class TestFormatTimestamp:
    """Tests for format_timestamp function."""

    def test_under_a_minute(self):
        assert format_timestamp(5) == "0:05"

    def test_minutes(self):
        assert format_timestamp(75.4) == "1:15"

    def test_hours(self):
        assert format_timestamp(3725) == "1:02:05"

    def test_negative_clamped(self):
        assert format_timestamp(-3) == "0:00"


class TestSanitizeForLog:
    """Tests for sanitize_for_log function."""

    def test_escapes_control_characters(self):
        """Test that newlines and tabs cannot forge log lines."""
        assert sanitize_for_log("a\nb\rc\td") == "a\\nb\\rc\\td"

    def test_plain_text_unchanged(self):
        assert sanitize_for_log("abc123") == "abc123"
