"""
Shared utility functions for vidmeta.

This module provides video ID extraction from feed entries and URLs, plus
the small formatting helpers used when presenting transcripts.
"""

import math
import re
from typing import Protocol


# Pre-compiled regex patterns for performance
YOUTUBE_PATTERN_COMPILED = re.compile(
    r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/shorts/)([a-zA-Z0-9_-]{11})"
)

# Atom feed entry identifiers published by YouTube channel/playlist feeds
FEED_ENTRY_ID_PREFIX = "yt:video:"

WATCH_URL = "https://youtube.com/watch?v={video_id}"


class FeedEntry(Protocol):
    """The parts of an externally-owned feed entry the pipeline reads."""

    entry_id: str
    link: str | None


def video_id_from_entry(entry: FeedEntry) -> str | None:
    """
    Derive the video ID for a feed entry.

    YouTube feeds identify entries as ``yt:video:<ID>``; that form wins.
    Otherwise the entry link is matched against the YouTube URL formats.
    Entries from any other source return None.
    """
    entry_id = entry.entry_id or ""
    if entry_id.startswith(FEED_ENTRY_ID_PREFIX):
        video_id = entry_id[len(FEED_ENTRY_ID_PREFIX):].strip()
        return video_id or None

    if entry.link:
        match = YOUTUBE_PATTERN_COMPILED.search(entry.link)
        if match:
            return match.group(1)

    return None


def watch_url(video_id: str, seconds: float | None = None) -> str:
    """
    Build a watch page link, optionally deep-linked to a position.

    Examples:
        >>> watch_url("abc123")
        'https://youtube.com/watch?v=abc123'
        >>> watch_url("abc123", 61.7)
        'https://youtube.com/watch?v=abc123&t=61'
    """
    url = WATCH_URL.format(video_id=video_id)
    if seconds is not None:
        url += f"&t={math.floor(seconds)}"
    return url


def format_timestamp(seconds: float) -> str:
    """
    Format a position in seconds as a display timestamp.

    Examples:
        >>> format_timestamp(75.4)
        '1:15'
        >>> format_timestamp(3725)
        '1:02:05'
    """
    total = max(0, math.floor(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def sanitize_for_log(input_str: str) -> str:
    """
    Sanitize user input for logging to prevent log injection attacks.

    Replaces newlines, carriage returns, and tabs with their escaped
    representations.
    """
    return input_str.replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t")
